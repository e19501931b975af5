"""
PDF post-processing of the captured document.

Chromium's print-to-PDF output lacks the document metadata, the outline and
the print boxes. PostProcess rewrites the PDF with pypdf to add them and
optionally passes the result through press-ready for preflight.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote

from pypdf import PdfReader, PdfWriter
from pypdf.generic import Fit, NameObject, RectangleObject, TextStringObject

from pagedpdf.container import collect_volume_args, run_container, to_container_path
from pagedpdf.exceptions import PreflightError
from pagedpdf.sanitization import sanitize_for_logging

if TYPE_CHECKING:
    from pypdf.generic import Destination, IndirectObject

    from pagedpdf.page_data import Metadata, PageProgression, PageSizeData, TOCItem

logger = logging.getLogger(__name__)

PRODUCER_NAME = "paged-pdf-builder"
CREATOR_NAME = "Vivliostyle.js"

DC_TERMS = "http://purl.org/dc/terms/"
TITLE = DC_TERMS + "title"
CREATOR = DC_TERMS + "creator"
SUBJECT = DC_TERMS + "subject"
DESCRIPTION = DC_TERMS + "description"
LANGUAGE = DC_TERMS + "language"
DATE = DC_TERMS + "date"

PREFLIGHT_CONTAINER = "press-ready"
PREFLIGHT_LOCAL = "press-ready-local"


def _values(metadata: Metadata, term: str) -> list[str]:
    return [str(item["v"]) for item in metadata.get(term, []) if item.get("v")]


def _pdf_date(moment: datetime) -> str:
    return moment.strftime("D:%Y%m%d%H%M%S+00'00'")


def _parse_date(value: str) -> datetime | None:
    """ISO 8601 date or date-time in UTC; naive values are taken as UTC."""
    try:
        moment = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class PostProcess:
    """Mutable handle over a captured PDF, saved with `save`."""

    def __init__(self, reader: PdfReader) -> None:
        self.reader = reader
        self.writer = PdfWriter(clone_from=reader)

    @classmethod
    def load(cls, pdf: bytes) -> PostProcess:
        return cls(PdfReader(BytesIO(pdf)))

    def metadata(
        self,
        metadata: Metadata,
        page_progression: PageProgression = "ltr",
        browser_version: str | None = None,
        viewer_core_version: str | None = None,
        disable_creator_option: bool = False,
    ) -> None:
        """
        Write the document information dictionary and catalog entries.

        Args:
            metadata: Viewer metadata, Dublin Core terms mapped to value lists.
            page_progression: "rtl" sets the R2L reading direction preference.
            browser_version: Recorded in the producer string.
            viewer_core_version: Recorded in the creator string.
            disable_creator_option: Keep the creator written by the browser.
        """
        info: dict[str, str] = {}
        if titles := _values(metadata, TITLE):
            info["/Title"] = titles[0]
        if creators := _values(metadata, CREATOR):
            info["/Author"] = "; ".join(creators)
        if subjects := _values(metadata, SUBJECT):
            info["/Keywords"] = ", ".join(subjects)
        if descriptions := _values(metadata, DESCRIPTION):
            info["/Subject"] = descriptions[0]

        if not disable_creator_option:
            info["/Creator"] = f"{CREATOR_NAME} {viewer_core_version}" if viewer_core_version else CREATOR_NAME
        info["/Producer"] = f"{PRODUCER_NAME} ({browser_version})" if browser_version else PRODUCER_NAME
        now = datetime.now(timezone.utc)
        if dates := _values(metadata, DATE):
            created = _parse_date(dates[0])
            if created is None:
                logger.warning("Cannot parse document date '%s', using the current time", sanitize_for_logging(dates[0]))
                created = now
            info["/CreationDate"] = _pdf_date(created)
        info["/ModDate"] = _pdf_date(now)
        self.writer.add_metadata(info)

        if languages := _values(metadata, LANGUAGE):
            self.writer.root_object[NameObject("/Lang")] = TextStringObject(languages[0])

        if page_progression == "rtl":
            preferences = self.writer.create_viewer_preferences()
            preferences[NameObject("/Direction")] = NameObject("/R2L")

        logger.debug("Metadata written: %s", sorted(info))

    def toc(self, items: list[TOCItem]) -> None:
        """Build the document outline from TOC items pointing to named destinations."""
        if not items:
            return
        destinations = self.reader.named_destinations
        added = self._add_outline_items(items, destinations, parent=None)
        logger.debug("Outline created with %d items", added)

    def _add_outline_items(
        self,
        items: list[TOCItem],
        destinations: dict[str, Destination],
        parent: IndirectObject | None,
    ) -> int:
        added = 0
        for item in items:
            name = unquote(item.destination.rsplit("#", 1)[-1])
            destination = destinations.get(name)
            if destination is None:
                logger.warning("No destination found for TOC item '%s'", item.title)
                added += self._add_outline_items(item.children, destinations, parent)
                continue

            page_number = self.reader.get_destination_page_number(destination)
            top = destination.top
            fit = Fit.xyz(top=float(top)) if isinstance(top, (int, float)) else Fit.fit()
            outline_item = self.writer.add_outline_item(item.title, page_number, parent=parent, fit=fit)
            added += 1 + self._add_outline_items(item.children, destinations, outline_item)
        return added

    def set_page_boxes(self, page_sizes: list[PageSizeData]) -> None:
        """Set the bleed and trim boxes of every page that has bleed data."""
        pages = self.writer.pages
        if len(page_sizes) != len(pages):
            logger.warning("Page count mismatch (PDF: %d, viewer: %d), page boxes not set", len(pages), len(page_sizes))
            return

        for page, size in zip(pages, page_sizes):
            if not size.has_bleed:
                continue
            width, height = size.media_width, size.media_height
            bleed = size.bleed_offset
            trim = size.bleed_offset + size.bleed_size
            page.mediabox = RectangleObject([0, 0, width, height])
            page.bleedbox = RectangleObject([bleed, bleed, width - bleed, height - bleed])
            page.trimbox = RectangleObject([trim, trim, width - trim, height - trim])

    async def save(
        self,
        path: str,
        preflight: str | None = None,
        preflight_option: list[str] | None = None,
        image: str | None = None,
    ) -> None:
        """
        Write the PDF to `path`, passing it through press-ready when preflight is set.

        Raises:
            PreflightError: If preflight is unknown or press-ready fails.
        """
        if preflight is None:
            with Path(path).open("wb") as output:
                self.writer.write(output)
            logger.info("PDF written to %s", path)
            return

        tmpdir = tempfile.mkdtemp(prefix="pagedpdf-preflight-")
        try:
            input_path = Path(tmpdir) / "input.pdf"
            with input_path.open("wb") as output:
                self.writer.write(output)
            await run_preflight(str(input_path), path, preflight, preflight_option or [], image)
            logger.info("PDF written to %s (preflight: %s)", path, preflight)
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)


def _press_ready_args(input_path: str, output_path: str, options: list[str]) -> list[str]:
    args = ["build", "--input", input_path, "--output", output_path]
    args.extend(option if option.startswith("-") else f"--{option}" for option in options)
    return args


async def run_preflight(input_path: str, output_path: str, preflight: str, options: list[str], image: str | None) -> None:
    if preflight == PREFLIGHT_CONTAINER:
        if not image:
            raise PreflightError("A container image is required for press-ready preflight")
        output_dir = str(Path(output_path).resolve().parent)
        await run_container(
            image=image,
            volumes=collect_volume_args([str(Path(input_path).parent), output_dir]),
            command_args=_press_ready_args(to_container_path(input_path), to_container_path(str(Path(output_path).resolve())), options),
            entrypoint="press-ready",
        )
        return

    if preflight == PREFLIGHT_LOCAL:
        executable = shutil.which("press-ready")
        if executable is None:
            raise PreflightError("press-ready executable not found")
        process = await asyncio.create_subprocess_exec(
            executable,
            *_press_ready_args(input_path, output_path, options),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            logger.error("press-ready failed: %s", stderr.decode(errors="replace").strip())
            raise PreflightError(f"press-ready exited with status {process.returncode}")
        return

    raise PreflightError(f"Unknown preflight mode: {preflight}")
