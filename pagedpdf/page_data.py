"""
Data extraction from the typeset viewer page.

Every function in this module is one request/response exchange with the
viewer through `page.evaluate`. The page side must expose `window.coreViewer`
with `getMetadata()`, `getTOC()`, `showTOC(show)`, `addListener('done', cb)`
and `removeListener('done', cb)`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger(__name__)

PageProgression = Literal["ltr", "rtl"]
Metadata = dict[str, list[dict[str, Any]]]

# CSS pixels (96 dpi) to PDF points (72 dpi)
PX_TO_PT = 0.75

PAGE_PROGRESSION_SCRIPT = """
() => document
  .querySelector('#vivliostyle-viewer-viewport')
  ?.getAttribute('data-vivliostyle-page-progression') === 'rtl' ? 'rtl' : 'ltr'
"""

VIEWER_CORE_VERSION_SCRIPT = r"""
() => document
  .querySelector('#vivliostyle-menu_settings .version')
  ?.textContent?.replace(/^.*?: (\d[-+.\w]+).*$/, '$1') ?? null
"""

METADATA_SCRIPT = "() => window.coreViewer.getMetadata()"

# The viewer only creates the TOC link targets, which Chromium turns into PDF
# destinations, while the TOC panel is shown.
TOC_SCRIPT = """
() => new Promise((resolve) => {
  function listener(payload) {
    if (payload.a !== 'toc') {
      return;
    }
    window.coreViewer.removeListener('done', listener);
    window.coreViewer.showTOC(false);
    resolve(window.coreViewer.getTOC());
  }
  window.coreViewer.addListener('done', listener);
  window.coreViewer.showTOC(true);
})
"""

PAGE_SIZE_SCRIPT = """
(pxToPt) => {
  const sizeData = [];
  const pageContainers = document.querySelectorAll(
    '#vivliostyle-viewer-viewport > div > div > div[data-vivliostyle-page-container]',
  );
  for (const pageContainer of pageContainers) {
    const bleedBox = pageContainer.querySelector('div[data-vivliostyle-bleed-box]');
    sizeData.push({
      mediaWidth: parseFloat(pageContainer.style.width) * pxToPt,
      mediaHeight: parseFloat(pageContainer.style.height) * pxToPt,
      bleedOffset: bleedBox ? parseFloat(bleedBox.style.left) * pxToPt : null,
      bleedSize: bleedBox ? parseFloat(bleedBox.style.paddingLeft) * pxToPt : null,
    });
  }
  return sizeData;
}
"""


@dataclass
class TOCItem:
    """An entry of the document outline, pointing to a named destination."""

    title: str
    destination: str
    children: list[TOCItem] = field(default_factory=list)

    @classmethod
    def from_viewer(cls, item: dict[str, Any]) -> TOCItem:
        return cls(
            title=str(item.get("title") or ""),
            destination=str(item.get("id") or ""),
            children=[cls.from_viewer(child) for child in item.get("children") or []],
        )


@dataclass
class PageSizeData:
    """Page geometry in points. Bleed values are NaN when the page has no bleed box."""

    media_width: float
    media_height: float
    bleed_offset: float = math.nan
    bleed_size: float = math.nan

    @property
    def has_bleed(self) -> bool:
        return not (math.isnan(self.bleed_offset) or math.isnan(self.bleed_size))

    @classmethod
    def from_viewer(cls, data: dict[str, Any]) -> PageSizeData:
        return cls(
            media_width=_to_float(data.get("mediaWidth")),
            media_height=_to_float(data.get("mediaHeight")),
            bleed_offset=_to_float(data.get("bleedOffset")),
            bleed_size=_to_float(data.get("bleedSize")),
        )


@dataclass
class ExtractedDocumentData:
    """Everything post-processing needs from the typeset page."""

    page_progression: PageProgression
    viewer_core_version: str | None
    metadata: Metadata
    toc: list[TOCItem]
    page_size_data: list[PageSizeData]


def _to_float(value: Any) -> float:
    # NaN does not survive the JSON bridge, it arrives as None
    if value is None:
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


async def read_page_progression(page: Page) -> PageProgression:
    return "rtl" if await page.evaluate(PAGE_PROGRESSION_SCRIPT) == "rtl" else "ltr"


async def read_viewer_core_version(page: Page) -> str | None:
    version = await page.evaluate(VIEWER_CORE_VERSION_SCRIPT)
    return version or None


async def load_metadata(page: Page) -> Metadata:
    return await page.evaluate(METADATA_SCRIPT) or {}


async def load_toc(page: Page) -> list[TOCItem]:
    items = await page.evaluate(TOC_SCRIPT)
    return [TOCItem.from_viewer(item) for item in items or []]


async def load_page_size_data(page: Page) -> list[PageSizeData]:
    sizes = await page.evaluate(PAGE_SIZE_SCRIPT, PX_TO_PT)
    return [PageSizeData.from_viewer(size) for size in sizes or []]


async def extract_document_data(page: Page) -> ExtractedDocumentData:
    """
    Run all extraction protocols against the ready page.

    The order is fixed: the TOC round-trip toggles the TOC panel, so everything
    read from the visible UI comes first and the page geometry comes last.
    """
    page_progression = await read_page_progression(page)
    viewer_core_version = await read_viewer_core_version(page)
    metadata = await load_metadata(page)
    toc = await load_toc(page)
    page_size_data = await load_page_size_data(page)
    logger.debug(
        "Extracted document data: progression=%s, viewer=%s, metadata keys=%d, toc items=%d, pages=%d",
        page_progression,
        viewer_core_version,
        len(metadata),
        len(toc),
        len(page_size_data),
    )
    return ExtractedDocumentData(
        page_progression=page_progression,
        viewer_core_version=viewer_core_version,
        metadata=metadata,
        toc=toc,
        page_size_data=page_size_data,
    )
