"""
PDF build pipeline.

A build drives the viewer in a headless Chromium page until it reports that
typesetting is complete, extracts the data post-processing needs, prints the
page to PDF within the remaining timeout budget and rewrites the result with
PostProcess.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pagedpdf.browser_manager import BrowserConfig, BrowserSession
from pagedpdf.container import check_container_environment, collect_volume_args, run_container, to_container_path
from pagedpdf.event_monitor import EntryCorrelator, PageEventMonitor, ProgressReporter
from pagedpdf.exceptions import CaptureTimeout, NavigationTimeout, ReadinessTimeout
from pagedpdf.page_data import extract_document_data
from pagedpdf.postprocess import PostProcess
from pagedpdf.sanitization import sanitize_url_for_logging
from pagedpdf.server import prepare_server
from pagedpdf.timeout_budget import TimeoutBudget

if TYPE_CHECKING:
    from playwright.async_api import Page

    from pagedpdf.options import BuildOptions

logger = logging.getLogger(__name__)

VIEWER_LOADED_SCRIPT = "() => !!window.coreViewer"
VIEWER_COMPLETE_SCRIPT = "() => window.coreViewer.readyState === 'complete'"
READY_STATE_POLLING_MS = 1000

BUILDER_ENTRYPOINT = "pagedpdf-build"


async def wait_for_viewer(page: Page, viewer_url: str, timeout_ms: int, monitor: PageEventMonitor) -> None:
    """
    Navigate to the viewer and wait until it has typeset the whole document.

    The readiness poll is bounded by the full build timeout, not by the budget
    left after navigation.

    Raises:
        NavigationTimeout: If the viewer page does not settle in time.
        ReadinessTimeout: If the viewer does not load or complete typesetting in time.
        RendererLoadFailure: If the viewer reports a fatal error meanwhile.
    """
    page.set_default_navigation_timeout(timeout_ms)
    try:
        await monitor.guard(page.goto(viewer_url, wait_until="networkidle"))
    except PlaywrightTimeoutError as e:
        raise NavigationTimeout(f"Navigation to the viewer timed out after {timeout_ms} ms") from e

    try:
        await monitor.guard(page.wait_for_function(VIEWER_LOADED_SCRIPT))
    except PlaywrightTimeoutError as e:
        raise ReadinessTimeout("The viewer did not initialize") from e

    await monitor.guard(page.emulate_media(media="print"))

    try:
        await monitor.guard(
            page.wait_for_function(
                VIEWER_COMPLETE_SCRIPT,
                polling=READY_STATE_POLLING_MS,
                timeout=timeout_ms,
            )
        )
    except PlaywrightTimeoutError as e:
        raise ReadinessTimeout(f"Typesetting did not complete within {timeout_ms} ms") from e


async def capture_pdf(page: Page, remaining_ms: float) -> bytes:
    """
    Print the page to PDF using the CSS page size.

    Raises:
        CaptureTimeout: If printing takes longer than the remaining budget.
    """
    try:
        return await asyncio.wait_for(
            page.pdf(
                margin={"top": "0", "bottom": "0", "right": "0", "left": "0"},
                print_background=True,
                prefer_css_page_size=True,
            ),
            timeout=remaining_ms / 1000,
        )
    except TimeoutError as e:
        raise CaptureTimeout(f"PDF capture timed out after {remaining_ms:.0f} ms") from e


async def build_pdf(
    options: BuildOptions,
    browser_config: BrowserConfig | None = None,
    reporter: ProgressReporter | None = None,
) -> str:
    """
    Build the PDF described by `options`.

    Args:
        options: Resolved build options.
        browser_config: Browser session settings; None reads them from the environment.
        reporter: Receives per-entry progress; None logs it.

    Returns:
        Path of the written PDF.

    Raises:
        BuildError: On any fatal condition (browser unavailable, viewer failure, timeouts).
    """
    target = options.target
    in_container = check_container_environment()
    logger.info("Launching build environment")

    async with prepare_server(options) as viewer_full_url, BrowserSession(browser_config) as session:
        logger.debug("Viewer URL: %s", sanitize_url_for_logging(viewer_full_url))

        await session.launch(
            options.executable_chromium,
            sandbox=options.sandbox,
            use_custom_viewer=bool(options.viewer),
            in_container=in_container,
        )
        browser_version = session.version

        logger.info("Building pages")
        page = await session.new_page()

        correlator = EntryCorrelator(options.entries, options.workspace_dir, options.entry_context_dir, reporter)
        monitor = PageEventMonitor(correlator, verbose=options.verbose)
        monitor.attach(page)

        budget = TimeoutBudget(options.timeout)
        await wait_for_viewer(page, viewer_full_url, options.timeout, monitor)
        correlator.finish()

        document_data = await monitor.guard(extract_document_data(page))

        remaining_ms = budget.ensure_remaining()

        logger.info("Building PDF")
        pdf = await monitor.guard(capture_pdf(page, remaining_ms))
        await session.close()

    logger.info("Processing PDF")
    Path(target.path).parent.mkdir(parents=True, exist_ok=True)

    post = PostProcess.load(pdf)
    post.metadata(
        document_data.metadata,
        page_progression=document_data.page_progression,
        browser_version=browser_version,
        viewer_core_version=document_data.viewer_core_version,
        # With a custom viewer of unknown version the default creator may be wrong
        disable_creator_option=bool(options.viewer) and not document_data.viewer_core_version,
    )
    post.toc(document_data.toc)
    post.set_page_boxes(document_data.page_size_data)
    await post.save(
        target.path,
        preflight=target.preflight,
        preflight_option=target.preflight_option,
        image=options.image,
    )

    return target.path


def to_container_options(options: BuildOptions) -> BuildOptions:
    """Copy of `options` with every host path replaced by its container path."""

    def translate(location: str | None) -> str | None:
        return to_container_path(location) if location else location

    return options.model_copy(
        update={
            "input": to_container_path(options.input),
            "target": options.target.model_copy(update={"path": to_container_path(options.target.path)}),
            "entry_context_dir": to_container_path(options.entry_context_dir),
            "workspace_dir": to_container_path(options.workspace_dir),
            "custom_style": translate(options.custom_style),
            "custom_user_style": translate(options.custom_user_style),
            "entries": [
                entry.model_copy(update={"source": to_container_path(entry.source), "target": to_container_path(entry.target)})
                for entry in options.entries
            ],
            # The host browser is not available in the container
            "executable_chromium": None,
            "sandbox": False,
        }
    )


async def build_pdf_with_container(options: BuildOptions) -> str:
    """
    Run `build_pdf` inside a container of `options.image`.

    Returns:
        Host path of the written PDF.

    Raises:
        ContainerExecutionError: If the container cannot run or the build inside fails.
    """
    bypassed_options = to_container_options(options)
    logger.info("Building PDF in container %s", options.image)

    await run_container(
        image=options.image,
        volumes=collect_volume_args([options.workspace_dir, os.path.dirname(os.path.abspath(options.target.path))]),
        command_args=["--bypassed-pdf-builder-option", bypassed_options.model_dump_json()],
        entrypoint=BUILDER_ENTRYPOINT,
    )

    return options.target.path
