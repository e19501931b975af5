"""
Observation of page events while the viewer typesets the document.

PageEventMonitor subscribes to the page's `pageerror`, `console` and `response`
events. Handlers run on the event loop between the awaited build phases; they
only log and update progress bookkeeping. The single exception is an error
reported by the viewer bootstrap script, which is stored and re-raised in the
main build sequence by `PageEventMonitor.guard`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from typing import TYPE_CHECKING, Protocol, TypeVar
from urllib.parse import unquote, urlparse

from pagedpdf.exceptions import RendererLoadFailure
from pagedpdf.sanitization import sanitize_for_logging, sanitize_url_for_logging

if TYPE_CHECKING:
    from collections.abc import Awaitable, Sequence

    from playwright.async_api import ConsoleMessage, Error, Page, Response

    from pagedpdf.options import ManuscriptEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

VIEWER_BOOTSTRAP_SCRIPT = re.compile(r"/vivliostyle-viewer\.js$")
# Emitted by the viewer's profiler on every layout slice
TIME_SLICE_MESSAGE = re.compile(r"time slice")


class ProgressReporter(Protocol):
    def start(self, label: str) -> None: ...

    def succeed(self, label: str) -> None: ...


class LoggingProgressReporter:
    """Reports entry progress through the module logger."""

    def start(self, label: str) -> None:
        logger.info("Building %s", label)

    def succeed(self, label: str) -> None:
        logger.info("Built %s", label)


class EntryCorrelator:
    """
    Maps viewer network responses back to manuscript entries.

    Keeps a cursor on the entry currently being typeset: the first matched entry
    is started, and every response for a different entry completes the previous
    one and starts the new one.
    """

    def __init__(
        self,
        entries: Sequence[ManuscriptEntry],
        workspace_dir: str,
        entry_context_dir: str,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self.entries = list(entries)
        self.workspace_dir = workspace_dir
        self.entry_context_dir = entry_context_dir
        self.reporter = reporter or LoggingProgressReporter()
        self.current_entry: ManuscriptEntry | None = None

    def resolve(self, url: str) -> ManuscriptEntry | None:
        """Find the entry whose processed document was requested by `url`."""
        parsed = urlparse(url)
        path = unquote(parsed.path)
        for entry in self.entries:
            if parsed.scheme == "file":
                if entry.target == path:
                    return entry
            elif os.path.relpath(entry.target, self.workspace_dir).replace(os.sep, "/") == path[1:]:
                return entry
        return None

    def handle_url(self, url: str) -> ManuscriptEntry | None:
        entry = self.resolve(url)
        if entry is None:
            return None
        if self.current_entry is None:
            self.current_entry = entry
            self.reporter.start(self.describe(entry))
            return entry
        if entry != self.current_entry:
            self.reporter.succeed(self.describe(self.current_entry))
            self.reporter.start(self.describe(entry))
            self.current_entry = entry
        return entry

    def finish(self) -> None:
        """Mark the entry under the cursor as complete once typesetting is done."""
        if self.current_entry is not None:
            self.reporter.succeed(self.describe(self.current_entry))

    def describe(self, entry: ManuscriptEntry) -> str:
        label = os.path.relpath(entry.source, self.entry_context_dir)
        if entry.title:
            return f"{label} {entry.title}"
        return label


class PageEventMonitor:
    """Subscribes to page events and classifies them as fatal or informational."""

    def __init__(self, correlator: EntryCorrelator, verbose: bool = False) -> None:
        self.correlator = correlator
        self.verbose = verbose
        self.failure: RendererLoadFailure | None = None
        self._failed = asyncio.Event()

    def attach(self, page: Page) -> None:
        page.on("pageerror", self.on_page_error)
        page.on("console", self.on_console)
        page.on("response", self.on_response)

    def on_page_error(self, error: Error) -> None:
        logger.error("Page error: %s", sanitize_for_logging(error.message))

    def on_console(self, message: ConsoleMessage) -> None:
        text = message.text
        if message.type == "error" and VIEWER_BOOTSTRAP_SCRIPT.search(message.location.get("url") or ""):
            logger.error("Viewer error: %s", sanitize_for_logging(text))
            self.fail(RendererLoadFailure(text))
            return
        if message.type == "debug" and TIME_SLICE_MESSAGE.search(text):
            return
        if not self.verbose:
            return
        if message.type == "error":
            logger.error("Console: %s", sanitize_for_logging(text))
        else:
            logger.info("Console: %s", sanitize_for_logging(text))

    def on_response(self, response: Response) -> None:
        url = response.url
        status = response.status
        logger.debug("viewer:response %d %s", status, sanitize_url_for_logging(url))

        self.correlator.handle_url(url)

        if 200 <= status < 300:
            return
        # file: responses carry no status code
        if url.startswith("file://") and response.ok:
            return
        logger.error("Failed to load resource: %d %s", status, sanitize_url_for_logging(url))

    def fail(self, error: RendererLoadFailure) -> None:
        if self.failure is None:
            self.failure = error
        self._failed.set()

    def raise_if_failed(self) -> None:
        if self.failure is not None:
            raise self.failure

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await a build phase, aborting it as soon as the viewer reports a fatal error.

        Raises:
            RendererLoadFailure: If the viewer failed before or during the phase.
        """
        if self.failure is not None:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise self.failure
        task = asyncio.ensure_future(awaitable)
        failed = asyncio.ensure_future(self._failed.wait())
        try:
            await asyncio.wait({task, failed}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            failed.cancel()

        if self.failure is not None:
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:  # noqa: BLE001
                logger.debug("Phase aborted after viewer failure: %s", e)
            raise self.failure

        return task.result()
