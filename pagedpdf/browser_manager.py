"""
Chromium browser session management for PDF builds.

A BrowserSession owns exactly one Chromium process, started through
Playwright, and at most one page for the lifetime of a single build. When the
configured executable is missing but lies inside the Playwright managed
browsers directory, the browser is downloaded on demand.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import playwright
from playwright.async_api import async_playwright

from pagedpdf.exceptions import BrowserUnavailable

if TYPE_CHECKING:
    from types import TracebackType

    from playwright.async_api import Browser, Page, Playwright

logger = logging.getLogger(__name__)


@dataclass
class BrowserConfig:
    """
    Environment dependent settings for BrowserSession.

    Attributes:
        launch_delay_ms: Pause between browser launch and page creation (0-10000, default 1000).
            Some Chromium builds drop the first page when it is opened right after startup.
        browsers_path: Directory holding Playwright managed browsers. None resolves it from
            PLAYWRIGHT_BROWSERS_PATH or the platform cache directory.
    """

    launch_delay_ms: int | None = None
    browsers_path: str | None = None


def check_browser_availability(executable_path: str) -> bool:
    """Return True if the browser executable exists on disk."""
    return Path(executable_path).is_file()


def managed_browsers_dir() -> Path:
    """
    Directory in which Playwright installs its browsers.

    Mirrors Playwright's own lookup: PLAYWRIGHT_BROWSERS_PATH wins ("0" selects the
    directory inside the installed package), otherwise the per-user cache directory.
    """
    env_value = os.environ.get("PLAYWRIGHT_BROWSERS_PATH")
    if env_value == "0":
        return Path(playwright.__file__).parent / "driver" / "package" / ".local-browsers"
    if env_value:
        return Path(env_value).expanduser()
    if sys.platform == "win32":
        return Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local")) / "ms-playwright"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches" / "ms-playwright"
    return Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache")) / "ms-playwright"


def is_managed_browser_path(executable_path: str, browsers_dir: Path | None = None) -> bool:
    """Return True if the executable lies inside the Playwright managed browsers directory."""
    root = (browsers_dir or managed_browsers_dir()).resolve()
    return Path(executable_path).resolve().is_relative_to(root)


async def download_browser() -> None:
    """
    Install the Playwright managed Chromium.

    Raises:
        BrowserUnavailable: If the installer exits with a non-zero status.
    """
    logger.info("Downloading Chromium, this may take a while...")
    process = await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        "playwright",
        "install",
        "chromium",
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        logger.error("Chromium download failed: %s", stderr.decode(errors="replace").strip())
        raise BrowserUnavailable("Failed to download the browser")
    logger.debug("Chromium installer output: %s", stdout.decode(errors="replace").strip())
    logger.info("Chromium downloaded successfully")


def build_launch_args(sandbox: bool, use_custom_viewer: bool, in_container: bool) -> list[str]:
    """Chromium command line flags for a build."""
    args = ["--allow-file-access-from-files"]
    if not sandbox:
        args.append("--no-sandbox")
    if not use_custom_viewer:
        args.append("--disable-web-security")  # The bundled viewer reads documents from file URLs
    if in_container:
        args.append("--disable-dev-shm-usage")
    return args


class BrowserSession:
    """
    A single Chromium process with at most one page, used by one build.

    Usable as an async context manager; the browser is always closed when the
    block is left, including on failure.
    """

    def __init__(self, config: BrowserConfig | None = None) -> None:
        if config is None:
            config = BrowserConfig()

        self.launch_delay_ms = self._validate_launch_delay(config.launch_delay_ms)
        self.browsers_dir = Path(config.browsers_path) if config.browsers_path else managed_browsers_dir()

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._page: Page | None = None

    async def __aenter__(self) -> BrowserSession:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def launch(
        self,
        executable_path: str | None = None,
        sandbox: bool = True,
        use_custom_viewer: bool = False,
        in_container: bool = False,
    ) -> None:
        """
        Start Playwright and launch Chromium.

        Args:
            executable_path: Browser executable; None selects the Playwright managed Chromium.
            sandbox: Keep the Chromium sandbox enabled.
            use_custom_viewer: A custom viewer is used, so web security stays enabled.
            in_container: Running inside a container, so /dev/shm is not used.

        Raises:
            BrowserUnavailable: If the executable is missing and cannot be downloaded.
        """
        if self._browser is not None:
            logger.warning("Browser already launched")
            return

        self._playwright = await async_playwright().start()
        try:
            executable = executable_path or self._playwright.chromium.executable_path
            logger.debug("Executing Chromium path: %s", executable)

            if not check_browser_availability(executable):
                if is_managed_browser_path(executable, self.browsers_dir):
                    # The managed browser is not installed until first use
                    await download_browser()
                else:
                    raise BrowserUnavailable(f"Cannot find the browser. Please check the executable chromium path: {executable}")

            self._browser = await self._playwright.chromium.launch(
                headless=True,
                executable_path=executable,
                args=build_launch_args(sandbox, use_custom_viewer, in_container),
                # Startup can be extremely slow on some CI runners, so launch is not bounded
                timeout=0,
            )
        except Exception:
            await self.close()
            raise

        logger.debug("Browser launched, version=%s", self.version)

    @property
    def version(self) -> str | None:
        """Browser version (e.g. "131.0.6778.69"), or None if not launched."""
        if self._browser is None:
            return None
        version_string = self._browser.version
        if "/" in version_string:
            return version_string.split("/")[1]
        return version_string

    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def new_page(self) -> Page:
        """
        Open the single page of this session.

        Raises:
            RuntimeError: If the browser is not launched or a page already exists.
        """
        if self._browser is None:
            raise RuntimeError("Browser is not launched")
        if self._page is not None:
            raise RuntimeError("A page is already open in this session")

        if self.launch_delay_ms:
            await asyncio.sleep(self.launch_delay_ms / 1000)
        self._page = await self._browser.new_page()
        return self._page

    async def close(self) -> None:
        """Close the browser and stop Playwright. Safe to call more than once."""
        try:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except Exception as e:  # noqa: BLE001
                    logger.error("Error closing browser: %s", e)

            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:  # noqa: BLE001
                    logger.error("Error stopping Playwright: %s", e)
        finally:
            self._page = None
            self._browser = None
            self._playwright = None

    def _validate_launch_delay(self, value: int | None) -> int:
        """
        Validate the launch delay.

        Args:
            value: Delay in milliseconds or None to read PAGEDPDF_LAUNCH_DELAY_MS.

        Returns:
            Validated delay in milliseconds (0 - 10000).
        """
        default = 1000
        if value is None:
            try:
                value = int(os.environ.get("PAGEDPDF_LAUNCH_DELAY_MS", default))
            except ValueError:
                return default

        if not (0 <= value <= 10000):
            logger.warning("PAGEDPDF_LAUNCH_DELAY_MS must be between 0 and 10000, using default: %s", default)
            return default

        return value
