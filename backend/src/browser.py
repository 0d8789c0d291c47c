import asyncio
import sys
from typing import Any, Awaitable, Callable, List, Optional

from .logging_setup import logger
from .errors import RendererUnavailable
from . import config


def default_launch_args() -> List[str]:
    if sys.platform.startswith("linux"):
        return ["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"]
    if sys.platform.startswith("win"):
        # Sandbox flags are unnecessary on Windows and can be harmful
        return ["--disable-gpu"]
    return ["--no-sandbox", "--disable-dev-shm-usage"]


class BrowserManager:
    """Owns the single long-lived Chromium instance shared by every batch.

    The browser is launched lazily on the first `acquire()`. Launch is
    serialized by `_start_lock`, so concurrent callers wait for the in-flight
    launch and then share its result. A ``disconnected`` event (crash or
    external close) drops the cached handle and the next `acquire()` launches
    a replacement.
    """

    def __init__(self, headless: Optional[bool] = None,
                 launcher: Optional[Callable[[], Awaitable[Any]]] = None):
        self._headless = config.HEADLESS if headless is None else headless
        self._launcher = launcher or self._launch_chromium
        self._playwright = None
        self._browser = None
        self._start_lock = asyncio.Lock()
        self.launch_count = 0

    @property
    def browser(self):
        return self._browser

    def _is_alive(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def acquire(self):
        """Return the running browser, launching it if needed."""
        if self._is_alive():
            return self._browser
        async with self._start_lock:
            if self._is_alive():
                return self._browser
            if self._browser is not None:
                logger.warning("Browser disconnected or not started. Re-initializing...")
                self._browser = None
            try:
                browser = await self._launcher()
            except Exception as e:
                raise RendererUnavailable(f"Failed to launch browser: {e}") from e
            browser.on("disconnected", self._on_disconnected)
            self._browser = browser
            self.launch_count += 1
            logger.info(f"Browser launched (launch #{self.launch_count}, headless={self._headless})")
            return browser

    def _on_disconnected(self, browser=None):
        if browser is None or browser is self._browser:
            logger.warning("Browser disconnected")
            self._browser = None

    async def _launch_chromium(self):
        from playwright.async_api import async_playwright
        if self._playwright is None:
            logger.info("Starting Playwright driver...")
            self._playwright = await async_playwright().start()

        try:
            return await self._playwright.chromium.launch(headless=self._headless, args=default_launch_args())
        except Exception as e:
            logger.warning(f"Chromium launch with custom args failed: {e}; retrying without custom args")
            try:
                return await self._playwright.chromium.launch(headless=self._headless)
            except Exception as e2:
                logger.error(f"Failed to launch Playwright browser: {e2}")
                await self._stop_driver()
                raise

    async def _stop_driver(self):
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug(f"Error stopping playwright: {e}")
            self._playwright = None

    async def release(self):
        """Close the browser at process shutdown. Synchronized with `acquire()`."""
        async with self._start_lock:
            browser, self._browser = self._browser, None
            if browser is not None:
                try:
                    await browser.close()
                except Exception as e:
                    logger.warning(f"Error closing browser: {e}")
            await self._stop_driver()
            logger.info("Browser released")
