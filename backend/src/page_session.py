from contextlib import asynccontextmanager
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .logging_setup import logger
from .errors import NavigationError
from . import config


@asynccontextmanager
async def open_page(browser, user_agent: Optional[str] = None):
    """Yield a fresh page in its own browser context; the context is closed on every exit path."""
    context = await browser.new_context(user_agent=user_agent or config.USER_AGENT)
    try:
        page = await context.new_page()
        yield page
    finally:
        try:
            await context.close()
        except Exception as e:
            # The browser may already be gone; the page is unusable either way
            logger.debug(f"Error closing browser context: {e}")


async def navigate(page, url: str, timeout_ms: int):
    """Load `url` and wait for the network to go idle, or fail with NavigationError."""
    try:
        return await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
    except PlaywrightTimeoutError as e:
        raise NavigationError(f"Navigation timeout of {timeout_ms} ms exceeded for {url}") from e
    except PlaywrightError as e:
        raise NavigationError(getattr(e, "message", None) or str(e)) from e
