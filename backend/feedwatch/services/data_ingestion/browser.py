"""
Headless Chromium access.

Every browser use goes through browser_page(), which owns the whole
Playwright stack (driver, browser, context, page) for exactly one
extraction attempt and tears it down on every exit path.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Protocol
import logging

from playwright.async_api import Page, async_playwright

logger = logging.getLogger(__name__)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

NAVIGATION_TIMEOUT_MS = 20000
CHALLENGE_TIMEOUT_MS = 10000
NETWORK_IDLE_TIMEOUT_MS = 8000


class PageRenderer(Protocol):
    """Anything that turns a URL into rendered HTML."""

    async def render(self, url: str, timeout_ms: int = NAVIGATION_TIMEOUT_MS) -> Optional[str]:
        ...


@asynccontextmanager
async def browser_page(user_agent: str, headless: bool = True) -> AsyncIterator[Page]:
    """Yield a fresh page; page, context, browser and driver are closed afterwards."""
    playwright = await async_playwright().start()
    browser = None
    context = None
    page = None
    try:
        browser = await playwright.chromium.launch(headless=headless, args=BROWSER_ARGS)
        context = await browser.new_context(
            user_agent=user_agent,
            viewport={"width": 1920, "height": 1080},
        )
        page = await context.new_page()
        yield page
    finally:
        for resource in (page, context, browser):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.debug(f"Browser cleanup failed: {e}")
        await playwright.stop()


class BrowserRenderer:
    """Renders pages in headless Chromium, waiting out bot challenges."""

    def __init__(self, user_agent: str, headless: bool = True):
        self.user_agent = user_agent
        self.headless = headless

    async def render(self, url: str, timeout_ms: int = NAVIGATION_TIMEOUT_MS) -> Optional[str]:
        """
        Load a URL and return the rendered HTML.

        Waits for DOMContentLoaded, then for a Cloudflare interstitial to
        clear if one is showing, then briefly for network idle.
        """
        async with browser_page(self.user_agent, self.headless) as page:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

            title = await page.title()
            if "just a moment" in title.lower():
                logger.info(f"Challenge page at {url}, waiting for it to clear")
                try:
                    await page.wait_for_function(
                        "() => !document.title.toLowerCase().includes('just a moment')",
                        timeout=CHALLENGE_TIMEOUT_MS,
                    )
                except Exception as e:
                    logger.warning(f"Challenge at {url} did not clear: {e}")
                    return None

            try:
                await page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_TIMEOUT_MS)
            except Exception:
                logger.debug(f"Network never went idle for {url}, using current DOM")

            return await page.content()
