"""Headless browser rendering for JavaScript-built search pages."""

import asyncio
import logging
import random
from typing import List, Optional

from playwright.async_api import Browser, BrowserContext, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pricescan.config import settings
from pricescan.ingest.fetchers.static import USER_AGENTS

logger = logging.getLogger(__name__)


class RenderTimeout(Exception):
    """The page did not finish loading in time."""


class RenderError(Exception):
    """The browser failed to load or render the page."""


class HeadlessRenderer:
    """Render pages in headless Chromium and hand back their HTML."""

    STEALTH_ARGS = [
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-infobars",
        "--disable-extensions",
    ]

    def __init__(
        self,
        headers: dict[str, str] | None = None,
        proxy_url: str | None = None,
        timeout_ms: int | None = None,
    ):
        self.headers = headers or {}
        self.proxy_url = proxy_url
        self.timeout_ms = timeout_ms or settings.headless_timeout_ms

        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._init_lock = asyncio.Lock()

    async def start(self) -> None:
        """Launch the browser and a context. Safe to call more than once."""
        async with self._init_lock:
            if self._context is not None:
                return

            self._playwright = await async_playwright().start()
            launch_options = {"headless": True, "args": self.STEALTH_ARGS}
            if self.proxy_url:
                launch_options["proxy"] = {"server": self.proxy_url}
            self._browser = await self._playwright.chromium.launch(**launch_options)
            self._context = await self._browser.new_context(
                user_agent=random.choice(USER_AGENTS),
                viewport={"width": 1920, "height": 1080},
                locale="nl-NL",
                extra_http_headers=self.headers,
            )
            logger.info("Headless browser started")

    async def render(self, url: str, wait_selectors: List[str] | None = None) -> str:
        """
        Load ``url`` and return the page HTML.

        Waits for the first of ``wait_selectors`` to appear; if none shows up the
        HTML is returned anyway and the caller's parser decides what it means.

        Raises:
            RenderTimeout: If navigation times out
            RenderError: If the browser fails to load the page
        """
        if self._context is None:
            await self.start()

        page = await self._context.new_page()
        try:
            try:
                await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
            except PlaywrightTimeoutError as e:
                raise RenderTimeout(f"Timed out loading {url}") from e
            except PlaywrightError as e:
                raise RenderError(f"Failed to load {url}: {e}") from e

            if wait_selectors:
                try:
                    await page.wait_for_selector(
                        ", ".join(wait_selectors), timeout=min(self.timeout_ms, 10000)
                    )
                except PlaywrightTimeoutError:
                    logger.debug(f"No result selector appeared on {url}")

            return await page.content()
        finally:
            await page.close()

    async def close(self) -> None:
        """Close browser and cleanup."""
        if self._context:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.error(f"Error closing browser context: {e}")
            self._context = None

        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
