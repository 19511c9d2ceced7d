"""
In-process Playwright browser for harness tests.

One browser per test, one isolated context per logical user. Every context
created through the client is tracked and closed on exit, so a test that
opens a second session (e.g. to check concurrent logins) cannot leak it.

Usage:
    async with PlaywrightClient.from_settings(get_settings()) as client:
        page = client.page
        await page.goto(frontend.page_url("/login"))
"""

import logging
import os
from typing import List, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from e2e_harness.config import HarnessSettings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
BROWSER_TYPES = ("chromium", "firefox", "webkit")


class PlaywrightClient:
    """Launches a browser and hands out isolated contexts and pages."""

    def __init__(
        self,
        browser_type: str = "chromium",
        headless: bool = True,
        timeout: int = DEFAULT_TIMEOUT_MS,
        slow_mo: Optional[float] = None,
    ):
        if browser_type not in BROWSER_TYPES:
            raise ValueError(f"Unknown browser type {browser_type!r}, expected one of {BROWSER_TYPES}")
        self.browser_type = browser_type
        self.headless = headless
        self.timeout = timeout
        self.slow_mo = slow_mo

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._contexts: List[BrowserContext] = []
        self._page: Optional[Page] = None

    @classmethod
    def from_settings(cls, settings: HarnessSettings) -> "PlaywrightClient":
        """Client configured from ``HarnessSettings`` plus ``PLAYWRIGHT_BROWSER`` / ``PLAYWRIGHT_SLOW_MO``."""
        slow_mo = os.getenv("PLAYWRIGHT_SLOW_MO")
        return cls(
            browser_type=os.getenv("PLAYWRIGHT_BROWSER", "chromium"),
            headless=settings.playwright_headless,
            slow_mo=float(slow_mo) if slow_mo else None,
        )

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self):
        self._playwright = await async_playwright().start()
        launcher = getattr(self._playwright, self.browser_type)
        options = {"headless": self.headless}
        if self.slow_mo:
            options["slow_mo"] = self.slow_mo
        logger.debug(f"Launching {self.browser_type} (headless={self.headless})")
        self._browser = await launcher.launch(**options)

        context = await self.new_context()
        self._page = await context.new_page()

    async def new_context(self, base_url: Optional[str] = None, **kwargs) -> BrowserContext:
        """Fresh cookie jar and storage; ``base_url`` lets pages use relative ``goto`` paths."""
        if not self._browser:
            raise RuntimeError("Client not connected. Use 'async with' or call connect()")
        if base_url:
            kwargs["base_url"] = base_url
        context = await self._browser.new_context(**kwargs)
        context.set_default_timeout(self.timeout)
        self._contexts.append(context)
        return context

    async def new_page(self) -> Page:
        """Another tab sharing the default context's session."""
        return await self.context.new_page()

    async def close(self):
        # contexts first; closing one closes its pages
        while self._contexts:
            context = self._contexts.pop()
            try:
                await context.close()
            except Exception as e:
                logger.debug(f"Ignoring error closing browser context: {e}")
        self._page = None

        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    @property
    def browser(self) -> Browser:
        if not self._browser:
            raise RuntimeError("Client not connected")
        return self._browser

    @property
    def context(self) -> BrowserContext:
        if not self._contexts:
            raise RuntimeError("Client not connected")
        return self._contexts[0]

    @property
    def page(self) -> Page:
        if not self._page:
            raise RuntimeError("Client not connected or page not created")
        return self._page
