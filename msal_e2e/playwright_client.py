"""
Direct Playwright client for the harness.

One browser process is launched per run (expensive); every scenario gets its
own incognito BrowserContext (fresh cookies and localStorage) which it owns
exclusively and closes when done.

Usage:
    async with PlaywrightClient(headless=True) as client:
        async with client.isolated_surface() as surface:
            await surface.goto("http://localhost:30662/")
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import anyio
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from msal_e2e.errors import HarnessError
from msal_e2e.surface import Surface

logger = logging.getLogger(__name__)


class PlaywrightClient:
    """
    Owns the Playwright driver and the shared browser process.

    Args:
        browser_type: Browser to use (chromium, firefox, webkit)
        headless: Run in headless mode
        timeout: Default timeout in milliseconds for every context
    """

    def __init__(
        self,
        browser_type: str = "chromium",
        headless: bool = True,
        timeout: float = 8000,
    ):
        self.browser_type = browser_type
        self.headless = headless
        self.timeout = timeout

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> "PlaywrightClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """Launch the browser process."""
        self._playwright = await async_playwright().start()

        if self.browser_type == "firefox":
            launcher = self._playwright.firefox
        elif self.browser_type == "webkit":
            launcher = self._playwright.webkit
        else:
            launcher = self._playwright.chromium
        self._browser = await launcher.launch(headless=self.headless)
        logger.debug("Launched %s (headless=%s)", self.browser_type, self.headless)

    async def new_context(self, **kwargs: Any) -> BrowserContext:
        """Create a fresh incognito context with the harness default timeout."""
        if not self._browser:
            raise RuntimeError("Client not connected. Use 'async with' or call connect()")

        try:
            context = await self._browser.new_context(**kwargs)
        except PlaywrightError as exc:
            raise HarnessError(name="new_context", payload={"browser": self.browser_type}, message=str(exc)) from exc
        context.set_default_timeout(self.timeout)
        return context

    @asynccontextmanager
    async def isolated_surface(self, name: str = "main", **kwargs: Any) -> AsyncIterator[Surface]:
        """Yield a Surface on a new page in its own context; the context is always closed."""
        context = await self.new_context(**kwargs)
        try:
            try:
                page = await context.new_page()
            except PlaywrightError as exc:
                raise HarnessError(name="new_page", payload={"surface": name}, message=str(exc)) from exc
            yield Surface(page, name=name, timeout_ms=self.timeout)
        finally:
            with anyio.CancelScope(shield=True):
                try:
                    await context.close()
                except PlaywrightError as exc:
                    logger.warning("Failed to close context for %s: %s", name, exc)

    async def close(self) -> None:
        """Close the browser and stop the driver."""
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
