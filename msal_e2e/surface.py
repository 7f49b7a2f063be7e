"""Thin wrapper around a Playwright page (or popup) for the auth flows."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, TimeoutError as PlaywrightTimeout

from msal_e2e.errors import CaptureError, ElementNotFoundError, HarnessError

logger = logging.getLogger(__name__)

SNAPSHOT_SCRIPT = "() => Object.assign({}, window.localStorage)"
REMOVE_KEY_SCRIPT = "(key) => window.localStorage.removeItem(key)"


class Surface:
    """A browser page or popup window the flows can drive independently."""

    def __init__(self, page: Page, name: str = "main", timeout_ms: float = 8000) -> None:
        self._page = page
        self.name = name
        self.timeout_ms = timeout_ms
        self.popups: List["Surface"] = []
        self._page.on("popup", self._track_popup)

    def _track_popup(self, page: Page) -> None:
        popup = Surface(page, name=f"{self.name}-popup-{len(self.popups) + 1}", timeout_ms=self.timeout_ms)
        self.popups.append(popup)
        logger.debug("Popup opened from %s: %s", self.name, popup.name)

    @property
    def page(self) -> Page:
        return self._page

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str, wait_until: str = "load") -> None:
        try:
            await self._page.goto(url, wait_until=wait_until, timeout=self.timeout_ms)
        except PlaywrightError as exc:
            raise HarnessError(name="goto", payload={"url": url}, message=str(exc)) from exc

    async def reload(self) -> None:
        try:
            await self._page.reload(wait_until="load", timeout=self.timeout_ms)
        except PlaywrightError as exc:
            raise HarnessError(name="reload", payload={"url": self.url}, message=str(exc)) from exc

    async def click(self, selector: str) -> None:
        """Click element."""
        try:
            await self._page.click(selector, timeout=self.timeout_ms)
        except PlaywrightTimeout as exc:
            raise ElementNotFoundError(name="click", payload={"selector": selector}, message=str(exc)) from exc
        except PlaywrightError as exc:
            raise HarnessError(name="click", payload={"selector": selector}, message=str(exc)) from exc

    async def type(self, selector: str, text: str) -> None:
        """Type into a field that must already be rendered.

        Does not wait for the element: a missing field fails right away.
        """
        try:
            handle = await self._page.query_selector(selector)
        except PlaywrightError as exc:
            raise HarnessError(name="type", payload={"selector": selector}, message=str(exc)) from exc
        if handle is None:
            raise ElementNotFoundError(
                name="type",
                payload={"selector": selector, "surface": self.name},
                message=f"Element '{selector}' is not on the page",
            )
        try:
            await self._page.fill(selector, text, timeout=self.timeout_ms)
        except PlaywrightError as exc:
            raise HarnessError(name="type", payload={"selector": selector}, message=str(exc)) from exc

    async def wait_for_selector(self, selector: str, timeout: Optional[float] = None) -> None:
        """Wait until the selector is visible; ``timeout`` is in seconds."""
        timeout_ms = self.timeout_ms if timeout is None else timeout * 1000
        try:
            await self._page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise ElementNotFoundError(
                name="wait_for_selector",
                payload={"selector": selector, "surface": self.name, "timeout_ms": timeout_ms},
                message=f"Element '{selector}' did not appear within {timeout_ms / 1000:.1f}s",
            ) from exc
        except PlaywrightError as exc:
            raise HarnessError(name="wait_for_selector", payload={"selector": selector}, message=str(exc)) from exc

    async def wait_for_navigation_idle(self, url_prefix: Optional[str] = None) -> None:
        """Wait for the network to go idle, optionally after reaching ``url_prefix``.

        Passing the expected destination avoids settling on the page we are
        navigating away from.
        """
        try:
            if url_prefix:
                await self._page.wait_for_url(
                    lambda url: url.startswith(url_prefix),
                    wait_until="networkidle",
                    timeout=self.timeout_ms,
                )
            else:
                await self._page.wait_for_load_state("networkidle", timeout=self.timeout_ms)
        except PlaywrightError as exc:
            raise HarnessError(
                name="wait_for_navigation_idle",
                payload={"url": self.url, "expected": url_prefix},
                message=str(exc),
            ) from exc

    async def screenshot(self, path: Path) -> Path:
        """Persist a full-page PNG of the current state."""
        try:
            await self._page.screenshot(path=str(path), type="png", full_page=True)
        except PlaywrightError as exc:
            raise CaptureError(name="screenshot", payload={"path": str(path), "surface": self.name}, message=str(exc)) from exc
        return path

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Execute JavaScript in the page context."""
        try:
            return await self._page.evaluate(script, arg)
        except PlaywrightError as exc:
            raise HarnessError(name="evaluate", payload={"script": script}, message=str(exc)) from exc

    async def local_storage(self) -> Dict[str, str]:
        """Read every localStorage entry in a single round trip."""
        entries = await self.evaluate(SNAPSHOT_SCRIPT)
        return dict(entries or {})

    async def remove_storage_key(self, key: str) -> None:
        await self.evaluate(REMOVE_KEY_SCRIPT, key)

    def once_popup(self, callback: Callable[["Surface"], None]) -> None:
        """Call ``callback`` with the next popup opened from this surface."""

        def _handler(page: Page) -> None:
            for popup in self.popups:
                if popup.page is page:
                    callback(popup)
                    return
            self._track_popup(page)
            callback(self.popups[-1])

        self._page.once("popup", _handler)

    def once_closed(self, callback: Callable[[], None]) -> None:
        self._page.once("close", lambda _page: callback())

    def is_closed(self) -> bool:
        return self._page.is_closed()

    async def close(self) -> None:
        if not self._page.is_closed():
            await self._page.close()

    async def close_stray_popups(self) -> int:
        """Force-close popups left open by a failed flow."""
        closed = 0
        for popup in self.popups:
            if popup.is_closed():
                continue
            try:
                await popup.close()
                closed += 1
            except PlaywrightError as exc:
                logger.warning("Error closing popup %s: %s", popup.name, exc)
        if closed:
            logger.info("Closed %d stray popup(s) on %s", closed, self.name)
        return closed

    def __repr__(self) -> str:
        return f"Surface(name={self.name}, url={self._page.url})"
