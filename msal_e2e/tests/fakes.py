"""In-memory stand-ins for Playwright pages and the MSAL sample app.

FakePage implements the slice of ``playwright.async_api.Page`` that
:class:`msal_e2e.surface.Surface` uses. The DOM is a set of visible
selectors; FakeSampleApp reacts to clicks the way the ADFS sample does
(redirect to the identity provider, popup windows, cache writes).
"""
from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from msal_e2e.surface import REMOVE_KEY_SCRIPT, SNAPSHOT_SCRIPT, Surface

IDP_URL = "https://fs.msidlab8.com/adfs/oauth2/authorize?client-request-id=fake"
PNG_HEADER = b"\x89PNG\r\n\x1a\n"

HOME = {"#SignIn"}
SIGN_IN_MENU = {"#loginRedirect", "#loginPopup"}
LOGGED_IN = {"#getAccessTokenRedirect", "#getAccessTokenPopup", "#getAccessTokenSilent"}
LOGIN_FORM = {"#loginArea", "#userNameInput", "#passwordInput", "#submitButton"}


class FakeBrowserContext:
    """Shared localStorage + page list, like an incognito context."""

    def __init__(self, app: Optional["FakeSampleApp"] = None) -> None:
        self.app = app
        self.storage: Dict[str, str] = {}
        self.pages: List["FakePage"] = []
        self.closed = False
        self.default_timeout: Optional[float] = None

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    async def new_page(self, url: str = "about:blank") -> "FakePage":
        page = FakePage(self, url=url)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        for page in list(self.pages):
            await page.close()
        self.closed = True


class FakePage:
    def __init__(self, context: FakeBrowserContext, url: str = "about:blank") -> None:
        self.context = context
        self.url = url
        self.visible: Set[str] = set()
        self.values: Dict[str, str] = {}
        self.opener: Optional["FakePage"] = None
        self.clicks: List[str] = []
        self.screenshots: List[str] = []
        self._listeners: List[Tuple[str, Callable[[Any], None], bool]] = []
        self._closed = False

    # -- events ---------------------------------------------------------------
    def on(self, event: str, callback: Callable[[Any], None]) -> None:
        self._listeners.append((event, callback, False))

    def once(self, event: str, callback: Callable[[Any], None]) -> None:
        self._listeners.append((event, callback, True))

    def emit(self, event: str, arg: Any) -> None:
        for entry in list(self._listeners):
            name, callback, once = entry
            if name != event:
                continue
            if once:
                self._listeners.remove(entry)
            callback(arg)

    def open_popup(self, url: str = IDP_URL, visible: Optional[Set[str]] = None) -> "FakePage":
        popup = FakePage(self.context, url=url)
        popup.opener = self
        popup.visible = set(visible or ())
        self.context.pages.append(popup)
        self.emit("popup", popup)
        return popup

    # -- helpers --------------------------------------------------------------
    def _check_open(self) -> None:
        if self._closed:
            raise PlaywrightError("Target page, context or browser has been closed")

    async def _wait_until(self, predicate: Callable[[], bool], timeout: float, what: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout / 1000
        while True:
            self._check_open()
            if predicate():
                return
            if loop.time() >= deadline:
                raise PlaywrightTimeout(f"Timeout {timeout:.0f}ms exceeded waiting for {what}")
            await asyncio.sleep(0.005)

    # -- Page API -------------------------------------------------------------
    async def goto(self, url: str, wait_until: str = "load", timeout: float = 30000) -> None:
        self._check_open()
        self.url = url
        if self.context.app:
            self.context.app.render(self)

    async def reload(self, wait_until: str = "load", timeout: float = 30000) -> None:
        self._check_open()
        if self.context.app:
            self.context.app.render(self)

    async def click(self, selector: str, timeout: float = 30000) -> None:
        await self._wait_until(lambda: selector in self.visible, timeout, selector)
        self.clicks.append(selector)
        if self.context.app:
            self.context.app.on_click(self, selector)

    async def query_selector(self, selector: str) -> Optional[object]:
        self._check_open()
        return object() if selector in self.visible else None

    async def fill(self, selector: str, value: str, timeout: float = 30000) -> None:
        await self._wait_until(lambda: selector in self.visible, timeout, selector)
        self.values[selector] = value

    async def wait_for_selector(self, selector: str, state: str = "visible", timeout: float = 30000) -> None:
        await self._wait_until(lambda: selector in self.visible, timeout, selector)

    async def wait_for_url(self, url: Callable[[str], bool], wait_until: str = "load", timeout: float = 30000) -> None:
        await self._wait_until(lambda: url(self.url), timeout, "url")

    async def wait_for_load_state(self, state: str = "load", timeout: float = 30000) -> None:
        self._check_open()

    async def screenshot(self, path: str, type: str = "png", full_page: bool = False) -> bytes:
        self._check_open()
        with open(path, "wb") as fh:
            fh.write(PNG_HEADER)
        self.screenshots.append(path)
        return PNG_HEADER

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self._check_open()
        if script == SNAPSHOT_SCRIPT:
            return dict(self.context.storage)
        if script == REMOVE_KEY_SCRIPT:
            self.context.storage.pop(arg, None)
            return None
        raise PlaywrightError(f"FakePage cannot evaluate: {script}")

    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self.close_now()

    def close_now(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.emit("close", self)


class FakeSampleApp:
    """Scripted behaviour of the VanillaJS ADFS sample on top of FakePage."""

    def __init__(
        self,
        base_url: str,
        client_id: str,
        authority: str,
        username: str,
        password: str,
        delay: float = 0.01,
    ) -> None:
        self.base_url = base_url
        self.client_id = client_id
        self.authority = authority
        self.username = username
        self.password = password
        self.delay = delay
        self.popup_closes = True
        self.open_login_popup = True
        self.tokens_per_acquire = 1
        # selector -> number of upcoming clicks that produce no result
        self.acquire_failures: Dict[str, int] = {}

    def _later(self, callback: Callable[[], None]) -> None:
        asyncio.get_running_loop().call_later(self.delay, callback)

    def _logged_in(self, page: FakePage) -> bool:
        return f"msal.{self.client_id}.idtoken" in page.context.storage

    def render(self, page: FakePage) -> None:
        if page.url.startswith(self.base_url):
            page.visible = set(HOME) | (LOGGED_IN if self._logged_in(page) else set())
        else:
            page.visible = set()

    def _write_login(self, context: FakeBrowserContext) -> None:
        context.storage[f"msal.{self.client_id}.idtoken"] = "eyJ0eXAiOiJKV1Qi.fake.idtoken"
        context.storage[f"msal.{self.client_id}.client.info"] = "eyJ1aWQiOiJmYWtlIn0"

    def access_token_key(self, scopes: str = "openid") -> str:
        return json.dumps(
            {
                "authority": self.authority.lower(),
                "clientId": self.client_id,
                "scopes": scopes,
                "homeAccountIdentifier": "ZmFrZS11aWQ",
            },
            separators=(",", ":"),
        )

    def _write_access_token(self, context: FakeBrowserContext) -> None:
        for index in range(self.tokens_per_acquire):
            scopes = "openid" if index == 0 else f"openid scope{index}"
            context.storage[self.access_token_key(scopes)] = json.dumps({"accessToken": "at", "expiresIn": "3600"})

    def _finish_redirect(self, page: FakePage) -> None:
        page.url = self.base_url + "#id_token=fake"
        self.render(page)

    def on_click(self, page: FakePage, selector: str) -> None:
        if selector == "#SignIn":
            page.visible |= SIGN_IN_MENU
        elif selector == "#loginRedirect":
            page.url = IDP_URL
            page.visible = set(LOGIN_FORM)
        elif selector == "#loginPopup":
            if self.open_login_popup:
                self._later(lambda: page.open_popup(visible=LOGIN_FORM))
        elif selector == "#submitButton":
            self._submit(page)
        elif selector in LOGGED_IN:
            self._acquire(page, selector)

    def _submit(self, page: FakePage) -> None:
        if (
            page.values.get("#userNameInput") != self.username
            or page.values.get("#passwordInput") != self.password
        ):
            page.visible.add("#errorText")
            return
        self._write_login(page.context)
        if page.opener is None:
            page.visible = set()
            self._later(lambda: self._finish_redirect(page))
            return
        opener = page.opener
        self.render(opener)
        if self.popup_closes:
            self._later(page.close_now)

    def _acquire(self, page: FakePage, selector: str) -> None:
        remaining = self.acquire_failures.get(selector, 0)
        if remaining:
            self.acquire_failures[selector] = remaining - 1
            return
        if selector == "#getAccessTokenPopup":
            popup = page.open_popup()
            self._later(popup.close_now)
        self._write_access_token(page.context)
        page.visible.add("#access-token-info")


class FakePlaywrightClient:
    """Hands out Surfaces on fake incognito contexts."""

    def __init__(self, app: FakeSampleApp, timeout: float = 500) -> None:
        self.app = app
        self.timeout = timeout
        self.contexts: List[FakeBrowserContext] = []

    @asynccontextmanager
    async def isolated_surface(self, name: str = "main", **kwargs: Any):
        context = FakeBrowserContext(self.app)
        self.contexts.append(context)
        try:
            page = await context.new_page()
            yield Surface(page, name=name, timeout_ms=self.timeout)
        finally:
            await context.close()
