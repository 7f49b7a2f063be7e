"""Two-stage handshake for flows that open a popup window.

A click on the parent page opens the popup asynchronously; the flow must
get hold of the popup, drive it, and only resume on the parent once the
popup has closed itself. The synchronizer walks an explicit state machine:

    IDLE -> AWAITING_APPEARANCE -> AWAITING_CLOSURE -> CLOSED
                    \\                    \\
                     +-------> FAILED <----+

The closure watcher is attached inside the appearance callback, so a
``closed`` event can never be recorded before ``appeared``.
"""
from __future__ import annotations

import enum
import logging
from typing import Awaitable, Callable, List, Optional

import anyio

from msal_e2e.errors import PopupSyncError
from msal_e2e.surface import Surface

logger = logging.getLogger(__name__)


class PopupState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_APPEARANCE = "awaiting_appearance"
    AWAITING_CLOSURE = "awaiting_closure"
    CLOSED = "closed"
    FAILED = "failed"


class PopupSynchronizer:
    """Run one popup interaction; instances are single-use."""

    def __init__(
        self,
        parent: Surface,
        appear_timeout: float,
        close_timeout: Optional[float] = None,
        ready_selector: Optional[str] = None,
    ) -> None:
        self.parent = parent
        self.appear_timeout = appear_timeout
        self.close_timeout = appear_timeout if close_timeout is None else close_timeout
        self.ready_selector = ready_selector
        self.state = PopupState.IDLE
        self.popup: Optional[Surface] = None
        self.events: List[str] = []
        self._appeared: Optional[anyio.Event] = None
        self._closed: Optional[anyio.Event] = None

    def _on_popup(self, popup: Surface) -> None:
        if self.state is not PopupState.AWAITING_APPEARANCE:
            return
        self.popup = popup
        self.events.append("appeared")
        self.state = PopupState.AWAITING_CLOSURE
        popup.once_closed(self._on_closed)
        self._appeared.set()

    def _on_closed(self) -> None:
        if self.state is not PopupState.AWAITING_CLOSURE:
            return
        self.events.append("closed")
        self._closed.set()

    def _fail(self, message: str, **payload) -> PopupSyncError:
        previous = self.state
        self.state = PopupState.FAILED
        payload.setdefault("state", previous.value)
        return PopupSyncError(name="popup_sync", payload=payload, message=message)

    async def run(
        self,
        trigger: Callable[[], Awaitable[None]],
        interact: Callable[[Surface], Awaitable[None]],
    ) -> Surface:
        """Trigger the popup, hand it to ``interact`` and wait for it to close.

        Returns the (now closed) popup surface.
        """
        if self.state is not PopupState.IDLE:
            raise RuntimeError(f"PopupSynchronizer already used (state={self.state.value})")

        self._appeared = anyio.Event()
        self._closed = anyio.Event()
        self.state = PopupState.AWAITING_APPEARANCE
        self.parent.once_popup(self._on_popup)

        try:
            await trigger()
        except BaseException:
            # A late popup must not land in this dead handshake
            self.state = PopupState.FAILED
            raise

        try:
            with anyio.fail_after(self.appear_timeout):
                await self._appeared.wait()
        except TimeoutError:
            raise self._fail(
                f"No popup opened within {self.appear_timeout:.1f}s",
                parent=self.parent.name,
            ) from None
        logger.debug("Popup appeared: %s", self.popup)

        try:
            if self.ready_selector:
                await self.popup.wait_for_selector(self.ready_selector)
            await interact(self.popup)
        except BaseException:
            self.state = PopupState.FAILED
            raise

        try:
            with anyio.fail_after(self.close_timeout):
                await self._closed.wait()
        except TimeoutError:
            raise self._fail(
                f"Popup did not close within {self.close_timeout:.1f}s",
                popup=self.popup.name,
            ) from None

        self.state = PopupState.CLOSED
        logger.debug("Popup closed: %s", self.popup.name)
        return self.popup
