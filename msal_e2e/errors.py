"""Error taxonomy shared by the harness components."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from playwright.async_api import Error as PlaywrightError


@dataclass(eq=False)
class HarnessError(Exception):
    """Raised when a harness operation fails."""

    name: str
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:  # pragma: no cover - human readable helper
        if self.payload:
            return f"{self.name} failed ({self.message}) with payload={self.payload}"
        return f"{self.name} failed ({self.message})"


class ProvisionError(HarnessError):
    """No usable test credential; aborts the whole run."""


class CaptureError(HarnessError):
    """A checkpoint screenshot could not be written."""


class PopupSyncError(HarnessError):
    """The popup never appeared or never closed within the deadline."""


class ElementNotFoundError(HarnessError):
    """The page does not expose an element the flow relies on."""


def is_scenario_fatal(exc: BaseException) -> bool:
    """True for errors that fail one scenario but leave the run going.

    Raw Playwright errors count too: they escape from context and page setup
    when the browser drops a target mid-run.
    """
    if isinstance(exc, ProvisionError):
        return False
    return isinstance(exc, (HarnessError, PlaywrightError, AssertionError, TimeoutError))
