"""Shared configuration for the MSAL browser end-to-end harness.

Values are resolved in this order:
- environment variables (``MSAL_E2E_*``, ``PLAYWRIGHT_*``, ``LAB_*``)
- ``.env.defaults`` in the repository root (or the file named by
  ``MSAL_E2E_ENV_DEFAULTS``)
- the built-in defaults below (the ADFS sample app on localhost:30662)
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import urljoin

REPO_ROOT = Path(__file__).resolve().parents[1]

DEFAULTS: Dict[str, str] = {
    "MSAL_E2E_BASE_URL": "http://localhost:30662/",
    "MSAL_E2E_CLIENT_ID": "57448aa1-9515-4176-a106-5cb9be8550e1",
    "MSAL_E2E_AUTHORITY": "https://fs.msidlab8.com/adfs/",
    "MSAL_E2E_SCOPES": "openid",
    "MSAL_E2E_SCREENSHOT_DIR": str(REPO_ROOT / "screenshots"),
    "MSAL_E2E_WAIT_TIMEOUT": "8.0",
    "MSAL_E2E_SCENARIO_TIMEOUT": "30.0",
    "MSAL_E2E_RETRIES": "1",
    "PLAYWRIGHT_HEADLESS": "true",
    "PLAYWRIGHT_BROWSER": "chromium",
    "LAB_API_URL": "https://msidlab.com/api",
    "LAB_ENV_NAME": "onprem",
    "LAB_USER_TYPE": "onprem",
    "LAB_FEDERATION_PROVIDER": "adfsv2019",
}


ENV_DEFAULTS_FILE = REPO_ROOT / ".env.defaults"


def _parse_env_line(raw: str) -> Optional[Tuple[str, str]]:
    """``KEY=value`` (optionally ``export``-prefixed, value optionally quoted)."""
    line = raw.strip()
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    key, value = (part.strip() for part in line.split("=", 1))
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return key, value


@lru_cache(maxsize=4)
def read_env_defaults(path: Path = ENV_DEFAULTS_FILE) -> Dict[str, str]:
    """Harness keys from a ``.env.defaults`` file; a missing file yields nothing."""
    if not path.is_file():
        return {}
    pairs = (_parse_env_line(raw) for raw in path.read_text(encoding="utf-8").splitlines())
    return dict(pair for pair in pairs if pair)


@dataclass(frozen=True)
class AppSelectors:
    """DOM identifiers exposed by the sample application under test."""

    sign_in: str = "#SignIn"
    login_redirect: str = "#loginRedirect"
    login_popup: str = "#loginPopup"
    login_area: str = "#loginArea"
    username_input: str = "#userNameInput"
    password_input: str = "#passwordInput"
    submit_button: str = "#submitButton"
    # Doubles as the post-login marker of the redirect flow
    acquire_redirect: str = "#getAccessTokenRedirect"
    # Doubles as the post-login marker of the popup flow
    acquire_popup: str = "#getAccessTokenPopup"
    acquire_silent: str = "#getAccessTokenSilent"
    token_result: str = "#access-token-info"


@dataclass(frozen=True)
class LabUserParams:
    """Query used to pick a test identity from the lab service."""

    env_name: str
    user_type: str
    federation_provider: str


@dataclass(frozen=True)
class HarnessConfig:
    base_url: str
    client_id: str
    authority: str
    scopes: List[str]
    screenshot_dir: Path
    wait_timeout: float
    scenario_timeout: float
    retries: int
    headless: bool
    browser_type: str
    lab_api_url: str
    lab_access_token: Optional[str]
    lab_user: LabUserParams
    selectors: AppSelectors = field(default_factory=AppSelectors)

    @property
    def wait_timeout_ms(self) -> float:
        """Wait timeout in the unit Playwright expects."""
        return self.wait_timeout * 1000

    def url(self, path: str = "") -> str:
        """Return an absolute URL on the sample app for the provided path."""
        return urljoin(self.base_url.rstrip("/") + "/", path.lstrip("/"))


def _float(values: Mapping[str, str], key: str) -> float:
    raw = values[key]
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number of seconds, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {raw!r}")
    return value


def _int(values: Mapping[str, str], key: str) -> int:
    raw = values[key]
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{key} must not be negative, got {raw!r}")
    return value


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    env_defaults: Optional[Mapping[str, str]] = None,
) -> HarnessConfig:
    """Build a HarnessConfig from the environment and ``.env.defaults``."""
    environ = os.environ if environ is None else environ
    if env_defaults is None:
        defaults_file = environ.get("MSAL_E2E_ENV_DEFAULTS")
        env_defaults = read_env_defaults(Path(defaults_file) if defaults_file else ENV_DEFAULTS_FILE)

    values: Dict[str, str] = dict(DEFAULTS)
    values.update(env_defaults)
    values.update({key: value for key, value in environ.items() if value != ""})

    browser_type = values["PLAYWRIGHT_BROWSER"].lower()
    if browser_type not in ("chromium", "firefox", "webkit"):
        raise ValueError(
            f"Invalid PLAYWRIGHT_BROWSER: {browser_type}\n"
            f"Must be 'chromium', 'firefox' or 'webkit'"
        )

    return HarnessConfig(
        base_url=values["MSAL_E2E_BASE_URL"],
        client_id=values["MSAL_E2E_CLIENT_ID"],
        authority=values["MSAL_E2E_AUTHORITY"],
        scopes=values["MSAL_E2E_SCOPES"].split(),
        screenshot_dir=Path(values["MSAL_E2E_SCREENSHOT_DIR"]),
        wait_timeout=_float(values, "MSAL_E2E_WAIT_TIMEOUT"),
        scenario_timeout=_float(values, "MSAL_E2E_SCENARIO_TIMEOUT"),
        retries=_int(values, "MSAL_E2E_RETRIES"),
        headless=values["PLAYWRIGHT_HEADLESS"].lower() in {"true", "1"},
        browser_type=browser_type,
        lab_api_url=values["LAB_API_URL"],
        lab_access_token=values.get("LAB_API_ACCESS_TOKEN") or None,
        lab_user=LabUserParams(
            env_name=values["LAB_ENV_NAME"],
            user_type=values["LAB_USER_TYPE"],
            federation_provider=values["LAB_FEDERATION_PROVIDER"],
        ),
    )


# Singleton instance - initialized on first import
settings = load_config()
