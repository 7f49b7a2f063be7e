import sys
from pathlib import Path

import pytest
import pytest_asyncio

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from msal_e2e.config import HarnessConfig, load_config
from msal_e2e.lab_client import Credential
from msal_e2e.screenshots import ScreenshotRecorder
from msal_e2e.surface import Surface
from msal_e2e.tests.fakes import FakeBrowserContext, FakePlaywrightClient, FakeSampleApp

CLIENT_ID = "57448aa1-9515-4176-a106-5cb9be8550e1"
AUTHORITY = "https://fs.msidlab8.com/adfs/"
BASE_URL = "http://localhost:30662/"


def pytest_configure(config):
    config.addinivalue_line("markers", "live: drives the real sample app (needs MSAL_E2E_LIVE=1)")


def make_config(tmp_path: Path, **overrides: str) -> HarnessConfig:
    """Fast-timeout config that never reads the real environment."""
    environ = {
        "MSAL_E2E_BASE_URL": BASE_URL,
        "MSAL_E2E_CLIENT_ID": CLIENT_ID,
        "MSAL_E2E_AUTHORITY": AUTHORITY,
        "MSAL_E2E_SCREENSHOT_DIR": str(tmp_path / "screenshots"),
        "MSAL_E2E_WAIT_TIMEOUT": "0.3",
        "MSAL_E2E_SCENARIO_TIMEOUT": "3",
        "MSAL_E2E_RETRIES": "1",
    }
    environ.update(overrides)
    return load_config(environ=environ, env_defaults={})


@pytest.fixture
def config(tmp_path) -> HarnessConfig:
    return make_config(tmp_path)


@pytest.fixture
def credential() -> Credential:
    return Credential(username="idlab@msidlab8.com", password="s3cret-Pa55")


@pytest.fixture
def sample_app(credential) -> FakeSampleApp:
    return FakeSampleApp(
        base_url=BASE_URL,
        client_id=CLIENT_ID,
        authority=AUTHORITY,
        username=credential.username,
        password=credential.password,
    )


@pytest.fixture
def fake_client(sample_app, config) -> FakePlaywrightClient:
    return FakePlaywrightClient(sample_app, timeout=config.wait_timeout_ms)


@pytest_asyncio.fixture
async def surface(sample_app, config) -> Surface:
    """Main page of a fresh fake context, already on the sample app home page."""
    context = FakeBrowserContext(sample_app)
    page = await context.new_page()
    surface = Surface(page, name="main", timeout_ms=config.wait_timeout_ms)
    await surface.goto(config.base_url)
    yield surface
    await context.close()


@pytest.fixture
def recorder(config) -> ScreenshotRecorder:
    return ScreenshotRecorder(config.screenshot_dir, "unitScenario")
