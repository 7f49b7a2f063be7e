"""Scenario orchestration: isolation, setup phase, retries and reporting.

Scenarios run strictly one after another on a single shared browser process:

- sign-in scenarios each get a fresh incognito context
- the acquire-token scenarios share one context that a popup sign-in
  ("acquireTokenBaseCase") prepares; if that setup fails they are skipped
- every attempt is bounded by the scenario timeout and a failed scenario is
  retried from its initial state once (``MSAL_E2E_RETRIES``)

A ProvisionError is never retried and aborts the run.
"""
from __future__ import annotations

import argparse
import contextlib
import dataclasses
import enum
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import anyio
from anyio import to_thread

from msal_e2e.config import HarnessConfig, settings
from msal_e2e.errors import HarnessError, ProvisionError, is_scenario_fatal
from msal_e2e.flows import AcquireMode, ScenarioContext, acquire_token, login_popup, login_redirect
from msal_e2e.lab_client import Credential, CredentialProvisioner, LabClient
from msal_e2e.playwright_client import PlaywrightClient
from msal_e2e.screenshots import ScreenshotRecorder
from msal_e2e.storage import StorageValidator
from msal_e2e.surface import Surface

logger = logging.getLogger(__name__)


class ScenarioKind(str, enum.Enum):
    LOGIN_REDIRECT = "login-redirect"
    LOGIN_POPUP = "login-popup"
    ACQUIRE_REDIRECT = "acquire-redirect"
    ACQUIRE_POPUP = "acquire-popup"
    ACQUIRE_SILENT = "acquire-silent"

    @property
    def acquire_mode(self) -> Optional[AcquireMode]:
        return {
            ScenarioKind.ACQUIRE_REDIRECT: AcquireMode.REDIRECT,
            ScenarioKind.ACQUIRE_POPUP: AcquireMode.POPUP,
            ScenarioKind.ACQUIRE_SILENT: AcquireMode.SILENT,
        }.get(self)

    @property
    def is_acquire(self) -> bool:
        return self.acquire_mode is not None


@dataclass(frozen=True)
class Scenario:
    name: str
    kind: ScenarioKind


class Status(str, enum.Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ScenarioResult:
    scenario: Scenario
    status: Status = Status.FAILED
    attempts: int = 0
    error: Optional[str] = None
    screenshots: List[Path] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status is Status.PASSED


@dataclass
class RunReport:
    results: List[ScenarioResult] = field(default_factory=list)

    def _with(self, status: Status) -> List[ScenarioResult]:
        return [result for result in self.results if result.status is status]

    @property
    def passed(self) -> List[ScenarioResult]:
        return self._with(Status.PASSED)

    @property
    def failed(self) -> List[ScenarioResult]:
        return self._with(Status.FAILED)

    @property
    def skipped(self) -> List[ScenarioResult]:
        return self._with(Status.SKIPPED)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def get(self, name: str) -> ScenarioResult:
        for result in self.results:
            if result.scenario.name == name:
                return result
        raise KeyError(name)

    def summary(self) -> str:
        lines = []
        for result in self.results:
            line = f"{result.status.value.upper():8} {result.scenario.name} (attempts={result.attempts})"
            if result.error and not result.passed:
                line += f": {result.error}"
            lines.append(line)
        lines.append(f"{len(self.passed)} passed, {len(self.failed)} failed, {len(self.skipped)} skipped")
        return "\n".join(lines)


ACQUIRE_SETUP_NAME = "acquireTokenBaseCase"

DEFAULT_SCENARIOS = (
    Scenario("redirectBaseCase", ScenarioKind.LOGIN_REDIRECT),
    Scenario("popupBaseCase", ScenarioKind.LOGIN_POPUP),
    Scenario("acquireTokenRedirect", ScenarioKind.ACQUIRE_REDIRECT),
    Scenario("acquireTokenPopup", ScenarioKind.ACQUIRE_POPUP),
    Scenario("acquireTokenSilent", ScenarioKind.ACQUIRE_SILENT),
)


def describe_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class ScenarioRunner:
    """Runs scenarios sequentially against one shared PlaywrightClient."""

    def __init__(
        self,
        client: PlaywrightClient,
        credential: Credential,
        config: HarnessConfig,
        validator: Optional[StorageValidator] = None,
    ) -> None:
        self.client = client
        self.credential = credential
        self.config = config
        self.validator = validator or StorageValidator(config.client_id, config.authority)

    def _recorder(self, name: str) -> ScreenshotRecorder:
        return ScreenshotRecorder(self.config.screenshot_dir, name)

    def _context(self, surface: Surface, recorder: ScreenshotRecorder) -> ScenarioContext:
        return ScenarioContext(surface=surface, recorder=recorder, credential=self.credential, config=self.config)

    async def _run_with_retry(
        self,
        scenario: Scenario,
        recorder: ScreenshotRecorder,
        attempt_fn: Callable[[int], Awaitable[None]],
    ) -> ScenarioResult:
        result = ScenarioResult(scenario)
        recorder.reset()
        max_attempts = 1 + self.config.retries

        for attempt in range(1, max_attempts + 1):
            result.attempts = attempt
            logger.info("▶ %s (%s) attempt %d/%d", scenario.name, scenario.kind.value, attempt, max_attempts)
            try:
                with anyio.fail_after(self.config.scenario_timeout):
                    await attempt_fn(attempt)
            except Exception as exc:
                if not is_scenario_fatal(exc):
                    raise
                result.error = describe_error(exc)
                logger.warning("✗ %s attempt %d failed: %s", scenario.name, attempt, result.error)
                continue
            result.status = Status.PASSED
            result.error = None
            logger.info("✓ %s passed", scenario.name)
            break
        else:
            result.status = Status.FAILED
            logger.error("✗ %s failed after %d attempt(s)", scenario.name, max_attempts)

        result.screenshots = list(recorder.captured)
        return result

    async def run_login_scenario(self, scenario: Scenario) -> ScenarioResult:
        """Sign in from a fresh context, then check the id token cache entries."""
        flow = login_redirect if scenario.kind is ScenarioKind.LOGIN_REDIRECT else login_popup
        recorder = self._recorder(scenario.name)

        async def _attempt(attempt: int) -> None:
            async with self.client.isolated_surface(name=scenario.name) as surface:
                try:
                    await surface.goto(self.config.url())
                    await flow(self._context(surface, recorder))
                    await self.validator.verify_login(surface)
                finally:
                    with anyio.move_on_after(self.config.wait_timeout, shield=True):
                        await surface.close_stray_popups()

        return await self._run_with_retry(scenario, recorder, _attempt)

    async def _teardown_acquire(self, surface: Surface) -> None:
        # Runs after timeouts too, so it must not inherit the cancelled scope
        with anyio.move_on_after(self.config.wait_timeout, shield=True):
            await surface.close_stray_popups()
            try:
                await surface.reload()
            except HarnessError as exc:
                logger.warning("Reload after acquire scenario failed: %s", exc)

    async def run_acquire_scenario(self, surface: Surface, scenario: Scenario) -> ScenarioResult:
        """Acquire a token on an already signed-in surface and verify the cache."""
        mode = scenario.kind.acquire_mode
        if mode is None:
            raise ValueError(f"{scenario.name} is not an acquire-token scenario")
        recorder = self._recorder(scenario.name)

        async def _attempt(attempt: int) -> None:
            try:
                await acquire_token(self._context(surface, recorder), mode)
                await self.validator.verify_acquisition(surface)
            finally:
                await self._teardown_acquire(surface)

        return await self._run_with_retry(scenario, recorder, _attempt)

    async def run_acquire_group(self, scenarios: Sequence[Scenario]) -> List[ScenarioResult]:
        """Sign in once via popup, then run every acquire scenario on that session."""
        recorder = self._recorder(ACQUIRE_SETUP_NAME)
        async with contextlib.AsyncExitStack() as stack:
            try:
                surface = await stack.enter_async_context(self.client.isolated_surface(name=ACQUIRE_SETUP_NAME))
            except Exception as exc:
                if not is_scenario_fatal(exc):
                    raise
                return self._skip_group(scenarios, recorder, exc)

            try:
                with anyio.fail_after(self.config.scenario_timeout):
                    await surface.goto(self.config.url())
                    await login_popup(self._context(surface, recorder))
            except Exception as exc:
                if not is_scenario_fatal(exc):
                    raise
                with anyio.move_on_after(self.config.wait_timeout, shield=True):
                    await surface.close_stray_popups()
                return self._skip_group(scenarios, recorder, exc)

            results = []
            for scenario in scenarios:
                results.append(await self.run_acquire_scenario(surface, scenario))
            return results

    def _skip_group(
        self,
        scenarios: Sequence[Scenario],
        recorder: ScreenshotRecorder,
        exc: BaseException,
    ) -> List[ScenarioResult]:
        reason = f"setup {ACQUIRE_SETUP_NAME} failed: {describe_error(exc)}"
        logger.error("%s; skipping %d dependent scenario(s)", reason, len(scenarios))
        return [
            ScenarioResult(scenario, status=Status.SKIPPED, error=reason, screenshots=list(recorder.captured))
            for scenario in scenarios
        ]

    async def run(self, scenarios: Iterable[Scenario] = DEFAULT_SCENARIOS) -> RunReport:
        scenarios = list(scenarios)
        by_name: Dict[str, ScenarioResult] = {}

        for scenario in scenarios:
            if not scenario.kind.is_acquire:
                by_name[scenario.name] = await self.run_login_scenario(scenario)

        acquire = [scenario for scenario in scenarios if scenario.kind.is_acquire]
        if acquire:
            for result in await self.run_acquire_group(acquire):
                by_name[result.scenario.name] = result

        return RunReport(results=[by_name[scenario.name] for scenario in scenarios])


def provision_credential(config: HarnessConfig) -> Credential:
    with LabClient(config.lab_api_url, config.lab_access_token) as lab:
        return CredentialProvisioner(lab).provision(config.lab_user)


async def run_suite(
    config: HarnessConfig,
    scenarios: Iterable[Scenario] = DEFAULT_SCENARIOS,
    credential: Optional[Credential] = None,
) -> RunReport:
    """Provision the test user, launch the browser once and run ``scenarios``."""
    if credential is None:
        credential = await to_thread.run_sync(provision_credential, config)

    async with PlaywrightClient(
        browser_type=config.browser_type,
        headless=config.headless,
        timeout=config.wait_timeout_ms,
    ) as client:
        runner = ScenarioRunner(client, credential, config)
        return await runner.run(scenarios)


def select_scenarios(names: Optional[Sequence[str]]) -> List[Scenario]:
    if not names:
        return list(DEFAULT_SCENARIOS)
    known = {scenario.name: scenario for scenario in DEFAULT_SCENARIOS}
    unknown = [name for name in names if name not in known]
    if unknown:
        raise ValueError(f"Unknown scenario(s): {', '.join(unknown)}; choose from {', '.join(known)}")
    return [scenario for scenario in DEFAULT_SCENARIOS if scenario.name in names]


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Drive the MSAL sample app through its sign-in and token flows",
    )
    parser.add_argument(
        "--scenario",
        action="append",
        dest="scenarios",
        metavar="NAME",
        help="Run only this scenario (repeatable)",
    )
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--screenshot-dir", type=Path, help="Override MSAL_E2E_SCREENSHOT_DIR")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, os.getenv("MSAL_E2E_LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        scenarios = select_scenarios(args.scenarios)
    except ValueError as exc:
        parser.error(str(exc))

    config = settings
    if args.headed:
        config = dataclasses.replace(config, headless=False)
    if args.screenshot_dir:
        config = dataclasses.replace(config, screenshot_dir=args.screenshot_dir)

    try:
        report = anyio.run(run_suite, config, scenarios)
    except ProvisionError as exc:
        logger.critical("Cannot provision test credentials, aborting run: %s", exc)
        return 2

    print(report.summary())
    print(f"Screenshots: {config.screenshot_dir}")
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
