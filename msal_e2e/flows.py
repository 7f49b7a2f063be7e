"""Reusable sign-in and token acquisition flows against the sample app."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from msal_e2e.config import AppSelectors, HarnessConfig
from msal_e2e.lab_client import Credential
from msal_e2e.popup import PopupSynchronizer
from msal_e2e.screenshots import ScreenshotRecorder
from msal_e2e.surface import Surface

logger = logging.getLogger(__name__)


@dataclass
class ScenarioContext:
    """Everything one scenario attempt needs, owned by that scenario."""

    surface: Surface
    recorder: ScreenshotRecorder
    credential: Credential
    config: HarnessConfig

    @property
    def selectors(self) -> AppSelectors:
        return self.config.selectors


class AcquireMode(str, enum.Enum):
    REDIRECT = "redirect"
    POPUP = "popup"
    SILENT = "silent"

    def trigger(self, selectors: AppSelectors) -> str:
        return {
            AcquireMode.REDIRECT: selectors.acquire_redirect,
            AcquireMode.POPUP: selectors.acquire_popup,
            AcquireMode.SILENT: selectors.acquire_silent,
        }[self]

    @property
    def checkpoint(self) -> str:
        return {
            AcquireMode.REDIRECT: "accessTokenAcquiredRedirect",
            AcquireMode.POPUP: "accessTokenAcquiredPopup",
            AcquireMode.SILENT: "accessTokenAcquiredSilently",
        }[self]


async def enter_credentials(ctx: ScenarioContext, surface: Surface) -> None:
    """Fill and submit the sign-in form already rendered on ``surface``."""
    sel = ctx.selectors
    await ctx.recorder.capture(surface, "SignInPage")
    await surface.type(sel.username_input, ctx.credential.username)
    await surface.type(sel.password_input, ctx.credential.password)
    await surface.click(sel.submit_button)


async def open_sign_in_menu(ctx: ScenarioContext) -> None:
    await ctx.recorder.capture(ctx.surface, "samplePageInit")
    await ctx.surface.click(ctx.selectors.sign_in)
    await ctx.recorder.capture(ctx.surface, "signInClicked")


async def login_redirect(ctx: ScenarioContext) -> None:
    surface, sel = ctx.surface, ctx.selectors

    await open_sign_in_menu(ctx)
    await surface.click(sel.login_redirect)
    # The identity provider renders its form on this same page
    await surface.wait_for_selector(sel.login_area)
    await enter_credentials(ctx, surface)

    await surface.wait_for_navigation_idle(url_prefix=ctx.config.url())
    await surface.wait_for_selector(sel.acquire_redirect)
    await ctx.recorder.capture(surface, "samplePageLoggedIn")
    logger.info("Redirect sign-in completed on %s", surface.url)


async def login_popup(ctx: ScenarioContext) -> None:
    surface, sel = ctx.surface, ctx.selectors

    await open_sign_in_menu(ctx)

    sync = PopupSynchronizer(
        surface,
        appear_timeout=ctx.config.wait_timeout,
        ready_selector=sel.login_area,
    )

    async def _trigger() -> None:
        await surface.click(sel.login_popup)

    async def _interact(popup: Surface) -> None:
        await enter_credentials(ctx, popup)

    await sync.run(_trigger, _interact)

    await surface.wait_for_selector(sel.acquire_popup)
    await ctx.recorder.capture(surface, "samplePageLoggedIn")
    logger.info("Popup sign-in completed (events=%s)", sync.events)


async def acquire_token(ctx: ScenarioContext, mode: AcquireMode) -> None:
    """Click the acquire trigger for ``mode`` and wait for the token panel."""
    surface, sel = ctx.surface, ctx.selectors

    await surface.click(mode.trigger(sel))
    await surface.wait_for_selector(sel.token_result)
    await ctx.recorder.capture(surface, mode.checkpoint)
