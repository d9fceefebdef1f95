"""
Sign-in and navigation for the Single Digits HUB portal

Okta sign-in → HUB popup → report menu → [custom date range] → [device filter] →
report iframe. Every step depends on the DOM left by the previous one, so the
steps run strictly in order and the state table rejects anything out of order.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame, Page

from hub_offload.core.config import settings
from hub_offload.core.exceptions import AuthenticationError, NavigationError, PipelineInputError
from hub_offload.scraper.date_range import DateRangeConfigurator
from hub_offload.scraper.fallback import (
    Strategy,
    StrategyFailed,
    click_strategy,
    dispatch_click_strategy,
    dispatch_fill_strategy,
    fill_strategy,
    run_fallback_chain,
)

logger = logging.getLogger(__name__)

PORTAL_LINK = "launch app HUB Portal"
DATA_USAGE_MENU = "Data Usage"

NASID_PICKER = ".sd-multi-auto-complete-pseudo-input"
DIMENSION_OPTION = (
    ".hub-reporting-console-app-web-MuiTypography-root"
    ".hub-reporting-console-app-web-MuiTypography-body1"
)
NASID_INPUT = (
    ".hub-reporting-console-app-web-MuiInputBase-input"
    ".hub-reporting-console-app-web-MuiInput-input"
)
TIMELINE_LAYOUT = (
    ".hub-reporting-console-app-web-MuiBox-root.hub-reporting-console-app-web-sd-prod24"
    " > div:nth-child(2) > div"
)
TIMELINE_ANCHOR_TEXT = "loading...ContractSInbound"
ARROWDOWN_TIMEOUT_MS = 1000

NASID_OPTION_RE = re.compile(r"nasid", re.IGNORECASE)
AUTO_UPDATE_RE = re.compile(r"^Auto-updateUpdate$")


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    CREDENTIALS_SUBMITTED = "credentials_submitted"
    MFA_OR_PASSWORD_SELECTED = "mfa_or_password_selected"
    AUTHENTICATED = "authenticated"
    PORTAL_LAUNCHED = "portal_launched"
    REPORT_NAVIGATED = "report_navigated"
    DATE_RANGE_CONFIGURED = "date_range_configured"
    DEVICE_FILTERED = "device_filtered"
    REPORT_READY = "report_ready"


TRANSITIONS = {
    SessionState.UNAUTHENTICATED: {SessionState.CREDENTIALS_SUBMITTED},
    SessionState.CREDENTIALS_SUBMITTED: {SessionState.MFA_OR_PASSWORD_SELECTED},
    SessionState.MFA_OR_PASSWORD_SELECTED: {SessionState.AUTHENTICATED},
    SessionState.AUTHENTICATED: {SessionState.PORTAL_LAUNCHED},
    SessionState.PORTAL_LAUNCHED: {SessionState.REPORT_NAVIGATED},
    SessionState.REPORT_NAVIGATED: {
        SessionState.DATE_RANGE_CONFIGURED,
        SessionState.DEVICE_FILTERED,
        SessionState.REPORT_READY,
    },
    SessionState.DATE_RANGE_CONFIGURED: {SessionState.DEVICE_FILTERED, SessionState.REPORT_READY},
    SessionState.DEVICE_FILTERED: {SessionState.REPORT_READY},
    SessionState.REPORT_READY: set(),
}


@dataclass(frozen=True)
class ReportTarget:
    """A HUB report reachable from the Data Usage menu"""
    key: str
    menu_link: str
    export_tile: str
    needs_device_filter: bool = False
    select_csv: bool = False
    prime_timeline: bool = False


NASID_DAILY = ReportTarget(
    key="device",
    menu_link="NASID Daily",
    export_tile="Inbound Daily NASID Summary",
    needs_device_filter=True,
    select_csv=True,
)

DATA_USAGE_TIMELINE = ReportTarget(
    key="aggregate",
    menu_link="Data Usage Timeline",
    export_tile="Data Usage Timeline - Tile",
    prime_timeline=True,
)


class HubPortalSession:
    """
    Drives one portal session from the Okta start page to a ready report iframe

    The session never re-submits credentials: any failed sign-in step raises
    AuthenticationError immediately.
    """

    def __init__(
        self,
        page: Page,
        start_url: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[int] = None,
        iframe_timeout: Optional[int] = None,
    ):
        self.page = page
        self.report_page: Optional[Page] = None
        self.start_url = start_url if start_url is not None else settings.OKTA_START_URL
        self.email = email if email is not None else settings.OKTA_EMAIL
        self.password = password if password is not None else settings.OKTA_PASSWORD
        self.timeout = timeout if timeout is not None else settings.SCRAPER_TIMEOUT
        self.iframe_timeout = iframe_timeout if iframe_timeout is not None else settings.IFRAME_TIMEOUT
        self.state = SessionState.UNAUTHENTICATED

    def _advance(self, state: SessionState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise NavigationError(
                state.value,
                message=f"Cannot move from {self.state.value} to {state.value}",
            )
        logger.debug(f"🔀 {self.state.value} → {state.value}")
        self.state = state

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise NavigationError(self.state.value, message=f"Expected state {allowed}, got {self.state.value}")

    async def reach_report(
        self,
        target: ReportTarget,
        nas_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Frame:
        """
        Run every step up to ReportReady

        Args:
            target: Report to open
            nas_id: Device filter, required when the target needs one
            start_date: ISO date, only used together with end_date
            end_date: ISO date, only used together with start_date

        Returns:
            The report iframe's Frame
        """
        if target.needs_device_filter and not nas_id:
            raise PipelineInputError(f"{target.menu_link} needs a NAS ID")

        await self.authenticate()
        await self.launch_portal()
        await self.navigate_to_report(target)

        if start_date and end_date:
            await self.configure_date_range(start_date, end_date)
        else:
            logger.info("📅 Using the report's default date range")

        if target.needs_device_filter:
            await self.filter_device(nas_id)

        return await self.wait_for_report_frame()

    # Sign-in

    async def _login_step(self, step: str, strategies: List[Strategy]) -> None:
        result = await run_fallback_chain(step, strategies)
        if not result.succeeded:
            raise AuthenticationError(result.failure_message())

    async def authenticate(self) -> None:
        self._require(SessionState.UNAUTHENTICATED)

        if not (self.start_url and self.email and self.password):
            raise AuthenticationError("OKTA_START_URL, OKTA_EMAIL and OKTA_PASSWORD must be set")

        page = self.page
        timeout = self.timeout

        logger.info("📱 Navigating to Okta start page...")
        try:
            await page.goto(self.start_url, wait_until="domcontentloaded")
        except PlaywrightError as e:
            raise AuthenticationError(f"Could not load sign-in page: {e}") from e

        await self._login_step("Fill email", [
            fill_strategy("role", lambda: page.get_by_role("textbox", name="Email Address"), self.email, timeout),
            fill_strategy("username input", lambda: page.locator('input[name="username"]'), self.email, timeout),
            dispatch_fill_strategy("script", lambda: page.locator('input[name="username"]'), self.email, timeout),
        ])
        await self._login_step("Click Next", [
            click_strategy("role", lambda: page.get_by_role("button", name="Next"), timeout),
            click_strategy("submit input", lambda: page.locator('input[type="submit"]').first, timeout),
            dispatch_click_strategy("dispatch", lambda: page.locator('input[type="submit"]').first, timeout),
        ])
        self._advance(SessionState.CREDENTIALS_SUBMITTED)

        await self._login_step("Select password method", [
            click_strategy("role", lambda: page.get_by_role("link", name="Select Password."), timeout),
            click_strategy("data-se link", lambda: page.locator('a[data-se="password-link"]'), timeout),
            dispatch_click_strategy("dispatch", lambda: page.locator('a[data-se="password-link"]'), timeout),
        ])
        self._advance(SessionState.MFA_OR_PASSWORD_SELECTED)

        await self._login_step("Fill password", [
            fill_strategy("role", lambda: page.get_by_role("textbox", name="Password"), self.password, timeout),
            fill_strategy("password input", lambda: page.locator('input[name="password"]'), self.password, timeout),
            dispatch_fill_strategy("script", lambda: page.locator('input[name="password"]'), self.password, timeout),
        ])
        await self._login_step("Click Verify", [
            click_strategy("role", lambda: page.get_by_role("button", name="Verify"), timeout),
            click_strategy("submit input", lambda: page.locator('input[type="submit"]').first, timeout),
            dispatch_click_strategy("dispatch", lambda: page.locator('input[type="submit"]').first, timeout),
        ])

        try:
            await page.get_by_role("link", name=PORTAL_LINK).wait_for(state="visible", timeout=timeout)
        except PlaywrightError as e:
            raise AuthenticationError(f"Sign-in did not reach the dashboard: {e}") from e

        self._advance(SessionState.AUTHENTICATED)
        logger.info("✅ Signed in")

    # Portal

    async def launch_portal(self) -> Page:
        """The HUB portal opens in a popup; the popup becomes the report page"""
        self._require(SessionState.AUTHENTICATED)
        page = self.page

        logger.info("🔄 Waiting for HUB popup...")
        try:
            async with page.expect_popup(timeout=self.timeout) as popup_info:
                result = await run_fallback_chain("Launch HUB Portal", [
                    click_strategy("role", lambda: page.get_by_role("link", name=PORTAL_LINK), self.timeout),
                    dispatch_click_strategy("dispatch", lambda: page.get_by_role("link", name=PORTAL_LINK), self.timeout),
                ])
                result.raise_for_failure()
            popup = await popup_info.value
            await popup.wait_for_load_state("domcontentloaded")
        except PlaywrightError as e:
            raise NavigationError("Launch HUB Portal", message=f"HUB popup did not open: {e}") from e

        popup.set_default_timeout(self.timeout)
        self.report_page = popup

        self._advance(SessionState.PORTAL_LAUNCHED)
        logger.info("✅ HUB popup opened")
        return popup

    async def navigate_to_report(self, target: ReportTarget) -> None:
        self._require(SessionState.PORTAL_LAUNCHED)
        page = self.report_page
        timeout = self.timeout

        logger.info(f"📊 Opening {DATA_USAGE_MENU} → {target.menu_link}...")
        result = await run_fallback_chain(f"Open {DATA_USAGE_MENU}", [
            click_strategy("role", lambda: page.get_by_role("button", name=DATA_USAGE_MENU), timeout),
            dispatch_click_strategy("dispatch", lambda: page.get_by_role("button", name=DATA_USAGE_MENU), timeout),
        ])
        result.raise_for_failure()

        await page.wait_for_timeout(settings.STEP_SETTLE_MS)

        result = await run_fallback_chain(f"Open {target.menu_link}", [
            click_strategy("role", lambda: page.get_by_role("link", name=target.menu_link, exact=True), timeout),
            click_strategy("text", lambda: page.get_by_text(target.menu_link, exact=True).first, timeout),
            dispatch_click_strategy("dispatch", lambda: page.get_by_role("link", name=target.menu_link, exact=True), timeout),
        ])
        result.raise_for_failure()

        if target.prime_timeline:
            await self._prime_timeline()

        self._advance(SessionState.REPORT_NAVIGATED)

    async def _prime_timeline(self) -> None:
        """The timeline tile only renders after a layout click and a burst of ArrowDown"""
        page = self.report_page

        await run_fallback_chain("Timeline layout click", [
            click_strategy("layout", lambda: page.locator(TIMELINE_LAYOUT).first, self.timeout),
        ])

        anchor = page.get_by_text(TIMELINE_ANCHOR_TEXT)
        for _ in range(settings.ARROWDOWN_PRESSES):
            try:
                await anchor.press("ArrowDown", timeout=ARROWDOWN_TIMEOUT_MS)
            except PlaywrightError:
                await page.keyboard.press("ArrowDown")
        logger.info(f"⌨️  Sent {settings.ARROWDOWN_PRESSES} ArrowDown presses")

    async def configure_date_range(self, start_date: str, end_date: str) -> None:
        self._require(SessionState.REPORT_NAVIGATED)
        await DateRangeConfigurator(self.report_page, timeout=self.timeout).configure(start_date, end_date)
        self._advance(SessionState.DATE_RANGE_CONFIGURED)

    async def filter_device(self, nas_id: str) -> None:
        """Pick the NASID dimension, enter the NAS ID, apply"""
        self._require(SessionState.REPORT_NAVIGATED, SessionState.DATE_RANGE_CONFIGURED)
        page = self.report_page
        timeout = self.timeout

        logger.info(f"🎯 Filtering report to NAS ID {nas_id}")

        result = await run_fallback_chain("Open NASID picker", [
            click_strategy("picker", lambda: page.locator(NASID_PICKER).first, timeout),
            dispatch_click_strategy("dispatch", lambda: page.locator(NASID_PICKER).first, timeout),
        ])
        result.raise_for_failure()

        options = page.locator(DIMENSION_OPTION)

        async def nasid_option():
            await options.first.wait_for(state="visible", timeout=timeout)
            option = options.filter(has_text=NASID_OPTION_RE).first
            if await option.count() == 0:
                raise StrategyFailed("no option mentions NASID")
            await option.click(timeout=timeout)

        result = await run_fallback_chain("Choose NASID dimension", [
            Strategy("nasid option", nasid_option),
            click_strategy("first option", lambda: options.first, timeout),
        ])
        result.raise_for_failure()

        result = await run_fallback_chain("Fill NAS ID", [
            fill_strategy("input", lambda: page.locator(NASID_INPUT).first, nas_id, timeout),
            dispatch_fill_strategy("script", lambda: page.locator(NASID_INPUT).first, nas_id, timeout),
        ])
        result.raise_for_failure()

        # Focuses the update bar; the button below does the work
        await run_fallback_chain("Focus update bar", [
            click_strategy("auto-update bar", lambda: page.locator("div").filter(has_text=AUTO_UPDATE_RE).first, timeout),
        ])
        result = await run_fallback_chain("Apply filter", [
            click_strategy("role", lambda: page.get_by_role("button", name="Update", exact=True), timeout),
            dispatch_click_strategy("dispatch", lambda: page.get_by_role("button", name="Update", exact=True), timeout),
        ])
        result.raise_for_failure()

        self._advance(SessionState.DEVICE_FILTERED)

    async def wait_for_report_frame(self) -> Frame:
        """ReportReady: the report iframe is attached and its frame is available"""
        page = self.report_page

        logger.info("🖼️  Waiting for report iframe...")
        try:
            handle = await page.wait_for_selector("iframe", timeout=self.iframe_timeout)
        except PlaywrightError as e:
            raise NavigationError("Report iframe", message=f"Report iframe did not attach: {e}") from e

        frame = await handle.content_frame()
        if frame is None:
            raise NavigationError("Report iframe", message="Report iframe not ready")

        self._advance(SessionState.REPORT_READY)
        logger.info("✅ Report ready")
        return frame
