"""
Custom date range selection on the HUB report page

The "Custom Date Range" option only binds its click handler after an internal
state flag flips, which a single high-level click does not reliably do. Activation
is therefore two-phase: a synthetic mouse event sequence from script, then a
regular click.
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from hub_offload.core.config import settings
from hub_offload.core.exceptions import NavigationError
from hub_offload.scraper.fallback import (
    Strategy,
    click_strategy,
    dispatch_click_strategy,
    fill_strategy,
    run_fallback_chain,
)

logger = logging.getLogger(__name__)

CUSTOM_RANGE_TEXT = "Custom Date Range"
DATE_GRID_SELECTOR = (
    ".hub-reporting-console-app-web-MuiGrid-root"
    ".hub-reporting-console-app-web-MuiGrid-item"
    ".hub-reporting-console-app-web-MuiGrid-grid-xs-6"
)

SYNTHETIC_ACTIVATE_JS = """
(text) => {
    const nodes = Array.from(document.querySelectorAll('div, span, li, button'));
    const target = nodes.find(node => node.textContent && node.textContent.trim() === text);
    if (!target) return false;
    for (const type of ['mousedown', 'mouseup', 'click']) {
        target.dispatchEvent(new MouseEvent(type, { bubbles: true, cancelable: true }));
    }
    return true;
}
"""


@dataclass(frozen=True)
class DateField:
    label: str
    role_name: str  # accessible name of the textbox
    hint: str  # substring used in aria-label / placeholder / name lookups
    index: int  # position among same-typed inputs
    commit_keys: Tuple[str, ...]


START_FIELD = DateField("start date", "Start time", "Start", 0, ("Tab", "Tab"))
END_FIELD = DateField("end date", "End Date", "End", 1, ("Enter",))


class DateRangeConfigurator:
    """Scopes the current report to [start_date, end_date] (ISO YYYY-MM-DD)"""

    def __init__(self, page: Page, timeout: Optional[int] = None, settle_ms: Optional[int] = None):
        self.page = page
        self.timeout = timeout if timeout is not None else settings.SCRAPER_TIMEOUT
        self.settle_ms = settle_ms if settle_ms is not None else settings.DATE_PICKER_SETTLE_MS

    async def configure(self, start_date: str, end_date: str) -> None:
        logger.info(f"📅 Setting custom date range {start_date} → {end_date}")

        await self.activate_custom_range()
        await self.page.wait_for_timeout(self.settle_ms)

        await self.reveal_date_fields()
        await self.page.wait_for_timeout(self.settle_ms)

        await self.fill_date(START_FIELD, start_date)
        await self.fill_date(END_FIELD, end_date)

        await self.page.wait_for_timeout(settings.STEP_SETTLE_MS)
        logger.info("✅ Custom date range configured")

    async def activate_custom_range(self) -> None:
        """
        Phase one: synthetic activation from script. A miss is only logged.
        Phase two: a regular click; exhausting it raises NavigationError.
        """
        synthetic = await run_fallback_chain(
            "Custom Date Range synthetic activation",
            [Strategy("script mouse events", self._dispatch_synthetic_activation)],
        )
        if not synthetic.succeeded:
            logger.warning("⚠️  Synthetic activation found no Custom Date Range element, clicking anyway")

        result = await run_fallback_chain("Custom Date Range click", [
            click_strategy(
                "text",
                lambda: self.page.get_by_text(CUSTOM_RANGE_TEXT, exact=True).first,
                timeout=self.timeout,
            ),
            click_strategy(
                "div filter",
                lambda: self.page.locator("div").filter(has_text=re.compile(r"^Custom Date Range$")).first,
                timeout=self.timeout,
            ),
        ])
        result.raise_for_failure()

    async def _dispatch_synthetic_activation(self) -> bool:
        return await self.page.evaluate(SYNTHETIC_ACTIVATE_JS, CUSTOM_RANGE_TEXT)

    async def reveal_date_fields(self) -> None:
        """The date inputs only render after the layout grid cell is clicked"""
        result = await run_fallback_chain("Date picker reveal", [
            click_strategy("grid click", lambda: self.page.locator(DATE_GRID_SELECTOR).first, timeout=self.timeout),
            dispatch_click_strategy("grid dispatch", lambda: self.page.locator(DATE_GRID_SELECTOR).first, timeout=self.timeout),
        ])
        result.raise_for_failure()

    def field_locators(self, field: DateField) -> Dict[str, Callable]:
        """Candidate locators for a date field, in preference order"""
        page = self.page
        hint = field.hint
        return {
            "role": lambda: page.get_by_role("textbox", name=field.role_name),
            "aria-label": lambda: page.locator(f'input[aria-label*="{hint}"]').first,
            "placeholder": lambda: page.locator(f'input[placeholder*="{hint}"]').first,
            "name attribute": lambda: page.locator(f'input[name*="{hint.lower()}"]').first,
            "date input": lambda: page.locator('input[type="date"]').nth(field.index),
            "text input": lambda: page.locator('input[type="text"]').nth(field.index),
        }

    def field_strategies(self, field: DateField, value: str) -> List[Strategy]:
        return [
            fill_strategy(name, factory, value, timeout=self.timeout, clear_first=True)
            for name, factory in self.field_locators(field).items()
        ]

    async def fill_date(self, field: DateField, value: str) -> None:
        """Fill one field through the strategy list, then commit it with its keys"""
        logger.info(f"📅 Filling {field.label}: {value}")

        result = await run_fallback_chain(f"Fill {field.label}", self.field_strategies(field, value))
        result.raise_for_failure()

        target = self.field_locators(field)[result.winner]()
        try:
            for key in field.commit_keys:
                await target.press(key, timeout=self.timeout)
        except PlaywrightError as e:
            raise NavigationError(f"Commit {field.label}", message=f"Could not commit {field.label}: {e}") from e
