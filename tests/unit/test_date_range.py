import asyncio

import pytest

from hub_offload.core.exceptions import NavigationError
from hub_offload.scraper.date_range import (
    CUSTOM_RANGE_TEXT,
    DATE_GRID_SELECTOR,
    DateRangeConfigurator,
)
from tests.fakes import FakePage


def report_page() -> FakePage:
    page = FakePage()
    page.add(f"text={CUSTOM_RANGE_TEXT}")
    page.add(DATE_GRID_SELECTOR)
    return page


def test_start_date_falls_through_to_aria_label_when_role_fill_does_not_stick() -> None:
    page = report_page()
    stubborn = page.add("role=textbox[Start time]", fill_sticks=False)
    start = page.add('input[aria-label*="Start"]')
    end = page.add("role=textbox[End Date]")

    asyncio.run(DateRangeConfigurator(page, timeout=100, settle_ms=0).configure("2025-10-01", "2025-10-31"))

    assert stubborn.fills == ["", "2025-10-01"]
    assert stubborn.pressed == []
    assert start.value == "2025-10-01"
    assert start.fills == ["", "2025-10-01"]
    assert start.pressed == ["Tab", "Tab"]
    assert end.value == "2025-10-31"
    assert end.pressed == ["Enter"]
    assert ("click", f"text={CUSTOM_RANGE_TEXT}") in page.events
    assert ("click", DATE_GRID_SELECTOR) in page.events


def test_positional_inputs_are_the_last_resort() -> None:
    page = report_page()
    date_inputs = page.add('input[type="date"]')
    second = page.add('input[type="date"]>>nth=1')

    asyncio.run(DateRangeConfigurator(page, timeout=100, settle_ms=0).configure("2025-09-01", "2025-09-30"))

    assert date_inputs.value == "2025-09-01"
    assert second.value == "2025-09-30"


def test_exhausting_every_start_strategy_names_the_step() -> None:
    page = report_page()
    page.add("role=textbox[End Date]")

    with pytest.raises(NavigationError) as excinfo:
        asyncio.run(DateRangeConfigurator(page, timeout=100, settle_ms=0).configure("2025-10-01", "2025-10-31"))

    assert excinfo.value.step == "Fill start date"
    assert [a.name for a in excinfo.value.attempts] == [
        "role", "aria-label", "placeholder", "name attribute", "date input", "text input",
    ]


def test_synthetic_activation_miss_is_tolerated_but_click_miss_is_not() -> None:
    page = FakePage()
    page.evaluate_result = False

    with pytest.raises(NavigationError) as excinfo:
        asyncio.run(DateRangeConfigurator(page, timeout=100, settle_ms=0).activate_custom_range())

    assert excinfo.value.step == "Custom Date Range click"


def test_grid_reveal_falls_back_to_dispatch() -> None:
    page = FakePage()
    grid = page.add(DATE_GRID_SELECTOR, click_error="Element is not visible")

    asyncio.run(DateRangeConfigurator(page, timeout=100, settle_ms=0).reveal_date_fields())

    assert grid.clicks == 0
    assert grid.dispatched == ["click"]


def test_failed_commit_key_is_a_navigation_error() -> None:
    page = report_page()
    page.add("role=textbox[Start time]", press_error="Target closed")

    with pytest.raises(NavigationError) as excinfo:
        asyncio.run(DateRangeConfigurator(page, timeout=100, settle_ms=0).configure("2025-10-01", "2025-10-31"))

    assert excinfo.value.step == "Commit start date"
