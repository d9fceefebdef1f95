import asyncio

import pytest

from hub_offload.core.exceptions import AuthenticationError, NavigationError
from hub_offload.scraper.fallback import (
    Strategy,
    dispatch_fill_strategy,
    fill_strategy,
    run_fallback_chain,
)
from tests.fakes import FakePage


def strategy(name, outcome, calls):
    async def action():
        calls.append(name)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
    return Strategy(name, action)


def test_first_successful_strategy_wins_and_later_ones_are_not_tried() -> None:
    calls = []
    result = asyncio.run(run_fallback_chain("Click Next", [
        strategy("role", RuntimeError("not visible"), calls),
        strategy("css", None, calls),
        strategy("dispatch", None, calls),
    ]))

    assert result.succeeded
    assert result.winner == "css"
    assert calls == ["role", "css"]
    assert [a.name for a in result.attempts] == ["role", "css"]
    assert result.attempts[0].error == "not visible"


def test_returning_false_counts_as_failure() -> None:
    calls = []
    result = asyncio.run(run_fallback_chain("JS click", [
        strategy("script", False, calls),
        strategy("click", "clicked", calls),
    ]))

    assert result.winner == "click"
    assert result.value == "clicked"


def test_exhaustion_is_a_value_not_an_exception() -> None:
    calls = []
    result = asyncio.run(run_fallback_chain("Open menu", [
        strategy("a", RuntimeError("boom"), calls),
        strategy("b", False, calls),
    ]))

    assert not result.succeeded
    assert calls == ["a", "b"]

    with pytest.raises(NavigationError) as excinfo:
        result.raise_for_failure()
    assert excinfo.value.step == "Open menu"
    assert "a: boom" in str(excinfo.value)
    assert "b: no effect" in str(excinfo.value)

    with pytest.raises(AuthenticationError, match="Open menu"):
        result.raise_for_failure(AuthenticationError)


def test_successful_result_passes_through_raise_for_failure() -> None:
    result = asyncio.run(run_fallback_chain("step", [strategy("ok", None, [])]))

    assert result.raise_for_failure() is result


def test_fill_is_only_successful_when_the_value_reads_back() -> None:
    page = FakePage()
    ignored = page.add("#ignored", fill_sticks=False)
    working = page.add("#working")

    result = asyncio.run(run_fallback_chain("Fill", [
        fill_strategy("ignored", lambda: page.locator("#ignored"), "2025-10-25"),
        fill_strategy("missing", lambda: page.locator("#missing"), "2025-10-25"),
        fill_strategy("working", lambda: page.locator("#working"), "2025-10-25", clear_first=True),
    ]))

    assert result.winner == "working"
    assert ignored.fills == ["2025-10-25"]
    assert working.fills == ["", "2025-10-25"]
    assert "read back empty" in result.attempts[0].error
    assert result.attempts[1].error == "no matching element"


def test_dispatch_fill_assigns_value_from_script() -> None:
    page = FakePage()
    field = page.add('input[name="username"]')

    result = asyncio.run(run_fallback_chain("Fill", [
        dispatch_fill_strategy("script", lambda: page.locator('input[name="username"]'), "user@example.com"),
    ]))

    assert result.succeeded
    assert field.value == "user@example.com"
