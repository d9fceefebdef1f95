"""
Ordered fallback chains for UI steps

A step is a list of strategies tried in order. The first strategy that does not
raise (and does not return False) wins; exhaustion comes back as a ChainResult
value so callers can tell "no strategy worked" apart from every other fault and
decide which error to raise.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple, Type

from hub_offload.core.exceptions import NavigationError

logger = logging.getLogger(__name__)

# Sets value and fires the events React-style inputs listen to
DISPATCH_FILL_JS = """
(el, value) => {
    el.focus();
    el.value = value;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
}
"""


class StrategyFailed(Exception):
    """Raised inside a strategy that ran but had no visible effect"""


@dataclass(frozen=True)
class Strategy:
    name: str
    action: Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class StrategyAttempt:
    name: str
    error: Optional[str] = None


@dataclass(frozen=True)
class ChainResult:
    step: str
    attempts: Tuple[StrategyAttempt, ...]
    winner: Optional[str] = None
    value: Any = None

    @property
    def succeeded(self) -> bool:
        return self.winner is not None

    def failure_message(self) -> str:
        return str(NavigationError(self.step, self.attempts))

    def raise_for_failure(self, exc_type: Type[Exception] = NavigationError) -> "ChainResult":
        """Return self on success, raise `exc_type` when every strategy failed"""
        if self.succeeded:
            return self
        if issubclass(exc_type, NavigationError):
            raise exc_type(self.step, self.attempts)
        raise exc_type(self.failure_message())


async def run_fallback_chain(step: str, strategies: Sequence[Strategy]) -> ChainResult:
    """
    Try each strategy in order until one succeeds

    Args:
        step: Human-readable step name, used in logs and errors
        strategies: Strategies in preference order

    Returns:
        ChainResult; `winner` is None when every strategy failed
    """
    attempts = []

    for strategy in strategies:
        try:
            value = await strategy.action()
        except Exception as e:
            logger.warning(f"⚠️  {step}: {strategy.name} failed: {e}")
            attempts.append(StrategyAttempt(strategy.name, str(e) or type(e).__name__))
            continue

        if value is False:
            logger.warning(f"⚠️  {step}: {strategy.name} had no effect")
            attempts.append(StrategyAttempt(strategy.name))
            continue

        attempts.append(StrategyAttempt(strategy.name))
        logger.info(f"✅ {step} ({strategy.name})")
        return ChainResult(step=step, attempts=tuple(attempts), winner=strategy.name, value=value)

    logger.error(f"❌ {step}: all {len(attempts)} strategies failed")
    return ChainResult(step=step, attempts=tuple(attempts))


LocatorFactory = Callable[[], Any]


def click_strategy(name: str, locator: LocatorFactory, timeout: Optional[int] = None) -> Strategy:
    """Conventional UI click"""
    async def action():
        await locator().click(timeout=timeout)
    return Strategy(name, action)


def dispatch_click_strategy(name: str, locator: LocatorFactory, timeout: Optional[int] = None) -> Strategy:
    """Raw click event dispatched on the element, bypassing actionability checks"""
    async def action():
        await locator().dispatch_event("click", timeout=timeout)
    return Strategy(name, action)


async def _read_back(target, timeout: Optional[int]) -> str:
    value = await target.input_value(timeout=timeout)
    if not value:
        raise StrategyFailed("value read back empty after fill")
    return value


def fill_strategy(
    name: str,
    locator: LocatorFactory,
    value: str,
    timeout: Optional[int] = None,
    clear_first: bool = False,
) -> Strategy:
    """
    Fill a field, then read it back

    A fill that leaves the field empty counts as a failure, so silent no-op fills
    fall through to the next strategy.
    """
    async def action():
        target = locator()
        if await target.count() == 0:
            raise StrategyFailed("no matching element")
        if clear_first:
            await target.fill("", timeout=timeout)
        await target.fill(value, timeout=timeout)
        return await _read_back(target, timeout)
    return Strategy(name, action)


def dispatch_fill_strategy(name: str, locator: LocatorFactory, value: str, timeout: Optional[int] = None) -> Strategy:
    """Assign the value from script and fire input/change events"""
    async def action():
        target = locator()
        if await target.count() == 0:
            raise StrategyFailed("no matching element")
        await target.evaluate(DISPATCH_FILL_JS, value)
        return await _read_back(target, timeout)
    return Strategy(name, action)
