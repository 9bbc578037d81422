"""
Ordered best-effort lookups.

A strategy is a zero-argument coroutine function returning a result or None.
first_success() tries them in order and stops at the first non-None result.
A strategy that raises is logged and counts as a miss; nothing is retried.
"""

from typing import Any, Awaitable, Callable, Iterable, Optional

from apoxer.core.logging import get_logger

logger = get_logger(__name__)

Strategy = Callable[[], Awaitable[Optional[Any]]]


async def first_success(strategies: Iterable[Strategy], label: str = "lookup") -> Optional[Any]:
    for index, strategy in enumerate(strategies):
        try:
            result = await strategy()
        except Exception as e:
            logger.warning("fallback_strategy_failed", label=label, strategy=index, error=str(e))
            continue
        if result is not None:
            if index:
                logger.info("fallback_strategy_used", label=label, strategy=index)
            return result
    logger.info("fallback_exhausted", label=label)
    return None
