"""
Ordered fallback chains.

A chain is a list of (name, func) pairs. The runner calls them in order
and returns the first non-empty result, so individual strategies stay
small, testable and easy to reorder.
"""

from typing import Any, Awaitable, Callable, Optional, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

Strategy = tuple[str, Callable[..., Optional[T]]]
AsyncStrategy = tuple[str, Callable[..., Awaitable[Optional[T]]]]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    return False


def first_result(strategies: list[Strategy], *args, **kwargs) -> Optional[Any]:
    """Run synchronous strategies in order; return the first non-empty result."""
    for name, func in strategies:
        result = func(*args, **kwargs)
        if not _is_empty(result):
            logger.debug(f"Strategy '{name}' produced a result")
            return result
    return None


async def first_result_async(
    strategies: list[AsyncStrategy],
    *args,
    **kwargs,
) -> tuple[Optional[str], Optional[Any]]:
    """
    Run async strategies in order and stop at the first non-empty result.

    Returns:
        (strategy name, result), or (None, None) when every strategy came up empty
    """
    for name, func in strategies:
        result = await func(*args, **kwargs)
        if not _is_empty(result):
            logger.info(f"Strategy '{name}' succeeded")
            return name, result
        logger.debug(f"Strategy '{name}' found nothing")
    return None, None
