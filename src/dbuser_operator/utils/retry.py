"""
Bounded retry for best-effort operations.

Cleanup steps such as removing a renamed user's old account must not block
convergence forever. ``retry_async`` runs such a step a fixed number of
times and lets the caller decide which errors end the loop early.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    operation_name: str,
    max_attempts: int = 3,
    is_success: Callable[[Exception], bool] | None = None,
    is_terminal: Callable[[Exception], bool] | None = None,
    initial_delay: float = 0.0,
    backoff_factor: float = 2.0,
) -> T | None:
    """
    Execute an async operation up to ``max_attempts`` times.

    Args:
        operation: Zero-argument coroutine factory to execute
        operation_name: Description of the operation for logging
        max_attempts: Total number of attempts, including the first
        is_success: Predicate marking an error as an acceptable result
            (for example "already deleted"); the call then returns None
        is_terminal: Predicate marking an error as not worth retrying;
            it is re-raised immediately
        initial_delay: Delay before the second attempt, 0 for none
        backoff_factor: Multiplier applied to the delay after each attempt

    Returns:
        Result of the operation, or None when an error matched ``is_success``

    Raises:
        ValueError: If ``max_attempts`` is lower than 1
        Exception: The terminal error, or the last error once attempts run out
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if is_success is not None and is_success(e):
                logger.debug(f"{operation_name} finished: {e}")
                return None
            if is_terminal is not None and is_terminal(e):
                logger.error(f"{operation_name} failed with non-retryable error: {e}")
                raise
            logger.error(
                f"{operation_name} failed (attempt {attempt}/{max_attempts}): {e}",
                extra={"attempt": attempt},
            )
            if attempt == max_attempts:
                raise
            if delay > 0:
                await asyncio.sleep(delay)
                delay *= backoff_factor

    # Unreachable: the loop either returns or raises
    raise AssertionError(f"{operation_name} exhausted retries without a result")
