"""Single-retry wrapper for rate-limited Claude calls.

The Claude client returns 429 responses immediately; this wrapper owns the
cooldown. A rate-limited call is retried exactly once after the cooldown.
Any other error, or a second rate limit, propagates to the caller.

The cooldown paces recovery from throttling; request initiation is paced
separately by the batch executor's inter-window delay.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tagger.core.logging import tagging_logger
from tagger.integrations.claude import ClaudeRateLimitError

T = TypeVar("T")


def is_rate_limit_error(error: BaseException) -> bool:
    """Check whether an error means the collaborator throttled us."""
    if isinstance(error, ClaudeRateLimitError):
        return True
    return getattr(error, "status_code", None) == 429


async def call_with_rate_limit_retry(
    call: Callable[[], Awaitable[T]],
    *,
    cooldown_seconds: float,
    operation: str,
    is_rate_limited: Callable[[BaseException], bool] = is_rate_limit_error,
) -> T:
    """Await call(), retrying once after a cooldown if it was rate limited.

    Args:
        call: Zero-argument coroutine function to invoke
        cooldown_seconds: Sleep before the single retry
        operation: Short description used in logs (e.g. "extract newsletter abc")
        is_rate_limited: Predicate identifying rate-limit errors

    Returns:
        The value returned by call()

    Raises:
        Exception: Whatever call() raised on a non-rate-limit failure, or the
            rate-limit error from the retry
    """
    try:
        return await call()
    except Exception as e:
        if not is_rate_limited(e):
            raise
        tagging_logger.rate_limit_cooldown(operation, cooldown_seconds)

    await asyncio.sleep(cooldown_seconds)

    try:
        return await call()
    except Exception as e:
        if is_rate_limited(e):
            tagging_logger.rate_limit_exhausted(operation)
        raise
