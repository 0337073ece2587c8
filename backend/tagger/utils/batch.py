"""Bounded-concurrency batch executor.

Items are split into windows of `concurrency` items. Every item in a window
is started at once with asyncio.gather and the executor waits for the whole
window to settle before starting the next one, optionally sleeping between
windows. Each item's outcome is captured independently, so one failure never
aborts or skips any other item.

Example:
    result = await process_batch(
        newsletters,
        extract_one,
        concurrency=3,
        delay_seconds=0.5,
        on_progress=lambda done, total, _item: print(f"{done}/{total}"),
    )
    assert len(result.successful) + len(result.failed) == len(newsletters)
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from tagger.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int, Any], None]
ErrorCallback = Callable[[Exception, Any, int], None]


@dataclass
class BatchSuccess(Generic[T, R]):
    """An item whose processor returned normally."""

    item: T
    result: R
    index: int


@dataclass
class BatchFailure(Generic[T]):
    """An item whose processor raised."""

    item: T
    error: Exception
    index: int


@dataclass
class BatchResult(Generic[T, R]):
    """Outcome of a batch run. Both lists are ordered by input index."""

    successful: list[BatchSuccess[T, R]] = field(default_factory=list)
    failed: list[BatchFailure[T]] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)


async def process_batch(
    items: Sequence[T],
    processor: Callable[[T, int], Awaitable[R]],
    *,
    concurrency: int = 5,
    delay_seconds: float = 0.0,
    on_progress: ProgressCallback | None = None,
    on_error: ErrorCallback | None = None,
) -> BatchResult[T, R]:
    """Process items in windows of bounded concurrency.

    Args:
        items: Items to process
        processor: Coroutine function called as processor(item, index)
        concurrency: Maximum number of items in flight at once
        delay_seconds: Pause between windows (never after the last window)
        on_progress: Called as on_progress(completed, total, item) after every
            item settles
        on_error: Called as on_error(error, item, index) for every failure.
            Without it, failures are logged at WARNING.

    Returns:
        BatchResult with every item in exactly one of successful/failed

    Raises:
        ValueError: If concurrency is less than 1
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    start_time = time.monotonic()
    total = len(items)
    result: BatchResult[T, R] = BatchResult()
    if total == 0:
        return result

    logger.info(
        f"Processing {total} items",
        extra={
            "total": total,
            "concurrency": concurrency,
            "delay_seconds": delay_seconds,
        },
    )

    completed = 0

    async def run_one(item: T, index: int) -> None:
        nonlocal completed
        try:
            value = await processor(item, index)
        except Exception as e:
            result.failed.append(BatchFailure(item=item, error=e, index=index))
            if on_error is not None:
                on_error(e, item, index)
            else:
                logger.warning(
                    f"Item {index} failed",
                    extra={
                        "index": index,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                )
        else:
            result.successful.append(BatchSuccess(item=item, result=value, index=index))
        completed += 1
        if on_progress is not None:
            on_progress(completed, total, item)

    for window_start in range(0, total, concurrency):
        window = items[window_start : window_start + concurrency]
        await asyncio.gather(
            *(run_one(item, window_start + offset) for offset, item in enumerate(window))
        )

        if delay_seconds > 0 and window_start + concurrency < total:
            await asyncio.sleep(delay_seconds)

    result.successful.sort(key=lambda s: s.index)
    result.failed.sort(key=lambda f: f.index)
    result.duration_ms = (time.monotonic() - start_time) * 1000

    logger.info(
        f"Batch complete: {len(result.successful)} succeeded, {len(result.failed)} failed",
        extra={
            "total": total,
            "successful": len(result.successful),
            "failed": len(result.failed),
            "duration_ms": round(result.duration_ms, 2),
        },
    )
    return result


async def process_sequential(
    items: Sequence[T],
    processor: Callable[[T, int], Awaitable[R]],
    *,
    delay_seconds: float = 0.0,
    on_progress: ProgressCallback | None = None,
    on_error: ErrorCallback | None = None,
) -> BatchResult[T, R]:
    """Process items one at a time. Same semantics as process_batch."""
    return await process_batch(
        items,
        processor,
        concurrency=1,
        delay_seconds=delay_seconds,
        on_progress=on_progress,
        on_error=on_error,
    )
