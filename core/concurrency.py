"""
Core Module - Bounded Fan-out.

============================================================
RESPONSIBILITY
============================================================
Runs independent remote calls in fixed-width batches.

- A batch is gathered with return_exceptions=True so one
  failing item never aborts its siblings
- The next batch starts only after every call of the
  previous batch has completed
- A stop callback is consulted between batches so shutdown
  drains within one batch

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchOutcome(Generic[T, R]):
    """Results of a batched fan-out."""

    results: List[Tuple[T, R]] = field(default_factory=list)
    """(item, result) pairs for calls that returned."""

    errors: List[Tuple[T, BaseException]] = field(default_factory=list)
    """(item, exception) pairs for calls that raised."""

    stopped_early: bool = False
    """Whether the stop callback ended the fan-out."""


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
    should_stop: Optional[Callable[[], bool]] = None,
) -> BatchOutcome:
    """
    Run `worker` over `items`, at most `batch_size` calls in flight.

    Args:
        items: Inputs, processed in order
        worker: Async callable for one item
        batch_size: Maximum concurrent calls
        should_stop: Checked before each batch

    Returns:
        BatchOutcome with per-item results and errors
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    outcome: BatchOutcome = BatchOutcome()

    for start in range(0, len(items), batch_size):
        if should_stop is not None and should_stop():
            outcome.stopped_early = True
            break

        batch = list(items[start:start + batch_size])
        results: List[Any] = await asyncio.gather(
            *(worker(item) for item in batch),
            return_exceptions=True,
        )

        for item, result in zip(batch, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.debug(f"Batch item {item!r} failed: {result}")
                outcome.errors.append((item, result))
            else:
                outcome.results.append((item, result))

    return outcome
