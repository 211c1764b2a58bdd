"""Bounded-concurrency execution of independent remote operations."""
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Sequence, Tuple, TypeVar

import anyio
import anyio.abc

from rhizonote_sync.exceptions import RemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchOutcome(Generic[T, R]):
    """Per-item results of a batched run, in input order."""

    succeeded: List[Tuple[T, R]] = field(default_factory=list)
    failed: List[Tuple[T, RemoteError]] = field(default_factory=list)


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError("size must be >= 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


async def run_in_batches(
    items: Sequence[T],
    operation: Callable[[T], Awaitable[R]],
    batch_size: int,
) -> BatchOutcome[T, R]:
    """Run ``operation`` for every item, ``batch_size`` at a time.

    Items within a batch run concurrently; batches run one after another.
    A ``RemoteError`` fails only its own item. Any other exception
    (including ``SyncError``) cancels the batch and propagates.
    """
    results: List[object] = [None] * len(items)
    errors: List[object] = [None] * len(items)
    fatal: List[Exception] = []

    async def run_one(index: int, item: T, tg: anyio.abc.TaskGroup) -> None:
        try:
            results[index] = await operation(item)
        except RemoteError as e:
            errors[index] = e
        except Exception as e:
            fatal.append(e)
            tg.cancel_scope.cancel()

    offset = 0
    for batch in chunked(items, batch_size):
        async with anyio.create_task_group() as tg:
            for i, item in enumerate(batch):
                tg.start_soon(run_one, offset + i, item, tg)
        if fatal:
            # Re-raised unwrapped so callers see the original error type
            raise fatal[0]
        offset += len(batch)

    outcome: BatchOutcome[T, R] = BatchOutcome()
    for index, item in enumerate(items):
        if errors[index] is not None:
            outcome.failed.append((item, errors[index]))  # type: ignore[arg-type]
        else:
            outcome.succeeded.append((item, results[index]))  # type: ignore[arg-type]
    return outcome
