"""
Batch transfer executor.

Runs transfer items in sequential batches. Items inside one batch run
concurrently; a batch is finished before the next one starts. Each item
is retried on retryable failures with exponential backoff and ends up
counted exactly once as migrated, skipped or failed. Once a transfer is
aborting, no item starts a new attempt and unfinished items stay uncounted.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional

from ..errors import TransferAbortedError
from ..models.migration import MigrationConfig
from ..models.record import ApplyResult, ItemOutcome, RunStatistics, TransferItem

logger = logging.getLogger(__name__)

ApplyFn = Callable[[TransferItem], Awaitable[ApplyResult]]
ExistsFn = Callable[[TransferItem], Awaitable[bool]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class ExecutorOptions:
    """
    Options for the batch executor.

    Attributes:
        batch_size: Items applied concurrently per batch
        max_retries: Retries after the first attempt for retryable failures
        continue_on_error: Keep going after an item fails for good
        skip_existing: Check create/copy items and skip those already present
        backoff_seconds: Base unit of the exponential backoff
    """
    batch_size: int = 10
    max_retries: int = 3
    continue_on_error: bool = True
    skip_existing: bool = False
    backoff_seconds: float = 1.0

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be a positive integer")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")

    @classmethod
    def from_config(cls, config: MigrationConfig, skip_existing: Optional[bool] = None) -> "ExecutorOptions":
        return cls(
            batch_size=config.batch_size,
            max_retries=config.max_retries,
            continue_on_error=config.continue_on_error,
            skip_existing=config.skip_existing if skip_existing is None else skip_existing,
            backoff_seconds=config.backoff_seconds,
        )


def backoff_delay(retry_number: int, backoff_seconds: float = 1.0) -> float:
    """Delay before the n-th retry: 1, 2, 4, ... units."""
    return (2 ** (retry_number - 1)) * backoff_seconds


class _AbortFlag:
    """First item that failed for good while continue_on_error is off."""

    def __init__(self):
        self.item: Optional[TransferItem] = None

    @property
    def is_set(self) -> bool:
        return self.item is not None


class BatchExecutor:
    """
    Applies transfer items in batches with bounded retries.

    Example:
        >>> executor = BatchExecutor(ExecutorOptions(batch_size=5))
        >>> stats = await executor.execute(items, loader.apply, check_exists=loader.exists)
    """

    def __init__(self, options: Optional[ExecutorOptions] = None, sleep: SleepFn = asyncio.sleep):
        """
        Initialize the executor.

        Args:
            options: Executor options
            sleep: Awaitable used for backoff delays
        """
        self.options = options or ExecutorOptions()
        self.sleep = sleep

    async def execute(
        self,
        items: Iterable[TransferItem],
        apply: ApplyFn,
        check_exists: Optional[ExistsFn] = None,
        stats: Optional[RunStatistics] = None
    ) -> RunStatistics:
        """
        Apply all items.

        Args:
            items: Items to apply
            apply: Applies one item and reports the outcome
            check_exists: Existence check used when skip_existing is on
            stats: Statistics to add to; a new object is created when omitted

        Returns:
            Statistics including every item of this call

        Raises:
            TransferAbortedError: continue_on_error is off and an item failed
        """
        stats = stats if stats is not None else RunStatistics()
        if stats.started_at is None:
            stats.started_at = datetime.utcnow()

        items = list(items)
        abort = _AbortFlag()
        size = self.options.batch_size

        for start in range(0, len(items), size):
            batch = items[start:start + size]
            await asyncio.gather(*(self._run_item(item, apply, check_exists, stats, abort) for item in batch))

            if abort.is_set:
                stats.completed_at = datetime.utcnow()
                not_finished = sum(1 for i in items if i.outcome is None)
                logger.error(
                    f"Aborting transfer after {abort.item.display_name} failed; "
                    f"{not_finished} items not transferred"
                )
                raise TransferAbortedError(abort.item.display_name, abort.item.error or "failed", statistics=stats)

        stats.completed_at = datetime.utcnow()
        return stats

    async def _run_item(
        self,
        item: TransferItem,
        apply: ApplyFn,
        check_exists: Optional[ExistsFn],
        stats: RunStatistics,
        abort: _AbortFlag
    ) -> None:
        if abort.is_set:
            return

        if self.options.skip_existing and check_exists is not None and item.operation.creates:
            try:
                exists = await check_exists(item)
            except Exception as e:
                self._fail(item, f"existence check failed: {e}", stats, abort)
                return
            if exists:
                item.outcome = ItemOutcome.SKIPPED
                stats.record_skip()
                logger.debug(f"Skipping existing {item.display_name}")
                return

        retries = 0
        while True:
            # Items stopped by an abort stay uncounted
            if abort.is_set:
                return
            item.attempts += 1
            try:
                result = await apply(item)
            except Exception as e:
                result = ApplyResult.terminal(f"Unexpected error: {e}")

            if result.success:
                item.outcome = ItemOutcome.MIGRATED
                item.error = None
                stats.record_success()
                return

            if result.is_retryable and retries < self.options.max_retries:
                if abort.is_set:
                    logger.debug(f"Not retrying {item.display_name}: transfer is aborting")
                    return
                retries += 1
                delay = backoff_delay(retries, self.options.backoff_seconds)
                logger.warning(
                    f"Retrying {item.display_name} in {delay:g}s "
                    f"(retry {retries}/{self.options.max_retries}): {result.reason}"
                )
                await self.sleep(delay)
                continue

            self._fail(item, result.reason or "unknown error", stats, abort)
            return

    def _fail(self, item: TransferItem, reason: str, stats: RunStatistics, abort: _AbortFlag) -> None:
        item.outcome = ItemOutcome.FAILED
        item.error = reason
        message = f"Failed to {item.operation.value} {item.display_name}: {reason}"
        stats.record_failure(message)
        logger.error(message)

        if not self.options.continue_on_error and not abort.is_set:
            abort.item = item
