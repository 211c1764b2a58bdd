"""Decides when sync runs happen.

Edits mark notes dirty. A soft trigger (timer tick, window focus, becoming
visible) only starts a run when the user has stopped typing and the last
run is not too recent. A force trigger (blur, becoming hidden) skips those
gates but needs something dirty to push. Overlapping triggers are dropped,
never queued.
"""

import logging
from typing import Awaitable, Callable, FrozenSet, Generic, Optional, Set, TypeVar

import anyio

from rhizonote_sync.exceptions import RhizonoteError
from rhizonote_sync.models.schema import now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DEBOUNCE_MS = 5000
DEFAULT_MIN_INTERVAL_MS = 30_000
DEFAULT_INTERVAL_MS = 5 * 60 * 1000
DEFAULT_COOLDOWN_MS = 2000
DEFAULT_STARTUP_DELAY_MS = 1500


class SyncScheduler(Generic[T]):
    """Gatekeeper around a sync callable.

    Args:
        sync: Coroutine function running one sync. It receives the dirty
            ids captured at run start. Raising marks the run as failed.
        clock: Returns the current time in epoch milliseconds.
        sleep: Async sleep taking seconds; injectable for tests.

    Example:
        scheduler = SyncScheduler(run_once)
        scheduler.mark_dirty(note.id)
        await scheduler.force_trigger()
    """

    def __init__(
        self,
        sync: Callable[[FrozenSet[str]], Awaitable[T]],
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        min_interval_ms: int = DEFAULT_MIN_INTERVAL_MS,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        cooldown_ms: int = DEFAULT_COOLDOWN_MS,
        startup_delay_ms: int = DEFAULT_STARTUP_DELAY_MS,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self._sync = sync
        self.debounce_ms = debounce_ms
        self.min_interval_ms = min_interval_ms
        self.interval_ms = interval_ms
        self.cooldown_ms = cooldown_ms
        self.startup_delay_ms = startup_delay_ms
        self._clock = clock
        self._sleep = sleep

        self.dirty_ids: Set[str] = set()
        self.last_sync_ms: Optional[int] = None
        self.last_edit_ms: Optional[int] = None
        self._running = False
        self._cooldown_until = 0

    @property
    def in_flight(self) -> bool:
        """True while a run is executing or cooling down after one."""
        return self._running or self._clock() < self._cooldown_until

    def mark_dirty(self, note_id: str) -> None:
        """Record a local edit of ``note_id``."""
        self.dirty_ids.add(note_id)
        self.last_edit_ms = self._clock()

    def _soft_gate(self) -> Optional[str]:
        now = self._clock()
        if self.last_edit_ms is not None and now - self.last_edit_ms < self.debounce_ms:
            return "edit debounce"
        if (
            self.last_sync_ms is not None
            and now - self.last_sync_ms < self.min_interval_ms
        ):
            return "minimum interval"
        return None

    async def soft_trigger(self) -> Optional[T]:
        """Run unless in flight, recently edited, or recently synced.

        Returns:
            The sync result, or None when the trigger was dropped.
        """
        if self.in_flight:
            logger.debug("Soft trigger dropped: sync in flight")
            return None
        reason = self._soft_gate()
        if reason:
            logger.debug(f"Soft trigger dropped: {reason}")
            return None
        return await self._execute()

    async def force_trigger(self) -> Optional[T]:
        """Run now if anything is dirty and no run is in flight."""
        if self.in_flight:
            logger.debug("Force trigger dropped: sync in flight")
            return None
        if not self.dirty_ids:
            logger.debug("Force trigger dropped: nothing dirty")
            return None
        return await self._execute()

    async def sync_now(self) -> Optional[T]:
        """Run unconditionally unless a run is in flight."""
        if self.in_flight:
            return None
        return await self._execute()

    async def _execute(self) -> T:
        self._running = True
        captured = frozenset(self.dirty_ids)
        self.last_sync_ms = self._clock()
        try:
            result = await self._sync(captured)
        except Exception:
            logger.error(
                f"Sync failed; keeping {len(self.dirty_ids)} dirty note(s)",
                exc_info=True,
            )
            raise
        else:
            # Edits made during the run stay dirty
            self.dirty_ids -= captured
            return result
        finally:
            self._running = False
            self._cooldown_until = self._clock() + self.cooldown_ms

    async def _guarded(self, trigger: Callable[[], Awaitable[Optional[T]]]) -> Optional[T]:
        """Run ``trigger`` for an event hook; sync errors are logged only."""
        try:
            return await trigger()
        except RhizonoteError as e:
            logger.warning(f"Scheduled sync failed: {e}")
            return None

    async def on_visibility_change(self, visible: bool) -> Optional[T]:
        if visible:
            return await self._guarded(self.soft_trigger)
        return await self._guarded(self.force_trigger)

    async def on_focus(self) -> Optional[T]:
        return await self._guarded(self.soft_trigger)

    async def on_blur(self) -> Optional[T]:
        return await self._guarded(self.force_trigger)

    async def run_forever(self, iterations: Optional[int] = None) -> None:
        """Startup sync after the startup delay, then periodic soft triggers.

        Args:
            iterations: Stop after this many periodic ticks (None runs
                until cancelled).
        """
        await self._sleep(self.startup_delay_ms / 1000)
        await self._guarded(self.sync_now)
        ticks = 0
        while iterations is None or ticks < iterations:
            await self._sleep(self.interval_ms / 1000)
            await self._guarded(self.soft_trigger)
            ticks += 1
