"""
Adaptive polling scheduler for portal vacancies.

Background service that:
- fetches the vacancy list on a periodic timer and diffs it against the
  previous snapshot
- broadcasts changes and hands added centers to the notification queue
- speeds up polling after activity (two step-downs) and falls back to the
  baseline after a quiet period, announcing it once
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Sequence

from .differ import diff
from .errors import FetchError, SubscriberQueryError
from .formatting import format_broadcast, format_quiet_notice
from .models import DiffResult, SchedulerState, VacancyEntry, VacancySnapshot

logger = logging.getLogger(__name__)


FetchFunc = Callable[[], Awaitable[VacancySnapshot]]
NotifyFunc = Callable[[str], Awaitable[None]]
EnqueueFunc = Callable[[Sequence[VacancyEntry]], Awaitable[int]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _noop_notify(text: str) -> None:
    return None


@dataclass
class PollingScheduler:
    """Fetch/diff loop with a variable interval."""

    fetch: FetchFunc
    on_broadcast: NotifyFunc
    on_quiet: NotifyFunc
    enqueue: EnqueueFunc
    on_text: NotifyFunc = _noop_notify
    baseline_ms: int = 40_000
    fast1_ms: int = 20_000
    fast2_ms: int = 10_000
    quiet_threshold: timedelta = timedelta(hours=24)
    decay_check_seconds: float = 600.0
    clock: Callable[[], datetime] = _utcnow
    _state: SchedulerState = field(init=False)
    _snapshot: VacancySnapshot = ()
    _timer: Optional[asyncio.Task[None]] = None
    _decay_task: Optional[asyncio.Task[None]] = None
    _cycling_timers: set[asyncio.Task[None]] = field(default_factory=set)
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self) -> None:
        if not self.baseline_ms > self.fast1_ms > self.fast2_ms:
            raise ValueError("intervals must satisfy baseline > fast1 > fast2")
        self._state = SchedulerState(
            current_interval_ms=self.baseline_ms,
            last_change_at=self.clock(),
        )

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def snapshot(self) -> VacancySnapshot:
        return self._snapshot

    # region lifecycle
    async def start(self) -> None:
        if self._state.is_running:
            logger.info("Scheduler already running")
            return
        self._stop_event.clear()
        self._state.is_running = True
        self._restart_timer()
        self._decay_task = asyncio.create_task(self._decay_loop(), name="vacancy-decay-check")
        logger.info("Polling started at %s ms", self._state.current_interval_ms)
        await self.on_text("Vacancy monitoring started ✅")

    async def stop(self) -> None:
        if not self._state.is_running:
            return
        self._stop_event.set()
        self._state.is_running = False
        tasks = [task for task in (self._timer, self._decay_task) if task is not None]
        self._timer = None
        self._decay_task = None
        for task in tasks:
            if task is not asyncio.current_task():
                task.cancel()
        await asyncio.gather(
            *(task for task in tasks if task is not asyncio.current_task()),
            return_exceptions=True,
        )
        await self.on_text("Vacancy monitoring stopped ⏹️")

    # endregion

    # region timers
    def _restart_timer(self) -> None:
        """Start a timer for the current interval, then retire the previous one."""
        old = self._timer
        self._timer = asyncio.create_task(self._tick_loop(), name="vacancy-poll-timer")
        # a timer in the middle of a cycle finishes it and exits on its own
        if old is not None and old not in self._cycling_timers and not old.done():
            old.cancel()

    async def _tick_loop(self) -> None:
        me = asyncio.current_task()
        interval = self._state.current_interval_ms / 1000
        while self._timer is me and not self._stop_event.is_set():
            await asyncio.sleep(interval)
            if self._timer is not me or self._stop_event.is_set():
                break
            self._cycling_timers.add(me)
            try:
                await self.run_cycle()
            except Exception as e:  # noqa: BLE001
                logger.exception("Unexpected error in polling cycle: %s", e)
                self._state.last_error = str(e)
            finally:
                self._cycling_timers.discard(me)

    async def _decay_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.decay_check_seconds)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.check_decay()
            except Exception as e:  # noqa: BLE001
                logger.exception("Unexpected error in decay check: %s", e)

    def _set_interval(self, interval_ms: int) -> None:
        if interval_ms == self._state.current_interval_ms:
            return
        logger.info("Polling interval %s ms -> %s ms", self._state.current_interval_ms, interval_ms)
        self._state.current_interval_ms = interval_ms
        if self._state.is_running:
            self._restart_timer()

    # endregion

    async def run_cycle(self) -> Optional[DiffResult]:
        """
        Run one fetch/diff cycle.

        Returns the diff, or None when the cycle was skipped because the fetch
        failed or came back empty. A skipped cycle changes nothing.
        """
        now = self.clock()
        self._state.checks_count += 1
        self._state.last_check_at = now

        try:
            snapshot = await self.fetch()
        except FetchError as e:
            logger.warning("Vacancy fetch failed, skipping cycle: %s", e)
            self._state.last_error = str(e)
            return None
        if not snapshot:
            # an empty list is treated as a failed fetch, not as every center closing
            logger.info("Vacancy fetch returned no entries, skipping cycle")
            return None

        self._state.last_error = None
        result = diff(self._snapshot, snapshot)
        self._snapshot = tuple(snapshot)
        if result.is_empty:
            logger.debug("No vacancy changes on this check")
            return result

        logger.info("Vacancy changes: %s added, %s removed", len(result.added), len(result.removed))
        try:
            await self.on_broadcast(format_broadcast(result, snapshot))
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to broadcast vacancy changes: %s", e)

        self._record_change(now, result)

        if result.added:
            try:
                await self.enqueue(result.added)
            except SubscriberQueryError as e:
                logger.error("Subscriber lookup failed, personal alerts skipped: %s", e)
            except Exception as e:  # noqa: BLE001
                logger.exception("Failed to queue personal alerts: %s", e)
        return result

    def _record_change(self, now: datetime, result: DiffResult) -> None:
        state = self._state
        state.consecutive_active_checks += 1
        state.last_change_at = now
        state.quiet_notified = False
        state.changes_found_total += len(result.added) + len(result.removed)

        if state.consecutive_active_checks >= 2:
            self._set_interval(self.fast2_ms)
        else:
            self._set_interval(self.fast1_ms)

    async def check_decay(self) -> bool:
        """Reset to the baseline after a quiet period; True if a reset happened now."""
        state = self._state
        if state.quiet_notified or state.last_change_at is None:
            return False
        if self.clock() - state.last_change_at < self.quiet_threshold:
            return False

        was_fast = state.current_interval_ms != self.baseline_ms
        state.consecutive_active_checks = 0
        state.quiet_notified = True
        self._set_interval(self.baseline_ms)
        logger.info("No vacancy changes for %s, polling at baseline", self.quiet_threshold)
        hours = self.quiet_threshold.total_seconds() / 3600
        try:
            await self.on_quiet(format_quiet_notice(hours, cadence_reset=was_fast))
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to send quiet notice: %s", e)
        return True


__all__ = ["PollingScheduler"]
