from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Sequence

from housewatch.errors import FetchError, SubscriberQueryError
from housewatch.models import VacancyEntry
from housewatch.scheduler import PollingScheduler


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeFetcher:
    def __init__(self, *results) -> None:
        self._results = list(results)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        result = self._results.pop(0) if len(self._results) > 1 else self._results[0]
        if isinstance(result, Exception):
            raise result
        return result


class Recorder:
    def __init__(self) -> None:
        self.messages: list[str] = []

    async def __call__(self, text: str) -> None:
        self.messages.append(text)


class FakeQueue:
    def __init__(self, error: Exception | None = None) -> None:
        self.batches: list[tuple[str, ...]] = []
        self._error = error

    async def __call__(self, added: Sequence[VacancyEntry]) -> int:
        if self._error is not None:
            raise self._error
        self.batches.append(tuple(e.center_name for e in added))
        return len(added)


def _snapshot(*names: str) -> tuple[VacancyEntry, ...]:
    return tuple(VacancyEntry(center_name=name, slots_left=2) for name in names)


def _scheduler(fetch, clock=None, queue=None):
    broadcasts = Recorder()
    quiet = Recorder()
    scheduler = PollingScheduler(
        fetch=fetch,
        on_broadcast=broadcasts,
        on_quiet=quiet,
        enqueue=queue or FakeQueue(),
        baseline_ms=40_000,
        fast1_ms=20_000,
        fast2_ms=10_000,
        clock=clock or FakeClock(),
    )
    return scheduler, broadcasts, quiet


def test_first_cycle_reports_all_open_vacancies_as_added() -> None:
    queue = FakeQueue()
    scheduler, broadcasts, _ = _scheduler(FakeFetcher(_snapshot("A", "B")), queue=queue)

    result = asyncio.run(scheduler.run_cycle())

    assert result is not None
    assert [e.center_name for e in result.added] == ["A", "B"]
    assert queue.batches == [("A", "B")]
    assert len(broadcasts.messages) == 1
    assert "2 new hospitals added" in broadcasts.messages[0]


def test_empty_fetch_skips_diff_and_keeps_state() -> None:
    fetch = FakeFetcher(_snapshot("A"), (), _snapshot("A"))
    scheduler, broadcasts, _ = _scheduler(fetch)

    asyncio.run(scheduler.run_cycle())
    state_before = scheduler.state.model_copy()

    skipped = asyncio.run(scheduler.run_cycle())

    assert skipped is None
    assert scheduler.snapshot == _snapshot("A")
    assert scheduler.state.current_interval_ms == state_before.current_interval_ms
    assert scheduler.state.consecutive_active_checks == state_before.consecutive_active_checks
    assert len(broadcasts.messages) == 1

    # the next non-empty fetch is compared with the snapshot before the empty one
    unchanged = asyncio.run(scheduler.run_cycle())
    assert unchanged is not None and unchanged.is_empty
    assert len(broadcasts.messages) == 1


def test_fetch_error_skips_cycle_silently() -> None:
    fetch = FakeFetcher(FetchError("boom"))
    scheduler, broadcasts, quiet = _scheduler(fetch)

    result = asyncio.run(scheduler.run_cycle())

    assert result is None
    assert scheduler.snapshot == ()
    assert scheduler.state.current_interval_ms == 40_000
    assert scheduler.state.last_error == "boom"
    assert broadcasts.messages == [] and quiet.messages == []


def test_cadence_steps_down_twice_then_holds() -> None:
    fetch = FakeFetcher(_snapshot("A"), _snapshot("A", "B"), _snapshot("A", "B", "C"))
    scheduler, _, _ = _scheduler(fetch)
    assert scheduler.state.current_interval_ms == 40_000

    asyncio.run(scheduler.run_cycle())
    assert scheduler.state.current_interval_ms == 20_000
    assert scheduler.state.consecutive_active_checks == 1

    asyncio.run(scheduler.run_cycle())
    assert scheduler.state.current_interval_ms == 10_000
    assert scheduler.state.consecutive_active_checks == 2

    asyncio.run(scheduler.run_cycle())
    assert scheduler.state.current_interval_ms == 10_000
    assert scheduler.state.consecutive_active_checks == 3


def test_unchanged_cycle_does_not_change_cadence() -> None:
    fetch = FakeFetcher(_snapshot("A"), _snapshot("A"))
    scheduler, _, _ = _scheduler(fetch)

    asyncio.run(scheduler.run_cycle())
    asyncio.run(scheduler.run_cycle())

    assert scheduler.state.current_interval_ms == 20_000
    assert scheduler.state.consecutive_active_checks == 1


def test_removal_only_change_is_broadcast_but_not_queued() -> None:
    queue = FakeQueue()
    fetch = FakeFetcher(_snapshot("A", "B"), _snapshot("A"))
    scheduler, broadcasts, _ = _scheduler(fetch, queue=queue)

    asyncio.run(scheduler.run_cycle())
    asyncio.run(scheduler.run_cycle())

    assert queue.batches == [("A", "B")]
    assert "1 hospital removed" in broadcasts.messages[-1]


def test_subscriber_query_failure_does_not_undo_broadcast() -> None:
    queue = FakeQueue(error=SubscriberQueryError("store down"))
    scheduler, broadcasts, _ = _scheduler(FakeFetcher(_snapshot("A")), queue=queue)

    result = asyncio.run(scheduler.run_cycle())

    assert result is not None
    assert len(broadcasts.messages) == 1
    assert scheduler.snapshot == _snapshot("A")
    assert scheduler.state.current_interval_ms == 20_000


def test_decay_resets_to_baseline_and_notifies_once() -> None:
    clock = FakeClock()
    fetch = FakeFetcher(_snapshot("A"), _snapshot("A", "B"), _snapshot("A", "B"))
    scheduler, _, quiet = _scheduler(fetch, clock=clock)

    asyncio.run(scheduler.run_cycle())
    asyncio.run(scheduler.run_cycle())
    assert scheduler.state.current_interval_ms == 10_000

    clock.advance(hours=23, minutes=59)
    assert asyncio.run(scheduler.check_decay()) is False
    assert scheduler.state.current_interval_ms == 10_000

    clock.advance(minutes=1)
    assert asyncio.run(scheduler.check_decay()) is True
    assert scheduler.state.current_interval_ms == 40_000
    assert scheduler.state.consecutive_active_checks == 0

    clock.advance(hours=30)
    assert asyncio.run(scheduler.check_decay()) is False
    assert len(quiet.messages) == 1

    # a quiet cycle in between does not re-arm the notice
    asyncio.run(scheduler.run_cycle())
    clock.advance(hours=30)
    assert asyncio.run(scheduler.check_decay()) is False
    assert len(quiet.messages) == 1


def test_new_quiet_period_after_activity_notifies_again() -> None:
    clock = FakeClock()
    fetch = FakeFetcher(_snapshot("A"), _snapshot("B"))
    scheduler, _, quiet = _scheduler(fetch, clock=clock)

    asyncio.run(scheduler.run_cycle())
    clock.advance(hours=24)
    asyncio.run(scheduler.check_decay())

    asyncio.run(scheduler.run_cycle())
    assert scheduler.state.current_interval_ms == 20_000
    clock.advance(hours=24)
    asyncio.run(scheduler.check_decay())

    assert len(quiet.messages) == 2
    assert scheduler.state.current_interval_ms == 40_000


def test_interval_change_replaces_running_timer() -> None:
    scheduler, _, _ = _scheduler(FakeFetcher(_snapshot("A")))

    async def scenario() -> None:
        await scheduler.start()
        first_timer = scheduler._timer
        await scheduler.run_cycle()
        second_timer = scheduler._timer
        await asyncio.gather(first_timer, return_exceptions=True)

        assert second_timer is not first_timer
        assert first_timer.cancelled()
        assert not second_timer.done()
        await scheduler.stop()
        assert second_timer.done()

    asyncio.run(scenario())


def test_running_timer_swaps_itself_without_overlap() -> None:
    counter = {"n": 0}

    async def fetch():
        counter["n"] += 1
        return _snapshot(*(f"C{i}" for i in range(counter["n"])))

    scheduler = PollingScheduler(
        fetch=fetch,
        on_broadcast=Recorder(),
        on_quiet=Recorder(),
        enqueue=FakeQueue(),
        baseline_ms=30,
        fast1_ms=20,
        fast2_ms=10,
    )

    async def scenario() -> None:
        await scheduler.start()
        await asyncio.sleep(0.3)
        live_timers = [
            task
            for task in asyncio.all_tasks()
            if task.get_name() == "vacancy-poll-timer" and not task.done()
        ]
        await scheduler.stop()
        assert len(live_timers) == 1

    asyncio.run(scenario())

    assert counter["n"] >= 3
    assert scheduler.state.current_interval_ms == 10
    assert not scheduler.is_running


class GatedBroadcast(Recorder):
    """Blocks every broadcast after ``arm()`` until ``release()``."""

    def __init__(self) -> None:
        super().__init__()
        self.entered: asyncio.Event | None = None
        self.gate: asyncio.Event | None = None

    def arm(self) -> None:
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def __call__(self, text: str) -> None:
        await super().__call__(text)
        if self.gate is not None:
            self.entered.set()
            await self.gate.wait()


def test_decay_during_inflight_cycle_keeps_its_alerts() -> None:
    clock = FakeClock()
    queue = FakeQueue()
    broadcasts = GatedBroadcast()
    quiet = Recorder()
    scheduler = PollingScheduler(
        fetch=FakeFetcher(_snapshot("A"), _snapshot("A", "B")),
        on_broadcast=broadcasts,
        on_quiet=quiet,
        enqueue=queue,
        baseline_ms=30,
        fast1_ms=20,
        fast2_ms=10,
        decay_check_seconds=3600,
        clock=clock,
    )

    async def scenario() -> None:
        await scheduler.run_cycle()
        assert scheduler.state.current_interval_ms == 20

        clock.advance(hours=25)
        broadcasts.arm()
        await scheduler.start()
        # the timer's cycle is now parked inside the broadcast
        await asyncio.wait_for(broadcasts.entered.wait(), timeout=2)

        assert await scheduler.check_decay() is True
        broadcasts.gate.set()
        for _ in range(200):
            if len(queue.batches) == 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

    asyncio.run(scenario())

    assert queue.batches == [("A",), ("B",)]
    assert [e.center_name for e in scheduler.snapshot] == ["A", "B"]
    assert scheduler.state.consecutive_active_checks == 1
    assert len(quiet.messages) == 1


def test_quiet_notice_without_activity_does_not_claim_a_reset() -> None:
    clock = FakeClock()
    scheduler, _, quiet = _scheduler(FakeFetcher(_snapshot("A")), clock=clock)

    clock.advance(hours=24)
    assert asyncio.run(scheduler.check_decay()) is True

    assert scheduler.state.current_interval_ms == 40_000
    assert quiet.messages == ["😴 No vacancy changes in the last 24 hours."]


def test_quiet_notice_after_activity_mentions_the_reset() -> None:
    clock = FakeClock()
    scheduler, _, quiet = _scheduler(FakeFetcher(_snapshot("A")), clock=clock)

    asyncio.run(scheduler.run_cycle())
    clock.advance(hours=24)
    assert asyncio.run(scheduler.check_decay()) is True

    assert quiet.messages == ["😴 No vacancy changes in the last 24 hours. Checking frequency is back to normal."]
