"""
Notification fan-out queue.

Detected additions are turned into one task per interested subscriber and
appended to an in-memory FIFO. A recurring drain empties it in fixed-size
batches, delivering each batch concurrently with a pause between batches to
stay under Telegram and SMS gateway rate limits. Delivery is attempted once;
failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, Optional, Sequence

from .errors import DispatchError
from .formatting import format_personal, format_sms_hospital_list
from .models import NotificationTask, VacancyEntry
from .subscribers import SubscriberStore

logger = logging.getLogger(__name__)


SendTelegramFunc = Callable[[int, str], Awaitable[None]]
SendSmsFunc = Callable[[str, str], Awaitable[None]]
SleepFunc = Callable[[float], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationDispatcher:
    """Owns the pending-task queue and its drain loop."""

    def __init__(
        self,
        store: SubscriberStore,
        *,
        send_telegram: SendTelegramFunc,
        send_sms: SendSmsFunc,
        batch_size: int = 10,
        batch_pause: float = 1.0,
        drain_interval: float = 3.0,
        warning_threshold: int = 500,
        clock: Callable[[], datetime] = _utcnow,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._store = store
        self._send_telegram = send_telegram
        self._send_sms = send_sms
        self._batch_size = batch_size
        self._batch_pause = batch_pause
        self._drain_interval = drain_interval
        self._warning_threshold = warning_threshold
        self._clock = clock
        self._sleep = sleep
        self._queue: Deque[NotificationTask] = deque()
        self._draining = False
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def pending_tasks(self) -> tuple[NotificationTask, ...]:
        return tuple(self._queue)

    async def queue(self, added: Sequence[VacancyEntry]) -> int:
        """
        Build tasks for subscribers watching any of the added centers.

        Returns the number of tasks appended. SubscriberQueryError from the
        store propagates to the caller.
        """
        if not added:
            return 0

        names = {entry.center_name for entry in added}
        subscribers = await self._store.find_overlapping(names)
        now = self._clock()
        queued = 0
        for subscriber in subscribers:
            watched = set(subscriber.watched_hospitals)
            matched = tuple(entry for entry in added if entry.center_name in watched)
            if not matched:
                continue
            self._queue.append(
                NotificationTask(
                    subscriber=subscriber,
                    channel=subscriber.channel,
                    matched_entries=matched,
                    enqueued_at=now,
                )
            )
            queued += 1

        logger.info("Queued %s notification task(s), %s pending", queued, len(self._queue))
        if len(self._queue) >= self._warning_threshold:
            logger.warning(
                "Notification queue holds %s tasks (threshold %s)",
                len(self._queue),
                self._warning_threshold,
            )
        return queued

    async def drain(self) -> int:
        """Deliver everything queued; returns the number of tasks attempted."""
        if self._draining:
            return 0
        self._draining = True
        attempted = 0
        try:
            while self._queue:
                size = min(self._batch_size, len(self._queue))
                batch = [self._queue.popleft() for _ in range(size)]
                await asyncio.gather(*(self.deliver(task) for task in batch), return_exceptions=True)
                attempted += len(batch)
                if self._queue:
                    await self._sleep(self._batch_pause)
        finally:
            self._draining = False
        if attempted:
            logger.info("Drained %s notification task(s)", attempted)
        return attempted

    async def deliver(self, task: NotificationTask) -> bool:
        """Send one task on each of its channels; True only if all succeeded."""
        jobs = []
        if task.channel.uses_telegram:
            jobs.append(self._deliver_telegram(task))
        if task.channel.uses_sms:
            jobs.append(self._deliver_sms(task))

        results = await asyncio.gather(*jobs, return_exceptions=True)
        ok = True
        for result in results:
            if isinstance(result, BaseException):
                ok = False
                logger.warning("Delivery to subscriber %s failed: %s", task.subscriber.id, result)
        return ok

    async def _deliver_telegram(self, task: NotificationTask) -> None:
        chat_id = task.subscriber.telegram_chat_id
        if chat_id is None:
            raise DispatchError("subscriber has no telegram chat id")
        try:
            await self._send_telegram(chat_id, format_personal(task.matched_entries))
        except Exception as e:  # noqa: BLE001
            raise DispatchError(f"telegram: {e}") from e

    async def _deliver_sms(self, task: NotificationTask) -> None:
        phone = task.subscriber.phone_number
        if not phone:
            raise DispatchError("subscriber has no phone number")
        try:
            await self._send_sms(phone, format_sms_hospital_list(task.matched_entries))
        except DispatchError:
            raise
        except Exception as e:  # noqa: BLE001
            raise DispatchError(f"sms: {e}") from e

    # region drain loop
    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._drain_loop(), name="notification-drain")

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=30)
        except asyncio.TimeoutError:
            logger.warning("Drain task did not stop within timeout")
        self._task = None

    async def _drain_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.drain()
            except Exception as e:  # noqa: BLE001
                logger.exception("Unexpected error while draining notifications: %s", e)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._drain_interval)
            except asyncio.TimeoutError:
                pass

    # endregion


__all__ = ["NotificationDispatcher"]
