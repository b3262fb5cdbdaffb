"""
Pydantic models for the housemanship watcher domain.

Vacancies, auth tokens, subscribers and notification tasks shared by every
component.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class VacancyEntry(BaseModel):
    """One open center with its remaining slot count."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    center_name: str = Field(alias="centerName")
    # the portal sends officer_left as a numeric string
    slots_left: int = Field(alias="officer_left", ge=0)


VacancySnapshot = Tuple[VacancyEntry, ...]


class DiffResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    added: Tuple[VacancyEntry, ...] = ()
    removed: Tuple[VacancyEntry, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


class AuthToken(BaseModel):
    """Portal JWT with its parsed expiry."""

    model_config = ConfigDict(frozen=True)

    value: str
    expires_at: datetime

    def is_fresh(self, now: datetime, margin: timedelta) -> bool:
        return now < self.expires_at - margin


class Channel(str, Enum):
    TELEGRAM = "telegram"
    SMS = "sms"
    BOTH = "both"

    @property
    def uses_telegram(self) -> bool:
        return self in (Channel.TELEGRAM, Channel.BOTH)

    @property
    def uses_sms(self) -> bool:
        return self in (Channel.SMS, Channel.BOTH)


class Subscriber(BaseModel):
    """Subscriber row as returned by the subscriber store."""

    model_config = ConfigDict(frozen=True)

    id: str
    telegram_chat_id: Optional[int] = None
    phone_number: Optional[str] = None
    watched_hospitals: Tuple[str, ...] = ()
    channel: Channel = Channel.TELEGRAM


class NotificationTask(BaseModel):
    """Single delivery unit; discarded after one attempt."""

    model_config = ConfigDict(frozen=True)

    subscriber: Subscriber
    channel: Channel
    matched_entries: Tuple[VacancyEntry, ...]
    enqueued_at: datetime


class SchedulerState(BaseModel):
    """State of the polling scheduler, used internally."""

    current_interval_ms: int
    consecutive_active_checks: int = 0
    last_change_at: Optional[datetime] = None
    quiet_notified: bool = False
    is_running: bool = False
    checks_count: int = 0
    last_check_at: Optional[datetime] = None
    last_error: Optional[str] = None
    changes_found_total: int = 0


__all__ = [
    "VacancyEntry",
    "VacancySnapshot",
    "DiffResult",
    "AuthToken",
    "Channel",
    "Subscriber",
    "NotificationTask",
    "SchedulerState",
]
