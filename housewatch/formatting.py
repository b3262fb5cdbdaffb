"""
Text of every message the watcher sends.

Telegram messages use legacy Markdown (parse_mode="Markdown"); SMS payloads
are plain text.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from .models import DiffResult, VacancyEntry


def escape_md(value: str) -> str:
    for ch in "*_`[":
        value = value.replace(ch, f"\\{ch}")
    return value


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def _center_lines(entries: Iterable[VacancyEntry]) -> list[str]:
    return [f" {escape_md(entry.center_name)}" for entry in entries]


def format_vacancy_list(snapshot: Sequence[VacancyEntry]) -> str:
    lines = ["🏥 *Available Housemanship Vacancies:*", ""]
    for index, entry in enumerate(snapshot, start=1):
        slot_text = _plural(entry.slots_left, "slot", "slots")
        lines.append(f"{index}. *{escape_md(entry.center_name)} ({entry.slots_left} {slot_text})*")
    return "\n".join(lines)


def format_broadcast(result: DiffResult, snapshot: Sequence[VacancyEntry]) -> str:
    """Channel message: added centers, removed centers, then the full list."""
    parts: list[str] = []
    if result.added:
        count = len(result.added)
        parts.append("*🏥 Housemanship Portal Updated!*\n")
        parts.append(f"🆕 *{count} new {_plural(count, 'hospital', 'hospitals')} added:*")
        parts.extend(_center_lines(result.added))
        parts.append("")
    if result.removed:
        count = len(result.removed)
        parts.append("*🏥 Housemanship Portal Updated!*\n")
        parts.append(f"❌ *{count} {_plural(count, 'hospital', 'hospitals')} removed:*")
        parts.extend(_center_lines(result.removed))
        parts.append("")
    parts.append(format_vacancy_list(snapshot))
    return "\n".join(parts)


def format_personal(entries: Sequence[VacancyEntry]) -> str:
    """Direct message for a subscriber, limited to the centers they watch."""
    count = len(entries)
    lines = [
        f"🔔 *{count} {_plural(count, 'hospital', 'hospitals')} you watch just opened:*",
        "",
    ]
    for entry in entries:
        slot_text = _plural(entry.slots_left, "slot", "slots")
        lines.append(f"• *{escape_md(entry.center_name)}* ({entry.slots_left} {slot_text})")
    lines.extend(["", "Log in to the portal quickly to secure a slot."])
    return "\n".join(lines)


def format_sms_hospital_list(entries: Sequence[VacancyEntry]) -> str:
    return ", ".join(entry.center_name for entry in entries)


def format_otp_request(challenge: str, timeout_seconds: float) -> str:
    minutes = max(1, round(timeout_seconds / 60))
    return (
        "🔐 Portal login needs a one-time code.\n\n"
        f"{challenge}\n\n"
        f"Reply with the 6-digit code within {minutes} minute(s)."
    )


def format_otp_timeout(timeout_seconds: float) -> str:
    minutes = max(1, round(timeout_seconds / 60))
    return f"⌛ No OTP received within {minutes} minute(s). Portal login aborted."


def format_auth_failure(error: Exception) -> str:
    return f"⚠️ Portal login failed: {error}"


def format_quiet_notice(quiet_hours: float, cadence_reset: bool = True) -> str:
    text = f"😴 No vacancy changes in the last {quiet_hours:g} hours."
    if cadence_reset:
        text += " Checking frequency is back to normal."
    return text


__all__ = [
    "escape_md",
    "format_vacancy_list",
    "format_broadcast",
    "format_personal",
    "format_sms_hospital_list",
    "format_otp_request",
    "format_otp_timeout",
    "format_auth_failure",
    "format_quiet_notice",
]
