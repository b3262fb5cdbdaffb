from __future__ import annotations

from housewatch.formatting import (
    escape_md,
    format_broadcast,
    format_otp_request,
    format_quiet_notice,
    format_sms_hospital_list,
)
from housewatch.models import DiffResult, VacancyEntry


def _entry(name: str, slots: int) -> VacancyEntry:
    return VacancyEntry(center_name=name, slots_left=slots)


def test_broadcast_lists_changes_and_current_vacancies() -> None:
    snapshot = (_entry("LUTH", 1), _entry("UCH Ibadan", 4), _entry("ABUTH", 2))
    result = DiffResult(added=(snapshot[1], snapshot[2]), removed=(_entry("FMC Owo", 1),))

    text = format_broadcast(result, snapshot)

    assert "🆕 *2 new hospitals added:*" in text
    assert "❌ *1 hospital removed:*" in text
    assert " FMC Owo" in text
    assert "1. *LUTH (1 slot)*" in text
    assert "2. *UCH Ibadan (4 slots)*" in text
    assert text.index("added") < text.index("removed") < text.index("Available Housemanship Vacancies")


def test_broadcast_without_removals_has_no_removed_section() -> None:
    snapshot = (_entry("LUTH", 2),)
    text = format_broadcast(DiffResult(added=snapshot), snapshot)

    assert "1 new hospital added" in text
    assert "removed" not in text


def test_escape_md_handles_markdown_characters() -> None:
    assert escape_md("St_Luke*s [Annex]") == "St\\_Luke\\*s \\[Annex]"


def test_sms_hospital_list_is_plain_text() -> None:
    assert format_sms_hospital_list((_entry("A_1", 1), _entry("B", 2))) == "A_1, B"


def test_otp_request_includes_challenge_and_deadline() -> None:
    text = format_otp_request("Code sent to d***@mail.com", 300)
    assert "Code sent to d***@mail.com" in text
    assert "5 minute(s)" in text


def test_quiet_notice_mentions_threshold() -> None:
    assert "24 hours" in format_quiet_notice(24.0)


def test_quiet_notice_mentions_reset_only_when_cadence_changed() -> None:
    assert "back to normal" in format_quiet_notice(24.0)
    assert "back to normal" not in format_quiet_notice(24.0, cadence_reset=False)
