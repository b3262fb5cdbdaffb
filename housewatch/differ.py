"""Change detection between two vacancy snapshots."""

from __future__ import annotations

from typing import Iterable

from .models import DiffResult, VacancyEntry


def diff(previous: Iterable[VacancyEntry], current: Iterable[VacancyEntry]) -> DiffResult:
    """
    Return centers that appeared in ``current`` and centers gone from ``previous``.

    Membership is decided by center name only, so a changed slot count on a
    center present in both snapshots is not reported. Callers must not pass an
    empty ``current`` snapshot: an empty fetch is a failure, not a mass removal.
    """
    previous = tuple(previous)
    current = tuple(current)
    prev_names = {entry.center_name for entry in previous}
    curr_names = {entry.center_name for entry in current}

    added = tuple(entry for entry in current if entry.center_name not in prev_names)
    removed = tuple(entry for entry in previous if entry.center_name not in curr_names)
    return DiffResult(added=added, removed=removed)


__all__ = ["diff"]
