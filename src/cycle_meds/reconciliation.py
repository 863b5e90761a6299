"""Convergent merge for Daily Adherence Records that share one (cycle, day) key.

Overlapping initialization can leave several records for the same day. The
merge keeps the most recently modified record as the base and folds every
other record's user data into it:
- one-time entries are unioned by id; the copy on the most recent record wins
- recurring adherence rows are unioned by recurring entry id; the most recent
  touched (taken or skipped) row wins over untouched ones

An untouched row cannot be told apart from a reset one, so a reset made on
the newest copy loses to a taken or skipped row on an older duplicate. The
merge would rather bring back a recorded dose than drop one.

The result depends only on the set of input records, never on their order,
and merging a merged record again returns it unchanged.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from .models import DailyAdherenceRecord, OneTimeEntry, RecurringAdherence


@dataclass(frozen=True)
class ReconciliationResult:
    merged: DailyAdherenceRecord
    discarded: list[DailyAdherenceRecord] = field(default_factory=list)

    @property
    def had_duplicates(self) -> bool:
        return bool(self.discarded)


def _recency_key(record: DailyAdherenceRecord) -> tuple[datetime, str, str]:
    # Total order: the JSON dump only breaks ties between same-id, same-timestamp copies.
    return record.last_modified, record.id, record.model_dump_json()


def _merge_adherence(ordered: list[DailyAdherenceRecord]) -> list[RecurringAdherence]:
    chosen: dict[str, RecurringAdherence] = {}
    for record in ordered:
        for row in record.adherence:
            current = chosen.get(row.recurring_entry_id)
            if current is None or (current.state == "untouched" and row.state != "untouched"):
                chosen[row.recurring_entry_id] = row
    return list(chosen.values())


def _merge_one_time_entries(ordered: list[DailyAdherenceRecord]) -> list[OneTimeEntry]:
    merged: dict[str, OneTimeEntry] = {}
    for record in ordered:
        for entry in record.one_time_entries:
            merged.setdefault(entry.id, entry)
    return list(merged.values())


def reconcile_duplicate_records(records: Sequence[DailyAdherenceRecord]) -> ReconciliationResult:
    """Collapse records sharing one key into a single merged record.

    Raises ValueError when ``records`` is empty or mixes different keys.
    """
    if not records:
        raise ValueError("reconcile_duplicate_records needs at least one record")
    keys = {record.key for record in records}
    if len(keys) > 1:
        raise ValueError(f"records span several (cycle_id, cycle_day) keys: {sorted(keys)}")

    ordered = sorted(records, key=_recency_key, reverse=True)
    base = ordered[0]
    if len(ordered) == 1:
        return ReconciliationResult(merged=base)

    merged = base.model_copy(
        update={
            "adherence": _merge_adherence(ordered),
            "one_time_entries": _merge_one_time_entries(ordered),
        }
    )
    return ReconciliationResult(merged=merged, discarded=ordered[1:])
