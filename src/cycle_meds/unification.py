"""Unification engine: pure reads over a recurring plan and daily records.

Nothing here mutates its inputs. Missing data never raises; it produces an
empty view.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Sequence

from .models import (
    DailyAdherenceRecord,
    DayBreakdown,
    OneTimeEntry,
    RecurringAdherence,
    RecurringEntry,
    RecurringMedicationPlan,
    ScheduleOverview,
    UnifiedEntry,
    UnifiedMedicationView,
)
from .reconciliation import reconcile_duplicate_records


def day_date(start_date: dt.date, day: int) -> dt.date:
    """Calendar date of a 1-based cycle day."""
    return start_date + dt.timedelta(days=day - 1)


def active_recurring_entries(plan: RecurringMedicationPlan | None, day: int) -> list[RecurringEntry]:
    if plan is None:
        return []
    return plan.active_entries(day)


def find_day_record(
    cycle_id: str,
    day: int,
    records: Sequence[DailyAdherenceRecord],
) -> DailyAdherenceRecord | None:
    """Return the record for (cycle_id, day), merging duplicates in memory."""
    matches = [r for r in records if r.cycle_id == cycle_id and r.cycle_day == day]
    if not matches:
        return None
    if len(matches) == 1:
        return matches[0]
    return reconcile_duplicate_records(matches).merged


def _from_recurring(entry: RecurringEntry, adherence: RecurringAdherence | None) -> UnifiedEntry:
    return UnifiedEntry(
        id=entry.id,
        name=entry.name,
        dosage=entry.dosage,
        hour=entry.hour,
        minute=entry.minute,
        meridiem=entry.meridiem,
        time_key=entry.time_key,
        refrigerated=entry.refrigerated,
        origin="recurring",
        taken=adherence.taken if adherence else False,
        skipped=adherence.skipped if adherence else False,
        taken_at=adherence.taken_at if adherence else None,
        notes=(adherence.notes if adherence and adherence.notes else entry.notes),
        actual_dosage=adherence.actual_dosage if adherence else None,
        start_day=entry.start_day,
        end_day=entry.end_day,
    )


def _from_one_time(entry: OneTimeEntry) -> UnifiedEntry:
    return UnifiedEntry(
        id=entry.id,
        name=entry.name,
        dosage=entry.dosage,
        hour=entry.hour,
        minute=entry.minute,
        meridiem=entry.meridiem,
        time_key=entry.time_key,
        refrigerated=entry.refrigerated,
        origin="one-time",
        taken=entry.taken,
        skipped=entry.skipped,
        taken_at=entry.taken_at,
        notes=entry.notes,
    )


def get_medications_for_day(
    cycle_id: str,
    day: int,
    plan: RecurringMedicationPlan | None,
    records: Sequence[DailyAdherenceRecord],
    *,
    date: dt.date | None = None,
) -> UnifiedMedicationView:
    """Every medication that applies on ``day``, ordered by time of day.

    Recurring entries come from the plan when ``start_day <= day <= end_day``;
    one-time entries come from the day's record. Equal times keep recurring
    entries ahead of one-time entries.
    """
    if plan is not None and plan.cycle_id != cycle_id:
        plan = None
    record = find_day_record(cycle_id, day, records)

    entries: list[UnifiedEntry] = []
    for entry in active_recurring_entries(plan, day):
        adherence = record.adherence_for(entry.id) if record else None
        entries.append(_from_recurring(entry, adherence))
    if record is not None:
        entries.extend(_from_one_time(entry) for entry in record.one_time_entries)

    # sorted() is stable, so insertion order settles ties.
    entries = sorted(entries, key=lambda e: e.time_key)

    if date is None and record is not None:
        date = record.date

    return UnifiedMedicationView(
        cycle_id=cycle_id,
        day=day,
        date=date,
        entries=entries,
        total_count=len(entries),
        completed_count=sum(1 for e in entries if e.completed),
    )


def medication_count_for_day(
    cycle_id: str,
    day: int,
    plan: RecurringMedicationPlan | None,
    records: Sequence[DailyAdherenceRecord],
) -> int:
    return get_medications_for_day(cycle_id, day, plan, records).total_count


def get_schedule_overview(
    cycle_id: str,
    plan: RecurringMedicationPlan | None,
    day_indices: Sequence[int],
    records: Sequence[DailyAdherenceRecord],
    *,
    start_date: dt.date | None = None,
) -> ScheduleOverview | None:
    """Roll up per-day views over the caller's logged days.

    Returns None when the cycle has neither a plan nor any daily record.
    """
    if plan is not None and plan.cycle_id != cycle_id:
        plan = None
    cycle_records = [r for r in records if r.cycle_id == cycle_id]
    if plan is None and not cycle_records:
        return None

    breakdown: list[DayBreakdown] = []
    for day in day_indices:
        view = get_medications_for_day(
            cycle_id,
            day,
            plan,
            cycle_records,
            date=day_date(start_date, day) if start_date else None,
        )
        breakdown.append(
            DayBreakdown(
                day=day,
                date=view.date,
                entries=view.entries,
                completed=view.completed_count,
                total=view.total_count,
            )
        )

    return ScheduleOverview(
        cycle_id=cycle_id,
        plan=plan,
        total_medications=sum(item.total for item in breakdown),
        completed_medications=sum(item.completed for item in breakdown),
        daily_breakdown=breakdown,
    )
