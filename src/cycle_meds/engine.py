"""MedicationEngine: the API surface the surrounding application calls.

It wires one ``MedicationStore`` into the unification reads, the adherence
mutator and the legacy migrator, and owns whole-plan submission. Calendar
dates come from the registered ``CycleInfo``; a cycle that was never
registered simply gets ``date=None``.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from .adherence import AdherenceMutator
from .config import Config
from .migration import LegacyMigrator, MigrationOptions, MigrationOutcome
from .models import (
    CycleInfo,
    DailyAdherenceRecord,
    EntryRef,
    Medication,
    OneTimeEntry,
    OneTimeEntryDraft,
    RecurringEntry,
    RecurringEntryDraft,
    RecurringMedicationPlan,
    ScheduleOverview,
    UnifiedEntry,
    UnifiedMedicationView,
    completion_rate,
    new_id,
    utc_now,
)
from .store import MedicationStore
from .templates import template_entries
from .time_keys import group_by_time_period, time_key
from .unification import get_medications_for_day, get_schedule_overview

logger = logging.getLogger(__name__)


class MedicationEngine:
    def __init__(
        self,
        store: MedicationStore | None = None,
        *,
        config: Config | None = None,
        clock: Callable[[], dt.datetime] = utc_now,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self.store = store if store is not None else MedicationStore()
        self.config = config or Config()
        self._clock = clock
        self._new_id = id_factory
        self.mutator = AdherenceMutator(self.store, clock=clock, id_factory=id_factory)
        self.migrator = LegacyMigrator(self.store, clock=clock, id_factory=id_factory)

    # --- Cycles ---

    def register_cycle(self, cycle: CycleInfo) -> None:
        self.store.register_cycle(cycle)

    def date_for(self, cycle_id: str, day: int) -> dt.date | None:
        cycle = self.store.get_cycle(cycle_id)
        return cycle.date_for(day) if cycle else None

    # --- Recurring plan ---

    def submit_plan(
        self,
        cycle_id: str,
        entries: Iterable[RecurringEntryDraft | dict[str, Any]],
    ) -> RecurringMedicationPlan:
        """Replace the cycle's whole plan; entries without an id get one."""
        drafts = [
            entry if isinstance(entry, RecurringEntryDraft) else RecurringEntryDraft.model_validate(entry)
            for entry in entries
        ]
        resolved = [
            RecurringEntry(**draft.model_dump(exclude={"id"}), id=draft.id or self._new_id())
            for draft in drafts
        ]
        with self.store.locked():
            existing = self.store.get_plan(cycle_id)
            now = self._clock()
            plan = RecurringMedicationPlan(
                id=existing.id if existing else self._new_id(),
                cycle_id=cycle_id,
                entries=resolved,
                created_at=existing.created_at if existing else now,
                updated_at=now if existing else None,
            )
            self.store.put_plan(plan)
        logger.info(
            "Submitted medication plan with %d entries",
            len(resolved),
            extra={"meds_cycle_id": cycle_id, "meds_plan_id": plan.id},
        )
        return plan

    def remove_plan(self, cycle_id: str) -> bool:
        return self.store.remove_plan(cycle_id)

    def apply_template(self, cycle_id: str, name: str) -> RecurringMedicationPlan:
        """Replace the cycle's plan with a named protocol template."""
        return self.submit_plan(cycle_id, template_entries(name))

    def get_plan(self, cycle_id: str) -> RecurringMedicationPlan | None:
        return self.store.get_plan(cycle_id)

    # --- Reads ---

    def get_medications_for_day(self, cycle_id: str, day: int) -> UnifiedMedicationView:
        return get_medications_for_day(
            cycle_id,
            day,
            self.store.get_plan(cycle_id),
            self.store.records_for_day(cycle_id, day),
            date=self.date_for(cycle_id, day),
        )

    def get_schedule_overview(
        self,
        cycle_id: str,
        day_indices: Sequence[int] | None = None,
    ) -> ScheduleOverview | None:
        """Overview over the cycle's logged days.

        Without explicit ``day_indices`` the registered cycle's days are used,
        falling back to the days that already have daily records.
        """
        cycle = self.store.get_cycle(cycle_id)
        records = self.store.records_for_cycle(cycle_id)
        if day_indices is None:
            if cycle is not None:
                day_indices = cycle.day_indices
            else:
                day_indices = sorted({r.cycle_day for r in records})
        return get_schedule_overview(
            cycle_id,
            self.store.get_plan(cycle_id),
            day_indices,
            records,
            start_date=cycle.start_date if cycle else None,
        )

    def group_day_by_time_period(self, cycle_id: str, day: int) -> dict[str, list[UnifiedEntry]]:
        return group_by_time_period(self.get_medications_for_day(cycle_id, day).entries)

    def migrated_medications_for_day(self, cycle_id: str, day: int) -> list[Medication]:
        rows = [m for m in self.store.medications_for(cycle_id) if m.cycle_day == day and m.is_active_on(day)]
        return sorted(rows, key=_medication_time_key)

    def migrated_completion_rate(self, cycle_id: str, day: int | None = None) -> float:
        """Share of migrated rows marked taken or skipped, for one day or the whole cycle."""
        if day is not None:
            return completion_rate(self.migrated_medications_for_day(cycle_id, day))
        return completion_rate(self.store.medications_for(cycle_id))

    # --- Mutations ---

    def ensure_daily_adherence_record(self, cycle_id: str, day: int) -> DailyAdherenceRecord:
        return self.mutator.ensure_daily_adherence_record(cycle_id, day, self.date_for(cycle_id, day))

    def mark_taken(self, ref: EntryRef, taken_at: dt.datetime | None = None) -> DailyAdherenceRecord | None:
        return self.mutator.mark_taken(ref, taken_at)

    def mark_skipped(self, ref: EntryRef) -> DailyAdherenceRecord | None:
        return self.mutator.mark_skipped(ref)

    def reset(self, ref: EntryRef) -> DailyAdherenceRecord | None:
        return self.mutator.reset(ref)

    def update_recurring_adherence(
        self,
        ref: EntryRef,
        *,
        actual_dosage: str | None = None,
        notes: str | None = None,
    ) -> DailyAdherenceRecord | None:
        return self.mutator.update_recurring_adherence(ref, actual_dosage=actual_dosage, notes=notes)

    def add_one_time_entry(
        self,
        cycle_id: str,
        day: int,
        date: dt.date | None,
        entry: OneTimeEntryDraft | dict[str, Any],
    ) -> OneTimeEntry:
        return self.mutator.add_one_time_entry(cycle_id, day, date or self.date_for(cycle_id, day), entry)

    def update_one_time_entry(
        self,
        cycle_id: str,
        day: int,
        entry_id: str,
        changes: dict[str, Any],
    ) -> OneTimeEntry | None:
        return self.mutator.update_one_time_entry(cycle_id, day, entry_id, changes)

    def delete_one_time_entry(self, cycle_id: str, day: int, entry_id: str) -> bool:
        return self.mutator.delete_one_time_entry(cycle_id, day, entry_id)

    def reconcile(self, cycle_id: str, day: int | None = None) -> int:
        """Merge duplicate daily records; returns how many were discarded."""
        if day is None:
            return self.mutator.reconcile_cycle(cycle_id)
        return self.mutator.reconcile_day(cycle_id, day)

    # --- Migration ---

    def migrate(self, cycle_id: str, options: MigrationOptions | None = None) -> MigrationOutcome:
        return self.migrator.migrate(cycle_id, options or MigrationOptions.from_config(self.config))


def _medication_time_key(med: Medication) -> int:
    hour, _, rest = med.time.partition(":")
    minute, _, meridiem = rest.partition(" ")
    return time_key(hour, minute, meridiem)
