"""Adherence mutator: create-if-absent daily records, status transitions,
one-time entry CRUD and store-level duplicate reconciliation.

Every (entry, day) pair moves between untouched, taken and skipped. Each
transition is accepted from every state, and setting taken clears skipped
(and the reverse). Missing records or entries make update/delete/status calls
no-ops; only ``add_one_time_entry`` creates the parent record it needs.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from .models import (
    DailyAdherenceRecord,
    EntryRef,
    OneTimeEntry,
    OneTimeEntryDraft,
    RecurringAdherence,
    new_id,
    utc_now,
)
from .reconciliation import reconcile_duplicate_records
from .store import MedicationStore

logger = logging.getLogger(__name__)

_ONE_TIME_EDITABLE_FIELDS = frozenset(OneTimeEntryDraft.model_fields)


class AdherenceUpdateError(Exception):
    def __init__(self, *, code: str, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.field = field


def _taken(taken_at: dt.datetime) -> dict[str, Any]:
    return {"taken": True, "skipped": False, "taken_at": taken_at}


def _check_exclusive(values: dict[str, Any]) -> None:
    if values.get("taken") and values.get("skipped"):
        raise AdherenceUpdateError(
            code="conflicting_status",
            message="a medication cannot be both taken and skipped",
            field="skipped",
        )


_SKIPPED: dict[str, Any] = {"taken": False, "skipped": True, "taken_at": None}
_UNTOUCHED: dict[str, Any] = {"taken": False, "skipped": False, "taken_at": None}


class AdherenceMutator:
    def __init__(
        self,
        store: MedicationStore,
        *,
        clock: Callable[[], dt.datetime] = utc_now,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self.store = store
        self._clock = clock
        self._new_id = id_factory

    # --- Daily records ---

    def ensure_daily_adherence_record(
        self, cycle_id: str, day: int, date: dt.date | None = None
    ) -> DailyAdherenceRecord:
        """Return the record for (cycle_id, day), creating it when absent.

        A new record starts with an untouched adherence row for every recurring
        entry active that day. Existing duplicates are merged first, so callers
        always get the single surviving record.
        """
        with self.store.locked():
            existing = self.store.records_for_day(cycle_id, day)
            if len(existing) > 1:
                return self._apply_reconciliation(cycle_id, day, existing)
            if existing:
                return existing[0]

            plan = self.store.get_plan(cycle_id)
            active = plan.active_entries(day) if plan else []
            record = DailyAdherenceRecord(
                id=self._new_id(),
                cycle_id=cycle_id,
                cycle_day=day,
                date=date,
                adherence=[RecurringAdherence(recurring_entry_id=entry.id) for entry in active],
                created_at=self._clock(),
            )
            self.store.insert_record(record)
            logger.debug(
                "Created daily adherence record",
                extra={"meds_cycle_id": cycle_id, "meds_day": day, "meds_record_id": record.id},
            )
            return record

    def _touch(self, record: DailyAdherenceRecord, **changes: Any) -> DailyAdherenceRecord:
        updated = record.model_copy(update={**changes, "updated_at": self._clock()})
        self.store.save_record(updated)
        return updated

    # --- Status transitions ---

    def _apply_status(self, ref: EntryRef, status: dict[str, Any]) -> DailyAdherenceRecord | None:
        with self.store.locked():
            if ref.origin == "recurring":
                return self._apply_recurring(ref, status)
            return self._apply_one_time(ref, status)

    def _apply_recurring(self, ref: EntryRef, changes: dict[str, Any]) -> DailyAdherenceRecord | None:
        plan = self.store.get_plan(ref.cycle_id)
        entry = plan.entry(ref.entry_id) if plan else None
        if entry is None or not entry.is_active_on(ref.day):
            logger.debug(
                "Recurring entry not active; nothing to update",
                extra={"meds_cycle_id": ref.cycle_id, "meds_day": ref.day, "meds_entry_id": ref.entry_id},
            )
            return None

        record = self.ensure_daily_adherence_record(ref.cycle_id, ref.day, self._date_for(ref))
        rows: list[RecurringAdherence] = []
        found = False
        for row in record.adherence:
            if row.recurring_entry_id == ref.entry_id:
                rows.append(row.model_copy(update=changes))
                found = True
            else:
                rows.append(row)
        if not found:
            rows.append(RecurringAdherence(recurring_entry_id=ref.entry_id).model_copy(update=changes))
        return self._touch(record, adherence=rows)

    def _apply_one_time(self, ref: EntryRef, changes: dict[str, Any]) -> DailyAdherenceRecord | None:
        record = self._existing_record(ref.cycle_id, ref.day)
        if record is None or record.one_time_entry(ref.entry_id) is None:
            logger.debug(
                "One-time entry not found; nothing to update",
                extra={"meds_cycle_id": ref.cycle_id, "meds_day": ref.day, "meds_entry_id": ref.entry_id},
            )
            return None
        entries = [
            entry.model_copy(update=changes) if entry.id == ref.entry_id else entry
            for entry in record.one_time_entries
        ]
        return self._touch(record, one_time_entries=entries)

    def _date_for(self, ref: EntryRef) -> dt.date | None:
        cycle = self.store.get_cycle(ref.cycle_id)
        return cycle.date_for(ref.day) if cycle else None

    def mark_taken(self, ref: EntryRef, taken_at: dt.datetime | None = None) -> DailyAdherenceRecord | None:
        if taken_at is not None and taken_at.tzinfo is None:
            taken_at = taken_at.replace(tzinfo=dt.UTC)
        return self._apply_status(ref, _taken(taken_at or self._clock()))

    def mark_skipped(self, ref: EntryRef) -> DailyAdherenceRecord | None:
        return self._apply_status(ref, dict(_SKIPPED))

    def reset(self, ref: EntryRef) -> DailyAdherenceRecord | None:
        return self._apply_status(ref, dict(_UNTOUCHED))

    def update_recurring_adherence(
        self,
        ref: EntryRef,
        *,
        actual_dosage: str | None = None,
        notes: str | None = None,
    ) -> DailyAdherenceRecord | None:
        """Record a dose different from the plan's, or a note, for one day."""
        if ref.origin != "recurring":
            raise AdherenceUpdateError(
                code="wrong_origin",
                message="actual dosage overrides only apply to recurring entries",
                field="origin",
            )
        # None leaves a field alone; an empty string clears it.
        changes: dict[str, Any] = {}
        if actual_dosage is not None:
            changes["actual_dosage"] = actual_dosage.strip() or None
        if notes is not None:
            changes["notes"] = notes.strip() or None
        with self.store.locked():
            return self._apply_recurring(ref, changes)

    # --- One-time entries ---

    def _settle_taken_at(self, values: dict[str, Any]) -> dict[str, Any]:
        """taken_at is set exactly when taken is; a missing timestamp means now."""
        if not values.get("taken"):
            return {**values, "taken_at": None}
        if values.get("taken_at") is None:
            return {**values, "taken_at": self._clock()}
        return values

    def _existing_record(self, cycle_id: str, day: int) -> DailyAdherenceRecord | None:
        existing = self.store.records_for_day(cycle_id, day)
        if not existing:
            return None
        if len(existing) > 1:
            return self._apply_reconciliation(cycle_id, day, existing)
        return existing[0]

    def add_one_time_entry(
        self,
        cycle_id: str,
        day: int,
        date: dt.date | None,
        entry: OneTimeEntryDraft | dict[str, Any],
    ) -> OneTimeEntry:
        draft = entry if isinstance(entry, OneTimeEntryDraft) else OneTimeEntryDraft.model_validate(entry)
        values = self._settle_taken_at(draft.model_dump())
        _check_exclusive(values)
        new_entry = OneTimeEntry(id=self._new_id(), **values)
        with self.store.locked():
            record = self.ensure_daily_adherence_record(cycle_id, day, date)
            self._touch(record, one_time_entries=[*record.one_time_entries, new_entry])
        logger.info(
            "Added one-time medication",
            extra={"meds_cycle_id": cycle_id, "meds_day": day, "meds_entry_id": new_entry.id},
        )
        return new_entry

    def update_one_time_entry(
        self,
        cycle_id: str,
        day: int,
        entry_id: str,
        changes: dict[str, Any],
    ) -> OneTimeEntry | None:
        unknown = set(changes) - _ONE_TIME_EDITABLE_FIELDS
        if unknown:
            raise AdherenceUpdateError(
                code="unknown_field",
                message=f"cannot update one-time entry fields: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )

        with self.store.locked():
            record = self._existing_record(cycle_id, day)
            current = record.one_time_entry(entry_id) if record else None
            if record is None or current is None:
                logger.debug(
                    "One-time entry not found; nothing to update",
                    extra={"meds_cycle_id": cycle_id, "meds_day": day, "meds_entry_id": entry_id},
                )
                return None

            merged = {**current.model_dump(), **changes}
            if changes.get("taken") and "skipped" not in changes:
                merged["skipped"] = False
            if changes.get("skipped") and "taken" not in changes:
                merged["taken"] = False
                merged["taken_at"] = None
            _check_exclusive(merged)
            if "taken" in changes or "taken_at" in changes:
                merged = self._settle_taken_at(merged)
            try:
                updated = OneTimeEntry.model_validate(merged)
            except ValidationError as exc:
                raise AdherenceUpdateError(
                    code="validation_error",
                    message=str(exc),
                    field=str(exc.errors()[0]["loc"][0]) if exc.errors() else None,
                ) from exc

            entries = [updated if e.id == entry_id else e for e in record.one_time_entries]
            self._touch(record, one_time_entries=entries)
            return updated

    def delete_one_time_entry(self, cycle_id: str, day: int, entry_id: str) -> bool:
        with self.store.locked():
            record = self._existing_record(cycle_id, day)
            if record is None or record.one_time_entry(entry_id) is None:
                return False
            remaining = [e for e in record.one_time_entries if e.id != entry_id]
            self._touch(record, one_time_entries=remaining)
        logger.info(
            "Deleted one-time medication",
            extra={"meds_cycle_id": cycle_id, "meds_day": day, "meds_entry_id": entry_id},
        )
        return True

    # --- Reconciliation ---

    def _apply_reconciliation(
        self, cycle_id: str, day: int, records: list[DailyAdherenceRecord]
    ) -> DailyAdherenceRecord:
        result = reconcile_duplicate_records(records)
        self.store.discard_records({r.id for r in records})
        self.store.insert_record(result.merged)
        logger.info(
            "Merged duplicate daily adherence records",
            extra={
                "meds_cycle_id": cycle_id,
                "meds_day": day,
                "meds_record_id": result.merged.id,
                "meds_discarded": len(result.discarded),
            },
        )
        return result.merged

    def reconcile_day(self, cycle_id: str, day: int) -> int:
        """Merge duplicates for one key in the store; returns records discarded."""
        with self.store.locked():
            records = self.store.records_for_day(cycle_id, day)
            if len(records) < 2:
                return 0
            self._apply_reconciliation(cycle_id, day, records)
            return len(records) - 1

    def reconcile_cycle(self, cycle_id: str) -> int:
        with self.store.locked():
            days = sorted({r.cycle_day for r in self.store.records_for_cycle(cycle_id)})
            return sum(self.reconcile_day(cycle_id, day) for day in days)
