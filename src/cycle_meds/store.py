"""In-memory medication store shared by every engine component.

The store is an explicit object handed to each component; there is no
module-level instance. All writes go through ``locked()`` so exactly one
mutation runs at a time. Loading and saving is left to the caller via
``snapshot()`` / ``from_snapshot()``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from pydantic import Field

from .legacy import LegacyCycleData
from .models import (
    CamelModel,
    CycleInfo,
    DailyAdherenceRecord,
    Medication,
    RecurringMedicationPlan,
)


class StoreSnapshot(CamelModel):
    plans: list[RecurringMedicationPlan] = Field(default_factory=list)
    records: list[DailyAdherenceRecord] = Field(default_factory=list)
    medications: list[Medication] = Field(default_factory=list)
    cycles: list[CycleInfo] = Field(default_factory=list)
    legacy: list[LegacyCycleData] = Field(default_factory=list)


class MedicationStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._plans: dict[str, RecurringMedicationPlan] = {}
        self._records: list[DailyAdherenceRecord] = []
        self._medications: dict[str, list[Medication]] = {}
        self._cycles: dict[str, CycleInfo] = {}
        self._legacy: dict[str, LegacyCycleData] = {}

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the single-writer lock; re-entrant for nested engine calls."""
        with self._lock:
            yield

    # --- Recurring plans ---

    def get_plan(self, cycle_id: str) -> RecurringMedicationPlan | None:
        return self._plans.get(cycle_id)

    def put_plan(self, plan: RecurringMedicationPlan) -> None:
        with self._lock:
            self._plans[plan.cycle_id] = plan

    def remove_plan(self, cycle_id: str) -> bool:
        with self._lock:
            return self._plans.pop(cycle_id, None) is not None

    # --- Daily adherence records ---

    def records_for_day(self, cycle_id: str, day: int) -> list[DailyAdherenceRecord]:
        return [r for r in self._records if r.cycle_id == cycle_id and r.cycle_day == day]

    def records_for_cycle(self, cycle_id: str) -> list[DailyAdherenceRecord]:
        return [r for r in self._records if r.cycle_id == cycle_id]

    def all_records(self) -> list[DailyAdherenceRecord]:
        return list(self._records)

    def insert_record(self, record: DailyAdherenceRecord) -> None:
        with self._lock:
            self._records.append(record)

    def save_record(self, record: DailyAdherenceRecord) -> None:
        """Replace the record with the same id, or append it if it is new."""
        with self._lock:
            for idx, existing in enumerate(self._records):
                if existing.id == record.id:
                    self._records[idx] = record
                    return
            self._records.append(record)

    def discard_records(self, record_ids: set[str]) -> int:
        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if r.id not in record_ids]
            return before - len(self._records)

    # --- Unified-model medications ---

    def medications_for(self, cycle_id: str) -> list[Medication]:
        return list(self._medications.get(cycle_id, []))

    def has_medications(self, cycle_id: str) -> bool:
        return bool(self._medications.get(cycle_id))

    def add_medications(self, cycle_id: str, medications: list[Medication]) -> None:
        with self._lock:
            self._medications.setdefault(cycle_id, []).extend(medications)

    # --- Cycle collaborator data ---

    def register_cycle(self, cycle: CycleInfo) -> None:
        with self._lock:
            self._cycles[cycle.cycle_id] = cycle

    def get_cycle(self, cycle_id: str) -> CycleInfo | None:
        return self._cycles.get(cycle_id)

    # --- Legacy data awaiting migration ---

    def put_legacy_data(self, data: LegacyCycleData) -> None:
        with self._lock:
            self._legacy[data.cycle_id] = data

    def legacy_data(self, cycle_id: str) -> LegacyCycleData | None:
        return self._legacy.get(cycle_id)

    # --- Persistence boundary ---

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            state = StoreSnapshot(
                plans=list(self._plans.values()),
                records=list(self._records),
                medications=[m for meds in self._medications.values() for m in meds],
                cycles=list(self._cycles.values()),
                legacy=list(self._legacy.values()),
            )
        return state.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "MedicationStore":
        state = StoreSnapshot.model_validate(data)
        store = cls()
        for plan in state.plans:
            store._plans[plan.cycle_id] = plan
        store._records = list(state.records)
        for med in state.medications:
            store._medications.setdefault(med.cycle_id, []).append(med)
        for cycle in state.cycles:
            store._cycles[cycle.cycle_id] = cycle
        for legacy in state.legacy:
            store._legacy[legacy.cycle_id] = legacy
        return store
