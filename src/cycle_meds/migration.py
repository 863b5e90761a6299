"""Legacy medication migration.

Flow: flatten legacy entries -> deduplicate -> validate -> write once.

Flattening turns every legacy shape into unified-model ``Medication`` rows:
a recurring entry becomes one row per active day, and day-specific or
embedded entries become one row each. Every entry is processed on its own;
a failure bumps ``error_count`` and the batch carries on. Nothing reaches the
store until the whole batch has validated, so an aborted or rejected run
leaves no partial data behind.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from .config import Config
from .legacy import (
    EmbeddedLegacy,
    LegacyCycleDay,
    LegacyDailyStatus,
    LegacyAdherence,
    LegacySchedule,
    OneTimeLegacy,
    RecurringLegacy,
    parse_legacy_medication,
)
from .models import Medication, new_id, utc_now
from .store import MedicationStore
from .time_keys import format_time, is_canonical_time, parse_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationOptions:
    preserve_timestamps: bool = True
    skip_incomplete_data: bool = False
    log_progress: bool = False
    dry_run: bool = False
    embedded_default_time: str = "08:00 AM"

    @classmethod
    def from_config(cls, config: Config, **overrides: Any) -> "MigrationOptions":
        values: dict[str, Any] = {
            "preserve_timestamps": config.preserve_timestamps,
            "skip_incomplete_data": config.skip_incomplete_data,
            "embedded_default_time": config.embedded_default_time,
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class MigrationSummary:
    scheduled_medications: int = 0
    one_time_medications: int = 0
    embedded_medications: int = 0
    duplicates_removed: int = 0
    total_migrated: int = 0


@dataclass(frozen=True)
class MigrationResult:
    migrated_medications: list[Medication] = field(default_factory=list)
    skipped_count: int = 0
    error_count: int = 0
    summary: MigrationSummary = field(default_factory=MigrationSummary)


@dataclass(frozen=True)
class ValidationReport:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class MigrationOutcome:
    success: bool
    message: str
    already_migrated: bool = False
    data: MigrationResult | None = None
    validation: ValidationReport | None = None


class _IncompleteEntry(Exception):
    pass


class _Flattener:
    """Accumulates rows and counters for one migration run."""

    def __init__(
        self,
        cycle_id: str,
        options: MigrationOptions,
        clock: Callable[[], dt.datetime],
        id_factory: Callable[[], str],
    ) -> None:
        self.cycle_id = cycle_id
        self.options = options
        self._clock = clock
        self._new_id = id_factory
        self.medications: list[Medication] = []
        self.skipped = 0
        self.errors = 0
        self.counts = {"scheduled": 0, "one-time": 0, "embedded": 0}

    def _created_at(self, source: dt.datetime | None) -> dt.datetime:
        if self.options.preserve_timestamps and source is not None:
            return source
        return self._clock()

    def _check_complete(self, entry: RecurringLegacy | OneTimeLegacy | EmbeddedLegacy) -> None:
        if entry.name.strip() and entry.dosage.strip():
            return
        if self.options.skip_incomplete_data:
            raise _IncompleteEntry(entry.kind)

    def _isolate(self, kind: str, raw: Any, build: Callable[[], list[Medication]]) -> None:
        try:
            rows = build()
        except _IncompleteEntry:
            self.skipped += 1
            logger.debug(
                "Skipped incomplete legacy medication",
                extra={"meds_cycle_id": self.cycle_id, "meds_legacy_kind": kind},
            )
            return
        except Exception as exc:
            self.errors += 1
            name = raw.get("name") if isinstance(raw, dict) else None
            logger.warning(
                "Failed to migrate legacy %s medication %r: %s",
                kind,
                name,
                exc,
                extra={"meds_cycle_id": self.cycle_id, "meds_legacy_kind": kind},
            )
            return
        self.medications.extend(rows)
        self.counts[kind] += len(rows)

    # --- Recurring entries ---

    def add_schedule(self, schedule: LegacySchedule, statuses: Sequence[LegacyDailyStatus]) -> None:
        by_day: dict[int, list[LegacyDailyStatus]] = {}
        for status in statuses:
            by_day.setdefault(status.cycle_day, []).append(status)

        for raw in schedule.medications:
            self._isolate("scheduled", raw, lambda raw=raw: self._flatten_recurring(raw, schedule, by_day))

    def _flatten_recurring(
        self,
        raw: Any,
        schedule: LegacySchedule,
        by_day: dict[int, list[LegacyDailyStatus]],
    ) -> list[Medication]:
        entry = parse_legacy_medication(raw, "recurring")
        self._check_complete(entry)
        if entry.end_day < entry.start_day:
            raise ValueError(f"end day {entry.end_day} is before start day {entry.start_day}")
        time = format_time(entry.hour, entry.minute, entry.ampm)

        rows: list[Medication] = []
        for day in range(entry.start_day, entry.end_day + 1):
            adherence = _adherence_on_day(by_day.get(day, []), entry.id)
            rows.append(
                Medication(
                    id=self._new_id(),
                    cycle_id=self.cycle_id,
                    cycle_day=day,
                    name=entry.name,
                    dosage=(adherence.actual_dosage if adherence and adherence.actual_dosage else entry.dosage),
                    time=time,
                    refrigerated=entry.refrigerated,
                    type="scheduled",
                    start_day=entry.start_day,
                    end_day=entry.end_day,
                    taken=adherence.taken if adherence else False,
                    skipped=adherence.skipped if adherence else False,
                    taken_at=adherence.taken_at if adherence else None,
                    notes=combine_notes(entry.notes, adherence.notes if adherence else None),
                    created_at=self._created_at(schedule.created_at),
                    updated_at=adherence.taken_at if adherence else None,
                )
            )
        return rows

    # --- Day-specific entries ---

    def add_day_specific(self, status: LegacyDailyStatus) -> None:
        for raw in status.day_specific_medications or []:
            self._isolate("one-time", raw, lambda raw=raw: [self._flatten_one_time(raw, status)])

    def _flatten_one_time(self, raw: Any, status: LegacyDailyStatus) -> Medication:
        entry = parse_legacy_medication(raw, "one-time")
        self._check_complete(entry)
        return Medication(
            id=entry.id or self._new_id(),
            cycle_id=self.cycle_id,
            cycle_day=status.cycle_day,
            name=entry.name,
            dosage=entry.dosage,
            time=format_time(entry.hour, entry.minute, entry.ampm),
            refrigerated=entry.refrigerated,
            type="one-time",
            taken=entry.taken,
            skipped=entry.skipped,
            taken_at=entry.taken_at,
            notes=entry.notes,
            created_at=self._created_at(status.created_at),
            updated_at=entry.taken_at,
        )

    # --- Embedded day medications ---

    def add_embedded(self, day: LegacyCycleDay) -> None:
        for raw in day.medications:
            self._isolate("embedded", raw, lambda raw=raw: [self._flatten_embedded(raw, day)])

    def _flatten_embedded(self, raw: Any, day: LegacyCycleDay) -> Medication:
        entry = parse_legacy_medication(raw, "embedded")
        self._check_complete(entry)
        time_text = entry.time_text or self.options.embedded_default_time
        hour, minute, meridiem = parse_time(time_text)
        return Medication(
            id=self._new_id(),
            cycle_id=self.cycle_id,
            cycle_day=day.cycle_day,
            name=entry.name,
            dosage=entry.full_dosage,
            time=format_time(hour, minute, meridiem),
            refrigerated=entry.refrigerated,
            type="one-time",
            taken=entry.taken,
            skipped=entry.skipped,
            notes=combine_notes(entry.notes, "trigger shot" if entry.trigger else None),
            created_at=self._clock(),
        )

    def result(self) -> MigrationResult:
        return MigrationResult(
            migrated_medications=list(self.medications),
            skipped_count=self.skipped,
            error_count=self.errors,
            summary=MigrationSummary(
                scheduled_medications=self.counts["scheduled"],
                one_time_medications=self.counts["one-time"],
                embedded_medications=self.counts["embedded"],
                total_migrated=len(self.medications),
            ),
        )


def _adherence_on_day(statuses: Sequence[LegacyDailyStatus], entry_id: str) -> LegacyAdherence | None:
    for status in statuses:
        adherence = status.adherence_for(entry_id)
        if adherence is not None:
            return adherence
    return None


def combine_notes(*notes: str | None) -> str | None:
    parts = [note.strip() for note in notes if note and note.strip()]
    return " | ".join(parts) if parts else None


def migrate_legacy_medication_data(
    cycle_id: str,
    schedules: Sequence[LegacySchedule],
    statuses: Sequence[LegacyDailyStatus],
    days: Sequence[LegacyCycleDay] = (),
    options: MigrationOptions | None = None,
    *,
    clock: Callable[[], dt.datetime] = utc_now,
    id_factory: Callable[[], str] = new_id,
) -> MigrationResult:
    """Flatten every legacy medication of ``cycle_id`` into unified-model rows."""
    options = options or MigrationOptions()
    log = logger.info if options.log_progress else logger.debug
    log("Starting medication migration", extra={"meds_cycle_id": cycle_id})

    flattener = _Flattener(cycle_id, options, clock, id_factory)
    cycle_statuses = [s for s in statuses if s.cycle_id == cycle_id]

    schedule = next((s for s in schedules if s.cycle_id == cycle_id), None)
    if schedule is not None:
        flattener.add_schedule(schedule, cycle_statuses)
    for status in cycle_statuses:
        flattener.add_day_specific(status)
    for day in days:
        flattener.add_embedded(day)

    result = flattener.result()
    log(
        "Medication migration flattened %d rows (%d skipped, %d errors)",
        result.summary.total_migrated,
        result.skipped_count,
        result.error_count,
        extra={"meds_cycle_id": cycle_id},
    )
    return result


def validate_migrated_data(medications: Sequence[Medication]) -> ValidationReport:
    errors: list[str] = []
    warnings: list[str] = []

    for index, med in enumerate(medications):
        if not med.id:
            errors.append(f"Medication {index}: missing id")
        if not med.cycle_id:
            errors.append(f"Medication {index}: missing cycle_id")
        if not med.name.strip():
            errors.append(f"Medication {index}: missing name")
        if not med.dosage.strip():
            errors.append(f"Medication {index}: missing dosage")
        if not med.time:
            errors.append(f"Medication {index}: missing time")
        if med.cycle_day < 1:
            errors.append(f"Medication {index}: invalid cycle_day {med.cycle_day}")

        if med.type == "scheduled":
            if not med.start_day or not med.end_day:
                warnings.append(f"Scheduled medication {med.name}: missing start_day/end_day")
            elif med.start_day > med.end_day:
                errors.append(f"Scheduled medication {med.name}: start_day > end_day")

        if med.time and not is_canonical_time(med.time):
            errors.append(f"Medication {med.name}: invalid time format: {med.time}")

        if med.taken and med.skipped:
            warnings.append(f"Medication {med.name}: both taken and skipped")

    return ValidationReport(is_valid=not errors, errors=errors, warnings=warnings)


def deduplicate_medications(medications: Sequence[Medication]) -> list[Medication]:
    """Keep the first row per (cycle_id, cycle_day, name, time, type)."""
    seen: set[tuple[str, int, str, str, str]] = set()
    deduplicated: list[Medication] = []
    for med in medications:
        key = (med.cycle_id, med.cycle_day, med.name, med.time, med.type)
        if key in seen:
            continue
        seen.add(key)
        deduplicated.append(med)
    return deduplicated


class LegacyMigrator:
    """Runs a cycle's migration against the store, at most once."""

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

    def migrate(self, cycle_id: str, options: MigrationOptions | None = None) -> MigrationOutcome:
        options = options or MigrationOptions()
        with self.store.locked():
            if self.store.has_medications(cycle_id):
                logger.info("Cycle already migrated; skipping", extra={"meds_cycle_id": cycle_id})
                return MigrationOutcome(
                    success=True,
                    already_migrated=True,
                    message=f"Cycle {cycle_id} already has migrated medications; nothing to do.",
                )

            legacy = self.store.legacy_data(cycle_id)
            if legacy is None or legacy.is_empty:
                return MigrationOutcome(
                    success=True,
                    message=f"No legacy medication data for cycle {cycle_id}.",
                    data=MigrationResult(),
                )

            flattened = migrate_legacy_medication_data(
                cycle_id,
                legacy.schedules,
                legacy.statuses,
                legacy.days,
                options,
                clock=self._clock,
                id_factory=self._new_id,
            )
            medications = deduplicate_medications(flattened.migrated_medications)
            result = replace(
                flattened,
                migrated_medications=medications,
                summary=replace(
                    flattened.summary,
                    duplicates_removed=len(flattened.migrated_medications) - len(medications),
                    total_migrated=len(medications),
                ),
            )

            report = validate_migrated_data(medications)
            if not report.is_valid:
                logger.warning(
                    "Migration rejected by validation (%d errors)",
                    len(report.errors),
                    extra={"meds_cycle_id": cycle_id},
                )
                return MigrationOutcome(
                    success=False,
                    message=f"Migration blocked by {len(report.errors)} validation error(s).",
                    data=result,
                    validation=report,
                )

            if options.dry_run:
                return MigrationOutcome(
                    success=True,
                    message=f"Dry run: would migrate {len(medications)} medication(s).",
                    data=result,
                    validation=report,
                )

            self.store.add_medications(cycle_id, medications)

        logger.info(
            "Migrated %d medications",
            len(medications),
            extra={"meds_cycle_id": cycle_id, "meds_skipped": result.skipped_count, "meds_errors": result.error_count},
        )
        return MigrationOutcome(
            success=True,
            message=f"Migrated {len(medications)} medication(s).",
            data=result,
            validation=report,
        )
