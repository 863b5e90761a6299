from __future__ import annotations

import datetime as dt

import pytest

from cycle_meds.config import Config
from cycle_meds.legacy import LegacyCycleData, LegacyCycleDay, LegacyDailyStatus, LegacySchedule
from cycle_meds.migration import (
    LegacyMigrator,
    MigrationOptions,
    combine_notes,
    deduplicate_medications,
    migrate_legacy_medication_data,
    validate_migrated_data,
)
from cycle_meds.models import Medication
from cycle_meds.store import MedicationStore

from conftest import SequentialIds, SteppingClock

SCHEDULE_CREATED = dt.datetime(2025, 2, 20, 12, 0, tzinfo=dt.UTC)


def _legacy_recurring(**overrides) -> dict:
    raw = {
        "id": "sched-gonal",
        "name": "Gonal-F",
        "dosage": "225 IU",
        "hour": "8",
        "minute": "00",
        "ampm": "PM",
        "refrigerated": True,
        "startDay": 1,
        "endDay": 3,
    }
    raw.update(overrides)
    return raw


def _legacy_one_time(**overrides) -> dict:
    raw = {"id": "ot-1", "name": "Ovidrel", "dosage": "250 mcg", "hour": "10", "minute": "30", "ampm": "PM"}
    raw.update(overrides)
    return raw


def _schedule(*medications: dict, cycle_id: str = "c1") -> LegacySchedule:
    return LegacySchedule(id="s1", cycle_id=cycle_id, medications=list(medications), created_at=SCHEDULE_CREATED)


def _status(day: int, *, adherence: list[dict] | None = None, day_specific: list | None = None) -> LegacyDailyStatus:
    return LegacyDailyStatus(
        id=f"status-{day}",
        cycle_id="c1",
        cycle_day=day,
        medications=adherence or [],
        day_specific_medications=day_specific,
    )


def _migrate(schedules=(), statuses=(), days=(), **options):
    return migrate_legacy_medication_data(
        "c1",
        list(schedules),
        list(statuses),
        list(days),
        MigrationOptions(**options),
        clock=SteppingClock(),
        id_factory=SequentialIds("med"),
    )


class TestFlattening:
    def test_recurring_entry_becomes_one_row_per_day(self) -> None:
        result = _migrate([_schedule(_legacy_recurring())])
        meds = result.migrated_medications
        assert [m.cycle_day for m in meds] == [1, 2, 3]
        assert {m.time for m in meds} == {"08:00 PM"}
        assert all(m.type == "scheduled" and m.start_day == 1 and m.end_day == 3 for m in meds)
        assert all(m.created_at == SCHEDULE_CREATED for m in meds)
        assert result.summary.scheduled_medications == 3

    def test_per_day_adherence_is_carried_over(self) -> None:
        taken_at = dt.datetime(2025, 3, 2, 20, 10, tzinfo=dt.UTC)
        statuses = [
            _status(
                2,
                adherence=[
                    {
                        "scheduledMedicationId": "sched-gonal",
                        "taken": True,
                        "takenAt": taken_at.isoformat(),
                        "actualDosage": "150 IU",
                        "notes": "left side",
                    }
                ],
            ),
            _status(3, adherence=[{"scheduledMedicationId": "sched-gonal", "skipped": True}]),
        ]
        result = _migrate([_schedule(_legacy_recurring(notes="mix slowly"))], statuses)
        by_day = {m.cycle_day: m for m in result.migrated_medications}

        assert not by_day[1].taken and not by_day[1].skipped
        assert by_day[2].taken
        assert by_day[2].taken_at == taken_at
        assert by_day[2].dosage == "150 IU"
        assert by_day[2].notes == "mix slowly | left side"
        assert by_day[3].skipped
        assert by_day[3].dosage == "225 IU"

    def test_preserve_timestamps_off_uses_clock(self) -> None:
        result = _migrate([_schedule(_legacy_recurring())], preserve_timestamps=False)
        assert all(m.created_at != SCHEDULE_CREATED for m in result.migrated_medications)

    def test_day_specific_entries_become_one_time_rows(self) -> None:
        result = _migrate(statuses=[_status(4, day_specific=[_legacy_one_time(taken=True)])])
        [med] = result.migrated_medications
        assert (med.id, med.cycle_day, med.type, med.time, med.taken) == ("ot-1", 4, "one-time", "10:30 PM", True)
        assert result.summary.one_time_medications == 1

    def test_embedded_medications_use_time_unit_and_trigger(self) -> None:
        day = LegacyCycleDay(
            cycle_day=5,
            medications=[
                {"name": "Ovidrel", "dosage": "250", "unit": "mcg", "time": "9:30 pm", "trigger": True},
                {"name": "Estrace", "dosage": "2 mg", "unit": "mg", "taken": True},
            ],
        )
        result = _migrate(days=[day])
        trigger, estrace = result.migrated_medications

        assert (trigger.time, trigger.dosage, trigger.notes) == ("09:30 PM", "250 mcg", "trigger shot")
        assert (estrace.time, estrace.dosage, estrace.taken) == ("08:00 AM", "2 mg", True)
        assert all(m.type == "one-time" and m.cycle_day == 5 for m in result.migrated_medications)
        assert result.summary.embedded_medications == 2

    def test_embedded_default_time_is_configurable(self) -> None:
        day = LegacyCycleDay(cycle_day=1, medications=[{"name": "Medrol", "dosage": "16 mg"}])
        [med] = _migrate(days=[day], embedded_default_time="07:00 PM").migrated_medications
        assert med.time == "07:00 PM"

    def test_three_day_cycle_is_complete(self) -> None:
        schedules = [_schedule(_legacy_recurring(), _legacy_recurring(id="sched-cetro", name="Cetrotide", startDay=2))]
        statuses = [_status(day, day_specific=[_legacy_one_time(id=f"ot-{day}")]) for day in (1, 2, 3)]
        days = [LegacyCycleDay(cycle_day=3, medications=[{"name": "Medrol", "dosage": "16 mg"}])]
        result = _migrate(schedules, statuses, days)

        per_day = {day: sorted(m.name for m in result.migrated_medications if m.cycle_day == day) for day in (1, 2, 3)}
        assert per_day == {
            1: ["Gonal-F", "Ovidrel"],
            2: ["Cetrotide", "Gonal-F", "Ovidrel"],
            3: ["Cetrotide", "Gonal-F", "Medrol", "Ovidrel"],
        }
        assert result.summary.total_migrated == 9
        assert (result.skipped_count, result.error_count) == (0, 0)


class TestFaultIsolation:
    def test_nameless_entry_is_skipped_when_requested(self) -> None:
        entries = [_legacy_one_time(id=f"ot-{i}", name=f"Med {i}") for i in range(1, 6)]
        entries[2]["name"] = ""
        result = _migrate(statuses=[_status(1, day_specific=entries)], skip_incomplete_data=True)

        assert result.skipped_count == 1
        assert result.error_count == 0
        assert [m.name for m in result.migrated_medications] == ["Med 1", "Med 2", "Med 4", "Med 5"]

    def test_nameless_entry_is_kept_without_skip_flag(self) -> None:
        entries = [_legacy_one_time(name="")]
        result = _migrate(statuses=[_status(1, day_specific=entries)])
        assert result.skipped_count == 0
        assert len(result.migrated_medications) == 1

    def test_malformed_entries_count_as_errors_and_batch_continues(self) -> None:
        schedule = _schedule(
            _legacy_recurring(hour="eight"),
            _legacy_recurring(id="sched-ok", name="Menopur"),
            "not-an-object",
            {"name": "No clock"},
        )
        result = _migrate([schedule])
        assert result.error_count == 3
        assert {m.name for m in result.migrated_medications} == {"Menopur"}

    def test_unparseable_embedded_time_is_an_error(self) -> None:
        day = LegacyCycleDay(cycle_day=1, medications=[{"name": "Medrol", "dosage": "16 mg", "time": "after lunch"}])
        result = _migrate(days=[day])
        assert result.error_count == 1
        assert result.migrated_medications == []

    def test_reversed_day_range_is_an_error(self) -> None:
        schedule = _schedule(_legacy_recurring(startDay=5, endDay=2), _legacy_recurring(id="sched-ok", name="Menopur"))
        result = _migrate([schedule])
        assert result.error_count == 1
        assert result.summary.scheduled_medications == 3
        assert {m.name for m in result.migrated_medications} == {"Menopur"}

    def test_other_cycles_are_ignored(self) -> None:
        result = _migrate([_schedule(_legacy_recurring(), cycle_id="other")])
        assert result.migrated_medications == []


def _medication(**overrides) -> Medication:
    values = {
        "id": "m1",
        "cycle_id": "c1",
        "cycle_day": 1,
        "name": "Gonal-F",
        "dosage": "225 IU",
        "time": "08:00 PM",
        "type": "scheduled",
        "start_day": 1,
        "end_day": 3,
    }
    values.update(overrides)
    return Medication(**values)


class TestValidation:
    def test_clean_rows_pass(self) -> None:
        report = validate_migrated_data([_medication()])
        assert report.is_valid
        assert report.errors == []

    @pytest.mark.parametrize(
        ("overrides", "fragment"),
        [
            ({"name": " "}, "missing name"),
            ({"dosage": ""}, "missing dosage"),
            ({"time": "8 pm"}, "invalid time format"),
            ({"cycle_day": 0}, "invalid cycle_day"),
            ({"start_day": 4, "end_day": 2}, "start_day > end_day"),
        ],
    )
    def test_errors(self, overrides, fragment) -> None:
        report = validate_migrated_data([_medication(**overrides)])
        assert not report.is_valid
        assert any(fragment in error for error in report.errors)

    def test_warnings_do_not_block(self) -> None:
        report = validate_migrated_data([_medication(start_day=None, taken=True, skipped=True)])
        assert report.is_valid
        assert len(report.warnings) == 2


def test_deduplicate_keeps_first_occurrence() -> None:
    first = _medication(id="a")
    meds = [first, _medication(id="b"), _medication(id="c", time="09:00 PM"), _medication(id="d", type="one-time")]
    assert [m.id for m in deduplicate_medications(meds)] == ["a", "c", "d"]


def test_combine_notes_skips_blanks() -> None:
    assert combine_notes("a", None, " ", "b ") == "a | b"
    assert combine_notes(None, "") is None


def test_options_from_config_respect_overrides() -> None:
    config = Config(skip_incomplete_data=True, preserve_timestamps=False, embedded_default_time="09:00 AM")
    options = MigrationOptions.from_config(config, dry_run=True)
    assert options.skip_incomplete_data
    assert not options.preserve_timestamps
    assert options.embedded_default_time == "09:00 AM"
    assert options.dry_run


class TestLegacyMigrator:
    def _store(self, *schedule_entries: dict, days: list[LegacyCycleDay] | None = None) -> MedicationStore:
        store = MedicationStore()
        store.put_legacy_data(
            LegacyCycleData(cycle_id="c1", schedules=[_schedule(*schedule_entries)] if schedule_entries else [], days=days or [])
        )
        return store

    def _migrator(self, store: MedicationStore) -> LegacyMigrator:
        return LegacyMigrator(store, clock=SteppingClock(), id_factory=SequentialIds("med"))

    def test_writes_once_then_reports_already_migrated(self) -> None:
        store = self._store(_legacy_recurring())
        migrator = self._migrator(store)

        first = migrator.migrate("c1")
        assert first.success
        assert not first.already_migrated
        assert len(store.medications_for("c1")) == 3

        second = migrator.migrate("c1")
        assert second.success
        assert second.already_migrated
        assert len(store.medications_for("c1")) == 3

    def test_duplicates_are_removed_and_counted(self) -> None:
        store = self._store(_legacy_recurring(), _legacy_recurring(id="again"))
        outcome = self._migrator(store).migrate("c1")
        assert outcome.data.summary.duplicates_removed == 3
        assert outcome.data.summary.total_migrated == 3
        assert len(store.medications_for("c1")) == 3

    def test_reversed_day_range_surfaces_in_error_count(self) -> None:
        store = self._store(_legacy_recurring(startDay=5, endDay=2))
        outcome = self._migrator(store).migrate("c1")
        assert outcome.data.error_count == 1
        assert outcome.data.summary.total_migrated == 0
        assert store.medications_for("c1") == []

    def test_dry_run_writes_nothing(self) -> None:
        store = self._store(_legacy_recurring())
        outcome = self._migrator(store).migrate("c1", MigrationOptions(dry_run=True))
        assert outcome.success
        assert outcome.data.summary.total_migrated == 3
        assert store.medications_for("c1") == []

    def test_validation_failure_blocks_the_write(self) -> None:
        store = self._store(_legacy_recurring(name=""))
        outcome = self._migrator(store).migrate("c1")
        assert not outcome.success
        assert outcome.validation is not None
        assert not outcome.validation.is_valid
        assert store.medications_for("c1") == []

    def test_no_legacy_data_is_a_successful_noop(self) -> None:
        outcome = self._migrator(MedicationStore()).migrate("c1")
        assert outcome.success
        assert outcome.data.summary.total_migrated == 0
