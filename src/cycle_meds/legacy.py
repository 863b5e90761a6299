"""Legacy medication shapes consumed only by the migrator.

The old representation mixed three kinds of medication data:
- recurring entries on a per-cycle schedule, with per-day adherence
  sub-records stored on separate daily status objects;
- day-specific (one-time) entries on those daily status objects;
- medications embedded directly on cycle day objects.

Containers keep their entries as raw dicts. Each entry is validated into its
``LegacyMedication`` variant one at a time so a single malformed entry cannot
take the rest of the batch down with it.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from .models import UtcDatetime


class LegacyModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _blank_if_missing(value: Any) -> Any:
    return "" if value is None else value


class RecurringLegacy(LegacyModel):
    kind: Literal["recurring"] = "recurring"
    id: str = ""
    name: str = ""
    dosage: str = ""
    hour: str | int
    minute: str | int
    ampm: str
    refrigerated: bool = False
    start_day: int
    end_day: int
    notes: str | None = None

    blank_text = field_validator("id", "name", "dosage", mode="before")(_blank_if_missing)


class OneTimeLegacy(LegacyModel):
    kind: Literal["one-time"] = "one-time"
    id: str | None = None
    name: str = ""
    dosage: str = ""
    hour: str | int
    minute: str | int
    ampm: str
    refrigerated: bool = False
    taken: bool = False
    skipped: bool = False
    taken_at: UtcDatetime | None = None
    notes: str | None = None

    blank_text = field_validator("name", "dosage", mode="before")(_blank_if_missing)


class EmbeddedLegacy(LegacyModel):
    """A medication written straight onto a cycle day object."""

    kind: Literal["embedded"] = "embedded"
    name: str = ""
    dosage: str = ""
    unit: str | None = None
    time: str | None = None
    timing: str | None = None
    route: str | None = None
    refrigerated: bool = False
    taken: bool = False
    skipped: bool = False
    trigger: bool = False
    notes: str | None = None

    blank_text = field_validator("name", "dosage", mode="before")(_blank_if_missing)

    @property
    def time_text(self) -> str | None:
        for candidate in (self.time, self.timing):
            if candidate and candidate.strip():
                return candidate.strip()
        return None

    @property
    def full_dosage(self) -> str:
        dosage = self.dosage.strip()
        unit = (self.unit or "").strip()
        if not dosage or not unit or dosage.lower().endswith(unit.lower()):
            return dosage
        return f"{dosage} {unit}"


LegacyMedication = Annotated[
    Union[RecurringLegacy, OneTimeLegacy, EmbeddedLegacy],
    Field(discriminator="kind"),
]

_LEGACY_MEDICATION_ADAPTER: TypeAdapter[LegacyMedication] = TypeAdapter(LegacyMedication)

LegacyKind = Literal["recurring", "one-time", "embedded"]


def parse_legacy_medication(raw: dict[str, Any], kind: LegacyKind) -> LegacyMedication:
    """Validate one raw legacy entry as the variant its container implies.

    Raises pydantic.ValidationError (or TypeError for non-dict input).
    """
    if not isinstance(raw, dict):
        raise TypeError(f"legacy medication must be an object, got {type(raw).__name__}")
    return _LEGACY_MEDICATION_ADAPTER.validate_python({**raw, "kind": kind})


class LegacyAdherence(LegacyModel):
    scheduled_medication_id: str
    taken: bool = False
    skipped: bool = False
    actual_dosage: str | None = None
    taken_at: UtcDatetime | None = None
    notes: str | None = None


class LegacySchedule(LegacyModel):
    id: str = ""
    cycle_id: str
    medications: list[Any] = Field(default_factory=list)
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None


class LegacyDailyStatus(LegacyModel):
    id: str = ""
    cycle_id: str
    cycle_day: int
    date: str | None = None
    medications: list[Any] = Field(default_factory=list)
    day_specific_medications: list[Any] | None = None
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None

    def adherence_for(self, scheduled_medication_id: str) -> LegacyAdherence | None:
        for row in self.medications:
            if not isinstance(row, dict):
                continue
            row_id = row.get("scheduledMedicationId", row.get("scheduled_medication_id"))
            if row_id == scheduled_medication_id:
                return LegacyAdherence.model_validate(row)
        return None


class LegacyCycleDay(LegacyModel):
    id: str = ""
    cycle_day: int
    date: str | None = None
    medications: list[Any] = Field(default_factory=list)


class LegacyCycleData(LegacyModel):
    """Every legacy record the storage layer found for one cycle."""

    cycle_id: str
    schedules: list[LegacySchedule] = Field(default_factory=list)
    statuses: list[LegacyDailyStatus] = Field(default_factory=list)
    days: list[LegacyCycleDay] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.schedules and not self.statuses and not any(day.medications for day in self.days)
