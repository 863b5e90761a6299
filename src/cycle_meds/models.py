"""Core data models for recurring plans, daily adherence and unified views.

Everything persisted is a pydantic model with camelCase aliases so that the
storage layer reads back exactly the shape it wrote. Python code uses the
snake_case field names.
"""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .time_keys import MINUTE_STEPS, format_time, normalize_meridiem, time_key

EntryOrigin = Literal["recurring", "one-time"]
MedicationType = Literal["scheduled", "one-time"]
AdherenceState = Literal["untouched", "taken", "skipped"]


def utc_now() -> dt.datetime:
    return dt.datetime.now(tz=dt.UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC)


UtcDatetime = Annotated[dt.datetime, AfterValidator(_as_utc)]


def adherence_state(taken: bool, skipped: bool) -> AdherenceState:
    """Collapse the two stored flags into one state; taken wins if both are set."""
    if taken:
        return "taken"
    if skipped:
        return "skipped"
    return "untouched"


def _normalize_non_empty(value: str, *, field_name: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} must not be empty")
    return normalized


def _normalize_optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _coerce_clock_number(value: Any) -> Any:
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _ClockFields(CamelModel):
    name: str
    dosage: str
    hour: int = Field(ge=1, le=12)
    minute: int = Field(ge=0, le=59)
    meridiem: Literal["AM", "PM"]
    refrigerated: bool = False
    notes: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _normalize_non_empty(value, field_name="name")

    @field_validator("dosage")
    @classmethod
    def validate_dosage(cls, value: str) -> str:
        return _normalize_non_empty(value, field_name="dosage")

    @field_validator("hour", "minute", mode="before")
    @classmethod
    def coerce_clock_numbers(cls, value: Any) -> Any:
        return _coerce_clock_number(value)

    @field_validator("meridiem", mode="before")
    @classmethod
    def normalize_meridiem_field(cls, value: Any) -> Any:
        return normalize_meridiem(value) or value

    @field_validator("notes")
    @classmethod
    def normalize_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)

    @property
    def time_key(self) -> int:
        return time_key(self.hour, self.minute, self.meridiem)

    @property
    def time(self) -> str:
        return format_time(self.hour, self.minute, self.meridiem)


# --- Recurring plan ---


class RecurringEntryDraft(_ClockFields):
    """A plan entry as submitted; ``id`` is assigned on submission when absent."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    start_day: int = Field(ge=1)
    end_day: int = Field(ge=1)

    @field_validator("minute")
    @classmethod
    def validate_minute_step(cls, value: int) -> int:
        if value not in MINUTE_STEPS:
            allowed = ", ".join(f"{step:02d}" for step in MINUTE_STEPS)
            raise ValueError(f"minute must be one of: {allowed}")
        return value

    @model_validator(mode="after")
    def validate_day_range(self) -> "RecurringEntryDraft":
        if self.end_day < self.start_day:
            raise ValueError("end_day must be >= start_day")
        return self

    def is_active_on(self, day: int) -> bool:
        return self.start_day <= day <= self.end_day


class RecurringEntry(RecurringEntryDraft):
    id: str

    @field_validator("id")
    @classmethod
    def validate_id(cls, value: str) -> str:
        return _normalize_non_empty(value, field_name="id")


class RecurringMedicationPlan(CamelModel):
    id: str = Field(default_factory=new_id)
    cycle_id: str
    entries: list[RecurringEntry] = Field(default_factory=list)
    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime | None = None

    @model_validator(mode="after")
    def validate_unique_entry_ids(self) -> "RecurringMedicationPlan":
        seen: set[str] = set()
        for entry in self.entries:
            if entry.id in seen:
                raise ValueError(f"duplicate recurring entry id: {entry.id}")
            seen.add(entry.id)
        return self

    def active_entries(self, day: int) -> list[RecurringEntry]:
        return [entry for entry in self.entries if entry.is_active_on(day)]

    def entry(self, entry_id: str) -> RecurringEntry | None:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None


# --- Daily adherence ---


class RecurringAdherence(CamelModel):
    recurring_entry_id: str
    taken: bool = False
    skipped: bool = False
    actual_dosage: str | None = None
    taken_at: UtcDatetime | None = None
    notes: str | None = None

    @property
    def state(self) -> AdherenceState:
        return adherence_state(self.taken, self.skipped)


class OneTimeEntryDraft(_ClockFields):
    taken: bool = False
    skipped: bool = False
    taken_at: UtcDatetime | None = None


class OneTimeEntry(OneTimeEntryDraft):
    id: str

    @property
    def state(self) -> AdherenceState:
        return adherence_state(self.taken, self.skipped)


class DailyAdherenceRecord(CamelModel):
    id: str = Field(default_factory=new_id)
    cycle_id: str
    cycle_day: int = Field(ge=1)
    date: dt.date | None = None
    adherence: list[RecurringAdherence] = Field(default_factory=list)
    one_time_entries: list[OneTimeEntry] = Field(default_factory=list)
    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime | None = None

    @property
    def key(self) -> tuple[str, int]:
        return self.cycle_id, self.cycle_day

    @property
    def last_modified(self) -> dt.datetime:
        return self.updated_at or self.created_at

    def adherence_for(self, recurring_entry_id: str) -> RecurringAdherence | None:
        for row in self.adherence:
            if row.recurring_entry_id == recurring_entry_id:
                return row
        return None

    def one_time_entry(self, entry_id: str) -> OneTimeEntry | None:
        for entry in self.one_time_entries:
            if entry.id == entry_id:
                return entry
        return None


# --- Derived views ---


class UnifiedEntry(CamelModel):
    id: str
    name: str
    dosage: str
    hour: int
    minute: int
    meridiem: str
    time_key: int
    refrigerated: bool
    origin: EntryOrigin
    taken: bool = False
    skipped: bool = False
    taken_at: UtcDatetime | None = None
    notes: str | None = None
    actual_dosage: str | None = None
    start_day: int | None = None
    end_day: int | None = None

    @property
    def time(self) -> str:
        return format_time(self.hour, self.minute, self.meridiem)

    @property
    def completed(self) -> bool:
        return self.taken or self.skipped

    @property
    def state(self) -> AdherenceState:
        return adherence_state(self.taken, self.skipped)


class UnifiedMedicationView(CamelModel):
    cycle_id: str
    day: int
    date: dt.date | None = None
    entries: list[UnifiedEntry] = Field(default_factory=list)
    total_count: int = 0
    completed_count: int = 0


class DayBreakdown(CamelModel):
    day: int
    date: dt.date | None = None
    entries: list[UnifiedEntry] = Field(default_factory=list)
    completed: int = 0
    total: int = 0


class ScheduleOverview(CamelModel):
    cycle_id: str
    plan: RecurringMedicationPlan | None = None
    total_medications: int = 0
    completed_medications: int = 0
    daily_breakdown: list[DayBreakdown] = Field(default_factory=list)

    @property
    def completion_rate(self) -> float:
        if self.total_medications == 0:
            return 0.0
        return self.completed_medications / self.total_medications


# --- Unified-model medications (migration target) ---


class Medication(CamelModel):
    """Flattened medication record: one row per (cycle, day, medication)."""

    id: str = Field(default_factory=new_id)
    cycle_id: str
    cycle_day: int
    name: str
    dosage: str
    time: str
    refrigerated: bool = False
    type: MedicationType
    start_day: int | None = None
    end_day: int | None = None
    taken: bool = False
    skipped: bool = False
    taken_at: UtcDatetime | None = None
    notes: str | None = None
    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime | None = None

    def is_active_on(self, day: int) -> bool:
        if self.type == "one-time":
            return self.cycle_day == day
        start = self.start_day or 1
        end = self.end_day or day
        return start <= day <= end


def completion_rate(medications: list[Medication]) -> float:
    if not medications:
        return 0.0
    return sum(1 for med in medications if med.taken or med.skipped) / len(medications)


# --- Collaborator inputs ---


class CycleInfo(CamelModel):
    """What the Cycle collaborator tells the engine about one cycle."""

    cycle_id: str
    start_date: dt.date
    day_indices: list[int] = Field(default_factory=list)

    @field_validator("day_indices")
    @classmethod
    def validate_day_indices(cls, value: list[int]) -> list[int]:
        if any(day < 1 for day in value):
            raise ValueError("day indices are 1-based")
        return sorted(set(value))

    def date_for(self, day: int) -> dt.date:
        return self.start_date + dt.timedelta(days=day - 1)


@dataclass(frozen=True)
class EntryRef:
    """Points at one medication on one cycle day."""

    cycle_id: str
    day: int
    entry_id: str
    origin: EntryOrigin
