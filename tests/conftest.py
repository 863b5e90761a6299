"""Shared fixtures: a stepping clock and predictable ids keep records comparable."""

from __future__ import annotations

import datetime as dt
import itertools

import pytest

from cycle_meds.engine import MedicationEngine
from cycle_meds.models import CycleInfo, RecurringEntryDraft
from cycle_meds.store import MedicationStore

START = dt.datetime(2025, 3, 1, 9, 0, tzinfo=dt.UTC)


class SteppingClock:
    """Returns START, START+1s, START+2s, ... on successive calls."""

    def __init__(self, start: dt.datetime = START) -> None:
        self._ticks = itertools.count()
        self._start = start

    def __call__(self) -> dt.datetime:
        return self._start + dt.timedelta(seconds=next(self._ticks))


class SequentialIds:
    def __init__(self, prefix: str = "id") -> None:
        self._counter = itertools.count(1)
        self._prefix = prefix

    def __call__(self) -> str:
        return f"{self._prefix}-{next(self._counter)}"


def make_entry(**overrides) -> RecurringEntryDraft:
    values = {
        "id": "gonal",
        "name": "Gonal-F",
        "dosage": "225 IU",
        "hour": 8,
        "minute": 0,
        "meridiem": "PM",
        "refrigerated": True,
        "start_day": 1,
        "end_day": 10,
    }
    values.update(overrides)
    return RecurringEntryDraft(**values)


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def store() -> MedicationStore:
    return MedicationStore()


@pytest.fixture
def engine(store: MedicationStore, clock: SteppingClock, ids: SequentialIds) -> MedicationEngine:
    engine = MedicationEngine(store, clock=clock, id_factory=ids)
    engine.register_cycle(CycleInfo(cycle_id="c1", start_date=dt.date(2025, 3, 1), day_indices=[1, 2, 3]))
    return engine
