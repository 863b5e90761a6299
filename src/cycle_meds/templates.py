"""Pre-built recurring medication protocols for quick plan setup."""

from __future__ import annotations

from .models import RecurringEntryDraft

COMMON_MEDICATIONS: tuple[str, ...] = (
    "Gonal-F",
    "Menopur",
    "Cetrotide",
    "Lupron",
    "Estrace",
    "Progesterone",
    "Follistim",
    "Ganirelix",
    "Ovidrel",
    "Pregnyl",
    "Crinone",
    "Endometrin",
    "Medrol",
    "Estradiol",
    "Prometrium Inserts",
    "Progesterone in Oil (PIO)",
)


def _entry(name: str, dosage: str, hour: int, meridiem: str, *, refrigerated: bool, start: int, end: int) -> RecurringEntryDraft:
    return RecurringEntryDraft(
        name=name,
        dosage=dosage,
        hour=hour,
        minute=0,
        meridiem=meridiem,
        refrigerated=refrigerated,
        start_day=start,
        end_day=end,
    )


PROTOCOL_TEMPLATES: dict[str, tuple[RecurringEntryDraft, ...]] = {
    "antagonist-protocol": (
        _entry("Gonal-F", "225 IU", 8, "PM", refrigerated=True, start=1, end=10),
        _entry("Menopur", "150 IU", 8, "PM", refrigerated=False, start=1, end=10),
        _entry("Cetrotide", "0.25 mg", 8, "PM", refrigerated=True, start=6, end=10),
    ),
    "lupron-protocol": (
        _entry("Lupron", "10 units", 8, "PM", refrigerated=True, start=1, end=14),
    ),
    "transfer-protocol": (
        _entry("Medrol", "16 mg", 8, "AM", refrigerated=False, start=1, end=5),
        _entry("Estradiol", "2 mg", 8, "AM", refrigerated=False, start=1, end=10),
        _entry("Progesterone in Oil (PIO)", "1 mL", 8, "PM", refrigerated=False, start=1, end=10),
    ),
}


def template_entries(name: str) -> list[RecurringEntryDraft]:
    """Drafts for a named protocol; raises KeyError listing the known names."""
    try:
        return list(PROTOCOL_TEMPLATES[name])
    except KeyError:
        known = ", ".join(sorted(PROTOCOL_TEMPLATES))
        raise KeyError(f"unknown protocol template {name!r}; known: {known}") from None
