"""Structured logging for the medication engine.

Modules log with ``extra={"meds_cycle_id": ..., "meds_day": ...}``. Both
formatters surface those fields: JSON as top-level keys, text as a trailing
``[cycle_id=c1 day=3]`` block. The format is picked by MEDS_LOG_FORMAT.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

EXTRA_PREFIX = "meds_"


def meds_fields(record: logging.LogRecord) -> dict[str, Any]:
    """The ``meds_*`` extras attached to a record, in attachment order."""
    return {key: value for key, value in record.__dict__.items() if key.startswith(EXTRA_PREFIX)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(meds_fields(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = meds_fields(record)
        if not fields:
            return line
        context = " ".join(f"{key[len(EXTRA_PREFIX):]}={value}" for key, value in fields.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{context}]{sep}{tail}"


def setup_logging(log_format: str, level: int | str = logging.INFO) -> None:
    """Route everything through one stderr handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    root.addHandler(handler)
