import os
from dataclasses import dataclass
from pathlib import Path

from .time_keys import is_canonical_time

_LOG_FORMATS = ("json", "text")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(name: str, default: str) -> bool:
    raw = os.environ.get(name, default).strip().lower()
    if raw in {"true", "yes", "1"}:
        return True
    if raw in {"false", "no", "0"}:
        return False
    raise RuntimeError(f"{name} must be true or false, got {raw!r}")


@dataclass(frozen=True)
class Config:
    log_format: str = "json"
    log_level: str = "INFO"
    skip_incomplete_data: bool = False
    preserve_timestamps: bool = True
    state_path: Path | None = None
    embedded_default_time: str = "08:00 AM"

    @classmethod
    def from_env(cls) -> "Config":
        log_format = os.environ.get("MEDS_LOG_FORMAT", "json").strip().lower()
        if log_format not in _LOG_FORMATS:
            raise RuntimeError(f"MEDS_LOG_FORMAT must be one of: {', '.join(_LOG_FORMATS)}")

        log_level = os.environ.get("MEDS_LOG_LEVEL", "INFO").strip().upper()
        if log_level not in _LOG_LEVELS:
            raise RuntimeError(f"MEDS_LOG_LEVEL must be one of: {', '.join(_LOG_LEVELS)}")

        embedded_default_time = os.environ.get("MEDS_EMBEDDED_DEFAULT_TIME", "08:00 AM").strip()
        if not is_canonical_time(embedded_default_time):
            raise RuntimeError("MEDS_EMBEDDED_DEFAULT_TIME must look like 08:00 AM")

        state_path = os.environ.get("MEDS_STATE_PATH", "").strip()

        return cls(
            log_format=log_format,
            log_level=log_level,
            skip_incomplete_data=_env_bool("MEDS_SKIP_INCOMPLETE_DATA", "false"),
            preserve_timestamps=_env_bool("MEDS_PRESERVE_TIMESTAMPS", "true"),
            state_path=Path(state_path) if state_path else None,
            embedded_default_time=embedded_default_time,
        )
