from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

EPOCH_UTC = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time, ISO-8601 with seconds precision."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def parse_iso_utc(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp (a trailing Z is accepted). Naive values are
    taken as UTC.
    """
    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = f"{text[:-1]}+00:00"
    return as_utc(datetime.fromisoformat(text)) or EPOCH_UTC


def as_utc(value: Any) -> Optional[datetime]:
    """
    Coerce a datetime or ISO string to an aware UTC datetime. Returns None for
    missing or unparseable values.
    """
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
        return aware.astimezone(timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            return parse_iso_utc(value)
        except ValueError:
            return None
    return None
