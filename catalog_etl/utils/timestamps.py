# catalog_etl/utils/timestamps.py
"""
Timestamp helpers (structured UTC instants)

Intent
- Keep every timestamp as an aware UTC `datetime` inside the pipelines.
- Render to one canonical string form only at the boundaries
  (watermark object, chunk key namespace, API responses):
      YYYY-MM-DDTHH:MM:SS   (UTC, no offset, no fraction)

Parsing accepts what the outside world hands us:
- ISO-8601 with or without seconds/fraction ("2024-01-01T00:00", "2024-01-01T00:00:00.123")
- trailing "Z" or an explicit offset (converted to UTC)
- naive values are taken as UTC
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

CANONICAL_FORMAT = "%Y-%m-%dT%H:%M:%S"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_utc(dt: datetime) -> datetime:
    """
    Naive -> assume UTC; aware -> convert to UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_instant(value: str) -> datetime:
    """
    Parse an ISO-8601 string into an aware UTC datetime.

    Raises ValueError for anything that is not ISO-8601.
    """
    s = str(value).strip()
    if not s:
        raise ValueError("Empty timestamp")
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(s))


def parse_optional_instant(value: Optional[str]) -> Optional[datetime]:
    if value is None or not str(value).strip():
        return None
    return parse_instant(value)


def format_instant(dt: datetime) -> str:
    """
    Canonical boundary form: UTC, second precision, no offset.
    """
    return to_utc(dt).strftime(CANONICAL_FORMAT)


def canonicalize(value: str) -> str:
    return format_instant(parse_instant(value))


def epoch_to_instant(value: Any) -> datetime:
    """
    Convert epoch seconds (int, float, or numeric string) to an aware UTC datetime.

    Raises ValueError / TypeError / OverflowError for anything else.
    """
    if isinstance(value, bool):
        raise TypeError("Boolean is not an epoch timestamp")
    if isinstance(value, str):
        value = float(value.strip())
    if not isinstance(value, (int, float)):
        raise TypeError(f"Unsupported epoch type: {type(value).__name__}")
    return datetime.fromtimestamp(value, tz=timezone.utc)


__all__ = [
    "CANONICAL_FORMAT",
    "utc_now",
    "to_utc",
    "parse_instant",
    "parse_optional_instant",
    "format_instant",
    "canonicalize",
    "epoch_to_instant",
]
