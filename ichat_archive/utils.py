"""Utility helpers shared across modules."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

# Archive timestamps count seconds from this instant.
REFERENCE_EPOCH = datetime(2001, 1, 1, tzinfo=UTC)


def from_reference_seconds(seconds: float) -> datetime:
    """Convert a reference-epoch offset into an aware UTC datetime."""
    return REFERENCE_EPOCH + timedelta(seconds=seconds)


def ensure_utc(dt: datetime) -> datetime:
    """Force a datetime into UTC without altering instant."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def year_of(dt: datetime, timezone: str = "UTC") -> int:
    """Calendar year of an instant as seen in the given zone."""
    return ensure_utc(dt).astimezone(ZoneInfo(timezone)).year


def strip_identity(value: str) -> str:
    """Drop the leading '+' characters phone-style identities carry."""
    return value.lstrip("+")


def unique_destination(directory: Path, file_name: str) -> Path:
    """Return directory/file_name, suffixed _1, _2, ... until it is unused."""
    candidate = directory / file_name
    stem = candidate.stem
    suffix = candidate.suffix
    seq = 0
    while candidate.exists():
        seq += 1
        candidate = directory / f"{stem}_{seq}{suffix}"
    return candidate
