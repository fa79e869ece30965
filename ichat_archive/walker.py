"""Walk an archive tree and group the decoded messages by calendar year."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Optional

from .errors import FormatError
from .extractor import RunContext, extract_file
from .models import Message
from .utils import year_of

logger = logging.getLogger(__name__)

YearBuckets = dict[int, list[Message]]


def iter_archive_files(
    archive_root: Path,
    extension: str = "ichat",
    onerror: Optional[Callable[[Path, OSError], None]] = None,
) -> Iterator[Path]:
    """Yield archive files: subdirectories by name, then files by name.

    Hidden entries are skipped. A subdirectory that cannot be listed is
    reported to ``onerror`` (or raised when no handler is given) and passed
    over.
    """
    suffix = f".{extension.lstrip('.')}"
    subdirectories = sorted(
        (
            entry
            for entry in archive_root.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        ),
        key=lambda entry: entry.name,
    )
    for subdirectory in subdirectories:
        try:
            files = sorted(
                (
                    entry
                    for entry in subdirectory.iterdir()
                    if not entry.name.startswith(".")
                    and entry.suffix == suffix
                    and entry.is_file()
                ),
                key=lambda entry: entry.name,
            )
        except OSError as exc:
            if onerror is None:
                raise
            onerror(subdirectory, exc)
            continue
        yield from files


def add_to_buckets(buckets: YearBuckets, messages: list[Message], timezone: str = "UTC") -> None:
    for message in messages:
        buckets.setdefault(year_of(message.timestamp, timezone), []).append(message)


def select_years(
    buckets: YearBuckets, start: Optional[int] = None, end: Optional[int] = None
) -> YearBuckets:
    """Keep only the years inside the inclusive [start, end] range."""
    return {
        year: messages
        for year, messages in sorted(buckets.items())
        if (start is None or year >= start) and (end is None or year <= end)
    }


@dataclass
class WalkStats:
    files: int = 0
    skipped: int = 0
    messages: int = 0
    failures: list[tuple[Path, str]] = field(default_factory=list)


def collect_messages(
    archive_root: Path,
    run: RunContext,
    extension: str = "ichat",
    stats: Optional[WalkStats] = None,
) -> YearBuckets:
    """Extract every archive file under archive_root into year buckets.

    A file that fails to decode is logged and skipped; the others still count.
    """
    stats = stats if stats is not None else WalkStats()
    buckets: YearBuckets = {}

    def skip_directory(directory: Path, exc: OSError) -> None:
        logger.warning("Could not list %s: %s", directory, exc)
        stats.skipped += 1
        stats.failures.append((directory, str(exc)))

    for path in iter_archive_files(archive_root, extension, onerror=skip_directory):
        stats.files += 1
        try:
            messages = extract_file(path, run)
            years = [year_of(message.timestamp, run.timezone) for message in messages]
        except (FormatError, OverflowError) as exc:
            logger.warning("Skipping %s: %s", path, exc)
            stats.skipped += 1
            stats.failures.append((path, str(exc)))
            continue
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            stats.skipped += 1
            stats.failures.append((path, str(exc)))
            continue
        logger.info("Read %s messages from %s", len(messages), path.name)
        stats.messages += len(messages)
        for year, message in zip(years, messages):
            buckets.setdefault(year, []).append(message)
    return buckets
