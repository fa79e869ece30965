"""Locate the files behind attachment references.

Attachments are looked up first by transfer GUID under the local attachments
tree (``<root>/.../<GUID>/<file name>``). Failing that, an external library is
searched by file name and the hit is copied next to the attachments tree,
reusing an earlier copy when size and mtime match.
"""

from __future__ import annotations

import logging
import os
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

from .copy_ledger import CopyLedger
from .errors import AttachmentIOError
from .keyed_archive import ArchivedMap, ObjectPool, resolve_string
from .models import Attachment, FileIdentity
from .utils import unique_destination

logger = logging.getLogger(__name__)

GUID_KEY = "__kIMFileTransferGUIDAttributeName"
FILENAME_KEY = "__kIMFilenameAttributeName"


def file_identity(path: Path) -> FileIdentity:
    stat = path.stat()
    return FileIdentity(
        byte_length=stat.st_size,
        modified_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
    )


def _log_walk_error(exc: OSError) -> None:
    logger.warning("Skipping unreadable directory %s: %s", exc.filename, exc)


def index_directories(root: Path) -> dict[str, Path]:
    """Map every directory name under root to its first (sorted-walk) path."""
    found: dict[str, Path] = {}
    for dirpath, dirnames, _ in os.walk(root, onerror=_log_walk_error):
        dirnames.sort()
        for name in dirnames:
            found.setdefault(name, Path(dirpath) / name)
    return found


def index_files(root: Path) -> dict[str, Path]:
    """Map every file name under root to its first (sorted-walk) path."""
    found: dict[str, Path] = {}
    for dirpath, dirnames, filenames in os.walk(root, onerror=_log_walk_error):
        dirnames.sort()
        for name in sorted(filenames):
            found.setdefault(name, Path(dirpath) / name)
    return found


class AttachmentResolver:
    """Resolve attachment descriptors to paths; owns the run's copy ledger."""

    def __init__(
        self,
        attachments_root: Optional[Path],
        external_library: Optional[Path] = None,
        copy_target_dir: Optional[Path] = None,
        ledger: Optional[CopyLedger] = None,
    ) -> None:
        self.attachments_root = attachments_root
        self.external_library = external_library
        self.copy_target_dir = copy_target_dir
        self.ledger = ledger or CopyLedger()
        self._guid_dirs: Optional[dict[str, Path]] = None
        self._library_files: Optional[dict[str, Path]] = None
        if external_library is not None and copy_target_dir is None:
            raise ValueError("An external library needs a copy target directory.")

    def find_guid_dir(self, guid: str) -> Optional[Path]:
        if self.attachments_root is None:
            return None
        if self._guid_dirs is None:
            self._guid_dirs = index_directories(self.attachments_root)
            logger.debug(
                "Indexed %s directories under %s", len(self._guid_dirs), self.attachments_root
            )
        return self._guid_dirs.get(guid)

    def find_in_library(self, file_name: str) -> Optional[Path]:
        if self.external_library is None:
            return None
        if self._library_files is None:
            self._library_files = index_files(self.external_library)
            logger.debug(
                "Indexed %s files under %s", len(self._library_files), self.external_library
            )
        return self._library_files.get(file_name)

    def resolve(self, descriptor: ArchivedMap, pool: ObjectPool) -> Optional[Attachment]:
        """Resolve one attribute run; None means it is not an attachment."""
        guid = resolve_string(descriptor.get(GUID_KEY), pool)
        file_name = resolve_string(descriptor.get(FILENAME_KEY), pool)
        if guid is None or file_name is None:
            return None

        guid_dir = self.find_guid_dir(guid)
        if guid_dir is not None:
            return Attachment(file_name, guid_dir / file_name)

        source = self.find_in_library(file_name)
        if source is None:
            logger.debug("Attachment %s (%s) not found", file_name, guid)
            return Attachment(file_name)

        try:
            return Attachment(file_name, self.copy_external(source, file_name))
        except AttachmentIOError as exc:
            logger.error("Could not copy external attachment %s: %s", source, exc)
            return Attachment(file_name)

    def copy_external(self, source: Path, file_name: str) -> Path:
        """Copy a library file into the copy target, deduplicating by identity."""
        if self.copy_target_dir is None:
            raise ValueError("copy_external needs a copy target directory")
        try:
            identity = file_identity(source)
            existing = self.ledger.lookup(file_name, identity)
            if existing is not None and existing.parent == self.copy_target_dir and existing.exists():
                logger.debug("Reusing copy %s for %s", existing, source)
                return existing
            if existing is not None:
                logger.debug("Ledger copy %s is gone or elsewhere; copying %s again", existing, source)

            self.copy_target_dir.mkdir(parents=True, exist_ok=True)
            destination = unique_destination(self.copy_target_dir, file_name)
            shutil.copy2(source, destination)
        except OSError as exc:
            raise AttachmentIOError(f"{source}: {exc}") from exc

        self.ledger.record(
            file_name=file_name,
            identity=identity,
            copy_path=destination,
            source_path=source,
        )
        logger.info("Copied external attachment %s to %s", source, destination)
        return destination

