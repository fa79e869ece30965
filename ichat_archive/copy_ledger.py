"""SQLite-backed ledger of external attachments already copied this run."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

import sqlite_utils

from .models import FileIdentity


class CopyLedger:
    """Remember which (name, size, mtime) copies exist and where they landed."""

    TABLE = "attachment_copies"
    PK = ("file_name", "byte_length", "modified_at")

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = db_path
        if db_path is None:
            self.db = sqlite_utils.Database(memory=True)
        else:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db = sqlite_utils.Database(str(db_path))
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.db[self.TABLE].create(
            {
                "file_name": str,
                "byte_length": int,
                "modified_at": str,
                "copy_path": str,
                "source_path": str,
                "copied_at": str,
            },
            pk=self.PK,
            if_not_exists=True,
        )

    def lookup(self, file_name: str, identity: FileIdentity) -> Optional[Path]:
        """Return the recorded copy for this name and identity, if any."""
        rows = list(
            self.db[self.TABLE].rows_where(
                "file_name = ? and byte_length = ? and modified_at = ?",
                [file_name, identity.byte_length, identity.modified_at.isoformat()],
                limit=1,
            )
        )
        if not rows:
            return None
        return Path(rows[0]["copy_path"])

    def record(
        self,
        *,
        file_name: str,
        identity: FileIdentity,
        copy_path: Path,
        source_path: Path,
    ) -> None:
        self.db[self.TABLE].upsert(
            {
                "file_name": file_name,
                "byte_length": identity.byte_length,
                "modified_at": identity.modified_at.isoformat(),
                "copy_path": str(copy_path),
                "source_path": str(source_path),
                "copied_at": datetime.now(tz=UTC).isoformat(),
            },
            pk=self.PK,
        )

    def count(self) -> int:
        return self.db[self.TABLE].count
