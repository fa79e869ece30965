"""Typed containers shared across the extraction pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

ATTACHMENT_MARKER = "\ufffc"


@dataclass(frozen=True)
class Participant:
    """A resolved conversation participant."""

    identity: str
    display_name: str
    is_self: bool = False


@dataclass(frozen=True)
class Attachment:
    """An attachment reference; resolved_path is None when nothing was found."""

    declared_file_name: str
    resolved_path: Optional[Path] = None

    @property
    def resolved(self) -> bool:
        return self.resolved_path is not None


@dataclass(frozen=True)
class FileIdentity:
    """Size and mtime of a file, used to tell same-named files apart."""

    byte_length: int
    modified_at: datetime


@dataclass(frozen=True)
class Message:
    """One message decoded from an archive file."""

    source_file: Path
    sender: Participant
    who: Participant
    guid: str
    timestamp: datetime
    text: str
    service: str
    is_first_in_file: bool = False
    thread_subject: Optional[Participant] = None
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)

    @property
    def is_from_me(self) -> bool:
        return self.sender.is_self

    def segments(self) -> list[str | Attachment]:
        """Split text on attachment markers, interleaving the attachments."""
        parts: list[str | Attachment] = []
        chunks = self.text.split(ATTACHMENT_MARKER)
        for index, chunk in enumerate(chunks):
            if chunk:
                parts.append(chunk)
            if index < len(self.attachments):
                parts.append(self.attachments[index])
        return parts
