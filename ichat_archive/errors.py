"""Exceptions raised while decoding archives and resolving attachments."""

from __future__ import annotations


class ArchiveError(Exception):
    """Base class for everything this package raises on bad input."""


class FormatError(ArchiveError):
    """A required record or field is missing, mistyped or out of bounds."""


class AttachmentIOError(ArchiveError):
    """Searching for or copying an attachment failed on disk."""
