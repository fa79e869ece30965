"""Shared fixtures: an in-memory builder for keyed-archive files."""

from __future__ import annotations

import plistlib
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterable, Optional

import pytest

from ichat_archive.attachments import FILENAME_KEY, GUID_KEY, AttachmentResolver
from ichat_archive.copy_ledger import CopyLedger
from ichat_archive.extractor import RunContext
from ichat_archive.keyed_archive import ArchivedMap, ObjectPool, resolve_uid
from ichat_archive.participants import PARTICIPANT_IDS_SLOT, PARTICIPANT_NAMES_SLOT
from ichat_archive.utils import REFERENCE_EPOCH

UID = plistlib.UID
NULL = UID(0)


def seconds_for(year: int, month: int = 6, day: int = 1, hour: int = 12) -> float:
    """Reference-epoch offset of a UTC wall-clock instant."""
    return (datetime(year, month, day, hour, tzinfo=UTC) - REFERENCE_EPOCH).total_seconds()


class ArchiveBuilder:
    """Assemble an $objects pool the way the archiver lays it out."""

    def __init__(self) -> None:
        self.objects: list = ["$null"]
        self._classes: dict[str, UID] = {}

    def add(self, value) -> UID:
        self.objects.append(value)
        return UID(len(self.objects) - 1)

    def klass(self, name: str) -> UID:
        if name not in self._classes:
            self._classes[name] = self.add({"$classname": name, "$classes": [name, "NSObject"]})
        return self._classes[name]

    def string(self, value: str) -> UID:
        return self.add(value)

    def wrapped_string(self, value: str) -> UID:
        return self.add({"NS.string": self.string(value), "$class": self.klass("NSMutableString")})

    def array(self, refs: Iterable[UID]) -> UID:
        return self.add({"NS.objects": list(refs), "$class": self.klass("NSMutableArray")})

    def dictionary(self, mapping: dict[str, UID]) -> UID:
        keys = [self.string(key) for key in mapping]
        return self.add(
            {
                "NS.keys": keys,
                "NS.objects": list(mapping.values()),
                "$class": self.klass("NSDictionary"),
            }
        )

    def presentity(self, identity: str, wrapped: bool = False) -> UID:
        ref = self.wrapped_string(identity) if wrapped else self.string(identity)
        return self.add({"ID": ref, "$class": self.klass("Presentity")})

    def time(self, seconds: float) -> UID:
        return self.add({"NS.time": seconds, "$class": self.klass("NSDate")})

    def attachment_attrs(self, guid: str, file_name: str) -> UID:
        return self.dictionary(
            {GUID_KEY: self.string(guid), FILENAME_KEY: self.string(file_name)}
        )

    def style_attrs(self) -> UID:
        return self.dictionary({"NSFont": self.string("Helvetica")})

    def message(
        self,
        sender: UID,
        seconds: float,
        guid: str,
        text: Optional[str] = None,
        attributes: Optional[UID] = None,
        original: Optional[str] = None,
        subject: Optional[UID] = None,
    ) -> UID:
        record = {
            "Sender": sender,
            "Subject": subject if subject is not None else NULL,
            "Time": self.time(seconds),
            "GUID": self.string(guid),
            "$class": self.klass("InstantMessage"),
        }
        if text is not None:
            record["MessageText"] = self.add(
                {
                    "NSString": self.wrapped_string(text),
                    "NSAttributes": attributes if attributes is not None else NULL,
                    "$class": self.klass("NSMutableAttributedString"),
                }
            )
        elif original is not None:
            record["OriginalMessage"] = self.string(original)
        return self.add(record)

    def metadata(self, participants: list[tuple[str, str]]) -> UID:
        names = self.array(self.string(name) for name, _ in participants)
        identities = self.array(self.string(identity) for _, identity in participants)
        slots = [self.string("Service"), self.string("Version"), self.string("Extra")]
        slots[PARTICIPANT_NAMES_SLOT] = names
        slots[PARTICIPANT_IDS_SLOT] = identities
        keys = [self.string(f"key{index}") for index in range(len(slots))]
        return self.add(
            {"NS.keys": keys, "NS.objects": slots, "$class": self.klass("NSMutableDictionary")}
        )

    def tree(
        self,
        participants: list[tuple[str, str]],
        messages: list[UID],
        service: str = "iMessage",
    ) -> dict:
        metadata = self.metadata(participants)
        root = self.array([self.string(service), self.string("chat"), self.array(messages)])
        return {
            "$archiver": "NSKeyedArchiver",
            "$version": 100000,
            "$top": {"metadata": metadata, "root": root},
            "$objects": list(self.objects),
        }

    def dumps(self, participants, messages, service: str = "iMessage") -> bytes:
        return plistlib.dumps(self.tree(participants, messages, service), fmt=plistlib.FMT_BINARY)

    def write(self, path: Path, participants, messages, service: str = "iMessage") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.dumps(participants, messages, service))
        return path

    def pool(self) -> ObjectPool:
        return ObjectPool(tuple(self.objects))

    def archived_map(self, ref: UID) -> ArchivedMap:
        pool = self.pool()
        return ArchivedMap.build(resolve_uid(ref, pool), pool)


@pytest.fixture
def builder() -> ArchiveBuilder:
    return ArchiveBuilder()


@pytest.fixture
def attachments_root(tmp_path: Path) -> Path:
    root = tmp_path / "Attachments"
    root.mkdir()
    return root


@pytest.fixture
def run_context(attachments_root: Path) -> RunContext:
    resolver = AttachmentResolver(
        attachments_root=attachments_root,
        copy_target_dir=attachments_root.parent / "ExtAttachmentCopies",
        ledger=CopyLedger(),
    )
    return RunContext(attachments=resolver)
