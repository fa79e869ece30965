"""Decode one archive file into an ordered list of Messages."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from .attachments import AttachmentResolver
from .copy_ledger import CopyLedger
from .errors import FormatError
from .keyed_archive import (
    ArchivedMap,
    KeyedArchive,
    ObjectPool,
    Value,
    deref,
    is_archived_map,
    load_archive,
    require,
    require_record,
    resolve_array,
    resolve_string,
)
from .models import ATTACHMENT_MARKER, Attachment, Message, Participant
from .participants import ParticipantResolver, SelfMatchPolicy
from .utils import from_reference_seconds

logger = logging.getLogger(__name__)

SERVICE_INDEX = 0
MESSAGES_INDEX = 2


class ThreadIdentityPolicy(str, Enum):
    """Which participant a message is filed under for thread grouping."""

    # Use Subject when the sender is an email relay, else the sender.
    RELAY_SUBJECT = "relay_subject"
    SENDER = "sender"


@dataclass
class RunContext:
    """State shared by every file of one run."""

    attachments: AttachmentResolver
    self_match: SelfMatchPolicy = SelfMatchPolicy.EXACT
    thread_identity: ThreadIdentityPolicy = ThreadIdentityPolicy.RELAY_SUBJECT
    relay_prefix: str = "e:"
    handle_names: Mapping[str, str] = field(default_factory=dict)
    timezone: str = "UTC"

    @classmethod
    def from_settings(cls, settings) -> "RunContext":
        resolver = AttachmentResolver(
            attachments_root=settings.attachments_root,
            external_library=settings.external_attachment_library,
            copy_target_dir=settings.copy_target_dir,
            ledger=CopyLedger(settings.copy_ledger_db),
        )
        return cls(
            attachments=resolver,
            self_match=SelfMatchPolicy(settings.self_match_policy),
            thread_identity=ThreadIdentityPolicy(settings.thread_identity_policy),
            relay_prefix=settings.relay_identity_prefix,
            handle_names=settings.load_handle_names(),
            timezone=settings.archive_timezone,
        )


def thread_identity(
    sender: Participant,
    subject: Optional[Participant],
    policy: ThreadIdentityPolicy,
    relay_prefix: str,
) -> Participant:
    if (
        policy is ThreadIdentityPolicy.RELAY_SUBJECT
        and subject is not None
        and relay_prefix
        and sender.identity.startswith(relay_prefix)
    ):
        return subject
    return sender


class MessageExtractor:
    """Walk the message list of one decoded archive."""

    def __init__(self, archive: KeyedArchive, run: RunContext) -> None:
        self.archive = archive
        self.pool: ObjectPool = archive.pool
        self.run = run
        self.source_file = archive.path or Path("<memory>")
        self.participants: Optional[ParticipantResolver] = None
        self.service = ""

    @classmethod
    def from_file(cls, path: Path, run: RunContext) -> "MessageExtractor":
        return cls(load_archive(path), run)

    def extract(self) -> list[Message]:
        metadata = require(self.archive.top_ref("metadata"), self.pool, "$top.metadata")
        root = require(self.archive.top_ref("root"), self.pool, "$top.root")

        self.participants = ParticipantResolver.from_metadata(
            metadata,
            self.pool,
            policy=self.run.self_match,
            fallback_names=self.run.handle_names,
        )

        root_items = resolve_array(root, self.pool, "root record")
        if len(root_items) <= MESSAGES_INDEX:
            raise FormatError(f"root record has only {len(root_items)} elements")
        service = root_items[SERVICE_INDEX]
        self.service = resolve_string(service, self.pool) or ""
        message_refs = resolve_array(root_items[MESSAGES_INDEX], self.pool, "message list")

        messages = []
        for index, raw in enumerate(message_refs):
            messages.append(self.extract_message(raw, index))
        logger.debug("%s: %s messages via %s", self.source_file, len(messages), self.service)
        return messages

    def extract_message(self, raw: Optional[Value], index: int) -> Message:
        if self.participants is None:
            raise RuntimeError("extract() must set up participants before messages are read")
        record = require_record(raw, self.pool, f"message {index}")

        sender = self.participants.resolve(record.get("Sender"))
        subject = None
        if deref(record.get("Subject"), self.pool) is not None:
            subject = self.participants.resolve(record.get("Subject"))
        who = thread_identity(
            sender, subject, self.run.thread_identity, self.run.relay_prefix
        )

        guid = resolve_string(record.get("GUID"), self.pool)
        if guid is None:
            raise FormatError(f"message {index} has no GUID")

        text, attachments = self.message_content(record, index)
        return Message(
            source_file=self.source_file,
            sender=sender,
            who=who,
            guid=guid,
            timestamp=self.message_time(record, index),
            text=text,
            service=self.service,
            is_first_in_file=index == 0,
            thread_subject=subject,
            attachments=tuple(attachments),
        )

    def message_time(self, record: dict, index: int):
        time_record = require(record.get("Time"), self.pool, f"message {index} Time")
        if isinstance(time_record, dict):
            seconds = deref(time_record.get("NS.time"), self.pool)
        else:
            seconds = time_record
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            raise FormatError(f"message {index} Time has no numeric NS.time")
        try:
            if not math.isfinite(seconds):
                raise FormatError(f"message {index} Time {seconds!r} is not finite")
            return from_reference_seconds(seconds)
        except (OverflowError, ValueError) as exc:
            raise FormatError(f"message {index} Time {seconds!r} is out of range") from exc

    def message_content(self, record: dict, index: int) -> tuple[str, list[Attachment]]:
        rich = deref(record.get("MessageText"), self.pool)
        if rich is None:
            text = resolve_string(record.get("OriginalMessage"), self.pool) or ""
            attachments: list[Attachment] = []
        else:
            if not isinstance(rich, dict):
                raise FormatError(f"message {index} MessageText is not a record")
            attachments = self.attachments_for(rich.get("NSAttributes"))
            text = resolve_string(rich.get("NSString"), self.pool)
            if text is None:
                raise FormatError(f"message {index} MessageText has no NSString")

        markers = text.count(ATTACHMENT_MARKER)
        if markers != len(attachments):
            raise FormatError(
                f"message {index} has {markers} attachment markers "
                f"but {len(attachments)} attachments"
            )
        return text, attachments

    def attachments_for(self, attributes: Optional[Value]) -> list[Attachment]:
        """Resolve the attribute runs of a rich-text record, in order."""
        resolved = deref(attributes, self.pool)
        if resolved is None:
            return []
        if is_archived_map(resolved):
            descriptors = [resolved]
        else:
            descriptors = resolve_array(resolved, self.pool, "NSAttributes")

        attachments = []
        for descriptor in descriptors:
            if not is_archived_map(descriptor):
                continue
            attachment = self.run.attachments.resolve(
                ArchivedMap.build(descriptor, self.pool), self.pool
            )
            if attachment is not None:
                attachments.append(attachment)
        return attachments


def extract_file(path: Path, run: RunContext) -> list[Message]:
    return MessageExtractor.from_file(path, run).extract()
