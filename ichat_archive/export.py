"""Write year buckets as JSON files for the page renderer."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

from .models import Attachment, Message, Participant
from .utils import ensure_utc

logger = logging.getLogger(__name__)


def _participant(participant: Participant | None) -> Dict[str, Any] | None:
    if participant is None:
        return None
    return {
        "identity": participant.identity,
        "display_name": participant.display_name,
        "is_self": participant.is_self,
    }


def _attachment(attachment: Attachment) -> Dict[str, Any]:
    return {
        "file_name": attachment.declared_file_name,
        "path": str(attachment.resolved_path) if attachment.resolved_path else None,
    }


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "source_file": str(message.source_file),
        "guid": message.guid,
        "timestamp": ensure_utc(message.timestamp).isoformat(),
        "service": message.service,
        "is_first_in_file": message.is_first_in_file,
        "sender": _participant(message.sender),
        "who": _participant(message.who),
        "thread_subject": _participant(message.thread_subject),
        "text": message.text,
        "attachments": [_attachment(item) for item in message.attachments],
    }


def write_year_files(buckets: Dict[int, list[Message]], output_dir: Path) -> list[Path]:
    """Write one <year>.json per bucket and return the written paths."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for year in sorted(buckets):
        path = output_dir / f"{year}.json"
        payload = {
            "year": year,
            "messages": [message_to_dict(message) for message in buckets[year]],
        }
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("Wrote %s messages to %s", len(buckets[year]), path)
        written.append(path)
    return written
