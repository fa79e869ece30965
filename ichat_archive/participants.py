"""Turn presentity records into Participants, one cache per archive file."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Mapping, Optional

from .errors import FormatError
from .keyed_archive import (
    BackReference,
    ObjectPool,
    Value,
    require_record,
    resolve_array,
    resolve_string,
)
from .models import Participant
from .utils import strip_identity

logger = logging.getLogger(__name__)

# Positions inside the metadata record's NS.objects list. The format gives no
# names for these, so the slots are fixed.
PARTICIPANT_NAMES_SLOT = 1
PARTICIPANT_IDS_SLOT = 2

IDENTITY_FIELD = "ID"


class SelfMatchPolicy(str, Enum):
    """How a participant identity is compared against the file's self id."""

    EXACT = "exact"
    PREFIX = "prefix"

    def matches(self, identity: str, self_id: Optional[str]) -> bool:
        if not self_id:
            return False
        if self is SelfMatchPolicy.PREFIX:
            return identity.startswith(self_id)
        return identity == self_id


def build_identity_table(
    metadata: Value, pool: ObjectPool
) -> tuple[dict[str, str], Optional[str]]:
    """Read the parallel name/identity lists out of the metadata record.

    Returns the identity -> name table and the first identity, which is the
    archive owner.
    """
    record = require_record(metadata, pool, "metadata record")
    slots = record.get("NS.objects")
    if not isinstance(slots, list):
        raise FormatError("metadata record has no NS.objects list")
    needed = max(PARTICIPANT_NAMES_SLOT, PARTICIPANT_IDS_SLOT)
    if len(slots) <= needed:
        raise FormatError(
            f"metadata record has {len(slots)} slots, participant lists need {needed + 1}"
        )
    names = resolve_array(slots[PARTICIPANT_NAMES_SLOT], pool, "participant names")
    identities = resolve_array(slots[PARTICIPANT_IDS_SLOT], pool, "participant identities")
    if len(names) != len(identities):
        logger.debug(
            "Participant lists differ in length (%s names, %s identities)",
            len(names),
            len(identities),
        )

    table: dict[str, str] = {}
    self_id: Optional[str] = None
    for position, raw_identity in enumerate(identities):
        identity = resolve_string(raw_identity, pool)
        if identity is None:
            continue
        identity = strip_identity(identity)
        if self_id is None:
            self_id = identity
        name = resolve_string(names[position], pool) if position < len(names) else None
        if name and identity not in table:
            table[identity] = name
    return table, self_id


class ParticipantResolver:
    """Resolve Sender/Subject references for a single archive file."""

    def __init__(
        self,
        pool: ObjectPool,
        names: Mapping[str, str],
        self_id: Optional[str],
        policy: SelfMatchPolicy = SelfMatchPolicy.EXACT,
        fallback_names: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.pool = pool
        self.names = dict(names)
        self.self_id = self_id
        self.policy = policy
        self.fallback_names = dict(fallback_names or {})
        self._cache: dict[str, Participant] = {}

    @classmethod
    def from_metadata(
        cls,
        metadata: Value,
        pool: ObjectPool,
        policy: SelfMatchPolicy = SelfMatchPolicy.EXACT,
        fallback_names: Optional[Mapping[str, str]] = None,
    ) -> "ParticipantResolver":
        names, self_id = build_identity_table(metadata, pool)
        logger.debug("File owner %s, %s named participants", self_id, len(names))
        return cls(pool, names, self_id, policy=policy, fallback_names=fallback_names)

    def identity_of(self, ref: Value) -> str:
        record = require_record(ref, self.pool, "presentity")
        identity = resolve_string(record.get(IDENTITY_FIELD), self.pool)
        if identity is None:
            raise FormatError("presentity record has no ID string")
        return strip_identity(identity)

    def resolve(self, ref: BackReference) -> Participant:
        identity = self.identity_of(ref)
        cached = self._cache.get(identity)
        if cached is not None:
            return cached
        display_name = (
            self.names.get(identity) or self.fallback_names.get(identity) or identity
        )
        participant = Participant(
            identity=identity,
            display_name=display_name,
            is_self=self.policy.matches(identity, self.self_id),
        )
        self._cache[identity] = participant
        return participant

    def __len__(self) -> int:
        return len(self._cache)
