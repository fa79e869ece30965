"""Reading the keyed-archive object graph that .ichat files are stored in.

An archive is a binary property list whose ``$objects`` entry is a flat pool
of values. Records point at each other with ``plistlib.UID`` indices into
that pool, and dictionary-shaped records keep their keys and values in two
parallel ``NS.keys`` / ``NS.objects`` arrays of such indices.
"""

from __future__ import annotations

import plistlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence, Union
from xml.parsers.expat import ExpatError

from .errors import FormatError

BackReference = plistlib.UID
Value = Union[str, int, float, bool, bytes, list, dict, plistlib.UID]

NULL_SENTINEL = "$null"


@dataclass(frozen=True)
class ObjectPool:
    """The decoded ``$objects`` list of one archive file."""

    objects: tuple[Value, ...]

    def __len__(self) -> int:
        return len(self.objects)

    def __getitem__(self, index: int) -> Value:
        return self.objects[index]


@dataclass(frozen=True)
class KeyedArchive:
    """Top-level view of a decoded archive: its pool and named entry points."""

    path: Optional[Path]
    pool: ObjectPool
    top: dict[str, Value]

    def top_ref(self, name: str) -> BackReference:
        ref = self.top.get(name)
        if not isinstance(ref, BackReference):
            raise FormatError(f"$top.{name} is missing or not a reference")
        return ref


def load_archive(path: Path) -> KeyedArchive:
    """Decode an archive file from disk."""
    with path.open("rb") as handle:
        try:
            tree = plistlib.load(handle)
        except (plistlib.InvalidFileException, ExpatError, ValueError, OverflowError) as exc:
            raise FormatError(f"{path}: not a readable property list ({exc})") from exc
    return archive_from_tree(tree, path=path)


def archive_from_tree(tree: Any, path: Optional[Path] = None) -> KeyedArchive:
    """Wrap an already decoded property-list tree."""
    if not isinstance(tree, dict):
        raise FormatError("archive root is not a dictionary")
    objects = tree.get("$objects")
    top = tree.get("$top")
    if not isinstance(objects, list):
        raise FormatError("archive has no $objects list")
    if not isinstance(top, dict):
        raise FormatError("archive has no $top dictionary")
    return KeyedArchive(path=path, pool=ObjectPool(tuple(objects)), top=top)


def resolve_uid(ref: BackReference, pool: ObjectPool) -> Optional[Value]:
    """Return the pool element ``ref`` points at, or None when out of range."""
    index = ref.data
    if index < 0 or index >= len(pool):
        return None
    return pool[index]


def is_null(value: Optional[Value]) -> bool:
    return value is None or value == NULL_SENTINEL


def deref(value: Optional[Value], pool: ObjectPool) -> Optional[Value]:
    """Follow ``value`` if it is a reference; map the $null sentinel to None."""
    if isinstance(value, BackReference):
        value = resolve_uid(value, pool)
    if is_null(value):
        return None
    return value


def require(value: Optional[Value], pool: ObjectPool, what: str) -> Value:
    """Like deref, but a missing or dangling value is a FormatError."""
    resolved = deref(value, pool)
    if resolved is None:
        raise FormatError(f"{what} is missing or points outside the object pool")
    return resolved


def require_record(value: Optional[Value], pool: ObjectPool, what: str) -> dict:
    record = require(value, pool, what)
    if not isinstance(record, dict):
        raise FormatError(f"{what} is a {type(record).__name__}, expected a record")
    return record


def class_name(record: dict, pool: ObjectPool) -> Optional[str]:
    """Follow the ``$class`` -> ``$classname`` chain of a record."""
    klass = deref(record.get("$class"), pool)
    if not isinstance(klass, dict):
        return None
    name = deref(klass.get("$classname"), pool)
    return name if isinstance(name, str) else None


def resolve_string(value: Optional[Value], pool: ObjectPool) -> Optional[str]:
    """Return a string field, unwrapping one ``NS.string`` record if needed."""
    resolved = deref(value, pool)
    if isinstance(resolved, str):
        return resolved
    if isinstance(resolved, dict) and "NS.string" in resolved:
        inner = deref(resolved["NS.string"], pool)
        if isinstance(inner, str):
            return inner
    return None


def resolve_array(value: Optional[Value], pool: ObjectPool, what: str) -> list[Value]:
    """Resolve an array record (``NS.objects``) into its element values.

    Elements that are $null stay in the list as None so positions survive.
    """
    record = require(value, pool, what)
    if isinstance(record, list):
        items: Sequence[Value] = record
    elif isinstance(record, dict) and isinstance(record.get("NS.objects"), list):
        items = record["NS.objects"]
    else:
        kind = class_name(record, pool) if isinstance(record, dict) else type(record).__name__
        raise FormatError(f"{what} ({kind}) is not an array record")
    resolved = []
    for position, item in enumerate(items):
        if isinstance(item, BackReference) and resolve_uid(item, pool) is None:
            raise FormatError(f"{what}[{position}] points outside the object pool")
        resolved.append(deref(item, pool))
    return resolved


def is_archived_map(record: Any) -> bool:
    return isinstance(record, dict) and "NS.keys" in record and "NS.objects" in record


class ArchivedMap:
    """Dictionary view over a record that stores keys and values side by side."""

    def __init__(self, items: list[tuple[Value, Optional[Value]]]) -> None:
        self._items = items

    @classmethod
    def build(cls, record: Any, pool: ObjectPool) -> "ArchivedMap":
        if not isinstance(record, dict):
            raise FormatError("archived map record is not a dictionary")
        keys = record.get("NS.keys")
        values = record.get("NS.objects")
        if not isinstance(keys, list) or not isinstance(values, list):
            raise FormatError("archived map lacks NS.keys or NS.objects")
        if len(keys) != len(values):
            raise FormatError(
                f"archived map has {len(keys)} keys but {len(values)} values"
            )
        items = []
        for key_ref, value_ref in zip(keys, values):
            key = require(key_ref, pool, "archived map key")
            if isinstance(value_ref, BackReference) and resolve_uid(value_ref, pool) is None:
                raise FormatError(f"archived map value for {key!r} points outside the pool")
            items.append((key, deref(value_ref, pool)))
        return cls(items)

    def get(self, key_name: str) -> Optional[Value]:
        for key, value in self._items:
            if key == key_name:
                return value
        return None

    def __contains__(self, key_name: object) -> bool:
        return any(key == key_name for key, _ in self._items)

    def __iter__(self) -> Iterator[Value]:
        return (key for key, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> list[tuple[Value, Optional[Value]]]:
        return list(self._items)
