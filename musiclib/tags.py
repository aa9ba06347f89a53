"""
Typed tag values.

A tag couples a name with a typed value and publishes ``value_updated`` when
the value is reassigned. Persisted tags round-trip through the file store's
``{name: value}`` mapping; virtual tags live in memory only (file path,
processing state, counters). Prototypes for every known name are kept in an
explicit registry so records can create tags by name.
"""

from __future__ import annotations

import copy
import enum
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from . import meta_keys as keys
from .observable import Event

StringList = tuple  # tuple[str, ...]


class TagKind(enum.Enum):
    PERSISTED = "persisted"
    VIRTUAL = "virtual"


@dataclass(frozen=True)
class Picture:
    data: bytes = b""
    mime: str = "image/jpeg"
    uri: Optional[str] = None


class TrackProcessingState(enum.IntEnum):
    NONE = 0
    PROCESSING = 1
    SUCCESS = 2
    TAGS_NOT_FOUND = 3
    CONFLICTING = 4
    FAULT = 5


class TrackLoadingState(enum.IntEnum):
    NONE = 0
    LOADING = 1
    LOADED = 2
    FAILED = 3


def has_value(value: Any) -> bool:
    """False for None, zero/default scalars, blank strings and empty collections."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, Picture):
        return bool(value.data) or bool(value.uri)
    if isinstance(value, (tuple, list, bytes, set, frozenset, dict)):
        return len(value) > 0
    return True


def _parse_int(value: object) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        cleaned = value.strip()
        if "/" in cleaned:
            cleaned = cleaned.split("/", 1)[0].strip()
        if cleaned.isdigit():
            return int(cleaned)
        if not cleaned:
            return None
    raise ValueError(f"{value!r} is not an integer")


def _coerce(value_type: type, value: Any) -> Any:
    if value is None:
        return None
    if value_type is StringList:
        if isinstance(value, str):
            return (value,) if value.strip() else ()
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value if str(item).strip())
        raise ValueError(f"{value!r} is not a list of strings")
    if value_type is str:
        return value if isinstance(value, str) else str(value)
    if issubclass(value_type, enum.Enum):
        try:
            return value_type(value)
        except ValueError as exc:
            raise ValueError(f"{value!r} is not a valid {value_type.__name__}") from exc
    if value_type is bool:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes"}
        return bool(value)
    if value_type is int:
        return _parse_int(value)
    if isinstance(value, value_type):
        return value
    raise ValueError(f"{value!r} is not a {value_type.__name__}")


class Tag:
    kind = TagKind.PERSISTED

    def __init__(self, name: str, value_type: type, value: Any = None) -> None:
        self.name = name
        self.value_type = value_type
        self._value = _coerce(value_type, value)
        self.value_updated = Event()

    @property
    def value(self) -> Any:
        return self._value

    @value.setter
    def value(self, value: Any) -> None:
        coerced = _coerce(self.value_type, value)
        if coerced == self._value and type(coerced) is type(self._value):
            return
        self._value = coerced
        self.value_updated.emit(self)

    @property
    def has_value(self) -> bool:
        return has_value(self._value)

    @property
    def is_virtual(self) -> bool:
        return self.kind is TagKind.VIRTUAL

    def with_value(self, value: Any) -> "Tag":
        """Return a detached copy carrying ``value``; subscribers are not copied."""
        clone = copy.copy(self)
        clone.value_updated = Event()
        clone._value = _coerce(self.value_type, value)
        return clone

    def clone(self) -> "Tag":
        return self.with_value(self._value)

    def apply(self, fields: MutableMapping[str, Any]) -> None:
        fields[self.name] = self._value

    def read_from(self, fields: Mapping[str, Any]) -> None:
        self.value = fields.get(self.name)

    def display(self) -> str:
        if isinstance(self._value, tuple):
            return ", ".join(self._value)
        if isinstance(self._value, Picture):
            return self._value.uri or f"<{len(self._value.data)} bytes {self._value.mime}>"
        return "" if self._value is None else str(self._value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, value={self._value!r})"


class VirtualTag(Tag):
    kind = TagKind.VIRTUAL

    def apply(self, fields: MutableMapping[str, Any]) -> None:
        return None

    def read_from(self, fields: Mapping[str, Any]) -> None:
        return None


class CoverTag(Tag):
    def __init__(self, value: Optional[Picture] = None) -> None:
        super().__init__(keys.COVER, Picture, value)

    @property
    def cover_uri(self) -> Optional[str]:
        return self._value.uri if self._value else None

    @classmethod
    def from_bytes(cls, data: bytes, mime: str = "image/jpeg", uri: Optional[str] = None) -> "CoverTag":
        return cls(Picture(data=data, mime=mime, uri=uri))


class TagRegistry:
    """Name -> prototype lookup, filled once at import time."""

    def __init__(self) -> None:
        self._prototypes: dict[str, Tag] = {}

    def register(self, prototype: Tag) -> Tag:
        if prototype.name in self._prototypes:
            raise ValueError(f"Tag {prototype.name!r} is already registered")
        self._prototypes[prototype.name] = prototype
        return prototype

    def get(self, name: str) -> Optional[Tag]:
        return self._prototypes.get(name)

    def create(self, name: str, value: Any) -> Optional[Tag]:
        prototype = self._prototypes.get(name)
        if prototype is None:
            return None
        return prototype.with_value(value)

    def persisted(self, include_cover: bool = True) -> list[Tag]:
        return [
            tag.clone()
            for tag in self._prototypes.values()
            if not tag.is_virtual and (include_cover or tag.name != keys.COVER)
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._prototypes

    def __iter__(self) -> Iterator[str]:
        return iter(self._prototypes)


REGISTRY = TagRegistry()

for _name, _type in (
    (keys.ALBUM, str),
    (keys.ALBUM_ARTISTS, StringList),
    (keys.COMMENT, str),
    (keys.DESCRIPTION, str),
    (keys.DISC, int),
    (keys.DISC_COUNT, int),
    (keys.GENRES, StringList),
    (keys.LYRICS, str),
    (keys.PERFORMERS, StringList),
    (keys.PERFORMERS_ROLE, StringList),
    (keys.SUBTITLE, str),
    (keys.TITLE, str),
    (keys.TRACK, int),
    (keys.TRACK_COUNT, int),
    (keys.YEAR, int),
):
    REGISTRY.register(Tag(_name, _type))
REGISTRY.register(CoverTag())

for _name, _type in (
    (keys.URI, str),
    (keys.FILE_PATH, str),
    (keys.STATE, TrackProcessingState),
    (keys.LOADING_STATE, TrackLoadingState),
    (keys.INCREMENTAL_NUMBER, int),
    (keys.HAS_COVER, bool),
    (keys.LISTENERS_COUNT, int),
):
    REGISTRY.register(VirtualTag(_name, _type))


def make_tag(name: str, value: Any) -> Optional[Tag]:
    """Create a tag for a registered name; None for unknown names."""
    return REGISTRY.create(name, value)


def _compare_values(left: Any, right: Any) -> int:
    if left is None or right is None:
        return (left is not None) - (right is not None)
    if isinstance(left, Picture) and isinstance(right, Picture):
        if left.uri is not None or right.uri is not None:
            return _compare_values((left.uri or "").casefold(), (right.uri or "").casefold())
        return 0 if left.data == right.data else (1 if len(left.data) >= len(right.data) else -1)
    if isinstance(left, str) and isinstance(right, str):
        a, b = left.casefold(), right.casefold()
        return (a > b) - (a < b)
    if isinstance(left, tuple) and isinstance(right, tuple):
        if len(left) != len(right):
            return 1 if len(left) > len(right) else -1
        for a, b in zip(left, right):
            result = _compare_values(a, b)
            if result:
                return result
        return 0
    try:
        return (left > right) - (left < right)
    except TypeError as exc:
        raise ValueError(f"Tags with values {left!r} and {right!r} cannot be compared") from exc


def compare_tags(left: Optional[Tag], right: Optional[Tag]) -> int:
    """Order tags by name, then by value (case-insensitive for strings)."""
    if left is None or right is None:
        return (left is not None) - (right is not None)
    if left.name != right.name:
        return (left.name > right.name) - (left.name < right.name)
    return _compare_values(left.value, right.value)


def tags_equal(left: Optional[Tag], right: Optional[Tag]) -> bool:
    return compare_tags(left, right) == 0

