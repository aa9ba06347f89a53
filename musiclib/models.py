from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Union

from . import meta_keys as keys
from .observable import ChangeAction, CollectionChange, Event
from .tags import REGISTRY, Tag, TrackLoadingState, TrackProcessingState

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_TITLE = "Untitled"
FEATURING_PREFIXES = ("feat. ", "ft. ")

# Tag name -> derived properties whose value depends on it.
DERIVED_DEPENDENCIES: dict[str, tuple[str, ...]] = {
    keys.TITLE: ("has_title", "formed_title", "formed_track_name"),
    keys.SUBTITLE: ("formed_title", "formed_track_name"),
    keys.PERFORMERS: ("has_artists", "formed_artist_string", "formed_track_name"),
    keys.COVER: ("has_cover", "cover_uri"),
    keys.HAS_COVER: ("has_cover",),
    keys.FILE_PATH: ("file_path",),
    keys.URI: ("track_uri",),
    keys.STATE: ("state",),
    keys.LOADING_STATE: ("loading_state",),
}


class ProcessingError(Exception):
    """Raised when a track cannot be processed but the batch should keep running."""


class MetadataWriteError(OSError):
    """Raised when tags cannot be written back to the audio file."""


class TrackDetails:
    """
    Ordered metadata of one track, keyed by tag name.

    No two tags share a name and tags without a significant value are never
    stored. Structural edits publish ``collection_changed`` with a
    :class:`CollectionChange`; any tag change publishes ``property_changed``
    for the tag name and for the derived properties that depend on it.
    """

    def __init__(self, tags: Iterable[Optional[Tag]] = ()) -> None:
        self._tags: list[Tag] = []
        self.collection_changed = Event()
        self.property_changed = Event()
        for tag in tags:
            if tag is not None:
                self.add(tag)

    # -- sequence protocol -------------------------------------------------

    def __len__(self) -> int:
        return len(self._tags)

    def __iter__(self) -> Iterator[Tag]:
        return iter(list(self._tags))

    def __getitem__(self, key: Union[int, str]) -> Tag:
        if isinstance(key, str):
            index = self.index_of(key)
            if index < 0:
                raise KeyError(key)
            return self._tags[index]
        return self._tags[key]

    def __setitem__(self, index: int, tag: Tag) -> None:
        if tag is None or not tag.has_value:
            return
        position = range(len(self._tags))[index]
        existing = self.index_of(tag.name)
        if existing >= 0 and existing != position:
            raise ValueError(f"Tag {tag.name!r} already exists at position {existing}")
        old = self._tags[position]
        old.value_updated.unsubscribe(self._on_tag_updated)
        tag.value_updated.subscribe(self._on_tag_updated)
        self._tags[position] = tag
        if old.name != tag.name:
            self._notify(old.name)
        self._notify(tag.name)
        self._publish(ChangeAction.REPLACE, new_items=(tag,), old_items=(old,), new_index=position, old_index=position)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            return self.index_of(item) >= 0
        return any(tag is item for tag in self._tags)

    def __bool__(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"TrackDetails({self.formed_track_name!r}, tags={[tag.name for tag in self._tags]})"

    # -- keyed access ------------------------------------------------------

    def index_of(self, name: str) -> int:
        for index, tag in enumerate(self._tags):
            if tag.name == name:
                return index
        return -1

    def contains_key(self, name: str) -> bool:
        return self.index_of(name) >= 0

    def get(self, name: str) -> Optional[Tag]:
        index = self.index_of(name)
        return self._tags[index] if index >= 0 else None

    def get_tag(self, name: str) -> Any:
        return self[name].value

    def get_value(self, name: str, default: Any = None) -> Any:
        tag = self.get(name)
        return tag.value if tag is not None else default

    def names(self) -> list[str]:
        return [tag.name for tag in self._tags]

    # -- mutation ----------------------------------------------------------

    def add(self, tag: Optional[Tag]) -> None:
        self.insert(len(self._tags), tag)

    def insert(self, index: int, tag: Optional[Tag]) -> None:
        if tag is None or not tag.has_value:
            return
        old_index = self.index_of(tag.name)
        if old_index >= 0:
            self.remove_at(old_index)
            if old_index < index:
                index -= 1
        index = max(0, min(index, len(self._tags)))
        tag.value_updated.subscribe(self._on_tag_updated)
        self._tags.insert(index, tag)
        self._notify(tag.name)
        self._publish(ChangeAction.ADD, new_items=(tag,), new_index=index)

    def remove(self, item: Union[str, Tag]) -> bool:
        if isinstance(item, str):
            index = self.index_of(item)
        else:
            index = next((i for i, tag in enumerate(self._tags) if tag is item), -1)
        if index < 0:
            return False
        self.remove_at(index)
        return True

    def remove_at(self, index: int) -> None:
        tag = self._tags.pop(index)
        tag.value_updated.unsubscribe(self._on_tag_updated)
        self._notify(tag.name)
        self._publish(ChangeAction.REMOVE, old_items=(tag,), old_index=index)

    def clear(self) -> None:
        removed, self._tags = self._tags, []
        for tag in removed:
            tag.value_updated.unsubscribe(self._on_tag_updated)
            self._notify(tag.name)
        self._publish(ChangeAction.RESET)

    def reset(self, tags: Iterable[Tag]) -> None:
        """Replace every tag with ``tags`` (later duplicates win)."""
        self.clear()
        for tag in tags:
            self.add(tag)

    def set_tag(self, name: str, value: Any) -> None:
        tag = self.get(name)
        if tag is not None:
            # _on_tag_updated drops the tag when the new value is empty
            tag.value = value
            return
        created = REGISTRY.create(name, value)
        if created is None:
            logger.debug("Ignoring unknown tag %s", name)
            return
        self.add(created)

    def copy(self) -> "TrackDetails":
        return TrackDetails(tag.clone() for tag in self._tags)

    def persisted_tags(self) -> list[Tag]:
        return [tag for tag in self._tags if not tag.is_virtual]

    def to_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for tag in self._tags:
            tag.apply(fields)
        return fields

    # -- merge operators ---------------------------------------------------

    @staticmethod
    def replace_with(base: "TrackDetails", overlay: "TrackDetails") -> "TrackDetails":
        """All of ``base`` with ``overlay`` applied on top; overlay wins."""
        return TrackDetails([tag.clone() for tag in base] + [tag.clone() for tag in overlay])

    @staticmethod
    def union_with(base: "TrackDetails", overlay: "TrackDetails") -> "TrackDetails":
        """All of ``base`` with ``overlay`` filling the gaps; base wins."""
        return TrackDetails([tag.clone() for tag in overlay] + [tag.clone() for tag in base])

    # -- derived properties ------------------------------------------------

    @property
    def formed_artist_string(self) -> str:
        performers = self.get_value(keys.PERFORMERS)
        if not performers:
            return UNKNOWN_ARTIST
        parts: list[str] = []
        add_separator = False
        for performer in performers:
            if performer.lower().startswith(FEATURING_PREFIXES):
                add_separator = False
            if add_separator:
                parts.append(", ")
            parts.append(performer)
            add_separator = True
        return "".join(parts)

    @property
    def formed_title(self) -> str:
        title = self.get_value(keys.TITLE)
        if not title or not title.strip():
            return UNKNOWN_TITLE
        subtitle = self.get_value(keys.SUBTITLE)
        if subtitle and subtitle.strip():
            return f"{title} ({subtitle})"
        return title

    @property
    def formed_track_name(self) -> str:
        return f"{self.formed_artist_string} - {self.formed_title}"

    @property
    def has_artists(self) -> bool:
        return self.contains_key(keys.PERFORMERS)

    @property
    def has_title(self) -> bool:
        return self.contains_key(keys.TITLE)

    @property
    def has_cover(self) -> bool:
        return self.contains_key(keys.HAS_COVER) or self.contains_key(keys.COVER)

    @property
    def cover_uri(self) -> Optional[str]:
        cover = self.get_value(keys.COVER)
        return cover.uri if cover is not None else None

    @property
    def file_path(self) -> Optional[Path]:
        value = self.get_value(keys.FILE_PATH)
        return Path(value) if value else None

    @property
    def track_uri(self) -> Optional[str]:
        return self.get_value(keys.URI)

    @property
    def state(self) -> TrackProcessingState:
        return self.get_value(keys.STATE, TrackProcessingState.NONE)

    @state.setter
    def state(self, value: TrackProcessingState) -> None:
        self.set_tag(keys.STATE, value)

    @property
    def loading_state(self) -> TrackLoadingState:
        return self.get_value(keys.LOADING_STATE, TrackLoadingState.NONE)

    @loading_state.setter
    def loading_state(self, value: TrackLoadingState) -> None:
        self.set_tag(keys.LOADING_STATE, value)

    # -- notifications -----------------------------------------------------

    def _on_tag_updated(self, tag: Tag) -> None:
        if not tag.has_value:
            self.remove(tag)
            return
        self._notify(tag.name)

    def _notify(self, name: str) -> None:
        self.property_changed.emit(self, name)
        for derived in DERIVED_DEPENDENCIES.get(name, ()):
            self.property_changed.emit(self, derived)

    def _publish(self, action: ChangeAction, **kwargs: Any) -> None:
        self.collection_changed.emit(self, CollectionChange(action, **kwargs))
