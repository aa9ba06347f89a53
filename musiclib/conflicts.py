from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from .models import TrackDetails
from .observable import Event, ObservableList
from .tags import REGISTRY, Tag, tags_equal

logger = logging.getLogger(__name__)

PersistCallback = Callable[[TrackDetails], None]


class ConflictState(enum.Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class ConflictStateError(RuntimeError):
    """Raised when a conflict that already reached a terminal state is resolved again."""


class TaggingConflict:
    """
    Candidate values found for one tag of one track.

    Candidates are deduplicated with :func:`tags_equal`. A conflict is either
    resolved (one value committed into ``track``) or rejected; both states
    are terminal.
    """

    def __init__(self, track: TrackDetails, tag_name: str, candidates: Iterable[Tag] = ()) -> None:
        self.track = track
        self.tag_name = tag_name
        self.candidates: ObservableList[Tag] = ObservableList()
        self.state = ConflictState.UNRESOLVED
        self.resolved_tag: Optional[Tag] = None
        self.state_changed = Event()
        for candidate in candidates:
            self.add_candidate(candidate)

    def __len__(self) -> int:
        return len(self.candidates)

    def __repr__(self) -> str:
        return f"TaggingConflict({self.tag_name!r}, candidates={len(self.candidates)}, state={self.state.value})"

    @property
    def is_terminal(self) -> bool:
        return self.state is not ConflictState.UNRESOLVED

    def add_candidate(self, tag: Optional[Tag]) -> bool:
        if tag is None or not tag.has_value:
            return False
        if tag.name != self.tag_name:
            raise ValueError(f"Candidate {tag.name!r} does not belong to conflict {self.tag_name!r}")
        if any(tags_equal(existing, tag) for existing in self.candidates):
            return False
        self.candidates.append(tag)
        return True

    def resolve(self, index: int, persist: Optional[PersistCallback] = None) -> Tag:
        """Commit candidate ``index`` into the track."""
        self._ensure_unresolved()
        return self._commit(self.candidates[index].clone(), persist)

    def resolve_with(self, value: Any, persist: Optional[PersistCallback] = None) -> Tag:
        """Commit a manually supplied value instead of one of the candidates."""
        self._ensure_unresolved()
        tag = REGISTRY.create(self.tag_name, value)
        if tag is None or not tag.has_value:
            raise ValueError(f"{value!r} is not a usable value for {self.tag_name!r}")
        return self._commit(tag, persist)

    def reject(self) -> None:
        self._ensure_unresolved()
        self._set_state(ConflictState.REJECTED)

    def _commit(self, tag: Tag, persist: Optional[PersistCallback]) -> Tag:
        if persist is not None:
            # persist first so a failed write leaves the record untouched
            candidate = self.track.copy()
            candidate.add(tag.clone())
            persist(candidate)
        self.track.add(tag)
        self.resolved_tag = tag
        self._set_state(ConflictState.RESOLVED)
        return tag

    def _ensure_unresolved(self) -> None:
        if self.is_terminal:
            raise ConflictStateError(f"Conflict for {self.tag_name!r} is already {self.state.value}")

    def _set_state(self, state: ConflictState) -> None:
        self.state = state
        logger.debug("Conflict %s for %s is now %s", self.tag_name, self.track.formed_track_name, state.value)
        self.state_changed.emit(self)


class ConflictSet(ObservableList[TaggingConflict]):
    """Conflicts of one tagging pass, ordered and keyed by tag name."""

    def get(self, tag_name: str) -> Optional[TaggingConflict]:
        for conflict in self._items:
            if conflict.tag_name == tag_name:
                return conflict
        return None

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            return self.get(item) is not None
        return any(conflict is item for conflict in self._items)

    def names(self) -> list[str]:
        return [conflict.tag_name for conflict in self._items]

    def add_candidate(self, track: TrackDetails, tag: Optional[Tag]) -> bool:
        """Locate or create the conflict for ``tag.name`` and append ``tag``."""
        if tag is None or not tag.has_value:
            return False
        conflict = self.get(tag.name)
        if conflict is None:
            conflict = TaggingConflict(track, tag.name)
            self.append(conflict)
        return conflict.add_candidate(tag)

    def contribute(self, track: TrackDetails, details: Iterable[Tag]) -> int:
        added = 0
        for tag in details:
            if self.add_candidate(track, tag):
                added += 1
        return added

    def auto_resolve(self) -> TrackDetails:
        """Move every single-candidate conflict into a new record and drop it from the set."""
        result = TrackDetails()
        index = 0
        while index < len(self._items):
            conflict = self._items[index]
            if len(conflict.candidates) == 1:
                result.add(conflict.candidates[0].clone())
                del self[index]
                continue
            index += 1
        return result


@dataclass(slots=True)
class TaggingResult:
    details: TrackDetails
    conflicts: ConflictSet = field(default_factory=ConflictSet)

    @property
    def is_empty(self) -> bool:
        return len(self.details) == 0 and len(self.conflicts) == 0
