from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Optional, Sequence

from .config import TaggingSettings
from .conflicts import TaggingConflict
from .models import TrackDetails
from .observable import Event, ObservableList
from .tag_service import TagService, combine_results
from .tagging import MetadataStore, save_metadata
from .tags import Tag, TrackProcessingState

logger = logging.getLogger(__name__)


class AutoTagger:
    """
    Tags a batch of tracks one after another.

    Progress counters and per-track states change in a deterministic order,
    and conflicts that need a user decision are collected in ``conflicts``.
    """

    def __init__(
        self,
        service: TagService,
        settings: Optional[TaggingSettings] = None,
        store: Optional[MetadataStore] = None,
    ) -> None:
        self.service = service
        self.settings = settings or TaggingSettings()
        self.store = store
        self.conflicts: ObservableList[TaggingConflict] = ObservableList()
        self.property_changed = Event()
        self.processed_count = 0
        self.total_count = 0
        self.is_running = False
        self.is_finished = False

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0

    async def tag_tracks(
        self,
        tracks: Sequence[TrackDetails],
        cancel: Optional[asyncio.Event] = None,
    ) -> Counter[TrackProcessingState]:
        tracks = list(tracks)
        self._set("is_finished", False)
        self._set("processed_count", 0)
        self._set("total_count", len(tracks))
        self._set("is_running", True)
        states: Counter[TrackProcessingState] = Counter()
        for track in tracks:
            track.state = TrackProcessingState.PROCESSING
        try:
            for position, track in enumerate(tracks):
                if cancel is not None and cancel.is_set():
                    logger.info("Tagging cancelled, %d tracks left untouched", len(tracks) - position)
                    for remaining in tracks[position:]:
                        remaining.state = TrackProcessingState.NONE
                    break
                state = await self._tag_one(track)
                states[state] += 1
                self._set("processed_count", self.processed_count + 1)
        finally:
            self._set("is_running", False)
            self._set("is_finished", True)
        logger.info(
            "Tagged %d/%d tracks: %s",
            self.processed_count,
            self.total_count,
            ", ".join(f"{state.name.lower()}={count}" for state, count in sorted(states.items())) or "nothing",
        )
        return states

    async def _tag_one(self, track: TrackDetails) -> TrackProcessingState:
        try:
            result = await self.service.tag(track)
            if result.is_empty:
                track.state = TrackProcessingState.TAGS_NOT_FOUND
                return track.state
            state = TrackProcessingState.CONFLICTING if len(result.conflicts) else TrackProcessingState.SUCCESS
            combined = combine_results(self.settings.merge_policy, track, result)
            combined.state = state
            self._persist(combined)
            track.reset(tag.clone() for tag in combined)
        except Exception:
            logger.exception("Tagging failed for %s", track.formed_track_name)
            track.state = TrackProcessingState.FAULT
            return track.state
        for conflict in result.conflicts:
            self.conflicts.append(conflict)
        self.property_changed.emit(self, "has_conflicts")
        return state

    def resolve(self, conflict: TaggingConflict, index: Optional[int] = None, value: Any = None) -> Tag:
        """
        Commit a candidate (``index``) or a manual ``value`` for ``conflict``.

        The record is saved first when auto-save is on; a failed save raises
        and leaves both the record and the conflict unchanged.
        """
        persist = self._persist if self._saves else None
        if index is not None:
            tag = conflict.resolve(index, persist)
        else:
            tag = conflict.resolve_with(value, persist)
        self._settle(conflict)
        return tag

    def reject(self, conflict: TaggingConflict) -> None:
        conflict.reject()
        self._settle(conflict)

    @property
    def _saves(self) -> bool:
        return self.settings.auto_save and self.store is not None

    def _persist(self, details: TrackDetails) -> None:
        if self._saves:
            save_metadata(details, self.store)  # type: ignore[arg-type]

    def _settle(self, conflict: TaggingConflict) -> None:
        # rejected and resolved conflicts both count as settled
        if conflict in self.conflicts:
            self.conflicts.remove(conflict)
        if not any(other.track is conflict.track for other in self.conflicts):
            conflict.track.state = TrackProcessingState.SUCCESS
        self.property_changed.emit(self, "has_conflicts")

    def _set(self, name: str, value: Any) -> None:
        if getattr(self, name) == value:
            return
        setattr(self, name, value)
        self.property_changed.emit(self, name)
