from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Optional

from . import meta_keys as keys
from .config import LibrarySettings
from .models import ProcessingError, TrackDetails
from .observable import ObservableList
from .tagging import MetadataStore, TagWriter, read_metadata

logger = logging.getLogger(__name__)


class DirectoryTracksProvider:
    """
    Tracks of one folder (recursively) as an observable list.

    The folder is created when missing. ``last_incremental_number`` is the
    highest ``NNN.`` file-name prefix seen, or the track count when no file
    carries one.
    """

    def __init__(
        self,
        path: Path | str,
        settings: Optional[LibrarySettings] = None,
        store: Optional[MetadataStore] = None,
    ) -> None:
        self.path = Path(path).expanduser().resolve()
        self.path.mkdir(parents=True, exist_ok=True)
        self.settings = settings or LibrarySettings()
        self.store = store or TagWriter()
        self._exts = {ext.lower() for ext in self.settings.include_extensions}
        self._by_path: dict[Path, TrackDetails] = {}
        self._last_inc: Optional[int] = None
        self.tracks: ObservableList[TrackDetails] = ObservableList()

    def __repr__(self) -> str:
        return f"DirectoryTracksProvider({str(self.path)!r}, tracks={len(self.tracks)})"

    @property
    def last_incremental_number(self) -> int:
        return self._last_inc if self._last_inc is not None else len(self.tracks)

    @last_incremental_number.setter
    def last_incremental_number(self, value: int) -> None:
        self._last_inc = value

    def should_include(self, path: Path) -> bool:
        if path.suffix.lower() not in self._exts:
            return False
        rel = str(path)
        return not any(fragment and fragment in rel for fragment in self.settings.blacklisted_paths)

    def contains_path(self, path: Path | str) -> bool:
        try:
            Path(path).expanduser().resolve().relative_to(self.path)
        except ValueError:
            return False
        return True

    def iter_files(self) -> Iterator[Path]:
        for file_path in sorted(self.path.rglob("*")):
            if not file_path.is_file():
                continue
            if not self.should_include(file_path):
                continue
            yield file_path

    def load_track(self, path: Path) -> Optional[TrackDetails]:
        try:
            return read_metadata(path, self.store, self.settings.slash_performers)
        except ProcessingError as exc:
            logger.warning("Skipping %s: %s", path, exc)
            return None

    def _read_all(self) -> list[TrackDetails]:
        tracks = []
        for file_path in self.iter_files():
            track = self.load_track(file_path)
            if track is not None:
                tracks.append(track)
        return tracks

    async def scan(self) -> None:
        logger.debug("Scanning %s", self.path)
        tracks = await asyncio.to_thread(self._read_all)
        self._by_path = {track.file_path: track for track in tracks}  # type: ignore[misc]
        self._last_inc = None
        for track in tracks:
            self._note_incremental(track)
        self.tracks.reset(tracks)
        logger.info("Found %d tracks in %s", len(tracks), self.path)

    def add_track(self, track: TrackDetails) -> None:
        path = track.file_path
        if path is None:
            return
        previous = self._by_path.get(path)
        if previous is not None:
            self.tracks.remove(previous)
        self._by_path[path] = track
        self._note_incremental(track)
        self.tracks.append(track)

    def add_path(self, path: Path) -> Optional[TrackDetails]:
        if not self.should_include(path):
            return None
        track = self.load_track(path)
        if track is not None:
            self.add_track(track)
        return track

    def remove_track(self, path: Path | str) -> Optional[TrackDetails]:
        track = self._by_path.pop(Path(path), None)
        if track is None:
            return None
        number = track.get_value(keys.INCREMENTAL_NUMBER)
        if number is not None and number == self._last_inc:
            self._last_inc -= 1
        self.tracks.remove(track)
        return track

    def rename_track(self, old_path: Path | str, new_path: Path | str) -> Optional[TrackDetails]:
        track = self._by_path.pop(Path(old_path), None)
        if track is None:
            return None
        self._by_path[Path(new_path)] = track
        track.set_tag(keys.FILE_PATH, str(new_path))
        return track

    def get_track(self, path: Path | str) -> Optional[TrackDetails]:
        return self._by_path.get(Path(path))

    def _note_incremental(self, track: TrackDetails) -> None:
        number = track.get_value(keys.INCREMENTAL_NUMBER)
        if number is None:
            return
        self._last_inc = number if self._last_inc is None else max(self._last_inc, number)
