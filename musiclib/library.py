from __future__ import annotations

import asyncio
import logging
from collections import Counter
from pathlib import Path
from typing import Optional

from watchdog.observers import Observer

from . import meta_keys as keys
from .config import LibrarySettings
from .fs_utils import fit_destination_path, path_exists, safe_filename, safe_rename
from .models import TrackDetails
from .observable import ChangeAction, CollectionChange, ObservableList
from .projection import multi_project, project
from .scanner import DirectoryTracksProvider
from .tagging import MetadataStore, TagWriter
from .watchdog_handler import WatchHandler

logger = logging.getLogger(__name__)


def _same_folder(provider: DirectoryTracksProvider, path: Path | str) -> bool:
    return provider.path == Path(path).expanduser().resolve()


class MediaLibrary:
    """
    All tracks of the tracked folders plus the unsorted folder.

    ``all_tracks`` follows ``tracked_paths`` live: adding or removing a path
    adds or removes that folder's tracks. Display names of every known track
    are indexed case-insensitively for :meth:`contains_track`.
    """

    def __init__(self, settings: Optional[LibrarySettings] = None, store: Optional[MetadataStore] = None) -> None:
        self.settings = settings or LibrarySettings()
        self.store = store or TagWriter()
        self.unsorted = DirectoryTracksProvider(self.settings.unsorted_path, self.settings, self.store)
        self.tracked_paths: ObservableList[Path] = ObservableList(self.settings.tracked_paths)
        self.providers = project(self.tracked_paths, self._make_provider, back_map=_same_folder)
        self._track_lists = project(
            self.providers,
            lambda provider: provider.tracks,
            back_map=lambda tracks, provider: tracks is provider.tracks,
        )
        self.all_tracks = multi_project(self._track_lists, lambda track: track)
        self._names: Counter[str] = Counter()
        self._indexed: dict[int, tuple[TrackDetails, str]] = {}
        self._observer: Optional[Observer] = None
        self.all_tracks.collection_changed.subscribe(self._on_tracks_changed)
        self.unsorted.tracks.collection_changed.subscribe(self._on_tracks_changed)
        self._rebuild_index()

    def _make_provider(self, path: Path) -> DirectoryTracksProvider:
        return DirectoryTracksProvider(path, self.settings, self.store)

    # -- queries -----------------------------------------------------------

    def contains_track(self, track_name: str) -> bool:
        return self._names[track_name.casefold()] > 0

    def provider_for(self, path: Path | str) -> Optional[DirectoryTracksProvider]:
        if self.unsorted.contains_path(path):
            return self.unsorted
        for provider in self.providers:
            if provider.contains_path(path):
                return provider
        return None

    # -- tracked folders ---------------------------------------------------

    def add_tracked_path(self, path: Path | str) -> None:
        resolved = Path(path).expanduser().resolve()
        if any(_same_folder(provider, resolved) for provider in self.providers):
            return
        self.tracked_paths.append(resolved)

    def remove_tracked_path(self, path: Path | str) -> bool:
        resolved = Path(path).expanduser().resolve()
        for index, tracked in enumerate(self.tracked_paths):
            if Path(tracked).expanduser().resolve() == resolved:
                del self.tracked_paths[index]
                return True
        return False

    async def scan(self) -> None:
        await self.unsorted.scan()
        for provider in list(self.providers):
            await provider.scan()
        logger.info("Library holds %d tracks (%d unsorted)", len(self.all_tracks), len(self.unsorted.tracks))

    # -- file operations ---------------------------------------------------

    def delete_track(self, track: TrackDetails) -> None:
        path = track.file_path
        if path is None:
            return
        path.unlink()
        provider = self.provider_for(path)
        if provider is not None:
            provider.remove_track(path)
        logger.info("Deleted %s", path)

    def move_track(self, track: TrackDetails, new_folder: Path | str) -> Optional[Path]:
        """
        Move ``track`` between the unsorted folder and a tracked folder.

        The file is renamed to ``"NNN. Artist - Title.ext"`` where ``NNN`` is
        the next incremental number of the destination folder. Raises
        ``ValueError`` when neither side is the unsorted folder.
        """
        old_path = track.file_path
        if old_path is None:
            return None
        folder = Path(new_folder).expanduser().resolve()
        if old_path.parent.resolve() == folder:
            return old_path
        if self.unsorted.contains_path(old_path):
            old_provider = self.unsorted
            new_provider = self._tracked_provider_for(folder)
        elif self.unsorted.contains_path(folder):
            old_provider = self._tracked_provider_for(old_path)
            new_provider = self.unsorted
        else:
            raise ValueError("Couldn't determine movement type. Track should be moved between tracked locations.")

        number = new_provider.last_incremental_number + 1
        file_name = safe_filename(f"{number:03d}. {track.formed_artist_string} - {track.formed_title}{old_path.suffix}")
        destination = fit_destination_path(folder / file_name)
        if path_exists(destination):
            raise FileExistsError(f"Destination already exists: {destination}")
        safe_rename(old_path, destination)

        old_provider.remove_track(old_path)
        track.set_tag(keys.FILE_PATH, str(destination))
        track.set_tag(keys.INCREMENTAL_NUMBER, number)
        new_provider.last_incremental_number = number
        new_provider.add_track(track)
        logger.info("Moved %s -> %s", old_path, destination)
        return destination

    def _tracked_provider_for(self, path: Path) -> DirectoryTracksProvider:
        for provider in self.providers:
            if provider.contains_path(path):
                return provider
        raise ValueError(f"{path} is not inside a tracked folder")

    # -- watching ----------------------------------------------------------

    def watch(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if self._observer is not None:
            return
        loop = loop or asyncio.get_running_loop()
        observer = Observer()
        for provider in [self.unsorted, *self.providers]:
            observer.schedule(WatchHandler(provider, loop=loop), str(provider.path), recursive=True)
        observer.start()
        self._observer = observer
        logger.debug("Watching %d folders", len(self.providers) + 1)

    def stop_watching(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None

    def close(self) -> None:
        self.stop_watching()
        self.all_tracks.collection_changed.unsubscribe(self._on_tracks_changed)
        self.unsorted.tracks.collection_changed.unsubscribe(self._on_tracks_changed)
        for track, _name in list(self._indexed.values()):
            track.property_changed.unsubscribe(self._on_track_property_changed)
        self._indexed.clear()
        self._names.clear()
        self.all_tracks.close()
        self._track_lists.close()
        self.providers.close()

    # -- name index --------------------------------------------------------

    def _index(self, track: TrackDetails) -> None:
        if id(track) in self._indexed:
            return
        name = track.formed_track_name.casefold()
        self._indexed[id(track)] = (track, name)
        self._names[name] += 1
        track.property_changed.subscribe(self._on_track_property_changed)

    def _unindex(self, track: TrackDetails) -> None:
        entry = self._indexed.pop(id(track), None)
        if entry is None:
            return
        self._forget(entry[1])
        track.property_changed.unsubscribe(self._on_track_property_changed)

    def _forget(self, name: str) -> None:
        self._names[name] -= 1
        if self._names[name] <= 0:
            del self._names[name]

    def _rebuild_index(self) -> None:
        current = [*self.all_tracks, *self.unsorted.tracks]
        alive = {id(track) for track in current}
        for key, (track, _name) in list(self._indexed.items()):
            if key not in alive:
                self._unindex(track)
        for track in current:
            self._index(track)

    def _on_tracks_changed(self, _sender: object, change: CollectionChange) -> None:
        if change.action is ChangeAction.RESET:
            self._rebuild_index()
            return
        for track in change.old_items:
            self._unindex(track)
        for track in change.new_items:
            self._index(track)

    def _on_track_property_changed(self, track: TrackDetails, property_name: str) -> None:
        if property_name != "formed_track_name":
            return
        entry = self._indexed.get(id(track))
        if entry is None:
            return
        name = track.formed_track_name.casefold()
        if name == entry[1]:
            return
        self._forget(entry[1])
        self._names[name] += 1
        self._indexed[id(track)] = (track, name)
