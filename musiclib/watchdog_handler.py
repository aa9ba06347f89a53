from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from .scanner import DirectoryTracksProvider

logger = logging.getLogger(__name__)


class WatchHandler(FileSystemEventHandler):
    """Forwards watchdog events for one tracked folder to its provider on the loop thread."""

    def __init__(
        self,
        provider: DirectoryTracksProvider,
        *,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__()
        self.provider = provider
        self.loop = loop

    def on_created(self, event: FileSystemEvent) -> None:
        path = self._matching_path(event, event.src_path)
        if path is not None:
            logger.debug("Queued added file: %s", path)
            self.loop.call_soon_threadsafe(self.provider.add_path, path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        path = self._matching_path(event, event.src_path)
        if path is not None:
            logger.debug("Queued removed file: %s", path)
            self.loop.call_soon_threadsafe(self.provider.remove_track, path)

    def on_moved(self, event: FileSystemEvent) -> None:
        src = self._matching_path(event, event.src_path)
        dest = self._matching_path(event, getattr(event, "dest_path", None))
        if src is not None and dest is not None:
            logger.debug("Queued renamed file: %s -> %s", src, dest)
            self.loop.call_soon_threadsafe(self.provider.rename_track, src, dest)
        elif src is not None:
            self.loop.call_soon_threadsafe(self.provider.remove_track, src)
        elif dest is not None:
            self.loop.call_soon_threadsafe(self.provider.add_path, dest)

    def _matching_path(self, event: FileSystemEvent, raw: object) -> Optional[Path]:
        if event.is_directory or not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        path = Path(str(raw))
        if not self.provider.should_include(path):
            return None
        return path
