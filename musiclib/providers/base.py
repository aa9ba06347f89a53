from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ..models import TrackDetails


@runtime_checkable
class DetailProvider(Protocol):
    name: str

    async def search_details(self, prototype: TrackDetails) -> Optional[TrackDetails]: ...


@runtime_checkable
class LyricsProvider(Protocol):
    name: str

    async def search_lyrics(self, details: TrackDetails) -> Optional[str]: ...
