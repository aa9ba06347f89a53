from __future__ import annotations

import logging
from typing import Optional

from ..match_utils import best_match
from ..models import TrackDetails
from .http import HttpClient

logger = logging.getLogger(__name__)


class LrcLibProvider:
    """Lyrics from the LRCLIB search API; synced lyrics are preferred over plain text."""

    name = "lrclib"

    def __init__(self, client: HttpClient, base_url: str = "https://lrclib.net") -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")

    async def search_lyrics(self, details: TrackDetails) -> Optional[str]:
        params = {"track_name": details.formed_title}
        if details.has_artists:
            params["artist_name"] = details.formed_artist_string
        response = await self.client.get_json(f"{self.base_url}/api/search", params)
        if not isinstance(response, list):
            return None
        candidates = []
        for entry in response:
            if not isinstance(entry, dict):
                continue
            lyrics = (entry.get("syncedLyrics") or entry.get("plainLyrics") or "").strip()
            if lyrics:
                candidates.append((f"{entry.get('artistName')} - {entry.get('trackName')}", lyrics))
        match = best_match(details.formed_track_name, candidates, key=lambda item: item[0])
        if match is None:
            logger.debug("LRCLIB has no lyrics for %s", details.formed_track_name)
            return None
        logger.debug("LRCLIB matched %s to %s", details.formed_track_name, match[0])
        return match[1]
