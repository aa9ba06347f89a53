from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from .. import meta_keys as keys
from ..heuristics import get_performers
from ..match_utils import pascal_genre
from ..models import UNKNOWN_ARTIST, UNKNOWN_TITLE, TrackDetails
from ..projection import index_of_first
from ..tags import make_tag
from .http import HttpClient

logger = logging.getLogger(__name__)

API_URL = "https://ws.audioscrobbler.com/2.0/"
YEAR_PATTERN = re.compile(r"\b(\d{4})\b")
IMAGE_SIZES = ("mega", "extralarge", "large", "medium", "small")


class LastFmProvider:
    name = "lastfm"

    def __init__(self, client: HttpClient, api_key: str) -> None:
        if not api_key:
            raise ValueError("Last.fm API key required")
        self.client = client
        self.api_key = api_key
        self._listeners_cache: Dict[tuple[str, str], Optional[int]] = {}

    async def search_details(self, prototype: TrackDetails) -> Optional[TrackDetails]:
        lookup = self._lookup_key(prototype)
        if lookup is None:
            return None
        artist, title = lookup
        logger.debug("Searching Last.fm for %s by %s", title, artist)
        track = await self._track_info(artist, title)
        if track is None:
            logger.debug("Track not found on Last.fm: %s by %s", title, artist)
            return None
        album_name = (track.get("album") or {}).get("title")
        track_number = track_count = year = None
        image = None
        if album_name:
            album = await self._call("album.getinfo", artist=artist, album=album_name, autocorrect=1)
            album = (album or {}).get("album") or {}
            tracks = _as_list((album.get("tracks") or {}).get("track"))
            if tracks:
                track_number = index_of_first(tracks, lambda item: item.get("name") == title) + 1
                track_count = len(tracks)
            image = _largest_image(album.get("image"))
            year = _parse_year((album.get("wiki") or {}).get("published") or album.get("releasedate"))
        if image is None:
            image = _largest_image((track.get("album") or {}).get("image"))
        tags = _as_list((track.get("toptags") or {}).get("tag"))
        details = TrackDetails(
            [
                make_tag(keys.PERFORMERS, get_performers((track.get("artist") or {}).get("name") or "")),
                make_tag(keys.TITLE, track.get("name")),
                make_tag(keys.ALBUM, album_name),
                make_tag(keys.GENRES, tuple(pascal_genre(tag["name"]) for tag in tags[:3] if tag.get("name"))),
                make_tag(keys.TRACK, track_number),
                make_tag(keys.TRACK_COUNT, track_count),
                make_tag(keys.YEAR, year),
            ]
        )
        if image:
            details.add(await self.client.download_cover(image))
        return details

    async def listeners_count(self, details: TrackDetails) -> Optional[int]:
        """Play count of the track on Last.fm, cached per (artist, title)."""
        lookup = self._lookup_key(details)
        if lookup is None:
            return None
        if lookup in self._listeners_cache:
            return self._listeners_cache[lookup]
        track = await self._track_info(*lookup)
        count = None
        if track is not None:
            try:
                count = int(track.get("playcount") or 0)
            except (TypeError, ValueError):
                count = None
        self._listeners_cache[lookup] = count
        logger.debug("Last.fm listeners for %s - %s: %s", lookup[0], lookup[1], count)
        return count

    @staticmethod
    def _lookup_key(details: TrackDetails) -> Optional[tuple[str, str]]:
        title = details.formed_title
        artist = details.formed_artist_string
        if title == UNKNOWN_TITLE or artist == UNKNOWN_ARTIST:
            logger.debug("Skipping Last.fm lookup for %s", details.formed_track_name)
            return None
        return artist, title

    async def _track_info(self, artist: str, title: str) -> Optional[dict]:
        response = await self._call("track.getinfo", artist=artist, track=title, autocorrect=1)
        if not response or "track" not in response:
            return None
        return response["track"]

    async def _call(self, method: str, **params: Any) -> Optional[dict]:
        query = {"method": method, "api_key": self.api_key, "format": "json", **params}
        response = await self.client.get_json(API_URL, query)
        if not isinstance(response, dict):
            return None
        if "error" in response:
            logger.debug("Last.fm %s error %s: %s", method, response.get("error"), response.get("message"))
            return None
        return response


def _as_list(value: Any) -> list[dict]:
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    return []


def _largest_image(images: Any) -> Optional[str]:
    by_size = {item.get("size"): item.get("#text") for item in _as_list(images)}
    for size in IMAGE_SIZES:
        if by_size.get(size):
            return by_size[size]
    return None


def _parse_year(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = YEAR_PATTERN.search(value)
    return int(match.group(1)) if match else None
