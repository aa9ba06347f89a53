from __future__ import annotations

import html
import logging
import re
from typing import Optional

from .. import meta_keys as keys
from ..heuristics import get_performers
from ..models import TrackDetails
from ..tags import make_tag
from .http import HttpClient

logger = logging.getLogger(__name__)

API_URL = "https://api.genius.com"
LYRICS_DIV = re.compile(r'<div [^>]*?data-lyrics-container="true"[^>]*>(?P<content>.*?)</div>', re.DOTALL)
HTML_TAG = re.compile(r"<.*?>")
MULTI_NEWLINE = re.compile(r"\n\n+")
MULTI_SPACE = re.compile(r"[ \t]{2,}")


def extract_lyrics(page: str) -> Optional[str]:
    chunks = [match.group("content") for match in LYRICS_DIV.finditer(page)]
    if not chunks:
        return None
    content = "\n".join(chunks)
    content = re.sub(r"<br\s*/?>", "\n", content)
    content = HTML_TAG.sub("", content)
    content = MULTI_NEWLINE.sub("\n", content)
    content = MULTI_SPACE.sub(" ", content)
    lyrics = html.unescape(content.strip())
    return lyrics or None


class GeniusProvider:
    name = "genius"

    def __init__(self, client: HttpClient, token: str) -> None:
        if not token:
            raise ValueError("Genius token required")
        self.client = client
        self.token = token

    async def search_details(self, prototype: TrackDetails) -> Optional[TrackDetails]:
        search = await self.client.get_json(
            f"{API_URL}/search", {"q": prototype.formed_track_name, "access_token": self.token}
        )
        hits = ((search or {}).get("response") or {}).get("hits") or []
        if not hits:
            logger.debug("Genius has no hits for %s", prototype.formed_track_name)
            return None
        hit = hits[0].get("result") or {}
        song_id = hit.get("id")
        if song_id is None:
            return None
        lyrics = None
        if hit.get("url"):
            page = await self.client.get_text(hit["url"])
            lyrics = extract_lyrics(page) if page else None
        response = await self.client.get_json(
            f"{API_URL}/songs/{song_id}", {"text_format": "plain", "access_token": self.token}
        )
        song = ((response or {}).get("response") or {}).get("song")
        if not song:
            return None
        album = song.get("album") or {}
        cover_url = album.get("cover_art_url")
        if cover_url and "1000x1000x1" in cover_url:
            cover_url = cover_url.replace("340x340", "1000x1000")
        release_date = song.get("release_date") or ""
        details = TrackDetails(
            [
                make_tag(keys.TITLE, song.get("title")),
                make_tag(keys.ALBUM, album.get("name")),
                make_tag(keys.DESCRIPTION, (song.get("description") or {}).get("plain")),
                make_tag(keys.PERFORMERS, get_performers(song.get("artist_names") or "")),
                make_tag(keys.YEAR, int(release_date[:4]) if release_date[:4].isdigit() else None),
                make_tag(keys.LYRICS, lyrics),
            ]
        )
        if cover_url:
            details.add(await self.client.download_cover(cover_url))
        return details
