from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from ..config import ProviderSettings
from .base import DetailProvider, LyricsProvider
from .genius import GeniusProvider
from .http import HttpClient
from .lastfm import LastFmProvider
from .lrclib import LrcLibProvider

logger = logging.getLogger(__name__)

__all__ = [
    "DetailProvider",
    "GeniusProvider",
    "HttpClient",
    "LastFmProvider",
    "LrcLibProvider",
    "LyricsProvider",
    "build_providers",
]


def build_providers(
    settings: ProviderSettings, client: Optional[HttpClient] = None
) -> Tuple[List[DetailProvider], List[LyricsProvider]]:
    """Detail and lyrics providers enabled by ``settings``, in query order."""
    client = client or HttpClient(settings)
    details: List[DetailProvider] = []
    lyrics: List[LyricsProvider] = []
    if settings.lastfm_api_key:
        details.append(LastFmProvider(client, settings.lastfm_api_key))
    else:
        logger.info("Last.fm disabled: no API key configured")
    if settings.genius_token:
        details.append(GeniusProvider(client, settings.genius_token))
    else:
        logger.info("Genius disabled: no token configured")
    if settings.lrclib_enabled:
        lyrics.append(LrcLibProvider(client, settings.lrclib_url))
    return details, lyrics
