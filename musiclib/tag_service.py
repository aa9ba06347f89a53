from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional, Sequence

from . import meta_keys as keys
from .config import MergePolicy
from .conflicts import ConflictSet, TaggingResult
from .models import TrackDetails
from .providers.base import DetailProvider, LyricsProvider
from .tags import REGISTRY

logger = logging.getLogger(__name__)


def provider_name(provider: object) -> str:
    return getattr(provider, "name", provider.__class__.__name__)


class TagService:
    """
    Runs one tagging pass: detail providers, then lyrics providers, then
    auto-resolve. Provider failures are logged and count as no contribution.
    """

    def __init__(
        self,
        detail_providers: Sequence[DetailProvider] = (),
        lyrics_providers: Sequence[LyricsProvider] = (),
        parallel: bool = False,
    ) -> None:
        self.detail_providers = list(detail_providers)
        self.lyrics_providers = list(lyrics_providers)
        self.parallel = parallel
        logger.info(
            "Tag service ready with %d detail providers and %d lyrics providers",
            len(self.detail_providers),
            len(self.lyrics_providers),
        )

    async def tag(self, track: TrackDetails) -> TaggingResult:
        logger.info("Tagging %s", track.formed_track_name)
        conflicts = ConflictSet()
        if self.parallel:
            found = await asyncio.gather(*(self._search_details(p, track) for p in self.detail_providers))
        else:
            found = [await self._search_details(p, track) for p in self.detail_providers]
        detail_hits = 0
        for details in found:
            if details is None:
                continue
            conflicts.contribute(track, details)
            detail_hits += 1

        lyrics_hits = 0
        for provider in self.lyrics_providers:
            lyrics = await self._search_lyrics(provider, track)
            if not lyrics:
                continue
            conflicts.add_candidate(track, REGISTRY.create(keys.LYRICS, lyrics))
            lyrics_hits += 1

        result = conflicts.auto_resolve()
        logger.info(
            "Tagged %s: %d tags resolved, %d conflicts, providers answered %d details / %d lyrics",
            track.formed_track_name,
            len(result),
            len(conflicts),
            detail_hits,
            lyrics_hits,
        )
        return TaggingResult(result, conflicts)

    async def _search_details(self, provider: DetailProvider, track: TrackDetails) -> Optional[TrackDetails]:
        name = provider_name(provider)
        started = time.monotonic()
        try:
            details = await provider.search_details(track)
        except Exception:
            logger.exception("Detail provider %s failed for %s", name, track.formed_track_name)
            return None
        logger.debug("Detail provider %s finished in %.0fms", name, (time.monotonic() - started) * 1000)
        if details is None or len(details) == 0:
            logger.debug("Detail provider %s returned nothing", name)
            return None
        logger.debug("Detail provider %s returned %d tags", name, len(details))
        return details

    async def _search_lyrics(self, provider: LyricsProvider, track: TrackDetails) -> Optional[str]:
        name = provider_name(provider)
        started = time.monotonic()
        try:
            lyrics = await provider.search_lyrics(track)
        except Exception:
            logger.exception("Lyrics provider %s failed for %s", name, track.formed_track_name)
            return None
        logger.debug("Lyrics provider %s finished in %.0fms", name, (time.monotonic() - started) * 1000)
        if not lyrics or not lyrics.strip():
            logger.debug("Lyrics provider %s returned nothing", name)
            return None
        return lyrics


def combine_results(policy: MergePolicy, original: TrackDetails, result: TaggingResult) -> TrackDetails:
    """Merge the auto-resolved tags into a copy of ``original``."""
    if original is None or result is None:
        raise ValueError("original and result are required")
    if policy is MergePolicy.REPLACE:
        return TrackDetails.replace_with(original, result.details)
    return TrackDetails.union_with(original, result.details)
