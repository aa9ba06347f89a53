from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from . import meta_keys as keys
from .models import TrackDetails

TRACK_PATTERN = re.compile(r"^(?P<num>\d{1,4})(?:[\s._-]+)(?P<rest>.+)$")
SPACED_DASH = re.compile(r"\s+[-–]\s+")
FEATURING_SPLIT = re.compile(r"\s*(?:feat\.|ft\.)\s*", re.IGNORECASE)
PERFORMER_SPLIT = re.compile(r"[,;]")


@dataclass(slots=True)
class ParsedName:
    title: str
    performers: tuple[str, ...] = ()
    subtitle: str = ""
    extra: list[str] = field(default_factory=list)


def split_track_number(stem: str) -> tuple[Optional[int], str]:
    """``"003. Artist - Title"`` -> ``(3, "Artist - Title")``."""
    match = TRACK_PATTERN.match(stem)
    if not match:
        return None, stem
    return int(match.group("num")), match.group("rest")


def get_performers(formed: str) -> tuple[str, ...]:
    performers: list[str] = []
    for chunk in FEATURING_SPLIT.split(formed or ""):
        for name in PERFORMER_SPLIT.split(chunk):
            name = name.strip()
            if name:
                performers.append(name)
    return tuple(performers)


def parse_title(text: str) -> tuple[str, str]:
    """Split a trailing ``(subtitle)`` or ``[subtitle]`` off a title."""
    start = text.rfind("(")
    if start == -1:
        start = text.rfind("[")
        if start == -1:
            return text, ""
    end = text.rfind("]")
    if end == -1:
        end = text.rfind(")")
    # unterminated bracket belongs to the title
    if end == -1 or end < start or start == 0:
        return text, ""
    if not text[start - 1].isspace():
        return text, ""
    return text[:start].strip(), text[start + 1 : end].strip()


def _split_parts(name: str) -> list[str]:
    parts = SPACED_DASH.split(name)
    if len(parts) == 1:
        parts = name.split("-")
    return [part.strip() for part in parts if part.strip()]


def try_parse_name(name: str) -> Optional[ParsedName]:
    """
    Parse ``"Performers - Title (Subtitle)"`` style names.

    A single part is taken as the title; a third part, when present, is the
    subtitle. Returns None when the name does not carry enough information.
    """
    if not name or not name.strip():
        return None
    parts = _split_parts(name)
    if not parts:
        return None
    if len(parts) == 1:
        return ParsedName(title=parts[0])
    performers = get_performers(parts[0])
    title, subtitle = parse_title(parts[1])
    if len(parts) >= 3:
        subtitle = parts[2]
    if not performers or not title.strip():
        return None
    return ParsedName(title=title, performers=performers, subtitle=subtitle, extra=parts[3:])


def fix_performers(details: TrackDetails, slash_performers: Iterable[str]) -> bool:
    """Rejoin performer names like ``AC/DC`` that a ``/`` split tore apart."""
    if not details.has_artists:
        return False
    artists = details.formed_artist_string
    fixed = artists
    for performer in slash_performers:
        pieces = [piece.strip() for piece in performer.split("/") if piece.strip()]
        if len(pieces) < 2:
            continue
        fixed = fixed.replace(", ".join(pieces), performer)
    if fixed == artists:
        return False
    names = tuple(fixed.split(", "))
    details.set_tag(keys.PERFORMERS, names)
    details.set_tag(keys.ALBUM_ARTISTS, names)
    return True


def apply_parsed_name(details: TrackDetails, stem: str) -> bool:
    """Fill title/performers from a file stem when the tags lack them."""
    number, rest = split_track_number(stem)
    if number is not None:
        details.set_tag(keys.INCREMENTAL_NUMBER, number)
    if details.has_artists and details.has_title:
        return True
    parsed = try_parse_name(rest)
    if parsed is None:
        return False
    if parsed.performers:
        details.set_tag(keys.PERFORMERS, parsed.performers)
        details.set_tag(keys.ALBUM_ARTISTS, parsed.performers[:1])
    details.set_tag(keys.TITLE, parsed.title)
    details.set_tag(keys.SUBTITLE, parsed.subtitle)
    return True
