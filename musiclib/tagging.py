from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol

from mutagen import MutagenError
from mutagen.flac import FLAC, Picture as FlacPicture
from mutagen.id3 import APIC, COMM, ID3, ID3NoHeaderError, TALB, TCON, TDRC, TIT2, TIT3, TPE1, TPE2, TPOS, TRCK, TXXX, USLT
from mutagen.mp4 import MP4, MP4Cover

from . import meta_keys as keys
from .heuristics import apply_parsed_name, fix_performers
from .models import MetadataWriteError, ProcessingError, TrackDetails
from .tags import REGISTRY, Picture, TrackLoadingState, has_value

logger = logging.getLogger(__name__)

FieldPairs = list[tuple[str, Any]]

YEAR_PATTERN = re.compile(r"(\d{4})")

_VORBIS_KEYS = {
    keys.TITLE: "TITLE",
    keys.SUBTITLE: "SUBTITLE",
    keys.ALBUM: "ALBUM",
    keys.PERFORMERS: "ARTIST",
    keys.ALBUM_ARTISTS: "ALBUMARTIST",
    keys.GENRES: "GENRE",
    keys.COMMENT: "COMMENT",
    keys.DESCRIPTION: "DESCRIPTION",
    keys.PERFORMERS_ROLE: "PERFORMERROLE",
    keys.LYRICS: "LYRICS",
    keys.TRACK: "TRACKNUMBER",
    keys.TRACK_COUNT: "TRACKTOTAL",
    keys.DISC: "DISCNUMBER",
    keys.DISC_COUNT: "DISCTOTAL",
    keys.YEAR: "DATE",
}

_MP4_KEYS = {
    keys.TITLE: "\xa9nam",
    keys.SUBTITLE: "----:com.apple.iTunes:SUBTITLE",
    keys.ALBUM: "\xa9alb",
    keys.PERFORMERS: "\xa9ART",
    keys.ALBUM_ARTISTS: "aART",
    keys.GENRES: "\xa9gen",
    keys.COMMENT: "\xa9cmt",
    keys.DESCRIPTION: "desc",
    keys.PERFORMERS_ROLE: "----:com.apple.iTunes:PERFORMERROLE",
    keys.LYRICS: "\xa9lyr",
    keys.YEAR: "\xa9day",
}

_LIST_TAGS = {keys.PERFORMERS, keys.ALBUM_ARTISTS, keys.GENRES, keys.PERFORMERS_ROLE}


class MetadataStore(Protocol):
    def read(self, path: Path, include_cover: bool = False) -> FieldPairs: ...

    def write(self, path: Path, pairs: Iterable[tuple[str, Any]]) -> None: ...


class TagWriter:
    """Reads and writes tag fields for the most common tagging formats."""

    SUPPORTED_EXTS = {".mp3", ".flac", ".m4a"}

    def read(self, path: Path, include_cover: bool = False) -> FieldPairs:
        readers = {
            ".mp3": self._read_mp3,
            ".flac": self._read_flac,
            ".m4a": self._read_mp4,
        }
        reader = readers.get(path.suffix.lower())
        if reader is None:
            raise ProcessingError(f"Unsupported extension {path}")
        try:
            fields = reader(path)
        except (MutagenError, OSError) as exc:
            raise ProcessingError(f"Failed to read tags for {path}: {exc}") from exc
        cover = fields.pop(keys.COVER, None)
        if include_cover:
            fields[keys.COVER] = cover
        else:
            fields[keys.HAS_COVER] = cover is not None
        # registry order keeps records stable between reads
        ordered = [(name, fields[name]) for name in REGISTRY if name in fields]
        return [(name, value) for name, value in ordered if has_value(value)]

    def write(self, path: Path, pairs: Iterable[tuple[str, Any]]) -> None:
        writers = {
            ".mp3": self._write_mp3,
            ".flac": self._write_flac,
            ".m4a": self._write_mp4,
        }
        writer = writers.get(path.suffix.lower())
        if writer is None:
            raise MetadataWriteError(f"Unsupported extension {path}")
        fields = {name: value for name, value in pairs if name in REGISTRY and not REGISTRY.get(name).is_virtual}
        try:
            writer(path, fields)
        except (MutagenError, OSError) as exc:
            raise MetadataWriteError(f"Failed to write tags for {path}: {exc}") from exc
        logger.debug("Wrote %d tags to %s", len(fields), path)

    # -- mp3 ---------------------------------------------------------------

    def _read_mp3(self, path: Path) -> Dict[str, Any]:
        try:
            tags = ID3(path)
        except ID3NoHeaderError:
            return {}
        track, track_count = _split_pair(self._id3_text(tags, "TRCK"))
        disc, disc_count = _split_pair(self._id3_text(tags, "TPOS"))
        genres = tags.getall("TCON")
        pictures = tags.getall("APIC")
        return {
            keys.TITLE: self._id3_text(tags, "TIT2"),
            keys.SUBTITLE: self._id3_text(tags, "TIT3"),
            keys.ALBUM: self._id3_text(tags, "TALB"),
            keys.PERFORMERS: _split_slashes(self._id3_list(tags, "TPE1")),
            keys.ALBUM_ARTISTS: _split_slashes(self._id3_list(tags, "TPE2")),
            keys.GENRES: tuple(genres[0].genres) if genres else None,
            keys.COMMENT: self._id3_text(tags, "COMM"),
            keys.DESCRIPTION: self._id3_text(tags, "TXXX:DESCRIPTION"),
            keys.PERFORMERS_ROLE: self._id3_list(tags, "TXXX:PERFORMERROLE"),
            keys.LYRICS: self._id3_text(tags, "USLT"),
            keys.TRACK: track,
            keys.TRACK_COUNT: track_count,
            keys.DISC: disc,
            keys.DISC_COUNT: disc_count,
            keys.YEAR: _parse_year(self._id3_text(tags, "TDRC")),
            keys.COVER: Picture(data=pictures[0].data, mime=pictures[0].mime) if pictures else None,
        }

    def _write_mp3(self, path: Path, fields: Dict[str, Any]) -> None:
        try:
            tags = ID3(path)
        except ID3NoHeaderError:
            tags = ID3()
        simple = {
            keys.TITLE: TIT2,
            keys.SUBTITLE: TIT3,
            keys.ALBUM: TALB,
            keys.PERFORMERS: TPE1,
            keys.ALBUM_ARTISTS: TPE2,
            keys.GENRES: TCON,
        }
        for name, frame_cls in simple.items():
            if name in fields:
                self._set_frame(tags, frame_cls, _as_text_list(fields[name]))
        if keys.COMMENT in fields:
            tags.setall("COMM", [COMM(encoding=3, lang="eng", desc="", text=[fields[keys.COMMENT]])])
        if keys.DESCRIPTION in fields:
            tags.setall("TXXX:DESCRIPTION", [TXXX(encoding=3, desc="DESCRIPTION", text=[fields[keys.DESCRIPTION]])])
        if keys.PERFORMERS_ROLE in fields:
            tags.setall(
                "TXXX:PERFORMERROLE",
                [TXXX(encoding=3, desc="PERFORMERROLE", text=_as_text_list(fields[keys.PERFORMERS_ROLE]))],
            )
        if keys.LYRICS in fields:
            tags.setall("USLT", [USLT(encoding=3, lang="eng", desc="", text=fields[keys.LYRICS])])
        track = _join_pair(fields.get(keys.TRACK), fields.get(keys.TRACK_COUNT))
        if track:
            self._set_frame(tags, TRCK, [track])
        disc = _join_pair(fields.get(keys.DISC), fields.get(keys.DISC_COUNT))
        if disc:
            self._set_frame(tags, TPOS, [disc])
        if fields.get(keys.YEAR):
            self._set_frame(tags, TDRC, [str(fields[keys.YEAR])])
        cover = fields.get(keys.COVER)
        if cover is not None and cover.data:
            tags.setall("APIC", [APIC(encoding=3, mime=cover.mime, type=3, desc="Cover", data=cover.data)])
        tags.save(path)

    @staticmethod
    def _set_frame(tags: ID3, frame_cls, text: list[str]) -> None:
        tags.setall(frame_cls.__name__, [frame_cls(encoding=3, text=text)])

    @staticmethod
    def _id3_text(tags: ID3, frame_id: str) -> Optional[str]:
        frames = tags.getall(frame_id)
        if not frames:
            return None
        text = frames[0].text
        if isinstance(text, list):
            return str(text[0]) if text else None
        return str(text) if text else None

    @staticmethod
    def _id3_list(tags: ID3, frame_id: str) -> Optional[tuple[str, ...]]:
        frames = tags.getall(frame_id)
        if not frames or not frames[0].text:
            return None
        return tuple(str(item) for item in frames[0].text)

    # -- flac --------------------------------------------------------------

    def _read_flac(self, path: Path) -> Dict[str, Any]:
        audio = FLAC(path)
        fields: Dict[str, Any] = {}
        for name, key in _VORBIS_KEYS.items():
            values = audio.get(key)
            if not values:
                continue
            fields[name] = tuple(values) if name in _LIST_TAGS else values[0]
        for number_key, total_key in ((keys.TRACK, keys.TRACK_COUNT), (keys.DISC, keys.DISC_COUNT)):
            number, total = _split_pair(fields.get(number_key))
            if total_key in fields:
                total = _to_int(str(fields[total_key]))
            fields[number_key], fields[total_key] = number, total
        if keys.YEAR in fields:
            fields[keys.YEAR] = _parse_year(fields[keys.YEAR])
        if audio.pictures:
            picture = audio.pictures[0]
            fields[keys.COVER] = Picture(data=picture.data, mime=picture.mime)
        return fields

    def _write_flac(self, path: Path, fields: Dict[str, Any]) -> None:
        audio = FLAC(path)
        if audio.tags is None:
            audio.add_tags()
        for name, key in _VORBIS_KEYS.items():
            if name not in fields or fields[name] is None:
                continue
            audio[key] = _as_text_list(fields[name])
        cover = fields.get(keys.COVER)
        if cover is not None and cover.data:
            picture = FlacPicture()
            picture.type = 3
            picture.mime = cover.mime
            picture.data = cover.data
            audio.clear_pictures()
            audio.add_picture(picture)
        audio.save()

    # -- mp4 ---------------------------------------------------------------

    def _read_mp4(self, path: Path) -> Dict[str, Any]:
        audio = MP4(path)
        fields: Dict[str, Any] = {}
        for name, key in _MP4_KEYS.items():
            values = audio.get(key)
            if not values:
                continue
            texts = tuple(self._mp4_text(value) for value in values)
            fields[name] = texts if name in _LIST_TAGS else texts[0]
        track_info = audio.get("trkn")
        if track_info:
            fields[keys.TRACK], fields[keys.TRACK_COUNT] = track_info[0]
        disc_info = audio.get("disk")
        if disc_info:
            fields[keys.DISC], fields[keys.DISC_COUNT] = disc_info[0]
        if keys.YEAR in fields:
            fields[keys.YEAR] = _parse_year(fields[keys.YEAR])
        covers = audio.get("covr")
        if covers:
            cover = covers[0]
            mime = "image/png" if cover.imageformat == MP4Cover.FORMAT_PNG else "image/jpeg"
            fields[keys.COVER] = Picture(data=bytes(cover), mime=mime)
        return fields

    def _write_mp4(self, path: Path, fields: Dict[str, Any]) -> None:
        audio = MP4(path)
        if audio.tags is None:
            audio.add_tags()
        for name, key in _MP4_KEYS.items():
            if name not in fields or fields[name] is None:
                continue
            values = _as_text_list(fields[name])
            if key.startswith("----:"):
                audio[key] = [value.encode("utf-8") for value in values]
            else:
                audio[key] = values
        if fields.get(keys.TRACK) or fields.get(keys.TRACK_COUNT):
            audio["trkn"] = [(int(fields.get(keys.TRACK) or 0), int(fields.get(keys.TRACK_COUNT) or 0))]
        if fields.get(keys.DISC) or fields.get(keys.DISC_COUNT):
            audio["disk"] = [(int(fields.get(keys.DISC) or 0), int(fields.get(keys.DISC_COUNT) or 0))]
        cover = fields.get(keys.COVER)
        if cover is not None and cover.data:
            image_format = MP4Cover.FORMAT_PNG if cover.mime == "image/png" else MP4Cover.FORMAT_JPEG
            audio["covr"] = [MP4Cover(cover.data, imageformat=image_format)]
        audio.save()

    @staticmethod
    def _mp4_text(value: Any) -> str:
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return str(value)


def _as_text_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [str(value)]


def _split_slashes(values: Optional[tuple[str, ...]]) -> Optional[tuple[str, ...]]:
    if not values:
        return values
    parts = [part.strip() for value in values for part in value.split("/")]
    return tuple(part for part in parts if part)


def _split_pair(value: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    if not value:
        return None, None
    first, _, second = str(value).partition("/")
    return _to_int(first), _to_int(second)


def _join_pair(number: Optional[int], total: Optional[int]) -> Optional[str]:
    if not number and not total:
        return None
    if total:
        return f"{number or 0}/{total}"
    return str(number)


def _to_int(value: str) -> Optional[int]:
    cleaned = value.strip()
    return int(cleaned) if cleaned.isdigit() else None


def _parse_year(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = YEAR_PATTERN.search(str(value))
    return int(match.group(1)) if match else None


def read_metadata(path: Path, store: MetadataStore, slash_performers: Iterable[str] = ()) -> TrackDetails:
    """Build a record for ``path``: file tags, file path, and name-derived fallbacks."""
    try:
        details = TrackDetails(REGISTRY.create(name, value) for name, value in store.read(path))
    except ValueError as exc:
        raise ProcessingError(f"Invalid tag value in {path}: {exc}") from exc
    details.set_tag(keys.FILE_PATH, str(path))
    apply_parsed_name(details, path.stem)
    fix_performers(details, slash_performers)
    details.loading_state = TrackLoadingState.LOADED
    return details


def save_metadata(details: TrackDetails, store: MetadataStore) -> None:
    path = details.file_path
    if path is None:
        raise FileNotFoundError(
            "Couldn't save metadata because the record has no file_path tag; add one pointing at the file to save."
        )
    store.write(path, [(tag.name, tag.value) for tag in details.persisted_tags()])


def restore_cover(details: TrackDetails, store: MetadataStore) -> None:
    """Load the cover image that ``read_metadata`` skips."""
    path = details.file_path
    if path is None:
        return
    details.remove(keys.HAS_COVER)
    if details.contains_key(keys.COVER):
        return
    fields = dict(store.read(path, include_cover=True))
    cover = fields.get(keys.COVER)
    details.add(REGISTRY.create(keys.COVER, cover))
    details.set_tag(keys.HAS_COVER, cover is not None)
