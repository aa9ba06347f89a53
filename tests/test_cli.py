import io
import logging
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from typing import Any, Iterable
from unittest.mock import patch

from musiclib import meta_keys as keys
from musiclib.auto_tagging import AutoTagger
from musiclib.cli import (
    ShortPathFormatter,
    WarningBufferHandler,
    _print_tracks,
    _read_files,
    load_settings,
    resolve_conflicts_interactively,
)
from musiclib.config import Settings
from musiclib.conflicts import ConflictState, TaggingConflict
from musiclib.models import ProcessingError, TrackDetails
from musiclib.tag_service import TagService
from musiclib.tags import Picture, TrackProcessingState, make_tag


class TestInteractiveResolution(unittest.TestCase):
    def setUp(self) -> None:
        self.track = TrackDetails([make_tag(keys.TITLE, "Song"), make_tag(keys.STATE, TrackProcessingState.CONFLICTING)])
        self.tagger = AutoTagger(TagService())
        self.year = TaggingConflict(self.track, keys.YEAR, [make_tag(keys.YEAR, 1999), make_tag(keys.YEAR, 2001)])
        self.album = TaggingConflict(self.track, keys.ALBUM, [make_tag(keys.ALBUM, "A"), make_tag(keys.ALBUM, "B")])
        self.tagger.conflicts.extend([self.year, self.album])

    def _run(self, answers: list[str]) -> str:
        replies = iter(answers)
        out = io.StringIO()
        with redirect_stdout(out):
            resolve_conflicts_interactively(self.tagger, input_fn=lambda prompt: next(replies))
        return out.getvalue()

    def test_number_picks_candidate_and_enter_rejects(self) -> None:
        output = self._run(["2", ""])
        self.assertIn("1. 1999", output)
        self.assertEqual(self.track.get_tag(keys.YEAR), 2001)
        self.assertEqual(self.album.state, ConflictState.REJECTED)
        self.assertEqual(self.track.state, TrackProcessingState.SUCCESS)

    def test_custom_value(self) -> None:
        self._run(["=2000", "=Custom"])
        self.assertEqual(self.track.get_tag(keys.YEAR), 2000)
        self.assertEqual(self.track.get_tag(keys.ALBUM), "Custom")

    def test_invalid_answers_leave_conflicts_open(self) -> None:
        with self.assertLogs("musiclib.cli", level="ERROR"):
            output = self._run(["7", "=  "])
        self.assertIn("Invalid choice", output)
        self.assertEqual(len(self.tagger.conflicts), 2)
        self.assertEqual(self.track.state, TrackProcessingState.CONFLICTING)


class TestLoggingHelpers(unittest.TestCase):
    def test_short_path_formatter_strips_roots(self) -> None:
        formatter = ShortPathFormatter("%(message)s", [Path("/music/library")])
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "Moved /music/library/a.mp3", None, None)
        self.assertEqual(formatter.format(record), "Moved a.mp3")

    def test_warning_buffer_keeps_warnings_only(self) -> None:
        handler = WarningBufferHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        logger = logging.getLogger("musiclib.tests.buffer")
        logger.addHandler(handler)
        logger.propagate = False
        try:
            logger.warning("careful")
            logger.info("fine")
        finally:
            logger.removeHandler(handler)
        self.assertEqual(handler.records, ["WARNING careful"])


class _CoverStore:
    def read(self, path: Path, include_cover: bool = False) -> list[tuple[str, Any]]:
        if path.name == "bad.mp3":
            raise ProcessingError("unreadable")
        cover = Picture(data=b"12345", mime="image/png")
        return [(keys.TITLE, path.stem), (keys.COVER if include_cover else keys.HAS_COVER, cover if include_cover else True)]

    def write(self, path: Path, pairs: Iterable[tuple[str, Any]]) -> None:
        return None


class TestTrackListing(unittest.TestCase):
    def test_covers_are_loaded_on_request(self) -> None:
        track = TrackDetails([make_tag(keys.TITLE, "Song"), make_tag(keys.FILE_PATH, "/music/song.mp3")])
        out = io.StringIO()
        with redirect_stdout(out):
            _print_tracks([track], _CoverStore())
        self.assertIn("cover: image/png, 5 bytes", out.getvalue())
        self.assertEqual(track.get_tag(keys.COVER).data, b"12345")

    def test_plain_listing_leaves_covers_alone(self) -> None:
        track = TrackDetails([make_tag(keys.TITLE, "Song"), make_tag(keys.FILE_PATH, "/music/song.mp3")])
        out = io.StringIO()
        with redirect_stdout(out):
            _print_tracks([track])
        self.assertNotIn("cover", out.getvalue())
        self.assertNotIn(keys.COVER, track)

    def test_unreadable_files_are_skipped(self) -> None:
        with self.assertLogs("musiclib.cli", level="WARNING"):
            tracks = _read_files([Path("/music/good.mp3"), Path("/music/bad.mp3")], _CoverStore(), Settings())
        self.assertEqual([track.get_tag(keys.TITLE) for track in tracks], ["good"])


class TestLoadSettings(unittest.TestCase):
    def test_defaults_without_config(self) -> None:
        with patch("musiclib.cli.find_config", side_effect=FileNotFoundError("none")):
            self.assertEqual(load_settings(None), Settings())


if __name__ == "__main__":
    unittest.main()
