import asyncio
import unittest
from pathlib import Path
from typing import Any, Iterable, Optional

from musiclib import meta_keys as keys
from musiclib.auto_tagging import AutoTagger
from musiclib.config import MergePolicy, TaggingSettings
from musiclib.models import MetadataWriteError, TrackDetails
from musiclib.tag_service import TagService
from musiclib.tags import TrackProcessingState, make_tag


def _details(**values) -> TrackDetails:
    return TrackDetails(make_tag(name, value) for name, value in values.items())


class _Provider:
    name = "fake"

    def __init__(self, answers: dict) -> None:
        self.answers = answers

    async def search_details(self, prototype: TrackDetails) -> Optional[TrackDetails]:
        answer = self.answers.get(prototype.get_value(keys.TITLE))
        if isinstance(answer, Exception):
            raise answer
        return answer


class _Service(TagService):
    """Service whose ``tag`` itself fails for one title."""

    def __init__(self, providers, failing_title: str) -> None:
        super().__init__(providers)
        self.failing_title = failing_title

    async def tag(self, track):
        if track.get_value(keys.TITLE) == self.failing_title:
            raise RuntimeError("service down")
        return await super().tag(track)


class _Store:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.writes: list[tuple[Path, dict]] = []

    def read(self, path: Path, include_cover: bool = False) -> list[tuple[str, Any]]:
        return []

    def write(self, path: Path, pairs: Iterable[tuple[str, Any]]) -> None:
        if self.fail:
            raise MetadataWriteError(f"read-only {path}")
        self.writes.append((path, dict(pairs)))


class TestAutoTagger(unittest.IsolatedAsyncioTestCase):
    async def test_states_follow_provider_answers(self) -> None:
        providers = [
            _Provider({"found": _details(album="Album"), "split": _details(year=1999)}),
            _Provider({"split": _details(year=2001)}),
        ]
        tagger = AutoTagger(TagService(providers))
        found, missing, split = _details(title="found"), _details(title="missing"), _details(title="split")
        states = await tagger.tag_tracks([found, missing, split])
        self.assertEqual(found.state, TrackProcessingState.SUCCESS)
        self.assertEqual(found.get_tag(keys.ALBUM), "Album")
        self.assertEqual(missing.state, TrackProcessingState.TAGS_NOT_FOUND)
        self.assertEqual(split.state, TrackProcessingState.CONFLICTING)
        self.assertNotIn(keys.YEAR, split)
        self.assertEqual(states[TrackProcessingState.SUCCESS], 1)
        self.assertEqual(len(tagger.conflicts), 1)
        self.assertTrue(tagger.has_conflicts)
        self.assertEqual(tagger.processed_count, 3)
        self.assertEqual(tagger.total_count, 3)
        self.assertTrue(tagger.is_finished)
        self.assertFalse(tagger.is_running)

    async def test_failure_marks_fault_and_batch_continues(self) -> None:
        service = _Service([_Provider({"ok": _details(album="A")})], failing_title="bad")
        tagger = AutoTagger(service)
        bad, ok = _details(title="bad"), _details(title="ok")
        with self.assertLogs("musiclib.auto_tagging", level="ERROR"):
            await tagger.tag_tracks([bad, ok])
        self.assertEqual(bad.state, TrackProcessingState.FAULT)
        self.assertEqual(ok.state, TrackProcessingState.SUCCESS)

    async def test_progress_is_published_in_order(self) -> None:
        tagger = AutoTagger(TagService([_Provider({})]))
        seen = []
        tagger.property_changed.subscribe(lambda sender, name: seen.append((name, getattr(sender, name))))
        await tagger.tag_tracks([_details(title="a"), _details(title="b")])
        self.assertEqual(
            seen,
            [
                ("total_count", 2),
                ("is_running", True),
                ("processed_count", 1),
                ("processed_count", 2),
                ("is_running", False),
                ("is_finished", True),
            ],
        )

    async def test_all_tracks_are_processing_before_the_first_finishes(self) -> None:
        first, second = _details(title="a"), _details(title="b")

        class _Watcher:
            name = "watcher"
            observed = []

            async def search_details(self, prototype):
                self.observed.append(second.state)
                return None

        await AutoTagger(TagService([_Watcher()])).tag_tracks([first, second])
        self.assertEqual(_Watcher.observed[0], TrackProcessingState.PROCESSING)

    async def test_cancellation_resets_untouched_tracks(self) -> None:
        cancel = asyncio.Event()

        class _Cancelling:
            name = "cancelling"

            async def search_details(self, prototype):
                cancel.set()
                return _details(album="A")

        tracks = [_details(title="a"), _details(title="b"), _details(title="c")]
        tagger = AutoTagger(TagService([_Cancelling()]))
        await tagger.tag_tracks(tracks, cancel)
        self.assertEqual(tracks[0].state, TrackProcessingState.SUCCESS)
        self.assertEqual([t.state for t in tracks[1:]], [TrackProcessingState.NONE] * 2)
        self.assertEqual(tagger.processed_count, 1)
        self.assertTrue(tagger.is_finished)

    async def test_merge_policy_union_keeps_existing_values(self) -> None:
        tagger = AutoTagger(
            TagService([_Provider({"t": _details(title="other", album="New")})]),
            TaggingSettings(merge_policy=MergePolicy.UNION),
        )
        track = _details(title="t", album="Old")
        await tagger.tag_tracks([track])
        self.assertEqual(track.get_tag(keys.ALBUM), "Old")
        self.assertEqual(track.get_tag(keys.TITLE), "t")

    async def test_success_is_saved_when_auto_save_is_on(self) -> None:
        store = _Store()
        tagger = AutoTagger(TagService([_Provider({"t": _details(album="New")})]), store=store)
        await tagger.tag_tracks([_details(title="t", file_path="/music/t.mp3")])
        self.assertEqual(len(store.writes), 1)
        path, fields = store.writes[0]
        self.assertEqual(path, Path("/music/t.mp3"))
        self.assertEqual(fields, {keys.TITLE: "t", keys.ALBUM: "New"})

    async def test_nothing_is_saved_without_auto_save(self) -> None:
        store = _Store()
        tagger = AutoTagger(
            TagService([_Provider({"t": _details(album="New")})]),
            TaggingSettings(auto_save=False),
            store,
        )
        track = _details(title="t", file_path="/music/t.mp3")
        await tagger.tag_tracks([track])
        self.assertEqual(store.writes, [])
        self.assertEqual(track.get_tag(keys.ALBUM), "New")

    async def test_failed_save_marks_fault_and_keeps_record(self) -> None:
        tagger = AutoTagger(TagService([_Provider({"t": _details(album="New")})]), store=_Store(fail=True))
        track = _details(title="t", file_path="/music/t.mp3")
        with self.assertLogs("musiclib.auto_tagging", level="ERROR"):
            await tagger.tag_tracks([track])
        self.assertEqual(track.state, TrackProcessingState.FAULT)
        self.assertNotIn(keys.ALBUM, track)


class TestConflictSettlement(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        providers = [
            _Provider({"t": _details(title="t", year=1999, album="A")}),
            _Provider({"t": _details(title="t", year=2001, album="B")}),
        ]
        self.store = _Store()
        self.tagger = AutoTagger(TagService(providers), store=self.store)
        self.track = _details(title="t", file_path="/music/t.mp3")
        await self.tagger.tag_tracks([self.track])
        self.store.writes.clear()

    def test_two_conflicts_for_one_track(self) -> None:
        self.assertEqual(self.track.state, TrackProcessingState.CONFLICTING)
        self.assertEqual([c.tag_name for c in self.tagger.conflicts], [keys.YEAR, keys.ALBUM])

    def test_track_succeeds_once_every_conflict_is_settled(self) -> None:
        year = next(c for c in self.tagger.conflicts if c.tag_name == keys.YEAR)
        album = next(c for c in self.tagger.conflicts if c.tag_name == keys.ALBUM)
        self.tagger.resolve(year, index=1)
        self.assertEqual(self.track.get_tag(keys.YEAR), 2001)
        self.assertEqual(self.track.state, TrackProcessingState.CONFLICTING)
        self.tagger.reject(album)
        self.assertEqual(self.track.state, TrackProcessingState.SUCCESS)
        self.assertFalse(self.tagger.has_conflicts)
        self.assertNotIn(keys.ALBUM, self.track)

    def test_rejecting_every_conflict_still_settles_the_track(self) -> None:
        for conflict in list(self.tagger.conflicts):
            self.tagger.reject(conflict)
        self.assertEqual(self.track.state, TrackProcessingState.SUCCESS)
        self.assertNotIn(keys.YEAR, self.track)
        self.assertNotIn(keys.ALBUM, self.track)
        self.assertEqual(self.track.get_tag(keys.TITLE), "t")

    def test_resolution_is_saved(self) -> None:
        album = next(c for c in self.tagger.conflicts if c.tag_name == keys.ALBUM)
        self.tagger.resolve(album, value="Custom")
        self.assertEqual(self.track.get_tag(keys.ALBUM), "Custom")
        self.assertEqual(self.store.writes[-1][1][keys.ALBUM], "Custom")

    def test_failed_save_keeps_conflict_open(self) -> None:
        self.store.fail = True
        album = next(c for c in self.tagger.conflicts if c.tag_name == keys.ALBUM)
        with self.assertRaises(MetadataWriteError):
            self.tagger.resolve(album, index=0)
        self.assertIn(album, self.tagger.conflicts)
        self.assertNotIn(keys.ALBUM, self.track)


if __name__ == "__main__":
    unittest.main()
