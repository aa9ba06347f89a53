import socket
import unittest
import urllib.error
from typing import Any, Optional
from unittest.mock import MagicMock, patch

from musiclib import meta_keys as keys
from musiclib.config import ProviderSettings
from musiclib.models import TrackDetails
from musiclib.providers import GeniusProvider, HttpClient, LastFmProvider, LrcLibProvider, build_providers
from musiclib.providers.base import DetailProvider, LyricsProvider
from musiclib.providers.genius import extract_lyrics
from musiclib.providers.http import build_url
from musiclib.tags import CoverTag, make_tag


def _details(**values) -> TrackDetails:
    return TrackDetails(make_tag(name, value) for name, value in values.items())


class _FakeClient:
    """Answers by URL prefix and records every request."""

    def __init__(self, json_by_url: Optional[dict] = None, text_by_url: Optional[dict] = None) -> None:
        self.json_by_url = json_by_url or {}
        self.text_by_url = text_by_url or {}
        self.requests: list[tuple[str, dict]] = []
        self.covers: list[str] = []

    async def get_json(self, url: str, params: Optional[dict] = None) -> Any:
        self.requests.append((url, dict(params or {})))
        answer = self.json_by_url.get(url)
        return answer(params) if callable(answer) else answer

    async def get_text(self, url: str, params: Optional[dict] = None) -> Optional[str]:
        self.requests.append((url, dict(params or {})))
        return self.text_by_url.get(url)

    async def download_cover(self, url: str) -> Optional[CoverTag]:
        self.covers.append(url)
        return CoverTag.from_bytes(b"img", uri=url)


class TestLrcLib(unittest.IsolatedAsyncioTestCase):
    async def test_prefers_synced_lyrics_of_the_best_match(self) -> None:
        client = _FakeClient(
            {
                "https://lrclib.test/api/search": [
                    {"artistName": "Other", "trackName": "Unrelated", "plainLyrics": "wrong"},
                    {"artistName": "Band", "trackName": "Song", "plainLyrics": "plain", "syncedLyrics": "[00:01] synced"},
                    {"artistName": "Band", "trackName": "Song", "plainLyrics": ""},
                ]
            }
        )
        provider = LrcLibProvider(client, "https://lrclib.test/")
        lyrics = await provider.search_lyrics(_details(title="Song", performers=("Band",)))
        self.assertEqual(lyrics, "[00:01] synced")
        self.assertEqual(client.requests[0][1], {"track_name": "Song", "artist_name": "Band"})

    async def test_no_results(self) -> None:
        provider = LrcLibProvider(_FakeClient({"https://lrclib.net/api/search": []}))
        self.assertIsNone(await provider.search_lyrics(_details(title="Song")))
        provider = LrcLibProvider(_FakeClient())
        self.assertIsNone(await provider.search_lyrics(_details(title="Song")))


class TestLastFm(unittest.IsolatedAsyncioTestCase):
    def _client(self) -> _FakeClient:
        def answer(params: dict) -> dict:
            if params["method"] == "track.getinfo":
                return {
                    "track": {
                        "name": "Song",
                        "playcount": "1234",
                        "artist": {"name": "Band feat. Guest"},
                        "album": {"title": "Record"},
                        "toptags": {"tag": [{"name": "indie rock"}, {"name": "pop"}, {"name": "uk"}, {"name": "extra"}]},
                    }
                }
            return {
                "album": {
                    "tracks": {"track": [{"name": "Intro"}, {"name": "Song"}, {"name": "Outro"}]},
                    "image": [{"size": "large", "#text": "http://img/l.jpg"}, {"size": "mega", "#text": "http://img/m.jpg"}],
                    "wiki": {"published": "01 Jan 2009, 00:00"},
                }
            }

        return _FakeClient({"https://ws.audioscrobbler.com/2.0/": answer})

    async def test_track_and_album_details(self) -> None:
        client = self._client()
        details = await LastFmProvider(client, "key").search_details(_details(title="Song", performers=("Band",)))
        self.assertEqual(details.get_tag(keys.TITLE), "Song")
        self.assertEqual(details.get_tag(keys.PERFORMERS), ("Band", "Guest"))
        self.assertEqual(details.get_tag(keys.ALBUM), "Record")
        self.assertEqual(details.get_tag(keys.GENRES), ("Indie Rock", "Pop", "Uk"))
        self.assertEqual(details.get_tag(keys.TRACK), 2)
        self.assertEqual(details.get_tag(keys.TRACK_COUNT), 3)
        self.assertEqual(details.get_tag(keys.YEAR), 2009)
        self.assertEqual(client.covers, ["http://img/m.jpg"])
        self.assertEqual(details.cover_uri, "http://img/m.jpg")

    async def test_unknown_track_is_not_looked_up(self) -> None:
        client = self._client()
        self.assertIsNone(await LastFmProvider(client, "key").search_details(_details(title="Song")))
        self.assertEqual(client.requests, [])

    async def test_api_error_gives_nothing(self) -> None:
        client = _FakeClient({"https://ws.audioscrobbler.com/2.0/": {"error": 6, "message": "Track not found"}})
        self.assertIsNone(await LastFmProvider(client, "key").search_details(_details(title="S", performers=("B",))))

    async def test_listeners_count_is_cached(self) -> None:
        client = self._client()
        provider = LastFmProvider(client, "key")
        track = _details(title="Song", performers=("Band",))
        self.assertEqual(await provider.listeners_count(track), 1234)
        self.assertEqual(await provider.listeners_count(track), 1234)
        self.assertEqual(len(client.requests), 1)

    def test_requires_api_key(self) -> None:
        with self.assertRaises(ValueError):
            LastFmProvider(_FakeClient(), "")


class TestGenius(unittest.IsolatedAsyncioTestCase):
    async def test_song_details_and_lyrics(self) -> None:
        client = _FakeClient(
            {
                "https://api.genius.com/search": {
                    "response": {"hits": [{"result": {"id": 42, "url": "https://genius.test/song"}}]}
                },
                "https://api.genius.com/songs/42": {
                    "response": {
                        "song": {
                            "title": "Song",
                            "artist_names": "Band, Guest",
                            "release_date": "2015-03-02",
                            "description": {"plain": "About the song"},
                            "album": {"name": "Record", "cover_art_url": "https://img/340x340x1.jpg"},
                        }
                    }
                },
            },
            {"https://genius.test/song": '<div data-lyrics-container="true">Line one<br/>Line  two</div>'},
        )
        details = await GeniusProvider(client, "token").search_details(_details(title="Song", performers=("Band",)))
        self.assertEqual(details.get_tag(keys.TITLE), "Song")
        self.assertEqual(details.get_tag(keys.PERFORMERS), ("Band", "Guest"))
        self.assertEqual(details.get_tag(keys.YEAR), 2015)
        self.assertEqual(details.get_tag(keys.DESCRIPTION), "About the song")
        self.assertEqual(details.get_tag(keys.LYRICS), "Line one\nLine two")
        self.assertEqual(client.covers, ["https://img/340x340x1.jpg"])
        self.assertEqual(client.requests[0][1]["q"], "Band - Song")

    async def test_cover_url_is_upscaled(self) -> None:
        client = _FakeClient(
            {
                "https://api.genius.com/search": {"response": {"hits": [{"result": {"id": 1}}]}},
                "https://api.genius.com/songs/1": {
                    "response": {"song": {"title": "T", "album": {"cover_art_url": "https://img/a.340x340x1.1000x1000x1.jpg"}}}
                },
            }
        )
        await GeniusProvider(client, "token").search_details(_details(title="T"))
        self.assertEqual(client.covers, ["https://img/a.1000x1000x1.1000x1000x1.jpg"])

    async def test_no_hits(self) -> None:
        client = _FakeClient({"https://api.genius.com/search": {"response": {"hits": []}}})
        self.assertIsNone(await GeniusProvider(client, "token").search_details(_details(title="T")))

    def test_extract_lyrics(self) -> None:
        page = (
            '<div class="x" data-lyrics-container="true">[Verse]<br>Hello &amp; <i>bye</i></div>'
            '<p>ad</p><div data-lyrics-container="true">Again</div>'
        )
        self.assertEqual(extract_lyrics(page), "[Verse]\nHello & bye\nAgain")
        self.assertIsNone(extract_lyrics("<html></html>"))


class TestHttpClient(unittest.TestCase):
    def _response(self, body: bytes, content_type: str = "application/json") -> MagicMock:
        response = MagicMock()
        response.read.return_value = body
        response.headers.get_content_type.return_value = content_type
        response.__enter__.return_value = response
        return response

    def test_build_url_drops_empty_params(self) -> None:
        self.assertEqual(build_url("http://x/api", {"a": 1, "b": None}), "http://x/api?a=1")
        self.assertEqual(build_url("http://x/api?k=v", {"a": "b c"}), "http://x/api?k=v&a=b+c")
        self.assertEqual(build_url("http://x/api"), "http://x/api")

    def test_transient_errors_are_retried(self) -> None:
        client = HttpClient(ProviderSettings(network_retries=2, network_retry_backoff_seconds=0))
        with patch(
            "musiclib.providers.http.urllib.request.urlopen",
            side_effect=[socket.gaierror("dns"), urllib.error.URLError("down"), self._response(b'{"ok": true}')],
        ) as urlopen:
            self.assertEqual(client.fetch_json("http://x/api"), {"ok": True})
        self.assertEqual(urlopen.call_count, 3)

    def test_gives_up_after_retries(self) -> None:
        client = HttpClient(ProviderSettings(network_retries=1, network_retry_backoff_seconds=0))
        with patch("musiclib.providers.http.urllib.request.urlopen", side_effect=TimeoutError("slow")) as urlopen:
            with self.assertLogs("musiclib.providers.http", level="WARNING"):
                self.assertIsNone(client.fetch_text("http://x/page"))
        self.assertEqual(urlopen.call_count, 2)

    def test_http_error_is_not_retried(self) -> None:
        client = HttpClient(ProviderSettings(network_retries=3, network_retry_backoff_seconds=0))
        error = urllib.error.HTTPError("http://x", 404, "Not Found", {}, None)
        with patch("musiclib.providers.http.urllib.request.urlopen", side_effect=error) as urlopen:
            self.assertIsNone(client.fetch_json("http://x"))
        self.assertEqual(urlopen.call_count, 1)

    def test_other_errors_propagate(self) -> None:
        client = HttpClient(ProviderSettings(network_retries=3))
        with patch("musiclib.providers.http.urllib.request.urlopen", side_effect=ValueError("bad url")):
            with self.assertRaises(ValueError):
                client.fetch_bytes("nonsense")

    def test_invalid_json(self) -> None:
        client = HttpClient(ProviderSettings(network_retries=0))
        with patch("musiclib.providers.http.urllib.request.urlopen", return_value=self._response(b"<html>")):
            with self.assertLogs("musiclib.providers.http", level="WARNING"):
                self.assertIsNone(client.fetch_json("http://x"))


class TestHttpClientAsync(unittest.IsolatedAsyncioTestCase):
    async def test_download_cover(self) -> None:
        client = HttpClient(ProviderSettings(network_retries=0))
        response = MagicMock()
        response.read.return_value = b"\x89PNG"
        response.headers.get_content_type.return_value = "image/png"
        response.__enter__.return_value = response
        with patch("musiclib.providers.http.urllib.request.urlopen", return_value=response):
            cover = await client.download_cover("http://img/c.png")
        self.assertEqual(cover.value.mime, "image/png")
        self.assertEqual(cover.cover_uri, "http://img/c.png")


class TestBuildProviders(unittest.TestCase):
    def test_enabled_by_credentials(self) -> None:
        client = _FakeClient()
        details, lyrics = build_providers(
            ProviderSettings(lastfm_api_key="k", genius_token="t"), client  # type: ignore[arg-type]
        )
        self.assertEqual([p.name for p in details], ["lastfm", "genius"])
        self.assertEqual([p.name for p in lyrics], ["lrclib"])
        self.assertTrue(all(isinstance(p, DetailProvider) for p in details))
        self.assertIsInstance(lyrics[0], LyricsProvider)

    def test_nothing_configured(self) -> None:
        with self.assertLogs("musiclib.providers", level="INFO"):
            details, lyrics = build_providers(ProviderSettings(lrclib_enabled=False), _FakeClient())  # type: ignore[arg-type]
        self.assertEqual((details, lyrics), ([], []))


if __name__ == "__main__":
    unittest.main()
