from __future__ import annotations

import asyncio
import json
import logging
import socket
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Callable, Mapping, Optional, TypeVar

from ..config import ProviderSettings
from ..tags import CoverTag

logger = logging.getLogger(__name__)

R = TypeVar("R")


class HttpClient:
    """Minimal blocking JSON/text client; async wrappers run it in a worker thread."""

    def __init__(self, settings: Optional[ProviderSettings] = None) -> None:
        self.settings = settings or ProviderSettings()
        self.useragent = self.settings.useragent
        self.timeout = self.settings.request_timeout_seconds

    async def get_json(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Any]:
        return await asyncio.to_thread(self.fetch_json, url, params)

    async def get_text(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        return await asyncio.to_thread(self.fetch_text, url, params)

    async def download_cover(self, url: str) -> Optional[CoverTag]:
        payload = await asyncio.to_thread(self.fetch_bytes, url)
        if payload is None:
            return None
        data, mime = payload
        if not data:
            return None
        return CoverTag.from_bytes(data, mime=mime or "image/jpeg", uri=url)

    def fetch_json(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Any]:
        payload = self.fetch_bytes(url, params)
        if payload is None:
            return None
        try:
            return json.loads(payload[0].decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Invalid JSON from %s: %s", url, exc)
            return None

    def fetch_text(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        payload = self.fetch_bytes(url, params)
        if payload is None:
            return None
        return payload[0].decode("utf-8", errors="replace")

    def fetch_bytes(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Optional[tuple[bytes, str]]:
        full_url = build_url(url, params)
        return self._run_with_retries(lambda: self._request(full_url), label=full_url)

    def _request(self, url: str) -> Optional[tuple[bytes, str]]:
        req = urllib.request.Request(url, headers={"User-Agent": self.useragent})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return resp.read(), resp.headers.get_content_type()
        except urllib.error.HTTPError as exc:
            logger.debug("HTTP error %s for %s: %s", exc.code, url, exc)
        return None

    def _run_with_retries(self, fn: Callable[[], R], *, label: str) -> Optional[R]:
        retries = int(self.settings.network_retries or 0)
        backoff = float(self.settings.network_retry_backoff_seconds or 0.0)
        attempts = max(1, 1 + retries)
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except Exception as exc:
                if not self._is_transient_network_error(exc):
                    raise
                last_exc = exc
                if attempt >= attempts:
                    break
                sleep_for = max(0.0, backoff) * (2 ** (attempt - 1))
                if sleep_for:
                    time.sleep(sleep_for)
        if last_exc:
            logger.warning("Request to %s failed: %s", label, last_exc)
        return None

    @staticmethod
    def _is_transient_network_error(exc: Exception) -> bool:
        return isinstance(exc, (socket.gaierror, urllib.error.URLError, TimeoutError, ConnectionError))


def build_url(url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    if not params:
        return url
    query = urllib.parse.urlencode({k: v for k, v in params.items() if v is not None})
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"
