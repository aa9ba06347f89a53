from __future__ import annotations

import enum
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_SLASH_PERFORMERS = [
    "AC/DC",
    "A/T/O/S",
    "Au/Ra",
    "Bremer/McCoy",
    "DOV/S",
    "IX/ON",
    "K/DA",
    "22/7",
    "LOONA 1/3",
    "Phantom/Ghost",
    "Smith/Kotzen",
]


class MergePolicy(str, enum.Enum):
    REPLACE = "replace"
    UNION = "union"


def _expand(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


class LibrarySettings(BaseModel):
    tracked_paths: List[Path] = Field(default_factory=lambda: [Path("~/Music")], validate_default=True)
    unsorted_path: Path = Field(default=Path("./Unsorted"), validate_default=True)
    include_extensions: List[str] = Field(default_factory=lambda: [".mp3", ".flac", ".m4a"])
    blacklisted_paths: List[str] = Field(default_factory=list)
    slash_performers: List[str] = Field(default_factory=lambda: list(DEFAULT_SLASH_PERFORMERS))

    @field_validator("tracked_paths", mode="before")
    @classmethod
    def _expand_tracked(cls, values: List[str | Path]) -> List[Path]:
        return [_expand(v) for v in values]

    @field_validator("unsorted_path", mode="before")
    @classmethod
    def _expand_unsorted(cls, value: str | Path) -> Path:
        return _expand(value)


class TaggingSettings(BaseModel):
    merge_policy: MergePolicy = MergePolicy.REPLACE
    auto_save: bool = True
    parallel_providers: bool = False


class ProviderSettings(BaseModel):
    genius_token: Optional[str] = None
    lastfm_api_key: Optional[str] = None
    lrclib_enabled: bool = True
    lrclib_url: str = "https://lrclib.net"
    useragent: str = "musiclib/0.1 (+https://example.com)"
    request_timeout_seconds: float = 10.0
    network_retries: int = 1
    network_retry_backoff_seconds: float = 1.0


class Settings(BaseModel):
    library: LibrarySettings = LibrarySettings()
    providers: ProviderSettings = ProviderSettings()
    tagging: TaggingSettings = TaggingSettings()

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        return cls.model_validate(raw or {})

    def save(self, path: Path) -> None:
        with path.open("w", encoding="utf-8") as fh:
            yaml.safe_dump(self.model_dump(mode="json"), fh, sort_keys=False, allow_unicode=True)


def find_config(explicit_path: Optional[Path]) -> Path:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Could not find config.yaml – pass --config explicitly.")
