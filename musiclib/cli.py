from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

from . import meta_keys as keys
from .auto_tagging import AutoTagger
from .config import Settings, find_config
from .conflicts import TaggingConflict
from .library import MediaLibrary
from .models import ProcessingError, TrackDetails
from .observable import CollectionChange
from .providers import build_providers
from .tag_service import TagService
from .tagging import MetadataStore, TagWriter, read_metadata, restore_cover

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",  # Cyan
    logging.INFO: "\033[37m",  # Light gray
    logging.WARNING: "\033[33m",  # Yellow
    logging.ERROR: "\033[31m",  # Red
    logging.CRITICAL: "\033[35m",  # Magenta
}


class ShortPathFormatter(logging.Formatter):
    def __init__(self, fmt: str, roots: list[Path]) -> None:
        super().__init__(fmt)
        self.roots = [str(root) for root in roots if root]

    def _shorten(self, message: str) -> str:
        for root in self.roots:
            if not message:
                break
            message = message.replace(f"{root}/", "")
            message = message.replace(root, "")
        return message

    def format(self, record: logging.LogRecord) -> str:
        return self._shorten(super().format(record))


class ColorFormatter(ShortPathFormatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


class WarningBufferHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.records: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover
            msg = record.getMessage()
        self.records.append(msg)


def setup_logging(level_name: str, roots: list[Path], color: bool) -> WarningBufferHandler:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level_name.upper(), logging.INFO))

    handler = logging.StreamHandler()
    formatter_cls = ColorFormatter if color else ShortPathFormatter
    handler.setFormatter(formatter_cls(LOG_FORMAT, roots))
    root_logger.addHandler(handler)

    warn_buffer = WarningBufferHandler()
    warn_buffer.setFormatter(ShortPathFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(warn_buffer)
    return warn_buffer


def load_settings(explicit: Optional[Path]) -> Settings:
    try:
        config_path = find_config(explicit)
    except FileNotFoundError:
        logger.info("No config.yaml found, using defaults")
        return Settings()
    return Settings.load(config_path)


def resolve_conflicts_interactively(tagger: AutoTagger, input_fn: Callable[[str], str] = input) -> None:
    for conflict in list(tagger.conflicts):
        _print_conflict(conflict)
        answer = input_fn("Choose a number, type '=value' for a custom value, or press Enter to reject: ").strip()
        try:
            if not answer:
                tagger.reject(conflict)
            elif answer.startswith("="):
                tagger.resolve(conflict, value=answer[1:].strip())
            elif answer.isdigit() and 1 <= int(answer) <= len(conflict.candidates):
                tagger.resolve(conflict, index=int(answer) - 1)
            else:
                print("Invalid choice, leaving conflict unresolved.")
        except (OSError, ValueError) as exc:
            logger.error("Could not resolve %s for %s: %s", conflict.tag_name, conflict.track.formed_track_name, exc)


def _print_conflict(conflict: TaggingConflict) -> None:
    print(f"\n{conflict.track.formed_track_name}: {conflict.tag_name}")
    for number, candidate in enumerate(conflict.candidates, start=1):
        text = candidate.display().replace("\n", " ")
        print(f"  {number}. {text[:120]}")


def _print_tracks(tracks: Sequence[TrackDetails], cover_store: Optional[MetadataStore] = None) -> None:
    for track in tracks:
        print(f"{track.formed_track_name}  [{track.file_path}]")
        if cover_store is None:
            continue
        restore_cover(track, cover_store)
        cover = track.get_value(keys.COVER)
        if cover is not None:
            print(f"  cover: {cover.mime or 'unknown type'}, {len(cover.data)} bytes")


def _read_files(files: list[Path], store: MetadataStore, settings: Settings) -> list[TrackDetails]:
    tracks = []
    for path in files:
        try:
            tracks.append(read_metadata(path.resolve(), store, settings.library.slash_performers))
        except ProcessingError as exc:
            logger.warning("Skipping %s: %s", path, exc)
    return tracks


async def _run_tag(settings: Settings, files: list[Path], interactive: bool) -> None:
    store = TagWriter()
    if files:
        tracks = _read_files(files, store, settings)
    else:
        library = MediaLibrary(settings.library, store)
        await library.scan()
        tracks = [*library.all_tracks, *library.unsorted.tracks]
    detail_providers, lyrics_providers = build_providers(settings.providers)
    service = TagService(detail_providers, lyrics_providers, parallel=settings.tagging.parallel_providers)
    tagger = AutoTagger(service, settings.tagging, store)
    await tagger.tag_tracks(tracks)
    if not tagger.has_conflicts:
        return
    if interactive:
        resolve_conflicts_interactively(tagger)
    else:
        for conflict in tagger.conflicts:
            logger.info(
                "Unresolved %s for %s (%d candidates)",
                conflict.tag_name,
                conflict.track.formed_track_name,
                len(conflict.candidates),
            )


async def _run_watch(settings: Settings) -> None:
    library = MediaLibrary(settings.library)
    await library.scan()

    def log_change(_sender: object, change: CollectionChange) -> None:
        for track in change.new_items:
            logger.info("Track added: %s", track.formed_track_name)
        for track in change.old_items:
            logger.info("Track removed: %s", track.formed_track_name)

    library.all_tracks.collection_changed.subscribe(log_change)
    library.unsorted.tracks.collection_changed.subscribe(log_change)
    library.watch()
    try:
        while True:
            await asyncio.sleep(3600)
    except (asyncio.CancelledError, KeyboardInterrupt):
        logger.debug("Watcher stopping")
    finally:
        library.close()


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Music library manager")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    parser.add_argument("--no-color", action="store_true", help="Disable coloured log output")

    subparsers = parser.add_subparsers(dest="command", required=True)
    scan_parser = subparsers.add_parser("scan", help="List the tracks of all tracked folders")
    scan_parser.add_argument("--covers", action="store_true", help="Also load and describe cover images")
    tag_parser = subparsers.add_parser("tag", help="Tag tracks with the configured providers")
    tag_parser.add_argument("files", nargs="*", type=Path, help="Files to tag (default: whole library)")
    tag_parser.add_argument(
        "--interactive",
        action="store_true",
        help="Ask how to resolve each conflict after tagging",
    )
    subparsers.add_parser("watch", help="Keep the library in sync with file-system changes")
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    display_roots = [*settings.library.tracked_paths, settings.library.unsorted_path]
    warn_buffer = setup_logging(args.log_level, display_roots, color=sys.stdout.isatty() and not args.no_color)

    try:
        match args.command:
            case "scan":
                library = MediaLibrary(settings.library)
                asyncio.run(library.scan())
                _print_tracks(
                    [*library.all_tracks, *library.unsorted.tracks],
                    library.store if args.covers else None,
                )
                library.close()
            case "tag":
                asyncio.run(_run_tag(settings, list(args.files), args.interactive))
            case "watch":
                try:
                    asyncio.run(_run_watch(settings))
                except KeyboardInterrupt:
                    pass
            case _:
                parser.error("Unknown command")
    finally:
        if warn_buffer.records:
            print("\n\033[33mWarnings/Errors summary:\033[0m")
            for line in warn_buffer.records:
                print(f" - {line}")


if __name__ == "__main__":
    main()
