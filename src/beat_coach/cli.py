"""Command-line interface for Beat Coach."""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
import logging
from pathlib import Path
import sqlite3
import sys
import threading
from types import TracebackType
from typing import Callable, Iterable, Optional, Tuple

from beat_coach.catalog import LocalCatalog, PlaylistInfo
from beat_coach.config import (
    AppConfig,
    BACKENDS,
    get_spotify_token,
    load_config,
    save_config,
)
from beat_coach.device import RemoteDevice
from beat_coach.errors import BeatCoachError, NotFoundError, ValidationError
from beat_coach.kv_store_sqlite import SQLiteKeyValueStore
from beat_coach.logging_setup import init_logging
from beat_coach.playlist import Track
from beat_coach.segment_editor import format_clock, parse_clock
from beat_coach.segment_store import SegmentStore
from beat_coach.segments import intensity_label
from beat_coach.storage import KeyValueStore, MemoryKeyValueStore, WorkoutStorage
from beat_coach.tempo import TempoBook
from beat_coach.timers import TimerHost
from beat_coach.workout_io import (
    export_workout,
    import_workout,
    read_document,
    write_document,
)

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    playlist: PlaylistInfo
    store: SegmentStore
    tempos: TempoBook
    storage: WorkoutStorage

    def track(self, track_id: str) -> Track:
        for track in self.playlist.tracks:
            if track.id == track_id:
                return track
        raise NotFoundError(f"Track {track_id} is not in playlist {self.playlist.id}")


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="beat-coach", description="Beat-synced workout player"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    play = sub.add_parser("play", help="Play a playlist's workouts")
    play.add_argument("source", help="Music directory or Spotify playlist id")
    play.add_argument("--backend", choices=sorted(BACKENDS), default=None)
    play.add_argument(
        "--all-tracks",
        action="store_true",
        help="Also play tracks without segments",
    )

    segments = sub.add_parser("segments", help="List a track's segments")
    segments.add_argument("source")
    segments.add_argument("track_id")

    split = sub.add_parser("split", help="Split the segment containing a time")
    split.add_argument("source")
    split.add_argument("track_id")
    split.add_argument("at", help="Time as M:SS or milliseconds")

    bpm = sub.add_parser("bpm", help="Set a track's tempo")
    bpm.add_argument("source")
    bpm.add_argument("track_id")
    bpm.add_argument("tempo", type=float)

    export = sub.add_parser("export", help="Export workouts to a JSON file")
    export.add_argument("source")
    export.add_argument("file", type=Path)

    imp = sub.add_parser("import", help="Import workouts from a JSON file")
    imp.add_argument("source")
    imp.add_argument("file", type=Path)
    return parser


def parse_time_arg(text: str) -> int:
    if ":" in text:
        return parse_clock(text)
    try:
        return int(text)
    except ValueError as exc:
        raise ValidationError(f"Expected M:SS or milliseconds, got {text!r}") from exc


def open_backend() -> KeyValueStore:
    try:
        return SQLiteKeyValueStore()
    except (sqlite3.Error, OSError) as exc:
        logger.error("Workout database unavailable (%s); using memory", exc)
        return MemoryKeyValueStore()


def load_playlist(source: str) -> PlaylistInfo:
    path = Path(source).expanduser()
    if path.is_dir():
        return LocalCatalog(path).fetch_playlist()
    token = get_spotify_token()
    if token is None:
        raise NotFoundError(
            f"{source} is not a directory and no Spotify token is configured"
        )
    from beat_coach.spotify import SpotifyCatalog, SpotifyClient

    return SpotifyCatalog(SpotifyClient(token)).fetch_playlist(source)


def open_workspace(
    source: str,
    config: AppConfig,
    backend: Optional[KeyValueStore] = None,
) -> Workspace:
    playlist = load_playlist(source)
    store = SegmentStore(playlist.id)
    tempos = TempoBook(float(config.default_bpm))
    for track in playlist.tracks:
        store.register_track(track.id, track.duration_ms)
    storage = WorkoutStorage(backend if backend is not None else open_backend())
    storage.load_into(store, tempos, [track.id for track in playlist.tracks])
    return Workspace(playlist=playlist, store=store, tempos=tempos, storage=storage)


def device_factory(
    backend: str, config: AppConfig
) -> Callable[[TimerHost], RemoteDevice]:
    if backend == "spotify":
        token = get_spotify_token()
        if token is None:
            raise ValidationError("Spotify backend needs BEAT_COACH_SPOTIFY_TOKEN")
        from beat_coach.spotify import SpotifyClient, SpotifyConnectDevice

        return lambda timers: SpotifyConnectDevice(
            SpotifyClient(token), timers, device_name=config.device_name
        )
    from beat_coach.player_vlc import VlcDevice

    return lambda timers: VlcDevice()


def cmd_play(args: argparse.Namespace, config: AppConfig) -> int:
    backend = args.backend or config.backend
    factory = device_factory(backend, config)
    workspace = open_workspace(args.source, config)
    save_config(replace(config, backend=backend, last_playlist_id=workspace.playlist.id))
    try:
        from beat_coach.tui import run_tui
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return run_tui(
        workspace.playlist,
        factory,
        workspace.storage,
        config=config,
        all_tracks=args.all_tracks,
    )


def cmd_segments(args: argparse.Namespace, config: AppConfig) -> int:
    workspace = open_workspace(args.source, config)
    track = workspace.track(args.track_id)
    record = workspace.tempos.get(track.id, track.name)
    print(f"{track.name} ({format_clock(track.duration_ms)}, {record.tempo:.0f} BPM)")
    for segment in workspace.store.list_segments(track.id):
        print(
            f"  {format_clock(segment.start_time)}-{format_clock(segment.end_time)}  "
            f"{segment.type.label:<4}  {intensity_label(segment.intensity):>4}  "
            f"{segment.title}  [{segment.id}]"
        )
    return 0


def cmd_split(args: argparse.Namespace, config: AppConfig) -> int:
    workspace = open_workspace(args.source, config)
    track = workspace.track(args.track_id)
    left, right = workspace.store.split(track.id, parse_time_arg(args.at))
    workspace.storage.flush_track(workspace.store, workspace.tempos, track.id)
    print(f"Split into {left.id} and {right.id}")
    return 0


def cmd_bpm(args: argparse.Namespace, config: AppConfig) -> int:
    workspace = open_workspace(args.source, config)
    track = workspace.track(args.track_id)
    record = workspace.tempos.set_manual(track.id, args.tempo)
    workspace.storage.flush_track(workspace.store, workspace.tempos, track.id)
    print(f"{track.name}: {record.tempo:.0f} BPM")
    return 0


def cmd_export(args: argparse.Namespace, config: AppConfig) -> int:
    workspace = open_workspace(args.source, config)
    document = export_workout(
        workspace.playlist.id,
        [track.id for track in workspace.playlist.tracks],
        workspace.store,
        workspace.tempos,
    )
    write_document(args.file, document)
    print(f"Exported {len(document['tracks'])} tracks to {args.file}")
    return 0


def cmd_import(args: argparse.Namespace, config: AppConfig) -> int:
    workspace = open_workspace(args.source, config)
    report = import_workout(
        read_document(args.file),
        workspace.store,
        workspace.tempos,
        known_track_ids={track.id for track in workspace.playlist.tracks},
    )
    for track_id in report.applied:
        workspace.storage.flush_track(workspace.store, workspace.tempos, track_id)
    print(f"Imported {len(report.applied)} tracks")
    for key, reason in report.skipped:
        print(f"  skipped {key}: {reason}")
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace, AppConfig], int]] = {
    "play": cmd_play,
    "segments": cmd_segments,
    "split": cmd_split,
    "bpm": cmd_bpm,
    "export": cmd_export,
    "import": cmd_import,
}


def _install_excepthooks() -> None:
    def excepthook(exc_type, exc, tb) -> None:
        logger.exception("Uncaught exception", exc_info=(exc_type, exc, tb))

    sys.excepthook = excepthook

    def thread_hook(args: threading.ExceptHookArgs) -> None:
        exc_value = args.exc_value or RuntimeError("unknown")
        exc_info: Tuple[type[BaseException], BaseException, Optional[TracebackType]] = (
            args.exc_type,
            exc_value,
            args.exc_traceback,
        )
        thread_name = args.thread.name if args.thread else "thread"
        logger.exception("Thread exception in %s", thread_name, exc_info=exc_info)

    threading.excepthook = thread_hook


def main(argv: Optional[Iterable[str]] = None) -> int:
    """Entry point for the CLI."""
    init_logging()
    logger.info("App start")
    _install_excepthooks()

    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    config = load_config()
    try:
        exit_code = COMMANDS[args.command](args, config)
    except BeatCoachError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        exit_code = 1
    logger.info("App exit code=%s", exit_code)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
