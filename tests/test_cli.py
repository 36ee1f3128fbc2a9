"""Tests for CLI parsing and dispatch."""

from __future__ import annotations

import json
from pathlib import Path
import sys
import threading

import pytest

from beat_coach import catalog, cli
from beat_coach.catalog import PlaylistInfo
from beat_coach.config import SPOTIFY_TOKEN_ENV, AppConfig
from beat_coach.errors import NotFoundError, ValidationError
from beat_coach.metadata import TrackMeta
from beat_coach.playlist import Track
from beat_coach.segments import Segment
from beat_coach.storage import MemoryKeyValueStore, WorkoutStorage, segments_key

PLAYLIST = PlaylistInfo(
    id="pl",
    name="Ride",
    tracks=(
        Track(id="t1", name="One", duration_ms=180_000),
        Track(id="t2", name="Two", duration_ms=200_000),
    ),
)


@pytest.fixture
def backend(monkeypatch, tmp_path: Path) -> MemoryKeyValueStore:
    store = MemoryKeyValueStore()
    WorkoutStorage(store).save_segments("pl", "t1", [Segment(0, 60_000, id="a")])
    monkeypatch.setattr(cli, "init_logging", lambda: tmp_path / "app.log")
    monkeypatch.setattr(cli, "load_config", AppConfig)
    monkeypatch.setattr(cli, "open_backend", lambda: store)
    monkeypatch.setattr(cli, "load_playlist", lambda source: PLAYLIST)
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    monkeypatch.setattr(threading, "excepthook", threading.excepthook)
    return store


def test_parse_play_arguments() -> None:
    args = cli.build_parser().parse_args(
        ["play", "~/music", "--backend", "spotify", "--all-tracks"]
    )
    assert args.command == "play"
    assert args.source == "~/music"
    assert args.backend == "spotify"
    assert args.all_tracks is True


def test_parse_time_arg() -> None:
    assert cli.parse_time_arg("1:30") == 90_000
    assert cli.parse_time_arg("2500") == 2_500
    with pytest.raises(ValidationError):
        cli.parse_time_arg("soon")


def test_open_workspace_loads_stored_segments(backend: MemoryKeyValueStore) -> None:
    workspace = cli.open_workspace("anything", AppConfig(), backend)
    assert [s.id for s in workspace.store.list_segments("t1")] == ["a"]
    assert workspace.track("t2").name == "Two"
    with pytest.raises(NotFoundError):
        workspace.track("t9")


def test_split_command_persists(backend: MemoryKeyValueStore, capsys) -> None:
    assert cli.main(["split", "src", "t1", "0:10"]) == 0
    saved = backend.get(segments_key("pl", "t1"))
    assert [item["endTime"] for item in saved] == [10_000, 60_000]
    assert "Split into" in capsys.readouterr().out


def test_bpm_command_reports_unknown_track(
    backend: MemoryKeyValueStore, capsys
) -> None:
    assert cli.main(["bpm", "src", "t9", "120"]) == 1
    assert "error:" in capsys.readouterr().err


def test_segments_command_lists(backend: MemoryKeyValueStore, capsys) -> None:
    assert cli.main(["segments", "src", "t1"]) == 0
    out = capsys.readouterr().out
    assert "One (3:00, 128 BPM)" in out
    assert "0:00-1:00" in out


def test_export_then_import(
    backend: MemoryKeyValueStore, tmp_path: Path, capsys
) -> None:
    out_file = tmp_path / "workout.json"
    assert cli.main(["export", "src", str(out_file)]) == 0
    document = json.loads(out_file.read_text(encoding="utf-8"))
    assert list(document["tracks"]) == ["pl_t1"]

    document["tracks"]["pl_t2"] = {
        "segments": [
            {
                "id": "z",
                "startTime": 0,
                "endTime": 15_000,
                "title": "Sprint",
                "type": "JUMPS",
                "intensity": -1,
            }
        ],
        "bpm": {"tempo": 150, "isManual": True},
    }
    document["tracks"]["pl_t3"] = {"segments": []}
    out_file.write_text(json.dumps(document), encoding="utf-8")
    assert cli.main(["import", "src", str(out_file)]) == 0
    out = capsys.readouterr().out
    assert "Imported 2 tracks" in out
    assert "skipped pl_t3" in out
    assert backend.get(segments_key("pl", "t2"))[0]["id"] == "z"


def test_import_rejects_bad_file(backend: MemoryKeyValueStore, tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("[]", encoding="utf-8")
    assert cli.main(["import", "src", str(bad)]) == 1


def test_load_playlist_from_directory(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(
        catalog, "get_track_meta", lambda path: TrackMeta(None, None, 1000)
    )
    (tmp_path / "song.mp3").write_text("x", encoding="utf-8")
    playlist = cli.load_playlist(str(tmp_path))
    assert [t.name for t in playlist.tracks] == ["song"]


def test_load_playlist_needs_token_for_remote(monkeypatch) -> None:
    monkeypatch.delenv(SPOTIFY_TOKEN_ENV, raising=False)
    with pytest.raises(NotFoundError):
        cli.load_playlist("37i9dQZF1DXcBWIGoYBM5M")


def test_device_factory(monkeypatch) -> None:
    monkeypatch.delenv(SPOTIFY_TOKEN_ENV, raising=False)
    with pytest.raises(ValidationError):
        cli.device_factory("spotify", AppConfig())
    factory = cli.device_factory("vlc", AppConfig())
    device = factory(None)  # type: ignore[arg-type]
    assert type(device).__name__ == "VlcDevice"
