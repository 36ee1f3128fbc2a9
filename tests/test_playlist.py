"""Tests for the playlist timeline and sequencer."""

from __future__ import annotations

import asyncio
from typing import Optional

from beat_coach.playlist import (
    Playlist,
    PlaylistSequencer,
    Track,
    absolute_segments,
    build_timeline,
    configured_tracks,
    locate,
    total_duration,
)
from beat_coach.segment_store import SegmentStore
from beat_coach.segments import Segment


def _tracks() -> list[Track]:
    return [
        Track(id="t1", name="One", duration_ms=180_000),
        Track(id="t2", name="Two", duration_ms=200_000),
        Track(id="t3", name="Three", duration_ms=150_000),
    ]


class RecordingLoader:
    def __init__(self) -> None:
        self.loads: list[tuple[str, int]] = []
        self.seeks: list[int] = []
        self.gate = asyncio.Event()
        self.gate.set()

    async def load_and_play(self, track: Track, position_ms: int = 0) -> bool:
        await self.gate.wait()
        self.loads.append((track.id, position_ms))
        return True

    async def seek(self, position_ms: int) -> bool:
        self.seeks.append(position_ms)
        return True


def test_timeline_offsets_are_prefix_sums() -> None:
    timeline = build_timeline(_tracks())
    assert [entry.offset_ms for entry in timeline] == [0, 180_000, 380_000]
    assert total_duration(timeline) == 530_000


def test_locate_maps_absolute_positions() -> None:
    timeline = build_timeline(_tracks())
    assert locate(timeline, 0) == (0, 0)
    assert locate(timeline, 180_000) == (1, 0)
    assert locate(timeline, 390_000) == (2, 10_000)
    assert locate(timeline, 999_999) == (2, 150_000)
    assert locate(timeline, -1) is None
    assert locate([], 0) is None


def test_absolute_segments_and_configured_tracks() -> None:
    store = SegmentStore("pl")
    store.register_track("t2", 200_000)
    store.upsert("t2", Segment(10_000, 20_000, id="s"))
    timeline = build_timeline(_tracks())
    items = absolute_segments(timeline, store)
    assert [(i.track_index, i.absolute_start, i.absolute_end) for i in items] == [
        (1, 190_000, 200_000)
    ]
    assert [t.id for t in configured_tracks(_tracks(), store)] == ["t2"]


def test_playlist_navigation_without_wrap() -> None:
    playlist = Playlist(_tracks())
    assert playlist.prev() is None
    assert playlist.next().id == "t2"
    assert playlist.next().id == "t3"
    assert playlist.is_last()
    assert playlist.next() is None
    assert Playlist([]).current() is None


def test_sequencer_advances_then_finishes() -> None:
    async def runner() -> None:
        loader = RecordingLoader()
        changes: list[tuple[int, str]] = []
        sequencer = PlaylistSequencer(
            _tracks(),
            loader,
            on_track_changed=lambda index, track: changes.append((index, track.id)),
        )
        await sequencer.start()
        assert await sequencer.on_track_ended("t1")
        assert sequencer.current_offset_ms == 180_000
        assert sequencer.absolute_position(5_000) == 185_000
        assert await sequencer.on_track_ended("t2")
        assert not await sequencer.on_track_ended("t3")
        assert sequencer.finished
        assert not await sequencer.on_track_ended("t3")
        assert loader.loads == [("t1", 0), ("t2", 0), ("t3", 0)]
        assert changes == [(0, "t1"), (1, "t2"), (2, "t3")]

    asyncio.run(runner())


def test_overlapping_track_end_signals_advance_once() -> None:
    async def runner() -> None:
        loader = RecordingLoader()
        sequencer = PlaylistSequencer(_tracks(), loader)
        await sequencer.start()
        loader.gate.clear()
        first = asyncio.ensure_future(sequencer.on_track_ended("t1"))
        await asyncio.sleep(0)
        assert sequencer.advancing
        assert not await sequencer.on_track_ended("t1")
        assert not await sequencer.on_track_ended(None)
        loader.gate.set()
        assert await first
        assert loader.loads == [("t1", 0), ("t2", 0)]
        assert sequencer.current_index == 1

    asyncio.run(runner())


def test_track_change_announced_before_load_completes() -> None:
    async def runner() -> None:
        loader = RecordingLoader()
        changes: list[str] = []
        sequencer = PlaylistSequencer(
            _tracks(),
            loader,
            on_track_changed=lambda index, track: changes.append(track.id),
        )
        await sequencer.start()
        loader.gate.clear()
        pending = asyncio.ensure_future(sequencer.on_track_ended("t1"))
        await asyncio.sleep(0)
        assert changes == ["t1", "t2"]
        assert loader.loads == [("t1", 0)]
        loader.gate.set()
        assert await pending

    asyncio.run(runner())


def test_stale_track_end_is_ignored() -> None:
    async def runner() -> None:
        loader = RecordingLoader()
        sequencer = PlaylistSequencer(_tracks(), loader)
        await sequencer.start()
        assert not await sequencer.on_track_ended("t3")
        assert sequencer.current_index == 0

    asyncio.run(runner())


def test_play_index_and_skip_controls() -> None:
    async def runner() -> None:
        loader = RecordingLoader()
        sequencer = PlaylistSequencer(_tracks(), loader)
        assert (await sequencer.play_index(2)).id == "t3"
        assert await sequencer.next_track() is None
        assert (await sequencer.previous_track()).id == "t2"
        assert await sequencer.play_index(7) is None
        assert loader.loads == [("t3", 0), ("t2", 0)]

    asyncio.run(runner())


def test_jump_to_next_segment_seeks_loader() -> None:
    async def runner() -> None:
        loader = RecordingLoader()
        store = SegmentStore("pl")
        store.register_track("t1", 180_000)
        store.upsert("t1", Segment(0, 30_000, id="a"))
        store.upsert("t1", Segment(45_000, 60_000, id="b"))
        sequencer = PlaylistSequencer(_tracks(), loader)
        target: Optional[int] = await sequencer.jump_to_next_segment(10_000, store)
        assert target == 45_000
        assert await sequencer.jump_to_next_segment(50_000, store) is None
        assert loader.seeks == [45_000]

    asyncio.run(runner())


def test_set_tracks_keeps_current_track() -> None:
    async def runner() -> None:
        loader = RecordingLoader()
        sequencer = PlaylistSequencer(_tracks(), loader)
        await sequencer.play_index(1)
        sequencer.set_tracks(list(reversed(_tracks())))
        assert sequencer.current_track.id == "t2"
        assert sequencer.current_index == 1
        assert [e.offset_ms for e in sequencer.timeline] == [0, 150_000, 350_000]

    asyncio.run(runner())
