"""Tests for interactive segment editing."""

from __future__ import annotations

import pytest

from beat_coach.errors import BoundsError, NotFoundError
from beat_coach.segment_editor import SegmentEditor, format_clock, parse_clock
from beat_coach.segment_store import SegmentStore
from beat_coach.segments import Segment, WorkoutType


def _editor(*segments: Segment, duration: int = 180_000) -> SegmentEditor:
    store = SegmentStore("pl")
    store.register_track("t1", duration)
    for segment in segments:
        store.upsert("t1", segment)
    return SegmentEditor(store, "t1", min_segment_ms=1000)


def test_drag_end_edge_stops_before_next_segment() -> None:
    editor = _editor(Segment(0, 60_000, id="a"), Segment(90_000, 120_000, id="b"))
    # 180 px wide timeline over 180 s: one pixel per second.
    assert editor.begin_drag("a", "end", 60, 180).ok
    result = editor.drag_to(175)
    assert result.ok
    assert result.segment.end_time == 89_000
    assert result.segment.end_time <= 90_000 - editor.min_segment_ms
    assert editor.end_drag().end_time == 89_000
    assert editor.drag is None


def test_drag_end_edge_keeps_minimum_length() -> None:
    editor = _editor(Segment(10_000, 60_000, id="a"))
    editor.begin_drag("a", "end", 60, 180)
    result = editor.drag_to(0)
    assert result.segment.end_time == 11_000


def test_drag_start_edge_stops_after_previous_segment() -> None:
    editor = _editor(Segment(0, 30_000, id="a"), Segment(60_000, 90_000, id="b"))
    editor.begin_drag("b", "start", 60, 180)
    result = editor.drag_to(0)
    assert result.segment.start_time == 31_000
    result = editor.drag_to(120)
    assert result.segment.start_time == 89_000


def test_drag_pulls_crowded_end_back_from_neighbour() -> None:
    editor = _editor(Segment(0, 89_500, id="a"), Segment(90_000, 120_000, id="b"))
    editor.begin_drag("a", "end", 89.5, 180)
    result = editor.drag_to(95)
    assert result.ok
    assert result.segment.end_time == 89_000


def test_drag_with_no_room_leaves_segment_alone() -> None:
    editor = _editor(Segment(0, 500, id="a"), Segment(1_000, 30_000, id="b"))
    editor.begin_drag("a", "end", 0.5, 180)
    result = editor.drag_to(10)
    assert not result.ok
    assert isinstance(result.error, BoundsError)
    assert editor.end_drag().end_time == 500


def test_drag_without_begin_fails() -> None:
    editor = _editor(Segment(0, 30_000, id="a"))
    result = editor.drag_to(10)
    assert not result.ok
    assert isinstance(result.error, NotFoundError)


def test_begin_drag_rejects_zero_width() -> None:
    editor = _editor(Segment(0, 30_000, id="a"))
    result = editor.begin_drag("a", "end", 0, 0)
    assert not result.ok
    assert isinstance(result.error, BoundsError)


def test_set_start_time_bounds() -> None:
    editor = _editor(Segment(0, 30_000, id="a"), Segment(40_000, 90_000, id="b"))
    assert not editor.set_start_time("b", 29_000).ok
    assert not editor.set_start_time("b", 89_500).ok
    result = editor.set_start_time("b", 30_000)
    assert result.ok and result.segment.start_time == 30_000


def test_set_end_time_bounds() -> None:
    editor = _editor(Segment(0, 30_000, id="a"), Segment(40_000, 90_000, id="b"))
    assert not editor.set_end_time("a", 40_001).ok
    assert not editor.set_end_time("a", 500).ok
    assert editor.set_end_time("a", 40_000).segment.end_time == 40_000
    assert not editor.set_end_time("b", 180_001).ok


def test_update_fields_validates() -> None:
    editor = _editor(Segment(0, 30_000, id="a"))
    result = editor.update_fields("a", title="Climb", workout_type="SEATED_CLIMB")
    assert result.ok
    assert result.segment.type is WorkoutType.SEATED_CLIMB
    assert editor.update_fields("a", intensity=-1).ok
    assert not editor.update_fields("a", intensity=101).ok
    assert not editor.update_fields("a", workout_type="YOGA").ok


def test_structural_edits() -> None:
    editor = _editor(duration=60_000)
    added = editor.add_segment().segment
    right = editor.split_at(10_000).segment
    assert right.start_time == 10_000
    assert not editor.split_at(10_000).ok
    assert editor.delete(right.id).segment == right
    assert added.id not in {s.id for s in editor._store.list_segments("t1")}


def test_editor_needs_registered_track() -> None:
    with pytest.raises(NotFoundError):
        SegmentEditor(SegmentStore("pl"), "missing")


def test_parse_and_format_clock() -> None:
    assert parse_clock("1:30") == 90_000
    assert parse_clock(" 0:05 ") == 5_000
    assert format_clock(90_500) == "1:30"
    for bad in ("130", "1:60", "a:10", "-1:00"):
        with pytest.raises(BoundsError):
            parse_clock(bad)
