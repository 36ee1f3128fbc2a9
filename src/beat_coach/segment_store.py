"""In-memory segment store enforcing the per-track non-overlap invariant."""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Callable, Iterable, Optional

from beat_coach.errors import BoundsError, NotFoundError, OverlapError
from beat_coach.segments import Segment, WorkoutType, new_segment_id

logger = logging.getLogger(__name__)

DEFAULT_NEW_SEGMENT_MS = 30_000


def _sort_key(segment: Segment) -> tuple[int, int]:
    return (segment.start_time, segment.end_time)


class SegmentStore:
    """Ordered, non-overlapping segments for every track of one playlist.

    The store is the only mutator of record. Every mutation is validated
    before it is committed, so a rejected change leaves the store untouched.
    """

    def __init__(
        self,
        playlist_id: str = "",
        *,
        on_change: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.playlist_id = playlist_id
        self._segments: dict[str, dict[str, Segment]] = {}
        self._durations: dict[str, int] = {}
        self._on_change = on_change

    def set_on_change(self, callback: Optional[Callable[[str], None]]) -> None:
        self._on_change = callback

    def register_track(self, track_id: str, duration_ms: int) -> None:
        self._durations[track_id] = max(0, int(duration_ms))

    def track_duration(self, track_id: str) -> Optional[int]:
        return self._durations.get(track_id)

    def track_ids(self) -> list[str]:
        return [track_id for track_id, items in self._segments.items() if items]

    def has_segments(self, track_id: str) -> bool:
        return bool(self._segments.get(track_id))

    def list_segments(self, track_id: str) -> list[Segment]:
        """Return the track's segments sorted by start time."""
        return sorted(self._segments.get(track_id, {}).values(), key=_sort_key)

    def get(self, track_id: str, segment_id: str) -> Segment:
        segment = self._segments.get(track_id, {}).get(segment_id)
        if segment is None:
            raise NotFoundError(f"Segment {segment_id} not found on track {track_id}")
        return segment

    def find_at(self, track_id: str, position_ms: float) -> Optional[Segment]:
        for segment in self.list_segments(track_id):
            if segment.contains(position_ms):
                return segment
        return None

    def upsert(self, track_id: str, segment: Segment) -> Segment:
        """Insert or replace a segment, rejecting invalid bounds or overlap."""
        self._check_bounds(track_id, segment)
        for other in self._segments.get(track_id, {}).values():
            if other.id != segment.id and other.overlaps(segment):
                raise OverlapError(
                    f"Segment {segment.id} [{segment.start_time}, {segment.end_time})"
                    f" overlaps {other.id} [{other.start_time}, {other.end_time})",
                    conflicting_id=other.id,
                )
        self._segments.setdefault(track_id, {})[segment.id] = segment
        self._notify(track_id)
        return segment

    def remove(self, track_id: str, segment_id: str) -> Optional[Segment]:
        removed = self._segments.get(track_id, {}).pop(segment_id, None)
        if removed is not None:
            self._notify(track_id)
        return removed

    def replace_all(
        self,
        track_id: str,
        segments: Iterable[Segment],
        *,
        notify: bool = True,
    ) -> list[Segment]:
        """Atomically replace a track's segments after validating the whole set."""
        incoming = sorted(segments, key=_sort_key)
        seen: set[str] = set()
        for segment in incoming:
            self._check_bounds(track_id, segment)
            if segment.id in seen:
                raise OverlapError(
                    f"Duplicate segment id {segment.id}", conflicting_id=segment.id
                )
            seen.add(segment.id)
        for previous, current in zip(incoming, incoming[1:]):
            if previous.overlaps(current):
                raise OverlapError(
                    f"Segment {current.id} overlaps {previous.id}",
                    conflicting_id=previous.id,
                )
        self._segments[track_id] = {segment.id: segment for segment in incoming}
        if notify:
            self._notify(track_id)
        return incoming

    def split(self, track_id: str, at_time: int) -> tuple[Segment, Segment]:
        """Split the segment containing ``at_time`` into two fresh segments."""
        items = self.list_segments(track_id)
        target = next(
            (s for s in items if s.start_time < at_time < s.end_time),
            None,
        )
        if target is None:
            if any(at_time in (s.start_time, s.end_time) for s in items):
                raise BoundsError(f"Cannot split on an existing boundary ({at_time})")
            raise NotFoundError(f"No segment contains {at_time} on track {track_id}")
        left = replace(target, end_time=at_time, id=new_segment_id())
        right = replace(target, start_time=at_time, id=new_segment_id())
        bucket = self._segments[track_id]
        del bucket[target.id]
        bucket[left.id] = left
        bucket[right.id] = right
        logger.debug("Split segment %s at %s on track %s", target.id, at_time, track_id)
        self._notify(track_id)
        return left, right

    def append_segment(
        self,
        track_id: str,
        *,
        length_ms: int = DEFAULT_NEW_SEGMENT_MS,
        workout_type: WorkoutType = WorkoutType.SEATED_ROAD,
        intensity: int = 55,
    ) -> Segment:
        """Add a segment right after the last one, clipped to the track end."""
        items = self.list_segments(track_id)
        start = items[-1].end_time if items else 0
        duration = self._durations.get(track_id)
        end = start + length_ms
        if duration is not None:
            if start >= duration:
                raise BoundsError("No room left on the track for a new segment")
            end = min(end, duration)
        segment = Segment(
            start_time=start,
            end_time=end,
            title=f"Segment {len(items) + 1}",
            type=workout_type,
            intensity=intensity,
        )
        return self.upsert(track_id, segment)

    def _check_bounds(self, track_id: str, segment: Segment) -> None:
        if segment.start_time >= segment.end_time:
            raise BoundsError(
                f"Segment {segment.id} start {segment.start_time}"
                f" must be before end {segment.end_time}"
            )
        if segment.start_time < 0:
            raise BoundsError(f"Segment {segment.id} starts before 0")
        duration = self._durations.get(track_id)
        if duration is not None and segment.end_time > duration:
            raise BoundsError(
                f"Segment {segment.id} ends at {segment.end_time},"
                f" past track end {duration}"
            )

    def _notify(self, track_id: str) -> None:
        if self._on_change is not None:
            self._on_change(track_id)
