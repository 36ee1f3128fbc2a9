"""Interactive segment editing: boundary drags, field edits, add/split/delete."""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import Literal, Optional
from typing_extensions import TypeAlias

from beat_coach.errors import BeatCoachError, BoundsError, NotFoundError
from beat_coach.segment_store import SegmentStore
from beat_coach.segments import (
    Segment,
    WorkoutType,
    parse_workout_type,
    validate_intensity,
)

logger = logging.getLogger(__name__)

Edge: TypeAlias = Literal["start", "end"]

MIN_SEGMENT_MS = 1000


@dataclass(frozen=True)
class DragState:
    """Snapshot captured when a boundary drag begins."""

    segment_id: str
    edge: Edge
    initial_x: float
    initial_time: int
    timeline_width_px: float


@dataclass(frozen=True)
class EditResult:
    """Typed outcome of an edit; editing never raises to the caller."""

    ok: bool
    segment: Optional[Segment] = None
    error: Optional[BeatCoachError] = None

    @classmethod
    def success(cls, segment: Optional[Segment]) -> "EditResult":
        return cls(ok=True, segment=segment)

    @classmethod
    def failure(cls, error: BeatCoachError) -> "EditResult":
        return cls(ok=False, error=error)


def parse_clock(text: str) -> int:
    """Parse ``MM:SS`` into milliseconds."""
    minutes_text, sep, seconds_text = text.strip().partition(":")
    if not sep:
        raise BoundsError(f"Expected MM:SS, got {text!r}")
    try:
        minutes = int(minutes_text)
        seconds = int(seconds_text)
    except ValueError as exc:
        raise BoundsError(f"Expected MM:SS, got {text!r}") from exc
    if minutes < 0 or not 0 <= seconds < 60:
        raise BoundsError(f"Expected MM:SS, got {text!r}")
    return (minutes * 60 + seconds) * 1000


def format_clock(ms: float) -> str:
    total_seconds = max(0, int(ms) // 1000)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}"


class SegmentEditor:
    """Edits one track's segments through its store."""

    def __init__(
        self,
        store: SegmentStore,
        track_id: str,
        *,
        min_segment_ms: int = MIN_SEGMENT_MS,
    ) -> None:
        duration = store.track_duration(track_id)
        if duration is None:
            raise NotFoundError(f"Track {track_id} is not registered with the store")
        self._store = store
        self.track_id = track_id
        self.track_duration = duration
        self.min_segment_ms = min_segment_ms
        self._drag: Optional[DragState] = None

    @property
    def drag(self) -> Optional[DragState]:
        return self._drag

    def neighbors(self, segment: Segment) -> tuple[Optional[Segment], Optional[Segment]]:
        """Return the segments immediately before and after ``segment``."""
        others = [
            s for s in self._store.list_segments(self.track_id) if s.id != segment.id
        ]
        prev = None
        for other in others:
            if other.end_time <= segment.start_time:
                prev = other
        nxt = next((s for s in others if s.start_time >= segment.end_time), None)
        return prev, nxt

    # --- Drag gesture ---

    def begin_drag(
        self,
        segment_id: str,
        edge: Edge,
        pointer_x: float,
        timeline_width_px: float,
    ) -> EditResult:
        try:
            segment = self._store.get(self.track_id, segment_id)
        except NotFoundError as exc:
            return EditResult.failure(exc)
        if timeline_width_px <= 0:
            return EditResult.failure(BoundsError("Timeline has no width"))
        initial = segment.start_time if edge == "start" else segment.end_time
        self._drag = DragState(
            segment_id=segment_id,
            edge=edge,
            initial_x=pointer_x,
            initial_time=initial,
            timeline_width_px=timeline_width_px,
        )
        return EditResult.success(segment)

    def drag_to(self, pointer_x: float) -> EditResult:
        """Apply the boundary for the current pointer position, clamped."""
        drag = self._drag
        if drag is None:
            return EditResult.failure(NotFoundError("No drag in progress"))
        try:
            segment = self._store.get(self.track_id, drag.segment_id)
        except NotFoundError as exc:
            self._drag = None
            return EditResult.failure(exc)
        ms_per_px = self.track_duration / drag.timeline_width_px
        candidate = drag.initial_time + (pointer_x - drag.initial_x) * ms_per_px
        candidate = max(0.0, min(float(self.track_duration), candidate))
        window = self._drag_window(segment, drag.edge)
        if window is None:
            return EditResult.failure(
                BoundsError(f"No room to move the {drag.edge} of {segment.id}")
            )
        low, high = window
        value = int(round(max(low, min(high, candidate))))
        if drag.edge == "start":
            updated = replace(segment, start_time=value)
        else:
            updated = replace(segment, end_time=value)
        if updated == segment:
            return EditResult.success(segment)
        try:
            return EditResult.success(self._store.upsert(self.track_id, updated))
        except BeatCoachError as exc:
            logger.warning("Drag update rejected: %s", exc)
            return EditResult.failure(exc)

    def end_drag(self) -> Optional[Segment]:
        drag = self._drag
        self._drag = None
        if drag is None:
            return None
        try:
            return self._store.get(self.track_id, drag.segment_id)
        except NotFoundError:
            return None

    def _drag_window(self, segment: Segment, edge: Edge) -> Optional[tuple[int, int]]:
        """Range the dragged edge may take, or None if no position fits.

        The edge keeps ``min_segment_ms`` away from its adjacent neighbour
        and from the segment's other edge.
        """
        prev, nxt = self.neighbors(segment)
        floor = self.min_segment_ms
        if edge == "start":
            low = prev.end_time + floor if prev is not None else 0
            high = segment.end_time - floor
        else:
            low = segment.start_time + floor
            high = self.track_duration
            if nxt is not None:
                high = min(high, nxt.start_time - floor)
        if low > high:
            return None
        return low, high

    # --- Field edits ---

    def set_start_time(self, segment_id: str, start_ms: int) -> EditResult:
        try:
            segment = self._store.get(self.track_id, segment_id)
        except NotFoundError as exc:
            return EditResult.failure(exc)
        prev, _ = self.neighbors(segment)
        min_start = prev.end_time if prev is not None else 0
        max_start = segment.end_time - self.min_segment_ms
        if not min_start <= start_ms <= max_start:
            return EditResult.failure(
                BoundsError(
                    f"Start must be between {format_clock(min_start)}"
                    f" and {format_clock(max_start)}"
                )
            )
        return self._commit(replace(segment, start_time=start_ms))

    def set_end_time(self, segment_id: str, end_ms: int) -> EditResult:
        try:
            segment = self._store.get(self.track_id, segment_id)
        except NotFoundError as exc:
            return EditResult.failure(exc)
        _, nxt = self.neighbors(segment)
        min_end = segment.start_time + self.min_segment_ms
        max_end = nxt.start_time if nxt is not None else self.track_duration
        if not min_end <= end_ms <= max_end:
            return EditResult.failure(
                BoundsError(
                    f"End must be between {format_clock(min_end)}"
                    f" and {format_clock(max_end)}"
                )
            )
        return self._commit(replace(segment, end_time=end_ms))

    def update_fields(
        self,
        segment_id: str,
        *,
        title: Optional[str] = None,
        workout_type: Optional[WorkoutType | str] = None,
        intensity: Optional[int] = None,
    ) -> EditResult:
        try:
            segment = self._store.get(self.track_id, segment_id)
            if title is not None:
                segment = replace(segment, title=title)
            if workout_type is not None:
                segment = replace(segment, type=parse_workout_type(workout_type))
            if intensity is not None:
                segment = replace(segment, intensity=validate_intensity(intensity))
        except BeatCoachError as exc:
            return EditResult.failure(exc)
        return self._commit(segment)

    # --- Structural edits ---

    def add_segment(self) -> EditResult:
        try:
            return EditResult.success(self._store.append_segment(self.track_id))
        except BeatCoachError as exc:
            return EditResult.failure(exc)

    def split_at(self, position_ms: int) -> EditResult:
        try:
            _, right = self._store.split(self.track_id, position_ms)
        except BeatCoachError as exc:
            return EditResult.failure(exc)
        return EditResult.success(right)

    def delete(self, segment_id: str) -> EditResult:
        if self._drag is not None and self._drag.segment_id == segment_id:
            self._drag = None
        removed = self._store.remove(self.track_id, segment_id)
        return EditResult.success(removed)

    def _commit(self, segment: Segment) -> EditResult:
        try:
            return EditResult.success(self._store.upsert(self.track_id, segment))
        except BeatCoachError as exc:
            return EditResult.failure(exc)
