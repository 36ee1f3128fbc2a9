"""Segment modeling for Beat Coach workouts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping
import uuid

from beat_coach.errors import ValidationError

BURN_INTENSITY = -1


class WorkoutType(str, Enum):
    """Closed set of workout styles a segment can be tagged with."""

    SEATED_ROAD = "SEATED_ROAD"
    PLS = "PLS"
    SEATED_CLIMB = "SEATED_CLIMB"
    STANDING_CLIMB = "STANDING_CLIMB"
    STANDING_JOGGING = "STANDING_JOGGING"
    JUMPS = "JUMPS"
    WAVES = "WAVES"
    PUSHES = "PUSHES"

    @property
    def label(self) -> str:
        return WORKOUT_LABELS[self]


WORKOUT_LABELS: dict[WorkoutType, str] = {
    WorkoutType.PLS: "PLS",
    WorkoutType.SEATED_ROAD: "SeRo",
    WorkoutType.SEATED_CLIMB: "SeCl",
    WorkoutType.STANDING_CLIMB: "StCl",
    WorkoutType.STANDING_JOGGING: "StJo",
    WorkoutType.JUMPS: "Jump",
    WorkoutType.WAVES: "Wave",
    WorkoutType.PUSHES: "Push",
}


def new_segment_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Segment:
    """A labeled time range within a track (milliseconds)."""

    start_time: int
    end_time: int
    title: str = ""
    type: WorkoutType = WorkoutType.SEATED_ROAD
    intensity: int = 55
    id: str = field(default_factory=new_segment_id)

    @property
    def duration_ms(self) -> int:
        return self.end_time - self.start_time

    def contains(self, position_ms: float) -> bool:
        return self.start_time <= position_ms < self.end_time

    def overlaps(self, other: "Segment") -> bool:
        return not (
            self.end_time <= other.start_time or other.end_time <= self.start_time
        )


def intensity_label(intensity: int) -> str:
    if intensity == BURN_INTENSITY:
        return "BURN"
    return f"{intensity}%"


def intensity_band(intensity: int) -> str:
    """Return a coarse effort band used for coloring."""
    if intensity == BURN_INTENSITY or intensity > 90:
        return "max"
    if intensity > 75:
        return "hard"
    if intensity > 55:
        return "moderate"
    if intensity > 25:
        return "light"
    return "easy"


def validate_intensity(intensity: object) -> int:
    if isinstance(intensity, bool) or not isinstance(intensity, int):
        raise ValidationError(f"Intensity must be an integer, got {intensity!r}")
    if intensity != BURN_INTENSITY and not 0 <= intensity <= 100:
        raise ValidationError(f"Intensity {intensity} outside 0..100")
    return intensity


def parse_workout_type(value: object) -> WorkoutType:
    try:
        return WorkoutType(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown workout type {value!r}") from exc


def _get_time(raw: Mapping[str, Any], key: str) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Segment field {key!r} must be a number")
    return int(round(value))


def segment_from_mapping(raw: object) -> Segment:
    """Parse the camelCase JSON form of a segment."""
    if not isinstance(raw, Mapping):
        raise ValidationError("Segment entry must be an object")
    segment_id = raw.get("id")
    if not isinstance(segment_id, str) or not segment_id:
        raise ValidationError("Segment is missing an id")
    title = raw.get("title", "")
    if not isinstance(title, str):
        raise ValidationError("Segment title must be a string")
    return Segment(
        id=segment_id,
        start_time=_get_time(raw, "startTime"),
        end_time=_get_time(raw, "endTime"),
        title=title,
        type=parse_workout_type(raw.get("type")),
        intensity=validate_intensity(raw.get("intensity")),
    )


def segment_to_mapping(segment: Segment) -> dict[str, Any]:
    return {
        "id": segment.id,
        "startTime": segment.start_time,
        "endTime": segment.end_time,
        "title": segment.title,
        "type": segment.type.value,
        "intensity": segment.intensity,
    }
