from __future__ import annotations

from typing import Optional, Sequence

from rich.text import Text

from beat_coach.scheduler import Countdown
from beat_coach.segment_editor import Edge, format_clock
from beat_coach.segments import Segment, intensity_band, intensity_label

INTENSITY_STYLES = {
    "max": "bold white on red",
    "hard": "black on dark_orange",
    "moderate": "black on yellow",
    "light": "black on green",
    "easy": "black on blue",
}
GAP_CHAR = "·"
PLAYHEAD_CHAR = "│"
EDGE_TOLERANCE_COLS = 1


def ellipsize(text: str, max_len: int) -> str:
    if max_len <= 0:
        return ""
    if len(text) <= max_len:
        return text
    if max_len <= 3:
        return "." * max_len
    return text[: max_len - 3] + "..."


def format_position(position_ms: float, duration_ms: float) -> str:
    if duration_ms <= 0:
        return "-:-- / -:--"
    return f"{format_clock(position_ms)} / {format_clock(duration_ms)}"


def segment_summary(segment: Optional[Segment]) -> str:
    if segment is None:
        return "--"
    title = segment.title or segment.type.label
    return (
        f"{title}  {segment.type.label}  {intensity_label(segment.intensity)}  "
        f"{format_clock(segment.start_time)}-{format_clock(segment.end_time)}"
    )


def segment_style(segment: Segment) -> str:
    return INTENSITY_STYLES[intensity_band(segment.intensity)]


def column_to_ms(column: int, width: int, duration_ms: int) -> int:
    """Map a timeline column to a track time."""
    if width <= 1 or duration_ms <= 0:
        return 0
    clamped = max(0, min(column, width - 1))
    return int(round(clamped / float(width - 1) * duration_ms))


def ms_to_column(position_ms: float, width: int, duration_ms: int) -> int:
    if width <= 1 or duration_ms <= 0:
        return 0
    ratio = max(0.0, min(1.0, position_ms / float(duration_ms)))
    return int(round(ratio * (width - 1)))


def render_timeline(
    segments: Sequence[Segment],
    duration_ms: int,
    position_ms: float,
    width: int,
) -> Text:
    """One row: colored blocks for segments, dots for gaps, a playhead bar."""
    text = Text()
    if width <= 0:
        return text
    if duration_ms <= 0:
        text.append(GAP_CHAR * width, style="dim")
        return text
    playhead = ms_to_column(position_ms, width, duration_ms)
    for column in range(width):
        at_ms = column_to_ms(column, width, duration_ms)
        segment = next((s for s in segments if s.contains(at_ms)), None)
        if column == playhead:
            style = segment_style(segment) if segment else "bold"
            text.append(PLAYHEAD_CHAR, style=style)
        elif segment is not None:
            text.append(" ", style=segment_style(segment))
        else:
            text.append(GAP_CHAR, style="dim")
    return text


def edge_at_column(
    segments: Sequence[Segment],
    duration_ms: int,
    width: int,
    column: int,
) -> Optional[tuple[str, Edge]]:
    """Return the segment boundary nearest a column, if one is close enough."""
    best: Optional[tuple[int, str, Edge]] = None
    for segment in segments:
        edges: tuple[tuple[Edge, int], ...] = (
            ("start", segment.start_time),
            ("end", segment.end_time),
        )
        for edge, at_ms in edges:
            distance = abs(ms_to_column(at_ms, width, duration_ms) - column)
            if distance > EDGE_TOLERANCE_COLS:
                continue
            if best is None or distance < best[0]:
                best = (distance, segment.id, edge)
    if best is None:
        return None
    return best[1], best[2]


def render_countdown(countdown: Countdown, go_cue: Optional[Segment]) -> Text:
    if go_cue is not None:
        return Text(f"GO! {segment_summary(go_cue)}", style="bold black on bright_green")
    if not countdown.visible or countdown.beats_until_next is None:
        return Text("")
    style = "bold white on red" if countdown.urgent else "bold yellow"
    return Text(f"{countdown.beats_until_next} beats to next segment", style=style)


def render_header(
    track_name: str,
    artists: str,
    tempo: float,
    index: int,
    total: int,
) -> str:
    artist_part = f" - {artists}" if artists else ""
    return f"[{index + 1}/{total}] {track_name}{artist_part}   {tempo:.0f} BPM"
