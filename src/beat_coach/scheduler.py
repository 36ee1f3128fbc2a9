"""Beat and segment event derivation from the continuous position estimate."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import math
from typing import Callable, Iterable, Optional, Sequence

from beat_coach.segment_store import SegmentStore
from beat_coach.segments import Segment
from beat_coach.tempo import TempoBook, beat_duration_ms
from beat_coach.timers import OwnedTimer, TimerHost

logger = logging.getLogger(__name__)

COUNTDOWN_THRESHOLD_BEATS = 8
GO_CUE_MS = 2000
MAX_CATCHUP_BEATS = 4


class EventKind(str, Enum):
    SEGMENT_ENTERED = "segment-entered"
    SEGMENT_EXITED = "segment-exited"
    BEAT_TICK = "beat-tick"
    COUNTDOWN_WARNING = "countdown-warning"
    GO_CUE = "go-cue"
    GO_CUE_CLEARED = "go-cue-cleared"
    TRACK_ENDED = "track-ended"


@dataclass(frozen=True)
class SchedulerEvent:
    kind: EventKind
    position_ms: float
    segment: Optional[Segment] = None
    beat_index: Optional[int] = None
    beats_until_next: Optional[int] = None


@dataclass(frozen=True)
class Countdown:
    """What the beat countdown panel should show."""

    beats_until_next: Optional[int]
    time_left_ms: Optional[float]
    next_segment: Optional[Segment]
    visible: bool
    urgent: bool


def current_segment(segments: Iterable[Segment], position_ms: float) -> Optional[Segment]:
    for segment in segments:
        if segment.start_time <= position_ms < segment.end_time:
            return segment
    return None


def next_segment(segments: Sequence[Segment], position_ms: float) -> Optional[Segment]:
    """Return the first segment starting after the position (and the current one)."""
    current = current_segment(segments, position_ms)
    floor = current.end_time if current is not None else None
    candidates = [
        s
        for s in segments
        if s.start_time > position_ms and (floor is None or s.start_time >= floor)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda s: s.start_time)


def beats_until(position_ms: float, target_ms: float, beat_ms: float) -> int:
    return math.ceil((target_ms - position_ms) / beat_ms)


class BeatScheduler:
    """Edge-detects beats, segment changes and cues on a fixed poll cadence.

    Every event is keyed by an explicit "last observed" value (beat index,
    segment id, armed next segment) so poll jitter can neither duplicate nor
    drop an event.
    """

    def __init__(
        self,
        store: SegmentStore,
        tempos: TempoBook,
        *,
        timers: Optional[TimerHost] = None,
        position_source: Optional[Callable[[], float]] = None,
        track_source: Optional[Callable[[], Optional[str]]] = None,
        threshold_beats: int = COUNTDOWN_THRESHOLD_BEATS,
        go_cue_ms: int = GO_CUE_MS,
        poll_interval_ms: int = 50,
        max_catchup_beats: int = MAX_CATCHUP_BEATS,
    ) -> None:
        self._store = store
        self._tempos = tempos
        self._timers = timers
        self._position_source = position_source
        self._track_source = track_source
        self.threshold_beats = threshold_beats
        self.go_cue_ms = go_cue_ms
        self._poll_interval = max(1, poll_interval_ms) / 1000.0
        self._max_catchup_beats = max_catchup_beats
        self._listeners: list[Callable[[SchedulerEvent], None]] = []
        self._poll_timer = OwnedTimer("scheduler-poll")
        self._go_timer = OwnedTimer("go-cue")
        self.track_id: Optional[str] = None
        self.track_title = ""
        self.duration_ms = 0
        self._reset_edges()
        self.go_cue: Optional[Segment] = None

    # --- Wiring ---

    def subscribe(self, listener: Callable[[SchedulerEvent], None]) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[SchedulerEvent], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_track(self, track_id: str, duration_ms: int, title: str = "") -> None:
        self.track_id = track_id
        self.track_title = title
        self.duration_ms = max(0, int(duration_ms))
        self.reset()

    @property
    def running(self) -> bool:
        return self._poll_timer.active

    def start(self) -> None:
        if self._timers is None or self._position_source is None:
            raise RuntimeError("Scheduler needs a timer host and position source")
        self._poll_timer.replace(
            self._timers.set_interval(self._poll_interval, self._on_poll)
        )

    def stop(self) -> None:
        self._poll_timer.cancel()
        self._clear_go_cue(emit=False)

    def reset(self) -> None:
        self._reset_edges()
        self._clear_go_cue(emit=False)

    # --- Derived values ---

    @property
    def tempo(self) -> float:
        if self.track_id is None:
            return self._tempos.default_tempo
        return self._tempos.get(self.track_id, self.track_title).tempo

    @property
    def beat_ms(self) -> float:
        return beat_duration_ms(self.tempo)

    def segments(self) -> list[Segment]:
        if self.track_id is None:
            return []
        return self._store.list_segments(self.track_id)

    def countdown(self, position_ms: float) -> Countdown:
        segments = self.segments()
        nxt = next_segment(segments, position_ms)
        if nxt is None:
            return Countdown(None, None, None, visible=False, urgent=False)
        beats = beats_until(position_ms, nxt.start_time, self.beat_ms)
        return Countdown(
            beats_until_next=beats,
            time_left_ms=nxt.start_time - position_ms,
            next_segment=nxt,
            visible=beats <= self.threshold_beats,
            urgent=beats <= max(1, self.threshold_beats // 2),
        )

    # --- Polling ---

    def poll(self, position_ms: Optional[float] = None) -> list[SchedulerEvent]:
        """Derive events for one observation of the position."""
        if position_ms is None:
            position_ms = self._position_source() if self._position_source else 0.0
        if self.track_id is None:
            return []
        playing = self._track_source() if self._track_source is not None else None
        if playing is not None and playing != self.track_id:
            # Position belongs to another track until set_track catches up.
            if self._last_position is not None or self.go_cue is not None:
                logger.debug(
                    "Skipping poll: playing %s, scheduled %s", playing, self.track_id
                )
                self.reset()
            return []
        segments = self.segments()
        beat_ms = self.beat_ms
        events: list[SchedulerEvent] = []

        last = self._last_position
        seeked = last is not None and (
            position_ms < last or position_ms - last > self._max_catchup_beats * beat_ms
        )

        current = current_segment(segments, position_ms)
        current_id = current.id if current is not None else None
        if current_id != self._last_segment_id:
            if self._last_segment is not None:
                events.append(
                    SchedulerEvent(
                        EventKind.SEGMENT_EXITED, position_ms, self._last_segment
                    )
                )
            if current is not None:
                events.append(
                    SchedulerEvent(EventKind.SEGMENT_ENTERED, position_ms, current)
                )
                if not seeked and self._armed_next_id == current.id:
                    events.append(
                        SchedulerEvent(
                            EventKind.GO_CUE,
                            position_ms,
                            current,
                            beats_until_next=0,
                        )
                    )
                    self._show_go_cue(current)
        self._last_segment = current
        self._last_segment_id = current_id

        beat_index = math.floor(position_ms / beat_ms)
        if self._last_beat is None or seeked:
            self._last_beat = beat_index
        elif beat_index > self._last_beat:
            for index in range(self._last_beat + 1, beat_index + 1):
                events.append(
                    SchedulerEvent(
                        EventKind.BEAT_TICK, position_ms, current, beat_index=index
                    )
                )
            self._last_beat = beat_index

        nxt = next_segment(segments, position_ms)
        if nxt is not None:
            beats = beats_until(position_ms, nxt.start_time, beat_ms)
            if beats <= self.threshold_beats and self._warned_for != nxt.id:
                self._warned_for = nxt.id
                events.append(
                    SchedulerEvent(
                        EventKind.COUNTDOWN_WARNING,
                        position_ms,
                        nxt,
                        beats_until_next=beats,
                    )
                )
        self._armed_next_id = nxt.id if nxt is not None else None

        if self.duration_ms and position_ms < self.duration_ms:
            self._track_ended = False
        elif (
            self.duration_ms
            and nxt is None
            and current is None
            and not self._track_ended
        ):
            self._track_ended = True
            events.append(SchedulerEvent(EventKind.TRACK_ENDED, position_ms))

        self._last_position = position_ms
        self._emit(events)
        return events

    def _on_poll(self) -> None:
        try:
            self.poll()
        except Exception:
            logger.exception("Scheduler poll failed")

    # --- Go cue ---

    def _show_go_cue(self, segment: Segment) -> None:
        self.go_cue = segment
        if self._timers is None:
            return
        self._go_timer.replace(
            self._timers.set_timer(self.go_cue_ms / 1000.0, self._expire_go_cue)
        )

    def _expire_go_cue(self) -> None:
        self._go_timer.release()
        self._clear_go_cue(emit=True)

    def _clear_go_cue(self, *, emit: bool) -> None:
        self._go_timer.cancel()
        segment = self.go_cue
        self.go_cue = None
        if emit and segment is not None:
            self._emit(
                [
                    SchedulerEvent(
                        EventKind.GO_CUE_CLEARED,
                        self._last_position or 0.0,
                        segment,
                    )
                ]
            )

    # --- Internals ---

    def _reset_edges(self) -> None:
        self._last_position: Optional[float] = None
        self._last_beat: Optional[int] = None
        self._last_segment: Optional[Segment] = None
        self._last_segment_id: Optional[str] = None
        self._armed_next_id: Optional[str] = None
        self._warned_for: Optional[str] = None
        self._track_ended = False

    def _emit(self, events: list[SchedulerEvent]) -> None:
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception("Scheduler listener failed on %s", event.kind)
