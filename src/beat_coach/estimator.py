"""Local playback position estimation between sparse device notifications."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Callable, Optional

from beat_coach.timers import OwnedTimer, TimerHost

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class PlaybackNotification:
    """Ground truth reported by the playback device.

    ``seq`` is a logical timestamp assigned by the session; notifications
    older than the last applied one are discarded.
    """

    position_ms: float
    duration_ms: float
    is_playing: bool
    track_id: Optional[str]
    seq: int = 0


@dataclass(frozen=True)
class PlaybackEstimate:
    anchor_wall_clock: float
    anchor_position: float
    is_playing: bool
    current_track_id: Optional[str]
    duration_ms: float
    seq: int


class PositionEstimator:
    """Extrapolates the device position from the most recent anchor."""

    def __init__(self, clock: Callable[[], float] = monotonic_ms) -> None:
        self._clock = clock
        self._estimate: Optional[PlaybackEstimate] = None
        self._last_seq = -1

    @property
    def estimate(self) -> Optional[PlaybackEstimate]:
        return self._estimate

    @property
    def is_playing(self) -> bool:
        return self._estimate is not None and self._estimate.is_playing

    @property
    def current_track_id(self) -> Optional[str]:
        return self._estimate.current_track_id if self._estimate else None

    @property
    def duration_ms(self) -> float:
        return self._estimate.duration_ms if self._estimate else 0.0

    @property
    def last_seq(self) -> int:
        return self._last_seq

    def apply(
        self,
        notification: PlaybackNotification,
        received_at: Optional[float] = None,
    ) -> bool:
        """Re-anchor on a notification; return False if it was stale."""
        if notification.seq < self._last_seq:
            logger.debug(
                "Discarding stale notification seq=%s (last=%s)",
                notification.seq,
                self._last_seq,
            )
            return False
        previous = self._estimate
        if previous is not None and previous.current_track_id != notification.track_id:
            logger.debug(
                "Track changed %s -> %s; dropping anchor",
                previous.current_track_id,
                notification.track_id,
            )
            self._estimate = None
        now = self._clock() if received_at is None else received_at
        self._estimate = PlaybackEstimate(
            anchor_wall_clock=now,
            anchor_position=max(0.0, float(notification.position_ms)),
            is_playing=notification.is_playing,
            current_track_id=notification.track_id,
            duration_ms=max(0.0, float(notification.duration_ms)),
            seq=notification.seq,
        )
        self._last_seq = notification.seq
        return True

    def estimated_position(self, now: Optional[float] = None) -> float:
        """Return the estimated position in ms (0 before any notification)."""
        estimate = self._estimate
        if estimate is None:
            return 0.0
        if not estimate.is_playing:
            return estimate.anchor_position
        if now is None:
            now = self._clock()
        position = estimate.anchor_position + (now - estimate.anchor_wall_clock)
        position = max(0.0, position)
        if estimate.duration_ms > 0:
            position = min(estimate.duration_ms, position)
        return position

    def snapshot(self, seq: int, **changes: object) -> Optional[PlaybackNotification]:
        """Build a notification from the current estimate with overrides."""
        estimate = self._estimate
        if estimate is None:
            return None
        fields: dict[str, object] = {
            "position_ms": self.estimated_position(),
            "duration_ms": estimate.duration_ms,
            "is_playing": estimate.is_playing,
            "track_id": estimate.current_track_id,
            "seq": seq,
        }
        fields.update(changes)
        return PlaybackNotification(**fields)  # type: ignore[arg-type]

    def reset(self) -> None:
        self._estimate = None
        self._last_seq = -1


class PositionSampler:
    """UI-smoothing tick that publishes the estimate; never a source of truth."""

    def __init__(
        self,
        estimator: PositionEstimator,
        timers: TimerHost,
        publish: Callable[[float], None],
        *,
        interval_ms: int = 50,
    ) -> None:
        self._estimator = estimator
        self._timers = timers
        self._publish = publish
        self._interval = max(1, interval_ms) / 1000.0
        self._timer = OwnedTimer("position-sampler")

    @property
    def active(self) -> bool:
        return self._timer.active

    def restart(self) -> None:
        """Cancel any running tick and start a new one if playing."""
        self._timer.cancel()
        self._publish(self._estimator.estimated_position())
        if self._estimator.is_playing:
            self._timer.replace(self._timers.set_interval(self._interval, self._tick))

    def cancel(self) -> None:
        self._timer.cancel()

    def _tick(self) -> None:
        self._publish(self._estimator.estimated_position())
