"""Remote player session: device lifecycle state machine and command routing."""

from __future__ import annotations

import asyncio
from enum import Enum
import logging
from typing import Any, Awaitable, Callable, ClassVar, Optional, Union
from typing_extensions import TypeAlias

from beat_coach.device import DeviceState, RemoteDevice
from beat_coach.errors import DeviceError, DeviceErrorKind
from beat_coach.estimator import PlaybackNotification, PositionEstimator, PositionSampler
from beat_coach.playlist import Track
from beat_coach.timers import TimerHost

logger = logging.getLogger(__name__)

TRACK_END_TOLERANCE_MS = 1000

TrackEndCallback: TypeAlias = Callable[[str], Union[Awaitable[Any], None]]


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    ACTIVE = "active"
    ERROR = "error"
    DISCONNECTING = "disconnecting"


_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.DISCONNECTED: {SessionState.CONNECTING, SessionState.ERROR},
    SessionState.CONNECTING: {
        SessionState.READY,
        SessionState.ERROR,
        SessionState.DISCONNECTING,
    },
    SessionState.READY: {
        SessionState.ACTIVE,
        SessionState.ERROR,
        SessionState.DISCONNECTING,
    },
    SessionState.ACTIVE: {SessionState.ERROR, SessionState.DISCONNECTING},
    SessionState.ERROR: {SessionState.CONNECTING, SessionState.DISCONNECTING},
    SessionState.DISCONNECTING: {SessionState.DISCONNECTED},
}

_SESSION_ENDING_ERRORS = {
    DeviceErrorKind.INITIALIZATION,
    DeviceErrorKind.AUTHENTICATION,
    DeviceErrorKind.ACCOUNT,
}


def _torn_down_error() -> DeviceError:
    return DeviceError(
        DeviceErrorKind.INITIALIZATION, "Player session was torn down while connecting"
    )


class RemotePlayerSession:
    """Owns one device handle from connect to teardown.

    Every device notification gets a logical sequence number before it
    reaches the estimator, and so does every optimistic command update, so
    responses that arrive late cannot roll the estimate back.
    """

    _active: ClassVar[Optional["RemotePlayerSession"]] = None

    def __init__(
        self,
        device: RemoteDevice,
        timers: TimerHost,
        *,
        estimator: Optional[PositionEstimator] = None,
        max_retries: int = 3,
        retry_delay_s: float = 0.5,
        sample_interval_ms: int = 50,
        on_position: Optional[Callable[[float], None]] = None,
        on_error: Optional[Callable[[DeviceError], None]] = None,
        on_state: Optional[Callable[[SessionState], None]] = None,
        on_track_end: Optional[TrackEndCallback] = None,
    ) -> None:
        self._device = device
        self.estimator = estimator or PositionEstimator()
        self._sampler = PositionSampler(
            self.estimator,
            timers,
            self._publish_position,
            interval_ms=sample_interval_ms,
        )
        self.max_retries = max(1, max_retries)
        self._retry_delay_s = retry_delay_s
        self._on_position = on_position
        self._on_error = on_error
        self._on_state = on_state
        self._on_track_end = on_track_end
        self._cleanups: list[Callable[[], None]] = []
        self._state = SessionState.DISCONNECTED
        self._seq = 0
        self._teardown_task: Optional[asyncio.Future[None]] = None
        # Bumped by every teardown; a connect started earlier must not resume.
        self._generation = 0
        self._pending: set[asyncio.Task[Any]] = set()
        self.device_id: Optional[str] = None
        self.fatal = False
        self.last_error: Optional[DeviceError] = None

    # --- State ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    @classmethod
    def active_session(cls) -> Optional["RemotePlayerSession"]:
        return cls._active

    def add_cleanup(self, callback: Callable[[], None]) -> None:
        """Register a local timer cancellation to run during teardown."""
        self._cleanups.append(callback)

    def _set_state(self, new_state: SessionState) -> None:
        old_state = self._state
        if new_state is old_state:
            return
        if new_state not in _TRANSITIONS[old_state]:
            raise RuntimeError(f"Illegal session transition {old_state} -> {new_state}")
        self._state = new_state
        logger.info("Session %s -> %s", old_state.value, new_state.value)
        if self._on_state is not None:
            try:
                self._on_state(new_state)
            except Exception:
                logger.exception("Session state callback failed")

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    # --- Connect ---

    async def connect(self) -> str:
        """Connect the device, retrying within the budget."""
        other = RemotePlayerSession._active
        if other is not None and other is not self:
            raise DeviceError(
                DeviceErrorKind.INITIALIZATION, "Another player session is active"
            )
        if self._state in (SessionState.READY, SessionState.ACTIVE) and self.device_id:
            return self.device_id
        if self._state is SessionState.DISCONNECTING:
            raise DeviceError(
                DeviceErrorKind.INITIALIZATION, "Player session is shutting down"
            )
        generation = self._generation
        last_error = DeviceError(DeviceErrorKind.INITIALIZATION, "Device did not connect")
        for attempt in range(1, self.max_retries + 1):
            self._set_state(SessionState.CONNECTING)
            self._device.on_state_changed(self._handle_device_state)
            self._device.on_error(self._handle_device_error)
            try:
                device_id = await self._device.connect()
            except DeviceError as exc:
                last_error = exc
            except Exception as exc:
                logger.exception("Device connect raised unexpectedly")
                last_error = DeviceError(DeviceErrorKind.INITIALIZATION, str(exc))
            else:
                if self._generation != generation:
                    await self._release_late_connection()
                    raise _torn_down_error()
                self.device_id = device_id
                self.fatal = False
                self.last_error = None
                self._set_state(SessionState.READY)
                logger.info("Device ready: %s", device_id)
                return device_id
            if self._generation != generation:
                raise _torn_down_error()
            self._device.remove_all_listeners()
            self.last_error = last_error
            self._set_state(SessionState.ERROR)
            logger.warning(
                "Connect attempt %s/%s failed: %s", attempt, self.max_retries, last_error
            )
            if last_error.kind is DeviceErrorKind.AUTHENTICATION:
                break
            if attempt < self.max_retries and self._retry_delay_s > 0:
                await asyncio.sleep(self._retry_delay_s * attempt)
                if self._generation != generation:
                    raise _torn_down_error()
        self.fatal = True
        self._report_error(last_error)
        raise last_error

    async def _release_late_connection(self) -> None:
        logger.info("Device connected after teardown; releasing it")
        try:
            self._device.remove_all_listeners()
            await self._device.disconnect()
        except Exception:
            logger.exception("Releasing late device connection failed")

    def _activate(self) -> bool:
        if self._state is SessionState.ACTIVE:
            return True
        if self._state is not SessionState.READY:
            logger.warning("Cannot address device while %s", self._state.value)
            return False
        other = RemotePlayerSession._active
        if other is not None and other is not self:
            self._report_error(
                DeviceError(
                    DeviceErrorKind.INITIALIZATION, "Another player session is active"
                )
            )
            return False
        RemotePlayerSession._active = self
        self._set_state(SessionState.ACTIVE)
        return True

    # --- Commands ---

    async def load_and_play(self, track: Track, position_ms: int = 0) -> bool:
        if not self._activate():
            return False
        seq = self._next_seq()
        self._apply(
            PlaybackNotification(
                position_ms=position_ms,
                duration_ms=track.duration_ms,
                is_playing=True,
                track_id=track.id,
                seq=seq,
            )
        )
        return await self._command(
            "load", seq, self._device.load_and_play(track, position_ms)
        )

    async def pause(self) -> bool:
        if self._state is not SessionState.ACTIVE:
            return False
        seq = self._next_seq()
        self._apply_snapshot(seq, is_playing=False)
        return await self._command("pause", seq, self._device.pause())

    async def resume(self) -> bool:
        if self._state is not SessionState.ACTIVE:
            return False
        seq = self._next_seq()
        self._apply_snapshot(seq, is_playing=True)
        return await self._command("resume", seq, self._device.resume())

    async def toggle(self) -> bool:
        if self.estimator.is_playing:
            return await self.pause()
        return await self.resume()

    async def seek(self, position_ms: int) -> bool:
        if self._state is not SessionState.ACTIVE:
            return False
        duration = self.estimator.duration_ms
        if duration > 0:
            position_ms = int(min(position_ms, duration))
        position_ms = max(0, position_ms)
        seq = self._next_seq()
        self._apply_snapshot(seq, position_ms=position_ms)
        return await self._command("seek", seq, self._device.seek(position_ms))

    async def refresh(self) -> Optional[DeviceState]:
        """Pull the device state and treat it as a fresh notification."""
        try:
            state = await self._device.get_current_state()
        except DeviceError as exc:
            self._handle_device_error(exc)
            return None
        if state is not None:
            self._handle_device_state(state)
        return state

    async def _command(
        self,
        name: str,
        seq: int,
        request: Awaitable[Optional[DeviceState]],
    ) -> bool:
        try:
            response = await request
        except DeviceError as exc:
            logger.warning("Device %s failed: %s", name, exc)
            self._handle_device_error(exc)
            return False
        if response is not None:
            self._apply(self._to_notification(response, seq))
        return True

    # --- Notifications ---

    def _handle_device_state(self, state: DeviceState) -> None:
        if self._state in (SessionState.DISCONNECTING, SessionState.DISCONNECTED):
            return
        previous = self.estimator.estimate
        previous_position = self.estimator.estimated_position()
        self._apply(self._to_notification(state, self._next_seq()))
        if previous is None or not previous.is_playing or not state.paused:
            return
        if previous.current_track_id != state.track_id or state.track_id is None:
            return
        duration = state.duration_ms or previous.duration_ms
        near_end = duration > 0 and state.position_ms >= duration - TRACK_END_TOLERANCE_MS
        rewound = (
            state.position_ms == 0
            and duration > 0
            and previous_position >= duration - 2 * TRACK_END_TOLERANCE_MS
        )
        if near_end or rewound:
            logger.info("Device reported end of track %s", state.track_id)
            self._signal_track_end(state.track_id)

    def _handle_device_error(self, error: DeviceError) -> None:
        self.last_error = error
        logger.error("Device error: %s", error)
        if error.kind in _SESSION_ENDING_ERRORS and self._state not in (
            SessionState.DISCONNECTING,
            SessionState.DISCONNECTED,
            SessionState.ERROR,
        ):
            self._sampler.cancel()
            if RemotePlayerSession._active is self:
                RemotePlayerSession._active = None
            self._set_state(SessionState.ERROR)
            self.fatal = error.fatal
        self._report_error(error)

    def _report_error(self, error: DeviceError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Session error callback failed")

    def _signal_track_end(self, track_id: str) -> None:
        if self._on_track_end is None:
            return
        result = self._on_track_end(track_id)
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    def _to_notification(self, state: DeviceState, seq: int) -> PlaybackNotification:
        return PlaybackNotification(
            position_ms=state.position_ms,
            duration_ms=state.duration_ms,
            is_playing=not state.paused,
            track_id=state.track_id,
            seq=seq,
        )

    def _apply(self, notification: PlaybackNotification) -> None:
        self._sampler.cancel()
        if self.estimator.apply(notification):
            self._sampler.restart()
        elif self.estimator.is_playing:
            self._sampler.restart()

    def _apply_snapshot(self, seq: int, **changes: object) -> None:
        notification = self.estimator.snapshot(seq, **changes)
        if notification is not None:
            self._apply(notification)

    def _publish_position(self, position_ms: float) -> None:
        if self._on_position is None:
            return
        try:
            self._on_position(position_ms)
        except Exception:
            logger.exception("Position callback failed")

    # --- Teardown ---

    async def teardown(self) -> None:
        """Release everything; safe to call repeatedly and concurrently."""
        task = self._teardown_task
        if task is None:
            task = asyncio.ensure_future(self._run_teardown())
            self._teardown_task = task
        try:
            await task
        finally:
            if self._teardown_task is task:
                self._teardown_task = None

    async def _run_teardown(self) -> None:
        self._generation += 1
        if self._state is SessionState.DISCONNECTED:
            logger.debug("Teardown skipped; session already disconnected")
            return
        self._set_state(SessionState.DISCONNECTING)
        try:
            await self._device.pause()
        except Exception as exc:
            logger.debug("Pause during teardown failed: %s", exc)
        try:
            self._sampler.cancel()
            for cleanup in list(self._cleanups):
                try:
                    cleanup()
                except Exception:
                    logger.exception("Teardown cleanup failed")
        except Exception:
            logger.exception("Cancelling timers failed")
        try:
            self._device.remove_all_listeners()
        except Exception:
            logger.exception("Detaching device listeners failed")
        try:
            await self._device.disconnect()
        except Exception:
            logger.exception("Device disconnect failed")
        try:
            for pending in list(self._pending):
                pending.cancel()
            self._pending.clear()
            self.estimator.reset()
            self.device_id = None
            if RemotePlayerSession._active is self:
                RemotePlayerSession._active = None
            self._publish_position(0.0)
        finally:
            if self._state is not SessionState.DISCONNECTED:
                self._set_state(SessionState.DISCONNECTED)
