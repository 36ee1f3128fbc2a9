"""Tests for the remote player session lifecycle."""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from beat_coach.device import DeviceState
from beat_coach.errors import DeviceError, DeviceErrorKind
from beat_coach.estimator import PositionEstimator
from beat_coach.playlist import Track
from beat_coach.session import RemotePlayerSession, SessionState
from fakes import FakeClock, FakeDevice, FakeTimerHost

TRACK = Track(id="t1", name="One", duration_ms=180_000)


def _session(
    device: FakeDevice,
    timers: FakeTimerHost,
    clock: FakeClock,
    **kwargs,
) -> RemotePlayerSession:
    kwargs.setdefault("retry_delay_s", 0)
    return RemotePlayerSession(
        device,
        timers,
        estimator=PositionEstimator(clock),
        **kwargs,
    )


def test_connect_then_first_load_activates(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    states: list[SessionState] = []
    session = _session(device, timers, clock, on_state=states.append)

    async def runner() -> None:
        assert await session.connect() == "fake-device"
        assert session.state is SessionState.READY
        assert await session.load_and_play(TRACK, 5_000)

    asyncio.run(runner())
    assert states == [SessionState.CONNECTING, SessionState.READY, SessionState.ACTIVE]
    assert RemotePlayerSession.active_session() is session
    assert device.calls[-1] == ("load_and_play", ("t1", 5_000))
    assert session.estimator.estimated_position() == 5_000
    assert session.estimator.is_playing


def test_connect_retries_then_fails_fatally(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    errors: list[DeviceError] = []
    device.connect_errors = [
        DeviceError(DeviceErrorKind.INITIALIZATION, "no device") for _ in range(3)
    ]
    session = _session(device, timers, clock, max_retries=3, on_error=errors.append)

    with pytest.raises(DeviceError):
        asyncio.run(session.connect())
    assert device.names().count("connect") == 3
    assert session.state is SessionState.ERROR
    assert session.fatal
    assert len(errors) == 1
    assert device.listener_count == 0


def test_connect_recovers_within_budget(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    device.connect_errors = [DeviceError(DeviceErrorKind.PLAYBACK, "flaky")]
    session = _session(device, timers, clock, max_retries=3)
    assert asyncio.run(session.connect()) == "fake-device"
    assert device.names().count("connect") == 2
    assert session.state is SessionState.READY
    assert not session.fatal


def test_authentication_failure_stops_retrying(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    device.connect_errors = [
        DeviceError(DeviceErrorKind.AUTHENTICATION, "bad token"),
        DeviceError(DeviceErrorKind.AUTHENTICATION, "bad token"),
    ]
    session = _session(device, timers, clock, max_retries=3)
    with pytest.raises(DeviceError) as excinfo:
        asyncio.run(session.connect())
    assert excinfo.value.kind is DeviceErrorKind.AUTHENTICATION
    assert device.names().count("connect") == 1
    assert session.fatal


def test_commands_ignored_before_activation(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    session = _session(device, timers, clock)

    async def runner() -> None:
        assert not await session.pause()
        assert not await session.seek(1_000)
        assert not await session.load_and_play(TRACK)

    asyncio.run(runner())
    assert device.calls == []


class RacingDevice(FakeDevice):
    """Pushes a fresher state while a seek is still in flight."""

    async def seek(self, position_ms: int) -> Optional[DeviceState]:
        self.calls.append(("seek", position_ms))
        self.emit_state(
            DeviceState(
                position_ms=70_000, duration_ms=180_000, paused=False, track_id="t1"
            )
        )
        return DeviceState(
            position_ms=position_ms, duration_ms=180_000, paused=False, track_id="t1"
        )


def test_late_command_response_does_not_roll_back(
    timers: FakeTimerHost, clock: FakeClock
) -> None:
    device = RacingDevice()
    session = _session(device, timers, clock)

    async def runner() -> None:
        await session.connect()
        await session.load_and_play(TRACK)
        assert await session.seek(30_000)

    asyncio.run(runner())
    assert session.estimator.estimated_position() == 70_000


def test_seek_clamps_to_duration(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    session = _session(device, timers, clock)

    async def runner() -> None:
        await session.connect()
        await session.load_and_play(TRACK)
        await session.seek(999_999)

    asyncio.run(runner())
    assert ("seek", 180_000) in device.calls


def test_pause_and_resume_update_estimate(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    session = _session(device, timers, clock)

    async def runner() -> None:
        await session.connect()
        await session.load_and_play(TRACK, 1_000)
        clock.advance(500)
        assert await session.toggle()
        assert not session.estimator.is_playing
        clock.advance(5_000)
        assert session.estimator.estimated_position() == 1_500
        assert await session.toggle()
        assert session.estimator.is_playing

    asyncio.run(runner())
    assert device.names()[-2:] == ["pause", "resume"]


def test_device_reports_track_end(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    ended: list[str] = []
    session = _session(device, timers, clock, on_track_end=ended.append)

    async def runner() -> None:
        await session.connect()
        await session.load_and_play(TRACK)
        device.emit_state(
            DeviceState(
                position_ms=180_000, duration_ms=180_000, paused=True, track_id="t1"
            )
        )

    asyncio.run(runner())
    assert ended == ["t1"]


def test_pause_mid_track_is_not_track_end(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    ended: list[str] = []
    session = _session(device, timers, clock, on_track_end=ended.append)

    async def runner() -> None:
        await session.connect()
        await session.load_and_play(TRACK)
        device.emit_state(
            DeviceState(
                position_ms=60_000, duration_ms=180_000, paused=True, track_id="t1"
            )
        )

    asyncio.run(runner())
    assert ended == []


def test_playback_error_keeps_session_active(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    errors: list[DeviceError] = []
    session = _session(device, timers, clock, on_error=errors.append)

    async def runner() -> None:
        await session.connect()
        await session.load_and_play(TRACK)
        device.command_error = DeviceError(DeviceErrorKind.PLAYBACK, "hiccup")
        assert not await session.pause()

    asyncio.run(runner())
    assert session.state is SessionState.ACTIVE
    assert [e.kind for e in errors] == [DeviceErrorKind.PLAYBACK]


def test_authentication_error_ends_session(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    session = _session(device, timers, clock)

    async def runner() -> None:
        await session.connect()
        await session.load_and_play(TRACK)
        device.emit_error(DeviceError(DeviceErrorKind.AUTHENTICATION, "expired"))

    asyncio.run(runner())
    assert session.state is SessionState.ERROR
    assert session.fatal
    assert RemotePlayerSession.active_session() is None


def test_teardown_is_idempotent_and_concurrent_safe(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    positions: list[float] = []
    cleanups: list[str] = []
    session = _session(device, timers, clock, on_position=positions.append)
    session.add_cleanup(lambda: cleanups.append("timers"))

    async def runner() -> None:
        await session.connect()
        await session.load_and_play(TRACK, 2_000)
        await asyncio.gather(session.teardown(), session.teardown())
        await session.teardown()

    asyncio.run(runner())
    assert session.state is SessionState.DISCONNECTED
    assert device.disconnects == 1
    assert device.listener_count == 0
    assert cleanups == ["timers"]
    assert positions[-1] == 0.0
    assert timers.live == []
    assert session.device_id is None
    assert RemotePlayerSession.active_session() is None


class GatedDevice(FakeDevice):
    """Holds connect or pause until the test opens the gate."""

    def __init__(self) -> None:
        super().__init__()
        self.gates: dict[str, asyncio.Event] = {}

    def block(self, name: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[name] = gate
        return gate

    async def _wait(self, name: str) -> None:
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()

    async def connect(self) -> str:
        await self._wait("connect")
        return await super().connect()

    async def pause(self) -> Optional[DeviceState]:
        await self._wait("pause")
        return await super().pause()


def test_teardown_during_connect_releases_late_device(
    timers: FakeTimerHost, clock: FakeClock
) -> None:
    device = GatedDevice()
    errors: list[DeviceError] = []
    session = _session(device, timers, clock, on_error=errors.append)

    async def runner() -> None:
        gate = device.block("connect")
        connecting = asyncio.ensure_future(session.connect())
        await asyncio.sleep(0)
        assert session.state is SessionState.CONNECTING
        await session.teardown()
        assert session.state is SessionState.DISCONNECTED
        gate.set()
        with pytest.raises(DeviceError) as excinfo:
            await connecting
        assert excinfo.value.kind is DeviceErrorKind.INITIALIZATION

    asyncio.run(runner())
    assert session.state is SessionState.DISCONNECTED
    assert session.device_id is None
    assert not device.connected
    assert device.listener_count == 0
    assert device.disconnects == 2
    assert errors == []
    assert RemotePlayerSession.active_session() is None


def test_teardown_during_failing_connect_stops_retries(
    timers: FakeTimerHost, clock: FakeClock
) -> None:
    device = GatedDevice()
    device.connect_errors = [
        DeviceError(DeviceErrorKind.INITIALIZATION, "no device") for _ in range(3)
    ]
    session = _session(device, timers, clock)

    async def runner() -> None:
        gate = device.block("connect")
        connecting = asyncio.ensure_future(session.connect())
        await asyncio.sleep(0)
        await session.teardown()
        gate.set()
        with pytest.raises(DeviceError):
            await connecting

    asyncio.run(runner())
    assert device.names().count("connect") == 1
    assert session.state is SessionState.DISCONNECTED
    assert not session.fatal


def test_teardown_during_retry_backoff_stops_retries(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    device.connect_errors = [
        DeviceError(DeviceErrorKind.INITIALIZATION, "no device") for _ in range(3)
    ]
    session = _session(device, timers, clock, retry_delay_s=0.05)

    async def runner() -> None:
        connecting = asyncio.ensure_future(session.connect())
        while session.state is not SessionState.ERROR:
            await asyncio.sleep(0)
        await session.teardown()
        with pytest.raises(DeviceError):
            await connecting

    asyncio.run(runner())
    assert device.names().count("connect") == 1
    assert session.state is SessionState.DISCONNECTED


def test_connect_while_shutting_down_is_rejected(
    timers: FakeTimerHost, clock: FakeClock
) -> None:
    device = GatedDevice()
    session = _session(device, timers, clock)

    async def runner() -> None:
        await session.connect()
        await session.load_and_play(TRACK)
        gate = device.block("pause")
        stopping = asyncio.ensure_future(session.teardown())
        while session.state is not SessionState.DISCONNECTING:
            await asyncio.sleep(0)
        with pytest.raises(DeviceError):
            await session.connect()
        gate.set()
        await stopping

    asyncio.run(runner())
    assert session.state is SessionState.DISCONNECTED


def test_notifications_after_teardown_are_ignored(
    device: FakeDevice, timers: FakeTimerHost, clock: FakeClock
) -> None:
    session = _session(device, timers, clock)

    async def runner() -> None:
        await session.connect()
        await session.load_and_play(TRACK)
        await session.teardown()

    asyncio.run(runner())
    session._handle_device_state(
        DeviceState(position_ms=1, duration_ms=2, paused=False, track_id="t1")
    )
    assert session.estimator.estimate is None


def test_only_one_session_active(
    timers: FakeTimerHost, clock: FakeClock
) -> None:
    first_device = FakeDevice()
    second_device = FakeDevice()
    first = _session(first_device, timers, clock)
    second = _session(second_device, timers, clock)

    async def runner() -> None:
        await first.connect()
        await first.load_and_play(TRACK)
        with pytest.raises(DeviceError) as excinfo:
            await second.connect()
        assert excinfo.value.kind is DeviceErrorKind.INITIALIZATION
        await first.teardown()
        assert await second.connect() == "fake-device"

    asyncio.run(runner())
    assert second.state is SessionState.READY
