"""Tests for the VLC device using fakes."""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Callable

import pytest

from beat_coach import player_vlc
from beat_coach.device import DeviceState
from beat_coach.errors import DeviceError, DeviceErrorKind
from beat_coach.playlist import Track

TRACK = Track(id="t1", name="One", duration_ms=180_000, uri="/music/one.mp3")


class FakeEventManager:
    def __init__(self) -> None:
        self.handlers: dict[str, Callable[[object], None]] = {}

    def event_attach(self, event_type: str, handler: Callable[[object], None]) -> None:
        self.handlers[event_type] = handler


class FakeMediaPlayer:
    def __init__(self) -> None:
        self.media = None
        self.time = 0
        self.paused = 0
        self.playing = True
        self.stopped = False
        self.released = False
        self.events = FakeEventManager()

    def event_manager(self) -> FakeEventManager:
        return self.events

    def set_media(self, media: str) -> None:
        self.media = media

    def play(self) -> None:
        self.playing = True

    def set_pause(self, value: int) -> None:
        self.paused = value
        self.playing = not value

    def stop(self) -> None:
        self.stopped = True

    def release(self) -> None:
        self.released = True

    def is_playing(self) -> int:
        return 1 if self.playing else 0

    def get_time(self) -> int:
        return self.time

    def get_length(self) -> int:
        return 181_000

    def set_time(self, value: int) -> None:
        self.time = value


class FakeInstance:
    def __init__(self) -> None:
        self.player = FakeMediaPlayer()

    def media_player_new(self) -> FakeMediaPlayer:
        return self.player

    def media_new(self, path: str) -> str:
        return path


class FakeEventType:
    MediaPlayerPlaying = "playing"
    MediaPlayerPaused = "paused"
    MediaPlayerEndReached = "end"
    MediaPlayerEncounteredError = "error"


class FakeVlc:
    EventType = FakeEventType
    last_instance: Any = None

    @staticmethod
    def Instance() -> FakeInstance:
        FakeVlc.last_instance = FakeInstance()
        return FakeVlc.last_instance


def _device(monkeypatch: pytest.MonkeyPatch) -> player_vlc.VlcDevice:
    monkeypatch.setattr(player_vlc, "vlc", FakeVlc)
    monkeypatch.setattr(player_vlc, "_VLC_IMPORT_ERROR", None)
    return player_vlc.VlcDevice(dispatch=lambda callback: callback())


def test_load_and_commands(monkeypatch: pytest.MonkeyPatch) -> None:
    device = _device(monkeypatch)

    async def runner() -> list[Any]:
        assert await device.connect() == player_vlc.DEVICE_ID
        loaded = await device.load_and_play(TRACK, 4_000)
        paused = await device.pause()
        resumed = await device.resume()
        sought = await device.seek(-5)
        return [loaded, paused, resumed, sought]

    loaded, paused, resumed, sought = asyncio.run(runner())
    player = FakeVlc.last_instance.player
    assert player.media == "/music/one.mp3"
    assert loaded == DeviceState(4_000, 180_000, False, "t1")
    assert paused.paused is True
    assert resumed.paused is False
    assert sought.position_ms == 0
    assert player.time == 0


def test_events_are_forwarded(monkeypatch: pytest.MonkeyPatch) -> None:
    device = _device(monkeypatch)
    states: list[DeviceState] = []
    errors: list[DeviceError] = []
    device.on_state_changed(states.append)
    device.on_error(errors.append)

    async def runner() -> None:
        await device.connect()
        await device.load_and_play(TRACK)

    asyncio.run(runner())
    handlers = FakeVlc.last_instance.player.events.handlers
    assert set(handlers) == {"playing", "paused", "end", "error"}
    handlers["paused"](object())
    handlers["end"](object())
    handlers["error"](object())
    assert states[0].paused is True
    assert states[1] == DeviceState(181_000, 181_000, True, "t1")
    assert errors[0].kind is DeviceErrorKind.PLAYBACK


def test_commands_require_connection(monkeypatch: pytest.MonkeyPatch) -> None:
    device = _device(monkeypatch)
    with pytest.raises(DeviceError) as excinfo:
        asyncio.run(device.pause())
    assert excinfo.value.kind is DeviceErrorKind.INITIALIZATION
    assert asyncio.run(device.get_current_state()) is None


def test_disconnect_releases_player(monkeypatch: pytest.MonkeyPatch) -> None:
    device = _device(monkeypatch)

    async def runner() -> None:
        await device.connect()
        await device.disconnect()

    asyncio.run(runner())
    player = FakeVlc.last_instance.player
    assert player.stopped and player.released
    assert not device.connected


def test_missing_vlc_is_initialization_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(player_vlc, "vlc", None)
    monkeypatch.setattr(player_vlc, "_VLC_IMPORT_ERROR", RuntimeError("missing"))
    with pytest.raises(DeviceError) as excinfo:
        asyncio.run(player_vlc.VlcDevice().connect())
    assert excinfo.value.kind is DeviceErrorKind.INITIALIZATION


def test_load_vlc_import_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    import builtins

    original_import = builtins.__import__

    def fake_import(name, *args, **kwargs):
        if name == "vlc":
            raise ModuleNotFoundError("vlc")
        return original_import(name, *args, **kwargs)

    monkeypatch.setattr(builtins, "__import__", fake_import)
    monkeypatch.setattr(player_vlc, "vlc", None)
    monkeypatch.setattr(player_vlc, "_VLC_IMPORT_ERROR", None)
    player_vlc._load_vlc()
    assert player_vlc.vlc is None
    assert isinstance(player_vlc._VLC_IMPORT_ERROR, ModuleNotFoundError)


def test_load_vlc_success(monkeypatch: pytest.MonkeyPatch) -> None:
    class DummyVlc:
        pass

    monkeypatch.setitem(sys.modules, "vlc", DummyVlc)
    monkeypatch.setattr(player_vlc, "vlc", None)
    monkeypatch.setattr(player_vlc, "_VLC_IMPORT_ERROR", None)
    player_vlc._load_vlc()
    assert player_vlc.vlc is DummyVlc
    assert player_vlc._VLC_IMPORT_ERROR is None


@pytest.mark.vlc
def test_real_vlc_connects() -> None:
    player_vlc._load_vlc()
    if player_vlc.vlc is None:
        pytest.skip("python-vlc or libvlc not available")

    async def runner() -> str:
        device = player_vlc.VlcDevice()
        try:
            return await device.connect()
        finally:
            await device.disconnect()

    try:
        device_id = asyncio.run(runner())
    except DeviceError as exc:
        pytest.skip(f"VLC could not start: {exc}")
    assert device_id == player_vlc.DEVICE_ID
