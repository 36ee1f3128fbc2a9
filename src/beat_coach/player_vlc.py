"""VLC-backed local playback device."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, cast
from typing_extensions import TypeAlias

from beat_coach.device import DeviceListeners, DeviceState
from beat_coach.errors import DeviceError, DeviceErrorKind
from beat_coach.playlist import Track

logger = logging.getLogger(__name__)

vlc: Any | None = None
_VLC_IMPORT_ERROR: Optional[Exception] = None

DEVICE_ID = "vlc:local"

Dispatch: TypeAlias = Callable[[Callable[[], None]], None]


def _load_vlc() -> None:
    global vlc
    global _VLC_IMPORT_ERROR
    if vlc is not None or _VLC_IMPORT_ERROR is not None:
        return
    try:
        import vlc as vlc_module  # type: ignore
    except Exception as exc:  # pragma: no cover - platform-dependent import
        vlc = None
        _VLC_IMPORT_ERROR = exc
    else:
        vlc = cast(Any, vlc_module)
        _VLC_IMPORT_ERROR = None


class VlcDevice(DeviceListeners):
    """Plays local files through python-vlc's MediaPlayer.

    VLC raises its events on its own threads; they are handed to
    ``dispatch`` (by default the running loop's ``call_soon_threadsafe``)
    so listeners always run on the event loop.
    """

    def __init__(self, *, dispatch: Optional[Dispatch] = None) -> None:
        super().__init__()
        self._dispatch = dispatch
        self._instance: Any = None
        self._player: Any = None
        self._track: Optional[Track] = None

    @property
    def connected(self) -> bool:
        return self._player is not None

    @property
    def current_track(self) -> Optional[Track]:
        return self._track

    async def connect(self) -> str:
        if self._player is not None:
            return DEVICE_ID
        _load_vlc()
        if vlc is None:
            raise DeviceError(
                DeviceErrorKind.INITIALIZATION,
                "VLC backend is unavailable. Install VLC and the python-vlc package.",
            )
        if self._dispatch is None:
            loop = asyncio.get_running_loop()
            self._dispatch = loop.call_soon_threadsafe
        try:
            self._instance = cast(Any, vlc).Instance()
            self._player = self._instance.media_player_new()
        except Exception as exc:
            self._instance = None
            self._player = None
            raise DeviceError(DeviceErrorKind.INITIALIZATION, str(exc)) from exc
        self._attach_events()
        logger.info("VLC device connected")
        return DEVICE_ID

    def _attach_events(self) -> None:
        vlc_module = cast(Any, vlc)
        handlers = {
            "MediaPlayerPlaying": self._handle_playing,
            "MediaPlayerPaused": self._handle_paused,
            "MediaPlayerEndReached": self._handle_end_reached,
            "MediaPlayerEncounteredError": self._handle_error,
        }
        try:
            event_manager = self._player.event_manager()
        except Exception:
            logger.warning("VLC event manager unavailable; no push notifications")
            return
        for name, handler in handlers.items():
            event_type = getattr(vlc_module.EventType, name, None)
            if event_type is None:
                continue
            try:
                event_manager.event_attach(event_type, handler)
            except Exception:
                logger.warning("Failed to attach VLC event %s", name)

    # --- VLC thread callbacks ---

    def _post(self, callback: Callable[[], None]) -> None:
        dispatch = self._dispatch
        if dispatch is None:
            callback()
            return
        try:
            dispatch(callback)
        except RuntimeError:
            logger.debug("Event loop closed; dropping VLC event")

    def _handle_playing(self, event: object) -> None:
        del event
        self._post(lambda: self._emit_snapshot(paused=False))

    def _handle_paused(self, event: object) -> None:
        del event
        self._post(lambda: self._emit_snapshot(paused=True))

    def _handle_end_reached(self, event: object) -> None:
        del event
        self._post(self._emit_end)

    def _handle_error(self, event: object) -> None:
        del event
        self._post(
            lambda: self.emit_error(
                DeviceError(DeviceErrorKind.PLAYBACK, "VLC could not play the media")
            )
        )

    def _emit_snapshot(self, *, paused: bool) -> None:
        state = self._snapshot(paused=paused)
        if state is not None:
            self.emit_state(state)

    def _emit_end(self) -> None:
        track = self._track
        if track is None:
            return
        duration = self._length_ms() or track.duration_ms
        self.emit_state(
            DeviceState(
                position_ms=duration,
                duration_ms=duration,
                paused=True,
                track_id=track.id,
            )
        )

    # --- Commands ---

    def _require_player(self) -> Any:
        if self._player is None:
            raise DeviceError(DeviceErrorKind.INITIALIZATION, "VLC device not connected")
        return self._player

    async def load_and_play(
        self, track: Track, position_ms: int = 0
    ) -> Optional[DeviceState]:
        player = self._require_player()
        location = track.uri or track.id
        try:
            media = self._instance.media_new(location)
            player.set_media(media)
            player.play()
            if position_ms > 0:
                player.set_time(int(position_ms))
        except Exception as exc:
            raise DeviceError(
                DeviceErrorKind.PLAYBACK, f"Failed to load {location}: {exc}"
            ) from exc
        self._track = track
        logger.info("Loaded %s at %sms", location, position_ms)
        return DeviceState(
            position_ms=int(position_ms),
            duration_ms=track.duration_ms,
            paused=False,
            track_id=track.id,
        )

    async def pause(self) -> Optional[DeviceState]:
        player = self._require_player()
        try:
            player.set_pause(1)
        except Exception as exc:
            raise DeviceError(DeviceErrorKind.PLAYBACK, str(exc)) from exc
        return self._snapshot(paused=True)

    async def resume(self) -> Optional[DeviceState]:
        player = self._require_player()
        try:
            player.set_pause(0)
        except Exception as exc:
            raise DeviceError(DeviceErrorKind.PLAYBACK, str(exc)) from exc
        return self._snapshot(paused=False)

    async def seek(self, position_ms: int) -> Optional[DeviceState]:
        player = self._require_player()
        target = max(0, int(position_ms))
        try:
            player.set_time(target)
        except Exception as exc:
            raise DeviceError(DeviceErrorKind.PLAYBACK, str(exc)) from exc
        state = self._snapshot()
        if state is None:
            return None
        return DeviceState(
            position_ms=target,
            duration_ms=state.duration_ms,
            paused=state.paused,
            track_id=state.track_id,
        )

    async def get_current_state(self) -> Optional[DeviceState]:
        if self._player is None:
            return None
        return self._snapshot()

    async def disconnect(self) -> None:
        player = self._player
        instance = self._instance
        self._player = None
        self._instance = None
        self._track = None
        if player is not None:
            try:
                player.stop()
            finally:
                release = getattr(player, "release", None)
                if release is not None:
                    release()
        if instance is not None:
            release = getattr(instance, "release", None)
            if release is not None:
                release()
        logger.info("VLC device disconnected")

    # --- Helpers ---

    def _position_ms(self) -> Optional[int]:
        try:
            position = self._player.get_time()
        except Exception:
            return None
        if position is None or position < 0:
            return None
        return int(position)

    def _length_ms(self) -> Optional[int]:
        try:
            length = self._player.get_length()
        except Exception:
            return None
        if length is None or length <= 0:
            return None
        return int(length)

    def _is_playing(self) -> bool:
        try:
            return bool(self._player.is_playing())
        except Exception:
            return False

    def _snapshot(self, *, paused: Optional[bool] = None) -> Optional[DeviceState]:
        track = self._track
        if self._player is None or track is None:
            return None
        if paused is None:
            paused = not self._is_playing()
        return DeviceState(
            position_ms=self._position_ms() or 0,
            duration_ms=self._length_ms() or track.duration_ms,
            paused=paused,
            track_id=track.id,
        )
