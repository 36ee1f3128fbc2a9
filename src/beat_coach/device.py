"""Narrow interface to an out-of-process playback device."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Callable, Optional, Protocol
from typing_extensions import TypeAlias

from beat_coach.errors import DeviceError

if TYPE_CHECKING:
    from beat_coach.playlist import Track

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceState:
    """Raw state pushed by a device; the session turns it into notifications."""

    position_ms: int
    duration_ms: int
    paused: bool
    track_id: Optional[str]


StateListener: TypeAlias = Callable[[DeviceState], None]
ErrorListener: TypeAlias = Callable[[DeviceError], None]


class RemoteDevice(Protocol):
    """Capabilities the session needs; tests inject a fake implementation.

    Commands may return the state the device reported in its response; the
    session applies it only if no newer update has landed meanwhile.
    """

    async def connect(self) -> str: ...

    async def load_and_play(
        self, track: "Track", position_ms: int = 0
    ) -> Optional[DeviceState]: ...

    async def pause(self) -> Optional[DeviceState]: ...

    async def resume(self) -> Optional[DeviceState]: ...

    async def seek(self, position_ms: int) -> Optional[DeviceState]: ...

    async def get_current_state(self) -> Optional[DeviceState]: ...

    def on_state_changed(self, listener: StateListener) -> None: ...

    def on_error(self, listener: ErrorListener) -> None: ...

    def remove_all_listeners(self) -> None: ...

    async def disconnect(self) -> None: ...


class DeviceListeners:
    """Listener bookkeeping shared by the concrete device adapters."""

    def __init__(self) -> None:
        self._state_listeners: list[StateListener] = []
        self._error_listeners: list[ErrorListener] = []

    def on_state_changed(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def on_error(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def remove_all_listeners(self) -> None:
        self._state_listeners.clear()
        self._error_listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._state_listeners) + len(self._error_listeners)

    def emit_state(self, state: DeviceState) -> None:
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Device state listener failed")

    def emit_error(self, error: DeviceError) -> None:
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("Device error listener failed")
