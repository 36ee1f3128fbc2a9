"""Timer host protocol shared by the scheduler, sampler and debounced writes.

Textual's ``App`` and ``Widget`` satisfy :class:`TimerHost` directly, so the
core runs on the UI event loop without owning any threads.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def stop(self) -> Any: ...


class TimerHost(Protocol):
    def set_interval(
        self, interval: float, callback: Callable[[], Any], **kwargs: Any
    ) -> TimerHandle: ...

    def set_timer(
        self, delay: float, callback: Callable[[], Any], **kwargs: Any
    ) -> TimerHandle: ...


class OwnedTimer:
    """Holds at most one live timer and makes cancellation idempotent."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handle: Optional[TimerHandle] = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def replace(self, handle: TimerHandle) -> None:
        self.cancel()
        self._handle = handle

    def release(self) -> None:
        """Forget a one-shot timer that has already fired."""
        self._handle = None

    def cancel(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is None:
            return
        try:
            handle.stop()
        except Exception:
            logger.exception("Failed to stop timer %s", self.name)


class DebouncedWriter:
    """Coalesces bursts of change signals into one delayed flush per key."""

    def __init__(
        self,
        timers: TimerHost,
        flush: Callable[[str], None],
        *,
        delay_ms: int = 500,
    ) -> None:
        self._timers = timers
        self._flush = flush
        self._delay = max(0, delay_ms) / 1000.0
        self._pending: dict[str, OwnedTimer] = {}

    @property
    def pending(self) -> list[str]:
        return [key for key, timer in self._pending.items() if timer.active]

    def schedule(self, key: str) -> None:
        timer = self._pending.setdefault(key, OwnedTimer(f"persist:{key}"))
        timer.replace(self._timers.set_timer(self._delay, lambda: self._fire(key)))

    def flush_all(self) -> None:
        for key in self.pending:
            self._pending[key].cancel()
            self._flush(key)

    def cancel_all(self) -> None:
        for timer in self._pending.values():
            timer.cancel()

    def _fire(self, key: str) -> None:
        timer = self._pending.get(key)
        if timer is not None:
            timer.release()
        self._flush(key)
