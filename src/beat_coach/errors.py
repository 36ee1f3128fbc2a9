"""Error taxonomy shared by the workout core."""

from __future__ import annotations

from enum import Enum


class BeatCoachError(Exception):
    """Base class for all Beat Coach errors."""


class ValidationError(BeatCoachError):
    """A proposed segment or tempo change was rejected."""


class OverlapError(ValidationError):
    """Proposed segment bounds overlap another segment on the same track."""

    def __init__(self, message: str, *, conflicting_id: str | None = None) -> None:
        super().__init__(message)
        self.conflicting_id = conflicting_id


class BoundsError(ValidationError):
    """Segment bounds are inverted or fall outside the track."""


class NotFoundError(BeatCoachError):
    """A segment or track could not be found."""


class StorageError(BeatCoachError):
    """Persistence backend failed to read or write a value."""


class DeviceErrorKind(str, Enum):
    INITIALIZATION = "initialization"
    AUTHENTICATION = "authentication"
    ACCOUNT = "account"
    PLAYBACK = "playback"


class DeviceError(BeatCoachError):
    """Error reported by the remote playback device."""

    def __init__(self, kind: DeviceErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def fatal(self) -> bool:
        """Authentication failures end the session; the rest are banners."""
        return self.kind is DeviceErrorKind.AUTHENTICATION

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.args[0] if self.args else ''}"
