"""Audio file metadata for local catalog tracks."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path

from mutagen import File as MutagenFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackMeta:
    artist: str | None
    title: str | None
    duration_ms: int | None


_TRACK_META_CACHE: dict[Path, TrackMeta] = {}

_EMPTY = TrackMeta(artist=None, title=None, duration_ms=None)


def _extract_text(value: object | None) -> str | None:
    if value is None:
        return None
    if hasattr(value, "text"):
        value = getattr(value, "text", value)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    if isinstance(value, bytes):
        text = value.decode("utf-8", errors="replace")
    else:
        text = str(value)
    return text.strip() or None


def _read_tag(tags: object | None, keys: tuple[str, ...]) -> str | None:
    getter = getattr(tags, "get", None)
    if getter is None:
        return None
    for key in keys:
        try:
            value = getter(key)
        except (KeyError, ValueError):
            continue
        text = _extract_text(value)
        if text:
            return text
    return None


def _read_duration(audio: object) -> int | None:
    info = getattr(audio, "info", None)
    length = getattr(info, "length", None)
    if not isinstance(length, (int, float)) or length <= 0:
        return None
    return int(round(length * 1000))


def read_track_meta(path: Path) -> TrackMeta:
    """Best-effort extraction; unreadable files yield empty metadata."""
    try:
        audio = MutagenFile(path)
    except Exception as exc:
        logger.warning("Failed to read metadata from %s: %s", path, exc)
        return _EMPTY
    if not audio:
        return _EMPTY
    tags = getattr(audio, "tags", None)
    return TrackMeta(
        artist=_read_tag(tags, ("artist", "ARTIST", "TPE1", "TPE2", "\xa9ART", "aART")),
        title=_read_tag(tags, ("title", "TITLE", "TIT2", "\xa9nam")),
        duration_ms=_read_duration(audio),
    )


def get_track_meta(path: Path) -> TrackMeta:
    cached = _TRACK_META_CACHE.get(path)
    if cached is not None:
        return cached
    meta = read_track_meta(path)
    _TRACK_META_CACHE[path] = meta
    return meta


def display_title(path: Path, meta: TrackMeta | None = None) -> str:
    if meta and meta.title:
        return meta.title
    return path.stem
