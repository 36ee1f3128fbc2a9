"""Workout persistence on top of a key-value backend."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from beat_coach.errors import BeatCoachError, StorageError
from beat_coach.segment_store import SegmentStore
from beat_coach.segments import Segment, segment_from_mapping, segment_to_mapping
from beat_coach.tempo import BpmRecord, TempoBook, bpm_from_mapping, bpm_to_mapping

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class MemoryKeyValueStore:
    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._data if key.startswith(prefix))


def segments_key(playlist_id: str, track_id: str) -> str:
    return f"playlist:{playlist_id}:track:{track_id}:segments"


def bpm_key(playlist_id: str, track_id: str) -> str:
    return f"playlist:{playlist_id}:track:{track_id}:bpm"


class WorkoutStorage:
    """Loads and saves segments and tempos per (playlist, track).

    Backend failures are logged and never propagate: reads come back as
    absent, and the first failed write switches to an in-memory fallback so
    the rest of the session keeps working.
    """

    def __init__(self, backend: KeyValueStore) -> None:
        self._backend = backend
        self._fallback: Optional[MemoryKeyValueStore] = None

    @property
    def degraded(self) -> bool:
        return self._fallback is not None

    @property
    def active_backend(self) -> KeyValueStore:
        return self._fallback if self._fallback is not None else self._backend

    def _read(self, key: str) -> Any | None:
        try:
            return self.active_backend.get(key)
        except Exception as exc:
            error = StorageError(f"Failed to read {key}: {exc}")
            logger.error("%s", error)
            return None

    def _write(self, key: str, value: Any) -> None:
        try:
            self.active_backend.set(key, value)
            return
        except Exception as exc:
            error = StorageError(f"Failed to write {key}: {exc}")
            logger.error("%s", error)
        if self._fallback is None:
            logger.warning("Switching workout storage to in-memory fallback")
            self._fallback = MemoryKeyValueStore()
        self._fallback.set(key, value)

    def load_segments(self, playlist_id: str, track_id: str) -> list[Segment]:
        raw = self._read(segments_key(playlist_id, track_id))
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed segments for %s", track_id)
            return []
        try:
            return [segment_from_mapping(item) for item in raw]
        except BeatCoachError as exc:
            logger.warning("Ignoring malformed segments for %s: %s", track_id, exc)
            return []

    def save_segments(
        self, playlist_id: str, track_id: str, segments: list[Segment]
    ) -> None:
        self._write(
            segments_key(playlist_id, track_id),
            [segment_to_mapping(segment) for segment in segments],
        )

    def load_bpm(self, playlist_id: str, track_id: str) -> Optional[BpmRecord]:
        raw = self._read(bpm_key(playlist_id, track_id))
        if raw is None:
            return None
        try:
            return bpm_from_mapping(raw)
        except BeatCoachError as exc:
            logger.warning("Ignoring malformed BPM for %s: %s", track_id, exc)
            return None

    def save_bpm(self, playlist_id: str, track_id: str, record: BpmRecord) -> None:
        self._write(bpm_key(playlist_id, track_id), bpm_to_mapping(record))

    def load_into(
        self,
        store: SegmentStore,
        tempos: TempoBook,
        track_ids: list[str],
    ) -> int:
        """Seed the store and tempo book; return how many tracks had segments."""
        loaded = 0
        for track_id in track_ids:
            segments = self.load_segments(store.playlist_id, track_id)
            if segments:
                try:
                    store.replace_all(track_id, segments, notify=False)
                    loaded += 1
                except BeatCoachError as exc:
                    logger.warning("Stored segments for %s rejected: %s", track_id, exc)
            record = self.load_bpm(store.playlist_id, track_id)
            if record is not None:
                tempos.load(track_id, record)
        return loaded

    def flush_track(self, store: SegmentStore, tempos: TempoBook, track_id: str) -> None:
        self.save_segments(store.playlist_id, track_id, store.list_segments(track_id))
        record = tempos.peek(track_id)
        if record is not None:
            self.save_bpm(store.playlist_id, track_id, record)
