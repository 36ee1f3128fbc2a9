"""Workout import/export documents (JSON)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Optional

from beat_coach.errors import BeatCoachError, ValidationError
from beat_coach.segment_store import SegmentStore
from beat_coach.segments import segment_from_mapping, segment_to_mapping
from beat_coach.tempo import TempoBook, bpm_from_mapping, bpm_to_mapping

logger = logging.getLogger(__name__)


@dataclass
class ImportReport:
    applied: list[str] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)


def composite_key(playlist_id: str, track_id: str) -> str:
    return f"{playlist_id}_{track_id}"


def split_key(key: str) -> tuple[Optional[str], str]:
    """Split ``"{playlistId}_{trackId}"``; a key without ``_`` is a track id."""
    if "_" not in key:
        return None, key
    playlist_id, track_id = key.split("_", 1)
    return playlist_id, track_id


def export_workout(
    playlist_id: str,
    track_ids: Iterable[str],
    store: SegmentStore,
    tempos: TempoBook,
) -> dict[str, Any]:
    tracks: dict[str, Any] = {}
    for track_id in track_ids:
        segments = store.list_segments(track_id)
        record = tempos.peek(track_id)
        if not segments and record is None:
            continue
        tracks[composite_key(playlist_id, track_id)] = {
            "segments": [segment_to_mapping(segment) for segment in segments],
            "bpm": bpm_to_mapping(record) if record is not None else None,
        }
    return {
        "exportDate": datetime.now(timezone.utc).isoformat(),
        "playlistId": playlist_id,
        "tracks": tracks,
    }


def import_workout(
    document: object,
    store: SegmentStore,
    tempos: TempoBook,
    *,
    known_track_ids: Optional[set[str]] = None,
) -> ImportReport:
    """Apply every well-formed entry; report the rest as skipped.

    Each entry replaces the track's segments wholesale, so an entry with
    overlapping or out-of-range segments is rejected without touching the
    track.
    """
    if not isinstance(document, dict):
        raise ValidationError("Workout document must be an object")
    entries = document.get("tracks")
    if not isinstance(entries, dict):
        raise ValidationError("Workout document has no 'tracks' object")
    report = ImportReport()
    for key, entry in entries.items():
        _, track_id = split_key(str(key))
        if not track_id:
            report.skipped.append((key, "empty track id"))
            continue
        if known_track_ids is not None and track_id not in known_track_ids:
            report.skipped.append((key, "track not in playlist"))
            continue
        try:
            if not isinstance(entry, dict):
                raise ValidationError("entry must be an object")
            raw_segments = entry.get("segments")
            if not isinstance(raw_segments, list):
                raise ValidationError("segments must be a list")
            segments = [segment_from_mapping(item) for item in raw_segments]
            raw_bpm = entry.get("bpm")
            record = bpm_from_mapping(raw_bpm) if raw_bpm is not None else None
            store.replace_all(track_id, segments)
        except BeatCoachError as exc:
            logger.warning("Skipping import entry %s: %s", key, exc)
            report.skipped.append((key, str(exc)))
            continue
        if record is not None:
            tempos.load(track_id, record)
        report.applied.append(track_id)
    logger.info(
        "Imported %s tracks, skipped %s", len(report.applied), len(report.skipped)
    )
    return report


def read_document(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValidationError(f"File not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON in {path}: {exc}") from exc


def write_document(path: Path, document: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    temp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    os.replace(temp_path, path)
