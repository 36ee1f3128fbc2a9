"""Per-track tempo (BPM) records."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Callable, Optional

from beat_coach.errors import ValidationError

DEFAULT_TEMPO = 128.0
MIN_TEMPO = 40.0
MAX_TEMPO = 250.0

_TITLE_PATTERNS = (
    re.compile(r"\((\d{2,3})\s*BPM\)", re.IGNORECASE),
    re.compile(r"[-\s](\d{2,3})\s*BPM", re.IGNORECASE),
    re.compile(r"(\d{2,3})BPM", re.IGNORECASE),
)


@dataclass(frozen=True)
class BpmRecord:
    tempo: float
    is_manual: bool = False


def beat_duration_ms(tempo: float) -> float:
    if tempo <= 0:
        raise ValidationError(f"Tempo must be positive, got {tempo}")
    return 60_000.0 / tempo


def validate_tempo(tempo: object) -> float:
    if isinstance(tempo, bool) or not isinstance(tempo, (int, float)):
        raise ValidationError(f"Tempo must be a number, got {tempo!r}")
    if not MIN_TEMPO <= float(tempo) <= MAX_TEMPO:
        raise ValidationError(
            f"Tempo {tempo} outside {MIN_TEMPO:.0f}..{MAX_TEMPO:.0f} BPM"
        )
    return float(tempo)


def extract_bpm_from_title(title: str) -> Optional[int]:
    """Return a tempo embedded in a title like ``Song (128 BPM)``."""
    for pattern in _TITLE_PATTERNS:
        match = pattern.search(title)
        if not match:
            continue
        bpm = int(match.group(1))
        if 60 <= bpm <= 200:
            return bpm
    return None


def bpm_from_mapping(raw: object) -> BpmRecord:
    if not isinstance(raw, dict):
        raise ValidationError("BPM entry must be an object")
    tempo = validate_tempo(raw.get("tempo"))
    is_manual = raw.get("isManual", True)
    if not isinstance(is_manual, bool):
        is_manual = True
    return BpmRecord(tempo=tempo, is_manual=is_manual)


def bpm_to_mapping(record: BpmRecord) -> dict[str, Any]:
    return {"tempo": record.tempo, "isManual": record.is_manual}


class TempoBook:
    """Tempo records for one playlist, created lazily on first access."""

    def __init__(
        self,
        default_tempo: float = DEFAULT_TEMPO,
        *,
        on_change: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.default_tempo = default_tempo
        self._records: dict[str, BpmRecord] = {}
        self._on_change = on_change

    def set_on_change(self, callback: Optional[Callable[[str], None]]) -> None:
        self._on_change = callback

    def get(self, track_id: str, title: str = "") -> BpmRecord:
        record = self._records.get(track_id)
        if record is None:
            guessed = extract_bpm_from_title(title) if title else None
            record = BpmRecord(tempo=float(guessed or self.default_tempo))
            self._records[track_id] = record
        return record

    def peek(self, track_id: str) -> Optional[BpmRecord]:
        return self._records.get(track_id)

    def set_manual(self, track_id: str, tempo: float) -> BpmRecord:
        record = BpmRecord(tempo=validate_tempo(tempo), is_manual=True)
        self._records[track_id] = record
        if self._on_change is not None:
            self._on_change(track_id)
        return record

    def load(self, track_id: str, record: BpmRecord) -> None:
        """Seed a record from persistence without signalling a change."""
        self._records[track_id] = record
