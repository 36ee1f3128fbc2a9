"""Configuration persistence for Beat Coach."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

BACKENDS = {"vlc", "spotify"}
SPOTIFY_TOKEN_ENV = "BEAT_COACH_SPOTIFY_TOKEN"


@dataclass(frozen=True)
class AppConfig:
    """Immutable user configuration loaded from disk."""

    countdown_threshold_beats: int = 8
    min_segment_ms: int = 1000
    poll_interval_ms: int = 50
    sample_interval_ms: int = 50
    go_cue_ms: int = 2000
    persist_debounce_ms: int = 500
    default_bpm: int = 128
    max_connect_retries: int = 3
    backend: str = "vlc"
    device_name: str = "Beat Coach"
    last_playlist_id: Optional[str] = None


def get_config_dir(app_name: str = "beat-coach") -> Path:
    """Return the per-user config directory for the current platform."""
    if os.name == "nt":
        base = os.environ.get("APPDATA")
        if base:
            root = Path(base)
        else:
            root = Path.home() / "AppData" / "Roaming"
        return _ensure_dir(root / app_name)
    elif os.name == "posix":
        if _is_macos():
            return _ensure_dir(
                Path.home() / "Library" / "Application Support" / app_name
            )
        base = os.environ.get("XDG_CONFIG_HOME")
        root = Path(base) if base else Path.home() / ".config"
        return _ensure_dir(root / app_name)
    else:
        return _ensure_dir(Path.home() / ".config" / app_name)


def get_config_path() -> Path:
    """Return the full config file path."""
    return get_config_dir() / "config.json"


def load_config() -> AppConfig:
    """Load configuration from disk, falling back to defaults on error."""
    path = get_config_path()
    if not path.exists():
        return AppConfig()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.exception("Failed to load config from %s", path)
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()
    return _config_from_mapping(raw)


def save_config(cfg: AppConfig) -> None:
    """Persist configuration to disk atomically."""
    path = get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    data = {
        "countdown_threshold_beats": cfg.countdown_threshold_beats,
        "min_segment_ms": cfg.min_segment_ms,
        "poll_interval_ms": cfg.poll_interval_ms,
        "sample_interval_ms": cfg.sample_interval_ms,
        "go_cue_ms": cfg.go_cue_ms,
        "persist_debounce_ms": cfg.persist_debounce_ms,
        "default_bpm": cfg.default_bpm,
        "max_connect_retries": cfg.max_connect_retries,
        "backend": cfg.backend,
        "device_name": cfg.device_name,
        "last_playlist_id": cfg.last_playlist_id,
    }
    temp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    os.replace(temp_path, path)


def get_spotify_token() -> Optional[str]:
    token = os.environ.get(SPOTIFY_TOKEN_ENV, "").strip()
    return token or None


def _ensure_dir(path: Path) -> Path:
    """Create the directory if needed and return the path."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def _is_macos() -> bool:
    """Return True when running on macOS."""
    return os.uname().sysname == "Darwin" if hasattr(os, "uname") else False


def _get_int(
    raw: dict[str, Any],
    key: str,
    default: int,
    *,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Fetch an integer value with optional clamping."""
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        value = default
    if min_value is not None:
        value = max(min_value, value)
    if max_value is not None:
        value = min(max_value, value)
    return value


def _get_str(
    raw: dict[str, Any],
    key: str,
    default: str,
    *,
    allow_empty: bool = False,
) -> str:
    """Fetch a string value, optionally allowing empty strings."""
    value = raw.get(key, default)
    if not isinstance(value, str):
        return default
    if not value and not allow_empty:
        return default
    return value


def _config_from_mapping(raw: dict[str, Any]) -> AppConfig:
    """Normalize raw JSON data into an AppConfig."""
    backend = raw.get("backend", "vlc")
    if backend not in BACKENDS:
        backend = "vlc"
    last_playlist_id = raw.get("last_playlist_id")
    if last_playlist_id is not None and not isinstance(last_playlist_id, str):
        last_playlist_id = None
    return AppConfig(
        countdown_threshold_beats=_get_int(
            raw, "countdown_threshold_beats", 8, min_value=1, max_value=64
        ),
        min_segment_ms=_get_int(
            raw, "min_segment_ms", 1000, min_value=100, max_value=60_000
        ),
        poll_interval_ms=_get_int(
            raw, "poll_interval_ms", 50, min_value=10, max_value=1000
        ),
        sample_interval_ms=_get_int(
            raw, "sample_interval_ms", 50, min_value=10, max_value=1000
        ),
        go_cue_ms=_get_int(raw, "go_cue_ms", 2000, min_value=0, max_value=30_000),
        persist_debounce_ms=_get_int(
            raw, "persist_debounce_ms", 500, min_value=0, max_value=10_000
        ),
        default_bpm=_get_int(raw, "default_bpm", 128, min_value=40, max_value=250),
        max_connect_retries=_get_int(
            raw, "max_connect_retries", 3, min_value=1, max_value=10
        ),
        backend=backend,
        device_name=_get_str(raw, "device_name", "Beat Coach"),
        last_playlist_id=last_playlist_id,
    )
