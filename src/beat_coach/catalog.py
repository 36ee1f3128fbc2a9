"""Read-only playlist catalogs."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import logging
from pathlib import Path
from typing import Protocol

from beat_coach.errors import NotFoundError
from beat_coach.metadata import display_title, get_track_meta
from beat_coach.playlist import SUPPORTED_EXTENSIONS, Track

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaylistInfo:
    id: str
    name: str
    tracks: tuple[Track, ...]


class Catalog(Protocol):
    def fetch_playlist(self, playlist_id: str) -> PlaylistInfo: ...


def _digest(text: str, length: int) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:length]


def local_playlist_id(directory: Path) -> str:
    """Stable id for a directory; never contains ``_``."""
    return f"local-{_digest(str(directory.resolve()), 12)}"


def local_track_id(path: Path) -> str:
    return _digest(str(path.resolve()), 16)


class LocalCatalog:
    """Treats a directory of audio files as a playlist."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory).expanduser()

    @property
    def playlist_id(self) -> str:
        return local_playlist_id(self.directory)

    def list_files(self) -> list[Path]:
        if not self.directory.is_dir():
            raise NotFoundError(f"Not a directory: {self.directory}")
        files = [
            path
            for path in self.directory.iterdir()
            if path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS
        ]
        return sorted(files, key=lambda path: path.name.lower())

    def fetch_playlist(self, playlist_id: str | None = None) -> PlaylistInfo:
        expected = self.playlist_id
        if playlist_id is not None and playlist_id != expected:
            raise NotFoundError(f"Unknown local playlist: {playlist_id}")
        tracks: list[Track] = []
        for path in self.list_files():
            meta = get_track_meta(path)
            if not meta.duration_ms:
                logger.warning("Skipping %s: unknown duration", path)
                continue
            tracks.append(
                Track(
                    id=local_track_id(path),
                    name=display_title(path, meta),
                    duration_ms=meta.duration_ms,
                    artists=(meta.artist,) if meta.artist else (),
                    uri=str(path),
                )
            )
        logger.info("Loaded %s tracks from %s", len(tracks), self.directory)
        return PlaylistInfo(id=expected, name=self.directory.name, tracks=tuple(tracks))
