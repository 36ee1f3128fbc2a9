"""Playlist timeline and track sequencing for Beat Coach."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
import logging
from typing import Callable, Iterable, Optional, Protocol

from beat_coach.segment_store import SegmentStore
from beat_coach.segments import Segment
from beat_coach.scheduler import next_segment

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".mp3", ".flac", ".wav", ".ogg", ".m4a", ".aac"}


@dataclass(frozen=True)
class Track:
    """Represents a single track from a catalog."""

    id: str
    name: str
    duration_ms: int
    artists: tuple[str, ...] = ()
    artwork_url: Optional[str] = None
    uri: Optional[str] = None

    @property
    def artist_line(self) -> str:
        return ", ".join(self.artists)


@dataclass(frozen=True)
class TimelineEntry:
    track: Track
    offset_ms: int

    @property
    def end_ms(self) -> int:
        return self.offset_ms + self.track.duration_ms


@dataclass(frozen=True)
class AbsoluteSegment:
    segment: Segment
    track_index: int
    absolute_start: int
    absolute_end: int


def build_timeline(tracks: Iterable[Track]) -> list[TimelineEntry]:
    """Prefix-sum track durations into absolute start offsets."""
    entries: list[TimelineEntry] = []
    offset = 0
    for track in tracks:
        entries.append(TimelineEntry(track=track, offset_ms=offset))
        offset += max(0, track.duration_ms)
    return entries


def total_duration(timeline: list[TimelineEntry]) -> int:
    return timeline[-1].end_ms if timeline else 0


def locate(timeline: list[TimelineEntry], absolute_ms: int) -> Optional[tuple[int, int]]:
    """Map an absolute playlist position to ``(track_index, local_ms)``."""
    if not timeline or absolute_ms < 0:
        return None
    if absolute_ms >= total_duration(timeline):
        last = len(timeline) - 1
        return last, timeline[last].track.duration_ms
    offsets = [entry.offset_ms for entry in timeline]
    index = bisect_right(offsets, absolute_ms) - 1
    return index, absolute_ms - timeline[index].offset_ms


def absolute_segments(
    timeline: list[TimelineEntry], store: SegmentStore
) -> list[AbsoluteSegment]:
    items: list[AbsoluteSegment] = []
    for index, entry in enumerate(timeline):
        for segment in store.list_segments(entry.track.id):
            items.append(
                AbsoluteSegment(
                    segment=segment,
                    track_index=index,
                    absolute_start=entry.offset_ms + segment.start_time,
                    absolute_end=entry.offset_ms + segment.end_time,
                )
            )
    items.sort(key=lambda item: item.absolute_start)
    return items


def configured_tracks(tracks: Iterable[Track], store: SegmentStore) -> list[Track]:
    """Keep only tracks that have at least one segment."""
    return [track for track in tracks if store.has_segments(track.id)]


class Playlist:
    """A simple playlist with a current index."""

    def __init__(self, tracks: Iterable[Track], index: int = 0, wrap: bool = False):
        self.tracks = list(tracks)
        self.index = index
        self.wrap = wrap
        self.clamp_index()

    def is_empty(self) -> bool:
        return not self.tracks

    def is_last(self) -> bool:
        return not self.is_empty() and self.index >= len(self.tracks) - 1

    def clamp_index(self) -> None:
        if self.is_empty():
            self.index = -1
            return
        self.index = max(0, min(self.index, len(self.tracks) - 1))

    def current(self) -> Optional[Track]:
        if self.is_empty():
            return None
        return self.tracks[self.index]

    def set_index(self, index: int) -> Optional[Track]:
        self.index = index
        self.clamp_index()
        return self.current()

    def next(self) -> Optional[Track]:
        if self.is_empty():
            return None
        if self.wrap:
            self.index = (self.index + 1) % len(self.tracks)
        else:
            if self.index >= len(self.tracks) - 1:
                return None
            self.index += 1
        return self.current()

    def prev(self) -> Optional[Track]:
        if self.is_empty():
            return None
        if self.wrap:
            self.index = (self.index - 1) % len(self.tracks)
        else:
            if self.index <= 0:
                return None
            self.index -= 1
        return self.current()


class TrackLoader(Protocol):
    async def load_and_play(self, track: Track, position_ms: int = 0) -> object: ...

    async def seek(self, position_ms: int) -> object: ...


class PlaylistSequencer:
    """Advances through the playlist and keeps the absolute timeline current."""

    def __init__(
        self,
        tracks: Iterable[Track],
        loader: TrackLoader,
        *,
        on_track_changed: Optional[Callable[[int, Track], None]] = None,
    ) -> None:
        self._loader = loader
        self._on_track_changed = on_track_changed
        self._playlist = Playlist([])
        self._timeline: list[TimelineEntry] = []
        self._advancing = False
        self.finished = False
        self.set_tracks(tracks)

    def set_tracks(self, tracks: Iterable[Track]) -> None:
        """Replace the track list and recompute offsets."""
        current = self._playlist.current()
        self._playlist = Playlist(tracks, index=max(0, self._playlist.index))
        if current is not None:
            for index, track in enumerate(self._playlist.tracks):
                if track.id == current.id:
                    self._playlist.set_index(index)
                    break
        self._timeline = build_timeline(self._playlist.tracks)

    @property
    def tracks(self) -> list[Track]:
        return list(self._playlist.tracks)

    @property
    def timeline(self) -> list[TimelineEntry]:
        return list(self._timeline)

    @property
    def current_index(self) -> int:
        return self._playlist.index

    @property
    def current_track(self) -> Optional[Track]:
        return self._playlist.current()

    @property
    def advancing(self) -> bool:
        return self._advancing

    @property
    def current_offset_ms(self) -> int:
        if not self._timeline or self.current_index < 0:
            return 0
        return self._timeline[self.current_index].offset_ms

    @property
    def total_duration_ms(self) -> int:
        return total_duration(self._timeline)

    def absolute_position(self, local_ms: float) -> float:
        return self.current_offset_ms + local_ms

    async def start(self, position_ms: int = 0) -> Optional[Track]:
        track = self.current_track
        if track is None:
            return None
        self.finished = False
        await self._load(track, position_ms)
        return track

    async def on_track_ended(self, track_id: Optional[str] = None) -> bool:
        """Advance once for a track-ended signal; duplicates are ignored."""
        current = self.current_track
        if current is None or self.finished:
            return False
        if track_id is not None and track_id != current.id:
            logger.debug("Ignoring track-ended for stale track %s", track_id)
            return False
        if self._advancing:
            logger.debug("Advance already in flight; ignoring track-ended")
            return False
        if self._playlist.is_last():
            logger.info("Reached end of playlist")
            self.finished = True
            return False
        self._advancing = True
        try:
            track = self._playlist.next()
            if track is None:
                self.finished = True
                return False
            logger.info("Advancing to track %s (%s)", self.current_index, track.id)
            await self._load(track, 0)
            return True
        finally:
            self._advancing = False

    async def play_index(self, index: int, position_ms: int = 0) -> Optional[Track]:
        if self._advancing or not 0 <= index < len(self._playlist.tracks):
            return None
        self._advancing = True
        try:
            track = self._playlist.set_index(index)
            if track is None:
                return None
            self.finished = False
            await self._load(track, position_ms)
            return track
        finally:
            self._advancing = False

    async def next_track(self) -> Optional[Track]:
        if self._playlist.is_last():
            return None
        return await self.play_index(self.current_index + 1)

    async def previous_track(self) -> Optional[Track]:
        if self.current_index <= 0:
            return None
        return await self.play_index(self.current_index - 1)

    async def jump_to_next_segment(
        self, position_ms: float, store: SegmentStore
    ) -> Optional[int]:
        """Seek to the start of the next segment on the current track."""
        track = self.current_track
        if track is None:
            return None
        target = next_segment(store.list_segments(track.id), position_ms)
        if target is None:
            logger.debug("No next segment after %s", position_ms)
            return None
        await self._loader.seek(round(target.start_time))
        return target.start_time

    async def _load(self, track: Track, position_ms: int) -> None:
        # Listeners switch tracks before the device round-trip starts.
        if self._on_track_changed is not None:
            self._on_track_changed(self.current_index, track)
        await self._loader.load_and_play(track, position_ms)
