"""Wires store, tempos, scheduler, sequencer and session into one player."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from beat_coach.catalog import PlaylistInfo
from beat_coach.config import AppConfig
from beat_coach.device import RemoteDevice
from beat_coach.errors import DeviceError, ValidationError
from beat_coach.estimator import PositionEstimator
from beat_coach.playlist import PlaylistSequencer, Track, configured_tracks
from beat_coach.scheduler import BeatScheduler, Countdown, EventKind, SchedulerEvent
from beat_coach.segment_editor import EditResult, SegmentEditor
from beat_coach.segment_store import SegmentStore
from beat_coach.segments import Segment
from beat_coach.session import RemotePlayerSession, SessionState
from beat_coach.storage import WorkoutStorage
from beat_coach.tempo import TempoBook
from beat_coach.timers import DebouncedWriter, TimerHost

logger = logging.getLogger(__name__)

BPM_STEP = 1.0


class WorkoutPlayer:
    """One playback session over a playlist's configured tracks.

    UI layers drive it through the ``toggle``/``next_track``/... coroutines
    and the editing helpers, and observe it through ``on_event``,
    ``on_position`` and ``on_message``.
    """

    def __init__(
        self,
        playlist: PlaylistInfo,
        device: RemoteDevice,
        timers: TimerHost,
        storage: WorkoutStorage,
        *,
        config: Optional[AppConfig] = None,
        all_tracks: bool = False,
        estimator: Optional[PositionEstimator] = None,
        on_event: Optional[Callable[[SchedulerEvent], None]] = None,
        on_position: Optional[Callable[[float], None]] = None,
        on_message: Optional[Callable[[str, str], None]] = None,
    ) -> None:
        self.config = config or AppConfig()
        self.playlist = playlist
        self.storage = storage
        self._on_event = on_event
        self._on_position = on_position
        self._on_message = on_message
        self._tasks: set[asyncio.Task[Any]] = set()

        self.store = SegmentStore(playlist.id)
        self.tempos = TempoBook(float(self.config.default_bpm))
        for track in playlist.tracks:
            self.store.register_track(track.id, track.duration_ms)
        loaded = storage.load_into(
            self.store, self.tempos, [track.id for track in playlist.tracks]
        )
        logger.info("Loaded workouts for %s of %s tracks", loaded, len(playlist.tracks))

        self._writer = DebouncedWriter(
            timers, self._persist, delay_ms=self.config.persist_debounce_ms
        )
        self.store.set_on_change(self._writer.schedule)
        self.tempos.set_on_change(self._writer.schedule)

        self.session = RemotePlayerSession(
            device,
            timers,
            estimator=estimator,
            max_retries=self.config.max_connect_retries,
            sample_interval_ms=self.config.sample_interval_ms,
            on_position=self._publish_position,
            on_error=self._handle_device_error,
            on_state=self._handle_session_state,
            on_track_end=self._handle_remote_track_end,
        )
        tracks = (
            list(playlist.tracks)
            if all_tracks
            else configured_tracks(playlist.tracks, self.store)
        )
        self.sequencer = PlaylistSequencer(
            tracks, self.session, on_track_changed=self._handle_track_changed
        )
        self.scheduler = BeatScheduler(
            self.store,
            self.tempos,
            timers=timers,
            position_source=self.session.estimator.estimated_position,
            track_source=lambda: self.session.estimator.current_track_id,
            threshold_beats=self.config.countdown_threshold_beats,
            go_cue_ms=self.config.go_cue_ms,
            poll_interval_ms=self.config.poll_interval_ms,
        )
        self.scheduler.subscribe(self._handle_scheduler_event)
        self.session.add_cleanup(self.scheduler.stop)
        self.session.add_cleanup(self._writer.flush_all)

    # --- Lifecycle ---

    async def start(self) -> bool:
        if not self.sequencer.tracks:
            self._message("No configured tracks in this playlist", "warning")
            return False
        await self.session.connect()
        track = await self.sequencer.start()
        if track is None:
            return False
        self.scheduler.start()
        return True

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.session.teardown()
        self.scheduler.stop()
        self.flush()

    # --- Observed state ---

    @property
    def current_track(self) -> Optional[Track]:
        return self.sequencer.current_track

    @property
    def finished(self) -> bool:
        return self.sequencer.finished

    @property
    def tempo(self) -> float:
        return self.scheduler.tempo

    def position(self) -> float:
        return self.session.estimator.estimated_position()

    def countdown(self) -> Countdown:
        return self.scheduler.countdown(self.position())

    def current_segment(self) -> Optional[Segment]:
        track = self.current_track
        if track is None:
            return None
        return self.store.find_at(track.id, self.position())

    def editor(self) -> Optional[SegmentEditor]:
        track = self.current_track
        if track is None:
            return None
        return SegmentEditor(
            self.store, track.id, min_segment_ms=self.config.min_segment_ms
        )

    # --- Transport ---

    async def toggle(self) -> bool:
        return await self.session.toggle()

    async def next_track(self) -> Optional[Track]:
        return await self.sequencer.next_track()

    async def previous_track(self) -> Optional[Track]:
        return await self.sequencer.previous_track()

    async def jump_to_next_segment(self) -> Optional[int]:
        target = await self.sequencer.jump_to_next_segment(self.position(), self.store)
        if target is None:
            self._message("No next segment", "info")
        return target

    # --- Editing ---

    def add_segment(self) -> EditResult:
        return self._edit(lambda editor: editor.add_segment())

    def split_at_playhead(self) -> EditResult:
        position = int(round(self.position()))
        return self._edit(lambda editor: editor.split_at(position))

    def delete_at_playhead(self) -> EditResult:
        segment = self.current_segment()
        if segment is None:
            self._message("No segment under the playhead", "info")
            return EditResult(ok=False, segment=None, error=None)
        return self._edit(lambda editor: editor.delete(segment.id))

    def adjust_bpm(self, delta: float = BPM_STEP) -> Optional[float]:
        track = self.current_track
        if track is None:
            return None
        current = self.tempos.get(track.id, track.name).tempo
        try:
            record = self.tempos.set_manual(track.id, current + delta)
        except ValidationError as exc:
            self._message(str(exc), "error")
            return None
        return record.tempo

    def _edit(self, action: Callable[[SegmentEditor], EditResult]) -> EditResult:
        editor = self.editor()
        if editor is None:
            return EditResult(ok=False, segment=None, error=None)
        result = action(editor)
        if not result.ok and result.error is not None:
            self._message(str(result.error), "warning")
        return result

    # --- Persistence ---

    def _persist(self, track_id: str) -> None:
        self.storage.flush_track(self.store, self.tempos, track_id)
        if self.storage.degraded:
            self._message("Storage unavailable; changes kept in memory", "warning")

    def flush(self) -> None:
        self._writer.flush_all()

    # --- Callbacks ---

    def _handle_track_changed(self, index: int, track: Track) -> None:
        logger.info("Now playing %s: %s", index, track.name)
        self.scheduler.set_track(track.id, track.duration_ms, track.name)

    def _handle_scheduler_event(self, event: SchedulerEvent) -> None:
        if event.kind is EventKind.TRACK_ENDED:
            self._spawn(self.sequencer.on_track_ended(self.scheduler.track_id))
        if self._on_event is not None:
            self._on_event(event)

    def _handle_remote_track_end(self, track_id: str) -> None:
        self._spawn(self.sequencer.on_track_ended(track_id))

    def _handle_device_error(self, error: DeviceError) -> None:
        level = "error" if error.fatal else "warning"
        self._message(str(error), level)

    def _handle_session_state(self, state: SessionState) -> None:
        if state is SessionState.ERROR:
            self.scheduler.stop()

    def _publish_position(self, position_ms: float) -> None:
        if self._on_position is not None:
            self._on_position(position_ms)

    def _message(self, text: str, level: str) -> None:
        if self._on_message is not None:
            self._on_message(text, level)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
