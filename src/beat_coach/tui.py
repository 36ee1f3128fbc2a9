"""Textual-based workout player for Beat Coach."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional
from typing_extensions import TypeAlias

try:
    from textual.app import App, ComposeResult
    from textual.binding import Binding
    from textual.containers import Horizontal, Vertical
    from textual.css.query import NoMatches
    from textual.widgets import Footer, Header, Static
except Exception as exc:  # pragma: no cover - depends on environment
    raise RuntimeError(
        "Textual is required for the TUI. Install the 'textual' dependency."
    ) from exc

from beat_coach.catalog import PlaylistInfo
from beat_coach.config import AppConfig
from beat_coach.device import RemoteDevice
from beat_coach.errors import DeviceError
from beat_coach.logging_setup import set_console_level
from beat_coach.scheduler import EventKind, SchedulerEvent
from beat_coach.storage import WorkoutStorage
from beat_coach.timers import TimerHost
from beat_coach.ui.formatters import (
    format_position,
    render_countdown,
    render_header,
    segment_summary,
)
from beat_coach.ui.timeline import TimelineBar
from beat_coach.workout import WorkoutPlayer

logger = logging.getLogger(__name__)

DeviceFactory: TypeAlias = Callable[[TimerHost], RemoteDevice]

APP_CSS = """
#track_header { height: 1; padding: 0 1; text-style: bold; }
#segments { height: 3; }
.segment_panel { width: 1fr; border: round $accent; padding: 0 1; }
#countdown { height: 1; padding: 0 1; }
#timeline { height: 1; margin: 1 1 0 1; }
#position { height: 1; padding: 0 1; }
#status { height: 1; padding: 0 1; color: $text-muted; }
"""


class WorkoutPlayerApp(App):
    """Plays a playlist's workouts and edits segments on the fly."""

    TITLE = "Beat Coach"
    CSS = APP_CSS
    PANEL_REFRESH_S = 0.25

    BINDINGS = [
        Binding("space", "toggle_playback", "Play/Pause"),
        Binding("n", "next_track", "Next"),
        Binding("p", "previous_track", "Previous"),
        Binding("f", "jump_segment", "Next Segment"),
        Binding("a", "add_segment", "Add"),
        Binding("s", "split_segment", "Split"),
        Binding("d", "delete_segment", "Delete"),
        Binding("+", "bpm_up", "BPM +1"),
        Binding("-", "bpm_down", "BPM -1"),
        Binding("q", "quit_app", "Quit"),
    ]

    # --- Lifecycle ---
    def __init__(
        self,
        *,
        playlist: PlaylistInfo,
        device_factory: DeviceFactory,
        storage: WorkoutStorage,
        config: Optional[AppConfig] = None,
        all_tracks: bool = False,
    ) -> None:
        super().__init__()
        self._playlist = playlist
        self._device_factory = device_factory
        self._storage = storage
        self._config = config or AppConfig()
        self._all_tracks = all_tracks
        self.player: Optional[WorkoutPlayer] = None
        self._position_ms = 0.0
        self._closing = False

    def compose(self) -> ComposeResult:
        yield Header(show_clock=False)
        with Vertical(id="root"):
            yield Static("", id="track_header", markup=False)
            with Horizontal(id="segments"):
                yield Static("--", id="current_segment", classes="segment_panel")
                yield Static("--", id="next_segment", classes="segment_panel")
            yield Static("", id="countdown")
            yield TimelineBar(id="timeline")
            yield Static("-:-- / -:--", id="position", markup=False)
            yield Static("", id="status", markup=False)
        yield Footer()

    def on_mount(self) -> None:
        self.query_one("#current_segment", Static).border_title = "Current"
        self.query_one("#next_segment", Static).border_title = "Next"
        self.player = WorkoutPlayer(
            self._playlist,
            self._device_factory(self),
            self,
            self._storage,
            config=self._config,
            all_tracks=self._all_tracks,
            on_event=self._on_scheduler_event,
            on_position=self._on_position,
            on_message=self._set_message,
        )
        self.set_interval(self.PANEL_REFRESH_S, self._refresh_panels)
        self.run_worker(self._start_player(), exclusive=True, group="player")
        logger.info("TUI mounted")

    async def _start_player(self) -> None:
        player = self.player
        if player is None:
            return
        self._set_message("Connecting...", "info")
        try:
            started = await player.start()
        except DeviceError as exc:
            self._set_message(f"Device unavailable: {exc}", "error")
            return
        if started:
            self._set_message("Playing", "info")
        self._refresh_panels()

    async def on_unmount(self) -> None:
        await self._shutdown_player()
        logger.info("TUI unmounted")

    async def _shutdown_player(self) -> None:
        player = self.player
        if player is None:
            return
        try:
            await player.shutdown()
        except Exception:
            logger.exception("Player shutdown failed")

    # --- Rendering ---
    def _set_message(self, text: str, level: str = "info") -> None:
        logger.log(logging.WARNING if level == "error" else logging.INFO, text)
        try:
            self.query_one("#status", Static).update(text)
        except NoMatches:
            return

    def _on_position(self, position_ms: float) -> None:
        self._position_ms = position_ms
        self._refresh_timeline()

    def _on_scheduler_event(self, event: SchedulerEvent) -> None:
        if event.kind in (
            EventKind.COUNTDOWN_WARNING,
            EventKind.GO_CUE,
            EventKind.GO_CUE_CLEARED,
            EventKind.SEGMENT_ENTERED,
            EventKind.SEGMENT_EXITED,
        ):
            self._refresh_panels()
        elif event.kind is EventKind.TRACK_ENDED:
            self._set_message("Track ended", "info")

    def _refresh_timeline(self) -> None:
        player = self.player
        if player is None or player.current_track is None:
            return
        track = player.current_track
        timeline = self.query_one("#timeline", TimelineBar)
        timeline.show(
            player.store.list_segments(track.id),
            track.duration_ms,
            self._position_ms,
            player.editor(),
        )
        self.query_one("#position", Static).update(
            format_position(self._position_ms, track.duration_ms)
        )

    def _refresh_panels(self) -> None:
        player = self.player
        if player is None:
            return
        track = player.current_track
        if track is None:
            self.query_one("#track_header", Static).update("No track loaded")
            return
        self.query_one("#track_header", Static).update(
            render_header(
                track.name,
                track.artist_line,
                player.tempo,
                player.sequencer.current_index,
                len(player.sequencer.tracks),
            )
        )
        countdown = player.countdown()
        self.query_one("#current_segment", Static).update(
            segment_summary(player.current_segment())
        )
        self.query_one("#next_segment", Static).update(
            segment_summary(countdown.next_segment)
        )
        self.query_one("#countdown", Static).update(
            render_countdown(countdown, player.scheduler.go_cue)
        )
        if player.finished:
            self._set_message("Workout complete", "info")
        self._refresh_timeline()

    # --- Actions ---
    def _run(self, coro: Any) -> None:
        self.run_worker(coro, group="commands")

    def action_toggle_playback(self) -> None:
        if self.player is not None:
            self._run(self.player.toggle())

    def action_next_track(self) -> None:
        if self.player is not None:
            self._run(self.player.next_track())

    def action_previous_track(self) -> None:
        if self.player is not None:
            self._run(self.player.previous_track())

    def action_jump_segment(self) -> None:
        if self.player is not None:
            self._run(self.player.jump_to_next_segment())

    def action_add_segment(self) -> None:
        if self.player is not None and self.player.add_segment().ok:
            self._refresh_panels()

    def action_split_segment(self) -> None:
        if self.player is not None and self.player.split_at_playhead().ok:
            self._refresh_panels()

    def action_delete_segment(self) -> None:
        if self.player is not None and self.player.delete_at_playhead().ok:
            self._refresh_panels()

    def action_bpm_up(self) -> None:
        self._adjust_bpm(1.0)

    def action_bpm_down(self) -> None:
        self._adjust_bpm(-1.0)

    def _adjust_bpm(self, delta: float) -> None:
        if self.player is None:
            return
        tempo = self.player.adjust_bpm(delta)
        if tempo is not None:
            self._set_message(f"Tempo {tempo:.0f} BPM", "info")
            self._refresh_panels()

    async def action_quit_app(self) -> None:
        if self._closing:
            return
        self._closing = True
        logger.info("TUI exit requested")
        await self._shutdown_player()
        self.exit()

    # --- Timeline messages ---
    def on_timeline_bar_seek(self, message: TimelineBar.Seek) -> None:
        if self.player is not None:
            self._run(self.player.session.seek(message.position_ms))

    def on_timeline_bar_edited(self, message: TimelineBar.Edited) -> None:
        del message
        self._refresh_panels()


def run_tui(
    playlist: PlaylistInfo,
    device_factory: DeviceFactory,
    storage: WorkoutStorage,
    *,
    config: Optional[AppConfig] = None,
    all_tracks: bool = False,
) -> int:
    """Run the TUI and return an exit code."""
    logger.info("TUI start playlist=%s tracks=%s", playlist.id, len(playlist.tracks))
    try:
        set_console_level(logging.WARNING)
    except Exception:
        logger.exception("Failed to set console log level for TUI")
    app = WorkoutPlayerApp(
        playlist=playlist,
        device_factory=device_factory,
        storage=storage,
        config=config,
        all_tracks=all_tracks,
    )
    app.run()
    logger.info("TUI exit")
    return 0

