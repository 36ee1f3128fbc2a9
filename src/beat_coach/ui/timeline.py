from __future__ import annotations

import logging
from typing import Optional

from rich.text import Text
from textual import events
from textual.message import Message
from textual.widgets import Static

from beat_coach.segment_editor import SegmentEditor
from beat_coach.segments import Segment
from beat_coach.ui.formatters import column_to_ms, edge_at_column, render_timeline

logger = logging.getLogger(__name__)


class TimelineBar(Static):
    """Segment timeline for the current track with draggable boundaries."""

    class Seek(Message):
        def __init__(self, position_ms: int) -> None:
            super().__init__()
            self.position_ms = position_ms

    class Edited(Message):
        def __init__(self, segment: Optional[Segment]) -> None:
            super().__init__()
            self.segment = segment

    def __init__(self, *, id: str | None = None, classes: str | None = None) -> None:
        super().__init__("", id=id, classes=classes)
        self.segments: list[Segment] = []
        self.duration_ms = 0
        self.position_ms = 0.0
        self.editor: Optional[SegmentEditor] = None
        self._dragging = False

    @property
    def dragging(self) -> bool:
        return self._dragging

    def show(
        self,
        segments: list[Segment],
        duration_ms: int,
        position_ms: float,
        editor: Optional[SegmentEditor],
    ) -> None:
        self.segments = segments
        self.duration_ms = duration_ms
        self.position_ms = position_ms
        if not self._dragging:
            self.editor = editor
        self.refresh()

    def render(self) -> Text:
        width = max(1, self.size.width)
        return render_timeline(self.segments, self.duration_ms, self.position_ms, width)

    def on_mouse_down(self, event: events.MouseDown) -> None:
        width = max(1, self.size.width)
        column = int(event.x)
        hit = edge_at_column(self.segments, self.duration_ms, width, column)
        if hit is not None and self.editor is not None:
            segment_id, edge = hit
            result = self.editor.begin_drag(segment_id, edge, float(column), float(width))
            if result.ok:
                self._dragging = True
                self.capture_mouse()
                event.stop()
                return
            logger.debug("Drag not started: %s", result.error)
        self.post_message(self.Seek(column_to_ms(column, width, self.duration_ms)))
        event.stop()

    def on_mouse_move(self, event: events.MouseMove) -> None:
        if not self._dragging or self.editor is None:
            return
        result = self.editor.drag_to(float(event.x))
        if result.ok:
            self.post_message(self.Edited(result.segment))
        event.stop()

    def on_mouse_up(self, event: events.MouseUp) -> None:
        if not self._dragging:
            return
        self._dragging = False
        self.release_mouse()
        segment = self.editor.end_drag() if self.editor is not None else None
        self.post_message(self.Edited(segment))
        event.stop()
