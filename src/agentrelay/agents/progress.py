"""Compact progress panel rendered from executor stream events."""

import time
from typing import Callable, Optional

from agentrelay.models import StreamEvent, StreamEventType


def format_elapsed(seconds: float) -> str:
    """Always 'Xm Ys' below an hour (e.g. '0m 5s'), 'Xh Ym' above."""
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


class ProgressFormatter:
    """Accumulates stream events and renders a short progress panel.

    Layout::

        Working — 1m 12s

        3 edits  5 reads  2 commands

        > latest status line from the agent
    """

    def __init__(self, header: str = "Working", clock: Callable[[], float] = time.monotonic):
        self.header = header
        self._clock = clock
        self.started = clock()
        self.edits = 0
        self.reads = 0
        self.commands = 0
        self.latest_status: Optional[str] = None
        self._last_rendered = ""

    @property
    def event_count(self) -> int:
        return self.edits + self.reads + self.commands

    def add_event(self, event: StreamEvent) -> None:
        if event.type == StreamEventType.FILE_READ:
            self.reads += 1
        elif event.type in (StreamEventType.FILE_EDIT, StreamEventType.FILE_WRITE):
            self.edits += 1
        elif event.type == StreamEventType.COMMAND:
            self.commands += 1
        elif event.type == StreamEventType.STATUS_TEXT:
            self.latest_status = event.detail

    def counts_line(self) -> str:
        return f"{self.edits} edits  {self.reads} reads  {self.commands} commands"

    def render(self, force: bool = False) -> str:
        """
        Render the panel.

        Returns:
            The panel text, or "" when nothing changed since the last render
            (unless ``force``)
        """
        panel = self._build_panel()
        if not force and panel == self._last_rendered:
            return ""
        self._last_rendered = panel
        return panel

    def _build_panel(self) -> str:
        lines = [f"{self.header} — {format_elapsed(self._clock() - self.started)}", ""]
        if self.event_count == 0 and not self.latest_status:
            lines.append("Starting up...")
            return "\n".join(lines)
        lines.append(self.counts_line())
        if self.latest_status:
            lines.append("")
            lines.append(f"> {self.latest_status}")
        return "\n".join(lines)

    def render_summary(self, success: bool, duration_ms: int, cost_usd: float) -> str:
        label = "Done" if success else "Failed"
        return "\n".join([
            f"{label} — {format_elapsed(duration_ms / 1000)}",
            "",
            self.counts_line(),
            f"Cost: ${cost_usd:.4f}",
        ])
