"""Status bar — bottom bar showing box counts and backend."""

from __future__ import annotations

from textual.reactive import reactive
from textual.widget import Widget
from rich.text import Text

from grounds.engine.models import BoardSummary


class StatusBar(Widget):
    """Single-line status bar with active/available counts."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        dock: bottom;
        background: $surface-lighten-1;
    }
    """

    active: reactive[int] = reactive(0)
    starting: reactive[int] = reactive(0)
    available: reactive[int] = reactive(0)
    backend: reactive[str] = reactive("simulated")
    user: reactive[str] = reactive("")

    def update_summary(self, summary: BoardSummary) -> None:
        self.active = summary.active
        self.starting = summary.starting
        self.available = summary.available

    def render(self) -> Text:
        text = Text()
        text.append(" ● ", style="green" if self.active else "dim")
        text.append(f"Active Boxes: {self.active}", style="bold")
        text.append("  │  ", style="dim")
        text.append(f"Available: {self.available}")
        if self.starting:
            text.append("  │  ", style="dim")
            text.append(f"Starting: {self.starting}", style="blue")
        text.append("  │  ", style="dim")
        backend_style = "yellow" if self.backend == "simulated" else "cyan"
        text.append(self.backend, style=backend_style)
        if self.user:
            text.append("  │  ", style="dim")
            text.append(self.user, style="magenta")
        return text
