"""Terminal monitor for the agent registry, built on Textual."""

import time
from typing import Awaitable, Callable, Optional

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import DataTable, Static

from agentrelay.agents.registry import AgentRegistry
from agentrelay.models import RegistryEvent
from .widgets import AgentsWidget, CompletedWidget, OutputWidget


class AgentMonitorApp(App):
    """Live view of running and recently finished agent invocations.

    The app only observes the registry. When ``job`` is given it runs as a
    worker on the app's event loop and the app exits once it finishes.
    """

    CSS = """
    Screen {
        background: $surface;
    }

    #header-bar {
        height: 1;
        dock: top;
        background: $primary;
        color: $text;
        text-align: center;
    }

    #footer-bar {
        height: 1;
        dock: bottom;
        background: $primary;
        color: $text;
    }

    .section-title {
        margin: 0 1;
        text-style: bold;
    }

    #tables {
        width: 60%;
        height: 1fr;
    }

    #output-container {
        width: 40%;
        height: 1fr;
    }
    """

    TITLE = "agentrelay monitor"
    BINDINGS = [
        ("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        registry: AgentRegistry,
        job: Optional[Callable[[], Awaitable[None]]] = None,
        refresh_interval: float = 0.5,
        exit_when_done: bool = False,
    ):
        super().__init__()
        self.registry = registry
        self.job = job
        self.refresh_interval = refresh_interval
        self.exit_when_done = exit_when_done
        self.selected_agent_id: Optional[str] = None
        self._dirty = True
        self._unsubscribe: Optional[Callable[[], None]] = None

    def compose(self) -> ComposeResult:
        yield Static("agentrelay monitor", id="header-bar")
        with Horizontal():
            with Vertical(id="tables"):
                yield AgentsWidget(id="agents")
                yield CompletedWidget(id="completed")
            with Vertical(id="output-container"):
                yield Static("[bold]Output[/bold]", classes="section-title")
                yield OutputWidget()
        yield Static("[q] quit  [up/down] select agent", id="footer-bar", markup=False)

    def on_mount(self) -> None:
        self._unsubscribe = self.registry.subscribe(self._on_registry_event)
        self.set_interval(self.refresh_interval, self.refresh_view)
        self.refresh_view()
        if self.job is not None:
            self.run_worker(self._run_job(), exclusive=True, name="job")

    def on_unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _run_job(self) -> None:
        try:
            await self.job()
        finally:
            self._dirty = True
            self.refresh_view()
            if self.exit_when_done:
                self.exit()

    def _on_registry_event(self, event: RegistryEvent) -> None:
        self._dirty = True
        if self.selected_agent_id is None:
            self.selected_agent_id = event.agent.id

    def refresh_view(self) -> None:
        """Redraw tables; elapsed times advance even without registry events."""
        snapshot = self.registry.get_snapshot()
        now = time.time()
        active = [a for a in snapshot.agents if not a.phase.is_terminal]
        self.query_one(AgentsWidget).update_agents(active, now)
        if self._dirty:
            self.query_one(CompletedWidget).update_completed(snapshot.recently_completed)
        self._dirty = False

        selected = None
        if self.selected_agent_id is not None:
            selected = self.registry.get(self.selected_agent_id)
            if selected is None:
                selected = next(
                    (a for a in snapshot.recently_completed if a.id == self.selected_agent_id),
                    None,
                )
        self.query_one(OutputWidget).show(selected)

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        if event.row_key is not None and event.row_key.value:
            self.selected_agent_id = str(event.row_key.value)
            self.refresh_view()
