"""Monitor widgets and the pure row formatters behind them."""

from typing import List, Optional, Tuple

from rich.markup import escape
from textual.containers import Vertical
from textual.widgets import DataTable, RichLog, Static

from agentrelay.agents.progress import format_elapsed
from agentrelay.models import AgentEntry, AgentPhase

AGENT_COLUMNS = ("ID", "Chat", "Phase", "Elapsed", "Last activity", "Progress")
COMPLETED_COLUMNS = ("ID", "Chat", "Result", "Duration", "Cost", "Description")


def format_age(seconds: float) -> str:
    """Short relative age: '3s ago', '2m ago', '1h ago'."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h ago"


def phase_markup(phase: AgentPhase) -> str:
    """Get colored phase text."""
    return {
        AgentPhase.PLANNING: '[yellow]planning[/yellow]',
        AgentPhase.EXECUTING: '[cyan]executing[/cyan]',
        AgentPhase.COMPLETED: '[green]completed[/green]',
        AgentPhase.FAILED: '[red]failed[/red]',
    }.get(phase, str(phase))


def agent_row(entry: AgentEntry, now: float) -> Tuple[str, ...]:
    progress = entry.progress or (entry.recent_output[-1] if entry.recent_output else "")
    return (
        entry.id,
        str(entry.chat_id),
        phase_markup(entry.phase),
        format_elapsed(now - entry.started_at),
        format_age(now - entry.last_activity_at),
        escape(progress[:60]),
    )


def completed_row(entry: AgentEntry) -> Tuple[str, ...]:
    finished = entry.completed_at or entry.last_activity_at
    cost = f"${entry.cost_usd:.4f}" if entry.cost_usd is not None else "-"
    return (
        entry.id,
        str(entry.chat_id),
        phase_markup(entry.phase),
        format_elapsed(finished - entry.started_at),
        cost,
        escape(entry.description[:50]),
    )


def output_lines(entry: Optional[AgentEntry]) -> List[str]:
    if entry is None:
        return ["(no agent selected)"]
    header = f"[bold]{entry.id}[/bold] chat {entry.chat_id}: {escape(entry.description[:80])}"
    body = [escape(line) for line in entry.recent_output] or ["(no output yet)"]
    return [header, ""] + body


def _sync_table(table: DataTable, rows: List[Tuple[str, ...]], columns: Tuple[str, ...]) -> None:
    """Diff-update a table keyed by the first column so the cursor survives refreshes."""
    wanted = {row[0]: row for row in rows}
    existing = {str(key.value) for key in table.rows.keys()}

    for key in existing - set(wanted):
        table.remove_row(key)
    for row in rows:
        key = row[0]
        if key in existing:
            for column, value in zip(columns, row):
                table.update_cell(key, column, value)
        else:
            table.add_row(*row, key=key)


class AgentsWidget(Vertical):
    """Live agents table."""

    def compose(self):
        yield Static("[bold]Live agents[/bold]", classes="section-title")
        yield DataTable(id="agents-table")

    def on_mount(self) -> None:
        table = self.query_one("#agents-table", DataTable)
        for column in AGENT_COLUMNS:
            table.add_column(column, key=column)
        table.cursor_type = "row"

    def update_agents(self, agents: List[AgentEntry], now: float) -> None:
        table = self.query_one("#agents-table", DataTable)
        _sync_table(table, [agent_row(a, now) for a in agents], AGENT_COLUMNS)


class CompletedWidget(Vertical):
    """Recently finished invocations, newest first."""

    def compose(self):
        yield Static("[bold]Recently completed[/bold]", classes="section-title")
        yield DataTable(id="completed-table")

    def on_mount(self) -> None:
        table = self.query_one("#completed-table", DataTable)
        for column in COMPLETED_COLUMNS:
            table.add_column(column, key=column)

    def update_completed(self, history: List[AgentEntry]) -> None:
        table = self.query_one("#completed-table", DataTable)
        _sync_table(table, [completed_row(a) for a in reversed(history)], COMPLETED_COLUMNS)


class OutputWidget(RichLog):
    """Rolling output of the selected agent."""

    def __init__(self):
        super().__init__(id="output-log", max_lines=200, markup=True)
        self._shown: List[str] = []

    def show(self, entry: Optional[AgentEntry]) -> None:
        lines = output_lines(entry)
        if lines == self._shown:
            return
        self._shown = lines
        self.clear()
        for line in lines:
            self.write(line)
