"""Interactive process dashboard for proc-manager.

TUI = a window onto the API server. Everything shown comes from
GET /api/processes; the only action is POST /api/kill.
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from rich.table import Table
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Header, Input, Static

from proc_manager.client import ApiClient, ApiError
from proc_manager.config import Config
from proc_manager.formatting import PLACEHOLDER, format_kb, format_percent, state_label, to_csv


class SortKey(Enum):
    PID = "pid"
    NAME = "name"
    USER = "user"
    CPU = "cpu"
    MEM = "mem"
    RSS = "rss"


_SORT_FUNCS = {
    SortKey.PID: lambda p: p["pid"],
    SortKey.NAME: lambda p: p.get("name", "").lower(),
    SortKey.USER: lambda p: p.get("user", "").lower(),
    SortKey.CPU: lambda p: p.get("cpu_percent") or 0.0,
    SortKey.MEM: lambda p: p.get("mem_percent") or 0.0,
    SortKey.RSS: lambda p: p.get("vmrss_kb") or 0,
}


def same_user(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def filter_processes(
    processes: list[dict],
    term: str,
    *,
    current_user: str = "",
    user_only: bool = False,
) -> list[dict]:
    """Apply the "my processes" toggle, then the text filter.

    The term matches a pid substring, or a case-insensitive substring of the
    name or the state label.
    """
    result = processes
    if user_only and current_user:
        result = [p for p in result if same_user(p.get("user", ""), current_user)]

    term = term.strip().lower()
    if not term:
        return list(result)
    return [
        p
        for p in result
        if term in str(p["pid"])
        or term in p.get("name", "").lower()
        or term in state_label(p.get("state", "")).lower()
    ]


def sort_processes(processes: list[dict], key: SortKey, descending: bool = False) -> list[dict]:
    return sorted(processes, key=_SORT_FUNCS[key], reverse=descending)


def is_high_usage(process: dict, cpu_alert: float, mem_alert: float) -> bool:
    return (process.get("cpu_percent") or 0) >= cpu_alert or (
        process.get("mem_percent") or 0
    ) >= mem_alert


def can_terminate(process: dict, current_user: str) -> bool:
    """Only the requesting user's own processes may be terminated from here."""
    return not current_user or same_user(process.get("user", ""), current_user)


CSV_HEADER = ["pid", "name", "user", "state", "cpu_percent", "mem_percent", "rss_kb", "vmsize_kb"]


def processes_to_csv(processes: list[dict]) -> str:
    rows = (
        [
            p["pid"],
            p.get("name", ""),
            p.get("user", ""),
            state_label(p.get("state", "")),
            f"{p.get('cpu_percent') or 0:.2f}",
            f"{p.get('mem_percent') or 0:.2f}",
            p.get("vmrss_kb", ""),
            p.get("vmsize_kb", ""),
        ]
        for p in processes
    )
    return to_csv(CSV_HEADER, rows)


def process_details(process: dict) -> list[tuple[str, str]]:
    """Label/value rows for the details dialog."""
    return [
        ("PID", str(process["pid"])),
        ("Name", process.get("name") or PLACEHOLDER),
        ("User", process.get("user") or PLACEHOLDER),
        ("State", state_label(process.get("state", ""))),
        ("CPU %", format_percent(process.get("cpu_percent"))),
        ("Mem %", format_percent(process.get("mem_percent"))),
        ("RSS", format_kb(process.get("vmrss_kb"))),
        ("VM Size", format_kb(process.get("vmsize_kb"))),
    ]


@dataclass
class ActionEntry:
    """One termination attempt in the action log."""

    pid: int
    name: str
    status: str  # pending, success, error
    message: str
    time: str


class ActionHistory:
    """Most recent actions first, bounded."""

    def __init__(self, limit: int) -> None:
        self._entries: deque[ActionEntry] = deque(maxlen=limit)

    def push(self, pid: int, name: str, message: str) -> ActionEntry:
        entry = ActionEntry(
            pid=pid,
            name=name,
            status="pending",
            message=message,
            time=datetime.now().strftime("%H:%M:%S"),
        )
        self._entries.appendleft(entry)
        return entry

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class SummaryBar(Static):
    """Total, own and high-usage process counts."""

    DEFAULT_CSS = """
    SummaryBar {
        height: 1;
        padding: 0 1;
    }
    """

    def update_counts(self, total: int, own: int, high: int, cpu_alert: float, mem_alert: float):
        self.update(
            f"[b]{total}[/] processes   [b]{own}[/] yours   "
            f"[b red]{high}[/] high usage [dim](CPU ≥ {cpu_alert:g}% or Mem ≥ {mem_alert:g}%)[/]"
        )


class ProcessTable(Container):
    """Container for the process data table. Row keys are pids."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
        border-title-align: left;
    }
    """

    def compose(self) -> ComposeResult:
        yield DataTable(id="process-table", zebra_stripes=True, cursor_type="row")

    def on_mount(self) -> None:
        self.border_title = "PROCESSES"
        table = self.query_one("#process-table", DataTable)
        table.add_column("PID", key="pid", width=8)
        table.add_column("Name", key="name", width=24)
        table.add_column("User", key="user", width=12)
        table.add_column("State", key="state", width=9)
        table.add_column("CPU %", key="cpu", width=7)
        table.add_column("Mem %", key="mem", width=7)
        table.add_column("RSS", key="rss", width=10)
        table.add_column("VM", key="vm", width=10)

    @property
    def table(self) -> DataTable:
        return self.query_one("#process-table", DataTable)

    def selected_pid(self) -> int | None:
        table = self.table
        if table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return int(row_key.value)

    def show(self, processes: list[dict], cpu_alert: float, mem_alert: float) -> None:
        """Replace all rows, keeping the cursor on the same pid when possible."""
        table = self.table
        selected = self.selected_pid()
        table.clear()
        for p in processes:
            high = is_high_usage(p, cpu_alert, mem_alert)
            cpu = p.get("cpu_percent") or 0
            mem = p.get("mem_percent") or 0
            table.add_row(
                str(p["pid"]),
                Text(p.get("name", ""), style="bold yellow" if high else ""),
                Text(p.get("user", "")),
                state_label(p.get("state", "")),
                Text(format_percent(cpu), style="bold red" if cpu >= cpu_alert else ""),
                Text(format_percent(mem), style="bold red" if mem >= mem_alert else ""),
                format_kb(p.get("vmrss_kb")),
                format_kb(p.get("vmsize_kb")),
                key=str(p["pid"]),
            )
        if selected is not None and str(selected) in table.rows:
            table.move_cursor(row=table.get_row_index(str(selected)))


class ActionLogPanel(Static):
    """Recent termination attempts, newest first."""

    DEFAULT_CSS = """
    ActionLogPanel {
        height: 100%;
        border: solid $primary;
        border-title-align: left;
        padding: 0 1;
    }
    """

    _STYLES = {"pending": "yellow", "success": "green", "error": "red"}

    def on_mount(self) -> None:
        self.border_title = "ACTIONS"
        self.update("[dim]No actions yet[/]")

    def show(self, history: ActionHistory) -> None:
        if not len(history):
            self.update("[dim]No actions yet[/]")
            return
        text = Text()
        for i, entry in enumerate(history):
            if i:
                text.append("\n")
            text.append(f"{entry.time} ", style="dim")
            text.append(f"{entry.status:<7} ", style=self._STYLES.get(entry.status, "white"))
            text.append(f"{entry.name} ({entry.pid}): {entry.message}")
        self.update(text)


class ProcessDetailsScreen(ModalScreen[bool]):
    """One process in full. Dismisses with True when Terminate is pressed."""

    DEFAULT_CSS = """
    ProcessDetailsScreen {
        align: center middle;
    }
    #details-card {
        width: 56;
        height: auto;
        border: thick $primary;
        background: $surface;
        padding: 1 2;
    }
    #details-actions {
        height: auto;
        margin-top: 1;
        align-horizontal: right;
    }
    #details-actions Button {
        margin-left: 1;
    }
    """

    BINDINGS = [Binding("escape", "close", "Close")]

    def __init__(self, process: dict, allowed: bool) -> None:
        super().__init__()
        self.process = process
        self.allowed = allowed

    def compose(self) -> ComposeResult:
        grid = Table.grid(padding=(0, 2))
        grid.add_column(style="bold")
        grid.add_column()
        for label, value in process_details(self.process):
            grid.add_row(label, Text(value))
        with Vertical(id="details-card"):
            yield Static("[b]Process Details[/]")
            yield Static(grid, id="details")
            if not self.allowed:
                yield Static("[dim]Only your own processes can be terminated.[/]")
            with Horizontal(id="details-actions"):
                yield Button("Close", id="close")
                yield Button("Terminate", id="terminate", variant="error", disabled=not self.allowed)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "terminate")

    def action_close(self) -> None:
        self.dismiss(False)


class ProcManagerApp(App):
    """Process dashboard backed by the proc-manager API."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #filter {
        height: 3;
    }

    #bottom-panels {
        height: 9;
    }
    """

    AUTO_FOCUS = "#process-table"

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("a", "toggle_auto", "Auto-refresh"),
        ("u", "toggle_user_only", "Mine only"),
        ("s", "cycle_sort", "Sort"),
        ("o", "reverse_sort", "Order"),
        ("k", "kill", "Kill"),
        ("e", "export", "Export CSV"),
        Binding("/", "focus_filter", "Filter"),
        Binding("escape", "focus_table", "Table", show=False),
    ]

    def __init__(self, config: Config | None = None, client: Any = None):
        super().__init__()
        self.config = config or Config.load()
        tui = self.config.tui
        self.client = client or ApiClient(tui.api_url, timeout=tui.request_timeout)
        self.processes: list[dict] = []
        self.current_user = ""
        self.filter_text = ""
        self.user_only = True
        self.auto_refresh = True
        self.sort_key = SortKey.PID
        self.sort_descending = False
        self.history = ActionHistory(tui.action_log_size)
        self.last_error = ""
        self._pending_kill: int | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield SummaryBar(id="summary")
        yield Input(placeholder="Filter by pid, name or state  (/ to focus)", id="filter")
        yield ProcessTable(id="processes")
        yield Horizontal(ActionLogPanel(id="actions"), id="bottom-panels")
        yield Footer()

    async def on_mount(self) -> None:
        self.title = "proc-manager"
        self.set_interval(self.config.tui.refresh_interval, self._auto_refresh)
        await self.refresh_processes()

    # ── data ────────────────────────────────────────────────────────────

    def visible_processes(self) -> list[dict]:
        """Processes after filter, user toggle and sort."""
        filtered = filter_processes(
            self.processes,
            self.filter_text,
            current_user=self.current_user,
            user_only=self.user_only,
        )
        return sort_processes(filtered, self.sort_key, self.sort_descending)

    async def refresh_processes(self) -> None:
        try:
            data = await self.client.fetch_snapshot()
        except ApiError as e:
            self.last_error = e.message
            self.sub_title = f"error: {e.message}"
            return
        self.last_error = ""
        self.processes = list(data.get("processes") or [])
        self.current_user = data.get("current_user") or ""
        self.render_processes()

    async def _auto_refresh(self) -> None:
        # The details dialog holds its own copy; the table catches up on close.
        if self.auto_refresh and not isinstance(self.screen, ProcessDetailsScreen):
            await self.refresh_processes()

    def render_processes(self) -> None:
        tui = self.config.tui
        own = sum(1 for p in self.processes if same_user(p.get("user", ""), self.current_user))
        high = sum(1 for p in self.processes if is_high_usage(p, tui.cpu_alert, tui.mem_alert))
        self.query_one(SummaryBar).update_counts(
            len(self.processes), own if self.current_user else 0, high, tui.cpu_alert, tui.mem_alert
        )
        self.query_one(ProcessTable).show(self.visible_processes(), tui.cpu_alert, tui.mem_alert)

        arrow = "↓" if self.sort_descending else "↑"
        self.sub_title = (
            f"user: {self.current_user or '?'}  sort: {self.sort_key.value} {arrow}  "
            f"auto: {'on' if self.auto_refresh else 'off'}  "
            f"mine only: {'on' if self.user_only else 'off'}"
        )

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "filter":
            self.filter_text = event.value
            self.render_processes()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.action_focus_table()

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        # Refreshes rebuild the table and put the cursor back, firing this for
        # intermediate rows; only a cursor that ends elsewhere cancels.
        if self.query_one(ProcessTable).selected_pid() != self._pending_kill:
            self._pending_kill = None

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        process = self._find(int(event.row_key.value))
        if process is None:
            return

        def closed(terminate: bool | None) -> None:
            if terminate and can_terminate(process, self.current_user):
                self.run_worker(self.kill_process(process["pid"], process.get("name", "")))

        self.push_screen(
            ProcessDetailsScreen(process, can_terminate(process, self.current_user)), closed
        )

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool | None:
        """Table shortcuts are inert while the details dialog is open."""
        if isinstance(self.screen, ProcessDetailsScreen):
            return action == "quit"
        return True

    # ── actions ─────────────────────────────────────────────────────────

    async def action_refresh(self) -> None:
        await self.refresh_processes()

    def action_toggle_auto(self) -> None:
        self.auto_refresh = not self.auto_refresh
        self.render_processes()

    def action_toggle_user_only(self) -> None:
        self.user_only = not self.user_only
        self.render_processes()

    def action_cycle_sort(self) -> None:
        keys = list(SortKey)
        self.sort_key = keys[(keys.index(self.sort_key) + 1) % len(keys)]
        self.sort_descending = self.sort_key in (SortKey.CPU, SortKey.MEM, SortKey.RSS)
        self.render_processes()

    def action_reverse_sort(self) -> None:
        self.sort_descending = not self.sort_descending
        self.render_processes()

    def action_focus_filter(self) -> None:
        self.query_one("#filter", Input).focus()

    def action_focus_table(self) -> None:
        self.query_one("#process-table", DataTable).focus()

    def _find(self, pid: int) -> dict | None:
        return next((p for p in self.processes if p["pid"] == pid), None)

    async def action_kill(self) -> None:
        """Terminate the selected process. The first press asks, the second confirms."""
        pid = self.query_one(ProcessTable).selected_pid()
        process = self._find(pid) if pid is not None else None
        if process is None:
            return

        name = process.get("name", "")
        if not can_terminate(process, self.current_user):
            self.notify(
                "Permission denied. You can only terminate your own processes.",
                severity="error",
            )
            return

        if self._pending_kill != pid:
            self._pending_kill = pid
            self.notify(f"Terminate {name} (PID {pid})? Press k again to confirm.")
            return

        self._pending_kill = None
        await self.kill_process(pid, name)

    async def kill_process(self, pid: int, name: str) -> None:
        entry = self.history.push(pid, name, "Sending SIGTERM...")
        panel = self.query_one(ActionLogPanel)
        panel.show(self.history)
        try:
            await self.client.kill(pid)
        except ApiError as e:
            entry.status = "error"
            entry.message = e.message
            self.notify(e.message, severity="error")
        else:
            entry.status = "success"
            entry.message = "Terminated successfully"
            await self.refresh_processes()
        panel.show(self.history)

    def action_export(self) -> None:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        path = Path.cwd() / f"processes-{stamp}.csv"
        try:
            path.write_text(processes_to_csv(self.visible_processes()) + "\n")
        except OSError as e:
            self.notify(f"Export failed: {e}", severity="error")
            return
        self.notify(f"Exported to {path}")


def run_tui(config: Config | None = None) -> None:
    """Run the TUI application."""
    app = ProcManagerApp(config)
    app.run()
