"""sysmon - Main Textual application."""

from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.widgets import DataTable, Footer, Static

from sysmon.counters import PAGE_SIZE_KB, CounterSource
from sysmon.models import ProcessSnapshot
from sysmon.monitor import (
    AdjustRefreshInterval,
    Frame,
    ScrollBy,
    SystemMonitor,
    TerminateProcess,
    ToggleSortMetric,
)
from sysmon.ranking import SortMetric

PAGE_ROWS = 10


def format_kb(size_kb: int) -> str:
    """Format kilobytes as human-readable string."""
    size = float(size_kb)
    for unit in ["K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "K" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


class HeaderStats(Static):
    """Header widget showing system counters and loop settings."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 3;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__("Sampling...", *args, **kwargs)
        self._frame: Frame | None = None

    def update_stats(self, frame: Frame) -> None:
        """Update the statistics from a frame."""
        self._frame = frame
        self.update(self.render_stats())

    def render_stats(self) -> str:
        """Get header text for the last frame."""
        if self._frame is None:
            return "Sampling..."
        system = self._frame.system
        sort = "CPU" if self._frame.sort_metric is SortMetric.CPU else "MEM"
        return (
            f"CPUs: {system.cpu_count} | Total ticks: {system.total_active_units} | "
            f"Mem: {format_kb(system.memory_available_kb).strip()} available"
            f" / {format_kb(system.memory_total_kb).strip()}\n"
            f"Processes: {len(self._frame.processes)} | Sort: {sort} | "
            f"Refresh: {self._frame.refresh_interval}s"
        )


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, command_width: int = 60, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._command_width = command_width
        self._pids: list[int] = []

    @property
    def pids(self) -> list[int]:
        """PIDs in displayed order."""
        return list(self._pids)

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        table.can_focus = False  # Scrolling is driven by the sample loop

        table.add_column("PID", key="pid", width=8)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM%", key="mem", width=8)
        table.add_column("RSS(KB)", key="rss", width=10)
        table.add_column("Command", key="command")

    def update_processes(self, processes: tuple[ProcessSnapshot, ...], offset: int) -> None:
        """Replace the rows with a ranked process list and highlight ``offset``."""
        table = self.query_one("#process-table", DataTable)
        table.clear()
        for proc in processes:
            table.add_row(
                str(proc.pid),
                f"{proc.cpu_percent:6.2f}",
                f"{proc.memory_percent:6.2f}",
                str(proc.resident_kb(PAGE_SIZE_KB)),
                proc.command_line[: self._command_width],
                key=str(proc.pid),
            )
        self._pids = [proc.pid for proc in processes]
        if processes:
            table.move_cursor(row=offset)


class SysmonApp(App):
    """Main sysmon application."""

    TITLE = "sysmon"
    SUB_TITLE = "Process Activity Sampler"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
    }

    #status {
        height: 1;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("s", "toggle_sort", "Sort CPU/MEM"),
        ("k", "kill", "Kill"),
        ("plus", "adjust_refresh(1)", "Slower"),
        ("minus", "adjust_refresh(-1)", "Faster"),
        Binding("up", "scroll_rows(-1)", "Up", show=False, priority=True),
        Binding("down", "scroll_rows(1)", "Down", show=False, priority=True),
        Binding("pageup", f"scroll_rows({-PAGE_ROWS})", "Page up", show=False, priority=True),
        Binding("pagedown", f"scroll_rows({PAGE_ROWS})", "Page down", show=False, priority=True),
    ]

    def __init__(
        self,
        refresh_interval: int = 2,
        sort_metric: SortMetric = SortMetric.CPU,
        source: CounterSource | None = None,
        command_width: int = 60,
    ) -> None:
        """Initialize the SysmonApp."""
        super().__init__()
        self._update_queue: Queue[Frame] = Queue()
        self._monitor = SystemMonitor(
            self._update_queue,
            refresh_interval=refresh_interval,
            sort_metric=sort_metric,
            source=source,
        )
        self._command_width = command_width
        self._frame: Frame | None = None

    @property
    def frame(self) -> Frame | None:
        """Last rendered frame."""
        return self._frame

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield ProcessTable(command_width=self._command_width)
        yield Static("", id="status")
        yield Footer()

    def on_mount(self) -> None:
        """Start the system monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.25, self._check_for_updates)

    def on_unmount(self) -> None:
        """Stop sampling when the app shuts down."""
        self._monitor.stop()

    def _check_for_updates(self) -> None:
        """Render the most recent frame, dropping any older ones."""
        frame = None
        while True:
            try:
                frame = self._update_queue.get_nowait()
            except Empty:
                break

        if frame is not None:
            self.render_frame(frame)

    def render_frame(self, frame: Frame) -> None:
        """Update the UI with a published frame."""
        self._frame = frame
        self.query_one("#header-stats", HeaderStats).update_stats(frame)
        self.query_one(ProcessTable).update_processes(frame.processes, frame.offset)
        self.query_one("#status", Static).update(frame.status)

    def action_toggle_sort(self) -> None:
        """Switch ranking between CPU and memory."""
        self._monitor.submit(ToggleSortMetric())

    def action_scroll_rows(self, delta: int) -> None:
        """Move the highlighted row."""
        self._monitor.submit(ScrollBy(delta))

    def action_adjust_refresh(self, delta: int) -> None:
        """Change the refresh interval by ``delta`` seconds."""
        self._monitor.submit(AdjustRefreshInterval(delta))

    def action_kill(self) -> None:
        """Terminate the highlighted process."""
        if self._frame is None or self._frame.selected is None:
            self.notify("No process selected")
            return
        self._monitor.submit(TerminateProcess(self._frame.selected.pid))

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def run_app(
    refresh_interval: int = 2,
    sort_metric: SortMetric = SortMetric.CPU,
    source: CounterSource | None = None,
    command_width: int = 60,
) -> None:
    """Run the dashboard until the user quits."""
    app = SysmonApp(
        refresh_interval=refresh_interval,
        sort_metric=sort_metric,
        source=source,
        command_width=command_width,
    )
    app.run()
