"""Sampling loop for sysmon."""

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from queue import Empty, Queue, SimpleQueue

import structlog

from sysmon.actions import TerminationResult, terminate_process
from sysmon.counters import PAGE_SIZE_KB, CounterSource, create_counter_source
from sysmon.delta import compute_percentages
from sysmon.models import ProcessSnapshot, Sample, SystemSnapshot
from sysmon.ranking import SortMetric, rank
from sysmon.snapshot import SnapshotBuilder

log = structlog.get_logger()

MIN_REFRESH_INTERVAL = 1  # Seconds; sub-second sampling is not supported


@dataclass(slots=True, frozen=True)
class ToggleSortMetric:
    """Switch ranking between CPU and memory."""


@dataclass(slots=True, frozen=True)
class ScrollBy:
    """Move the viewport offset by ``delta`` rows."""

    delta: int


@dataclass(slots=True, frozen=True)
class TerminateProcess:
    """Ask the OS to terminate ``pid``."""

    pid: int


@dataclass(slots=True, frozen=True)
class SetRefreshInterval:
    """Change the sampling interval."""

    seconds: int


@dataclass(slots=True, frozen=True)
class AdjustRefreshInterval:
    """Lengthen or shorten the sampling interval by ``delta`` seconds."""

    delta: int


@dataclass(slots=True, frozen=True)
class Stop:
    """End the loop after the in-flight cycle."""


Command = (
    ToggleSortMetric
    | ScrollBy
    | TerminateProcess
    | SetRefreshInterval
    | AdjustRefreshInterval
    | Stop
)


@dataclass(slots=True, frozen=True)
class Frame:
    """One published, read-only view of the ranked process list."""

    system: SystemSnapshot
    processes: tuple[ProcessSnapshot, ...]
    offset: int
    sort_metric: SortMetric
    refresh_interval: int
    status: str = ""

    @property
    def selected(self) -> ProcessSnapshot | None:
        """Process at the viewport offset, if any."""
        if 0 <= self.offset < len(self.processes):
            return self.processes[self.offset]
        return None


@dataclass(slots=True)
class LoopState:
    """All mutable state of a SampleLoop."""

    refresh_interval: int = 2
    sort_metric: SortMetric = SortMetric.CPU
    scroll_offset: int = 0
    status: str = ""
    previous: Sample | None = None
    system: SystemSnapshot | None = None
    computed: Mapping[int, ProcessSnapshot] = field(default_factory=dict)


def _clamp_offset(offset: int, count: int) -> int:
    return min(max(0, offset), max(0, count - 1))


class SampleLoop:
    """
    Fixed-interval sample, compute, rank, publish cycle.

    Runs on a single thread. Commands may be submitted from any thread; they
    are applied between cycles, and during the inter-cycle wait, in which
    case the last computed frame is re-published without re-sampling.
    """

    def __init__(
        self,
        builder: SnapshotBuilder,
        publish: Callable[[Frame], None],
        refresh_interval: int = 2,
        sort_metric: SortMetric = SortMetric.CPU,
        terminator: Callable[[int], TerminationResult] = terminate_process,
        page_size_kb: int = PAGE_SIZE_KB,
    ) -> None:
        """
        Initialize the SampleLoop.

        Args:
            builder: Produces one Sample per cycle.
            publish: Receives every published Frame.
            refresh_interval: Seconds between samples, at least 1.
            sort_metric: Initial ranking metric.
            terminator: Action invoked for TerminateProcess commands.
            page_size_kb: Kilobytes per resident-size unit.
        """
        self._builder = builder
        self._publish = publish
        self._terminator = terminator
        self._page_size_kb = page_size_kb
        self.state = LoopState(
            refresh_interval=max(MIN_REFRESH_INTERVAL, int(refresh_interval)),
            sort_metric=sort_metric,
        )
        self._commands: SimpleQueue[Command] = SimpleQueue()
        self._wakeup = threading.Event()
        self._stop_event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def submit(self, command: Command) -> None:
        """Queue a command and wake the loop if it is waiting."""
        self._commands.put(command)
        self._wakeup.set()

    def stop(self) -> None:
        """Request the loop to end once the in-flight cycle completes."""
        self._stop_event.set()
        self._wakeup.set()

    def reset(self) -> None:
        """Clear a previous stop request so the loop can run again."""
        self._stop_event.clear()

    def run(self) -> None:
        """Run cycles until stopped."""
        log.info(
            "sample_loop_started",
            interval=self.state.refresh_interval,
            sort_metric=self.state.sort_metric.value,
        )
        while not self.stopped:
            self.apply_pending()
            if self.stopped:
                break
            started = time.monotonic()
            try:
                self.run_cycle()
            except Exception:
                # Nothing in a cycle is fatal; the next sample starts fresh
                log.exception("sample_cycle_failed")
            self._wait(started)
        log.info("sample_loop_stopped")

    def run_cycle(self) -> Frame:
        """Sample, compute, rank and publish once."""
        sample = self._builder.build()
        previous = self.state.previous
        if previous is None:
            # No baseline yet: zero elapsed time, every CPU share reads 0
            previous = Sample(system=sample.system)

        self.state.computed = compute_percentages(
            sample.processes,
            previous.processes,
            sample.system,
            previous.system,
            page_size_kb=self._page_size_kb,
        )
        self.state.system = sample.system
        frame = self._publish_frame()
        self.state.previous = sample
        return frame

    def apply_pending(self) -> bool:
        """Apply every queued command. Returns True if any were applied."""
        applied = False
        while True:
            try:
                command = self._commands.get_nowait()
            except Empty:
                return applied
            try:
                self.apply(command)
            except Exception:
                # A bad command is dropped; the loop keeps sampling
                log.exception("command_failed", command=repr(command))
                continue
            applied = True

    def apply(self, command: Command) -> None:
        """Apply a single command to the loop state."""
        state = self.state
        if isinstance(command, ToggleSortMetric):
            state.sort_metric = state.sort_metric.toggled()
            log.info("sort_metric_changed", sort_metric=state.sort_metric.value)
        elif isinstance(command, ScrollBy):
            state.scroll_offset = _clamp_offset(
                state.scroll_offset + command.delta, len(state.computed)
            )
        elif isinstance(command, TerminateProcess):
            result = self._terminator(command.pid)
            state.status = result.message
        elif isinstance(command, SetRefreshInterval):
            if command.seconds <= 0:
                log.warning("refresh_interval_rejected", seconds=command.seconds)
                return
            state.refresh_interval = max(MIN_REFRESH_INTERVAL, int(command.seconds))
            log.info("refresh_interval_changed", interval=state.refresh_interval)
        elif isinstance(command, AdjustRefreshInterval):
            state.refresh_interval = max(MIN_REFRESH_INTERVAL, state.refresh_interval + command.delta)
            log.info("refresh_interval_changed", interval=state.refresh_interval)
        elif isinstance(command, Stop):
            self._stop_event.set()
        else:
            raise TypeError(f"Unknown command: {command!r}")

    def _publish_frame(self) -> Frame:
        state = self.state
        ranked = rank(state.computed, state.sort_metric)
        state.scroll_offset = _clamp_offset(state.scroll_offset, len(ranked))
        frame = Frame(
            system=state.system,
            processes=tuple(ranked),
            offset=state.scroll_offset,
            sort_metric=state.sort_metric,
            refresh_interval=state.refresh_interval,
            status=state.status,
        )
        self._publish(frame)
        return frame

    def _wait(self, started: float) -> None:
        """Sleep until the interval elapses, serving commands meanwhile."""
        while not self.stopped:
            remaining = started + self.state.refresh_interval - time.monotonic()
            if remaining <= 0:
                return
            if not self._wakeup.wait(remaining):
                continue
            self._wakeup.clear()
            if self.apply_pending() and not self.stopped and self.state.system is not None:
                try:
                    self._publish_frame()
                except Exception:
                    log.exception("frame_publish_failed")


class SystemMonitor:
    """
    Runs a SampleLoop in a daemon thread and pushes frames to a thread-safe Queue.

    This is the only bridge between the sampler and the UI: frames flow out
    through the queue, commands flow in through submit().
    """

    def __init__(
        self,
        update_queue: Queue[Frame],
        refresh_interval: int = 2,
        sort_metric: SortMetric = SortMetric.CPU,
        source: CounterSource | None = None,
        terminator: Callable[[int], TerminationResult] = terminate_process,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            update_queue: Thread-safe queue to push frames to.
            refresh_interval: Seconds between samples. Default 2.
            sort_metric: Initial ranking metric.
            source: Counter source; picked automatically when omitted.
            terminator: Action invoked for TerminateProcess commands.
        """
        self._queue = update_queue
        self._loop = SampleLoop(
            SnapshotBuilder(source or create_counter_source()),
            update_queue.put,
            refresh_interval=refresh_interval,
            sort_metric=sort_metric,
            terminator=terminator,
        )
        self._thread: threading.Thread | None = None

    @property
    def refresh_interval(self) -> int:
        """Get the current refresh interval."""
        return self._loop.state.refresh_interval

    @property
    def is_running(self) -> bool:
        """Check if the sampling thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def submit(self, command: Command) -> None:
        """Forward a command to the loop."""
        self._loop.submit(command)

    def start(self) -> None:
        """Start the sampling thread."""
        if self.is_running:
            return

        self._loop.reset()
        self._thread = threading.Thread(
            target=self._loop.run,
            daemon=True,
            name="SampleLoop",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the sampling thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._loop.stop()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
