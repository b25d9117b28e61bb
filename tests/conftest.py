"""Shared test fixtures for sysmon."""

import logging
from collections.abc import Iterable
from pathlib import Path

import pytest
import structlog

from sysmon.models import ProcessSnapshot, SystemSnapshot


def make_system(
    total_active_units: int = 1000,
    memory_total_kb: int = 1_000_000,
    memory_free_kb: int = 500_000,
    memory_available_kb: int = 600_000,
    cpu_count: int = 4,
) -> SystemSnapshot:
    """Create a SystemSnapshot for testing."""
    return SystemSnapshot(
        total_active_units=total_active_units,
        memory_total_kb=memory_total_kb,
        memory_free_kb=memory_free_kb,
        memory_available_kb=memory_available_kb,
        cpu_count=cpu_count,
    )


def make_process(
    pid: int = 100,
    own: int = 50,
    children: int = 0,
    rss: int = 2500,
    start: int = 1234,
    name: str = "proc",
    command_line: str | None = None,
) -> ProcessSnapshot:
    """Create a ProcessSnapshot with raw counters for testing."""
    return ProcessSnapshot(
        pid=pid,
        name=name,
        command_line=command_line if command_line is not None else f"/usr/bin/{name}",
        active_units_own=own,
        active_units_children=children,
        resident_size_units=rss,
        virtual_size_bytes=rss * 4096 * 2,
        start_units=start,
    )


def by_pid(processes: Iterable[ProcessSnapshot]) -> dict[int, ProcessSnapshot]:
    """Key processes by pid, keeping their order."""
    return {p.pid: p for p in processes}


class ScriptedSource:
    """Counter source that replays prepared reads, repeating the last one."""

    def __init__(self, reads: list[tuple[SystemSnapshot, dict[int, ProcessSnapshot]]]) -> None:
        self._reads = list(reads)
        self._pending: dict[int, ProcessSnapshot] = {}
        self.calls = 0

    def read_system_counters(self) -> SystemSnapshot:
        system, processes = self._reads[0] if len(self._reads) == 1 else self._reads.pop(0)
        self._pending = processes
        self.calls += 1
        return system

    def read_live_processes(self) -> dict[int, ProcessSnapshot]:
        return dict(self._pending)


def stat_line(
    pid: int,
    name: str = "proc",
    utime: int = 10,
    stime: int = 5,
    cutime: int = 0,
    cstime: int = 0,
    starttime: int = 4242,
    vsize: int = 8_192_000,
    rss: int = 250,
) -> str:
    """Build a /proc/<pid>/stat line with the given counters."""
    # Fields after the name: state ppid pgrp session tty tpgid flags minflt
    # cminflt majflt cmajflt utime stime cutime cstime priority nice
    # num_threads itrealvalue starttime vsize rss ...
    after = [
        "S", "1", str(pid), str(pid), "0", "-1", "4194560", "100", "0", "0", "0",
        str(utime), str(stime), str(cutime), str(cstime),
        "20", "0", "1", "0", str(starttime), str(vsize), str(rss),
        "18446744073709551615", "1", "1", "0", "0", "0", "0", "0",
    ]  # fmt: skip
    return f"{pid} ({name}) " + " ".join(after) + "\n"


class FakeProcfs:
    """Writes a minimal procfs tree under a temporary directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def write_stat(self, cpu_line: str = "cpu  100 0 50 800 10 0 5 0 0 0") -> None:
        (self.root / "stat").write_text(
            f"{cpu_line}\ncpu0 50 0 25 400 5 0 2 0 0 0\nintr 12345\nctxt 6789\n"
        )

    def write_meminfo(self, total: int = 1_000_000, free: int = 400_000, available: int = 600_000) -> None:
        (self.root / "meminfo").write_text(
            f"MemTotal:       {total} kB\n"
            f"MemFree:        {free} kB\n"
            f"MemAvailable:   {available} kB\n"
            "Buffers:          1000 kB\n"
        )

    def write_cpuinfo(self, count: int = 2) -> None:
        blocks = [f"processor\t: {i}\nmodel name\t: Test CPU\n" for i in range(count)]
        (self.root / "cpuinfo").write_text("\n".join(blocks))

    def add_process(
        self,
        pid: int,
        stat: str | None = None,
        cmdline: bytes = b"",
        comm: str | None = None,
        **counters,
    ) -> Path:
        proc_dir = self.root / str(pid)
        proc_dir.mkdir()
        name = counters.pop("name", "proc")
        (proc_dir / "stat").write_text(stat if stat is not None else stat_line(pid, name, **counters))
        (proc_dir / "cmdline").write_bytes(cmdline)
        if comm is not None:
            (proc_dir / "comm").write_text(comm + "\n")
        return proc_dir


@pytest.fixture
def fake_procfs(tmp_path: Path) -> FakeProcfs:
    """A procfs tree with system feeds and no processes."""
    procfs = FakeProcfs(tmp_path / "proc")
    procfs.write_stat()
    procfs.write_meminfo()
    procfs.write_cpuinfo()
    return procfs


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo global logging configuration made by a test."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter):
            handler.close()
            root.removeHandler(handler)
    root.setLevel(logging.WARNING)
    structlog.reset_defaults()
