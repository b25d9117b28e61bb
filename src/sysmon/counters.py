"""Raw counter sources for sysmon.

Two sources produce identical units (clock ticks for CPU time, pages for
resident size, kilobytes for system memory):

- ProcfsCounterSource parses Linux procfs directly.
- PsutilCounterSource reads the same counters through psutil on platforms
  without procfs.

Neither source derives anything. Unreadable aggregate fields become zero,
vanished or malformed process records are skipped.
"""

import os
from pathlib import Path
from typing import Protocol

import psutil
import structlog

from sysmon.models import ProcessSnapshot, SystemSnapshot

log = structlog.get_logger()


def _sysconf(name: str, default: int) -> int:
    try:
        value = os.sysconf(name)
    except (AttributeError, ValueError, OSError):
        return default
    return value if value > 0 else default


CLOCK_TICKS = _sysconf("SC_CLK_TCK", 100)
PAGE_SIZE = _sysconf("SC_PAGE_SIZE", 4096)
PAGE_SIZE_KB = max(1, PAGE_SIZE // 1024)

# Field positions in /proc/<pid>/stat, counted after the ")" closing the name
STAT_UTIME = 11
STAT_STIME = 12
STAT_CUTIME = 13
STAT_CSTIME = 14
STAT_STARTTIME = 19
STAT_VSIZE = 20
STAT_RSS = 21
STAT_MIN_FIELDS = 22

SOURCE_KINDS = ("auto", "procfs", "psutil")


class CounterSource(Protocol):
    """Reads raw system and per-process counters."""

    def read_system_counters(self) -> SystemSnapshot: ...

    def read_live_processes(self) -> dict[int, ProcessSnapshot]: ...


def parse_stat_line(line: str) -> tuple[str, list[str]]:
    """Split a /proc/<pid>/stat line into the process name and remaining fields.

    The name is delimited by the first "(" and the last ")" because it may
    itself contain spaces and parentheses.

    Raises:
        ValueError: If the name delimiters are missing or too few fields follow.
    """
    start = line.find("(")
    end = line.rfind(")")
    if start == -1 or end < start:
        raise ValueError("stat line has no process name")
    fields = line[end + 1 :].split()
    if len(fields) < STAT_MIN_FIELDS:
        raise ValueError(f"stat line has {len(fields)} fields, need {STAT_MIN_FIELDS}")
    return line[start + 1 : end], fields


def parse_cpu_line(line: str) -> int:
    """Sum every counter on an aggregate "cpu" line of /proc/stat.

    Tokens that fail to parse count as zero.
    """
    total = 0
    for token in line.split()[1:]:
        try:
            total += int(token)
        except ValueError:
            continue
    return total


def parse_meminfo(text: str) -> dict[str, int]:
    """Parse /proc/meminfo into {key: kilobytes}, skipping malformed lines."""
    values: dict[str, int] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2 or not parts[0].endswith(":"):
            continue
        try:
            values[parts[0][:-1]] = int(parts[1])
        except ValueError:
            continue
    return values


class ProcfsCounterSource:
    """Counter source backed by a procfs tree (``/proc`` by default)."""

    def __init__(self, root: Path | str = "/proc") -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def read_system_counters(self) -> SystemSnapshot:
        memory = self._read_meminfo()
        return SystemSnapshot(
            total_active_units=self._read_total_ticks(),
            memory_total_kb=memory.get("MemTotal", 0),
            memory_free_kb=memory.get("MemFree", 0),
            memory_available_kb=memory.get("MemAvailable", 0),
            cpu_count=self._read_cpu_count(),
        )

    def read_live_processes(self) -> dict[int, ProcessSnapshot]:
        processes: dict[int, ProcessSnapshot] = {}
        try:
            entries = [entry for entry in os.listdir(self._root) if entry.isdigit()]
        except OSError as e:
            log.warning("process_table_unreadable", root=str(self._root), error=str(e))
            return processes

        for pid in sorted(int(entry) for entry in entries):
            snapshot = self._read_process(pid)
            if snapshot is not None:
                processes[pid] = snapshot
        return processes

    def _read_text(self, *parts: str) -> str | None:
        try:
            return self._root.joinpath(*parts).read_text(errors="replace")
        except OSError:
            return None

    def _read_total_ticks(self) -> int:
        text = self._read_text("stat")
        if text is None:
            log.warning("system_feed_unreadable", feed="stat")
            return 0
        for line in text.splitlines():
            if line.startswith("cpu "):
                return parse_cpu_line(line)
        log.warning("system_feed_malformed", feed="stat")
        return 0

    def _read_meminfo(self) -> dict[str, int]:
        text = self._read_text("meminfo")
        if text is None:
            log.warning("system_feed_unreadable", feed="meminfo")
            return {}
        return parse_meminfo(text)

    def _read_cpu_count(self) -> int:
        text = self._read_text("cpuinfo")
        if text is None:
            log.warning("system_feed_unreadable", feed="cpuinfo")
            return 1
        count = sum(1 for line in text.splitlines() if line.startswith("processor"))
        return max(1, count)

    def _read_process(self, pid: int) -> ProcessSnapshot | None:
        stat = self._read_text(str(pid), "stat")
        if stat is None:
            log.debug("process_skipped", pid=pid, reason="vanished")
            return None

        try:
            name, fields = parse_stat_line(stat)
            utime = int(fields[STAT_UTIME])
            stime = int(fields[STAT_STIME])
            cutime = int(fields[STAT_CUTIME])
            cstime = int(fields[STAT_CSTIME])
            start_units = int(fields[STAT_STARTTIME])
            vsize = int(fields[STAT_VSIZE])
            rss = int(fields[STAT_RSS])
        except ValueError as e:
            log.debug("process_skipped", pid=pid, reason="malformed", error=str(e))
            return None

        return ProcessSnapshot(
            pid=pid,
            name=name,
            command_line=self._read_command_line(pid, name),
            active_units_own=utime + stime,
            active_units_children=cutime + cstime,
            resident_size_units=rss,
            virtual_size_bytes=vsize,
            start_units=start_units,
        )

    def _read_command_line(self, pid: int, name: str) -> str:
        try:
            raw = self._root.joinpath(str(pid), "cmdline").read_bytes()
        except OSError:
            raw = b""
        command_line = raw.replace(b"\0", b" ").strip().decode(errors="replace")
        if command_line:
            return command_line
        # Kernel threads and zombies have an empty cmdline
        comm = self._read_text(str(pid), "comm")
        return comm.strip() if comm and comm.strip() else name


def _to_ticks(seconds: float) -> int:
    return int(round(seconds * CLOCK_TICKS))


class PsutilCounterSource:
    """Counter source backed by psutil, converted to procfs units."""

    _ATTRS = ["pid", "name", "cmdline", "cpu_times", "memory_info", "create_time"]

    def read_system_counters(self) -> SystemSnapshot:
        try:
            total_active_units = _to_ticks(sum(psutil.cpu_times()))
        except (OSError, psutil.Error) as e:
            log.warning("system_feed_unreadable", feed="cpu_times", error=str(e))
            total_active_units = 0

        try:
            mem = psutil.virtual_memory()
            memory = (mem.total // 1024, getattr(mem, "free", 0) // 1024, mem.available // 1024)
        except (OSError, psutil.Error) as e:
            log.warning("system_feed_unreadable", feed="virtual_memory", error=str(e))
            memory = (0, 0, 0)

        return SystemSnapshot(
            total_active_units=total_active_units,
            memory_total_kb=memory[0],
            memory_free_kb=memory[1],
            memory_available_kb=memory[2],
            cpu_count=psutil.cpu_count() or 1,
        )

    def read_live_processes(self) -> dict[int, ProcessSnapshot]:
        """
        Collect snapshots of all running processes.

        Processes that exit mid-read, zombies and processes whose accounting
        is denied are skipped.
        """
        processes: dict[int, ProcessSnapshot] = {}

        for proc in psutil.process_iter(attrs=self._ATTRS):
            try:
                with proc.oneshot():
                    snapshot = self._to_snapshot(proc.info)
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

            if snapshot is None:
                log.debug("process_skipped", pid=proc.pid, reason="malformed")
                continue
            processes[snapshot.pid] = snapshot

        return processes

    @staticmethod
    def _to_snapshot(info: dict) -> ProcessSnapshot | None:
        pid = info.get("pid") or 0
        cpu_times = info.get("cpu_times")
        mem_info = info.get("memory_info")
        # Without CPU or memory accounting the record is useless for deltas
        if pid <= 0 or cpu_times is None or mem_info is None:
            return None

        name = info.get("name") or ""
        cmdline = info.get("cmdline") or []
        command_line = " ".join(cmdline) if cmdline else name

        own = cpu_times.user + cpu_times.system
        children = getattr(cpu_times, "children_user", 0.0) + getattr(
            cpu_times, "children_system", 0.0
        )
        return ProcessSnapshot(
            pid=pid,
            name=name,
            command_line=command_line,
            active_units_own=_to_ticks(own),
            active_units_children=_to_ticks(children),
            resident_size_units=mem_info.rss // PAGE_SIZE,
            virtual_size_bytes=mem_info.vms,
            start_units=_to_ticks(info.get("create_time") or 0.0),
        )


def create_counter_source(kind: str = "auto", procfs_root: Path | str = "/proc") -> CounterSource:
    """Build the counter source named by ``kind``.

    ``auto`` picks procfs when its aggregate feed is readable, psutil otherwise.

    Raises:
        ValueError: If ``kind`` is not one of SOURCE_KINDS.
    """
    if kind not in SOURCE_KINDS:
        raise ValueError(f"Unknown counter source: {kind!r}. Valid sources: {list(SOURCE_KINDS)}")
    if kind == "auto":
        kind = "procfs" if os.access(Path(procfs_root) / "stat", os.R_OK) else "psutil"
    if kind == "procfs":
        return ProcfsCounterSource(procfs_root)
    return PsutilCounterSource()
