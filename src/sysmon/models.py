"""Data models for sysmon."""

from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class SystemSnapshot:
    """Immutable snapshot of system-wide counters."""

    total_active_units: int  # Clock ticks, all CPUs, all categories
    memory_total_kb: int
    memory_free_kb: int
    memory_available_kb: int
    cpu_count: int = 1


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """Immutable snapshot of a process state."""

    pid: int
    name: str
    command_line: str
    active_units_own: int  # utime + stime
    active_units_children: int  # cutime + cstime
    resident_size_units: int  # Pages
    virtual_size_bytes: int
    start_units: int  # Ticks since boot at process start
    cpu_percent: float = 0.0  # 0.0 - 100.0 * cpu_count
    memory_percent: float = 0.0

    @property
    def total_active_units(self) -> int:
        """Own plus reaped-children ticks, the value differenced across samples."""
        return self.active_units_own + self.active_units_children

    def resident_kb(self, page_size_kb: int) -> int:
        """Resident size converted from pages to kilobytes."""
        return max(0, self.resident_size_units) * page_size_kb


@dataclass(slots=True, frozen=True)
class Sample:
    """A system snapshot and the processes read alongside it."""

    system: SystemSnapshot
    processes: Mapping[int, ProcessSnapshot] = field(default_factory=dict)
