"""Counter differencing and percentage derivation."""

from collections.abc import Mapping
from dataclasses import replace

from sysmon.counters import PAGE_SIZE_KB
from sysmon.models import ProcessSnapshot, SystemSnapshot


def system_elapsed(current: SystemSnapshot, previous: SystemSnapshot) -> int:
    """Ticks elapsed system-wide, or 0 if the counter went backwards (reboot)."""
    if current.total_active_units >= previous.total_active_units:
        return current.total_active_units - previous.total_active_units
    return 0


def process_elapsed(current: ProcessSnapshot, previous: ProcessSnapshot | None) -> int:
    """
    Ticks consumed by a process between two samples.

    Returns 0 when there is no comparable baseline: the process is new, its
    pid was reused by a different process (start time differs), or its
    counters went backwards.
    """
    if previous is None or previous.start_units != current.start_units:
        return 0
    return max(0, current.total_active_units - previous.total_active_units)


def compute_percentages(
    current: Mapping[int, ProcessSnapshot],
    previous: Mapping[int, ProcessSnapshot],
    current_sys: SystemSnapshot,
    previous_sys: SystemSnapshot,
    page_size_kb: int = PAGE_SIZE_KB,
) -> dict[int, ProcessSnapshot]:
    """
    Derive CPU and memory shares for every process in ``current``.

    CPU share is percent of one core, so a process saturating two cores
    reads ~200. Nothing passed in is mutated; new snapshots are returned
    in the enumeration order of ``current``.

    Args:
        current: Processes from the newer sample, keyed by pid.
        previous: Processes from the older sample, keyed by pid.
        current_sys: System counters read with ``current``.
        previous_sys: System counters read with ``previous``.
        page_size_kb: Kilobytes per resident-size unit.
    """
    elapsed = system_elapsed(current_sys, previous_sys)
    memory_total_kb = current_sys.memory_total_kb

    result: dict[int, ProcessSnapshot] = {}
    for pid, proc in current.items():
        cpu_percent = 0.0
        if elapsed > 0:
            cpu_percent = process_elapsed(proc, previous.get(pid)) / elapsed * 100.0
            cpu_percent *= current_sys.cpu_count

        memory_percent = 0.0
        if memory_total_kb > 0:
            memory_percent = proc.resident_kb(page_size_kb) / memory_total_kb * 100.0

        result[pid] = replace(proc, cpu_percent=cpu_percent, memory_percent=memory_percent)
    return result
