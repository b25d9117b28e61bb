"""Process ordering for display."""

from collections.abc import Iterable, Mapping
from enum import Enum

from sysmon.models import ProcessSnapshot


class SortMetric(Enum):
    """Metric the process list is ranked by."""

    CPU = "cpu"
    MEM = "mem"

    def toggled(self) -> "SortMetric":
        """Return the other metric."""
        return SortMetric.MEM if self is SortMetric.CPU else SortMetric.CPU


_METRIC_KEYS = {
    SortMetric.CPU: lambda p: p.cpu_percent,
    SortMetric.MEM: lambda p: p.memory_percent,
}


def rank(
    processes: Mapping[int, ProcessSnapshot] | Iterable[ProcessSnapshot],
    metric: SortMetric,
) -> list[ProcessSnapshot]:
    """
    Order processes by ``metric``, highest first.

    Equal values keep their input order: sorted() stays stable with
    reverse=True, and no secondary key is applied.
    """
    if isinstance(processes, Mapping):
        processes = processes.values()
    return sorted(processes, key=_METRIC_KEYS[metric], reverse=True)
