"""Point-in-time sample assembly."""

from sysmon.counters import CounterSource
from sysmon.models import Sample


class SnapshotBuilder:
    """
    Builds a Sample from two back-to-back counter reads.

    The system read and the process enumeration are not atomic relative to
    each other; the small skew between them is accepted.
    """

    def __init__(self, source: CounterSource) -> None:
        self._source = source

    @property
    def source(self) -> CounterSource:
        return self._source

    def build(self) -> Sample:
        """Read system counters, then every live process."""
        system = self._source.read_system_counters()
        processes = self._source.read_live_processes()
        return Sample(system=system, processes=processes)
