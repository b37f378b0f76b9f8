"""Resource utilization sources for performance snapshots."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import psutil

from ..schemas.optimization import ResourceUtilization

logger = logging.getLogger(__name__)


class ResourceProbe(ABC):
    """Supplies the resource utilization recorded in each snapshot."""

    @abstractmethod
    def sample(self) -> ResourceUtilization:
        """Current utilization, each dimension in percent."""


class PsutilResourceProbe(ResourceProbe):
    """Live host counters via psutil.

    CPU and memory are direct percentages. Network and disk have no natural
    percentage, so they are reported as throughput since the previous sample
    relative to the configured ceilings, capped at 100.
    """

    def __init__(
        self,
        network_ceiling_bytes_per_sample: float = 100 * 1024 * 1024,
        disk_ceiling_bytes_per_sample: float = 500 * 1024 * 1024,
        disk_path: str = "/",
    ):
        self.network_ceiling = network_ceiling_bytes_per_sample
        self.disk_ceiling = disk_ceiling_bytes_per_sample
        self.disk_path = disk_path
        self._last_net: Optional[int] = None
        self._last_disk: Optional[int] = None

    def sample(self) -> ResourceUtilization:
        cpu = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory().percent

        network = self._delta_percent("_last_net", self._network_bytes(), self.network_ceiling)
        disk = self._delta_percent("_last_disk", self._disk_bytes(), self.disk_ceiling)

        return ResourceUtilization(cpu=cpu, memory=memory, network=network, disk=disk)

    def _delta_percent(self, attr: str, current: Optional[int], ceiling: float) -> float:
        if current is None:
            return 0.0
        previous = getattr(self, attr)
        setattr(self, attr, current)
        if previous is None or ceiling <= 0:
            return 0.0
        return min(100.0, max(0.0, (current - previous) / ceiling * 100.0))

    @staticmethod
    def _network_bytes() -> Optional[int]:
        counters = psutil.net_io_counters()
        if counters is None:
            return None
        return counters.bytes_sent + counters.bytes_recv

    @staticmethod
    def _disk_bytes() -> Optional[int]:
        try:
            counters = psutil.disk_io_counters()
        except (RuntimeError, OSError) as e:
            logger.debug(f"Disk counters unavailable: {e}")
            return None
        if counters is None:
            return None
        return counters.read_bytes + counters.write_bytes


class StaticResourceProbe(ResourceProbe):
    """Returns a fixed utilization. Used for tests and hosts without counters."""

    def __init__(self, utilization: Optional[ResourceUtilization] = None):
        self._utilization = utilization or ResourceUtilization()

    def sample(self) -> ResourceUtilization:
        return self._utilization.model_copy()
