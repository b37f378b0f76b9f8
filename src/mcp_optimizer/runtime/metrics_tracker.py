"""
Rolling execution metrics shared by the selector, the router and the monitor.

Every recorded call updates two exponential moving averages, success rate and
response time, for the ``(server, tool)`` pair and for the server as a whole:

    new = old * (1 - alpha) + sample * alpha

One alpha per metric type. With alpha = 0.1 a sample's weight halves roughly
every 6.6 events.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from ..schemas.optimization import ToolMetrics
from ..utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

MetricsKey = Tuple[str, str]


@dataclass
class _RollingStats:
    """Mutable accumulator behind a ``ToolMetrics`` view."""

    total_calls: int
    success_rate: float
    average_response_time_ms: float
    last_used: Optional[datetime] = None

    def update(self, success: bool, response_time_ms: float, now: datetime,
               success_alpha: float, response_time_alpha: float) -> None:
        self.total_calls += 1
        self.last_used = now
        self.average_response_time_ms = (
            self.average_response_time_ms * (1 - response_time_alpha) + response_time_ms * response_time_alpha
        )
        sample = 1.0 if success else 0.0
        self.success_rate = min(1.0, max(0.0, self.success_rate * (1 - success_alpha) + sample * success_alpha))

    def to_metrics(self) -> ToolMetrics:
        return ToolMetrics(
            total_calls=self.total_calls,
            success_rate=self.success_rate,
            average_response_time_ms=self.average_response_time_ms,
            last_used=self.last_used,
        )


class MetricsTracker:
    """Thread-safe store of per-(server, tool) and per-server rolling metrics."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        success_rate_alpha: float = 0.1,
        response_time_alpha: float = 0.1,
        default_success_rate: float = 0.85,
        default_response_time_ms: float = 1500.0,
        default_server_success_rate: float = 0.85,
        default_server_response_time_ms: float = 1200.0,
    ):
        if not 0.0 < success_rate_alpha <= 1.0 or not 0.0 < response_time_alpha <= 1.0:
            raise ValueError("EMA alphas must be in (0, 1]")

        self._clock = clock or SystemClock()
        self.success_rate_alpha = success_rate_alpha
        self.response_time_alpha = response_time_alpha
        self.default_success_rate = default_success_rate
        self.default_response_time_ms = default_response_time_ms
        self.default_server_success_rate = default_server_success_rate
        self.default_server_response_time_ms = default_server_response_time_ms

        self._lock = threading.Lock()
        self._tools: Dict[MetricsKey, _RollingStats] = {}
        self._servers: Dict[str, _RollingStats] = {}

    def record(self, server: str, tool: str, success: bool, response_time_ms: float) -> ToolMetrics:
        """Fold one execution outcome into the pair and server averages."""
        now = self._clock.now()
        with self._lock:
            stats = self._tools.get((server, tool))
            if stats is None:
                stats = _RollingStats(0, self.default_success_rate, self.default_response_time_ms)
                self._tools[(server, tool)] = stats
            stats.update(success, response_time_ms, now, self.success_rate_alpha, self.response_time_alpha)

            server_stats = self._servers.get(server)
            if server_stats is None:
                server_stats = _RollingStats(0, self.default_server_success_rate, self.default_server_response_time_ms)
                self._servers[server] = server_stats
            server_stats.update(success, response_time_ms, now, self.success_rate_alpha, self.response_time_alpha)

            return stats.to_metrics()

    def get_tool_metrics(self, tool: str, server: str) -> Optional[ToolMetrics]:
        with self._lock:
            stats = self._tools.get((server, tool))
            return stats.to_metrics() if stats else None

    def get_server_metrics(self, server: str) -> Optional[ToolMetrics]:
        with self._lock:
            stats = self._servers.get(server)
            return stats.to_metrics() if stats else None

    def find_tool_metrics(self, tool: str, preferred_server: Optional[str] = None) -> Optional[ToolMetrics]:
        """Metrics for the preferred pair, else the most-called tracked pair for the tool."""
        with self._lock:
            if preferred_server is not None:
                stats = self._tools.get((preferred_server, tool))
                if stats is not None:
                    return stats.to_metrics()

            candidates = [stats for (_, name), stats in self._tools.items() if name == tool]
            if not candidates:
                return None
            return max(candidates, key=lambda s: s.total_calls).to_metrics()

    def snapshot(self) -> Dict[MetricsKey, ToolMetrics]:
        """Copy of every tracked (server, tool) pair."""
        with self._lock:
            return {key: stats.to_metrics() for key, stats in self._tools.items()}

    def server_snapshot(self) -> Dict[str, ToolMetrics]:
        with self._lock:
            return {server: stats.to_metrics() for server, stats in self._servers.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)
