"""Runtime package: metrics, selection, routing, monitoring and the manager facade."""

from __future__ import annotations

from .metrics_tracker import MetricsTracker
from .optimization_manager import OptimizationManager
from .performance_monitor import PerformanceMonitor
from .resource_probe import PsutilResourceProbe, ResourceProbe, StaticResourceProbe
from .server_router import ConnectionPool, RoutingDecisionCache, ServerRouter
from .tool_selector import ToolSelector

__all__ = [
    "ConnectionPool",
    "MetricsTracker",
    "OptimizationManager",
    "PerformanceMonitor",
    "PsutilResourceProbe",
    "ResourceProbe",
    "RoutingDecisionCache",
    "ServerRouter",
    "StaticResourceProbe",
    "ToolSelector",
]
