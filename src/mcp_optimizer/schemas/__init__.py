"""Pydantic schemas shared by every optimizer component."""

from .common_enums import (
    AlertSeverity,
    OptimizationLevel,
    Priority,
    ToolCategory,
    TrendDirection,
    TrendMetric,
)
from .monitoring import (
    Alert,
    ContextFlowIntegration,
    IntegrationMetrics,
    OptimizationReport,
    PerformanceImprovement,
    PerformanceSnapshot,
    PerformanceTrend,
    ServerRollup,
    SystemOptimizationReport,
)
from .optimization import (
    AgentTaskContext,
    IntegrationPattern,
    OptimizationResult,
    OptimizedPattern,
    PerformancePrediction,
    ResourceConstraints,
    ResourceUtilization,
    RoutingDecision,
    SelectedTool,
    ToolMetrics,
)

__all__ = [
    "AgentTaskContext",
    "Alert",
    "AlertSeverity",
    "ContextFlowIntegration",
    "IntegrationMetrics",
    "IntegrationPattern",
    "OptimizationLevel",
    "OptimizationReport",
    "OptimizationResult",
    "OptimizedPattern",
    "PerformanceImprovement",
    "PerformancePrediction",
    "PerformanceSnapshot",
    "PerformanceTrend",
    "Priority",
    "ResourceConstraints",
    "ResourceUtilization",
    "RoutingDecision",
    "SelectedTool",
    "ServerRollup",
    "SystemOptimizationReport",
    "ToolCategory",
    "ToolMetrics",
    "TrendDirection",
    "TrendMetric",
]
