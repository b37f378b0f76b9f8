"""Schemas emitted by the performance monitor and the optimization manager."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .common_enums import AlertSeverity, TrendDirection, TrendMetric
from .optimization import ResourceUtilization


class ServerRollup(BaseModel):
    """Per-server aggregate inside a snapshot."""
    total_calls: int = 0
    average_response_time_ms: float = 0.0
    success_rate: float = 0.0
    tool_count: int = 0


class PerformanceSnapshot(BaseModel):
    """Point-in-time aggregate over every tracked (server, tool) pair."""
    timestamp: datetime
    total_calls: int = 0
    average_response_time_ms: float = 0.0
    success_rate: float = 0.0
    error_rate: float = 0.0
    tool_usage_distribution: Dict[str, int] = Field(default_factory=dict)
    server_performance: Dict[str, ServerRollup] = Field(default_factory=dict)
    resource_utilization: ResourceUtilization = Field(default_factory=ResourceUtilization)


class Alert(BaseModel):
    type: str = Field(..., description="Alert kind, e.g. response_time, failure, system_performance.")
    severity: AlertSeverity
    message: str
    tool_name: Optional[str] = None
    server_name: Optional[str] = None
    timestamp: datetime
    value: float
    threshold: float


class PerformanceTrend(BaseModel):
    metric: TrendMetric
    change: float = Field(..., description="Percentage change of the recent window against the previous window.")
    direction: TrendDirection
    severity: AlertSeverity
    previous_value: float = 0.0
    recent_value: float = 0.0


class PerformanceImprovement(BaseModel):
    agent_type: str = "system"
    metric_type: TrendMetric
    before_value: float
    after_value: float
    improvement_percentage: float


class OptimizationReport(BaseModel):
    """Summary of one trend-analysis pass."""
    timestamp: datetime
    total_optimizations: int = 0
    average_optimization_score: float = Field(0.0, ge=0.0, le=100.0)
    performance_improvements: List[PerformanceImprovement] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class ContextFlowIntegration(BaseModel):
    context_cache_hit_rate: float = Field(0.0, ge=0.0, le=1.0)
    optimized_tool_selections: int = 0
    reduced_redundant_calls: int = 0
    memory_system_integration: bool = False


class IntegrationMetrics(BaseModel):
    """Derived quality signals in [0, 1]. Approximations nudged by observed trends, not ground truth."""
    tool_selection_accuracy: float = Field(0.0, ge=0.0, le=1.0)
    routing_efficiency: float = Field(0.0, ge=0.0, le=1.0)
    performance_improvement: float = Field(0.0, ge=0.0, le=1.0)
    resource_optimization: float = Field(0.0, ge=0.0, le=1.0)
    context_flow_integration: ContextFlowIntegration = Field(default_factory=ContextFlowIntegration)

    def overall_score(self) -> float:
        """Equal-weighted score scaled to [0, 100]."""
        score = (
            self.tool_selection_accuracy * 25
            + self.routing_efficiency * 25
            + self.performance_improvement * 25
            + self.resource_optimization * 25
        )
        return max(0.0, min(100.0, score))


class SystemOptimizationReport(BaseModel):
    """Merged report across selector, router, monitor and pattern catalog."""
    timestamp: datetime
    overall_optimization_score: float = Field(0.0, ge=0.0, le=100.0)
    tool_selector: List[str] = Field(default_factory=list, description="Tool selection recommendations.")
    server_router: Dict[str, Any] = Field(default_factory=dict)
    performance_monitor: Dict[str, Any] = Field(default_factory=dict)
    integration_patterns: Dict[str, Any] = Field(default_factory=dict)
    overall_metrics: Dict[str, Any] = Field(default_factory=dict)
