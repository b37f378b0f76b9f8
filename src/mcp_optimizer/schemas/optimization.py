"""Schemas for tool selection, integration patterns and routing decisions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .common_enums import OptimizationLevel, Priority, ToolCategory


class ResourceUtilization(BaseModel):
    """Percent load per resource dimension."""
    cpu: float = Field(0.0, ge=0.0, description="CPU load in percent.")
    memory: float = Field(0.0, ge=0.0, description="Memory load in percent.")
    network: float = Field(0.0, ge=0.0, description="Network load in percent.")
    disk: float = Field(0.0, ge=0.0, description="Disk load in percent.")

    def __add__(self, other: "ResourceUtilization") -> "ResourceUtilization":
        return ResourceUtilization(
            cpu=self.cpu + other.cpu,
            memory=self.memory + other.memory,
            network=self.network + other.network,
            disk=self.disk + other.disk,
        )

    def mean_load(self) -> float:
        return (self.cpu + self.memory + self.network + self.disk) / 4.0


class ResourceConstraints(BaseModel):
    """Partial resource budget supplied by the caller."""
    model_config = ConfigDict(extra='forbid')

    cpu: Optional[float] = Field(None, ge=0.0, le=100.0)
    memory: Optional[float] = Field(None, ge=0.0, le=100.0)
    network: Optional[float] = Field(None, ge=0.0, le=100.0)
    disk: Optional[float] = Field(None, ge=0.0, le=100.0)

    def is_satisfied_by(self, utilization: ResourceUtilization) -> bool:
        for dimension, budget in self.model_dump(exclude_none=True).items():
            if getattr(utilization, dimension) > budget:
                return False
        return True


class AgentTaskContext(BaseModel):
    """Everything the optimizer knows about the task an agent is about to run."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid', use_enum_values=False)

    agent_type: Optional[str] = Field(None, description="Key into the pattern catalog. Filled from the optimize() argument when omitted.")
    task_description: str = Field(..., min_length=1, description="Free-text description of the task.")
    priority: Priority = Field(Priority.MEDIUM, description="Task urgency.")
    requires_real_time_data: bool = Field(False, description="Stored-memory lookups are unsuitable for this task.")
    local_environment_only: bool = Field(False, description="Network-facing tools must not be used.")
    resource_constraints: Optional[ResourceConstraints] = Field(None, description="Optional resource budget.")

    def fingerprint(self) -> Dict[str, Any]:
        """Stable, JSON-friendly view used for cache keys."""
        return self.model_dump(mode="json", exclude_none=True)


class ToolMetrics(BaseModel):
    """Rolling performance statistics for one (server, tool) pair."""
    total_calls: int = Field(0, ge=0, description="Monotonic call counter.")
    success_rate: float = Field(0.85, ge=0.0, le=1.0, description="Exponential moving average of success.")
    average_response_time_ms: float = Field(1500.0, ge=0.0, description="Exponential moving average of latency.")
    last_used: Optional[datetime] = Field(None, description="Timestamp of the most recent recorded call.")

    @computed_field  # type: ignore[misc]
    @property
    def error_rate(self) -> float:
        return 1.0 - self.success_rate


class IntegrationPattern(BaseModel):
    """Per-agent baseline tool set and workflow metadata."""
    model_config = ConfigDict(validate_assignment=True)

    agent_type: str
    universal_tools: List[str] = Field(default_factory=list)
    domain_tools: List[str] = Field(default_factory=list)
    selection_strategy: str = Field("balanced", description="Tag selecting a relevance table in the scoring rules.")
    optimization_level: OptimizationLevel = OptimizationLevel.MEDIUM
    workflow_pattern: str = "general"

    @field_validator("universal_tools", "domain_tools")
    @classmethod
    def _dedupe(cls, tools: List[str]) -> List[str]:
        return list(dict.fromkeys(tools))

    def all_tools(self) -> List[str]:
        return list(dict.fromkeys([*self.universal_tools, *self.domain_tools]))


class OptimizedPattern(BaseModel):
    """A pattern after the context-flow and memory-integration passes."""
    agent_type: str
    pattern: IntegrationPattern
    execution_sequence: List[str] = Field(default_factory=list)
    optimization_strategy: str
    expected_performance: Dict[str, float] = Field(default_factory=dict)
    context_integration: Dict[str, Any] = Field(default_factory=dict)


class SelectedTool(BaseModel):
    tool: str
    server: Optional[str] = None
    score: float
    category: ToolCategory = ToolCategory.GENERAL
    metrics: Optional[ToolMetrics] = None
    rationale: str = ""


class PerformancePrediction(BaseModel):
    estimated_execution_time_ms: float = 0.0
    success_probability: float = Field(0.0, ge=0.0, le=1.0)
    optimization_level: str = "Poor"
    resource_utilization: ResourceUtilization = Field(default_factory=ResourceUtilization)
    within_resource_constraints: bool = True


class RoutingDecision(BaseModel):
    """Which server should service a tool call, and how sure we are."""
    tool: str
    selected_server: str
    rationale: str
    estimated_latency_ms: float = Field(..., ge=0.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    score: float = 0.0
    fallback_servers: List[str] = Field(default_factory=list)
    decided_at: Optional[datetime] = None


class OptimizationResult(BaseModel):
    """Ordered tool selection with rationale and predicted performance."""
    agent_type: str
    selected_tools: List[SelectedTool] = Field(default_factory=list)
    selection_rationale: str = ""
    performance_prediction: PerformancePrediction = Field(default_factory=PerformancePrediction)
    optimization_score: float = Field(0.0, ge=0.0, le=100.0)
    optimization_strategy: str = "balanced"
    keywords: List[str] = Field(default_factory=list)
    routing_decisions: List[RoutingDecision] = Field(default_factory=list)
    integration_pattern: Optional[IntegrationPattern] = None

    @property
    def tool_names(self) -> List[str]:
        return [selected.tool for selected in self.selected_tools]
