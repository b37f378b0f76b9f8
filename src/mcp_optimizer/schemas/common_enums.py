from enum import Enum

"""Common enumerations used across the MCP optimizer."""


class Priority(str, Enum):
    """Urgency of an agent task; scales the tool budget."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class OptimizationLevel(str, Enum):
    """How aggressively an integration pattern is optimized."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    MAXIMUM = "maximum"

    def escalate(self) -> "OptimizationLevel":
        """Return the next tier up, saturating at MAXIMUM."""
        order = list(OptimizationLevel)
        index = order.index(self)
        return order[min(index + 1, len(order) - 1)]


class ToolCategory(str, Enum):
    """Functional category of a tool. Also defines execution phases."""
    CONTEXT = "context"
    ANALYSIS = "analysis"
    RESEARCH = "research"
    DOCUMENTATION = "documentation"
    DEVELOPMENT = "development"
    TESTING = "testing"
    INFRASTRUCTURE = "infrastructure"
    GENERAL = "general"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    DEGRADING = "degrading"


class TrendMetric(str, Enum):
    RESPONSE_TIME = "response_time"
    SUCCESS_RATE = "success_rate"
    ERROR_RATE = "error_rate"
    RESOURCE_USAGE = "resource_usage"
