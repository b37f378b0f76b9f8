"""Custom exceptions for the MCP optimizer."""

from typing import Any, Dict, List, Optional


class OptimizerError(Exception):
    """Base class for custom exceptions in the MCP optimizer."""
    pass


class AgentTypeNotFound(OptimizerError):
    """Raised when no integration pattern is registered for an agent type."""

    def __init__(self, agent_type: str):
        super().__init__(f"No integration pattern registered for agent type: {agent_type}")
        self.agent_type = agent_type


class NoRouteAvailable(OptimizerError):
    """Raised when neither a primary nor an alternate server is known for a tool."""

    def __init__(self, tool: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"No routing options available for tool: {tool}")
        self.tool = tool
        self.details = details or {}


class InvalidTaskContext(OptimizerError):
    """Raised when a task context is missing required fields or is malformed."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class MetricUpdateIgnored(OptimizerError):
    """Signals a malformed execution record. Never escapes the performance monitor."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InvalidPattern(OptimizerError):
    """Raised when a replacement integration pattern fails validation."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []
