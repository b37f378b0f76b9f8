"""
Utility modules for mcp_optimizer
"""

from .clock import Clock, ManualClock, SystemClock
from .config_manager import ConfigurationManager, OptimizerConfiguration, load_config  # noqa: F401
from .exceptions import (
    AgentTypeNotFound,
    InvalidPattern,
    InvalidTaskContext,
    MetricUpdateIgnored,
    NoRouteAvailable,
    OptimizerError,
)
from .logger_setup import setup_logging  # noqa: F401

__all__ = [
    "AgentTypeNotFound",
    "Clock",
    "ConfigurationManager",
    "InvalidPattern",
    "InvalidTaskContext",
    "ManualClock",
    "MetricUpdateIgnored",
    "NoRouteAvailable",
    "OptimizerConfiguration",
    "OptimizerError",
    "SystemClock",
    "load_config",
    "setup_logging",
]
