"""
Tool Registry Module

Static tool, server and agent knowledge plus the loadable scoring-rule table.
"""

from .tool_registry import (
    AgentDefinition,
    AlternateRoute,
    ServerConfiguration,
    ToolDescriptor,
    ToolRegistry,
    load_tool_registry,
)
from .scoring_rules import ScoringRules, load_scoring_rules

__all__ = [
    'AgentDefinition',
    'AlternateRoute',
    'ScoringRules',
    'ServerConfiguration',
    'ToolDescriptor',
    'ToolRegistry',
    'load_scoring_rules',
    'load_tool_registry',
]
