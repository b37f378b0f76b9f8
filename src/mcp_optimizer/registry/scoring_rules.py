"""Loadable scoring-rule table for tool selection and route scoring."""

import logging
import math
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..schemas.common_enums import Priority, ToolCategory
from ..utils.config_manager import ConfigurationFileError, ConfigurationLoader, ConfigurationValidationError
from .tool_registry import DATA_DIR

logger = logging.getLogger(__name__)

DEFAULT_SCORING_RULES_PATH = DATA_DIR / "scoring_rules.yaml"


class SelectionWeights(BaseModel):
    relevance: float = 0.4
    diversity: float = 0.2
    success: float = 0.3
    tool_count: float = 0.1


class RouteWeights(BaseModel):
    latency: float = 0.4
    confidence: float = 0.3
    rationale: float = 0.2
    success: float = 0.1


class ScoringRules(BaseModel):
    """Weights, lookup tables and limits used by the selector and the router."""
    model_config = ConfigDict(extra='forbid')

    version: int = 1
    default_weight: float = 5.0
    strategies: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    synonym_groups: Dict[str, List[str]] = Field(default_factory=dict)
    min_keyword_length: int = Field(4, ge=1)

    priority_multipliers: Dict[Priority, float] = Field(
        default_factory=lambda: {
            Priority.LOW: 0.7,
            Priority.MEDIUM: 0.85,
            Priority.HIGH: 1.0,
            Priority.CRITICAL: 1.2,
        }
    )
    default_agent_limit: int = Field(5, ge=1)
    agent_limits: Dict[str, int] = Field(default_factory=dict)
    min_tools_per_task: int = Field(3, ge=1)

    keyword_bonus: float = 3.0
    domain_affinity_bonus: float = 5.0
    metrics_weight: float = 5.0
    fast_response_bonus: float = 3.0
    fast_response_threshold_ms: float = 1000.0
    relevance_ceiling: float = Field(25.0, gt=0.0)
    optimal_tool_count: int = Field(5, ge=1)
    category_diversity_target: int = Field(5, ge=1)

    score_weights: SelectionWeights = Field(default_factory=SelectionWeights)
    route_weights: RouteWeights = Field(default_factory=RouteWeights)
    rationale_quality_keywords: List[str] = Field(default_factory=list)
    rationale_quality_cap: int = 10

    phase_order: List[ToolCategory] = Field(
        default_factory=lambda: [
            ToolCategory.CONTEXT,
            ToolCategory.ANALYSIS,
            ToolCategory.RESEARCH,
            ToolCategory.DEVELOPMENT,
            ToolCategory.TESTING,
            ToolCategory.INFRASTRUCTURE,
        ]
    )

    def strategy_weight(self, strategy: str, tool: str) -> float:
        return self.strategies.get(strategy, {}).get(tool, self.default_weight)

    def agent_limit(self, agent_type: str) -> int:
        return self.agent_limits.get(agent_type, self.default_agent_limit)

    def tool_cap(self, agent_type: str, priority: Priority, max_tools_per_task: Optional[int] = None) -> int:
        """Agent base limit scaled by priority, floored, and bounded by the global ceiling."""
        multiplier = self.priority_multipliers.get(priority, 1.0)
        cap = math.floor(self.agent_limit(agent_type) * multiplier)
        if max_tools_per_task is not None:
            cap = min(cap, max_tools_per_task)
        return cap

    def phase_rank(self, category: ToolCategory) -> int:
        """Execution phase index: ordered phases, then any other category, general last."""
        if category in self.phase_order:
            return self.phase_order.index(category)
        if category == ToolCategory.GENERAL:
            return len(self.phase_order) + 1
        return len(self.phase_order)

    def rationale_quality(self, rationale: str) -> int:
        text = rationale.lower()
        matches = sum(1 for keyword in self.rationale_quality_keywords if keyword in text)
        return min(self.rationale_quality_cap, matches)


def load_scoring_rules(path: Optional[Union[str, Path]] = None) -> ScoringRules:
    """Load scoring rules from YAML, defaulting to the bundled table."""
    rules_path = Path(path).expanduser() if path else DEFAULT_SCORING_RULES_PATH
    if not rules_path.exists():
        raise ConfigurationFileError(f"Scoring rules file not found: {rules_path}")

    raw = ConfigurationLoader.load_yaml_file(rules_path)
    try:
        rules = ScoringRules(**raw)
    except ValidationError as e:
        raise ConfigurationValidationError(f"Invalid scoring rules {rules_path}: {e}") from e

    logger.debug(f"Loaded scoring rules from {rules_path} ({len(rules.strategies)} strategies)")
    return rules
