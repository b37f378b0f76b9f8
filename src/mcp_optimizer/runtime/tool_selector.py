"""
Tool Selector

Scores the candidate tools of an integration pattern against a task, filters
out unreliable and context-excluded tools, truncates to the agent's tool budget
and orders the survivors into execution phases.

Scoring per tool:
- strategy relevance weight from the scoring rules (default 5)
- keyword bonus for every task keyword contained in the tool name
- metrics bonus: success rate x 5, plus a bonus for sub-second responses
- domain affinity bonus for the agent's non-universal tools
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..registry.scoring_rules import ScoringRules
from ..registry.tool_registry import ToolRegistry
from ..schemas.common_enums import Priority, ToolCategory
from ..schemas.optimization import (
    AgentTaskContext,
    IntegrationPattern,
    OptimizationResult,
    PerformancePrediction,
    ResourceUtilization,
    SelectedTool,
    ToolMetrics,
)
from ..utils.config_manager import SelectionConfiguration
from .metrics_tracker import MetricsTracker

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w]")

CATEGORY_RATIONALE: Dict[ToolCategory, str] = {
    ToolCategory.CONTEXT: "Essential for project context and memory access",
    ToolCategory.ANALYSIS: "Critical for codebase analysis and pattern discovery",
    ToolCategory.RESEARCH: "Required for external research and information gathering",
    ToolCategory.DEVELOPMENT: "Core development tool for implementation tasks",
    ToolCategory.TESTING: "Essential for validation and quality assurance",
}
DEFAULT_RATIONALE = "Supporting tool for task completion"

RATING_BANDS = [
    (90.0, "Excellent"),
    (80.0, "Very Good"),
    (70.0, "Good"),
    (60.0, "Fair"),
]


@dataclass
class _Candidate:
    tool: str
    server: Optional[str]
    category: ToolCategory
    score: float
    tracked: Optional[ToolMetrics]
    mandatory: bool


class ToolSelector:
    """Builds an ``OptimizationResult`` from a pattern and a task context."""

    def __init__(
        self,
        registry: ToolRegistry,
        tracker: MetricsTracker,
        rules: Optional[ScoringRules] = None,
        config: Optional[SelectionConfiguration] = None,
        response_time_threshold_ms: float = 3000.0,
    ):
        self.registry = registry
        self.tracker = tracker
        self.rules = rules or ScoringRules()
        self.config = config or SelectionConfiguration()
        self.response_time_threshold_ms = response_time_threshold_ms

    # ------------------------------------------------------------------
    # Keywords and scoring
    # ------------------------------------------------------------------

    def extract_keywords(self, task_description: str) -> List[str]:
        """Lower-cased task words plus the domain keyword of every matched synonym group."""
        words = [
            _NON_WORD.sub("", word)
            for word in task_description.lower().split()
            if len(word) >= self.rules.min_keyword_length
        ]
        keywords = [word for word in words if word]

        expanded = list(keywords)
        for domain, terms in self.rules.synonym_groups.items():
            if any(keyword in terms for keyword in keywords):
                expanded.append(domain)

        return list(dict.fromkeys(expanded))

    def effective_metrics(self, tool: str) -> Optional[ToolMetrics]:
        """Tracked metrics for the tool on its primary server, else on its busiest server."""
        return self.tracker.find_tool_metrics(tool, self.registry.resolve_server(tool))

    def score_tool(
        self,
        tool: str,
        keywords: List[str],
        pattern: IntegrationPattern,
        metrics: Optional[ToolMetrics] = None,
    ) -> float:
        rules = self.rules
        score = rules.strategy_weight(pattern.selection_strategy, tool)

        name = tool.lower()
        score += rules.keyword_bonus * sum(1 for keyword in keywords if keyword in name)

        success_rate = metrics.success_rate if metrics else self.config.default_success_rate
        response_time = metrics.average_response_time_ms if metrics else self.config.default_response_time_ms
        score += success_rate * rules.metrics_weight
        if response_time < rules.fast_response_threshold_ms:
            score += rules.fast_response_bonus

        if tool in pattern.domain_tools and tool not in pattern.universal_tools:
            score += rules.domain_affinity_bonus

        return score

    def tool_cap(self, agent_type: str, priority: Priority) -> int:
        return self.rules.tool_cap(agent_type, priority, self.config.max_tools_per_task)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, pattern: IntegrationPattern, context: AgentTaskContext) -> OptimizationResult:
        keywords = self.extract_keywords(context.task_description)

        candidates: List[_Candidate] = []
        for tool in pattern.all_tools():
            tracked = self.effective_metrics(tool)
            candidates.append(_Candidate(
                tool=tool,
                server=self.registry.resolve_server(tool),
                category=self.registry.categorize(tool),
                score=self.score_tool(tool, keywords, pattern, tracked),
                tracked=tracked,
                mandatory=self.registry.is_mandatory(tool),
            ))

        eligible = [c for c in candidates if self._passes_success_filter(c)]
        eligible = [c for c in eligible if not self.registry.is_excluded_by_context(c.tool, context)]

        # Mandatory tools first, then by descending score; sort is stable for ties
        eligible.sort(key=lambda c: (not c.mandatory, -c.score))

        cap = self.tool_cap(pattern.agent_type, context.priority)
        count = min(max(self.rules.min_tools_per_task, min(cap, len(eligible))), len(eligible))
        if len(eligible) < self.rules.min_tools_per_task:
            logger.warning(
                f"Only {len(eligible)} eligible tools for '{pattern.agent_type}' "
                f"(minimum {self.rules.min_tools_per_task})"
            )

        chosen = self._sequence(eligible[:count])
        selected = [self._to_selected_tool(c) for c in chosen]
        optimization_score = self._optimization_score(chosen)

        logger.debug(
            f"Selected {len(selected)}/{len(candidates)} tools for '{pattern.agent_type}' "
            f"(cap {cap}, score {optimization_score:.1f})"
        )

        return OptimizationResult(
            agent_type=pattern.agent_type,
            selected_tools=selected,
            selection_rationale=self._selection_rationale(chosen, keywords),
            performance_prediction=self._predict_performance(chosen, optimization_score, context),
            optimization_score=optimization_score,
            keywords=keywords,
        )

    def _passes_success_filter(self, candidate: _Candidate) -> bool:
        if candidate.tracked is None:
            return True
        if candidate.tracked.success_rate <= self.config.success_rate_threshold:
            logger.debug(
                f"Filtered {candidate.tool}: success rate {candidate.tracked.success_rate:.2f} "
                f"<= {self.config.success_rate_threshold}"
            )
            return False
        return True

    def _sequence(self, candidates: List[_Candidate]) -> List[_Candidate]:
        """Group into execution phases; descending score within a phase."""
        return sorted(candidates, key=lambda c: (self.rules.phase_rank(c.category), -c.score))

    def _to_selected_tool(self, candidate: _Candidate) -> SelectedTool:
        return SelectedTool(
            tool=candidate.tool,
            server=candidate.server,
            score=candidate.score,
            category=candidate.category,
            metrics=candidate.tracked,
            rationale=CATEGORY_RATIONALE.get(candidate.category, DEFAULT_RATIONALE),
        )

    # ------------------------------------------------------------------
    # Scores, rationale and prediction
    # ------------------------------------------------------------------

    def _success_rate_for_prediction(self, candidate: _Candidate) -> float:
        if candidate.tracked is not None:
            return candidate.tracked.success_rate
        return self.config.prediction_default_success_rate

    def _response_time_for_prediction(self, candidate: _Candidate) -> float:
        if candidate.tracked is not None:
            return candidate.tracked.average_response_time_ms
        return self.config.prediction_default_response_time_ms

    def _optimization_score(self, chosen: List[_Candidate]) -> float:
        if not chosen:
            return 0.0

        rules = self.rules
        weights = rules.score_weights
        count = len(chosen)

        average_relevance = sum(c.score for c in chosen) / count
        relevance = min(100.0, average_relevance / rules.relevance_ceiling * 100.0)

        categories = {c.category for c in chosen}
        diversity = min(len(categories) / rules.category_diversity_target, 1.0) * 100.0

        success = sum(self._success_rate_for_prediction(c) for c in chosen) / count * 100.0

        optimal = rules.optimal_tool_count
        tool_count = max(0.0, 1.0 - abs(count - optimal) / optimal) * 100.0

        score = (
            weights.relevance * relevance
            + weights.diversity * diversity
            + weights.success * success
            + weights.tool_count * tool_count
        )
        return max(0.0, min(100.0, score))

    @staticmethod
    def _rating(score: float) -> str:
        for floor, label in RATING_BANDS:
            if score >= floor:
                return label
        return "Poor"

    def _selection_rationale(self, chosen: List[_Candidate], keywords: List[str]) -> str:
        lines = [
            f"{c.tool}: {CATEGORY_RATIONALE.get(c.category, DEFAULT_RATIONALE)} ({c.score:.1f} relevance)"
            for c in chosen
        ]
        header = f"Selected {len(chosen)} tools based on keyword matching: [{', '.join(keywords)}]."
        return "\n".join([header, *lines])

    def _predict_performance(
        self,
        chosen: List[_Candidate],
        optimization_score: float,
        context: AgentTaskContext,
    ) -> PerformancePrediction:
        utilization = ResourceUtilization()
        for candidate in chosen:
            utilization = utilization + self.registry.get_resource_profile(candidate.tool)

        success_probability = (
            sum(self._success_rate_for_prediction(c) for c in chosen) / len(chosen) if chosen else 0.0
        )
        within = True
        if context.resource_constraints is not None:
            within = context.resource_constraints.is_satisfied_by(utilization)

        return PerformancePrediction(
            estimated_execution_time_ms=sum(self._response_time_for_prediction(c) for c in chosen),
            success_probability=success_probability,
            optimization_level=self._rating(optimization_score),
            resource_utilization=utilization,
            within_resource_constraints=within,
        )

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def get_optimization_recommendations(self, pattern: Optional[IntegrationPattern] = None) -> List[str]:
        """Advice for the pattern's tools, or for every tracked tool when no pattern is given."""
        recommendations: List[str] = []

        if pattern is not None:
            tools = pattern.all_tools()
        else:
            tools = list(dict.fromkeys(tool for (_, tool) in self.tracker.snapshot().keys()))

        for tool in tools:
            metrics = self.effective_metrics(tool)
            if metrics is None:
                continue
            if metrics.success_rate < self.config.success_rate_threshold:
                recommendations.append(
                    f"Consider replacing {tool} - low success rate ({metrics.success_rate * 100:.1f}%)"
                )
            if metrics.average_response_time_ms > self.response_time_threshold_ms:
                recommendations.append(
                    f"Optimize {tool} usage - high response time ({metrics.average_response_time_ms:.0f}ms)"
                )

        if pattern is not None:
            present = set(pattern.all_tools())
            missing = [tool for tool in self.registry.universal_tools if tool not in present]
            if missing:
                recommendations.append(f"Add missing universal tools: {', '.join(missing)}")

        return recommendations
