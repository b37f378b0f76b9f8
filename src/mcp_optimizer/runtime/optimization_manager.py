"""
Optimization Manager

Facade that wires the pattern catalog, tool selector, server router and
performance monitor around one shared ``MetricsTracker`` and exposes the
optimizer's public operations:

- ``optimize``: task context in, ordered tool selection with routes out
- ``record_execution``: execution feedback from the agent runtime
- ``route_request``: a single routing decision
- ``get_optimization_report``: merged report across all components

Nothing here is process-wide; construct as many managers as needed.
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from ..patterns.catalog import PatternCatalog
from ..registry.scoring_rules import ScoringRules, load_scoring_rules
from ..registry.tool_registry import ToolRegistry, load_tool_registry
from ..schemas.monitoring import SystemOptimizationReport
from ..schemas.optimization import (
    AgentTaskContext,
    IntegrationPattern,
    OptimizationResult,
    RoutingDecision,
    ToolMetrics,
)
from ..utils.clock import Clock, SystemClock
from ..utils.config_manager import OptimizerConfiguration
from ..utils.exceptions import AgentTypeNotFound, InvalidPattern, InvalidTaskContext
from .metrics_tracker import MetricsTracker
from .performance_monitor import PerformanceMonitor
from .resource_probe import PsutilResourceProbe, ResourceProbe
from .server_router import ServerRouter
from .tool_selector import ToolSelector

logger = logging.getLogger(__name__)

AUDIT_TOOL = "mcp_optimization"
AUDIT_SERVER = "optimization_manager"

TaskContextInput = Union[AgentTaskContext, Mapping]


class OptimizationManager:
    """Entry point combining selection, routing and monitoring."""

    def __init__(
        self,
        config: Optional[OptimizerConfiguration] = None,
        registry: Optional[ToolRegistry] = None,
        rules: Optional[ScoringRules] = None,
        clock: Optional[Clock] = None,
        resource_probe: Optional[ResourceProbe] = None,
    ):
        self.config = config or OptimizerConfiguration()
        self.clock = clock or SystemClock()
        self.registry = registry or load_tool_registry(self.config.registry.registry_path)
        self.rules = rules or load_scoring_rules(self.config.selection.scoring_rules_path)

        monitoring = self.config.monitoring
        self.tracker = MetricsTracker(
            clock=self.clock,
            success_rate_alpha=monitoring.success_rate_alpha,
            response_time_alpha=monitoring.response_time_alpha,
            default_success_rate=self.config.selection.default_success_rate,
            default_response_time_ms=self.config.selection.default_response_time_ms,
            default_server_success_rate=self.config.routing.default_server_success_rate,
            default_server_response_time_ms=self.config.routing.default_server_response_time_ms,
        )
        self.catalog = PatternCatalog(self.registry, rules=self.rules)
        self.selector = ToolSelector(
            self.registry,
            self.tracker,
            rules=self.rules,
            config=self.config.selection,
            response_time_threshold_ms=monitoring.response_time_threshold_ms,
        )
        self.router = ServerRouter(
            self.registry,
            self.tracker,
            rules=self.rules,
            config=self.config.routing,
            clock=self.clock,
            response_time_threshold_ms=monitoring.response_time_threshold_ms,
        )
        self.monitor = PerformanceMonitor(
            self.tracker,
            config=monitoring,
            clock=self.clock,
            resource_probe=resource_probe or PsutilResourceProbe(),
        )

        if monitoring.enable_real_time_monitoring:
            self.monitor.start()

        logger.info(
            f"OptimizationManager initialized: {len(self.catalog.agent_types)} agent patterns, "
            f"{len(self.registry.servers)} servers"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_monitoring(self) -> None:
        self.monitor.start()

    def stop_monitoring(self) -> None:
        self.monitor.stop()

    def close(self) -> None:
        self.stop_monitoring()

    def __enter__(self) -> "OptimizationManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def _validate_context(self, agent_type: str, context: TaskContextInput) -> AgentTaskContext:
        if isinstance(context, AgentTaskContext):
            task_context = context
        elif isinstance(context, Mapping):
            try:
                task_context = AgentTaskContext.model_validate(dict(context))
            except ValidationError as e:
                raise InvalidTaskContext(f"Invalid task context for '{agent_type}': {e}", errors=e.errors()) from e
        else:
            raise InvalidTaskContext(f"Task context must be a mapping, got {type(context).__name__}")

        if task_context.agent_type is None:
            return task_context.model_copy(update={"agent_type": agent_type})
        if task_context.agent_type != agent_type:
            raise InvalidTaskContext(
                f"Context agent type '{task_context.agent_type}' does not match requested '{agent_type}'"
            )
        return task_context

    def optimize(self, agent_type: str, context: TaskContextInput) -> OptimizationResult:
        """Select, order and route the tools an agent should use for a task.

        Raises:
            InvalidTaskContext: The context is malformed or names another agent.
            AgentTypeNotFound: No pattern is registered for ``agent_type``.
            NoRouteAvailable: A selected tool has no known server.
        """
        started = self.clock.monotonic()
        task_context = self._validate_context(agent_type, context)
        if agent_type not in self.catalog:
            raise AgentTypeNotFound(agent_type)

        optimized = self.catalog.get_optimized_pattern(agent_type, task_context)
        result = self.selector.select(optimized.pattern, task_context)

        routes = [self.router.route(selected.tool, task_context) for selected in result.selected_tools]
        result = result.model_copy(update={
            "routing_decisions": routes,
            "integration_pattern": optimized.pattern,
            "optimization_strategy": optimized.optimization_strategy,
        })

        self._feed_integration_metrics(result, bool(optimized.context_integration.get("memory_system_integration")))

        elapsed_ms = (self.clock.monotonic() - started) * 1000.0
        self.monitor.record_execution(AUDIT_TOOL, AUDIT_SERVER, True, elapsed_ms)

        logger.info(
            f"Optimized '{agent_type}': {len(result.selected_tools)} tools, "
            f"score {result.optimization_score:.1f}, strategy {result.optimization_strategy}"
        )
        return result

    def _feed_integration_metrics(self, result: OptimizationResult, memory_integration: bool) -> None:
        self.monitor.update_tool_selection_accuracy(result.optimization_score / 100.0)

        count = len(result.selected_tools)
        if count:
            per_tool_load = result.performance_prediction.resource_utilization.mean_load() / count
            self.monitor.update_resource_optimization(max(0.0, min(1.0, 1.0 - per_tool_load / 100.0)))

        self.monitor.update_context_flow(
            cache_hit_rate=self.router.cache.hit_rate,
            reduced_redundant_calls=self.router.cache.hits,
            memory_system_integration=memory_integration,
        )

    # ------------------------------------------------------------------
    # Feedback and routing
    # ------------------------------------------------------------------

    def record_execution(
        self,
        tool: str,
        server: str,
        success: bool,
        response_time_ms: float,
        context: Optional[Any] = None,
    ) -> None:
        self.monitor.record_execution(tool, server, success, response_time_ms, context)

    def route_request(self, tool: str, context: Optional[Any] = None) -> RoutingDecision:
        return self.router.route(tool, context)

    # ------------------------------------------------------------------
    # Patterns and metrics
    # ------------------------------------------------------------------

    def get_pattern(self, agent_type: str) -> IntegrationPattern:
        return self.catalog.get_pattern(agent_type)

    def update_pattern(self, agent_type: str, pattern: Union[IntegrationPattern, Mapping]) -> None:
        """Replace the baseline pattern for ``agent_type``.

        Raises:
            InvalidPattern: ``pattern`` is neither a pattern nor a valid mapping.
        """
        if isinstance(pattern, Mapping):
            data = {"agent_type": agent_type, **pattern}
            try:
                pattern = IntegrationPattern.model_validate(data)
            except ValidationError as e:
                raise InvalidPattern(f"Invalid integration pattern for '{agent_type}': {e}", errors=e.errors()) from e
        elif not isinstance(pattern, IntegrationPattern):
            raise InvalidPattern(f"Integration pattern must be a mapping, got {type(pattern).__name__}")
        self.catalog.update_pattern(agent_type, pattern)

    def get_tool_metrics(self, tool: str, server: Optional[str] = None) -> Optional[ToolMetrics]:
        if server is None:
            return self.tracker.find_tool_metrics(tool, self.registry.resolve_server(tool))
        return self.tracker.get_tool_metrics(tool, server)

    def get_optimization_report(self) -> SystemOptimizationReport:
        integration = self.monitor.get_integration_metrics()
        patterns = self.catalog.get_all_patterns()
        timestamp: datetime = self.clock.now()

        return SystemOptimizationReport(
            timestamp=timestamp,
            overall_optimization_score=integration.overall_score(),
            tool_selector=self.selector.get_optimization_recommendations(),
            server_router=self.router.get_performance_report(),
            performance_monitor=self.monitor.get_performance_report(),
            integration_patterns={
                agent: pattern.model_dump(mode="json") for agent, pattern in patterns.items()
            },
            overall_metrics=self._overall_metrics(integration.model_dump(mode="json"), len(patterns)),
        )

    def _overall_metrics(self, integration: Dict[str, Any], pattern_count: int) -> Dict[str, Any]:
        return {
            "integration_metrics": integration,
            "tracked_tool_pairs": len(self.tracker),
            "agent_patterns": pattern_count,
            "registered_servers": len(self.registry.servers),
            "ignored_updates": self.monitor.ignored_updates,
            "monitoring_active": self.monitor.is_running,
        }
