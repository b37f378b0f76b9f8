import logging

import pytest

from mcp_optimizer.patterns.catalog import PatternCatalog
from mcp_optimizer.runtime.tool_selector import ToolSelector
from mcp_optimizer.schemas.common_enums import Priority
from mcp_optimizer.schemas.optimization import (
    AgentTaskContext,
    IntegrationPattern,
    ResourceConstraints,
    ToolMetrics,
)


@pytest.fixture
def selector(registry, rules, tracker):
    return ToolSelector(registry, tracker, rules=rules)


@pytest.fixture
def catalog(registry, rules):
    return PatternCatalog(registry, rules=rules)


def frontend_context(**overrides) -> AgentTaskContext:
    values = {"task_description": "Create responsive UI component", "priority": Priority.HIGH}
    values.update(overrides)
    return AgentTaskContext(**values)


class TestKeywords:

    def test_short_words_dropped_and_synonyms_expanded(self, selector):
        keywords = selector.extract_keywords("Create responsive UI component")
        assert keywords == ["create", "responsive", "component", "development"]

    def test_punctuation_stripped(self, selector):
        assert selector.extract_keywords("Deploy: the service!") == ["deploy", "service", "infrastructure"]

    def test_one_term_can_activate_several_groups(self, selector):
        keywords = selector.extract_keywords("Search docs and validate schema")
        assert keywords[:4] == ["search", "docs", "validate", "schema"]
        assert {"research", "testing", "security"} <= set(keywords)

    def test_no_duplicates(self, selector):
        assert selector.extract_keywords("test the testing") == ["test", "testing"]


class TestScoring:

    def test_untracked_tool_score(self, selector, registry):
        pattern = registry.build_patterns()["deep-research-specialist"]
        score = selector.score_tool("tavily_tavily_search", ["search"], pattern)
        # strategy 10 + keyword 3 + 0.85 * 5 + domain affinity 5
        assert score == pytest.approx(22.25)

    def test_tracked_fast_tool_gets_bonus(self, selector, registry):
        pattern = registry.build_patterns()["deep-research-specialist"]
        metrics = ToolMetrics(total_calls=10, success_rate=1.0, average_response_time_ms=500.0)
        assert selector.score_tool("tavily_tavily_search", ["search"], pattern, metrics) == pytest.approx(26.0)

    def test_universal_tools_get_no_affinity_bonus(self, selector, registry):
        pattern = registry.build_patterns()["frontend-engineer"]
        assert selector.score_tool("serena_read_memory", [], pattern) == pytest.approx(9.25)

    def test_tool_cap(self, selector):
        assert selector.tool_cap("frontend-engineer", Priority.HIGH) == 6
        assert selector.tool_cap("deep-research-specialist", Priority.CRITICAL) == 7
        assert selector.tool_cap("unregistered", Priority.LOW) == 3


class TestSelection:

    def test_frontend_selection(self, selector, catalog):
        context = frontend_context()
        result = selector.select(catalog.optimize_pattern("frontend-engineer", context), context)

        assert result.tool_names == [
            "serena_read_memory",
            "in-memoria_search_codebase",
            "shadcn_search_items_in_registries",
            "playwright_browser_navigate",
            "chrome-devtools_take_screenshot",
            "playwright_browser_snapshot",
        ]
        assert result.optimization_score == pytest.approx(71.333, abs=0.01)
        assert result.performance_prediction.optimization_level == "Good"
        assert result.performance_prediction.estimated_execution_time_ms == pytest.approx(6 * 2000)
        assert result.performance_prediction.success_probability == pytest.approx(0.8)
        assert result.keywords == ["create", "responsive", "component", "development"]

    def test_rationale_lists_every_tool(self, selector, catalog):
        context = frontend_context()
        result = selector.select(catalog.optimize_pattern("frontend-engineer", context), context)
        lines = result.selection_rationale.splitlines()
        assert lines[0] == (
            "Selected 6 tools based on keyword matching: [create, responsive, component, development]."
        )
        assert len(lines) == 7
        assert lines[1].startswith("serena_read_memory: Essential for project context")
        assert "(19.2 relevance)" in result.selection_rationale or "(19.3 relevance)" in result.selection_rationale

    def test_low_success_tools_are_never_selected(self, selector, catalog, tracker):
        for _ in range(5):
            tracker.record("playwright", "playwright_browser_navigate", False, 900.0)
        assert tracker.get_tool_metrics("playwright_browser_navigate", "playwright").success_rate <= 0.7

        context = frontend_context()
        result = selector.select(catalog.optimize_pattern("frontend-engineer", context), context)
        assert "playwright_browser_navigate" not in result.tool_names
        assert len(result.selected_tools) == 6

    def test_mandatory_tools_also_respect_success_filter(self, selector, catalog, tracker):
        for _ in range(5):
            tracker.record("serena", "serena_read_memory", False, 200.0)
        context = frontend_context()
        result = selector.select(catalog.optimize_pattern("frontend-engineer", context), context)
        assert "serena_read_memory" not in result.tool_names

    @pytest.mark.parametrize("priority", list(Priority))
    def test_selection_length_within_bounds(self, selector, catalog, priority):
        for agent_type in catalog.agent_types:
            context = AgentTaskContext(task_description="Implement and validate the feature", priority=priority)
            pattern = catalog.optimize_pattern(agent_type, context)
            result = selector.select(pattern, context)
            cap = selector.tool_cap(agent_type, priority)
            assert 3 <= len(result.selected_tools) <= max(3, cap), agent_type
            assert len(set(result.tool_names)) == len(result.tool_names)

    def test_fewer_than_minimum_eligible_logs_warning(self, selector, caplog):
        pattern = IntegrationPattern(
            agent_type="frontend-engineer",
            universal_tools=["serena_read_memory"],
            domain_tools=["playwright_browser_navigate"],
        )
        with caplog.at_level(logging.WARNING):
            result = selector.select(pattern, frontend_context())
        assert len(result.selected_tools) == 2
        assert "Only 2 eligible tools" in caplog.text

    def test_resource_constraints_reported(self, selector, catalog):
        context = frontend_context(resource_constraints=ResourceConstraints(cpu=50))
        result = selector.select(catalog.optimize_pattern("frontend-engineer", context), context)
        assert result.performance_prediction.resource_utilization.cpu > 50
        assert result.performance_prediction.within_resource_constraints is False

    def test_tracked_metrics_feed_prediction(self, selector, catalog, tracker):
        for _ in range(30):
            tracker.record("shadcn", "shadcn_search_items_in_registries", True, 100.0)
        context = frontend_context()
        result = selector.select(catalog.optimize_pattern("frontend-engineer", context), context)
        shadcn = next(t for t in result.selected_tools if t.tool == "shadcn_search_items_in_registries")
        assert shadcn.metrics is not None
        assert shadcn.metrics.total_calls == 30
        assert result.performance_prediction.estimated_execution_time_ms < 6 * 2000


class TestRecommendations:

    def test_low_success_and_slow_tools_flagged(self, selector, tracker):
        for _ in range(10):
            tracker.record("playwright", "playwright_browser_navigate", False, 9000.0)
        recommendations = selector.get_optimization_recommendations()
        assert any(r.startswith("Consider replacing playwright_browser_navigate") for r in recommendations)
        assert any(r.startswith("Optimize playwright_browser_navigate usage") for r in recommendations)

    def test_missing_universal_tools(self, selector):
        pattern = IntegrationPattern(agent_type="bare", domain_tools=["webfetch"])
        recommendations = selector.get_optimization_recommendations(pattern)
        assert recommendations == [
            "Add missing universal tools: sequential_sequentialthinking, serena_read_memory, context7_resolve_library_id"
        ]

    def test_healthy_pattern_has_no_recommendations(self, selector, registry):
        assert selector.get_optimization_recommendations(registry.build_patterns()["qa-engineer"]) == []
