import json
import logging
import math
import time

import pytest

from mcp_optimizer.runtime.performance_monitor import (
    PerformanceMonitor,
    classify_severity,
    percentage_change,
)
from mcp_optimizer.schemas.common_enums import AlertSeverity, TrendDirection, TrendMetric
from mcp_optimizer.schemas.monitoring import PerformanceTrend
from mcp_optimizer.schemas.optimization import AgentTaskContext
from mcp_optimizer.utils.config_manager import MonitoringConfiguration


@pytest.fixture
def monitor(tracker, clock, probe):
    return PerformanceMonitor(tracker, MonitoringConfiguration(), clock=clock, resource_probe=probe)


def feed(monitor, count, response_time_ms, success=True, tool="serena_read_memory", server="serena"):
    for _ in range(count):
        monitor.record_execution(tool, server, success, response_time_ms)


def snapshots(monitor, count):
    for _ in range(count):
        monitor.collect_snapshot()


def monitor_trend(metric, direction):
    return PerformanceTrend(metric=metric, change=-20.0, direction=direction, severity=AlertSeverity.MEDIUM)


class TestSeverity:

    @pytest.mark.parametrize(
        "change, expected",
        [
            (5.0, None),
            (-9.9, None),
            (10.0, AlertSeverity.LOW),
            (30.0, AlertSeverity.MEDIUM),
            (-60.0, AlertSeverity.HIGH),
            (100.0, AlertSeverity.CRITICAL),
        ],
    )
    def test_response_time_tiers(self, change, expected):
        assert classify_severity(change, TrendMetric.RESPONSE_TIME) == expected

    def test_success_rate_tiers(self):
        assert classify_severity(4.0, TrendMetric.SUCCESS_RATE) is None
        assert classify_severity(-6.0, TrendMetric.SUCCESS_RATE) == AlertSeverity.LOW
        assert classify_severity(-20.0, TrendMetric.SUCCESS_RATE) == AlertSeverity.MEDIUM
        assert classify_severity(-30.0, TrendMetric.SUCCESS_RATE) == AlertSeverity.HIGH
        assert classify_severity(-50.0, TrendMetric.SUCCESS_RATE) == AlertSeverity.CRITICAL

    def test_percentage_change_of_zero_baseline(self):
        assert percentage_change(10.0, 0.0) == 0.0
        assert percentage_change(150.0, 100.0) == pytest.approx(50.0)


class TestRecordExecution:

    def test_updates_shared_metrics(self, monitor, tracker):
        monitor.record_execution("serena_read_memory", "serena", True, 120.0)
        assert tracker.get_tool_metrics("serena_read_memory", "serena").total_calls == 1
        assert monitor.get_tool_metrics("serena_read_memory", "serena").total_calls == 1
        assert list(monitor.get_all_metrics()) == [("serena", "serena_read_memory")]

    def test_accepts_mapping_and_context_models(self, monitor):
        monitor.record_execution("webfetch", "webfetch", True, 50.0, {"agent_type": "qa-engineer"})
        monitor.record_execution("webfetch", "webfetch", True, 50.0, AgentTaskContext(task_description="x"))
        assert monitor.ignored_updates == 0
        assert monitor.get_tool_metrics("webfetch", "webfetch").total_calls == 2

    @pytest.mark.parametrize(
        "tool, server, success, response_time_ms, context",
        [
            ("", "serena", True, 10.0, None),
            ("serena_read_memory", "  ", True, 10.0, None),
            ("serena_read_memory", "serena", "yes", 10.0, None),
            ("serena_read_memory", "serena", True, -1.0, None),
            ("serena_read_memory", "serena", True, math.nan, None),
            ("serena_read_memory", "serena", True, 10 ** 400, None),
            ("serena_read_memory", "serena", True, -(10 ** 400), None),
            ("serena_read_memory", "serena", True, math.inf, None),
            ("serena_read_memory", "serena", True, "fast", None),
            ("serena_read_memory", "serena", True, True, None),
            ("serena_read_memory", "serena", True, 10.0, "not a mapping"),
            (None, "serena", True, 10.0, None),
        ],
    )
    def test_malformed_records_are_ignored(self, monitor, tracker, tool, server, success, response_time_ms, context):
        monitor.record_execution(tool, server, success, response_time_ms, context)
        assert monitor.ignored_updates == 1
        assert len(tracker) == 0

    def test_slow_call_raises_high_alert(self, monitor, caplog):
        with caplog.at_level(logging.WARNING, logger="mcp_optimizer.runtime.performance_monitor"):
            monitor.record_execution("tavily_tavily_search", "tavily", True, 5000.0)
        alerts = monitor.get_alerts()
        assert len(alerts) == 1
        assert alerts[0].severity == AlertSeverity.HIGH
        assert alerts[0].message == "High response time for tavily_tavily_search: 5000ms"
        assert alerts[0].threshold == 3000
        assert "High response time" in caplog.text

    def test_failure_raises_medium_alert(self, monitor):
        monitor.record_execution("forgejo_create_issue", "forgejo", False, 200.0)
        alerts = monitor.get_alerts()
        assert [a.severity for a in alerts] == [AlertSeverity.MEDIUM]
        assert alerts[0].message == "Tool execution failed: forgejo_create_issue"
        assert alerts[0].server_name == "forgejo"

    def test_slow_failure_raises_both(self, monitor):
        monitor.record_execution("forgejo_create_issue", "forgejo", False, 4000.0)
        assert {a.type for a in monitor.get_alerts()} == {"response_time", "failure"}

    def test_alert_history_is_bounded(self, tracker, clock, probe):
        config = MonitoringConfiguration(alert_history_limit=10, alert_history_retain=5)
        monitor = PerformanceMonitor(tracker, config, clock=clock, resource_probe=probe)
        feed(monitor, 11, 100.0, success=False)
        assert len(monitor.get_alerts()) == 5

    def test_active_alerts_expire(self, monitor, clock):
        monitor.record_execution("forgejo_create_issue", "forgejo", False, 200.0)
        assert len(monitor.get_active_alerts()) == 1
        clock.advance(25 * 3600)
        assert monitor.get_active_alerts() == []
        assert len(monitor.get_alerts()) == 1


class TestSnapshots:

    def test_snapshot_aggregates_pairs(self, monitor, probe):
        monitor.record_execution("serena_read_memory", "serena", True, 100.0)
        monitor.record_execution("serena_read_file", "serena", True, 300.0)
        monitor.record_execution("serena_read_memory", "desktop-commander", False, 200.0)

        snapshot = monitor.collect_snapshot()
        assert snapshot.total_calls == 3
        assert snapshot.tool_usage_distribution == {"serena_read_memory": 2, "serena_read_file": 1}
        assert snapshot.server_performance["serena"].tool_count == 2
        assert snapshot.server_performance["desktop-commander"].total_calls == 1
        assert snapshot.error_rate == pytest.approx(1 - snapshot.success_rate)
        assert snapshot.resource_utilization == probe.sample()

    def test_empty_snapshot(self, monitor):
        snapshot = monitor.collect_snapshot()
        assert snapshot.total_calls == 0
        assert snapshot.average_response_time_ms == 0.0
        assert snapshot.error_rate == 0.0

    def test_snapshot_history_is_bounded(self, tracker, clock, probe):
        config = MonitoringConfiguration(snapshot_history_limit=4, snapshot_history_retain=2)
        monitor = PerformanceMonitor(tracker, config, clock=clock, resource_probe=probe)
        snapshots(monitor, 5)
        assert len(monitor.get_snapshots()) == 2


class TestTrends:

    def test_no_trend_without_previous_window(self, monitor):
        feed(monitor, 20, 200.0)
        snapshots(monitor, 10)
        assert monitor.detect_trends() == []
        assert monitor.analyze_performance() is None

    def test_improving_response_time(self, monitor):
        feed(monitor, 50, 2000.0)
        snapshots(monitor, 10)
        feed(monitor, 50, 500.0)
        snapshots(monitor, 10)

        trends = monitor.detect_trends()
        assert len(trends) == 1
        trend = trends[0]
        assert trend.metric == TrendMetric.RESPONSE_TIME
        assert trend.direction == TrendDirection.IMPROVING
        assert trend.severity == AlertSeverity.HIGH
        assert trend.change == pytest.approx(-74.6, abs=0.5)

        report = monitor.analyze_performance()
        assert report is not None
        assert report.total_optimizations == 1
        assert len(report.performance_improvements) == 1
        assert report.performance_improvements[0].improvement_percentage == pytest.approx(74.6, abs=0.5)
        assert monitor.get_integration_metrics().performance_improvement == pytest.approx(0.1)
        assert report.average_optimization_score == pytest.approx(2.5)

    def test_degrading_response_time(self, monitor):
        feed(monitor, 50, 500.0)
        snapshots(monitor, 10)
        feed(monitor, 50, 2000.0)
        snapshots(monitor, 10)

        report = monitor.analyze_performance()
        trend = monitor.detect_trends()[0]
        assert trend.direction == TrendDirection.DEGRADING
        assert trend.severity == AlertSeverity.CRITICAL
        assert report.performance_improvements == []
        assert any(r.startswith("Response time degrading") for r in report.recommendations)
        assert "Low routing efficiency - consider implementing intelligent routing" in report.recommendations
        assert "Low cache hit rate - optimize caching strategies" in report.recommendations
        # Clamped at zero
        assert monitor.get_integration_metrics().performance_improvement == 0.0

    def test_declining_success_rate(self, monitor):
        feed(monitor, 50, 200.0)
        snapshots(monitor, 10)
        feed(monitor, 10, 200.0, success=False)
        snapshots(monitor, 10)

        trends = monitor.detect_trends()
        assert [t.metric for t in trends] == [TrendMetric.SUCCESS_RATE]
        assert trends[0].direction == TrendDirection.DEGRADING
        assert trends[0].severity == AlertSeverity.CRITICAL

        report = monitor.analyze_performance()
        assert any(r.startswith("Success rate declining") for r in report.recommendations)

    def test_integration_nudges_are_clamped(self, monitor):
        for _ in range(15):
            monitor._nudge_integration_metrics([
                monitor_trend(TrendMetric.SUCCESS_RATE, TrendDirection.IMPROVING),
            ])
        assert monitor.get_integration_metrics().routing_efficiency == pytest.approx(1.0)

    def test_reports_are_bounded(self, tracker, clock, probe):
        config = MonitoringConfiguration(report_history_limit=3, report_history_retain=2)
        monitor = PerformanceMonitor(tracker, config, clock=clock, resource_probe=probe)
        trend = monitor_trend(TrendMetric.RESPONSE_TIME, TrendDirection.IMPROVING)
        for _ in range(4):
            monitor._generate_report([trend])
        assert len(monitor.get_optimization_reports()) == 2


class TestSystemAlerts:

    def test_high_rolling_response_time(self, monitor):
        feed(monitor, 50, 5000.0)
        for _ in range(5):
            assert monitor.run_monitoring_cycle() is None

        system = [a for a in monitor.get_alerts() if a.type == "system_performance"]
        assert len(system) == 1
        assert system[0].severity == AlertSeverity.MEDIUM
        assert system[0].message.startswith("System-wide high response time")

    def test_low_rolling_success_rate(self, monitor):
        feed(monitor, 30, 100.0, success=False)
        snapshots(monitor, 5)
        raised = monitor.generate_system_alerts()
        assert [a.severity for a in raised] == [AlertSeverity.HIGH]
        assert raised[0].message.startswith("System-wide low success rate")

    def test_no_alerts_before_any_calls(self, monitor):
        snapshots(monitor, 10)
        assert monitor.generate_system_alerts() == []


class TestIntegrationMetrics:

    def test_ema_updates(self, monitor):
        monitor.update_tool_selection_accuracy(1.0)
        monitor.update_tool_selection_accuracy(1.0)
        monitor.update_resource_optimization(0.5)
        metrics = monitor.get_integration_metrics()
        assert metrics.tool_selection_accuracy == pytest.approx(0.19)
        assert metrics.resource_optimization == pytest.approx(0.05)
        assert 0.0 <= metrics.overall_score() <= 100.0

    def test_context_flow_update(self, monitor):
        monitor.update_context_flow(cache_hit_rate=0.5, reduced_redundant_calls=3, memory_system_integration=True)
        monitor.update_context_flow(cache_hit_rate=0.6, reduced_redundant_calls=4, memory_system_integration=True)
        flow = monitor.get_integration_metrics().context_flow_integration
        assert flow.context_cache_hit_rate == pytest.approx(0.6)
        assert flow.optimized_tool_selections == 2
        assert flow.reduced_redundant_calls == 4
        assert flow.memory_system_integration is True

    def test_returned_metrics_are_copies(self, monitor):
        monitor.get_integration_metrics().routing_efficiency = 0.9
        assert monitor.get_integration_metrics().routing_efficiency == 0.0


class TestReportAndLifecycle:

    def test_performance_report_is_json_serializable(self, monitor):
        feed(monitor, 5, 4000.0, success=False)
        snapshots(monitor, 2)
        report = monitor.get_performance_report()
        json.dumps(report)
        assert report["snapshot_count"] == 2
        assert len(report["active_alerts"]) == 10
        assert report["latest_snapshot"]["total_calls"] == 5
        assert report["monitoring_active"] is False

    def test_start_and_stop_are_idempotent(self, tracker, clock, probe):
        config = MonitoringConfiguration(monitoring_interval_ms=10)
        monitor = PerformanceMonitor(tracker, config, clock=clock, resource_probe=probe)

        monitor.stop()
        monitor.start()
        thread = monitor._thread
        monitor.start()
        assert monitor._thread is thread
        assert monitor.is_running

        deadline = time.monotonic() + 5.0
        while len(monitor.get_snapshots()) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert len(monitor.get_snapshots()) >= 2

        monitor.stop()
        monitor.stop()
        assert not monitor.is_running
