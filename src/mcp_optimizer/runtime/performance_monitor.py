"""
Performance Monitor

Sole feedback entry point of the optimizer. Execution outcomes reported by the
agent runtime are folded into the shared ``MetricsTracker`` and checked against
thresholds immediately. A periodic job takes snapshots of all tracked metrics,
compares recent and previous windows to detect trends, raises system-wide
alerts and produces optimization reports.

Key Features:
- Per-event alerts for slow and failed executions
- Snapshot history with retain-last-N truncation
- Trend detection with severity tiers per metric
- Derived integration metrics nudged by observed trends
- Background monitoring thread with idempotent start/stop
"""

import logging
import math
import threading
from collections.abc import Mapping
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from ..schemas.common_enums import AlertSeverity, TrendDirection, TrendMetric
from ..schemas.monitoring import (
    Alert,
    ContextFlowIntegration,
    IntegrationMetrics,
    OptimizationReport,
    PerformanceImprovement,
    PerformanceSnapshot,
    PerformanceTrend,
    ServerRollup,
)
from ..schemas.optimization import ToolMetrics
from ..utils.clock import Clock, SystemClock
from ..utils.config_manager import MonitoringConfiguration
from ..utils.exceptions import MetricUpdateIgnored
from .metrics_tracker import MetricsTracker
from .resource_probe import ResourceProbe, StaticResourceProbe

logger = logging.getLogger(__name__)

# Percentage-change tiers (low, medium, high). At twice the high tier a trend is critical.
SEVERITY_THRESHOLDS: Dict[TrendMetric, Tuple[float, float, float]] = {
    TrendMetric.RESPONSE_TIME: (10.0, 25.0, 50.0),
    TrendMetric.SUCCESS_RATE: (5.0, 15.0, 25.0),
    TrendMetric.ERROR_RATE: (5.0, 15.0, 25.0),
}

TREND_NUDGE = 0.1
ROUTING_EFFICIENCY_FLOOR = 0.7
CACHE_HIT_RATE_FLOOR = 0.6

DEGRADING_RECOMMENDATIONS = {
    TrendMetric.RESPONSE_TIME: "Response time degrading - consider server optimization or load balancing",
    TrendMetric.SUCCESS_RATE: "Success rate declining - investigate error patterns and implement retry logic",
}


def percentage_change(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100.0


def classify_severity(change: float, metric: TrendMetric) -> Optional[AlertSeverity]:
    """Severity tier for a percentage change, or None below the lowest tier."""
    low, medium, high = SEVERITY_THRESHOLDS.get(metric, SEVERITY_THRESHOLDS[TrendMetric.RESPONSE_TIME])
    magnitude = abs(change)
    if magnitude < low:
        return None
    if magnitude < medium:
        return AlertSeverity.LOW
    if magnitude < high:
        return AlertSeverity.MEDIUM
    if magnitude < 2 * high:
        return AlertSeverity.HIGH
    return AlertSeverity.CRITICAL


class PerformanceMonitor:
    """
    Records execution outcomes and analyses them over time.

    ``record_execution`` never raises: malformed records are dropped and
    counted in ``ignored_updates``.
    """

    def __init__(
        self,
        tracker: MetricsTracker,
        config: Optional[MonitoringConfiguration] = None,
        clock: Optional[Clock] = None,
        resource_probe: Optional[ResourceProbe] = None,
    ):
        self.tracker = tracker
        self.config = config or MonitoringConfiguration()
        self.clock = clock or SystemClock()
        self.resource_probe = resource_probe or StaticResourceProbe()

        self._lock = threading.RLock()
        self._snapshots: List[PerformanceSnapshot] = []
        self._alerts: List[Alert] = []
        self._reports: List[OptimizationReport] = []
        self._integration = IntegrationMetrics()
        self.ignored_updates = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._thread_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def record_execution(
        self,
        tool: str,
        server: str,
        success: bool,
        response_time_ms: float,
        context: Optional[Any] = None,
    ) -> None:
        """Fold one execution outcome into the metrics and check thresholds."""
        try:
            response_time_ms = self._validate_execution(tool, server, success, response_time_ms, context)
        except MetricUpdateIgnored as e:
            with self._lock:
                self.ignored_updates += 1
            logger.debug(f"Metric update ignored: {e.reason}")
            return

        self.tracker.record(server, tool, success, response_time_ms)
        self._check_thresholds(tool, server, success, response_time_ms)

    @staticmethod
    def _validate_execution(tool: Any, server: Any, success: Any, response_time_ms: Any, context: Any) -> float:
        if not isinstance(tool, str) or not tool.strip():
            raise MetricUpdateIgnored(f"invalid tool name: {tool!r}")
        if not isinstance(server, str) or not server.strip():
            raise MetricUpdateIgnored(f"invalid server name: {server!r}")
        if not isinstance(success, bool):
            raise MetricUpdateIgnored(f"success must be a bool, got {type(success).__name__}")
        if isinstance(response_time_ms, bool) or not isinstance(response_time_ms, (int, float)):
            raise MetricUpdateIgnored(f"response time must be numeric, got {response_time_ms!r}")
        try:
            value = float(response_time_ms)
        except (OverflowError, ValueError):
            raise MetricUpdateIgnored("response time too large to represent") from None
        if not math.isfinite(value) or value < 0:
            raise MetricUpdateIgnored(f"response time out of range: {response_time_ms!r}")
        if context is not None and not isinstance(context, (Mapping, BaseModel)):
            raise MetricUpdateIgnored(f"context must be a mapping, got {type(context).__name__}")
        return value

    def _check_thresholds(self, tool: str, server: str, success: bool, response_time_ms: float) -> None:
        threshold = self.config.response_time_threshold_ms
        if response_time_ms > threshold:
            self._raise_alert(Alert(
                type="response_time",
                severity=AlertSeverity.HIGH,
                message=f"High response time for {tool}: {response_time_ms:.0f}ms",
                tool_name=tool,
                server_name=server,
                timestamp=self.clock.now(),
                value=response_time_ms,
                threshold=threshold,
            ))

        if not success:
            self._raise_alert(Alert(
                type="failure",
                severity=AlertSeverity.MEDIUM,
                message=f"Tool execution failed: {tool}",
                tool_name=tool,
                server_name=server,
                timestamp=self.clock.now(),
                value=0.0,
                threshold=self.config.success_rate_threshold,
            ))

    def _raise_alert(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.append(alert)
            if len(self._alerts) > self.config.alert_history_limit:
                self._alerts = self._alerts[-self.config.alert_history_retain:]

        if alert.severity == AlertSeverity.CRITICAL:
            logger.error(f"CRITICAL ALERT: {alert.message}")
        elif alert.severity == AlertSeverity.HIGH:
            logger.warning(alert.message)
        else:
            logger.info(alert.message)

    # ------------------------------------------------------------------
    # Periodic job
    # ------------------------------------------------------------------

    def run_monitoring_cycle(self) -> Optional[OptimizationReport]:
        """Snapshot, analyse trends, raise system alerts. Returns the report if one was produced."""
        self.collect_snapshot()
        report = self.analyze_performance()
        self.generate_system_alerts()
        return report

    def collect_snapshot(self) -> PerformanceSnapshot:
        pairs = self.tracker.snapshot()
        snapshot = self._build_snapshot(pairs)

        with self._lock:
            self._snapshots.append(snapshot)
            if len(self._snapshots) > self.config.snapshot_history_limit:
                self._snapshots = self._snapshots[-self.config.snapshot_history_retain:]
        return snapshot

    def _build_snapshot(self, pairs: Dict[Tuple[str, str], ToolMetrics]) -> PerformanceSnapshot:
        usage: Dict[str, int] = {}
        rollups: Dict[str, ServerRollup] = {}
        total_calls = 0
        total_response = 0.0
        total_success = 0.0

        for (server, tool), metrics in pairs.items():
            total_calls += metrics.total_calls
            total_response += metrics.average_response_time_ms
            total_success += metrics.success_rate
            usage[tool] = usage.get(tool, 0) + metrics.total_calls

            rollup = rollups.setdefault(server, ServerRollup())
            rollup.total_calls += metrics.total_calls
            rollup.average_response_time_ms += metrics.average_response_time_ms
            rollup.success_rate += metrics.success_rate
            rollup.tool_count += 1

        for rollup in rollups.values():
            rollup.average_response_time_ms /= rollup.tool_count
            rollup.success_rate /= rollup.tool_count

        count = len(pairs)
        success_rate = total_success / count if count else 0.0
        return PerformanceSnapshot(
            timestamp=self.clock.now(),
            total_calls=total_calls,
            average_response_time_ms=total_response / count if count else 0.0,
            success_rate=success_rate,
            error_rate=1.0 - success_rate if count else 0.0,
            tool_usage_distribution=usage,
            server_performance=rollups,
            resource_utilization=self.resource_probe.sample(),
        )

    def _windows(self) -> Tuple[List[PerformanceSnapshot], List[PerformanceSnapshot]]:
        window = self.config.trend_window
        with self._lock:
            recent = self._snapshots[-window:]
            previous = self._snapshots[-2 * window:-window] if len(self._snapshots) > window else []
        return recent, previous

    @staticmethod
    def _period_average(period: List[PerformanceSnapshot]) -> Optional[Dict[str, float]]:
        # Snapshots taken before any call was recorded carry no signal
        populated = [snapshot for snapshot in period if snapshot.total_calls > 0]
        if not populated:
            return None
        return {
            "response_time": sum(s.average_response_time_ms for s in populated) / len(populated),
            "success_rate": sum(s.success_rate for s in populated) / len(populated),
        }

    def detect_trends(self) -> List[PerformanceTrend]:
        """Compare the recent window of snapshots against the one before it."""
        recent, previous = self._windows()
        recent_avg = self._period_average(recent)
        previous_avg = self._period_average(previous)
        if recent_avg is None or previous_avg is None:
            return []

        trends: List[PerformanceTrend] = []

        change = percentage_change(recent_avg["response_time"], previous_avg["response_time"])
        severity = classify_severity(change, TrendMetric.RESPONSE_TIME)
        if severity is not None:
            trends.append(PerformanceTrend(
                metric=TrendMetric.RESPONSE_TIME,
                change=change,
                direction=TrendDirection.DEGRADING if change > 0 else TrendDirection.IMPROVING,
                severity=severity,
                previous_value=previous_avg["response_time"],
                recent_value=recent_avg["response_time"],
            ))

        change = percentage_change(recent_avg["success_rate"], previous_avg["success_rate"])
        severity = classify_severity(change, TrendMetric.SUCCESS_RATE)
        if severity is not None:
            trends.append(PerformanceTrend(
                metric=TrendMetric.SUCCESS_RATE,
                change=change,
                direction=TrendDirection.IMPROVING if change > 0 else TrendDirection.DEGRADING,
                severity=severity,
                previous_value=previous_avg["success_rate"],
                recent_value=recent_avg["success_rate"],
            ))

        return trends

    def analyze_performance(self) -> Optional[OptimizationReport]:
        trends = self.detect_trends()
        if not trends:
            return None

        for trend in trends:
            log = logger.warning if trend.direction == TrendDirection.DEGRADING else logger.info
            log(f"{trend.metric.value} {trend.direction.value} by {abs(trend.change):.1f}% ({trend.severity.value})")

        self._nudge_integration_metrics(trends)
        return self._generate_report(trends)

    def _nudge_integration_metrics(self, trends: List[PerformanceTrend]) -> None:
        targets = {
            TrendMetric.RESPONSE_TIME: "performance_improvement",
            TrendMetric.SUCCESS_RATE: "routing_efficiency",
        }
        with self._lock:
            for trend in trends:
                attribute = targets.get(trend.metric)
                if attribute is None:
                    continue
                delta = TREND_NUDGE if trend.direction == TrendDirection.IMPROVING else -TREND_NUDGE
                current = getattr(self._integration, attribute)
                setattr(self._integration, attribute, max(0.0, min(1.0, current + delta)))

    def _generate_report(self, trends: List[PerformanceTrend]) -> OptimizationReport:
        improvements = [
            PerformanceImprovement(
                metric_type=trend.metric,
                before_value=trend.previous_value,
                after_value=trend.recent_value,
                improvement_percentage=abs(trend.change),
            )
            for trend in trends
            if trend.direction == TrendDirection.IMPROVING
        ]

        with self._lock:
            report = OptimizationReport(
                timestamp=self.clock.now(),
                total_optimizations=len(trends),
                average_optimization_score=self._integration.overall_score(),
                performance_improvements=improvements,
                recommendations=self._recommendations(trends),
            )
            self._reports.append(report)
            if len(self._reports) > self.config.report_history_limit:
                self._reports = self._reports[-self.config.report_history_retain:]
        return report

    def _recommendations(self, trends: List[PerformanceTrend]) -> List[str]:
        recommendations = [
            DEGRADING_RECOMMENDATIONS[trend.metric]
            for trend in trends
            if trend.direction == TrendDirection.DEGRADING and trend.metric in DEGRADING_RECOMMENDATIONS
        ]
        if self._integration.routing_efficiency < ROUTING_EFFICIENCY_FLOOR:
            recommendations.append("Low routing efficiency - consider implementing intelligent routing")
        if self._integration.context_flow_integration.context_cache_hit_rate < CACHE_HIT_RATE_FLOOR:
            recommendations.append("Low cache hit rate - optimize caching strategies")
        return recommendations

    def generate_system_alerts(self) -> List[Alert]:
        """Alerts on rolling averages over the last few populated snapshots."""
        window = self.config.system_alert_window
        with self._lock:
            populated = [s for s in self._snapshots if s.total_calls > 0]
        if len(populated) < window:
            return []

        recent = populated[-window:]
        avg_response = sum(s.average_response_time_ms for s in recent) / len(recent)
        avg_success = sum(s.success_rate for s in recent) / len(recent)

        raised: List[Alert] = []
        if avg_response > self.config.response_time_threshold_ms:
            raised.append(Alert(
                type="system_performance",
                severity=AlertSeverity.MEDIUM,
                message=f"System-wide high response time: {avg_response:.0f}ms",
                timestamp=self.clock.now(),
                value=avg_response,
                threshold=self.config.response_time_threshold_ms,
            ))
        if avg_success < self.config.success_rate_threshold:
            raised.append(Alert(
                type="system_performance",
                severity=AlertSeverity.HIGH,
                message=f"System-wide low success rate: {avg_success * 100:.1f}%",
                timestamp=self.clock.now(),
                value=avg_success,
                threshold=self.config.success_rate_threshold,
            ))

        for alert in raised:
            self._raise_alert(alert)
        return raised

    # ------------------------------------------------------------------
    # Background thread
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._thread_lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name="mcp-optimizer-monitor", daemon=True)
            self._thread.start()
        logger.info(f"Performance monitoring started (interval {self.config.monitoring_interval_ms}ms)")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._thread_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            self._thread = None
        thread.join(timeout)
        logger.info("Performance monitoring stopped")

    def _run(self) -> None:
        interval = self.config.monitoring_interval_ms / 1000.0
        while not self._stop_event.wait(interval):
            try:
                self.run_monitoring_cycle()
            except Exception:
                logger.exception("Monitoring cycle failed")

    # ------------------------------------------------------------------
    # Integration metrics
    # ------------------------------------------------------------------

    def _ema(self, current: float, sample: float) -> float:
        alpha = self.config.integration_metric_alpha
        return max(0.0, min(1.0, current * (1 - alpha) + sample * alpha))

    def update_tool_selection_accuracy(self, accuracy: float) -> None:
        with self._lock:
            self._integration.tool_selection_accuracy = self._ema(self._integration.tool_selection_accuracy, accuracy)

    def update_resource_optimization(self, score: float) -> None:
        with self._lock:
            self._integration.resource_optimization = self._ema(self._integration.resource_optimization, score)

    def update_context_flow(
        self,
        cache_hit_rate: float,
        reduced_redundant_calls: int,
        memory_system_integration: bool,
        optimized_selection: bool = True,
    ) -> None:
        """Record measured context-flow signals after an optimization."""
        with self._lock:
            flow = self._integration.context_flow_integration
            self._integration.context_flow_integration = ContextFlowIntegration(
                context_cache_hit_rate=max(0.0, min(1.0, cache_hit_rate)),
                optimized_tool_selections=flow.optimized_tool_selections + (1 if optimized_selection else 0),
                reduced_redundant_calls=reduced_redundant_calls,
                memory_system_integration=memory_system_integration,
            )

    def get_integration_metrics(self) -> IntegrationMetrics:
        with self._lock:
            return self._integration.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_tool_metrics(self, tool: str, server: str) -> Optional[ToolMetrics]:
        return self.tracker.get_tool_metrics(tool, server)

    def get_all_metrics(self) -> Dict[Tuple[str, str], ToolMetrics]:
        return self.tracker.snapshot()

    def get_alerts(self) -> List[Alert]:
        with self._lock:
            return [alert.model_copy() for alert in self._alerts]

    def get_active_alerts(self) -> List[Alert]:
        cutoff = self.clock.now() - timedelta(hours=self.config.alert_retention_hours)
        with self._lock:
            return [alert.model_copy() for alert in self._alerts if alert.timestamp >= cutoff]

    def get_snapshots(self) -> List[PerformanceSnapshot]:
        with self._lock:
            return list(self._snapshots)

    def get_optimization_reports(self) -> List[OptimizationReport]:
        with self._lock:
            return list(self._reports)

    def get_performance_report(self) -> Dict[str, Any]:
        """JSON-serializable view of metrics, trends, alerts and reports."""
        with self._lock:
            latest = self._snapshots[-1] if self._snapshots else None
            reports = self._reports[-10:]
            integration = self._integration.model_dump(mode="json")
            snapshot_count = len(self._snapshots)
            ignored = self.ignored_updates

        return {
            "timestamp": self.clock.now().isoformat(),
            "integration_metrics": integration,
            "latest_snapshot": latest.model_dump(mode="json") if latest else None,
            "snapshot_count": snapshot_count,
            "recent_trends": [trend.model_dump(mode="json") for trend in self.detect_trends()],
            "active_alerts": [alert.model_dump(mode="json") for alert in self.get_active_alerts()],
            "optimization_reports": [report.model_dump(mode="json") for report in reports],
            "recommendations": list(reports[-1].recommendations) if reports else [],
            "ignored_updates": ignored,
            "monitoring_active": self.is_running,
        }
