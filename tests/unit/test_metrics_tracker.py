import threading

import pytest

from mcp_optimizer.runtime.metrics_tracker import MetricsTracker


def test_first_record_starts_from_defaults(tracker):
    metrics = tracker.record("tavily", "tavily_tavily_search", True, 500.0)
    assert metrics.total_calls == 1
    assert metrics.success_rate == pytest.approx(0.85 * 0.9 + 0.1)
    assert metrics.average_response_time_ms == pytest.approx(1500 * 0.9 + 500 * 0.1)
    assert metrics.error_rate == pytest.approx(1 - metrics.success_rate)
    assert metrics.last_used is not None


def test_successes_strictly_increase_success_rate(tracker):
    previous = tracker.default_success_rate
    for _ in range(10):
        current = tracker.record("serena", "serena_read_memory", True, 100.0).success_rate
        assert previous < current <= 1.0
        previous = current


def test_alternating_outcomes_converge_to_half(tracker):
    for i in range(1000):
        tracker.record("playwright", "playwright_browser_navigate", i % 2 == 0, 800.0)
    metrics = tracker.get_tool_metrics("playwright_browser_navigate", "playwright")
    assert metrics.success_rate == pytest.approx(0.5, abs=0.05)
    assert metrics.total_calls == 1000


def test_failures_never_go_below_zero(tracker):
    for _ in range(200):
        metrics = tracker.record("forgejo", "forgejo_create_issue", False, 100.0)
    assert 0.0 <= metrics.success_rate < 0.01


def test_server_metrics_aggregate_all_tools(tracker):
    tracker.record("serena", "serena_read_memory", True, 100.0)
    tracker.record("serena", "serena_read_file", False, 300.0)
    server = tracker.get_server_metrics("serena")
    assert server.total_calls == 2
    assert tracker.get_server_metrics("tavily") is None


def test_find_tool_metrics_prefers_named_server_then_busiest(tracker):
    tracker.record("serena", "shared_tool", True, 100.0)
    for _ in range(3):
        tracker.record("desktop-commander", "shared_tool", False, 100.0)

    assert tracker.find_tool_metrics("shared_tool", "serena").total_calls == 1
    assert tracker.find_tool_metrics("shared_tool", "unknown").total_calls == 3
    assert tracker.find_tool_metrics("shared_tool").total_calls == 3
    assert tracker.find_tool_metrics("never_called") is None


def test_snapshot_is_a_copy(tracker):
    tracker.record("serena", "serena_read_memory", True, 100.0)
    snapshot = tracker.snapshot()
    tracker.record("serena", "serena_read_memory", True, 100.0)
    assert snapshot[("serena", "serena_read_memory")].total_calls == 1
    assert len(tracker) == 1


def test_last_used_follows_clock(tracker, clock):
    tracker.record("serena", "serena_read_memory", True, 100.0)
    clock.advance(days=2)
    metrics = tracker.record("serena", "serena_read_memory", True, 100.0)
    assert metrics.last_used == clock.now()


def test_invalid_alpha_rejected(clock):
    with pytest.raises(ValueError):
        MetricsTracker(clock=clock, success_rate_alpha=0.0)
    with pytest.raises(ValueError):
        MetricsTracker(clock=clock, response_time_alpha=1.5)


def test_concurrent_records_are_all_counted(tracker):
    def worker():
        for _ in range(250):
            tracker.record("sequential", "sequential_sequentialthinking", True, 50.0)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert tracker.get_tool_metrics("sequential_sequentialthinking", "sequential").total_calls == 1000
    assert tracker.get_server_metrics("sequential").total_calls == 1000
