"""
Server Router

Chooses the backing server for a tool call. Candidates are the tool's primary
server plus any declared alternates; each is scored on latency, confidence,
rationale quality and server success rate, and the best one wins. Decisions are
cached per (tool, context) for a TTL.

Key Features:
- TTL + LRU routing decision cache with hit/miss/eviction statistics
- Confidence blending of success rate and recency of use
- Connection pool bookkeeping with idle and request-count recycling
- Per-server performance report and recommendations
"""

import hashlib
import json
import logging
import threading
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..registry.scoring_rules import ScoringRules
from ..registry.tool_registry import AlternateRoute, ServerConfiguration, ToolRegistry
from ..schemas.optimization import AgentTaskContext, RoutingDecision, ToolMetrics
from ..utils.clock import Clock, SystemClock
from ..utils.config_manager import RoutingConfiguration
from ..utils.exceptions import NoRouteAvailable
from .metrics_tracker import MetricsTracker

logger = logging.getLogger(__name__)

PRIMARY_ROUTE_RATIONALE = "Primary server with established metrics"
ERROR_RATE_THRESHOLD = 0.2
SECONDS_PER_DAY = 86400.0


@dataclass
class CacheEntry:
    """Cached routing decision."""

    decision: RoutingDecision
    created_at: float
    access_count: int = 0

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.created_at > ttl_seconds


class RoutingDecisionCache:
    """
    Bounded cache of routing decisions.

    Entries expire after the TTL. When the cache is full, expired entries are
    purged first and the least recently used entry is evicted if that is not
    enough. Cache operations never raise; a miss just means recomputation.
    """

    def __init__(self, clock: Clock, max_size: int = 1000, ttl_ms: int = 300_000):
        self.max_size = max_size
        self.ttl_seconds = ttl_ms / 1000.0
        self._clock = clock
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {
            'hits': 0,
            'misses': 0,
            'evictions': 0,
            'expired': 0
        }

    @staticmethod
    def make_key(tool: str, context: Any = None) -> str:
        """Stable key from the tool name and a digest of the context."""
        if isinstance(context, AgentTaskContext):
            payload = context.fingerprint()
        else:
            payload = context if context is not None else {}
        try:
            encoded = json.dumps(payload, sort_keys=True, default=str)
        except (TypeError, ValueError):
            # Mixed key types or circular references
            if isinstance(payload, Mapping):
                payload = sorted(payload.items(), key=repr)
            encoded = repr(payload)
        digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:16]
        return f"{tool}:{digest}"

    def get(self, key: str) -> Optional[RoutingDecision]:
        now = self._clock.monotonic()
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats['misses'] += 1
                return None

            if entry.is_expired(now, self.ttl_seconds):
                del self._cache[key]
                self._stats['expired'] += 1
                self._stats['misses'] += 1
                return None

            entry.access_count += 1
            self._cache.move_to_end(key)
            self._stats['hits'] += 1
            return entry.decision.model_copy(deep=True)

    def put(self, key: str, decision: RoutingDecision) -> None:
        now = self._clock.monotonic()
        with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_size:
                self._purge_expired(now)
                while len(self._cache) >= self.max_size:
                    self._cache.popitem(last=False)
                    self._stats['evictions'] += 1

            self._cache[key] = CacheEntry(decision=decision.model_copy(deep=True), created_at=now)
            self._cache.move_to_end(key)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now, self.ttl_seconds)]
        for key in expired:
            del self._cache[key]
        self._stats['expired'] += len(expired)

    @property
    def hit_rate(self) -> float:
        with self._lock:
            total = self._stats['hits'] + self._stats['misses']
            return self._stats['hits'] / total if total > 0 else 0.0

    @property
    def hits(self) -> int:
        with self._lock:
            return self._stats['hits']

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache performance statistics."""
        with self._lock:
            total_requests = self._stats['hits'] + self._stats['misses']
            return {
                'size': len(self._cache),
                'max_size': self.max_size,
                'hit_rate': self._stats['hits'] / total_requests if total_requests > 0 else 0.0,
                **self._stats,
            }

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._stats = {k: 0 for k in self._stats}


@dataclass
class PooledConnection:
    """Bookkeeping record for a server connection. No socket is held."""

    server: str
    created_at: datetime
    last_used: datetime
    config: ServerConfiguration
    request_count: int = 0
    health: str = "healthy"
    optimization_level: str = "unknown"
    generation: int = 1


class ConnectionPool:
    """One pooled connection per server, recycled when idle too long or overused."""

    def __init__(self, registry: ToolRegistry, clock: Clock, max_idle_ms: int = 300_000, max_requests: int = 1000):
        self._registry = registry
        self._clock = clock
        self.max_idle_seconds = max_idle_ms / 1000.0
        self.max_requests = max_requests
        self._connections: Dict[str, PooledConnection] = {}
        self._lock = threading.Lock()
        self.recycled = 0

    def is_healthy(self, connection: PooledConnection, now: Optional[datetime] = None) -> bool:
        now = now or self._clock.now()
        idle = (now - connection.last_used).total_seconds()
        return (
            connection.health == "healthy"
            and idle < self.max_idle_seconds
            and connection.request_count < self.max_requests
        )

    def acquire(self, server: str, optimization_level: str = "unknown") -> PooledConnection:
        """Connection record for the server, creating or recycling it as needed."""
        now = self._clock.now()
        with self._lock:
            connection = self._connections.get(server)
            if connection is None:
                connection = self._create(server, now, optimization_level, generation=1)
            elif not self.is_healthy(connection, now):
                logger.debug(
                    f"Recycling connection to {server} (requests={connection.request_count}, "
                    f"idle={(now - connection.last_used).total_seconds():.0f}s)"
                )
                connection = self._create(server, now, optimization_level, generation=connection.generation + 1)
                self.recycled += 1

            connection.request_count += 1
            connection.last_used = now
            connection.optimization_level = optimization_level
            self._connections[server] = connection
            return replace(connection)

    def _create(self, server: str, now: datetime, optimization_level: str, generation: int) -> PooledConnection:
        return PooledConnection(
            server=server,
            created_at=now,
            last_used=now,
            config=self._registry.get_server_configuration(server),
            optimization_level=optimization_level,
            generation=generation,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)


@dataclass
class _RouteCandidate:
    server: str
    rationale: str
    latency_ms: float
    confidence: float
    success_rate: float
    score: float = 0.0


class ServerRouter:
    """Routes tool calls to servers using shared metrics and the tool registry."""

    def __init__(
        self,
        registry: ToolRegistry,
        tracker: MetricsTracker,
        rules: Optional[ScoringRules] = None,
        config: Optional[RoutingConfiguration] = None,
        clock: Optional[Clock] = None,
        response_time_threshold_ms: float = 3000.0,
    ):
        self.registry = registry
        self.tracker = tracker
        self.rules = rules or ScoringRules()
        self.config = config or RoutingConfiguration()
        self.clock = clock or SystemClock()
        self.response_time_threshold_ms = response_time_threshold_ms

        self.cache = RoutingDecisionCache(self.clock, self.config.cache_max_entries, self.config.cache_ttl_ms)
        self.pool = ConnectionPool(
            registry,
            self.clock,
            max_idle_ms=self.config.connection_max_idle_ms,
            max_requests=self.config.connection_max_requests,
        )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route(self, tool: str, context: Any = None) -> RoutingDecision:
        key = self.cache.make_key(tool, context)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Routing cache hit for {tool} -> {cached.selected_server}")
            return cached

        candidates = self._candidates(tool)
        if not candidates:
            raise NoRouteAvailable(tool, details={"resolved_server": self.registry.resolve_server(tool)})

        for candidate in candidates:
            candidate.score = self._route_score(candidate)

        best = candidates[0]
        for candidate in candidates[1:]:
            if candidate.score > best.score:
                best = candidate

        fallbacks = sorted((c for c in candidates if c is not best), key=lambda c: -c.score)
        decision = RoutingDecision(
            tool=tool,
            selected_server=best.server,
            rationale=best.rationale,
            estimated_latency_ms=best.latency_ms,
            confidence=best.confidence,
            score=best.score,
            fallback_servers=[c.server for c in fallbacks],
            decided_at=self.clock.now(),
        )
        self.cache.put(key, decision)

        logger.debug(
            f"Routed {tool} -> {decision.selected_server} "
            f"(score {decision.score:.1f}, confidence {decision.confidence:.2f}, {len(candidates)} candidates)"
        )
        return decision

    def _candidates(self, tool: str) -> List[_RouteCandidate]:
        candidates: List[_RouteCandidate] = []

        primary = self.registry.resolve_server(tool)
        if primary and self.registry.is_known_server(primary):
            candidates.append(self._candidate(primary, PRIMARY_ROUTE_RATIONALE, overhead_ms=0.0, reliability=1.0))

        for alternate in self.registry.get_alternates(tool):
            if alternate.server == primary or not self.registry.is_known_server(alternate.server):
                continue
            candidates.append(self._alternate_candidate(alternate))

        return candidates

    def _alternate_candidate(self, alternate: AlternateRoute) -> _RouteCandidate:
        return self._candidate(
            alternate.server,
            alternate.rationale,
            overhead_ms=alternate.overhead_ms,
            reliability=alternate.reliability,
        )

    def _candidate(self, server: str, rationale: str, overhead_ms: float, reliability: float) -> _RouteCandidate:
        metrics = self.server_metrics(server)
        confidence = self.confidence(metrics) * reliability
        return _RouteCandidate(
            server=server,
            rationale=rationale,
            latency_ms=metrics.average_response_time_ms + overhead_ms,
            confidence=max(0.0, min(1.0, confidence)),
            success_rate=metrics.success_rate,
        )

    def server_metrics(self, server: str) -> ToolMetrics:
        """Tracked server metrics, or the untracked-server defaults."""
        metrics = self.tracker.get_server_metrics(server)
        if metrics is not None:
            return metrics
        return ToolMetrics(
            total_calls=0,
            success_rate=self.config.default_server_success_rate,
            average_response_time_ms=self.config.default_server_response_time_ms,
        )

    def recency_score(self, last_used: Optional[datetime]) -> float:
        """1.0 when just used, decaying linearly to a floor of 0.5."""
        if last_used is None:
            return 0.5
        days = (self.clock.now() - last_used).total_seconds() / SECONDS_PER_DAY
        return max(0.5, min(1.0, 1.0 - days / self.config.recency_decay_days))

    def confidence(self, metrics: ToolMetrics) -> float:
        value = 0.6 * metrics.success_rate + 0.4 * self.recency_score(metrics.last_used)
        return max(0.0, min(1.0, value))

    def _route_score(self, candidate: _RouteCandidate) -> float:
        weights = self.rules.route_weights
        latency_score = max(0.0, 100.0 - candidate.latency_ms / 50.0)
        return (
            weights.latency * latency_score
            + weights.confidence * candidate.confidence * 100.0
            + weights.rationale * self.rules.rationale_quality(candidate.rationale)
            + weights.success * candidate.success_rate * 100.0
        )

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def acquire_connection(self, server: str) -> PooledConnection:
        return self.pool.acquire(server, self.server_optimization_level(server))

    def server_optimization_level(self, server: str) -> str:
        metrics = self.server_metrics(server)
        sr, rt = metrics.success_rate, metrics.average_response_time_ms
        if sr > 0.95 and rt < 500:
            return "optimal"
        if sr > 0.85 and rt < 1500:
            return "good"
        if sr > 0.7:
            return "fair"
        return "poor"

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _known_servers(self) -> List[str]:
        tracked = self.tracker.server_snapshot().keys()
        return list(dict.fromkeys([*self.registry.servers, *tracked]))

    def get_performance_recommendations(self) -> List[str]:
        recommendations: List[str] = []
        for server in self._known_servers():
            metrics = self.server_metrics(server)
            if metrics.success_rate < self.config.success_rate_threshold:
                recommendations.append(
                    f"{server}: Low success rate ({metrics.success_rate * 100:.1f}%) - investigate failures"
                )
            if metrics.average_response_time_ms > self.response_time_threshold_ms:
                recommendations.append(
                    f"{server}: High response time ({metrics.average_response_time_ms:.0f}ms) - consider optimization"
                )
            if metrics.error_rate > ERROR_RATE_THRESHOLD:
                recommendations.append(
                    f"{server}: High error rate ({metrics.error_rate * 100:.1f}%) - implement error handling"
                )
        return recommendations

    def get_performance_report(self) -> Dict[str, Any]:
        servers: Dict[str, Any] = {}
        totals: Tuple[float, float, int] = (0.0, 0.0, 0)

        for server in self._known_servers():
            metrics = self.server_metrics(server)
            servers[server] = {
                **metrics.model_dump(mode="json"),
                "optimization_level": self.server_optimization_level(server),
            }
            totals = (
                totals[0] + metrics.success_rate,
                totals[1] + metrics.average_response_time_ms,
                totals[2] + metrics.total_calls,
            )

        count = len(servers)
        return {
            "timestamp": self.clock.now().isoformat(),
            "server_count": count,
            "cache_hit_rate": self.cache.hit_rate,
            "cache": self.cache.get_stats(),
            "connection_pool_size": len(self.pool),
            "connections_recycled": self.pool.recycled,
            "servers": servers,
            "overall_metrics": {
                "average_success_rate": totals[0] / count if count else 0.0,
                "average_response_time_ms": totals[1] / count if count else 0.0,
                "total_requests": totals[2],
            },
            "recommendations": self.get_performance_recommendations(),
        }
