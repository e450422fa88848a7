"""
Tests for observability — metrics, health aggregation and logging setup.
"""

import logging
from pathlib import Path

import pytest

from webtier.core.engine.clock import ManualClock
from webtier.core.models.health import HealthStatus
from webtier.core.models.member import PoolMember
from webtier.core.models.state import PoolState
from webtier.core.observability.health import (
    ComponentHealth,
    SystemHealth,
    check_circuit_breakers,
    check_pool,
    check_retry_queue,
    check_system_health,
)
from webtier.core.observability.logging_config import setup_logging
from webtier.core.observability.metrics import Counter, Gauge, Histogram, MetricsRegistry
from webtier.core.reliability.circuit_breaker import CircuitBreakerRegistry
from webtier.core.reliability.retry_queue import RetryQueue


def _pool(*statuses: HealthStatus, version: int = 1, min_size: int = 2) -> PoolState:
    return PoolState(
        version=version,
        min_size=min_size,
        max_size=10,
        members=[PoolMember(id=f"m-{i}", status=s) for i, s in enumerate(statuses)],
    )


# ── Health ───────────────────────────────────────────────────────────


class TestSystemHealth:
    def test_empty_is_healthy(self):
        assert SystemHealth().status == "healthy"

    def test_worst_component_wins(self):
        health = SystemHealth()
        health.add(ComponentHealth(name="a", status="healthy"))
        health.add(ComponentHealth(name="b", status="degraded"))
        assert health.status == "degraded"
        health.add(ComponentHealth(name="c", status="unhealthy"))
        assert health.status == "unhealthy"

    def test_unknown_component(self):
        health = SystemHealth()
        health.add(ComponentHealth(name="a", status="unknown"))
        assert health.status == "unknown"

    def test_to_dict(self):
        d = SystemHealth(components=[ComponentHealth(name="a")]).to_dict()
        assert d["timestamp"]
        assert d["components"][0]["name"] == "a"


class TestPoolHealth:
    def test_never_started(self):
        assert check_pool(PoolState()).status == "unknown"

    def test_all_healthy(self):
        assert check_pool(_pool(HealthStatus.HEALTHY, HealthStatus.HEALTHY)).status == "healthy"

    def test_some_unhealthy(self):
        c = check_pool(_pool(HealthStatus.HEALTHY, HealthStatus.UNHEALTHY))
        assert c.status == "degraded"
        assert c.message == "1/2 members healthy"

    def test_still_probing(self):
        assert check_pool(_pool(HealthStatus.HEALTHY, HealthStatus.UNKNOWN)).status == "degraded"

    def test_none_healthy(self):
        assert check_pool(_pool(HealthStatus.UNHEALTHY, HealthStatus.UNHEALTHY)).status == "unhealthy"

    def test_below_min(self):
        assert check_pool(_pool(HealthStatus.HEALTHY, min_size=2)).status == "degraded"


class TestCircuitBreakerHealth:
    def test_no_breakers(self):
        assert check_circuit_breakers(CircuitBreakerRegistry()).status == "healthy"

    def test_open_circuit(self):
        reg = CircuitBreakerRegistry(default_threshold=1)
        reg.get_or_create("local").record_failure()
        c = check_circuit_breakers(reg)
        assert c.status == "unhealthy"
        assert "1/1" in c.message

    def test_half_open(self):
        clock = ManualClock()
        reg = CircuitBreakerRegistry(default_threshold=1, default_timeout=1, clock=clock)
        cb = reg.get_or_create("local")
        cb.record_failure()
        clock.advance(1)
        cb.allow_request()
        assert check_circuit_breakers(reg).status == "degraded"


class TestRetryQueueHealth:
    def test_empty(self):
        c = check_retry_queue(RetryQueue(clock=ManualClock()))
        assert c.status == "healthy"
        assert c.message == "Queue empty"

    def test_pending(self):
        q = RetryQueue(clock=ManualClock())
        q.enqueue("m-1")
        assert check_retry_queue(q).status == "healthy"

    def test_exhausted(self):
        q = RetryQueue(clock=ManualClock(), max_attempts=1)
        q.enqueue("m-1")
        assert check_retry_queue(q).status == "degraded"


class TestAggregation:
    def test_full_check(self):
        health = check_system_health(
            pool=_pool(HealthStatus.HEALTHY, HealthStatus.HEALTHY),
            cb_registry=CircuitBreakerRegistry(),
            retry_queue=RetryQueue(clock=ManualClock()),
        )
        assert health.status == "healthy"
        assert [c.name for c in health.components] == ["pool", "circuit_breakers", "retry_queue"]

    def test_none_components_skipped(self):
        assert check_system_health().components == []


# ── Metrics ──────────────────────────────────────────────────────────


class TestPrimitives:
    def test_counter(self):
        c = Counter(name="x")
        c.inc()
        c.inc(4)
        assert c.value == 5
        assert c.to_dict()["type"] == "counter"

    def test_gauge(self):
        g = Gauge(name="x")
        g.set(3)
        assert g.value == 3

    def test_histogram_stats(self):
        h = Histogram(name="x")
        for v in (1.0, 2.0, 3.0, 4.0):
            h.observe(v)
        assert h.count == 4
        assert h.min == 1.0
        assert h.max == 4.0
        assert h.mean == pytest.approx(2.5)

    def test_histogram_window(self):
        h = Histogram(name="x", max_samples=3)
        for v in range(10):
            h.observe(float(v))
        assert h.count == 10
        assert h.min == 7.0

    def test_empty_histogram(self):
        h = Histogram(name="x")
        assert (h.mean, h.min, h.max, h.p95) == (0.0, 0.0, 0.0, 0.0)


class TestMetricsRegistry:
    def test_same_labels_same_metric(self):
        reg = MetricsRegistry()
        assert reg.counter("req", status="200") is reg.counter("req", status="200")
        assert reg.counter("req", status="200") is not reg.counter("req", status="503")

    def test_inc(self):
        reg = MetricsRegistry()
        reg.inc("req", status="200")
        reg.inc("req", 2, status="200")
        assert reg.counter("req", status="200").value == 3

    def test_to_text(self):
        reg = MetricsRegistry()
        reg.inc("requests_total", status="200")
        reg.gauge("pool_size").set(2)
        reg.histogram("probe_latency_seconds").observe(0.1)
        lines = reg.to_text().splitlines()
        assert 'requests_total{status="200"} 1' in lines
        assert "pool_size 2" in lines
        assert "probe_latency_seconds_count 1" in lines
        assert lines == sorted(lines)

    def test_to_dict(self):
        reg = MetricsRegistry()
        assert reg.to_dict() == {"counters": [], "gauges": [], "histograms": []}
        reg.inc("a")
        reg.gauge("pool_size").set(1)
        groups = reg.to_dict()
        assert groups["counters"][0]["name"] == "a"
        assert groups["gauges"][0]["value"] == 1


# ── Logging ──────────────────────────────────────────────────────────


class TestLoggingSetup:
    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for h in root.handlers:
            if h not in handlers:
                h.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_level_applied(self):
        setup_logging(level="INFO")
        assert logging.getLogger().level == logging.INFO

    def test_unknown_level_falls_back(self):
        setup_logging(level="LOUD")
        assert logging.getLogger().level == logging.WARNING

    def test_third_party_quieted(self):
        setup_logging(level="INFO")
        assert logging.getLogger("werkzeug").level == logging.WARNING

    def test_file_handler(self, tmp_path: Path):
        log_file = tmp_path / "webtier.log"
        setup_logging(level="WARNING", log_file=str(log_file), log_file_level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        logging.getLogger("webtier.test").debug("to file only")
        for h in logging.getLogger().handlers:
            h.flush()
        assert "to file only" in log_file.read_text()
