"""
Tests for the Health Gate — thresholds, timeouts and probe scheduling.
"""

import threading

import pytest

from webtier.adapters.base import Prober
from webtier.adapters.mock import MockProber
from webtier.core.engine.clock import ManualClock
from webtier.core.engine.health_gate import HealthGate, evaluate
from webtier.core.engine.roster import Roster
from webtier.core.models.health import HealthCheckPolicy, HealthStatus, ProbeResult
from webtier.core.models.member import PoolMember
from webtier.core.observability.metrics import MetricsRegistry

OK = ProbeResult(success=True, status_code=200)
FAIL = ProbeResult.failed("refused")


@pytest.fixture
def policy() -> HealthCheckPolicy:
    return HealthCheckPolicy(interval=15, timeout=0.5)


@pytest.fixture
def prober() -> MockProber:
    return MockProber()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def gate(policy, prober, metrics, roster: Roster, clock: ManualClock):
    gate = HealthGate(policy, prober, roster, clock, metrics=metrics)
    yield gate
    gate.close()


class TestEvaluate:
    def test_first_success_not_enough(self, policy):
        m = evaluate(PoolMember(id="a"), OK, policy, now=1.0)
        assert m.status == HealthStatus.UNKNOWN
        assert m.consecutive_successes == 1
        assert m.last_probe_at == 1.0

    def test_healthy_at_threshold(self, policy):
        m = PoolMember(id="a")
        for _ in range(policy.healthy_threshold):
            m = evaluate(m, OK, policy, now=0)
        assert m.status == HealthStatus.HEALTHY

    def test_unhealthy_at_threshold(self, policy):
        m = PoolMember(id="a", status=HealthStatus.HEALTHY)
        m = evaluate(m, FAIL, policy, now=0)
        assert m.status == HealthStatus.HEALTHY
        m = evaluate(m, FAIL, policy, now=0)
        assert m.status == HealthStatus.UNHEALTHY

    def test_failure_resets_success_streak(self, policy):
        m = PoolMember(id="a")
        m = evaluate(m, OK, policy, now=0)
        m = evaluate(m, FAIL, policy, now=0)
        m = evaluate(m, OK, policy, now=0)
        assert m.consecutive_successes == 1
        assert m.status == HealthStatus.UNKNOWN

    def test_alternating_never_flips_healthy_member(self, policy):
        m = PoolMember(id="a", status=HealthStatus.HEALTHY)
        for result in [FAIL, OK] * 5:
            m = evaluate(m, result, policy, now=0)
            assert m.status == HealthStatus.HEALTHY

    @pytest.mark.parametrize("threshold", [2, 3, 5])
    def test_exact_threshold(self, threshold):
        policy = HealthCheckPolicy(healthy_threshold=threshold, unhealthy_threshold=threshold)
        m = PoolMember(id="a")
        for _ in range(threshold - 1):
            m = evaluate(m, OK, policy, now=0)
            assert m.status != HealthStatus.HEALTHY
        m = evaluate(m, OK, policy, now=0)
        assert m.status == HealthStatus.HEALTHY
        for _ in range(threshold - 1):
            m = evaluate(m, FAIL, policy, now=0)
            assert m.status == HealthStatus.HEALTHY
        m = evaluate(m, FAIL, policy, now=0)
        assert m.status == HealthStatus.UNHEALTHY


class TestRunDue:
    def test_new_members_probed_at_once(self, gate, prober, roster, make_member):
        roster.add([make_member(), make_member()])
        gate.run_due()
        assert prober.probe_count == 2

    def test_not_due_before_interval(self, gate, prober, roster, clock, make_member):
        roster.add([make_member()])
        gate.run_due()
        clock.advance(14)
        assert gate.run_due() == []
        assert prober.probe_count == 1
        clock.advance(1)
        gate.run_due()
        assert prober.probe_count == 2

    def test_transition_to_healthy(self, gate, roster, clock, make_member):
        member = make_member()
        roster.add([member, make_member()])
        assert gate.run_due() == []
        clock.advance(15)
        changed = gate.run_due()
        assert {m.id for m in changed} == {m.id for m in roster.snapshot().members}
        assert roster.snapshot().healthy_count == 2

    def test_transition_to_unhealthy(self, gate, prober, roster, clock, make_member):
        member = make_member(status=HealthStatus.HEALTHY)
        roster.add([member, make_member(status=HealthStatus.HEALTHY)])
        prober.set_outcome(member.id, False)
        gate.run_due()
        assert roster.snapshot().get(member.id).healthy
        clock.advance(15)
        changed = gate.run_due()
        assert [m.id for m in changed] == [member.id]
        assert roster.snapshot().get(member.id).unhealthy

    def test_next_probe_scheduled(self, gate, roster, clock, make_member):
        member = make_member()
        roster.add([member])
        clock.advance(100)
        gate.run_due()
        assert gate.next_probe_at(member.id) == 115

    def test_departed_members_forgotten(self, gate, roster, make_member):
        a, b, c = make_member(), make_member(), make_member()
        roster.add([a, b, c])
        gate.run_due()
        roster.remove([a.id])
        gate.run_due()
        assert gate.next_probe_at(a.id) is None

    def test_publishes_one_version_per_round(self, gate, roster, make_member):
        roster.add([make_member(), make_member(), make_member()])
        before = roster.snapshot().version
        gate.run_due()
        assert roster.snapshot().version == before + 1

    def test_records_metrics(self, gate, prober, metrics, roster, make_member):
        member = make_member()
        roster.add([member, make_member()])
        prober.set_outcome(member.id, False)
        gate.run_due()
        assert metrics.counter("probes_total", outcome="success").value == 1
        assert metrics.counter("probes_total", outcome="failure").value == 1
        assert metrics.histogram("probe_latency_seconds").count == 2


class _HangingProber(Prober):
    """Never answers until released."""

    def __init__(self):
        self.release = threading.Event()

    def probe(self, member, policy):
        self.release.wait(5)
        return ProbeResult(success=True, status_code=200)


class _RaisingProber(Prober):
    def probe(self, member, policy):
        raise RuntimeError("socket exploded")


class TestTimeouts:
    def test_hanging_probe_counts_as_failure(self, roster, clock, make_member):
        policy = HealthCheckPolicy(interval=15, timeout=0.1)
        prober = _HangingProber()
        gate = HealthGate(policy, prober, roster, clock)
        try:
            member = make_member(status=HealthStatus.HEALTHY)
            roster.add([member])
            gate.run_due()
            updated = roster.snapshot().get(member.id)
            assert updated.consecutive_failures == 1
            clock.advance(15)
            gate.run_due()
            assert roster.snapshot().get(member.id).unhealthy
        finally:
            prober.release.set()
            gate.close()

    def test_slow_answer_counts_as_failure(self, gate, prober, roster, make_member):
        member = make_member()
        roster.add([member])
        prober.set_latency(member.id, 0.9)
        gate.run_due()
        assert roster.snapshot().get(member.id).consecutive_failures == 1

    def test_probe_exception_counts_as_failure(self, roster, clock, make_member):
        gate = HealthGate(HealthCheckPolicy(), _RaisingProber(), roster, clock)
        try:
            member = make_member()
            roster.add([member])
            gate.run_due()
            assert roster.snapshot().get(member.id).consecutive_failures == 1
        finally:
            gate.close()

    def test_single_probe(self, roster, clock):
        policy = HealthCheckPolicy(interval=15, timeout=0.1)
        prober = _HangingProber()
        gate = HealthGate(policy, prober, roster, clock)
        try:
            result = gate.probe(PoolMember(id="x"))
            assert not result.success
            assert "timed out" in result.error
        finally:
            prober.release.set()
            gate.close()
