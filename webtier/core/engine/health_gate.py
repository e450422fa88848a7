"""
Health Gate — decides which members may receive traffic.

Every member is probed once per ``interval``. Each probe gets
``timeout`` seconds; a probe that runs longer is abandoned and
counts as a failure, exactly like a refused connection. Two counters
per member drive the status:

    successes >= healthy_threshold     → healthy
    failures  >= unhealthy_threshold   → unhealthy

A success resets the failure counter and vice versa, so a transition
happens on exactly the threshold-th consecutive result. The gate only
publishes health fields; it never adds or removes members.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor

from webtier.adapters.base import Prober
from webtier.core.engine.clock import Clock
from webtier.core.engine.roster import PoolSnapshot, Roster
from webtier.core.models.health import HealthCheckPolicy, HealthStatus, ProbeResult
from webtier.core.models.member import PoolMember
from webtier.core.observability.metrics import MetricsRegistry

logger = logging.getLogger(__name__)


def evaluate(member: PoolMember, result: ProbeResult, policy: HealthCheckPolicy, now: float) -> PoolMember:
    """Apply one probe result to a member and return the updated member."""
    if result.success:
        successes = member.consecutive_successes + 1
        failures = 0
        status = HealthStatus.HEALTHY if successes >= policy.healthy_threshold else member.status
    else:
        successes = 0
        failures = member.consecutive_failures + 1
        status = HealthStatus.UNHEALTHY if failures >= policy.unhealthy_threshold else member.status

    return member.model_copy(update={
        "status": status,
        "consecutive_successes": successes,
        "consecutive_failures": failures,
        "last_probe_at": now,
    })


class HealthGate:
    """Periodic, parallel prober for the pool.

    Args:
        policy: Health check configuration.
        prober: Performs the actual check.
        roster: Where members are read from and health is published.
        clock: Drives the probe schedule.
        metrics: Optional registry for probe counters and latency.
        max_workers: Probe threads; defaults to the pool's max size.
    """

    def __init__(
        self,
        policy: HealthCheckPolicy,
        prober: Prober,
        roster: Roster,
        clock: Clock,
        metrics: MetricsRegistry | None = None,
        max_workers: int | None = None,
    ):
        self.policy = policy
        self._prober = prober
        self._roster = roster
        self._clock = clock
        self._metrics = metrics
        self._next_probe_at: dict[str, float] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or max(4, roster.max_size),
            thread_name_prefix="probe",
        )

    def close(self) -> None:
        """Stop the probe threads. Probes still running are abandoned."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def next_probe_at(self, member_id: str) -> float | None:
        return self._next_probe_at.get(member_id)

    def due_members(self, snapshot: PoolSnapshot, now: float) -> list[PoolMember]:
        """Members whose next probe is due. New members are due at once."""
        return [
            m for m in snapshot.members
            if self._next_probe_at.get(m.id, now) <= now
        ]

    def probe(self, member: PoolMember) -> ProbeResult:
        """Probe one member, enforcing the timeout."""
        return self._collect(self._submit(member), time.monotonic() + self.policy.timeout)

    def run_due(self) -> list[PoolMember]:
        """Probe every due member in parallel and publish the results.

        Returns:
            Members whose status changed with this round.
        """
        snapshot = self._roster.snapshot()
        now = self._clock.now()
        self._forget_departed(snapshot)

        due = self.due_members(snapshot, now)
        if not due:
            return []

        deadline = time.monotonic() + self.policy.timeout
        futures = [(member, self._submit(member)) for member in due]

        updates: dict[str, PoolMember] = {}
        changed: list[PoolMember] = []
        for member, future in futures:
            result = self._collect(future, deadline)
            self._record(member, result)
            updated = evaluate(member, result, self.policy, now)
            updates[member.id] = updated
            self._next_probe_at[member.id] = now + self.policy.interval
            if updated.status != member.status:
                changed.append(updated)
                logger.info(
                    "Member %s: %s → %s (%s)",
                    member.id,
                    member.status.value,
                    updated.status.value,
                    "probe ok" if result.success else result.error or "probe failed",
                )

        self._roster.update_health(updates)
        return changed

    # ── Internals ───────────────────────────────────────────────

    def _submit(self, member: PoolMember) -> Future[ProbeResult]:
        return self._executor.submit(self._prober.probe, member, self.policy)

    def _collect(self, future: Future[ProbeResult], deadline: float) -> ProbeResult:
        remaining = max(0.0, deadline - time.monotonic())
        try:
            result = future.result(timeout=remaining)
        except TimeoutError:
            future.cancel()
            return ProbeResult.failed(
                f"timed out after {self.policy.timeout}s",
                latency=self.policy.timeout,
            )
        except Exception as e:
            return ProbeResult.failed(f"probe error: {e}")

        if result.success and result.latency > self.policy.timeout:
            return ProbeResult.failed(
                f"answered after {result.latency:.2f}s, timeout is {self.policy.timeout}s",
                latency=result.latency,
            )
        return result

    def _record(self, member: PoolMember, result: ProbeResult) -> None:
        if self._metrics is None:
            return
        self._metrics.inc("probes_total", outcome="success" if result.success else "failure")
        self._metrics.histogram("probe_latency_seconds").observe(result.latency)

    def _forget_departed(self, snapshot: PoolSnapshot) -> None:
        present = {m.id for m in snapshot.members}
        for member_id in list(self._next_probe_at):
            if member_id not in present:
                del self._next_probe_at[member_id]
