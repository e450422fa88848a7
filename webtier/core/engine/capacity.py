"""
Capacity Manager — keeps the pool within bounds and replaces failures.

Policy (static bounds, no demand metric):
    - the pool converges on desired capacity, clamped to [min_size, max_size]
    - desired defaults to min_size, so an idle pool never shrinks below it
    - an unhealthy member is replaced by a fresh member in the same zone

Replacement is launch-then-swap: the new member is provisioned first
and then exchanged for the old one in a single roster version, so the
pool size never dips during a replacement. A failed launch leaves the
unhealthy member in place and queues the replacement for retry with
backoff.

Only this class creates or destroys members.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Literal

from webtier.adapters.registry import ProvisionerRegistry
from webtier.core.engine.clock import Clock
from webtier.core.engine.roster import CapacityError, PoolSnapshot, Roster
from webtier.core.models.action import Receipt, ScalingAction
from webtier.core.models.member import PoolMember
from webtier.core.models.tier import CapacityPolicy, MemberTemplate
from webtier.core.observability.metrics import MetricsRegistry
from webtier.core.persistence.activity import ActivityEntry, ActivityLog, new_activity_id
from webtier.core.reliability.retry_queue import RetryQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScalingDecision:
    """What the pool size should do next."""

    action: Literal["launch", "terminate", "none"] = "none"
    count: int = 0
    reason: str = ""


@dataclass
class StepReport:
    """What one Capacity Manager step did."""

    decision: ScalingDecision = field(default_factory=ScalingDecision)
    launched: list[str] = field(default_factory=list)
    terminated: list[str] = field(default_factory=list)
    replaced: dict[str, str] = field(default_factory=dict)    # old id → new id
    failures: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.launched or self.terminated or self.replaced)


def new_member_id() -> str:
    return f"m-{uuid.uuid4().hex[:8]}"


class CapacityManager:
    """Owner of pool membership.

    Args:
        policy: Size bounds and zones.
        template: Launch template for new members.
        server_port: Port every member listens on.
        roster: Live membership.
        registry: Provisioner dispatch.
        clock: Time source for launch timestamps.
        retry_queue: Failed replacements awaiting another attempt.
        activity: Scaling activity history.
        metrics: Optional metrics registry.
        provisioner: Name of the provisioner to launch with.
    """

    def __init__(
        self,
        policy: CapacityPolicy,
        template: MemberTemplate,
        server_port: int,
        roster: Roster,
        registry: ProvisionerRegistry,
        clock: Clock,
        retry_queue: RetryQueue | None = None,
        activity: ActivityLog | None = None,
        metrics: MetricsRegistry | None = None,
        provisioner: str = "local",
    ):
        self.policy = policy
        self._template = template
        self._server_port = server_port
        self._roster = roster
        self._registry = registry
        self._clock = clock
        self._retry = retry_queue or RetryQueue(clock=clock)
        self._activity = activity or ActivityLog()
        self._metrics = metrics
        self._provisioner = provisioner
        self._desired = policy.effective_desired

        # Serializes every membership publish this manager makes
        self._lock = threading.RLock()
        # Members with a replacement currently being provisioned
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    # ── Desired capacity ────────────────────────────────────────

    @property
    def desired(self) -> int:
        return self._desired

    @property
    def retry_queue(self) -> RetryQueue:
        return self._retry

    def set_desired(self, desired: int) -> None:
        """Change the target size. Applied on the next step.

        Raises:
            CapacityError: If ``desired`` is outside [min_size, max_size].
        """
        if not self.policy.min_size <= desired <= self.policy.max_size:
            raise CapacityError(
                f"desired capacity {desired} outside "
                f"[{self.policy.min_size}, {self.policy.max_size}]"
            )
        logger.info("Desired capacity %d → %d", self._desired, desired)
        self._desired = desired

    def in_flight(self) -> set[str]:
        with self._in_flight_lock:
            return set(self._in_flight)

    # ── Decisions ───────────────────────────────────────────────

    def reconcile(self, healthy_count: int, total_count: int) -> ScalingDecision:
        """Decide how the pool size should change.

        Only the static bounds and the desired capacity matter; health
        is handled by replacement, not by resizing.
        """
        lo, hi = self.policy.min_size, self.policy.max_size
        target = min(max(self._desired, lo), hi)

        if total_count < target:
            count = min(target - total_count, hi - total_count)
            return ScalingDecision(
                "launch",
                count,
                f"{total_count} members ({healthy_count} healthy) below desired {target}",
            )
        if total_count > target:
            count = min(total_count - target, total_count - lo)
            if count > 0:
                return ScalingDecision(
                    "terminate",
                    count,
                    f"{total_count} members ({healthy_count} healthy) above desired {target}",
                )
        return ScalingDecision("none", 0, f"{total_count} members at desired {target}")

    # ── Execution ───────────────────────────────────────────────

    def step(self) -> StepReport:
        """Converge size on desired capacity, then replace unhealthy members."""
        report = StepReport()
        with self._lock:
            snapshot = self._roster.snapshot()
            decision = self.reconcile(snapshot.healthy_count, snapshot.size)
            report.decision = decision
            if decision.action == "launch":
                self._scale_out(snapshot, decision, report)
            elif decision.action == "terminate":
                self._scale_in(snapshot, decision, report)

        for member in self._replacement_candidates():
            new_id = self.replace(member.id, report)
            if new_id is not None:
                report.replaced[member.id] = new_id

        self._update_gauges()
        return report

    def replace(self, member_id: str, report: StepReport | None = None) -> str | None:
        """Replace one unhealthy member.

        At most one replacement per member runs at a time; a second
        call while one is in flight returns None immediately.

        Returns:
            The new member's id, or None if nothing was replaced.
        """
        with self._in_flight_lock:
            if member_id in self._in_flight:
                return None
            self._in_flight.add(member_id)

        try:
            old = self._roster.snapshot().get(member_id)
            if old is None or not old.unhealthy:
                self._retry.complete(member_id)
                return None

            cause = f"replacing unhealthy member {member_id}"
            member, receipt = self._launch(old.zone, cause, replaces=member_id)
            if member is None:
                error = receipt.error or "launch failed"
                self._retry.enqueue(member_id, zone=old.zone, error=error)
                self._log("replace", member_id, old.zone, "failed", cause, error=error)
                if report is not None:
                    report.failures.append(f"replace {member_id}: {error}")
                return None

            with self._lock:
                try:
                    self._roster.swap(member_id, member)
                except KeyError:
                    # Scaled in while the replacement was launching
                    self._terminate(member, "replacement no longer needed")
                    self._retry.complete(member_id)
                    return None

            self._terminate(old, cause)
            self._retry.complete(member_id)
            self._log(
                "replace", member_id, old.zone, "ok", cause,
                context={"replacement": member.id},
            )
            if self._metrics is not None:
                self._metrics.inc("replacements_total")
            logger.info("Replaced %s with %s in %s", member_id, member.id, old.zone or "-")
            return member.id
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(member_id)

    def terminate_all(self, cause: str = "shutdown") -> None:
        """Terminate every member without touching the roster (process exit)."""
        for member in self._roster.snapshot().members:
            self._terminate(member, cause)

    # ── Internals ───────────────────────────────────────────────

    def _scale_out(self, snapshot: PoolSnapshot, decision: ScalingDecision, report: StepReport) -> None:
        counts = snapshot.zone_counts(self.policy.zones)
        launched: list[PoolMember] = []
        for _ in range(decision.count):
            zone = _least_populated(counts, self.policy.zones)
            member, receipt = self._launch(zone, decision.reason)
            if member is None:
                report.failures.append(f"launch in {zone}: {receipt.error}")
                continue
            counts[zone] = counts.get(zone, 0) + 1
            launched.append(member)

        if launched:
            self._roster.add(launched)
            report.launched.extend(m.id for m in launched)
            logger.info("Scaled out by %d (%s)", len(launched), decision.reason)

    def _scale_in(self, snapshot: PoolSnapshot, decision: ScalingDecision, report: StepReport) -> None:
        victims = self._pick_victims(snapshot, decision.count)
        if not victims:
            return
        self._roster.remove(m.id for m in victims)
        for member in victims:
            self._terminate(member, decision.reason)
            self._retry.complete(member.id)
        report.terminated.extend(m.id for m in victims)
        logger.info("Scaled in by %d (%s)", len(victims), decision.reason)

    def _pick_victims(self, snapshot: PoolSnapshot, count: int) -> list[PoolMember]:
        """Unhealthy members first, then the oldest in the fullest zone."""
        busy = self.in_flight()
        candidates = [m for m in snapshot.members if m.id not in busy]
        counts = snapshot.zone_counts(self.policy.zones)
        victims: list[PoolMember] = []

        for member in sorted((m for m in candidates if m.unhealthy), key=lambda m: m.launched_at):
            if len(victims) == count:
                return victims
            victims.append(member)
            counts[member.zone] -= 1

        remaining = [m for m in candidates if m not in victims]
        while len(victims) < count and remaining:
            fullest = max(counts, key=lambda z: (counts[z], z))
            in_zone = [m for m in remaining if m.zone == fullest] or remaining
            oldest = min(in_zone, key=lambda m: m.launched_at)
            victims.append(oldest)
            remaining.remove(oldest)
            counts[oldest.zone] -= 1
        return victims

    def _replacement_candidates(self) -> list[PoolMember]:
        snapshot = self._roster.snapshot()
        busy = self.in_flight()
        # Members gone from the roster (scaled in, or from a previous run)
        self._retry.retain({m.id for m in snapshot.members} | busy)
        candidates = []
        for member in snapshot.unhealthy_members:
            if member.id in busy:
                continue
            item = self._retry.get(member.id)
            if item is not None and not item.ready(self._clock.now()):
                continue
            candidates.append(member)

        # A member that recovered on its own no longer needs replacing
        for member in snapshot.members:
            if not member.unhealthy and member.id in self._retry:
                self._retry.complete(member.id)
        return candidates

    def _launch(
        self,
        zone: str,
        cause: str,
        replaces: str | None = None,
    ) -> tuple[PoolMember | None, Receipt]:
        member_id = new_member_id()
        action = ScalingAction(
            id=new_activity_id(),
            kind="launch",
            member_id=member_id,
            zone=zone,
            provisioner=self._provisioner,
            cause=cause,
        )
        receipt = self._registry.execute_action(action, self._template, self._server_port)
        if not receipt.ok:
            logger.warning("Launch of %s in %s failed: %s", member_id, zone or "-", receipt.error)
            if self._metrics is not None:
                self._metrics.inc("launch_failures_total")
            if replaces is None:
                self._log("launch", member_id, zone, "failed", cause, error=receipt.error)
            return None, receipt

        member = PoolMember(
            id=member_id,
            zone=zone,
            host=receipt.host or self._template.host,
            port=receipt.port or self._server_port,
            launched_at=self._clock.now(),
            replaces=replaces,
        )
        if self._metrics is not None:
            self._metrics.inc("launches_total")
        self._retry.rearm()
        self._log("launch", member_id, zone, "ok", cause, context={"address": member.address})
        return member, receipt

    def _terminate(self, member: PoolMember, cause: str) -> None:
        action = ScalingAction(
            id=new_activity_id(),
            kind="terminate",
            member_id=member.id,
            zone=member.zone,
            provisioner=self._provisioner,
            cause=cause,
        )
        receipt = self._registry.execute_action(
            action, self._template, self._server_port, member=member
        )
        if receipt.failed:
            logger.warning("Terminate of %s failed: %s", member.id, receipt.error)
        if self._metrics is not None:
            self._metrics.inc("terminations_total")
        self._log("terminate", member.id, member.zone, receipt.status, cause, error=receipt.error)

    def _log(
        self,
        kind: Literal["launch", "terminate", "replace"],
        member_id: str,
        zone: str,
        status: Literal["ok", "failed", "skipped"],
        cause: str,
        error: str | None = None,
        context: dict | None = None,
    ) -> None:
        self._activity.write(ActivityEntry(
            kind=kind,
            member_id=member_id,
            zone=zone,
            status=status,
            cause=cause,
            error=error,
            context=context or {},
        ))

    def _update_gauges(self) -> None:
        if self._metrics is None:
            return
        snapshot = self._roster.snapshot()
        self._metrics.gauge("pool_size").set(snapshot.size)
        self._metrics.gauge("pool_healthy").set(snapshot.healthy_count)
        self._metrics.gauge("pool_desired").set(self._desired)


def _least_populated(counts: dict[str, int], zones: list[str]) -> str:
    """The configured zone with the fewest members (first wins ties)."""
    return min(zones, key=lambda z: (counts.get(z, 0), zones.index(z)))
