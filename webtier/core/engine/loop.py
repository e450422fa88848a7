"""
Control loop — the reconciliation heartbeat of the tier.

Each tick:
    probe due members → publish health → reconcile size → replace unhealthy

The loop reads time only through its Clock. In production that is a
MonotonicClock on a background thread; tests and the simulator call
``tick()`` directly against a ManualClock.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from webtier.core.engine.capacity import CapacityManager, StepReport
from webtier.core.engine.clock import Clock
from webtier.core.engine.health_gate import HealthGate
from webtier.core.engine.roster import Roster
from webtier.core.models.member import PoolMember

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """What happened during one tick."""

    at: float = 0.0
    version: int = 0
    pool_size: int = 0
    healthy: int = 0
    transitions: list[PoolMember] = field(default_factory=list)
    capacity: StepReport = field(default_factory=StepReport)


class ControlLoop:
    """Drives the Health Gate and the Capacity Manager on a schedule.

    Args:
        roster: Live membership, read for reporting.
        health_gate: Probes members.
        capacity: Keeps membership within bounds.
        clock: Time source; ``clock.sleep`` paces the loop.
        tick_interval: Seconds between ticks.
    """

    def __init__(
        self,
        roster: Roster,
        health_gate: HealthGate,
        capacity: CapacityManager,
        clock: Clock,
        tick_interval: float = 1.0,
    ):
        self._roster = roster
        self._gate = health_gate
        self._capacity = capacity
        self._clock = clock
        self.tick_interval = tick_interval
        self.ticks = 0
        self.errors = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> TickReport:
        """Run one reconciliation pass."""
        now = self._clock.now()
        transitions = self._gate.run_due()
        step = self._capacity.step()
        self.ticks += 1

        snapshot = self._roster.snapshot()
        report = TickReport(
            at=now,
            version=snapshot.version,
            pool_size=snapshot.size,
            healthy=snapshot.healthy_count,
            transitions=transitions,
            capacity=step,
        )
        if transitions or step.changed:
            logger.info(
                "Tick %d: %d/%d healthy, +%d -%d ~%d",
                self.ticks,
                report.healthy,
                report.pool_size,
                len(step.launched),
                len(step.terminated),
                len(step.replaced),
            )
        return report

    def run(self, max_ticks: int | None = None) -> None:
        """Tick until stopped (or ``max_ticks`` reached).

        A failing tick is logged and the loop carries on: every failure
        is scoped to a member, never to the whole tier.
        """
        count = 0
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                self.errors += 1
                logger.exception("Control loop tick failed")
            count += 1
            if max_ticks is not None and count >= max_ticks:
                break
            self._clock.sleep(self.tick_interval)

    def start(self) -> None:
        """Run the loop on a daemon thread."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="control-loop", daemon=True)
        self._thread.start()
        logger.info("Control loop started (tick every %.1fs)", self.tick_interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._gate.close()
        logger.info("Control loop stopped after %d ticks", self.ticks)
