"""
Simulate use case — run the tier on a manual clock with mock adapters.

Members "crash" at random (their probes start failing for good),
probes fail transiently at random, launches fail at random, and a
trickle of requests is routed every tick. The result records the
pool size at every published roster version, so bound violations
would show up here first.
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from dataclasses import dataclass, field

from webtier.adapters.base import ProvisionContext
from webtier.adapters.mock import MockForwarder, MockProber, MockProvisioner
from webtier.core.engine.clock import ManualClock
from webtier.core.engine.roster import PoolSnapshot
from webtier.core.models.action import Receipt
from webtier.core.models.tier import TierConfig
from webtier.core.models.traffic import Request
from webtier.core.runtime import build_runtime

logger = logging.getLogger(__name__)

_PATHS = ("/", "/anything", "/index.html", "/api/v1/items?page=2")


@dataclass
class SimulationResult:
    """Outcome of a simulation run."""

    ticks: int = 0
    seconds: float = 0.0
    versions: int = 0
    min_observed: int | None = None
    max_observed: int = 0
    final_size: int = 0
    final_healthy: int = 0
    crashes: int = 0
    launches: int = 0
    launch_failures: int = 0
    terminations: int = 0
    replacements: int = 0
    requests: dict[str, int] = field(default_factory=dict)
    violations: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "ticks": self.ticks,
            "seconds": self.seconds,
            "versions": self.versions,
            "min_observed": self.min_observed,
            "max_observed": self.max_observed,
            "final_size": self.final_size,
            "final_healthy": self.final_healthy,
            "crashes": self.crashes,
            "launches": self.launches,
            "launch_failures": self.launch_failures,
            "terminations": self.terminations,
            "replacements": self.replacements,
            "requests": self.requests,
            "violations": self.violations,
        }


def run_simulation(
    config: TierConfig,
    duration: float = 300.0,
    tick: float = 1.0,
    crash_rate: float = 0.0,
    probe_failure_rate: float = 0.0,
    launch_failure_rate: float = 0.0,
    requests_per_tick: int = 4,
    seed: int = 0,
) -> SimulationResult:
    """Run the control loop for ``duration`` simulated seconds.

    Args:
        config: Tier to simulate.
        duration: Simulated seconds.
        tick: Seconds between control loop ticks.
        crash_rate: Chance per tick that one healthy member dies for good.
        probe_failure_rate: Chance that any single probe fails transiently.
        launch_failure_rate: Chance that any single launch fails.
        requests_per_tick: Requests routed after every tick.
        seed: Seed for every random choice.
    """
    rng = random.Random(seed)
    clock = ManualClock()
    provisioner = _FlakyProvisioner(rng, launch_failure_rate)
    prober = MockProber(failure_rate=probe_failure_rate, rng=random.Random(seed + 1))
    runtime = build_runtime(
        config,
        clock=clock,
        provisioner=provisioner,
        prober=prober,
        forwarder=MockForwarder(config.member.body),
        tick_interval=tick,
        rng=random.Random(seed + 2),
    )

    result = SimulationResult()
    lo, hi = config.capacity.min_size, config.capacity.max_size
    filled = False

    def observe(snapshot: PoolSnapshot) -> None:
        nonlocal filled
        result.versions += 1
        size = snapshot.size
        result.max_observed = max(result.max_observed, size)
        if size >= lo:
            filled = True
        if filled:
            result.min_observed = size if result.min_observed is None else min(result.min_observed, size)
            if size < lo:
                result.violations.append(f"v{snapshot.version}: {size} members below min_size {lo}")
        if size > hi:
            result.violations.append(f"v{snapshot.version}: {size} members above max_size {hi}")

    runtime.roster.subscribe(observe)
    statuses: Counter[str] = Counter()

    try:
        while clock.now() < duration:
            if crash_rate and rng.random() < crash_rate:
                victims = runtime.snapshot().healthy_members
                if victims:
                    victim = rng.choice(victims)
                    prober.set_outcome(victim.id, False)
                    result.crashes += 1
                    logger.debug("Simulated crash of %s at t=%.0f", victim.id, clock.now())

            runtime.loop.tick()
            result.ticks += 1

            for _ in range(requests_per_tick):
                path, _, query = rng.choice(_PATHS).partition("?")
                response = runtime.director.route(Request(path=path, query=query))
                statuses[str(response.status_code)] += 1

            clock.advance(tick)
    finally:
        runtime.health_gate.close()

    snapshot = runtime.snapshot()
    result.seconds = clock.now()
    result.final_size = snapshot.size
    result.final_healthy = snapshot.healthy_count
    result.requests = dict(sorted(statuses.items()))
    result.launches = len(provisioner.launches()) - provisioner.failed_launches
    result.launch_failures = provisioner.failed_launches
    result.terminations = len(provisioner.terminations())
    result.replacements = runtime.metrics.counter("replacements_total").value
    return result


class _FlakyProvisioner(MockProvisioner):
    """MockProvisioner that fails launches at random."""

    def __init__(self, rng: random.Random, failure_rate: float):
        super().__init__("mock")
        self._rng = rng
        self._failure_rate = failure_rate
        self.failed_launches = 0

    def execute(self, context: ProvisionContext) -> Receipt:
        if context.action.kind == "launch" and self._rng.random() < self._failure_rate:
            self.fail_next(1)
        receipt = super().execute(context)
        if context.action.kind == "launch" and receipt.failed:
            self.failed_launches += 1
        return receipt
