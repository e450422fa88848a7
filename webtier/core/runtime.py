"""
Runtime — wires one tier together from its configuration.

Builds the roster, the three components, the control loop and their
adapters, and mirrors every roster version to the state file. Entry
points (CLI `serve`, `simulate`, the admin app, tests) only ever
deal with a Runtime.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from pathlib import Path

from webtier.adapters.base import Forwarder, Prober, Provisioner
from webtier.adapters.mock import MockForwarder, MockProber, MockProvisioner
from webtier.adapters.registry import ProvisionerRegistry
from webtier.core.engine.capacity import CapacityManager
from webtier.core.engine.clock import Clock, MonotonicClock
from webtier.core.engine.director import TrafficDirector
from webtier.core.engine.health_gate import HealthGate
from webtier.core.engine.loop import ControlLoop
from webtier.core.engine.roster import PoolSnapshot, Roster
from webtier.core.models.state import PoolState
from webtier.core.models.tier import TierConfig
from webtier.core.observability.metrics import MetricsRegistry
from webtier.core.persistence.activity import DEFAULT_ACTIVITY_FILE, ActivityLog
from webtier.core.persistence.state_file import DEFAULT_STATE_FILE, save_state
from webtier.core.reliability.circuit_breaker import CircuitBreakerRegistry
from webtier.core.reliability.retry_queue import RetryQueue

logger = logging.getLogger(__name__)

RETRY_QUEUE_FILE = "retry_queue.json"


@dataclass
class Runtime:
    """A fully wired tier."""

    config: TierConfig
    clock: Clock
    roster: Roster
    metrics: MetricsRegistry
    circuit_breakers: CircuitBreakerRegistry
    registry: ProvisionerRegistry
    retry_queue: RetryQueue
    activity: ActivityLog
    provisioner: Provisioner
    prober: Prober
    forwarder: Forwarder
    health_gate: HealthGate
    capacity: CapacityManager
    director: TrafficDirector
    loop: ControlLoop
    state_path: Path | None = None

    def start(self) -> None:
        self.loop.start()

    def stop(self, terminate_members: bool = True) -> None:
        """Stop the loop and, by default, every member with it."""
        self.loop.stop()
        if terminate_members:
            self.capacity.terminate_all()

    def snapshot(self) -> PoolSnapshot:
        return self.roster.snapshot()

    def pool_state(self) -> PoolState:
        snapshot = self.roster.snapshot()
        return PoolState(
            tier_name=self.config.name,
            version=snapshot.version,
            desired_capacity=self.capacity.desired,
            min_size=self.config.capacity.min_size,
            max_size=self.config.capacity.max_size,
            members=list(snapshot.members),
        )


def build_runtime(
    config: TierConfig,
    *,
    mock: bool = False,
    clock: Clock | None = None,
    state_dir: Path | None = None,
    provisioner: Provisioner | None = None,
    prober: Prober | None = None,
    forwarder: Forwarder | None = None,
    tick_interval: float = 1.0,
    rng: random.Random | None = None,
) -> Runtime:
    """Assemble a Runtime.

    Args:
        config: Validated tier configuration.
        mock: Use in-memory adapters instead of sockets.
        clock: Time source (default: MonotonicClock).
        state_dir: The .state directory for pool.json, activity and retry files.
            None keeps everything in memory.
        provisioner / prober / forwarder: Override individual adapters.
        tick_interval: Seconds between control loop ticks.
        rng: Randomness for retry jitter (seed it for reproducible runs).
    """
    clock = clock or MonotonicClock()
    metrics = MetricsRegistry()
    breakers = CircuitBreakerRegistry(clock=clock)

    if provisioner is None:
        provisioner = MockProvisioner() if mock else _local_provisioner()
    if prober is None:
        prober = MockProber() if mock else _http_prober()
    if forwarder is None:
        forwarder = MockForwarder(config.member.body) if mock else _http_forwarder()

    registry = ProvisionerRegistry(circuit_breakers=breakers)
    registry.register(provisioner)

    roster = Roster(config.capacity.min_size, config.capacity.max_size)
    retry_queue = RetryQueue(
        path=state_dir / RETRY_QUEUE_FILE if state_dir else None,
        clock=clock,
        rng=rng,
    )
    activity = ActivityLog(path=state_dir / DEFAULT_ACTIVITY_FILE if state_dir else None)

    health_gate = HealthGate(config.health_check, prober, roster, clock, metrics=metrics)
    capacity = CapacityManager(
        policy=config.capacity,
        template=config.member,
        server_port=config.server_port,
        roster=roster,
        registry=registry,
        clock=clock,
        retry_queue=retry_queue,
        activity=activity,
        metrics=metrics,
        provisioner=provisioner.name,
    )
    director = TrafficDirector(config.listener, config.rules, roster, forwarder, metrics=metrics)
    loop = ControlLoop(roster, health_gate, capacity, clock, tick_interval=tick_interval)

    runtime = Runtime(
        config=config,
        clock=clock,
        roster=roster,
        metrics=metrics,
        circuit_breakers=breakers,
        registry=registry,
        retry_queue=retry_queue,
        activity=activity,
        provisioner=provisioner,
        prober=prober,
        forwarder=forwarder,
        health_gate=health_gate,
        capacity=capacity,
        director=director,
        loop=loop,
        state_path=state_dir / DEFAULT_STATE_FILE if state_dir else None,
    )
    if state_dir is not None:
        state_path = state_dir / DEFAULT_STATE_FILE
        roster.subscribe(lambda _snapshot: _persist(runtime, state_path))
    return runtime


def _persist(runtime: Runtime, path: Path) -> None:
    try:
        save_state(runtime.pool_state(), path)
    except OSError as e:
        logger.error("Pool state not persisted: %s", e)


def _local_provisioner() -> Provisioner:
    from webtier.adapters.local import LocalProvisioner

    return LocalProvisioner()


def _http_prober() -> Prober:
    from webtier.adapters.http import HttpProber

    return HttpProber()


def _http_forwarder() -> Forwarder:
    from webtier.adapters.http import HttpForwarder

    return HttpForwarder()
