"""
Shared test fixtures and configuration.
"""

from collections.abc import Callable, Iterator

import pytest

from webtier.adapters.mock import MockForwarder, MockProber, MockProvisioner
from webtier.core.engine.clock import ManualClock
from webtier.core.engine.roster import Roster
from webtier.core.models.health import HealthStatus
from webtier.core.models.member import PoolMember
from webtier.core.models.tier import TierConfig
from webtier.core.runtime import Runtime, build_runtime


@pytest.fixture
def tier_config() -> TierConfig:
    """The default tier: pool 2-10, server_port 8080, lb_port 80."""
    return TierConfig()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def roster() -> Roster:
    return Roster(min_size=2, max_size=10)


@pytest.fixture
def make_member() -> Callable[..., PoolMember]:
    """Factory for members with sequential ids."""
    counter = iter(range(1, 10_000))

    def _make(
        status: HealthStatus = HealthStatus.UNKNOWN,
        zone: str = "zone-a",
        member_id: str | None = None,
        **kwargs,
    ) -> PoolMember:
        n = next(counter)
        return PoolMember(
            id=member_id or f"m-{n:04d}",
            zone=zone,
            host=f"10.0.0.{n}",
            status=status,
            **kwargs,
        )

    return _make


@pytest.fixture
def mock_runtime(tier_config: TierConfig, clock: ManualClock) -> Iterator[Runtime]:
    """A fully wired tier on mock adapters and a manual clock."""
    runtime = build_runtime(
        tier_config,
        clock=clock,
        provisioner=MockProvisioner(),
        prober=MockProber(),
        forwarder=MockForwarder(tier_config.member.body),
    )
    yield runtime
    runtime.health_gate.close()


@pytest.fixture
def settle(clock: ManualClock) -> Callable[[Runtime], None]:
    """Tick a runtime, one probe interval apart, until every member is healthy."""

    def _settle(runtime: Runtime, max_ticks: int = 10) -> None:
        interval = runtime.config.health_check.interval
        for _ in range(max_ticks):
            runtime.loop.tick()
            snapshot = runtime.snapshot()
            if snapshot.size and snapshot.healthy_count == snapshot.size:
                return
            clock.advance(interval)
        raise AssertionError(f"pool never became healthy: {runtime.snapshot()}")

    return _settle
