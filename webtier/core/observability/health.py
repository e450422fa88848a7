"""
Tier health — one verdict from the pool, the breakers and the retry queue.

The tier is as healthy as its worst component. Used by
``webtier health`` and ``GET /api/health`` (503 when unhealthy).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from webtier.core.models.state import PoolState
from webtier.core.reliability.circuit_breaker import CircuitBreakerRegistry, CircuitState
from webtier.core.reliability.retry_queue import RetryQueue


class Level(StrEnum):
    HEALTHY = "healthy"
    UNKNOWN = "unknown"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


# worst last
_SEVERITY = list(Level)


@dataclass
class ComponentHealth:
    name: str
    status: str = Level.UNKNOWN
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": str(self.status), "message": self.message, "details": self.details}


@dataclass
class SystemHealth:
    components: list[ComponentHealth] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def status(self) -> Level:
        if not self.components:
            return Level.HEALTHY
        return max((Level(c.status) for c in self.components), key=_SEVERITY.index)

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": str(self.status),
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def check_pool(state: PoolState) -> ComponentHealth:
    """How much of the pool can take traffic.

    A pool that never published is unknown. No healthy member is
    unhealthy. Members still unproven or failing, or a pool below
    ``min_size``, is degraded.
    """
    size, healthy = state.size, state.healthy_count
    details = {
        "version": state.version,
        "size": size,
        "healthy": healthy,
        "desired": state.desired_capacity,
        "min_size": state.min_size,
        "max_size": state.max_size,
    }

    if size == 0:
        level = Level.UNKNOWN if state.version == 0 else Level.UNHEALTHY
        return ComponentHealth("pool", level, "No members", details)
    if healthy == 0:
        level = Level.UNHEALTHY
    elif healthy < size or size < state.min_size:
        level = Level.DEGRADED
    else:
        return ComponentHealth("pool", Level.HEALTHY, f"All {size} members healthy", details)
    return ComponentHealth("pool", level, f"{healthy}/{size} members healthy", details)


def check_circuit_breakers(registry: CircuitBreakerRegistry) -> ComponentHealth:
    """An open breaker means no replacements can launch."""
    status = registry.get_status()
    if not status:
        return ComponentHealth("circuit_breakers", Level.HEALTHY, "No circuit breakers registered")

    states = [info["state"] for info in status.values()]
    opened = states.count(CircuitState.OPEN)
    trial = states.count(CircuitState.HALF_OPEN)
    if opened:
        return ComponentHealth("circuit_breakers", Level.UNHEALTHY, f"{opened}/{len(states)} circuits open", status)
    if trial:
        return ComponentHealth(
            "circuit_breakers", Level.DEGRADED, f"{trial}/{len(states)} circuits half-open", status,
        )
    return ComponentHealth("circuit_breakers", Level.HEALTHY, f"All {len(states)} circuits closed", status)


def check_retry_queue(queue: RetryQueue) -> ComponentHealth:
    """Exhausted replacements leave unhealthy members behind; pending ones are normal."""
    status = queue.get_status()
    total, exhausted = status["total"], status["exhausted"]
    if exhausted:
        return ComponentHealth(
            "retry_queue", Level.DEGRADED, f"{exhausted} replacements exhausted, {total} total", status,
        )
    message = f"{total} replacements pending retry" if total else "Queue empty"
    return ComponentHealth("retry_queue", Level.HEALTHY, message, status)


def check_system_health(
    pool: PoolState | None = None,
    cb_registry: CircuitBreakerRegistry | None = None,
    retry_queue: RetryQueue | None = None,
) -> SystemHealth:
    """Check whichever components are given, in a fixed order."""
    health = SystemHealth()
    if pool is not None:
        health.add(check_pool(pool))
    if cb_registry is not None:
        health.add(check_circuit_breakers(cb_registry))
    if retry_queue is not None:
        health.add(check_retry_queue(retry_queue))
    return health
