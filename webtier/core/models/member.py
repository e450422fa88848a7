"""
PoolMember — one unit of serving capacity behind the traffic director.

Members are immutable. The Health Gate and the Capacity Manager never
edit a member in place; they derive a new one with ``model_copy`` and
publish it through the roster.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from webtier.core.models.health import HealthStatus


class PoolMember(BaseModel):
    """A worker in the pool and its current health bookkeeping."""

    model_config = ConfigDict(frozen=True)

    id: str
    zone: str = ""
    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)

    status: HealthStatus = HealthStatus.UNKNOWN
    consecutive_successes: int = 0
    consecutive_failures: int = 0

    launched_at: float = 0.0         # clock reading at launch
    last_probe_at: float | None = None
    replaces: str | None = None      # id of the member this one replaced

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    @property
    def unhealthy(self) -> bool:
        return self.status == HealthStatus.UNHEALTHY
