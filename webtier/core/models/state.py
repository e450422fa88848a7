"""
PoolState — the persisted view of the live roster.

Serialized to .state/pool.json after every published roster version
so that `webtier status` can report on a running tier from another
process. It is an observation, not a source of truth: deleting it
loses nothing the control loop cannot rebuild.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pydantic import BaseModel, Field

from webtier.core.models.member import PoolMember


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class PoolState(BaseModel):
    """Snapshot of the pool as last published."""

    schema_version: int = 1

    tier_name: str = ""
    version: int = 0
    desired_capacity: int = 0
    min_size: int = 0
    max_size: int = 0

    updated_at: str = Field(default_factory=_now_iso)
    members: list[PoolMember] = Field(default_factory=list)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    @property
    def healthy_count(self) -> int:
        return sum(1 for m in self.members if m.healthy)

    @property
    def size(self) -> int:
        return len(self.members)
