"""
Roster — the live pool membership as a versioned, immutable snapshot.

Readers (the Traffic Director, health reporting) call ``snapshot()``
and work on that object without locking: a PoolSnapshot never
changes. Writers (the Capacity Manager, the Health Gate) publish a
new version under the roster lock. Every publish is checked against
the pool size bounds:

    - a version may never hold more than max_size members
    - a version may never shrink a pool that would end below min_size

Growing toward min_size is allowed, which is how an empty pool is
filled at startup.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from webtier.core.models.member import PoolMember

logger = logging.getLogger(__name__)


class CapacityError(Exception):
    """Raised when a membership change would violate the size bounds."""


@dataclass(frozen=True)
class PoolSnapshot:
    """One published version of the pool."""

    version: int = 0
    members: tuple[PoolMember, ...] = ()

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def healthy_members(self) -> tuple[PoolMember, ...]:
        """Members eligible for traffic, in stable id order."""
        return tuple(sorted((m for m in self.members if m.healthy), key=lambda m: m.id))

    @property
    def healthy_count(self) -> int:
        return sum(1 for m in self.members if m.healthy)

    @property
    def unhealthy_members(self) -> tuple[PoolMember, ...]:
        return tuple(m for m in self.members if m.unhealthy)

    def get(self, member_id: str) -> PoolMember | None:
        for member in self.members:
            if member.id == member_id:
                return member
        return None

    def zone_counts(self, zones: Iterable[str] = ()) -> dict[str, int]:
        """Members per zone, including empty entries for ``zones``."""
        counts: dict[str, int] = {zone: 0 for zone in zones}
        counts.update(Counter(m.zone for m in self.members))
        return counts


PublishListener = Callable[[PoolSnapshot], None]


class Roster:
    """Owner of the current PoolSnapshot.

    Args:
        min_size: Lower bound enforced on shrinking publishes.
        max_size: Upper bound enforced on every publish.
    """

    def __init__(self, min_size: int, max_size: int):
        if min_size > max_size:
            raise CapacityError(f"min_size {min_size} exceeds max_size {max_size}")
        self.min_size = min_size
        self.max_size = max_size
        self._current = PoolSnapshot()
        self._lock = threading.Lock()
        self._listeners: list[PublishListener] = []

    def snapshot(self) -> PoolSnapshot:
        """The current version. Safe to hold and read from any thread."""
        return self._current

    def subscribe(self, listener: PublishListener) -> None:
        """Call ``listener(snapshot)`` after every published version."""
        self._listeners.append(listener)

    # ── Writers ─────────────────────────────────────────────────

    def add(self, members: Iterable[PoolMember]) -> PoolSnapshot:
        """Publish a version with ``members`` appended."""
        new = list(members)
        return self._publish(lambda current: list(current) + new)

    def remove(self, member_ids: Iterable[str]) -> PoolSnapshot:
        """Publish a version without the given members."""
        doomed = set(member_ids)

        def change(current: tuple[PoolMember, ...]) -> list[PoolMember]:
            missing = doomed - {m.id for m in current}
            if missing:
                raise KeyError(f"not in pool: {sorted(missing)}")
            return [m for m in current if m.id not in doomed]

        return self._publish(change)

    def swap(self, old_id: str, replacement: PoolMember) -> PoolSnapshot:
        """Replace one member with another in a single version.

        The pool size does not change, so a swap is always within bounds.
        """

        def change(current: tuple[PoolMember, ...]) -> list[PoolMember]:
            if not any(m.id == old_id for m in current):
                raise KeyError(f"not in pool: {old_id}")
            return [replacement if m.id == old_id else m for m in current]

        return self._publish(change)

    def update_health(self, updates: Mapping[str, PoolMember]) -> PoolSnapshot:
        """Publish new health fields for existing members.

        Updates for members that left the pool meanwhile are dropped;
        membership itself never changes here.
        """

        def change(current: tuple[PoolMember, ...]) -> list[PoolMember]:
            merged = []
            for member in current:
                update = updates.get(member.id)
                if update is None:
                    merged.append(member)
                    continue
                merged.append(member.model_copy(update={
                    "status": update.status,
                    "consecutive_successes": update.consecutive_successes,
                    "consecutive_failures": update.consecutive_failures,
                    "last_probe_at": update.last_probe_at,
                }))
            return merged

        return self._publish(change)

    # ── Internals ───────────────────────────────────────────────

    def _publish(
        self,
        change: Callable[[tuple[PoolMember, ...]], list[PoolMember]],
    ) -> PoolSnapshot:
        with self._lock:
            current = self._current
            members = change(current.members)
            self._check(current, members)
            published = PoolSnapshot(version=current.version + 1, members=tuple(members))
            self._current = published

        logger.debug("Roster v%d published (%d members)", published.version, published.size)
        for listener in self._listeners:
            listener(published)
        return published

    def _check(self, current: PoolSnapshot, members: list[PoolMember]) -> None:
        ids = [m.id for m in members]
        if len(set(ids)) != len(ids):
            raise CapacityError(f"duplicate member ids in {ids}")
        size = len(members)
        if size > self.max_size:
            raise CapacityError(
                f"pool of {size} would exceed max_size {self.max_size}"
            )
        if size < current.size and size < self.min_size:
            raise CapacityError(
                f"pool of {size} would fall below min_size {self.min_size}"
            )
