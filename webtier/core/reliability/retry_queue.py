"""
Retry queue — replacement launches that failed and will be tried again.

One item per member being replaced. Each failure pushes the next
attempt out exponentially (``base_delay * 2**(attempt-1)``, capped at
``max_delay``, plus up to 30% jitter) on the tier's clock. After
``max_attempts`` the item is exhausted: it is logged as an error and
reported as degraded, but still retried every ``max_delay`` so a
provisioner that comes back heals the pool. A successful launch
anywhere makes every item due at once.

With a ``path`` the queue is mirrored to JSON (atomic replace), so
``webtier health`` in another process can read it. Items for members
the running roster no longer has are dropped (``retain``).
"""

from __future__ import annotations

import json
import logging
import random
import tempfile
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from webtier.core.engine.clock import Clock, MonotonicClock

logger = logging.getLogger(__name__)

_JITTER = 0.3


@dataclass
class RetryItem:
    member_id: str
    zone: str = ""
    attempt: int = 0
    max_attempts: int = 3
    next_retry_at: float = 0.0
    created_at: float = 0.0
    last_error: str = ""

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def ready(self, now: float) -> bool:
        return now >= self.next_retry_at

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryItem:
        return cls(**data)


class RetryQueue:
    """Pending replacements, keyed by the id of the member to replace."""

    def __init__(
        self,
        path: Path | None = None,
        max_attempts: int = 3,
        base_delay: float = 5.0,
        max_delay: float = 300.0,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ):
        self._path = path
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._clock = clock or MonotonicClock()
        self._rng = rng or random.Random()
        self._items: dict[str, RetryItem] = {}
        self._lock = threading.Lock()

        if path is not None:
            self._items = _read(path)

    @property
    def size(self) -> int:
        return len(self._items)

    @property
    def ready_count(self) -> int:
        return len(self.dequeue_ready())

    def __contains__(self, member_id: str) -> bool:
        return member_id in self._items

    def get(self, member_id: str) -> RetryItem | None:
        return self._items.get(member_id)

    def enqueue(self, member_id: str, zone: str = "", error: str = "") -> RetryItem:
        """Count one failed replacement of ``member_id`` and schedule the next."""
        with self._lock:
            item = self._items.setdefault(
                member_id,
                RetryItem(
                    member_id=member_id,
                    zone=zone,
                    max_attempts=self._max_attempts,
                    created_at=self._clock.now(),
                ),
            )
            item.attempt += 1
            item.last_error = error
            if item.exhausted:
                delay = self._max_delay
            else:
                delay = min(self._base_delay * 2 ** (item.attempt - 1), self._max_delay)
            delay += self._rng.uniform(0, delay * _JITTER)
            item.next_retry_at = self._clock.now() + delay
            self._save()

        if item.exhausted:
            logger.error(
                "Replacing member '%s' failed %d times, retrying every %.0fs: %s",
                member_id, item.attempt, self._max_delay, error or "unknown error",
            )
        else:
            logger.info(
                "Replacement of '%s' failed (attempt %d/%d), next try in %.1fs",
                member_id, item.attempt, item.max_attempts, delay,
            )
        return item

    def dequeue_ready(self) -> list[RetryItem]:
        """Items due for another attempt, earliest first. Items stay queued."""
        now = self._clock.now()
        with self._lock:
            ready = [i for i in self._items.values() if i.ready(now)]
        return sorted(ready, key=lambda i: i.next_retry_at)

    def complete(self, member_id: str) -> None:
        """Forget ``member_id``: it was replaced or recovered."""
        with self._lock:
            if self._items.pop(member_id, None) is not None:
                self._save()

    def retain(self, member_ids: set[str]) -> list[RetryItem]:
        """Drop items whose member is not in ``member_ids``; return them."""
        with self._lock:
            stale = [i for i in self._items.values() if i.member_id not in member_ids]
            for item in stale:
                del self._items[item.member_id]
            if stale:
                self._save()
        for item in stale:
            logger.info("Dropped retry of unknown member '%s'", item.member_id)
        return stale

    def rearm(self) -> None:
        """Make every item due now."""
        now = self._clock.now()
        with self._lock:
            for item in self._items.values():
                item.next_retry_at = min(item.next_retry_at, now)

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            items = list(self._items.values())
        return {
            "total": len(items),
            "ready": self.ready_count,
            "exhausted": sum(1 for i in items if i.exhausted),
            "items": [i.to_dict() for i in items],
        }

    def _save(self) -> None:
        # caller holds the lock
        if self._path is None:
            return
        payload = json.dumps([i.to_dict() for i in self._items.values()], indent=2)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".retry_", suffix=".tmp")
        except OSError as e:
            logger.error("Retry queue not persisted to %s: %s", self._path, e)
            return
        tmp = Path(tmp_name)
        try:
            with open(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            tmp.replace(self._path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            logger.error("Retry queue not persisted to %s: %s", self._path, e)


def _read(path: Path) -> dict[str, RetryItem]:
    if not path.is_file():
        return {}
    try:
        items = [RetryItem.from_dict(d) for d in json.loads(path.read_text(encoding="utf-8"))]
    except (json.JSONDecodeError, OSError, TypeError) as e:
        logger.warning("Ignoring unreadable retry queue %s: %s", path, e)
        return {}
    for item in items:
        # clock readings do not survive a restart
        item.next_retry_at = 0.0
    logger.info("Loaded %d pending replacements from %s", len(items), path)
    return {item.member_id: item for item in items}
