"""
Activity log — append-only history of scaling activities.

Every launch, termination and replacement the Capacity Manager
attempts is written as one NDJSON line, successful or not. This is
what an operator reads to see why the pool looks the way it does.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_ACTIVITY_FILE = "activity.ndjson"


def new_activity_id() -> str:
    """Generate a unique activity ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    return f"act-{now}-{uuid.uuid4().hex[:6]}"


class ActivityEntry(BaseModel):
    """One scaling activity."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    activity_id: str = Field(default_factory=new_activity_id)
    kind: Literal["launch", "terminate", "replace"]
    member_id: str
    zone: str = ""
    status: Literal["ok", "failed", "skipped"] = "ok"
    cause: str = ""
    error: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class ActivityLog:
    """Append-only activity writer.

    With no path the log is kept in memory only, which is what the
    simulator and most tests use.
    """

    def __init__(self, path: Path | None = None, keep_in_memory: int = 500):
        self._path = path
        self._recent: list[ActivityEntry] = []
        self._keep = keep_in_memory
        self._lock = threading.Lock()

    @property
    def path(self) -> Path | None:
        return self._path

    def write(self, entry: ActivityEntry) -> None:
        with self._lock:
            self._recent.append(entry)
            if len(self._recent) > self._keep:
                del self._recent[0]

            if self._path is None:
                return
            line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as e:
                logger.error("Failed to write activity entry: %s", e)

    def recent(self, n: int = 20) -> list[ActivityEntry]:
        """Most recent entries written by this process, oldest first."""
        with self._lock:
            return list(self._recent[-n:])


def default_activity_path(root: Path) -> Path:
    return root / DEFAULT_STATE_DIR / DEFAULT_ACTIVITY_FILE


def read_activity(path: Path, n: int | None = None) -> list[ActivityEntry]:
    """Read entries from an activity file, oldest first.

    Corrupt lines are skipped with a warning.
    """
    if not path.is_file():
        return []

    entries = []
    try:
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(ActivityEntry.model_validate(json.loads(line)))
                except ValueError as e:
                    logger.warning("Skipping corrupt activity entry at line %d: %s", line_num, e)
    except OSError as e:
        logger.error("Failed to read activity log: %s", e)

    return entries[-n:] if n else entries
