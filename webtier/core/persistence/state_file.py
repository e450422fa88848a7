"""
State file persistence — atomic read/write for PoolState.

The pool is mirrored to .state/pool.json. Writes are atomic (write
to a temp file, then rename) because the control loop writes on
every roster version while `webtier status` may be reading.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from webtier.core.models.state import PoolState

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "pool.json"


def default_state_path(root: Path) -> Path:
    """Get the default state file path for a tier root."""
    return root / DEFAULT_STATE_DIR / DEFAULT_STATE_FILE


def load_state(path: Path) -> PoolState:
    """Load pool state from a JSON file.

    Returns:
        PoolState. If the file is missing or unreadable, an empty state.
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return PoolState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = PoolState.model_validate(data)
        logger.debug("Loaded state from %s (version=%d)", path, state.version)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return PoolState()
    except (OSError, ValueError) as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return PoolState()


def save_state(state: PoolState, path: Path) -> None:
    """Save pool state to a JSON file (atomic write)."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".pool_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
        logger.debug("State saved to %s (version=%d)", path, state.version)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s", path)
        raise
