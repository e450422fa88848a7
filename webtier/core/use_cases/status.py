"""
Status use case — aggregate tier status from config + persisted pool state.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from webtier.core.config.loader import ConfigError, config_root, find_config_file, load_config
from webtier.core.models.state import PoolState
from webtier.core.models.tier import TierConfig
from webtier.core.persistence.state_file import default_state_path, load_state
from webtier.core.use_cases.outputs import compute_outputs


@dataclass
class StatusResult:
    """Aggregated tier status."""

    config: TierConfig | None = None
    state: PoolState | None = None
    root: Path | None = None
    config_path: Path | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary."""
        if self.error:
            return {"error": self.error}

        result: dict = {}
        if self.config:
            result["tier"] = {
                "name": self.config.name,
                "server_port": self.config.server_port,
                "lb_port": self.config.lb_port,
                "min_size": self.config.capacity.min_size,
                "max_size": self.config.capacity.max_size,
                "desired_capacity": self.config.capacity.effective_desired,
                "zones": self.config.capacity.zones,
            }
            result["rules"] = [
                {"priority": r.priority, "path_patterns": r.path_patterns, "target": r.target}
                for r in self.config.sorted_rules
            ]
            result["outputs"] = compute_outputs(self.config)

        if self.state:
            result["pool"] = {
                "version": self.state.version,
                "updated_at": self.state.updated_at,
                "size": self.state.size,
                "healthy": self.state.healthy_count,
                "members": [
                    {
                        "id": m.id,
                        "zone": m.zone,
                        "address": m.address,
                        "status": m.status.value,
                    }
                    for m in self.state.members
                ],
            }
        return result


def get_status(config_path: Path | None = None) -> StatusResult:
    """Load config and the last persisted pool state."""
    result = StatusResult()

    try:
        if config_path is None:
            config_path = find_config_file()
        if config_path is None:
            result.error = "No webtier.yml found. Create one, or specify --config."
            return result

        result.config = load_config(config_path)
        result.config_path = config_path
        result.root = config_root(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.state = load_state(default_state_path(result.root))
    return result
