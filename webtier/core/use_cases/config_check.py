"""
Config check use case — validate webtier.yml and report problems.

Errors make the configuration unusable; warnings flag settings that
load fine but are probably not what was meant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from webtier.core.config.loader import ConfigError, find_config_file, load_config
from webtier.core.models.tier import TierConfig


@dataclass
class ConfigCheckResult:
    """Result of a configuration check."""

    valid: bool = False
    config: TierConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result: dict = {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
        }
        if self.config:
            result["tier"] = self.config.name
        return result


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate the tier configuration."""
    result = ConfigCheckResult()

    if config_path is None:
        config_path = find_config_file()
    if config_path is None:
        result.errors.append("No webtier.yml found")
        return result
    result.config_path = config_path

    try:
        config = load_config(config_path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    result.config = config
    result.valid = True
    result.warnings.extend(_warnings(config))
    return result


def _warnings(config: TierConfig) -> list[str]:
    warnings = []
    cap = config.capacity
    hc = config.health_check

    if len(cap.zones) == 1:
        warnings.append("Only one zone configured — a zone failure takes down the pool")
    if cap.min_size < 2:
        warnings.append(f"min_size is {cap.min_size} — a single failure leaves no healthy member")
    if cap.min_size == cap.max_size:
        warnings.append(f"min_size equals max_size ({cap.max_size}) — the pool cannot grow")
    if config.server_port == config.lb_port:
        warnings.append(f"server_port and lb_port are both {config.lb_port}")
    if config.lb_port < 1024 or config.server_port < 1024:
        warnings.append("Ports below 1024 usually need elevated privileges")

    # time until a dead member stops receiving traffic
    detect = hc.interval * hc.unhealthy_threshold
    if detect > 120:
        warnings.append(
            f"A failed member keeps receiving traffic for up to {detect:.0f}s"
        )
    return warnings
