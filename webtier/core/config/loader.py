"""
Configuration loader — reads webtier.yml into a TierConfig.

This is the primary entry point for loading tier configuration.
It reads YAML, applies environment variable overrides, validates
against the Pydantic schema, and returns a typed TierConfig.

Overrides (same role as Terraform's TF_VAR_* variables):
    WEBTIER_SERVER_PORT  →  server_port
    WEBTIER_LB_PORT      →  lb_port
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from webtier.core.models.tier import TierConfig

logger = logging.getLogger(__name__)

# Default config filename
TIER_CONFIG_FILE = "webtier.yml"

# env var → top-level config key
ENV_OVERRIDES = {
    "WEBTIER_SERVER_PORT": "server_port",
    "WEBTIER_LB_PORT": "lb_port",
}


class ConfigError(Exception):
    """Raised when tier configuration is invalid or missing."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for webtier.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to webtier.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / TIER_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_config(
    path: Path | None = None,
    allow_defaults: bool = False,
    environ: Mapping[str, str] | None = None,
) -> TierConfig:
    """Load and validate tier configuration.

    Args:
        path: Explicit path to webtier.yml. If None, searches upward.
        allow_defaults: When no file is found, return the built-in
            defaults instead of raising.
        environ: Environment to read overrides from (default: os.environ).

    Returns:
        Validated TierConfig.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    env = os.environ if environ is None else environ

    if path is None:
        path = find_config_file()

    if path is None:
        if allow_defaults:
            logger.info("No %s found — using built-in defaults", TIER_CONFIG_FILE)
            return _validate({}, env, source="<defaults>")
        raise ConfigError(
            f"No {TIER_CONFIG_FILE} found. Create one, or specify --config."
        )

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading tier config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "tier" key or be flat
    if isinstance(data.get("tier"), dict):
        tier_data = dict(data["tier"])
        for key, value in data.items():
            if key != "tier" and key not in tier_data:
                tier_data[key] = value
        data = tier_data

    config = _validate(data, env, source=str(path))
    logger.info(
        "Loaded tier '%s' (pool %d-%d, server_port=%d, lb_port=%d)",
        config.name,
        config.capacity.min_size,
        config.capacity.max_size,
        config.server_port,
        config.lb_port,
    )
    return config


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Return a copy of ``data`` with WEBTIER_* variables applied."""
    merged = dict(data)
    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        try:
            merged[key] = int(value)
        except ValueError:
            raise ConfigError(f"{env_name} must be an integer, got {value!r}") from None
        logger.debug("Override %s=%s from %s", key, value, env_name)
    return merged


def config_root(config_path: Path) -> Path:
    """Get the tier root directory from a config file path."""
    return config_path.parent.resolve()


def _validate(data: dict[str, Any], environ: Mapping[str, str], source: str) -> TierConfig:
    data = apply_env_overrides(data, environ)
    try:
        return TierConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid tier configuration in {source}: {e}") from e
