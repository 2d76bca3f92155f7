"""Configuration loader — qbconfluence.yml parsing, overrides and required inputs."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

import yaml
from pydantic import ValidationError

from qbconfluence.logger import logger
from qbconfluence.model import DeploymentContext, StackConfig


class ConfigurationError(Exception):
    """Raised when a required input is missing or the config file is unusable."""


def load_config(path: Path | None = None) -> StackConfig:
    """Load config from a YAML file, or return defaults if no path given.

    Defaults never include the identity center instance ARN, the Confluence host URL
    or the target account/region; those must come from the file or from
    :func:`apply_overrides`.
    """
    if path is None:
        logger.debug("No config file provided, using defaults")
        return StackConfig()

    from pathlib import Path as _Path

    p = _Path(str(path))

    try:
        text = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}") from None
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from None

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed YAML in {path}: {e}") from e

    if raw is None:
        logger.warning("Config file %s is empty, using defaults", path)
        return StackConfig()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} is not a YAML mapping")

    try:
        return StackConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config in {path}: {e}") from e


def apply_overrides(config: StackConfig, **overrides: str | None) -> StackConfig:
    """Return a copy of *config* with every non-None override applied."""
    updates = {key: value for key, value in overrides.items() if value is not None}
    unknown = sorted(set(updates) - set(StackConfig.model_fields))
    if unknown:
        raise ConfigurationError(f"Unknown config field(s): {', '.join(unknown)}")
    for key in sorted(updates):
        logger.debug("Config override: %s", key)
    return config.model_copy(update=updates)


def require(name: str, value: str | None) -> str:
    """Return *value* if present, otherwise raise :class:`ConfigurationError`."""
    if value is None or not value.strip():
        raise ConfigurationError(f"Missing required input: {name}")
    return value


def deployment_context(config: StackConfig) -> DeploymentContext:
    return DeploymentContext(
        account=require("account", config.account),
        region=require("region", config.region),
        partition=config.partition,
    )
