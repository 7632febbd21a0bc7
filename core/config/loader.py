"""Configuration loading utilities."""

from __future__ import annotations

from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError

from core.config.models import LinterConfig
from core.utils.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).with_name("default.yaml")


def load_config(path: Path | None = None) -> LinterConfig:
    """Load and validate linter configuration from YAML.

    Keys missing from a user file fall back to the bundled defaults.
    """

    defaults = _read_mapping(DEFAULT_CONFIG_PATH)
    if path is None:
        raw = defaults
    else:
        raw = {**defaults, **_read_mapping(path)}

    try:
        return LinterConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config schema: {path or DEFAULT_CONFIG_PATH}") from exc


def _read_mapping(config_path: Path) -> dict[str, object]:
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {config_path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in config file: {config_path}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {config_path}")
    return raw
