"""Configuration file parsing utilities."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ideup.config.schemas import UpdaterConfig
from ideup.errors import IdeupError


class ConfigurationError(IdeupError):
    """Error loading or validating configuration. Aborts the whole run."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML as a dictionary

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigurationError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            result = yaml.safe_load(f)
            if result is None:
                return {}
            if not isinstance(result, dict):
                raise ConfigurationError(f"YAML file must contain a mapping: {path}", path)
            return result
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}", path) from e


def load_config(path: Path | None) -> UpdaterConfig:
    """Load updater configuration from a YAML file.

    Args:
        path: Path to the config file, or None for defaults

    Returns:
        Parsed UpdaterConfig

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    if path is None:
        return UpdaterConfig()

    data = load_yaml(path)
    try:
        return UpdaterConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config: {e}", path) from e


def parse_pair(value: str, option: str = "value") -> tuple[str, str]:
    """Split an ``ID=VALUE`` pair.

    Raises:
        ConfigurationError: If either side is missing
    """
    key, sep, val = value.partition("=")
    key, val = key.strip(), val.strip()
    if not sep or not key or not val:
        raise ConfigurationError(f"Invalid {option} '{value}' (expected ID=VALUE)")
    return key, val


def parse_pairs(values: Iterable[str], option: str = "value") -> dict[str, str]:
    """Parse repeated ``ID=VALUE`` options into a mapping; later entries win."""
    return dict(parse_pair(v, option) for v in values)


def split_csv(values: Iterable[str]) -> list[str]:
    """Flatten repeated, comma-separated options into a list of ids."""
    result: list[str] = []
    for value in values:
        result.extend(part.strip() for part in value.split(",") if part.strip())
    return result


def merge_overrides(config: UpdaterConfig, **overrides: Any) -> UpdaterConfig:
    """Apply command-line overrides on top of a loaded config.

    ``None`` means "not given". ``pins`` and ``direct_urls`` are merged with
    the overrides taking precedence; other values replace the file's.

    Raises:
        ConfigurationError: If the merged result is invalid
    """
    data = config.model_dump()
    for key, value in overrides.items():
        if value is None:
            continue
        if key in ("pins", "direct_urls"):
            data[key] = {**data[key], **value}
        elif key == "only":
            if value:
                data[key] = list(value)
        else:
            data[key] = value

    try:
        return UpdaterConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
