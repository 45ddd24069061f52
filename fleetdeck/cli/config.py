"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./fleetdeck.yaml (working directory)
3. ~/.fleetdeck/config.yaml (user home)

Environment variables override YAML: FLEETDECK_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, field_validator

from fleetdeck.services.control_plane_client import normalize_actor

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

ENV_PREFIX = "FLEETDECK_"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class ControlPlaneConfig(BaseModel):
    """Where the VPS control plane lives and who we act as."""

    base_url: str = "http://127.0.0.1:3000"
    actor: str = "admin"
    timeout_seconds: float = 30.0
    token: str = ""

    @field_validator("actor")
    @classmethod
    def known_actor(cls, value: str) -> str:
        return normalize_actor(value)


class StorageConfig(BaseModel):
    """Credential database and encryption key location."""

    database_url: str | None = None
    key_dir: str | None = None


class BotsConfig(BaseModel):
    request_timeout_seconds: float = 10.0


class LoggingConfig(BaseModel):
    level: str = "WARNING"
    file: str | None = None

    @field_validator("level")
    @classmethod
    def upper_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level


class FleetDeckConfig(BaseModel):
    """Top-level configuration for the FleetDeck CLI."""

    control_plane: ControlPlaneConfig = ControlPlaneConfig()
    storage: StorageConfig = StorageConfig()
    bots: BotsConfig = BotsConfig()
    logging: LoggingConfig = LoggingConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations."""
    candidates = [
        Path.cwd() / "fleetdeck.yaml",
        Path.cwd() / "fleetdeck.yml",
        Path.home() / ".fleetdeck" / "config.yaml",
        Path.home() / ".fleetdeck" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _coerce(value: str) -> Any:
    try:
        return int(value)
    except ValueError:
        if value.lower() in ("true", "false"):
            return value.lower() == "true"
        return value


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply FLEETDECK_<SECTION>_<KEY> env var overrides to config data.

    Matches section names by longest prefix so ``control_plane`` wins
    over any shorter section. For example,
    ``FLEETDECK_CONTROL_PLANE_BASE_URL`` maps to section
    ``control_plane``, field ``base_url``. Keys that name no known field
    (such as FLEETDECK_DATABASE_URL) are ignored here.
    """
    known_sections = sorted(FleetDeckConfig.model_fields.keys(), key=len, reverse=True)
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        section_model = FleetDeckConfig.model_fields[matched_section].annotation
        if matched_field not in section_model.model_fields:
            continue
        if not isinstance(data.get(matched_section), dict):
            data[matched_section] = {}
        data[matched_section][matched_field] = _coerce(value)
    return data


def load_config(config_path: str | None = None) -> FleetDeckConfig:
    """Load FleetDeck configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.fleetdeck/).

    Returns:
        Parsed and validated FleetDeckConfig. Defaults (plus env
        overrides) when no file is found.

    Raises:
        FileNotFoundError: If an explicit config_path does not exist.
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return FleetDeckConfig(**data)
