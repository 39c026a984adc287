"""YAML settings file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from saas_provisioner.config.settings import ProvisionerSettings

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


# Field name → environment variable.
_SETTINGS_ENV_MAP: dict[str, str] = {
    "state_dir": "PROVISIONER_STATE_DIR",
    "passphrase": "PROVISIONER_PASSPHRASE",
    "max_concurrency": "PROVISIONER_MAX_CONCURRENCY",
    "lock_timeout": "PROVISIONER_LOCK_TIMEOUT",
    "log_level": "PROVISIONER_LOG_LEVEL",
}


def _resolve(raw: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve settings from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = {}
    for field, env_key in _SETTINGS_ENV_MAP.items():
        val = raw.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val
    return resolved


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(raw).__name__}")

    unknown = sorted(set(raw) - set(_SETTINGS_ENV_MAP))
    if unknown:
        raise ConfigError(f"Unknown setting(s) in {path}: {', '.join(unknown)}")
    return raw


def load_settings(path: Path | str | None = None) -> ProvisionerSettings:
    """Load settings from an optional YAML file, the environment and ``.env``.

    A relative ``state_dir`` is resolved against the YAML file's directory
    (or the working directory when no file is given).

    Raises:
        ConfigError: On YAML parse errors, unknown keys, or validation failures.
    """
    if path is not None:
        path = Path(path)
        raw = _read_yaml(path)
        config_dir = path.parent
    else:
        raw = {}
        config_dir = Path.cwd()

    try:
        settings = ProvisionerSettings(**_resolve(raw, config_dir))
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    if not settings.state_dir.is_absolute():
        settings.state_dir = config_dir / settings.state_dir

    logger.debug(
        "Loaded settings: state_dir=%s encrypted=%s max_concurrency=%s",
        settings.state_dir,
        settings.passphrase is not None,
        settings.max_concurrency,
    )
    return settings
