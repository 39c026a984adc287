"""Runtime settings for the engine and its state store."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from saas_provisioner.core.lock import DEFAULT_LOCK_TIMEOUT

DEFAULT_STATE_DIR = Path(".provisioner-state")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ProvisionerSettings(BaseSettings):
    """Where state lives and how it is protected.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``PROVISIONER_`` prefix. Constructor kwargs take precedence.

    ``passphrase`` keys the encryption of secrets in state files and is meant
    to come from ``PROVISIONER_PASSPHRASE`` rather than a committed YAML file.
    ``lock_timeout`` bounds how long a store call waits for another process
    holding the state directory. ``log_level`` applies when the CLI is run
    without ``-v``.
    """

    model_config = SettingsConfigDict(env_prefix="PROVISIONER_", extra="ignore")

    state_dir: Path = DEFAULT_STATE_DIR
    passphrase: SecretStr | None = None
    max_concurrency: int | None = Field(default=None, ge=1)
    lock_timeout: float = Field(default=DEFAULT_LOCK_TIMEOUT, ge=0)
    log_level: str | None = None

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str | None) -> str | None:
        if v is None:
            return None
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(LOG_LEVELS)}, got '{v}'")
        return level

    @property
    def log_level_number(self) -> int | None:
        return getattr(logging, self.log_level) if self.log_level is not None else None
