"""Settings loading and engine construction."""

from __future__ import annotations

from typing import TYPE_CHECKING

from saas_provisioner.config.loader import ConfigError, load_settings
from saas_provisioner.config.settings import ProvisionerSettings
from saas_provisioner.core.secret import SecretCipher
from saas_provisioner.core.state import FileStateStore
from saas_provisioner.engine.engine import ResourceEngine

if TYPE_CHECKING:
    from pathlib import Path

    from saas_provisioner.engine.registry import ResourceKindRegistry

__all__ = [
    "ConfigError",
    "ProvisionerSettings",
    "engine_from_settings",
    "load",
    "load_settings",
    "state_store_from_settings",
]


def load(path: Path | str | None = None) -> ProvisionerSettings:
    """Load settings from a YAML file (optional), the environment and ``.env``."""
    return load_settings(path)


def state_store_from_settings(settings: ProvisionerSettings) -> FileStateStore:
    """Build the file-backed state store, encrypting secrets when a passphrase is set."""
    cipher = SecretCipher(settings.passphrase) if settings.passphrase is not None else None
    return FileStateStore(settings.state_dir, cipher=cipher, lock_timeout=settings.lock_timeout)


def engine_from_settings(
    settings: ProvisionerSettings, registry: ResourceKindRegistry
) -> ResourceEngine:
    """Build a ``ResourceEngine`` over a ``FileStateStore`` from *settings*."""
    return ResourceEngine(
        store=state_store_from_settings(settings),
        registry=registry,
        max_concurrency=settings.max_concurrency,
    )
