"""Shared fixtures for unit tests."""

from __future__ import annotations

import pytest

from saas_provisioner.core.state import MemoryStateStore
from saas_provisioner.engine.engine import ResourceEngine
from saas_provisioner.engine.registry import ResourceKindRegistry
from tests.unit.fakes import (
    ApiKey,
    ApiKeyHandler,
    ApiKeyOutput,
    CloudHandler,
    FakeCloud,
    Team,
    TeamOutput,
)

_PROVISIONER_ENV_VARS = (
    "PROVISIONER_STATE_DIR",
    "PROVISIONER_PASSPHRASE",
    "PROVISIONER_MAX_CONCURRENCY",
    "PROVISIONER_LOCK_TIMEOUT",
    "PROVISIONER_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_provisioner_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove PROVISIONER_* env vars so unit tests don't leak host config."""
    for var in _PROVISIONER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def registry(cloud: FakeCloud) -> ResourceKindRegistry:
    reg = ResourceKindRegistry()
    reg.register(Team, CloudHandler(cloud), output=TeamOutput)
    reg.register(ApiKey, ApiKeyHandler(cloud), output=ApiKeyOutput)
    return reg


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def engine(store: MemoryStateStore, registry: ResourceKindRegistry) -> ResourceEngine:
    return ResourceEngine(store=store, registry=registry)
