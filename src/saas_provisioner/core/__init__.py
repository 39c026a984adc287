"""Core infrastructure components: secrets, scopes and state."""

from saas_provisioner.core.scope import Scope
from saas_provisioner.core.secret import Secret, SecretCipher, redact, secret
from saas_provisioner.core.state import (
    FileStateStore,
    MemoryStateStore,
    ResourceInstance,
    ScopeState,
    StateStore,
)

__all__ = [
    "FileStateStore",
    "MemoryStateStore",
    "ResourceInstance",
    "Scope",
    "ScopeState",
    "Secret",
    "SecretCipher",
    "StateStore",
    "redact",
    "secret",
]
