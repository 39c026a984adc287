"""Lifecycle engine for declared SaaS resources."""

from saas_provisioner.engine.engine import ResourceEngine
from saas_provisioner.engine.graph import DependencyGraph
from saas_provisioner.engine.handlers import DESTROYED, Context, FunctionHandler, ResourceHandler
from saas_provisioner.engine.registry import ResourceKindRegistration, ResourceKindRegistry
from saas_provisioner.engine.types import Phase, TeardownFailure, TeardownResult
from saas_provisioner.errors import (
    ConcurrentApplyError,
    ConflictError,
    DependencyCycleError,
    EngineError,
    KindMismatchError,
    NotFoundError,
    OutputAlreadyBuiltError,
    OutputNotBuiltError,
    ProviderError,
    ScopeClosedError,
    StateLockError,
    TeardownError,
    UnknownResourceTypeError,
)

__all__ = [
    "DESTROYED",
    "ConcurrentApplyError",
    "ConflictError",
    "Context",
    "DependencyCycleError",
    "DependencyGraph",
    "EngineError",
    "FunctionHandler",
    "KindMismatchError",
    "NotFoundError",
    "OutputAlreadyBuiltError",
    "OutputNotBuiltError",
    "Phase",
    "ProviderError",
    "ResourceEngine",
    "ResourceHandler",
    "ResourceKindRegistration",
    "ResourceKindRegistry",
    "ScopeClosedError",
    "StateLockError",
    "TeardownError",
    "TeardownFailure",
    "TeardownResult",
    "UnknownResourceTypeError",
]
