"""Error types shared by the state store, the engine and the handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from saas_provisioner.engine.types import TeardownFailure


class EngineError(Exception):
    """Base exception for engine errors."""


class UnknownResourceTypeError(EngineError):
    """Raised when a resource kind has no registration/handler."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown resource kind: {kind}")
        self.kind = kind


class KindMismatchError(EngineError):
    """Raised when a logical id is applied with a kind other than the recorded one."""

    def __init__(self, logical_id: str, *, expected: str, got: str) -> None:
        super().__init__(
            f"Resource '{logical_id}' is recorded as {expected}, cannot apply it as {got}"
        )
        self.logical_id = logical_id
        self.expected = expected
        self.got = got


class ScopeClosedError(EngineError):
    """Raised when applying into a scope that is being torn down."""

    def __init__(self, scope: str) -> None:
        super().__init__(f"Scope '{scope}' is being destroyed")
        self.scope = scope


class ConcurrentApplyError(EngineError):
    """Raised when one logical id is applied twice at the same time in a scope."""

    def __init__(self, scope: str, logical_id: str) -> None:
        super().__init__(f"Resource '{logical_id}' is already being applied in scope '{scope}'")
        self.scope = scope
        self.logical_id = logical_id


class OutputNotBuiltError(EngineError):
    """Raised when a handler returns without calling ``ctx.build_output``."""

    def __init__(self, kind: str, logical_id: str) -> None:
        super().__init__(
            f"Handler for {kind} did not return the output built by ctx.build_output() "
            f"for '{logical_id}'"
        )
        self.kind = kind
        self.logical_id = logical_id


class OutputAlreadyBuiltError(EngineError):
    """Raised when a handler calls ``ctx.build_output`` more than once."""


class DependencyCycleError(EngineError):
    """Raised when dependencies contain a cycle."""

    def __init__(self, ids: list[str]) -> None:
        msg = "Dependency cycle detected"
        if ids:
            msg += f": {', '.join(ids)}"
        super().__init__(msg)
        self.ids = ids


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class SecretEncryptionError(EngineError):
    """Raised when a secret cannot be encrypted or decrypted."""


class ProviderError(EngineError):
    """A provider API call failed during create/update.

    The prior output of the resource is left untouched.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConflictError(ProviderError):
    """The natural key of a resource already exists remotely (create without ``adopt``)."""


class NotFoundError(ProviderError):
    """The remote object does not exist. Treated as success on delete."""


class TeardownError(EngineError):
    """One or more deletes failed during scope teardown.

    Never raised by the engine itself; see ``TeardownResult.raise_for_failures``.
    """

    def __init__(self, scope: str, failures: list[TeardownFailure]) -> None:
        self.scope = scope
        self.failures = failures
        lines = [f"  - {f.kind} '{f.logical_id}': {f.error}" for f in failures]
        super().__init__(f"Teardown of scope '{scope}' left remote objects behind:\n" + "\n".join(lines))
