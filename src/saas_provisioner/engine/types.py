"""Engine types (phases, teardown results)."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from saas_provisioner.errors import TeardownError


class Phase(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class TeardownFailure(BaseModel):
    scope: str
    kind: str
    logical_id: str
    error: str


class TeardownResult(BaseModel):
    """Outcome of ``reconcile`` or ``destroy`` for one scope tree."""

    scope: str
    deleted: list[str] = Field(default_factory=list)
    failures: list[TeardownFailure] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def merge(self, other: TeardownResult) -> None:
        self.deleted.extend(other.deleted)
        self.failures.extend(other.failures)
        self.skipped.extend(other.skipped)

    def raise_for_failures(self) -> None:
        """Raise :class:`TeardownError` if any delete failed."""
        if self.failures:
            raise TeardownError(self.scope, list(self.failures))
