"""Scopes: isolated namespaces of resource declarations for one run."""

from __future__ import annotations

import uuid

from saas_provisioner.errors import ConcurrentApplyError, KindMismatchError

SEPARATOR = "/"


class Scope:
    """Resource declarations belonging to one deployment run or test case.

    A scope names a partition of the state store. During a run it records
    which logical ids were declared (in declaration order), which ids are
    being applied right now, and which applies failed. Scopes nest: a child's
    name is ``<parent>/<child>`` and the parent's teardown covers it.
    """

    def __init__(self, name: str, *, parent: Scope | None = None) -> None:
        if not name:
            raise ValueError("Scope name must not be empty")
        self._name = name
        self._parent = parent
        self._declared: dict[str, str] = {}
        self._in_flight: set[str] = set()
        self._failed: set[str] = set()
        self._children: list[Scope] = []
        self.destroying = False

    @classmethod
    def create(cls, prefix: str) -> Scope:
        """Create a scope with a unique name derived from *prefix*."""
        return cls(f"{prefix}-{uuid.uuid4().hex[:8]}")

    def child(self, name: str) -> Scope:
        if SEPARATOR in name:
            raise ValueError(f"Child scope name must not contain '{SEPARATOR}': {name}")
        scope = Scope(f"{self._name}{SEPARATOR}{name}", parent=self)
        self._children.append(scope)
        return scope

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent(self) -> Scope | None:
        return self._parent

    @property
    def children(self) -> list[Scope]:
        return list(self._children)

    @property
    def declared(self) -> list[tuple[str, str]]:
        """``(kind, logical_id)`` pairs declared this run, in declaration order."""
        return [(kind, logical_id) for logical_id, kind in self._declared.items()]

    @property
    def failed(self) -> set[str]:
        return set(self._failed)

    @property
    def clean(self) -> bool:
        """True while no apply in this scope has failed during the run."""
        return not self._failed

    def is_declared(self, logical_id: str) -> bool:
        return logical_id in self._declared

    def contains(self, scope_name: str) -> bool:
        """True if *scope_name* is this scope or one nested below it."""
        return scope_name == self._name or scope_name.startswith(self._name + SEPARATOR)

    def begin(self, kind: str, logical_id: str) -> None:
        """Mark *logical_id* as being applied."""
        declared_kind = self._declared.get(logical_id)
        if declared_kind is not None and declared_kind != kind:
            raise KindMismatchError(logical_id, expected=declared_kind, got=kind)
        if logical_id in self._in_flight:
            raise ConcurrentApplyError(self._name, logical_id)
        self._in_flight.add(logical_id)

    def end(self, logical_id: str) -> None:
        self._in_flight.discard(logical_id)

    def declare(self, kind: str, logical_id: str) -> None:
        self._declared.setdefault(logical_id, kind)

    def mark_failed(self, logical_id: str) -> None:
        self._failed.add(logical_id)
        for ancestor in self._ancestors():
            ancestor._failed.add(self._qualify(logical_id))

    def clear_failed(self, logical_id: str) -> None:
        """Forget an earlier failure of *logical_id* once a retry has succeeded."""
        self._failed.discard(logical_id)
        for ancestor in self._ancestors():
            ancestor._failed.discard(self._qualify(logical_id))

    def _qualify(self, logical_id: str) -> str:
        return f"{self._name}{SEPARATOR}{logical_id}"

    def _ancestors(self) -> list[Scope]:
        chain: list[Scope] = []
        node = self._parent
        while node is not None:
            chain.append(node)
            node = node._parent
        return chain

    def __repr__(self) -> str:
        return f"Scope({self._name!r})"
