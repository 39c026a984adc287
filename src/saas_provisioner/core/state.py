"""State management for tracking provisioned resources.

State is partitioned by scope name. Each partition is an ordered list of
resource instances; list order (and each instance's ``sequence``) is the
order in which resources were first created, which teardown reverses.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote, unquote

from pydantic import BaseModel, Field

from saas_provisioner.core.lock import DEFAULT_LOCK_TIMEOUT, StateLock
from saas_provisioner.core.secret import decode_secrets, encode_secrets
from saas_provisioner.errors import KindMismatchError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from saas_provisioner.core.secret import SecretCipher

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


class ResourceInstance(BaseModel):
    """A tracked resource instance in a scope's state.

    Attributes:
        kind: Resource kind (e.g. "sentry::Project")
        logical_id: Caller-supplied id, unique within the scope
        output: Last committed output (secrets as ``Secret`` objects in memory)
        sequence: Creation order within the scope
        dependencies: Logical ids this resource depended on when last applied
        created_at: When the resource was created
        updated_at: When the resource was last updated
    """

    kind: str
    logical_id: str
    output: dict[str, Any] = Field(default_factory=dict)
    sequence: int = 0
    dependencies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def check_kind(self, kind: str) -> None:
        if self.kind != kind:
            raise KindMismatchError(self.logical_id, expected=self.kind, got=kind)


class ScopeState(BaseModel):
    """Persisted state of one scope.

    Attributes:
        version: State format version
        scope: Scope name this partition belongs to
        serial: Incremented on every write
        lineage: Random id assigned when the partition was first written
        next_sequence: Sequence number handed to the next created resource
        resources: Instances ordered by creation
    """

    version: int = 1
    scope: str
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    next_sequence: int = 0
    resources: list[ResourceInstance] = Field(default_factory=list)

    def find(self, logical_id: str) -> ResourceInstance | None:
        return next((r for r in self.resources if r.logical_id == logical_id), None)

    def upsert(
        self,
        kind: str,
        logical_id: str,
        output: Mapping[str, Any],
        dependencies: Sequence[str],
    ) -> ResourceInstance:
        """Replace the output of *logical_id*, keeping its creation sequence."""
        now = _now()
        inst = self.find(logical_id)
        if inst is None:
            inst = ResourceInstance(
                kind=kind,
                logical_id=logical_id,
                output=dict(output),
                sequence=self.next_sequence,
                dependencies=list(dependencies),
                created_at=now,
                updated_at=now,
            )
            self.next_sequence += 1
            self.resources.append(inst)
        else:
            inst.check_kind(kind)
            inst.output = dict(output)
            inst.dependencies = list(dependencies)
            inst.updated_at = now
        self.serial += 1
        return inst

    def discard(self, kind: str, logical_id: str) -> bool:
        inst = self.find(logical_id)
        if inst is None:
            return False
        inst.check_kind(kind)
        self.resources.remove(inst)
        self.serial += 1
        return True

    def ordered(self) -> list[ResourceInstance]:
        return sorted(self.resources, key=lambda r: r.sequence)

    def save(self, path: Path, cipher: SecretCipher | None) -> None:
        """Save state to a JSON file with secrets encrypted.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        encoded = self.model_copy(
            update={
                "resources": [
                    r.model_copy(update={"output": encode_secrets(r.output, cipher)})
                    for r in self.resources
                ]
            }
        )
        content = json.dumps(encoded.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"

        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: scope=%s serial=%d path=%s", self.scope, self.serial, path)

    @classmethod
    def load(cls, path: Path, cipher: SecretCipher | None, *, decrypt: bool = True) -> ScopeState:
        """Load state from a JSON file, decrypting secrets unless *decrypt* is False."""
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        if not decrypt:
            return state
        for inst in state.resources:
            inst.output = decode_secrets(inst.output, cipher)
        logger.debug("State loaded from %s", path)
        return state


class StateStore(Protocol):
    """Durable mapping ``(scope, kind, logical id) -> output``.

    Every write is a single atomic replace of the scope's partition.
    """

    def get(self, scope: str, kind: str, logical_id: str) -> ResourceInstance | None:
        """Return the recorded instance, or ``None``.

        Raises:
            KindMismatchError: If the id is recorded under another kind.
        """
        ...

    def put(
        self,
        scope: str,
        kind: str,
        logical_id: str,
        output: Mapping[str, Any],
        *,
        dependencies: Sequence[str] = (),
    ) -> ResourceInstance: ...

    def remove(self, scope: str, kind: str, logical_id: str) -> None: ...

    def list_declared(self, scope: str) -> list[ResourceInstance]:
        """Instances recorded for *scope*, in creation order."""
        ...

    def list_scopes(self) -> list[str]: ...

    @property
    def can_persist_secrets(self) -> bool:
        """False when writing an output that holds a secret would be refused."""
        ...


class MemoryStateStore:
    """In-process state store. Nothing is persisted, so secrets stay as objects."""

    def __init__(self) -> None:
        self._scopes: dict[str, ScopeState] = {}

    def get(self, scope: str, kind: str, logical_id: str) -> ResourceInstance | None:
        state = self._scopes.get(scope)
        inst = state.find(logical_id) if state is not None else None
        if inst is None:
            return None
        inst.check_kind(kind)
        return inst.model_copy(deep=True)

    def put(
        self,
        scope: str,
        kind: str,
        logical_id: str,
        output: Mapping[str, Any],
        *,
        dependencies: Sequence[str] = (),
    ) -> ResourceInstance:
        state = self._scopes.get(scope) or ScopeState(scope=scope)
        inst = state.upsert(kind, logical_id, output, dependencies)
        self._scopes[scope] = state
        return inst.model_copy(deep=True)

    def remove(self, scope: str, kind: str, logical_id: str) -> None:
        state = self._scopes.get(scope)
        if state is None:
            return
        state.discard(kind, logical_id)
        if not state.resources:
            del self._scopes[scope]

    def list_declared(self, scope: str) -> list[ResourceInstance]:
        state = self._scopes.get(scope)
        if state is None:
            return []
        return [inst.model_copy(deep=True) for inst in state.ordered()]

    def list_scopes(self) -> list[str]:
        return sorted(self._scopes)

    @property
    def can_persist_secrets(self) -> bool:
        return True


class FileStateStore:
    """One JSON file per scope under *directory*.

    Secret values are encrypted with *cipher*; without a cipher, writing an
    output that holds a secret fails instead of storing cleartext.

    Every read-modify-write holds the directory's :class:`StateLock`, so
    processes sharing *directory* see whole writes only. A scope whose last
    resource is removed leaves no files behind.
    """

    def __init__(
        self,
        directory: Path,
        *,
        cipher: SecretCipher | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self._directory = Path(directory)
        self._cipher = cipher
        self._lock_timeout = lock_timeout

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def can_persist_secrets(self) -> bool:
        return self._cipher is not None

    def path_for(self, scope: str) -> Path:
        return self._directory / f"{quote(scope, safe='')}.json"

    def _locked(self) -> StateLock:
        return StateLock(self._directory, timeout=self._lock_timeout)

    def load(self, scope: str, *, decrypt: bool = True) -> ScopeState:
        """Read a scope's partition without taking the lock.

        With ``decrypt=False`` secrets stay in their encrypted marker form, so
        state can be inspected without the passphrase.
        """
        path = self.path_for(scope)
        if not path.exists():
            return ScopeState(scope=scope)
        return ScopeState.load(path, self._cipher, decrypt=decrypt)

    def _write(self, path: Path, state: ScopeState) -> None:
        if state.resources:
            state.save(path, self._cipher)
            return
        for stale in (path, Path(str(path) + ".backup")):
            with contextlib.suppress(FileNotFoundError):
                stale.unlink()
        logger.debug("State for scope %s is empty; removed %s", state.scope, path)

    def get(self, scope: str, kind: str, logical_id: str) -> ResourceInstance | None:
        with self._locked():
            state = self.load(scope)
        inst = state.find(logical_id)
        if inst is not None:
            inst.check_kind(kind)
        return inst

    def put(
        self,
        scope: str,
        kind: str,
        logical_id: str,
        output: Mapping[str, Any],
        *,
        dependencies: Sequence[str] = (),
    ) -> ResourceInstance:
        path = self.path_for(scope)
        with self._locked():
            state = self.load(scope)
            inst = state.upsert(kind, logical_id, output, dependencies)
            self._write(path, state)
        return inst

    def remove(self, scope: str, kind: str, logical_id: str) -> None:
        path = self.path_for(scope)
        with self._locked():
            state = self.load(scope)
            if state.discard(kind, logical_id):
                self._write(path, state)

    def list_declared(self, scope: str) -> list[ResourceInstance]:
        with self._locked():
            state = self.load(scope)
        return state.ordered()

    def list_scopes(self) -> list[str]:
        if not self._directory.is_dir():
            return []
        return sorted(unquote(p.name.removesuffix(".json")) for p in self._directory.glob("*.json"))
