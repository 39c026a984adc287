"""Exclusive lock over a state directory."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from saas_provisioner.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

LOCK_FILENAME = ".state.lock"
DEFAULT_LOCK_TIMEOUT = 10.0
_POLL_INTERVAL = 0.05


class StateLock:
    """Serialise read-modify-write cycles on one state directory.

    All scope partitions in the directory share this one lock file, so
    partitions can come and go without leaving per-scope lock files behind.
    The holder writes its pid into the file; a contended acquire that runs
    out of *timeout* seconds names that pid in its error.

    Store calls are synchronous, so the lock is never held across an
    ``await``.
    """

    def __init__(self, directory: Path, *, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        if fcntl is None:  # pragma: no cover
            raise StateLockError("State locking needs fcntl, which this platform lacks")
        self._path = Path(directory) / LOCK_FILENAME
        self._timeout = timeout
        self._file: TextIO | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._file is not None

    def holder(self) -> int | None:
        """Pid written by the current (or last) holder."""
        try:
            text = self._path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return int(text) if text.isdigit() else None

    def _contended(self) -> StateLockError:
        pid = self.holder()
        who = f"pid {pid}" if pid is not None else "another process"
        return StateLockError(
            f"{self._path.parent} is locked by {who}; gave up after {self._timeout:g}s"
        )

    def __enter__(self) -> StateLock:
        if self._file is not None:
            raise StateLockError(f"{self._path} is already held by this lock")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        handle = self._path.open("a+", encoding="utf-8")
        deadline = time.monotonic() + self._timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    handle.close()
                    raise self._contended() from None
                time.sleep(_POLL_INTERVAL)
            except OSError as e:
                handle.close()
                raise StateLockError(f"Cannot lock {self._path}: {e}") from e

        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        self._file = handle
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        handle, self._file = self._file, None
        if handle is None:
            return
        try:
            handle.seek(0)
            handle.truncate()
            handle.flush()
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()
