from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from saas_provisioner.core.lock import LOCK_FILENAME, StateLock
from saas_provisioner.core.secret import SECRET_MARKER, Secret, SecretCipher, secret
from saas_provisioner.core.state import FileStateStore, MemoryStateStore, ScopeState
from saas_provisioner.errors import KindMismatchError, SecretEncryptionError, StateLockError

TOKEN = "sk-live-6f1d0c9a7b3e4f21"


class TestScopeState:
    def test_upsert_assigns_sequence_once(self) -> None:
        state = ScopeState(scope="run")
        a = state.upsert("acme::Team", "a", {"id": "1"}, [])
        b = state.upsert("acme::Team", "b", {"id": "2"}, ["a"])
        a2 = state.upsert("acme::Team", "a", {"id": "1", "name": "A"}, [])

        assert (a.sequence, b.sequence, a2.sequence) == (0, 1, 0)
        assert state.next_sequence == 2
        assert state.serial == 3
        assert a2.created_at <= a2.updated_at
        assert [r.logical_id for r in state.ordered()] == ["a", "b"]

    def test_discard_checks_kind(self) -> None:
        state = ScopeState(scope="run")
        state.upsert("acme::Team", "a", {}, [])
        with pytest.raises(KindMismatchError):
            state.discard("acme::ApiKey", "a")
        assert state.discard("acme::Team", "a")
        assert not state.discard("acme::Team", "a")


class TestMemoryStateStore:
    def test_put_get_remove(self) -> None:
        store = MemoryStateStore()
        store.put("run", "acme::Team", "a", {"id": "1"})

        inst = store.get("run", "acme::Team", "a")
        assert inst is not None
        assert inst.output == {"id": "1"}
        assert store.get("run", "acme::Team", "missing") is None
        assert store.get("other", "acme::Team", "a") is None

        store.remove("run", "acme::Team", "a")
        assert store.get("run", "acme::Team", "a") is None
        assert store.list_scopes() == []

    def test_get_with_other_kind(self) -> None:
        store = MemoryStateStore()
        store.put("run", "acme::Team", "a", {"id": "1"})
        with pytest.raises(KindMismatchError):
            store.get("run", "acme::ApiKey", "a")

    def test_returns_copies(self) -> None:
        store = MemoryStateStore()
        store.put("run", "acme::Team", "a", {"id": "1"})
        inst = store.get("run", "acme::Team", "a")
        assert inst is not None
        inst.output["id"] = "changed"
        again = store.get("run", "acme::Team", "a")
        assert again is not None
        assert again.output["id"] == "1"

    def test_list_declared_in_creation_order(self) -> None:
        store = MemoryStateStore()
        store.put("run", "acme::Team", "b", {})
        store.put("run", "acme::Team", "a", {})
        store.put("run", "acme::Team", "b", {"updated": True})
        assert [i.logical_id for i in store.list_declared("run")] == ["b", "a"]

    def test_remove_missing_is_noop(self) -> None:
        store = MemoryStateStore()
        store.remove("run", "acme::Team", "a")
        store.put("run", "acme::Team", "a", {})
        store.remove("run", "acme::Team", "b")
        assert len(store.list_declared("run")) == 1


class TestFileStateStore:
    def test_one_file_per_scope(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.put("suite", "acme::Team", "a", {"id": "1"})
        store.put("suite/case", "acme::Team", "b", {"id": "2"}, dependencies=["x"])

        assert store.path_for("suite").name == "suite.json"
        assert store.path_for("suite/case").name == "suite%2Fcase.json"
        assert store.path_for("suite/case").exists()
        assert store.list_scopes() == ["suite", "suite/case"]

        inst = store.get("suite/case", "acme::Team", "b")
        assert inst is not None
        assert inst.dependencies == ["x"]
        assert inst.output == {"id": "2"}

    def test_persisted_layout(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.put("run", "acme::Team", "a", {"id": "1"})

        data = json.loads(store.path_for("run").read_text())
        assert data["scope"] == "run"
        assert data["version"] == 1
        assert data["serial"] == 1
        assert data["resources"][0]["kind"] == "acme::Team"
        assert data["resources"][0]["logical_id"] == "a"
        assert data["resources"][0]["sequence"] == 0

    def test_secrets_encrypted_at_rest(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path, cipher=SecretCipher("passphrase"))
        store.put("run", "acme::ApiKey", "k", {"id": "k-1", "token": secret(TOKEN)})

        raw = store.path_for("run").read_text()
        assert TOKEN not in raw
        assert SECRET_MARKER in raw

        inst = store.get("run", "acme::ApiKey", "k")
        assert inst is not None
        assert isinstance(inst.output["token"], Secret)
        assert inst.output["token"].reveal() == TOKEN

    def test_secrets_require_cipher(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        with pytest.raises(SecretEncryptionError):
            store.put("run", "acme::ApiKey", "k", {"token": secret(TOKEN)})
        assert not store.path_for("run").exists()

    def test_load_without_decrypting(self, tmp_path: Path) -> None:
        FileStateStore(tmp_path, cipher=SecretCipher("passphrase")).put(
            "run", "acme::ApiKey", "k", {"token": secret(TOKEN)}
        )
        state = FileStateStore(tmp_path).load("run", decrypt=False)
        assert set(state.resources[0].output["token"]) == {SECRET_MARKER}

    def test_backup_written_on_overwrite(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.put("run", "acme::Team", "a", {"id": "1"})
        store.put("run", "acme::Team", "a", {"id": "2"})

        backup = Path(str(store.path_for("run")) + ".backup")
        assert json.loads(backup.read_text())["resources"][0]["output"] == {"id": "1"}

    def test_empty_scope_removes_files(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.put("run", "acme::Team", "a", {"id": "1"})
        store.put("run", "acme::Team", "a", {"id": "2"})
        store.remove("run", "acme::Team", "a")

        assert not store.path_for("run").exists()
        assert not Path(str(store.path_for("run")) + ".backup").exists()
        assert store.list_scopes() == []
        assert store.list_declared("run") == []

    def test_finished_scopes_leave_only_the_directory_lock(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        for n in range(3):
            store.put(f"case-{n}", "acme::Team", "a", {"id": str(n)})
            store.remove(f"case-{n}", "acme::Team", "a")

        assert [p.name for p in tmp_path.iterdir()] == [LOCK_FILENAME]

    def test_can_persist_secrets_follows_cipher(self, tmp_path: Path) -> None:
        assert not FileStateStore(tmp_path).can_persist_secrets
        assert FileStateStore(tmp_path, cipher=SecretCipher("pw")).can_persist_secrets
        assert MemoryStateStore().can_persist_secrets

    def test_missing_directory_lists_nothing(self, tmp_path: Path) -> None:
        assert FileStateStore(tmp_path / "nope").list_scopes() == []


class TestStateLock:
    def test_records_holder_pid(self, tmp_path: Path) -> None:
        lock = StateLock(tmp_path / "nested")
        with lock:
            assert lock.held
            assert lock.path == tmp_path / "nested" / LOCK_FILENAME
            assert lock.holder() == os.getpid()
        assert not lock.held
        assert lock.holder() is None

    def test_contended_lock_names_holder(self, tmp_path: Path) -> None:
        with StateLock(tmp_path), pytest.raises(StateLockError, match=f"pid {os.getpid()}"):
            with StateLock(tmp_path, timeout=0):
                pass

    def test_store_call_times_out_while_directory_is_held(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path, lock_timeout=0)
        with StateLock(tmp_path), pytest.raises(StateLockError):
            store.put("run", "acme::Team", "a", {"id": "1"})
        assert store.list_scopes() == []

    def test_not_reentrant(self, tmp_path: Path) -> None:
        lock = StateLock(tmp_path)
        with lock, pytest.raises(StateLockError, match="already held"):
            lock.__enter__()
