"""
Tests for StorageManager over both backends.

Tests cover:
- Account/token CRUD and AccountNotFound on misses
- Whole-snapshot flush after each mutation
- Rollback when a flush fails
- Concurrent writers never lose a mutation
- Capability contract shared by file and memory backends
"""
import threading

import pytest

from skydeck_session.exceptions import AccountNotFound, StorageError
from skydeck_session.models import Account, AuthToken, SessionTokens, StorageSnapshot
from skydeck_session.vault.memory import MemoryStore
from skydeck_session.vault.persistence import PersistentStore
from skydeck_session.vault.storage import (
    CredentialStore,
    SnapshotStore,
    StorageManager,
)


def make_account(handle: str = "u.test", did: str = "did:plc:x") -> Account:
    return Account(did=did, handle=handle, server_url="https://bsky.social")


def make_token(account_id: str, access: str = "a", refresh: str = "r") -> AuthToken:
    tokens = SessionTokens(access_jwt=access, refresh_jwt=refresh, did="did:plc:x", handle="u.test")
    return AuthToken.issue(account_id, tokens)


class FailingStore:
    """Backend whose saves can be switched to fail."""

    def __init__(self):
        self.saved: list[StorageSnapshot] = []
        self.fail = False

    def load(self) -> StorageSnapshot:
        return StorageSnapshot()

    def save(self, snapshot: StorageSnapshot) -> None:
        if self.fail:
            raise StorageError("disk full")
        self.saved.append(snapshot)

    def clear(self) -> None:
        if self.fail:
            raise StorageError("read-only filesystem")
        self.saved.clear()


class GatedStore:
    """Backend whose first save blocks until released, then fails."""

    def __init__(self):
        self.saved: list[StorageSnapshot] = []
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def load(self) -> StorageSnapshot:
        return StorageSnapshot()

    def save(self, snapshot: StorageSnapshot) -> None:
        self.calls += 1
        if self.calls == 1:
            self.entered.set()
            self.release.wait(5)
            raise StorageError("disk full")
        self.saved.append(snapshot)

    def clear(self) -> None:
        self.saved.clear()


@pytest.fixture(params=["file", "memory"])
def manager(request, store_dir):
    if request.param == "file":
        return StorageManager(PersistentStore.open(store_dir, "test_password"))
    return StorageManager(MemoryStore())


class TestContract:
    """Both backends satisfy the same capability interfaces."""

    def test_backends_are_snapshot_stores(self, store_dir):
        assert isinstance(MemoryStore(), SnapshotStore)
        assert isinstance(PersistentStore.open(store_dir, "pw"), SnapshotStore)

    def test_manager_is_credential_store(self, manager):
        assert isinstance(manager, CredentialStore)


class TestAccounts:
    """Account operations."""

    def test_save_and_get(self, manager):
        account = make_account()
        manager.save_account(account)
        assert manager.get_account(account.id) == account

    def test_get_missing_raises(self, manager):
        with pytest.raises(AccountNotFound) as exc:
            manager.get_account("nope")
        assert exc.value.account_id == "nope"
        assert str(exc.value) == "Account not found: nope"

    def test_list_accounts(self, manager):
        first, second = make_account("a.test"), make_account("b.test")
        manager.save_account(first)
        manager.save_account(second)
        assert {a.id for a in manager.list_accounts()} == {first.id, second.id}

    def test_delete_account(self, manager):
        account = make_account()
        manager.save_account(account)
        manager.delete_account(account.id)
        with pytest.raises(AccountNotFound):
            manager.get_account(account.id)

    def test_delete_missing_account_is_noop(self, manager):
        manager.delete_account("nope")
        assert manager.list_accounts() == []

    def test_returned_records_are_copies(self, manager):
        account = make_account()
        manager.save_account(account)
        fetched = manager.get_account(account.id)
        fetched.is_active = False
        assert manager.get_account(account.id).is_active is True


class TestTokens:
    """Token operations."""

    def test_save_and_get(self, manager):
        token = make_token("acc-1")
        manager.save_token(token)
        assert manager.get_token("acc-1") == token

    def test_replace_is_full_overwrite(self, manager):
        manager.save_token(make_token("acc-1", access="old", refresh="old-r"))
        manager.save_token(make_token("acc-1", access="new", refresh="new-r"))
        token = manager.get_token("acc-1")
        assert (token.access_jwt, token.refresh_jwt) == ("new", "new-r")

    def test_missing_token_raises(self, manager):
        with pytest.raises(AccountNotFound):
            manager.get_token("acc-1")

    def test_delete_token(self, manager):
        manager.save_token(make_token("acc-1"))
        manager.delete_token("acc-1")
        with pytest.raises(AccountNotFound):
            manager.get_token("acc-1")


class TestPersistence:
    """Mutations flush the whole snapshot."""

    def test_reopen_sees_mutations(self, store_dir):
        manager = StorageManager(PersistentStore.open(store_dir, "test_password"))
        account = make_account()
        manager.save_account(account)
        manager.save_token(make_token(account.id))

        reopened = StorageManager(PersistentStore.open(store_dir, "test_password"))
        assert reopened.get_account(account.id) == account
        assert reopened.get_token(account.id).access_jwt == "a"

    def test_every_mutation_writes_full_snapshot(self):
        backend = FailingStore()
        manager = StorageManager(backend)
        account = make_account()
        manager.save_account(account)
        manager.save_token(make_token(account.id))
        assert len(backend.saved) == 2
        last = backend.saved[-1]
        assert set(last.accounts) == {account.id}
        assert set(last.tokens) == {account.id}

    def test_reads_do_not_touch_backend(self):
        backend = FailingStore()
        manager = StorageManager(backend)
        manager.save_account(make_account())
        count = len(backend.saved)
        manager.list_accounts()
        assert len(backend.saved) == count

    def test_corrupt_store_is_not_masked(self, store_dir):
        manager = StorageManager(PersistentStore.open(store_dir, "test_password"))
        manager.save_account(make_account())
        with pytest.raises(StorageError):
            StorageManager(PersistentStore.open(store_dir, "wrong_password"))

    def test_clear_all(self, store_dir):
        manager = StorageManager(PersistentStore.open(store_dir, "test_password"))
        account = make_account()
        manager.save_account(account)
        manager.save_token(make_token(account.id))
        manager.clear_all()
        assert manager.list_accounts() == []
        assert not (store_dir / "storage.enc").exists()
        manager.save_account(account)
        reopened = StorageManager(PersistentStore.open(store_dir, "test_password"))
        assert reopened.get_account(account.id) == account


class TestRollback:
    """Failed flushes leave memory unchanged."""

    def test_failed_save_rolls_back_new_account(self):
        backend = FailingStore()
        manager = StorageManager(backend)
        backend.fail = True
        account = make_account()
        with pytest.raises(StorageError):
            manager.save_account(account)
        assert manager.list_accounts() == []

    def test_failed_save_restores_previous_token(self):
        backend = FailingStore()
        manager = StorageManager(backend)
        manager.save_token(make_token("acc-1", access="old"))
        backend.fail = True
        with pytest.raises(StorageError):
            manager.save_token(make_token("acc-1", access="new"))
        assert manager.get_token("acc-1").access_jwt == "old"

    def test_failed_delete_restores_account(self):
        backend = FailingStore()
        manager = StorageManager(backend)
        account = make_account()
        manager.save_account(account)
        backend.fail = True
        with pytest.raises(StorageError):
            manager.delete_account(account.id)
        assert manager.get_account(account.id) == account

    def test_failed_clear_restores_snapshot(self):
        backend = FailingStore()
        manager = StorageManager(backend)
        account = make_account()
        manager.save_account(account)
        backend.fail = True
        with pytest.raises(StorageError):
            manager.clear_all()
        assert manager.get_account(account.id) == account


class TestConcurrency:
    """Concurrent writers against one store instance."""

    def test_concurrent_saves_are_all_persisted(self, store_dir):
        manager = StorageManager(PersistentStore.open(store_dir, "test_password"))
        accounts = [make_account(f"user{i}.test", did=f"did:plc:{i}") for i in range(16)]
        threads = [
            threading.Thread(target=manager.save_account, args=(account,))
            for account in accounts
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        expected = {a.id for a in accounts}
        assert {a.id for a in manager.list_accounts()} == expected
        reopened = StorageManager(PersistentStore.open(store_dir, "test_password"))
        assert {a.id for a in reopened.list_accounts()} == expected

    def test_failed_flush_does_not_undo_concurrent_writer(self):
        """A rolled-back write never reverts a later writer's change to the same id."""
        backend = GatedStore()
        manager = StorageManager(backend)
        first = make_account("a.test")
        second = first.model_copy(update={"handle": "b.test"})
        errors = []

        def write_first():
            try:
                manager.save_account(first)
            except StorageError as err:
                errors.append(err)

        writer_a = threading.Thread(target=write_first)
        writer_a.start()
        assert backend.entered.wait(5)
        writer_b = threading.Thread(target=manager.save_account, args=(second,))
        writer_b.start()
        writer_b.join(timeout=0.2)
        backend.release.set()
        writer_a.join(5)
        writer_b.join(5)

        assert len(errors) == 1
        assert manager.get_account(first.id).handle == "b.test"
        assert backend.saved[-1].accounts[first.id].handle == "b.test"
