"""
StorageManager — in-memory credential cache synchronized with a backend.

Every mutation follows the same protocol: take the cache lock, apply the
change to the in-memory snapshot, release the lock, then flush the whole
snapshot through the backend. Writers are serialized by a flush lock held
from apply to flush (and undo), so the file on disk reflects the last
completed mutation. If a flush fails the mutation is rolled back in memory
and the error propagates; a call either lands in memory and on disk or in
neither, and a rollback only ever reverts its own change.

Reads never touch the backend.

Security Note:
    Never log tokens. Only log account ids and operation names.
"""
import threading
import logging
from typing import Callable, Protocol, runtime_checkable

from ..exceptions import AccountNotFound, AuthError, StorageError
from ..models import Account, AuthToken, StorageSnapshot

logger = logging.getLogger("skydeck.vault")

_Undo = Callable[[], None]


@runtime_checkable
class SnapshotStore(Protocol):
    """Backend persisting a whole :class:`StorageSnapshot`."""

    def load(self) -> StorageSnapshot:
        ...

    def save(self, snapshot: StorageSnapshot) -> None:
        ...

    def clear(self) -> None:
        ...


@runtime_checkable
class CredentialStore(Protocol):
    """Account/token contract the session orchestrator depends on."""

    def save_account(self, account: Account) -> None:
        ...

    def get_account(self, account_id: str) -> Account:
        ...

    def list_accounts(self) -> list[Account]:
        ...

    def delete_account(self, account_id: str) -> None:
        ...

    def save_token(self, token: AuthToken) -> None:
        ...

    def get_token(self, account_id: str) -> AuthToken:
        ...

    def delete_token(self, account_id: str) -> None:
        ...

    def clear_all(self) -> None:
        ...


class StorageManager:
    """Credential cache over any :class:`SnapshotStore` backend."""

    def __init__(self, backend: SnapshotStore) -> None:
        self._backend = backend
        self._lock = threading.Lock()  # guards _snapshot
        self._flush_lock = threading.Lock()  # serializes backend writes
        self._snapshot = backend.load()
        logger.info(
            "Credential store ready: %d account(s)", len(self._snapshot.accounts),
        )

    @property
    def backend(self) -> SnapshotStore:
        return self._backend

    # ------------------------------------------------------------------
    # Flush helpers
    # ------------------------------------------------------------------

    def _mutate(self, operation: str, apply: Callable[[StorageSnapshot], _Undo]) -> None:
        # held through undo: no other writer may touch the snapshot meanwhile
        with self._flush_lock:
            with self._lock:
                undo = apply(self._snapshot)
                snapshot = self._snapshot.model_copy(deep=True)
            try:
                self._backend.save(snapshot)
            except AuthError:
                with self._lock:
                    undo()
                logger.error("Store flush failed during %s; change rolled back", operation)
                raise
            except OSError as err:
                with self._lock:
                    undo()
                raise StorageError(f"Failed to persist {operation}: {err}") from err

    @staticmethod
    def _put(mapping: dict, key: str, value) -> _Undo:
        missing = object()
        previous = mapping.get(key, missing)
        mapping[key] = value

        def undo() -> None:
            if previous is missing:
                mapping.pop(key, None)
            else:
                mapping[key] = previous
        return undo

    @staticmethod
    def _pop(mapping: dict, key: str) -> _Undo:
        missing = object()
        previous = mapping.pop(key, missing)

        def undo() -> None:
            if previous is not missing:
                mapping[key] = previous
        return undo

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def save_account(self, account: Account) -> None:
        self._mutate(
            "save_account",
            lambda snap: self._put(snap.accounts, account.id, account.model_copy()),
        )
        logger.debug("Account saved: %s", account.id)

    def get_account(self, account_id: str) -> Account:
        with self._lock:
            account = self._snapshot.accounts.get(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account.model_copy()

    def list_accounts(self) -> list[Account]:
        with self._lock:
            return [acc.model_copy() for acc in self._snapshot.accounts.values()]

    def delete_account(self, account_id: str) -> None:
        self._mutate(
            "delete_account",
            lambda snap: self._pop(snap.accounts, account_id),
        )
        logger.debug("Account deleted: %s", account_id)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def save_token(self, token: AuthToken) -> None:
        """Store ``token``, fully replacing any previous token of the account."""
        self._mutate(
            "save_token",
            lambda snap: self._put(snap.tokens, token.account_id, token.model_copy()),
        )
        logger.debug("Token saved for account %s", token.account_id)

    def get_token(self, account_id: str) -> AuthToken:
        with self._lock:
            token = self._snapshot.tokens.get(account_id)
        if token is None:
            raise AccountNotFound(account_id)
        return token.model_copy()

    def delete_token(self, account_id: str) -> None:
        self._mutate(
            "delete_token",
            lambda snap: self._pop(snap.tokens, account_id),
        )
        logger.debug("Token deleted for account %s", account_id)

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def clear_all(self) -> None:
        """Drop every account and token, in memory and in the backend."""
        with self._flush_lock:
            with self._lock:
                previous = self._snapshot
                self._snapshot = StorageSnapshot()
            try:
                self._backend.clear()
            except AuthError:
                with self._lock:
                    self._snapshot = previous
                raise
        logger.info("Credential store cleared")
