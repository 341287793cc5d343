"""
SessionOrchestrator — login / logout / refresh / restore flows.

Composes a :class:`CredentialStore` with :class:`SessionClient` instances
(one per PDS). The store is an explicit dependency; there is no module
level state.

Session lifecycle::

    Unauthenticated --login--> Authenticated
    Authenticated --access expiry--> Refreshing --ok--> Authenticated
    Refreshing --TokenExpired--> Unauthenticated (re-login required)
    Authenticated --logout--> Unauthenticated

Every failure is re-raised as the same error kind with the failing
operation prefixed to its message (``"Login failed: ..."``).
"""
import logging
from datetime import timedelta
from typing import Callable, Optional

from .client import SessionClient
from .conf import PasswordSource, SessionConfig
from .exceptions import AuthError, TokenExpired
from .models import Account, AuthToken, SessionTokens
from .vault.memory import MemoryStore
from .vault.persistence import PersistentStore
from .vault.storage import CredentialStore, StorageManager

logger = logging.getLogger("skydeck.session")

ClientFactory = Callable[[Optional[str]], SessionClient]


def create_storage(config: SessionConfig, password_source: PasswordSource) -> StorageManager:
    """Open the credential store selected by ``config.backend``."""
    if config.backend == "memory":
        return StorageManager(MemoryStore())
    return StorageManager(PersistentStore.open(config.data_dir, password_source()))


class SessionOrchestrator:
    """Externally invoked surface for account sessions."""

    def __init__(
        self,
        store: CredentialStore,
        config: Optional[SessionConfig] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self._store = store
        self._config = config or SessionConfig()
        self._client_factory = client_factory or self._default_client

    @classmethod
    def from_config(
        cls,
        config: SessionConfig,
        password_source: PasswordSource,
    ) -> "SessionOrchestrator":
        return cls(create_storage(config, password_source), config)

    @property
    def store(self) -> CredentialStore:
        return self._store

    def _default_client(self, server_url: Optional[str]) -> SessionClient:
        return SessionClient(
            server_url or self._config.server_url,
            timeout=self._config.request_timeout,
            max_attempts=self._config.max_attempts,
            backoff_base=self._config.backoff_base,
        )

    def _issue(self, account_id: str, tokens: SessionTokens) -> AuthToken:
        return AuthToken.issue(
            account_id,
            tokens,
            access_ttl=timedelta(minutes=self._config.access_ttl_minutes),
            refresh_ttl=timedelta(days=self._config.refresh_ttl_days),
        )

    def _find_account(self, did: str, server_url: str) -> Optional[Account]:
        for account in self._store.list_accounts():
            if account.did == did and account.server_url == server_url:
                return account
        return None

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    async def login(
        self,
        identifier: str,
        password: str,
        server_url: Optional[str] = None,
    ) -> Account:
        """Create a session and persist the account with its token.

        Logging in again with an identity already stored for the same
        server refreshes that account in place.
        """
        try:
            async with self._client_factory(server_url) as client:
                tokens = await client.with_retry(
                    lambda: client.create_session(identifier, password)
                )
                pds = client.server_url
        except AuthError as err:
            logger.warning("Login failed for %s: %s", identifier, err.kind)
            raise err.with_context("Login failed") from err

        existing = self._find_account(tokens.did, pds)
        account = Account.from_session(
            tokens,
            pds,
            account_id=existing.id if existing else None,
            created_at=existing.created_at if existing else None,
        )
        token = self._issue(account.id, tokens)
        try:
            self._store.save_account(account)
        except AuthError as err:
            raise err.with_context("Failed to save account") from err
        try:
            self._store.save_token(token)
        except AuthError as err:
            if existing is None:
                self._discard_account(account.id)
            else:
                self._restore_account(existing)
            raise err.with_context("Failed to save token") from err
        logger.info("Logged in %s (%s) as account %s", account.handle, account.did, account.id)
        return account

    add_account = login

    def _discard_account(self, account_id: str) -> None:
        try:
            self._store.delete_account(account_id)
        except AuthError as err:
            logger.error("Could not discard account %s: %s", account_id, err)

    def _restore_account(self, account: Account) -> None:
        try:
            self._store.save_account(account)
        except AuthError as err:
            logger.error("Could not restore account %s: %s", account.id, err)

    async def logout(self, account_id: str) -> None:
        """Delete the account's token, then the account itself."""
        try:
            self._store.delete_token(account_id)
        except AuthError as err:
            raise err.with_context("Failed to delete token") from err
        try:
            self._store.delete_account(account_id)
        except AuthError as err:
            raise err.with_context("Failed to delete account") from err
        logger.info("Logged out account %s", account_id)

    async def logout_all(self) -> None:
        try:
            self._store.clear_all()
        except AuthError as err:
            raise err.with_context("Logout failed") from err

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_session(self, account_id: str) -> AuthToken:
        """Exchange the stored refresh token for a new token pair.

        The stored token is only replaced after the server answered with
        a new pair; on any failure it is left untouched.
        """
        try:
            old_token = self._store.get_token(account_id)
            account = self._store.get_account(account_id)
        except AuthError as err:
            raise err.with_context("Refresh failed") from err
        try:
            async with self._client_factory(account.server_url) as client:
                tokens = await client.with_retry(
                    lambda: client.refresh_session(old_token.refresh_jwt)
                )
        except AuthError as err:
            logger.warning("Refresh failed for account %s: %s", account_id, err.kind)
            raise err.with_context("Refresh failed") from err

        new_token = self._issue(account_id, tokens)
        try:
            self._store.save_token(new_token)
        except AuthError as err:
            raise err.with_context("Failed to save token") from err
        return new_token

    async def get_valid_token(self, account_id: str) -> AuthToken:
        """Return a token whose access credential is still valid.

        Refreshes when the access token has expired. A refresh token that
        has already expired locally raises ``TokenExpired`` without a
        round trip.
        """
        try:
            token = self._store.get_token(account_id)
        except AuthError as err:
            raise err.with_context("Refresh failed") from err
        if not token.is_access_expired():
            return token
        if token.is_refresh_expired():
            raise TokenExpired(
                "Refresh failed: refresh token expired, sign in again"
            )
        return await self.refresh_session(account_id)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def restore_sessions(self) -> list[Account]:
        """All stored accounts, most recently used first."""
        try:
            accounts = self._store.list_accounts()
        except AuthError as err:
            raise err.with_context("Failed to list accounts") from err
        return sorted(accounts, key=lambda acc: acc.last_used_at, reverse=True)

    async def list_accounts(self) -> list[Account]:
        try:
            accounts = self._store.list_accounts()
        except AuthError as err:
            raise err.with_context("Failed to list accounts") from err
        return sorted(accounts, key=lambda acc: acc.created_at)

    async def switch_account(self, account_id: str) -> Account:
        """Mark ``account_id`` active (and used now); the others inactive."""
        try:
            target = self._store.get_account(account_id).touch(active=True)
            for account in self._store.list_accounts():
                if account.id != account_id and account.is_active:
                    self._store.save_account(account.model_copy(update={"is_active": False}))
            self._store.save_account(target)
        except AuthError as err:
            raise err.with_context("Failed to switch account") from err
        return target
