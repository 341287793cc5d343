"""Authentication and storage errors.

Every failure surfaced to the UI layer is an ``AuthError`` carrying a
``kind`` (stable snake_case identifier) and a human-readable message.
Messages never include passwords, tokens or key material.
"""
from typing import Any, Optional


class AuthError(Exception):
    """Base error for session and credential-store failures."""

    kind: str = "unknown"
    title: str = "Unknown error"

    def __init__(self, message: str = "", **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        if self.message:
            return f"{self.title}: {self.message}"
        return self.title

    def with_context(self, prefix: str) -> "AuthError":
        """Return an error of the same kind with ``prefix`` prepended."""
        err = type(self).__new__(type(self))
        AuthError.__init__(err, f"{prefix}: {self.message or self.title}", **self.context)
        for key, value in vars(self).items():
            if key not in ("message", "context"):
                setattr(err, key, value)
        return err

    def as_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": str(self)}


class InvalidCredentials(AuthError):
    kind = "invalid_credentials"
    title = "Invalid credentials"


class NetworkError(AuthError):
    """Transient transport failure (timeout, refused connection)."""
    kind = "network_error"
    title = "Network error"


class ServerError(AuthError):
    kind = "server_error"
    title = "Server error"

    def __init__(
        self,
        message: str = "",
        status: Optional[int] = None,
        body: Optional[str] = None,
        **context: Any
    ) -> None:
        self.status = status
        self.body = body
        super().__init__(message, **context)


class TokenExpired(AuthError):
    """The refresh token was rejected; an interactive login is required."""
    kind = "token_expired"
    title = "Token expired"


class InvalidServerUrl(AuthError):
    kind = "invalid_server_url"
    title = "Invalid server URL"


class AccountNotFound(AuthError):
    kind = "account_not_found"
    title = "Account not found"

    def __init__(self, account_id: str = "", **context: Any) -> None:
        self.account_id = account_id
        super().__init__(account_id, **context)


class StorageError(AuthError):
    """Key derivation, encryption or file I/O failure."""
    kind = "storage_error"
    title = "Storage error"


class KeyDerivationError(StorageError):
    pass


class InvalidKeyLength(StorageError):
    pass


class AuthenticationFailed(StorageError):
    """Ciphertext is truncated, tampered with, or sealed under another key."""


class Unknown(AuthError):
    pass
