"""SkyDeck Session.

AT Protocol session management with an encrypted local credential store.
"""
from .version import __version__
from .conf import (
    SessionConfig,
    env_password_source,
    static_password_source,
    generate_store_password,
)
from .exceptions import (
    AuthError,
    InvalidCredentials,
    NetworkError,
    ServerError,
    TokenExpired,
    InvalidServerUrl,
    AccountNotFound,
    StorageError,
    Unknown,
)
from .models import Account, AuthToken, SessionTokens, StorageSnapshot
from .client import SessionClient, normalize_server_url
from .orchestrator import SessionOrchestrator, create_storage

__all__ = [
    "__version__",
    "SessionConfig",
    "env_password_source",
    "static_password_source",
    "generate_store_password",
    "AuthError",
    "InvalidCredentials",
    "NetworkError",
    "ServerError",
    "TokenExpired",
    "InvalidServerUrl",
    "AccountNotFound",
    "StorageError",
    "Unknown",
    "Account",
    "AuthToken",
    "SessionTokens",
    "StorageSnapshot",
    "SessionClient",
    "normalize_server_url",
    "SessionOrchestrator",
    "create_storage",
]
