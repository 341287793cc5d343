"""
Session Configuration — validated settings and store password sources.

Reads settings from environment variables:
    SKYDECK_DATA_DIR = <directory holding salt.bin and storage.enc>
    SKYDECK_SERVER_URL = <default PDS, e.g. bsky.social>
    SKYDECK_REQUEST_TIMEOUT = <seconds>
    SKYDECK_STORAGE_BACKEND = file | memory
    SKYDECK_STORE_PASSWORD = <secret used to derive the store key>

Security Note:
    Never log the store password. Only log the variable name it came from.
"""
import os
import secrets
import logging
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, Field, field_validator

from .exceptions import StorageError

logger = logging.getLogger("skydeck.vault")

DEFAULT_SERVER_URL = "https://bsky.social"
PASSWORD_ENV_VAR = "SKYDECK_STORE_PASSWORD"

PasswordSource = Callable[[], str]


def env_password_source(var: str = PASSWORD_ENV_VAR) -> PasswordSource:
    """Build a source reading the store password from ``var``.

    The variable is read lazily, when the store is opened.
    """
    def _source() -> str:
        value = os.environ.get(var)
        if not value:
            raise StorageError(
                f"{var} environment variable is not set"
            )
        logger.debug("Store password read from %s", var)
        return value
    return _source


def static_password_source(password: str) -> PasswordSource:
    """Source returning a fixed password (tests, OS keychain glue)."""
    if not password:
        raise ValueError("Store password cannot be empty")
    return lambda: password


def generate_store_password() -> str:
    """Generate a random store password.

    This is a utility for operators provisioning a new data directory.
    """
    return secrets.token_urlsafe(32)


def default_data_dir() -> Path:
    base = os.environ.get("XDG_DATA_HOME") or os.path.join(
        os.path.expanduser("~"), ".local", "share"
    )
    return Path(base) / "skydeck"


class SessionConfig(BaseModel):
    """Validated session/storage configuration."""

    data_dir: Path = Field(default_factory=default_data_dir)
    server_url: str = Field(default=DEFAULT_SERVER_URL)
    request_timeout: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff_base: float = Field(default=1.0, ge=0)
    access_ttl_minutes: int = Field(default=90, ge=1)
    refresh_ttl_days: int = Field(default=60, ge=1)
    backend: str = Field(default="file")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate storage backend is supported."""
        v = v.lower()
        if v not in ("file", "memory"):
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """Create SessionConfig by loading values from environment.

        Unset variables fall back to the model defaults.
        """
        values: dict = {}
        data_dir = os.environ.get("SKYDECK_DATA_DIR")
        if data_dir:
            values["data_dir"] = Path(data_dir)
        server_url = os.environ.get("SKYDECK_SERVER_URL")
        if server_url:
            values["server_url"] = server_url
        timeout = os.environ.get("SKYDECK_REQUEST_TIMEOUT")
        if timeout:
            values["request_timeout"] = float(timeout)
        backend = os.environ.get("SKYDECK_STORAGE_BACKEND")
        if backend:
            values["backend"] = backend
        return cls(**values)
