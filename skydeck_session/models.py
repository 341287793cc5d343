"""
Domain records persisted by the credential store.

``Account`` and ``AuthToken`` are serialized with camelCase keys; the
``StorageSnapshot`` wrapping both maps is the only structure ever written
to disk, always as a whole.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ACCESS_TOKEN_TTL = timedelta(minutes=90)
REFRESH_TOKEN_TTL = timedelta(days=60)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class SessionTokens(_Record):
    """Response body of createSession / refreshSession."""

    access_jwt: str
    refresh_jwt: str
    did: str
    handle: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar: Optional[str] = None

    def __repr__(self) -> str:
        # JWTs stay out of reprs and tracebacks
        return f"<SessionTokens did={self.did!r} handle={self.handle!r}>"


class Account(_Record):
    """A logged-in identity on a PDS."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    did: str
    handle: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    server_url: str
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime = Field(default_factory=utcnow)
    is_active: bool = True

    @classmethod
    def from_session(
        cls,
        tokens: SessionTokens,
        server_url: str,
        account_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> "Account":
        now = utcnow()
        data = {
            "did": tokens.did,
            "handle": tokens.handle,
            "email": tokens.email,
            "display_name": tokens.display_name,
            "avatar": tokens.avatar,
            "server_url": server_url,
            "created_at": created_at or now,
            "last_used_at": now,
            "is_active": True,
        }
        if account_id:
            data["id"] = account_id
        return cls(**data)

    def touch(self, active: bool = True) -> "Account":
        """Copy with a fresh ``last_used_at`` and the given active flag."""
        return self.model_copy(update={"last_used_at": utcnow(), "is_active": active})


class AuthToken(_Record):
    """Access/refresh credential pair for one account."""

    account_id: str
    access_jwt: str
    refresh_jwt: str
    issued_at: datetime
    access_expires_at: datetime
    refresh_expires_at: datetime
    session_string: Optional[str] = None

    @classmethod
    def issue(
        cls,
        account_id: str,
        tokens: SessionTokens,
        now: Optional[datetime] = None,
        access_ttl: timedelta = ACCESS_TOKEN_TTL,
        refresh_ttl: timedelta = REFRESH_TOKEN_TTL,
    ) -> "AuthToken":
        now = now or utcnow()
        return cls(
            account_id=account_id,
            access_jwt=tokens.access_jwt,
            refresh_jwt=tokens.refresh_jwt,
            issued_at=now,
            access_expires_at=now + access_ttl,
            refresh_expires_at=now + refresh_ttl,
        )

    def is_access_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.access_expires_at

    def is_refresh_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.refresh_expires_at

    def __repr__(self) -> str:
        return (
            f"<AuthToken account={self.account_id!r} "
            f"access_expires_at={self.access_expires_at.isoformat()}>"
        )


class StorageSnapshot(BaseModel):
    """Unit of persistence: every account and token, keyed by account id."""

    accounts: dict[str, Account] = Field(default_factory=dict)
    tokens: dict[str, AuthToken] = Field(default_factory=dict)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @property
    def empty(self) -> bool:
        return not self.accounts and not self.tokens
