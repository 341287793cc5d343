"""
Memory Store — session-scoped snapshot storage.

For platforms that delegate durable secret storage to a separate vault,
the snapshot only lives for the process lifetime. It is still kept sealed:
the serialized snapshot is encrypted with AES-GCM under a key derived by
HKDF from a per-instance random secret, so plaintext tokens are only
materialized while a snapshot is being loaded.

Security Note (Threat Model):
    A memory dump of the process exposes the session secret together with
    the sealed blob, from which plaintext can be recovered. This is an
    accepted limitation, as for any in-process secret.
"""
import os
import logging
from typing import Optional

from ..models import StorageSnapshot
from .crypto import (
    KEY_LENGTH,
    decrypt,
    derive_session_key,
    deserialize_snapshot,
    encrypt,
    serialize_snapshot,
)

logger = logging.getLogger("skydeck.vault")


class MemoryStore:
    """Snapshot storage that never touches disk."""

    def __init__(self, session_secret: Optional[bytes] = None) -> None:
        secret = session_secret or os.urandom(KEY_LENGTH)
        self._key = derive_session_key(secret)
        self._sealed: Optional[str] = None

    def load(self) -> StorageSnapshot:
        if self._sealed is None:
            return StorageSnapshot()
        return deserialize_snapshot(decrypt(self._sealed, self._key))

    def save(self, snapshot: StorageSnapshot) -> None:
        self._sealed = encrypt(serialize_snapshot(snapshot), self._key)

    def clear(self) -> None:
        self._sealed = None
        logger.debug("Session-scoped store cleared")
