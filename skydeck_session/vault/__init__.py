"""Credential Vault — Encrypted storage for AT Protocol accounts and tokens.

Security Note (Threat Model):
    The store key and decrypted tokens live in process memory for the
    process lifetime. A memory dump of the application process exposes
    them. This is an accepted limitation; mitigation requires delegating
    to an OS keychain or secure enclave, which is out of scope.
"""

from .crypto import derive_key, generate_salt, encrypt, decrypt
from .persistence import PersistentStore
from .memory import MemoryStore
from .storage import CredentialStore, SnapshotStore, StorageManager

__all__ = [
    "derive_key",
    "generate_salt",
    "encrypt",
    "decrypt",
    "PersistentStore",
    "MemoryStore",
    "CredentialStore",
    "SnapshotStore",
    "StorageManager",
]
