"""
Vault Crypto Core — Key derivation, encryption/decryption, and serialization.

Implements the credential store sealing:
- Store key: Argon2id(password, salt) → 32-byte AES-256 key
- Blob format: base64([nonce 12B][encrypted_payload + GCM_tag 16B])
- Session key (memory backend): HKDF(session_secret, "skydeck-session")

Security Note:
    Never log plaintext, ciphertext, passwords or keys.
    Nonces are random 96-bit, drawn fresh for every encryption.
"""
import os
import base64
import binascii
import logging

import orjson
from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..exceptions import (
    AuthenticationFailed,
    InvalidKeyLength,
    KeyDerivationError,
    StorageError,
)
from ..models import StorageSnapshot

logger = logging.getLogger("skydeck.vault")

NONCE_SIZE = 12  # 96-bit nonce
SALT_SIZE = 16
KEY_LENGTH = 32  # AES-256

# Argon2id parameters (time cost, memory in KiB, lanes)
ARGON2_TIME_COST = 2
ARGON2_MEMORY_COST = 19 * 1024
ARGON2_PARALLELISM = 1


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(password: str, salt: bytes) -> bytes:
    """Derive the 32-byte store key from a password using Argon2id.

    Deterministic for identical ``(password, salt)``, so the same key is
    recovered across process restarts.

    Args:
        password: Store password.
        salt: Persisted random salt.

    Returns:
        32-byte derived key.

    Raises:
        KeyDerivationError: If the Argon2 computation fails.
    """
    try:
        return hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=ARGON2_TIME_COST,
            memory_cost=ARGON2_MEMORY_COST,
            parallelism=ARGON2_PARALLELISM,
            hash_len=KEY_LENGTH,
            type=Type.ID,
        )
    except HashingError as err:
        raise KeyDerivationError(f"Password hashing failed: {err}") from err


def derive_session_key(seed: bytes, context: str = "skydeck-session") -> bytes:
    """Derive a 32-byte key from high-entropy material using HKDF-SHA256."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # seed is already random
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


def generate_salt() -> bytes:
    """Return 16 random bytes from the OS CSPRNG."""
    return os.urandom(SALT_SIZE)


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def _cipher(key: bytes) -> AESGCM:
    if len(key) != KEY_LENGTH:
        raise InvalidKeyLength(
            f"Key must be {KEY_LENGTH} bytes for AES-256, got {len(key)}"
        )
    return AESGCM(key)


def encrypt(plaintext: bytes, key: bytes) -> str:
    """Encrypt plaintext with AES-256-GCM under a fresh nonce.

    Format: base64([nonce 12B][encrypted_payload + GCM_tag 16B])

    Args:
        plaintext: Data to encrypt.
        key: 32-byte key.

    Returns:
        Printable base64 blob.

    Raises:
        InvalidKeyLength: If key is not 32 bytes.
    """
    cipher = _cipher(key)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, plaintext, None)
    return base64.b64encode(nonce + ct).decode("ascii")


def decrypt(blob: str, key: bytes) -> bytes:
    """Authenticate and decrypt a blob produced by :func:`encrypt`.

    Args:
        blob: base64 text ``nonce ‖ ciphertext``.
        key: 32-byte key.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        InvalidKeyLength: If key is not 32 bytes.
        AuthenticationFailed: If the blob is malformed, not canonical
            base64, truncated, or the GCM tag does not verify.
    """
    cipher = _cipher(key)
    try:
        combined = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as err:
        raise AuthenticationFailed(f"Base64 decode failed: {err}") from err
    if base64.b64encode(combined).decode("ascii") != blob:
        # non-canonical padding bits decode to the same bytes; reject them
        raise AuthenticationFailed("Base64 decode failed: non-canonical encoding")
    if len(combined) < NONCE_SIZE:
        raise AuthenticationFailed(
            f"Encrypted data too short: {len(combined)} bytes "
            f"(minimum {NONCE_SIZE})"
        )
    nonce = combined[:NONCE_SIZE]
    ct = combined[NONCE_SIZE:]
    try:
        return cipher.decrypt(nonce, ct, None)
    except InvalidTag as err:
        raise AuthenticationFailed(
            "Decryption failed: authentication tag mismatch"
        ) from err


# ---------------------------------------------------------------------------
# Snapshot serialization
# ---------------------------------------------------------------------------

def serialize_snapshot(snapshot: StorageSnapshot) -> bytes:
    """Serialize a snapshot to JSON bytes for encryption."""
    return orjson.dumps(snapshot.to_json())


def deserialize_snapshot(data: bytes) -> StorageSnapshot:
    """Parse decrypted JSON bytes back into a snapshot.

    Raises:
        StorageError: If the payload is not a valid snapshot document.
    """
    try:
        return StorageSnapshot.model_validate(orjson.loads(data))
    except (orjson.JSONDecodeError, ValueError) as err:
        raise StorageError(f"Failed to parse storage data: {err}") from err
