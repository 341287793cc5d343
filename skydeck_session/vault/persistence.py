"""
Persistent Store — encrypted snapshot file plus its salt.

Layout of the data directory::

    salt.bin      16 raw random bytes, written once, never regenerated
    storage.enc   base64(nonce ‖ AES-GCM ciphertext) of the JSON snapshot

Writes go to a sibling temporary file which is fsync'ed and then renamed
over ``storage.enc``, so a crash mid-write leaves the previous file intact.
"""
import os
import logging
import tempfile
from pathlib import Path
from typing import Union

from ..exceptions import StorageError
from ..models import StorageSnapshot
from .crypto import (
    SALT_SIZE,
    decrypt,
    derive_key,
    deserialize_snapshot,
    encrypt,
    generate_salt,
    serialize_snapshot,
)

logger = logging.getLogger("skydeck.vault")

DATA_FILE = "storage.enc"
SALT_FILE = "salt.bin"


class PersistentStore:
    """Durable, encrypted snapshot storage in a single directory.

    Use :meth:`open` to build an instance; it loads (or creates) the salt
    and derives the store key once. The key lives only in this object.
    """

    def __init__(self, directory: Path, salt: bytes, key: bytes) -> None:
        self._directory = directory
        self._data_file = directory / DATA_FILE
        self._salt_file = directory / SALT_FILE
        self._salt = salt
        self._key = key

    @classmethod
    def open(cls, directory: Union[str, Path], password: str) -> "PersistentStore":
        """Open (or initialize) the store under ``directory``.

        Raises:
            KeyDerivationError: If the key cannot be derived.
            StorageError: On any file I/O failure.
        """
        directory = Path(directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise StorageError(
                f"Failed to create data directory: {err}"
            ) from err
        salt = cls._load_or_create_salt(directory / SALT_FILE)
        key = derive_key(password, salt)
        logger.debug("Store opened at %s", directory)
        return cls(directory, salt, key)

    @staticmethod
    def _load_or_create_salt(salt_file: Path) -> bytes:
        if salt_file.exists():
            try:
                salt = salt_file.read_bytes()
            except OSError as err:
                raise StorageError(f"Failed to read salt file: {err}") from err
            if len(salt) != SALT_SIZE:
                raise StorageError(
                    f"Salt file is {len(salt)} bytes, expected {SALT_SIZE}"
                )
            return salt
        salt = generate_salt()
        try:
            _atomic_write(salt_file, salt)
        except OSError as err:
            raise StorageError(f"Failed to write salt file: {err}") from err
        logger.info("Generated new store salt at %s", salt_file)
        return salt

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def data_file(self) -> Path:
        return self._data_file

    @property
    def salt_file(self) -> Path:
        return self._salt_file

    def load(self) -> StorageSnapshot:
        """Read and decrypt the snapshot.

        A missing data file is a first run and yields an empty snapshot.
        Any decryption or parse failure raises; it is never masked as an
        empty store.
        """
        if not self._data_file.exists():
            return StorageSnapshot()
        try:
            blob = self._data_file.read_text(encoding="ascii")
        except (OSError, UnicodeDecodeError) as err:
            raise StorageError(f"Failed to read storage file: {err}") from err
        try:
            plaintext = decrypt(blob.strip(), self._key)
        except StorageError as err:
            raise err.with_context("Failed to load store") from err
        snapshot = deserialize_snapshot(plaintext)
        logger.debug(
            "Loaded snapshot: %d account(s), %d token(s)",
            len(snapshot.accounts), len(snapshot.tokens),
        )
        return snapshot

    def save(self, snapshot: StorageSnapshot) -> None:
        """Encrypt and atomically replace the data file."""
        try:
            blob = encrypt(serialize_snapshot(snapshot), self._key)
        except (TypeError, ValueError) as err:
            raise StorageError(
                f"Failed to serialize storage data: {err}"
            ) from err
        try:
            if not self._salt_file.exists():
                # restored after clear(); the held key is bound to this salt
                _atomic_write(self._salt_file, self._salt)
            _atomic_write(self._data_file, blob.encode("ascii"))
        except OSError as err:
            raise StorageError(f"Failed to write storage file: {err}") from err

    def clear(self) -> None:
        """Delete the data and salt files. Missing files are not an error."""
        for path in (self._data_file, self._salt_file):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as err:
                raise StorageError(
                    f"Failed to delete {path.name}: {err}"
                ) from err
        logger.info("Store cleared at %s", self._directory)


def _atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to a sibling temp file, fsync, then rename over ``path``."""
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
