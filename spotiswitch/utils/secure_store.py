#!/usr/bin/env python3
"""
🔐 Encrypted blob persistence for SpotiSwitch
Each named record (token, device, history) lives in its own file under the
data directory and is sealed with its own Fernet key. The key is derived from
a stable machine identifier plus a random salt kept next to the record, so a
copied data directory is useless on another machine.
"""

import base64
import hashlib
import json
import logging
import os
import platform
import secrets
from pathlib import Path
from typing import Any, Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..core.errors import StorageCorruption

logger = logging.getLogger("spotiswitch.storage")

_BLOB_PREFIX = b"ENC:1:"
_KDF_ITERATIONS = 200_000


class BlobCipher(Protocol):
    """Capability used by SecureBlobStore; any secure-storage backend fits."""

    def encrypt(self, data: bytes) -> bytes: ...

    def decrypt(self, data: bytes) -> bytes: ...

    def delete_key(self) -> None: ...


def _get_machine_id() -> str:
    """Build a stable machine identifier for key derivation.

    Combines /etc/machine-id where it exists, the host name and the login name.
    """
    components = []

    machine_id_path = Path("/etc/machine-id")
    if machine_id_path.exists():
        try:
            components.append(machine_id_path.read_text().strip())
        except OSError:
            pass

    components.append(str(platform.node()))
    components.append(os.getenv("USER", os.getenv("USERNAME", "default")))

    return hashlib.sha256(":".join(components).encode()).hexdigest()


def _derive_key(machine_id: str, salt: bytes) -> bytes:
    """Derive a urlsafe-base64 32-byte Fernet key."""
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=_KDF_ITERATIONS)
    return base64.urlsafe_b64encode(kdf.derive(machine_id.encode()))


class MachineKeyCipher:
    """Fernet cipher whose key is bound to this machine.

    Args:
        key_path: File holding the salt and a short machine fingerprint
        machine_id: Override for tests; defaults to the host identifier
    """

    def __init__(self, key_path: Path, machine_id: Optional[str] = None):
        self._key_path = Path(key_path)
        self._machine_id = machine_id or _get_machine_id()
        self._fernet: Optional[Fernet] = None

    def _load_or_create_key(self) -> bytes:
        machine_hash = hashlib.sha256(self._machine_id.encode()).hexdigest()[:16]

        if self._key_path.exists():
            try:
                key_data = json.loads(self._key_path.read_text())
                if key_data.get("machine_hash") != machine_hash:
                    raise ValueError("machine changed")
                return _derive_key(self._machine_id, bytes.fromhex(key_data["salt"]))
            except (json.JSONDecodeError, KeyError, ValueError, OSError) as e:
                logger.warning("storage.key.regenerate", extra={"key_file": self._key_path.name, "reason": str(e)})

        salt = secrets.token_bytes(32)
        key_data = {"salt": salt.hex(), "machine_hash": machine_hash, "version": 1}

        self._key_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._key_path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(key_data))
            os.replace(tmp_path, self._key_path)
            os.chmod(self._key_path, 0o600)
        except OSError as e:
            logger.error("storage.key.write_failed", extra={"key_file": self._key_path.name, "error": str(e)})
            tmp_path.unlink(missing_ok=True)
            raise

        return _derive_key(self._machine_id, salt)

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def encrypt(self, data: bytes) -> bytes:
        return _BLOB_PREFIX + self._get_fernet().encrypt(data)

    def decrypt(self, data: bytes) -> bytes:
        if not data.startswith(_BLOB_PREFIX):
            raise StorageCorruption("missing blob header")
        try:
            return self._get_fernet().decrypt(data[len(_BLOB_PREFIX):])
        except InvalidToken as e:
            raise StorageCorruption("blob failed authentication") from e

    def delete_key(self) -> None:
        self._fernet = None
        try:
            self._key_path.unlink()
        except FileNotFoundError:
            pass


class SecureBlobStore:
    """Encrypt-persist-decrypt wrapper around a single named record.

    Writes go to a temp file and are moved into place with ``os.replace`` so
    a crash mid-write never leaves a half-written record behind.
    """

    def __init__(self, path: Path, cipher: BlobCipher, name: Optional[str] = None):
        self.path = Path(path)
        self.name = name or self.path.stem
        self._cipher = cipher

    @classmethod
    def in_directory(cls, data_dir: Path, name: str) -> "SecureBlobStore":
        """Build the store for ``name`` with a per-record machine-bound key."""
        data_dir = Path(data_dir)
        cipher = MachineKeyCipher(data_dir / f".{name}.key")
        return cls(data_dir / f"{name}.enc", cipher, name=name)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> Optional[bytes]:
        """Return the decrypted payload, ``None`` if nothing is stored.

        Raises:
            StorageCorruption: The record exists but cannot be decrypted
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageCorruption(f"{self.name}: unreadable ({e})") from e
        return self._cipher.decrypt(raw)

    def write(self, payload: bytes) -> None:
        sealed = self._cipher.encrypt(payload)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        try:
            with tmp_path.open("wb") as handle:
                handle.write(sealed)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
            os.chmod(self.path, 0o600)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def delete(self) -> None:
        """Remove the record and its key; a missing record is not an error."""
        try:
            self.path.unlink()
            logger.debug("storage.record.deleted", extra={"record": self.name})
        except FileNotFoundError:
            pass
        self._cipher.delete_key()

    def read_json(self) -> Optional[Any]:
        """Decrypt and JSON-decode the record.

        Raises:
            StorageCorruption: Decryption or decoding failed
        """
        payload = self.read()
        if payload is None:
            return None
        try:
            return json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageCorruption(f"{self.name}: undecodable payload") from e

    def write_json(self, data: Any) -> None:
        self.write(json.dumps(data, sort_keys=True).encode("utf-8"))
