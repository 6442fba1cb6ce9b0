# fleet_engine/backup/crypto.py
"""Snapshot payload encryption."""

import hashlib
from typing import Union

from cryptography.fernet import Fernet, InvalidToken


class SnapshotCipher:
    """
    Fernet (AES-128-CBC + HMAC-SHA256) over whole payloads.

    ``key_id`` identifies the key in snapshot manifests without revealing it.
    """

    def __init__(self, key: Union[str, bytes]):
        if isinstance(key, str):
            key = key.encode("ascii")
        self._fernet = Fernet(key)
        self.key_id = hashlib.sha256(key).hexdigest()[:16]

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    def encrypt(self, data: bytes) -> bytes:
        return self._fernet.encrypt(data)

    def decrypt(self, token: bytes) -> bytes:
        """Raises cryptography.fernet.InvalidToken on a wrong key or tampering."""
        return self._fernet.decrypt(token)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


__all__ = ["SnapshotCipher", "InvalidToken", "sha256_hex"]
