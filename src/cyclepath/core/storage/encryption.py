"""Fernet encryption for patient notes stored with cycles and milestones.

Notes are the only free text a patient types in and may mention symptoms,
medication or clinic details. Everything the engine queries on (dates,
statuses, milestone types) is stored in plain columns.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

# Stored in place of a token when a row has no notes at all.
NO_VALUE = ""


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


def _pack(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def _unpack(payload: bytes) -> Any:
    return json.loads(payload)


class FieldEncryptor:
    """Turns note values into Fernet tokens and back.

    Values go through compact JSON first, so an empty note (``""``) and a
    missing one (``None``) survive the round trip as different values.
    """

    def __init__(self, key: str) -> None:
        """
        Raises:
            EncryptionError: If the key is blank or not a Fernet key.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.encode())
        except (ValueError, TypeError) as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    @classmethod
    def ephemeral(cls) -> FieldEncryptor:
        """An encryptor with a fresh random key, for stores that are never persisted."""
        return cls(cls.generate_key())

    def encrypt(self, data: Any) -> str:
        if data is None:
            return NO_VALUE
        try:
            return self._fernet.encrypt(_pack(data)).decode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc

    def decrypt(self, token: str | None) -> Any:
        """Recover the value behind a stored token; a blank column reads as ``None``.

        Raises:
            EncryptionError: If the token was tampered with or made with another key.
        """
        if not token:
            return None
        try:
            return _unpack(self._fernet.decrypt(token.encode("utf-8")))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")
