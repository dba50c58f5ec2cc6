"""JSON document encoding for files at rest, with optional Fernet encryption.

Without a key, documents are written as UTF-8 JSON. With a key, the JSON
bytes are wrapped in a Fernet token so trained models and their metadata
(which encode personal health relationships) are unreadable off-device.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when a key is invalid or a document cannot be encoded/decoded."""


class DocumentCodec:
    """Encodes JSON-serializable documents to bytes and back.

    Usage::

        codec = DocumentCodec(key=settings.encryption_key or None)
        raw = codec.encode({"type": "linear", "bias": 1.0, "coefficients": []})
        doc = codec.decode(raw)
    """

    def __init__(self, key: str | None = None) -> None:
        """Initialize the codec.

        Args:
            key: Fernet key string, or ``None``/empty for plaintext JSON.

        Raises:
            EncryptionError: If a non-empty key is not a valid Fernet key.
        """
        self._fernet: Fernet | None = None
        if key and key.strip():
            try:
                self._fernet = Fernet(key.strip().encode("utf-8"))
            except (ValueError, TypeError) as exc:
                raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    @property
    def encrypted(self) -> bool:
        return self._fernet is not None

    def encode(self, document: Any) -> bytes:
        try:
            payload = json.dumps(document, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Document is not JSON-serializable: {exc}") from exc
        if self._fernet is None:
            return payload
        return self._fernet.encrypt(payload)

    def decode(self, raw: bytes) -> Any:
        """Decode bytes written by :meth:`encode`.

        Raises:
            EncryptionError: On a wrong key, tampered token, or invalid JSON.
        """
        if self._fernet is not None:
            try:
                raw = self._fernet.decrypt(raw)
            except InvalidToken as exc:
                raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise EncryptionError(f"Invalid JSON document: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64-encoded 32-byte Fernet key."""
        return Fernet.generate_key().decode("utf-8")
