"""At-rest encryption for chat message text.

Ciphertext is stored as ``ivHex:tagHex:cipherHex`` using AES-256-GCM. Values
that do not match that shape, or whose tag does not verify, are returned
unchanged so rows written before encryption was enabled stay readable.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.config import get_settings

logger = logging.getLogger(__name__)

IV_LENGTH = 12
AUTH_TAG_LENGTH = 16
KEY_HEX_LENGTH = 64


class MessageCipher:
    """Symmetric AEAD wrapper bound to a single process-wide key."""

    def __init__(self, key_hex: str | None) -> None:
        self._aes: AESGCM | None = None
        if key_hex is None:
            logger.error(
                "MESSAGE_ENCRYPTION_KEY is not configured; message text will be stored unencrypted"
            )
            return
        if len(key_hex) != KEY_HEX_LENGTH:
            logger.error(
                "MESSAGE_ENCRYPTION_KEY must be a %d-character hex string; message text will be stored unencrypted",
                KEY_HEX_LENGTH,
            )
            return
        try:
            self._aes = AESGCM(bytes.fromhex(key_hex))
        except ValueError:
            logger.error("MESSAGE_ENCRYPTION_KEY is not valid hex; message text will be stored unencrypted")

    @property
    def enabled(self) -> bool:
        return self._aes is not None

    def encrypt(self, text: str | None) -> str | None:
        if not text or self._aes is None:
            return text
        iv = os.urandom(IV_LENGTH)
        sealed = self._aes.encrypt(iv, text.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, stored: str | None) -> str | None:
        if not stored or not isinstance(stored, str) or self._aes is None:
            return stored

        parts = stored.split(":")
        if len(parts) != 3:
            return stored

        iv_hex, tag_hex, ciphertext_hex = parts
        try:
            iv = bytes.fromhex(iv_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError:
            return stored
        if len(iv) != IV_LENGTH or len(tag) != AUTH_TAG_LENGTH:
            return stored

        try:
            plaintext = self._aes.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            logger.warning("Message ciphertext failed authentication; returning stored value")
            return stored
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            return stored


@lru_cache(maxsize=1)
def get_cipher() -> MessageCipher:
    return MessageCipher(get_settings().message_encryption_key)


def encrypt(text: str | None) -> str | None:
    return get_cipher().encrypt(text)


def decrypt(stored: str | None) -> str | None:
    return get_cipher().decrypt(stored)
