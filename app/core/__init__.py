"""Core utilities for the GenChat backend."""

from .encryption import MessageCipher, decrypt, encrypt, get_cipher

__all__ = ["MessageCipher", "encrypt", "decrypt", "get_cipher"]
