"""AES-256-GCM helpers for tenant payment credentials.

Tokens are stored as ``iv:authTag:ciphertext`` with every part hex
encoded. The key is read from ``settings.ENCRYPTION_KEY`` (64 hex chars).
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from django.conf import settings

IV_BYTES = 16
TAG_BYTES = 16


def _key(key_hex: str | None = None) -> bytes:
    key_hex = key_hex or getattr(settings, "ENCRYPTION_KEY", "")
    try:
        key = bytes.fromhex(key_hex)
    except ValueError as exc:
        raise ValueError("ENCRYPTION_KEY must be hex encoded") from exc
    if len(key) != 32:
        raise ValueError("ENCRYPTION_KEY must be 64 hex characters")
    return key


def encrypt_token(token: str, key_hex: str | None = None) -> str:
    """Encrypt ``token`` and return ``iv:authTag:ciphertext``."""
    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(_key(key_hex)).encrypt(iv, token.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_token(encrypted: str, key_hex: str | None = None) -> str:
    """Decrypt a value produced by ``encrypt_token``.

    Raises:
        ValueError: Malformed value, wrong key or tampered ciphertext.
    """
    parts = encrypted.split(":")
    if len(parts) != 3 or not all(parts):
        raise ValueError("Invalid encrypted token format")
    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
    except ValueError as exc:
        raise ValueError("Invalid encrypted token format") from exc
    try:
        plain = AESGCM(_key(key_hex)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise ValueError("Encrypted token failed authentication") from exc
    return plain.decode("utf-8")
