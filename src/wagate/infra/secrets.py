"""At-rest encryption for account credentials.

Access tokens and app secrets are stored AES-256-GCM encrypted. The stored
value is base64(nonce || ciphertext). Plaintext only exists in memory on
the Account object used for provider calls and signature checks.
"""

from __future__ import annotations

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_SIZE = 12


class SecretDecryptionError(Exception):
    """Raised when a stored secret cannot be decrypted with the current key."""

    pass


def _get_encryption_key() -> bytes:
    """Get AES-256 key for account secrets.

    Raises:
        RuntimeError: If WAGATE_SECRETS_KEY is not configured or invalid.
    """
    key_hex = os.environ.get("WAGATE_SECRETS_KEY")
    if not key_hex:
        raise RuntimeError(
            "WAGATE_SECRETS_KEY not configured. "
            "Generate with: openssl rand -hex 32"
        )
    try:
        key = bytes.fromhex(key_hex)
    except ValueError:
        raise RuntimeError("WAGATE_SECRETS_KEY must be hex encoded") from None
    if len(key) != 32:
        raise RuntimeError(
            "WAGATE_SECRETS_KEY must be 32 bytes hex (64 hex chars). "
            "Generate with: openssl rand -hex 32"
        )
    return key


def encrypt_secret(plaintext: str) -> str:
    """Encrypt a credential for storage."""
    aesgcm = AESGCM(_get_encryption_key())
    nonce = os.urandom(_NONCE_SIZE)
    ciphertext = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_secret(encrypted: str) -> str:
    """Decrypt a stored credential.

    Raises:
        SecretDecryptionError: If the value is corrupt or was encrypted with
            another key.
    """
    aesgcm = AESGCM(_get_encryption_key())
    try:
        data = base64.b64decode(encrypted)
        plaintext = aesgcm.decrypt(data[:_NONCE_SIZE], data[_NONCE_SIZE:], None)
    except (InvalidTag, ValueError) as e:
        raise SecretDecryptionError("stored secret could not be decrypted") from e
    return plaintext.decode("utf-8")


def encrypt_optional(plaintext: str | None) -> str | None:
    return encrypt_secret(plaintext) if plaintext else None


def decrypt_optional(encrypted: str | None) -> str | None:
    return decrypt_secret(encrypted) if encrypted else None
