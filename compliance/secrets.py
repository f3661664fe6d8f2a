"""AES-256-GCM helpers for provider keys and platform tokens stored at rest.

Ciphertext format is ``iv:tag:ciphertext``, each part hex encoded. The key is
derived from ENCRYPTION_KEY with scrypt.
"""

from __future__ import annotations

import binascii
import logging
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from settings import SETTINGS

logger = logging.getLogger(__name__)

_SALT = b"workspace-secrets-v1"
_IV_LENGTH = 16
_TAG_LENGTH = 16


class SecretDecryptionError(Exception):
    """Raised when a stored secret cannot be decrypted."""


def _derive_key(passphrase: str | None = None) -> bytes:
    secret = passphrase if passphrase is not None else SETTINGS.encryption_key
    if not secret:
        raise SecretDecryptionError("ENCRYPTION_KEY is not configured")
    return _scrypt_key(secret)


@lru_cache(maxsize=8)
def _scrypt_key(secret: str) -> bytes:
    return Scrypt(salt=_SALT, length=32, n=2**14, r=8, p=1).derive(secret.encode("utf-8"))


def encrypt_secret(plaintext: str, passphrase: str | None = None) -> str:
    key = _derive_key(passphrase)
    iv = os.urandom(_IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_secret(token: str, passphrase: str | None = None) -> str:
    parts = (token or "").split(":")
    if len(parts) != 3 or not all(parts):
        raise SecretDecryptionError("Invalid encrypted text format")
    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
    except (ValueError, binascii.Error) as exc:
        raise SecretDecryptionError("Invalid hex in encrypted text") from exc
    key = _derive_key(passphrase)
    try:
        plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise SecretDecryptionError("Authentication tag mismatch") from exc
    except ValueError as exc:
        # Nonce or tag of the wrong size.
        raise SecretDecryptionError(str(exc)) from exc
    return plain.decode("utf-8")


def try_decrypt(token: str | None, passphrase: str | None = None) -> str | None:
    if not token:
        return None
    try:
        return decrypt_secret(token, passphrase)
    except SecretDecryptionError as exc:
        logger.warning("secret_decrypt_failed", extra={"error": str(exc)})
        return None
