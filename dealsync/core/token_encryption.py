"""
OAuth token encryption at rest.

Values are sealed with AES-256-GCM. Each value gets its own random salt and
nonce; the key is derived from the configured secret with PBKDF2-HMAC-SHA512.
Stored format is base64(salt | nonce | ciphertext | tag).
"""

import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from dealsync.config import get_settings
from dealsync.core.exceptions import TokenEncryptionError

SALT_LENGTH = 32
NONCE_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000


class TokenEncryptor:
    """Encrypts and decrypts OAuth tokens with a shared secret."""

    def __init__(self, secret: str, iterations: int = PBKDF2_ITERATIONS):
        if not secret:
            raise TokenEncryptionError(
                "TOKEN_ENCRYPTION_KEY must be set to store OAuth tokens"
            )
        self._secret = secret.encode("utf-8")
        self._iterations = iterations

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(self._secret)

    def encrypt(self, plaintext: str) -> str:
        salt = os.urandom(SALT_LENGTH)
        nonce = os.urandom(NONCE_LENGTH)
        sealed = AESGCM(self._derive_key(salt)).encrypt(
            nonce, plaintext.encode("utf-8"), None
        )
        return base64.b64encode(salt + nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            data = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise TokenEncryptionError("Failed to decrypt token") from e

        if len(data) < SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH:
            raise TokenEncryptionError("Failed to decrypt token")

        salt = data[:SALT_LENGTH]
        nonce = data[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH]
        sealed = data[SALT_LENGTH + NONCE_LENGTH:]

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise TokenEncryptionError("Failed to decrypt token") from e
        return plaintext.decode("utf-8")

    def is_encrypted(self, value: Optional[str]) -> bool:
        """Best-effort check that ``value`` looks like one of our ciphertexts."""
        if not value:
            return False
        try:
            data = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return False
        return len(data) >= SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH


def get_token_encryptor() -> TokenEncryptor:
    """Build an encryptor from settings."""
    return TokenEncryptor(get_settings().token_encryption_key)
