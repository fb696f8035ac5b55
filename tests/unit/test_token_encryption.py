"""Tests for OAuth token encryption at rest."""
import base64

import pytest

from dealsync.core.exceptions import TokenEncryptionError
from dealsync.core.token_encryption import TokenEncryptor


class TestTokenEncryptor:
    def test_round_trip(self, encryptor):
        sealed = encryptor.encrypt("ya29.secret-access-token")

        assert sealed != "ya29.secret-access-token"
        assert encryptor.decrypt(sealed) == "ya29.secret-access-token"

    def test_same_plaintext_encrypts_differently(self, encryptor):
        assert encryptor.encrypt("token") != encryptor.encrypt("token")

    def test_empty_secret_rejected(self):
        with pytest.raises(TokenEncryptionError):
            TokenEncryptor("")

    def test_wrong_secret_cannot_decrypt(self, encryptor):
        sealed = encryptor.encrypt("token")
        other = TokenEncryptor("another-secret", iterations=1000)

        with pytest.raises(TokenEncryptionError, match="Failed to decrypt token"):
            other.decrypt(sealed)

    def test_tampered_ciphertext_rejected(self, encryptor):
        raw = bytearray(base64.b64decode(encryptor.encrypt("token")))
        raw[-1] ^= 0x01
        tampered = base64.b64encode(bytes(raw)).decode("ascii")

        with pytest.raises(TokenEncryptionError):
            encryptor.decrypt(tampered)

    @pytest.mark.parametrize("value", ["not base64!!", base64.b64encode(b"short").decode()])
    def test_malformed_input_rejected(self, encryptor, value):
        with pytest.raises(TokenEncryptionError):
            encryptor.decrypt(value)

    def test_is_encrypted(self, encryptor):
        assert encryptor.is_encrypted(encryptor.encrypt("token")) is True
        assert encryptor.is_encrypted("plain-token") is False
        assert encryptor.is_encrypted(None) is False
