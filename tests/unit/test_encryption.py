"""
Test encryption service functionality.
"""

import pytest
from cryptography.fernet import Fernet

from app.services.infrastructure.encryption_service import (
    EncryptionError,
    decrypt_token,
    encrypt_token,
)

KEY = Fernet.generate_key().decode("utf-8")


def test_basic_encryption_decryption():
    test_token = "ya29.fake_access_token_12345"

    encrypted = encrypt_token(test_token, key=KEY)

    assert isinstance(encrypted, bytes)
    assert test_token.encode("utf-8") not in encrypted
    assert decrypt_token(encrypted, key=KEY) == test_token


@pytest.mark.parametrize(
    "token",
    [
        "simple_token",
        "token_with_special_chars_!@#$%^&*()",
        "very_long_token_" + "x" * 500,
        "1//refresh-token-£",
    ],
)
def test_encryption_with_different_tokens(token):
    assert decrypt_token(encrypt_token(token, key=KEY), key=KEY) == token


def test_memoryview_from_bytea_column():
    encrypted = encrypt_token("refresh", key=KEY)

    assert decrypt_token(memoryview(encrypted), key=KEY) == "refresh"


def test_wrong_key_rejected():
    encrypted = encrypt_token("secret", key=KEY)

    with pytest.raises(EncryptionError):
        decrypt_token(encrypted, key=Fernet.generate_key().decode("utf-8"))


@pytest.mark.parametrize("token", ["", None])
def test_empty_token_rejected(token):
    with pytest.raises(EncryptionError):
        encrypt_token(token, key=KEY)


def test_missing_key_rejected(monkeypatch):
    from app.config import settings

    monkeypatch.setattr(settings, "ENCRYPTION_KEY", None)

    with pytest.raises(EncryptionError):
        encrypt_token("secret")


def test_malformed_key_rejected():
    with pytest.raises(EncryptionError):
        encrypt_token("secret", key="not-a-fernet-key")
