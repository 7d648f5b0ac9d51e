"""
Encryption of OAuth credentials at rest.
Fernet symmetric encryption; ciphertext is stored in BYTEA columns.
"""

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class EncryptionError(Exception):
    """Custom exception for encryption/decryption errors."""


def _get_fernet(key: str | None = None) -> Fernet:
    """
    Fernet instance for the configured ENCRYPTION_KEY.

    Raises:
        EncryptionError: If the key is missing or malformed
    """
    key = key or settings.ENCRYPTION_KEY
    if not key:
        raise EncryptionError("ENCRYPTION_KEY not configured in environment")

    try:
        return Fernet(key.encode("utf-8"))
    except ValueError as e:
        logger.error("Failed to initialize Fernet cipher", error=str(e))
        raise EncryptionError(f"Invalid encryption key: {e}") from e


def encrypt_token(token: str, key: str | None = None) -> bytes:
    """Encrypt a credential for storage."""
    if not token or not isinstance(token, str):
        raise EncryptionError("Token must be a non-empty string")

    return _get_fernet(key).encrypt(token.encode("utf-8"))


def decrypt_token(encrypted_token: bytes | memoryview, key: str | None = None) -> str:
    """
    Decrypt a stored credential.

    Raises:
        EncryptionError: If decryption fails or token is invalid
    """
    if isinstance(encrypted_token, memoryview):
        encrypted_token = encrypted_token.tobytes()
    if not encrypted_token or not isinstance(encrypted_token, bytes):
        raise EncryptionError("Encrypted token must be non-empty bytes")

    try:
        return _get_fernet(key).decrypt(encrypted_token).decode("utf-8")
    except InvalidToken as e:
        logger.error("Token decryption failed - invalid token")
        raise EncryptionError("Invalid or corrupted token") from e
