"""
Access token encryption.

Plaid access tokens are stored Fernet-encrypted with a key derived from
SECRET_KEY via PBKDF2.
"""
import base64
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from budgee.config import settings

logger = logging.getLogger(__name__)

_KDF_SALT = b"budgee_access_token_salt"
_KDF_ITERATIONS = 100000


class EncryptionService:
    """Encrypts and decrypts Plaid access tokens"""

    def __init__(self, secret_key: Optional[str] = None):
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_KDF_SALT,
            iterations=_KDF_ITERATIONS,
        )
        key_bytes = kdf.derive((secret_key or settings.SECRET_KEY).encode())
        self.cipher = Fernet(base64.urlsafe_b64encode(key_bytes))

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a token produced by ``encrypt``.

        Raises:
            InvalidToken: if the ciphertext was not produced with this key
        """
        if not ciphertext:
            return ""
        try:
            return self.cipher.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.error("Failed to decrypt access token (wrong SECRET_KEY or corrupted value)")
            raise


# Global encryption service instance
encryption_service = EncryptionService()
