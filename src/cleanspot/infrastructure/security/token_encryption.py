"""Fernet encryption for provider tokens at rest."""

import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

from cleanspot.domain.exceptions import ConfigurationError, TokenEncryptionError

logger = logging.getLogger(__name__)


# Hey future me - this is the ONLY place plaintext tokens and the key meet. The vault calls
# encrypt() right before persisting and decrypt() right before an outbound provider call.
# Rotating the key makes every stored token undecryptable -> users must reconnect.
class TokenEncryption:
    """Encrypt/decrypt token strings with Fernet (AES-128-CBC + HMAC)."""

    def __init__(self, key: str) -> None:
        if not key:
            raise ConfigurationError("Token encryption key not configured")
        self._fernet = Fernet(self._normalize_key(key))

    @staticmethod
    def _normalize_key(key: str) -> bytes:
        """Accept a real Fernet key, or derive one from an arbitrary secret."""
        raw = key.encode("utf-8")
        try:
            if len(base64.urlsafe_b64decode(raw)) == 32:
                return raw
        except (ValueError, TypeError):
            pass
        logger.debug("Deriving Fernet key from configured secret")
        return base64.urlsafe_b64encode(hashlib.sha256(raw).digest())

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored token.

        Raises:
            TokenEncryptionError: Wrong key or corrupted ciphertext
        """
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise TokenEncryptionError("Stored token could not be decrypted") from e
