"""Tests for Fernet token encryption."""

import pytest

from cleanspot.domain.exceptions import ConfigurationError, TokenEncryptionError
from cleanspot.infrastructure.security.token_encryption import TokenEncryption


class TestTokenEncryption:
    """Fernet wrapper used by the credential vault."""

    def test_ciphertext_is_not_plaintext(self) -> None:
        """Encrypt hides the value and decrypt restores it."""
        encryption = TokenEncryption(TokenEncryption.generate_key())
        ciphertext = encryption.encrypt("BQD-secret-access-token")
        assert "BQD-secret-access-token" not in ciphertext
        assert encryption.decrypt(ciphertext) == "BQD-secret-access-token"

    def test_arbitrary_secret_is_accepted(self) -> None:
        """A non-Fernet secret is derived into a key."""
        encryption = TokenEncryption("not-a-fernet-key")
        assert encryption.decrypt(encryption.encrypt("x")) == "x"

    def test_missing_key_is_a_configuration_error(self) -> None:
        """Empty key fails at construction."""
        with pytest.raises(ConfigurationError):
            TokenEncryption("")

    def test_wrong_key_raises_token_encryption_error(self) -> None:
        """Ciphertext from another key can't be decrypted."""
        ciphertext = TokenEncryption(TokenEncryption.generate_key()).encrypt("x")
        other = TokenEncryption(TokenEncryption.generate_key())
        with pytest.raises(TokenEncryptionError):
            other.decrypt(ciphertext)

    def test_garbage_raises_token_encryption_error(self) -> None:
        """Non-token input is a TokenEncryptionError."""
        with pytest.raises(TokenEncryptionError):
            TokenEncryption(TokenEncryption.generate_key()).decrypt("garbage")
