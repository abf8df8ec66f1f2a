"""Security helpers: encryption at rest and webhook signatures."""

from .token_encryption import TokenEncryption

__all__ = ["TokenEncryption"]
