"""Encryption of stored external API keys.

Keys in ``BuilderConfig.external_api_keys`` are Fernet tokens. They are only
decrypted when a deployment's environment is assembled.
"""

from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken

from ..errors import SecretDecryptionError


def generate_key() -> str:
    return Fernet.generate_key().decode()


def _cipher(key: str) -> Fernet:
    try:
        return Fernet(key.encode())
    except ValueError as e:
        raise SecretDecryptionError(f"Invalid encryption key: {e}") from e


def encrypt_secret(value: str, key: str) -> str:
    """Encrypt ``value`` into a Fernet token suitable for the config file."""
    return _cipher(key).encrypt(value.encode()).decode()


def decrypt_secret(token: str, key: str) -> str:
    """Decrypt a token produced by ``encrypt_secret``.

    Raises:
        SecretDecryptionError: If the key is malformed or does not match
    """
    try:
        return _cipher(key).decrypt(token.encode()).decode()
    except InvalidToken:
        raise SecretDecryptionError("Stored API key could not be decrypted with the configured key") from None
