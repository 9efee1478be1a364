"""
Credential encryption for stored channel-manager API keys
"""

from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from channel_sync.errors import ConfigurationError


class CredentialCipher:
    """Fernet wrapper used for sync_configuration.api_key_encrypted"""

    def __init__(self, key: Optional[str]):
        if not key:
            raise ConfigurationError("Encryption key is not configured (CHANNEL_SYNC_ENCRYPTION_KEY)")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except ValueError as e:
            raise ConfigurationError(f"Invalid encryption key: {e}")

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            raise ConfigurationError("Stored API key could not be decrypted with the configured key")
