"""
Encryption of provider configuration blobs at rest.

Blobs hold OAuth client secrets and refresh tokens, so they are encrypted
with Fernet symmetric encryption when a key is configured.
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from .exceptions import ProviderConfigurationError

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc:"


def derive_fernet_key(key: str) -> bytes:
    """Accept either a real Fernet key or an arbitrary passphrase."""
    if len(key) != 44:  # Fernet keys are 44 chars base64
        return base64.urlsafe_b64encode(hashlib.sha256(key.encode()).digest())
    return key.encode()


class ConfigCipher:
    """Encrypts and decrypts provider configuration blobs."""

    def __init__(self, key: Optional[str] = None):
        self._fernet: Optional[Fernet] = None
        if key:
            self._fernet = Fernet(derive_fernet_key(key))
        else:
            logger.warning(
                "FRAMESTORE_CONFIG_ENCRYPTION_KEY not set. "
                "Provider credentials will be stored unencrypted."
            )

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None or self._fernet is None:
            return plaintext
        token = self._fernet.encrypt(plaintext.encode()).decode()
        return ENCRYPTED_PREFIX + token

    def decrypt(self, stored: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored blob. Blobs written before a key was configured pass through.

        Raises:
            ProviderConfigurationError: If the blob is encrypted and cannot be decrypted
        """
        if stored is None or not stored.startswith(ENCRYPTED_PREFIX):
            return stored
        if self._fernet is None:
            raise ProviderConfigurationError(
                "Provider configuration is encrypted but no encryption key is configured"
            )
        try:
            return self._fernet.decrypt(stored[len(ENCRYPTED_PREFIX):].encode()).decode()
        except InvalidToken as e:
            raise ProviderConfigurationError(
                "Provider configuration could not be decrypted with the configured key",
                cause=e,
            )
