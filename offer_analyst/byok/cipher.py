"""
Encryption of stored provider keys.

AES-256-GCM with a key derived by scrypt from the application secret.
Payloads are base64(iv + tag + ciphertext).
"""

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
MIN_SECRET_LENGTH = 32

# Fixed application salt; every encryption still uses a fresh IV
KDF_SALT = b"offeranalyst-api-keys-v1"


def mask_key(api_key: str) -> str:
    """Mask a key for display, keeping the first and last four characters."""
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}{'*' * (len(api_key) - 8)}{api_key[-4:]}"


def key_preview(api_key: str) -> str:
    """Last four characters, stored alongside the ciphertext."""
    return api_key[-4:]


class SecretCipher:
    """Symmetric cipher for provider keys at rest."""

    def __init__(self, secret: str):
        """
        Initialize cipher.

        Args:
            secret: Application encryption secret (at least 32 characters)

        Raises:
            ConfigurationError: If the secret is missing or too short
        """
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"API key encryption secret must be at least {MIN_SECRET_LENGTH} characters long"
            )
        kdf = Scrypt(salt=KDF_SALT, length=KEY_LENGTH, n=2**14, r=8, p=1)
        self._aesgcm = AESGCM(kdf.derive(secret.encode("utf-8")))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a key for storage.

        Args:
            plaintext: API key value

        Returns:
            Base64 payload of iv + tag + ciphertext
        """
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        # cryptography appends the tag; the stored layout puts it before the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(iv + tag + ciphertext).decode("ascii")

    def decrypt(self, payload: str) -> str:
        """
        Decrypt a stored key.

        Args:
            payload: Base64 payload produced by ``encrypt``

        Returns:
            Plaintext API key

        Raises:
            DecryptionError: If the payload is malformed or fails authentication
        """
        try:
            combined = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise DecryptionError(f"Malformed key payload: {e}")

        if len(combined) < IV_LENGTH + TAG_LENGTH:
            raise DecryptionError("Key payload too short")

        iv = combined[:IV_LENGTH]
        tag = combined[IV_LENGTH:IV_LENGTH + TAG_LENGTH]
        ciphertext = combined[IV_LENGTH + TAG_LENGTH:]

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise DecryptionError("Key payload failed authentication")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Decrypted key is not valid UTF-8")

    def self_test(self) -> bool:
        """Check that a round trip through the cipher works."""
        sample = "sk-test-1234567890abcdef"
        try:
            return self.decrypt(self.encrypt(sample)) == sample
        except DecryptionError as e:
            logger.error(f"Cipher self-test failed: {e}")
            return False
