"""Envelope encryption for secrets stored in the database.

Protects third-party credentials at rest:
- Proxmox node passwords
- Cloud provider API keys (Hetzner, AutoDNS, etc.)
- Mail and web hosting panel credentials

Uses AES-256-GCM from the cryptography library:
- 256-bit key derived from the master passphrase with SHA-256
- Fresh random 128-bit nonce per value
- 128-bit authentication tag (tamper-evident)
- Blob layout: base64(nonce || tag || ciphertext)

The layout and key derivation are compatible with blobs written by the
Node.js backend (aes-256-gcm, 16-byte IV, sha256 of ENCRYPTION_KEY).
"""

import base64
import binascii
import hashlib
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.config import AppConfig, get_config
from app.exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # 256 bits
NONCE_LENGTH = 16  # 128 bits
TAG_LENGTH = 16  # 128 bits
HEADER_LENGTH = NONCE_LENGTH + TAG_LENGTH


def derive_key(passphrase: Optional[str]) -> bytes:
    """Derive the 256-bit symmetric key from the master passphrase.

    Deterministic and unsalted, so the same passphrase yields the same key
    across process restarts.

    Args:
        passphrase: Master passphrase from configuration

    Returns:
        32-byte key

    Raises:
        ConfigurationError: If no passphrase is configured
    """
    if not passphrase:
        raise ConfigurationError("Encryption key not configured")
    return hashlib.sha256(passphrase.encode("utf-8")).digest()


class EnvelopeCipher:
    """Seal and open secret values with a process-wide derived key.

    The derived key is immutable after construction, so one instance can be
    shared by any number of concurrent callers.

    Example:
        >>> cipher = EnvelopeCipher(AppConfig(encryption_key="passphrase"))
        >>> blob = cipher.seal("tok_abc123")
        >>> cipher.open(blob)
        'tok_abc123'
    """

    def __init__(self, config: AppConfig):
        """Initialize the cipher.

        Args:
            config: Application configuration holding the master passphrase

        Raises:
            ConfigurationError: If the passphrase is empty
        """
        self._aead = AESGCM(derive_key(config.encryption_key))
        logger.debug("Envelope cipher initialized")

    def seal(self, plaintext: str) -> str:
        """Encrypt a plaintext string into a self-contained blob.

        Args:
            plaintext: Secret to encrypt

        Returns:
            Base64-encoded ``nonce || tag || ciphertext``, or ``""`` for an
            empty plaintext

        Raises:
            ValueError: If plaintext is None
        """
        if plaintext is None:
            raise ValueError("Cannot encrypt None value")

        # Absence of a value is stored as absence, not as an encrypted empty string
        if plaintext == "":
            return ""

        nonce = os.urandom(NONCE_LENGTH)
        # AESGCM appends the tag to the ciphertext
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def open(self, blob: str) -> str:
        """Verify and decrypt a blob produced by :meth:`seal`.

        Args:
            blob: Base64-encoded sealed value

        Returns:
            Decrypted plaintext (``""`` for an empty blob)

        Raises:
            ValueError: If blob is None
            DecryptionError: If the blob is malformed, truncated, was sealed
                with a different key or was tampered with
        """
        if blob is None:
            raise ValueError("Cannot decrypt None value")

        if blob == "":
            return ""

        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError):
            logger.error("Decryption failed: value is not valid base64")
            raise DecryptionError("Failed to decrypt data: malformed ciphertext")

        if len(raw) <= HEADER_LENGTH:
            logger.error("Decryption failed: ciphertext is truncated")
            raise DecryptionError("Failed to decrypt data: truncated ciphertext")

        nonce = raw[:NONCE_LENGTH]
        tag = raw[NONCE_LENGTH:HEADER_LENGTH]
        ciphertext = raw[HEADER_LENGTH:]

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            logger.error("Decryption failed: authentication tag mismatch (wrong key or tampered data)")
            raise DecryptionError(
                "Failed to decrypt data. The encryption key has changed or the "
                "stored value was modified. Re-enter this value in Settings."
            )

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Failed to decrypt data: plaintext is not valid UTF-8")

    @staticmethod
    def is_sealed(value: Optional[str]) -> bool:
        """Check if a value looks like a sealed blob.

        Heuristic only: the value must decode as base64 to more than the
        nonce and tag length.
        """
        if not value:
            return False
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return False
        return len(raw) > HEADER_LENGTH


_cipher: Optional[EnvelopeCipher] = None


def get_envelope_cipher() -> EnvelopeCipher:
    """Return the process-wide cipher built from the loaded configuration.

    Raises:
        ConfigurationError: If the master passphrase is not configured
    """
    global _cipher

    if _cipher is None:
        _cipher = EnvelopeCipher(get_config())

    return _cipher
