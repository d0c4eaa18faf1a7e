"""Secret store: database-backed key to secret mapping with envelope encryption."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundError
from app.models import Secret
from app.utils.encryption import EnvelopeCipher, get_envelope_cipher
from app.utils.locks import get_named_lock
from app.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecretMetadata:
    """Public view of a stored secret. Never carries the value."""

    key: str
    description: Optional[str]
    encrypted: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_model(cls, secret: Secret) -> "SecretMetadata":
        return cls(
            key=secret.key,
            description=secret.description,
            encrypted=bool(secret.encrypted),
            created_at=secret.created_at,
            updated_at=secret.updated_at,
        )


class SecretStore:
    """Persist secrets encrypted and hand out plaintext only to internal callers.

    Callers that need a secret for an outbound request call :meth:`get`
    fresh for every operation instead of holding on to the plaintext.
    """

    def __init__(self, db: AsyncSession, cipher: EnvelopeCipher):
        self.db = db
        self.cipher = cipher

    async def put(
        self,
        key: str,
        plaintext: str,
        description: Optional[str] = None,
        commit: bool = True,
    ) -> SecretMetadata:
        """Seal a plaintext value and upsert it under ``key``.

        An existing record is overwritten (no versioning). The description
        is replaced when given and kept otherwise.

        Args:
            key: Logical identity (e.g. ``hetzner_api_key``)
            plaintext: Secret value
            description: Optional human-readable description
            commit: Commit immediately; with False the write is only flushed and
                joins the caller's transaction

        Returns:
            Metadata of the stored record
        """
        ciphertext = self.cipher.seal(plaintext)

        async with get_named_lock("secret_writes"):
            secret = await self.db.get(Secret, key)
            if secret is None:
                secret = Secret(
                    key=key,
                    ciphertext=ciphertext,
                    description=description,
                    encrypted=True,
                )
                self.db.add(secret)
                action = "Created"
            else:
                secret.ciphertext = ciphertext
                secret.encrypted = True
                if description is not None:
                    secret.description = description
                action = "Updated"

            if commit:
                await self.db.commit()
            else:
                await self.db.flush()
            await self.db.refresh(secret)

        logger.info(f"{action} secret: {sanitize_log_message(key)}")
        return SecretMetadata.from_model(secret)

    async def get(self, key: str) -> str:
        """Load and decrypt the secret stored under ``key``.

        Raises:
            NotFoundError: If no secret exists for the key
            DecryptionError: If the stored blob cannot be verified
        """
        secret = await self.db.get(Secret, key)
        if secret is None:
            raise NotFoundError("Secret", key)

        return self.cipher.open(secret.ciphertext)

    async def delete(self, key: str) -> bool:
        """Remove the secret stored under ``key``.

        Deleting a missing key is not an error.

        Returns:
            True if a record was removed
        """
        async with get_named_lock("secret_writes"):
            secret = await self.db.get(Secret, key)
            if secret is None:
                return False

            await self.db.delete(secret)
            await self.db.commit()

        logger.info(f"Deleted secret: {sanitize_log_message(key)}")
        return True

    async def get_metadata(self, key: str) -> SecretMetadata:
        """Return description and encryption flag for ``key``.

        Raises:
            NotFoundError: If no secret exists for the key
        """
        secret = await self.db.get(Secret, key)
        if secret is None:
            raise NotFoundError("Secret", key)

        return SecretMetadata.from_model(secret)

    async def list_metadata(self) -> List[SecretMetadata]:
        """Return metadata for all stored secrets ordered by key."""
        result = await self.db.execute(select(Secret).order_by(Secret.key))
        return [SecretMetadata.from_model(secret) for secret in result.scalars().all()]


async def put_secret(
    db: AsyncSession,
    key: str,
    plaintext: str,
    description: Optional[str] = None,
    cipher: Optional[EnvelopeCipher] = None,
) -> SecretMetadata:
    """Convenience function to store a secret using the process-wide cipher."""
    return await SecretStore(db, cipher or get_envelope_cipher()).put(key, plaintext, description)


async def get_secret_metadata(
    db: AsyncSession, key: str, cipher: Optional[EnvelopeCipher] = None
) -> SecretMetadata:
    """Convenience function to read secret metadata (never the value)."""
    return await SecretStore(db, cipher or get_envelope_cipher()).get_metadata(key)
