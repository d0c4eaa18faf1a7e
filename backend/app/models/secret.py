"""Secret model for encrypted third-party credentials."""

from sqlalchemy import Column, String, Boolean, DateTime, Text
from sqlalchemy.sql import func
from app.db import Base


class Secret(Base):
    """Envelope-encrypted secret keyed by logical identity.

    Only ``SecretStore`` reads or writes ``ciphertext``.
    """

    __tablename__ = "secrets"

    key = Column(String(255), primary_key=True, index=True)  # e.g. hetzner_api_key
    ciphertext = Column(Text, nullable=False)  # base64(nonce || tag || ciphertext)
    description = Column(String, nullable=True)
    encrypted = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<Secret(key={self.key}, encrypted={self.encrypted})>"
