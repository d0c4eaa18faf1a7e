"""Shared FastAPI dependencies for route handlers."""

from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import AppConfig, get_config
from app.db import get_db
from app.services.control_plane import ControlPlane, create_proxmox_control_plane
from app.services.secret_store import SecretStore
from app.utils.encryption import EnvelopeCipher, get_envelope_cipher


def get_app_config() -> AppConfig:
    """Process configuration (overridable in tests)."""
    return get_config()


def get_cipher() -> EnvelopeCipher:
    """Process-wide envelope cipher (overridable in tests)."""
    return get_envelope_cipher()


def get_secret_store(
    db: AsyncSession = Depends(get_db),
    cipher: EnvelopeCipher = Depends(get_cipher),
) -> SecretStore:
    return SecretStore(db, cipher)


async def get_control_plane(
    secrets: SecretStore = Depends(get_secret_store),
    config: AppConfig = Depends(get_app_config),
) -> AsyncIterator[ControlPlane]:
    """Control-plane client scoped to one request.

    Every request authenticates fresh; the client is closed afterwards.
    """
    async with create_proxmox_control_plane(secrets, timeout=config.http_timeout) as client:
        yield client
