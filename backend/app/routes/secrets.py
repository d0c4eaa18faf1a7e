"""Secrets API endpoints.

Values are write-only through this API: responses carry metadata only.
"""

import json
import logging
from typing import List

from fastapi import APIRouter, Depends, Response

from app.dependencies import get_secret_store
from app.exceptions import InfraDeckError
from app.schemas import SecretSchema, SecretWrite
from app.services.secret_store import SecretStore
from app.utils.error_handling import raise_for_engine_error

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=List[SecretSchema])
async def list_secrets(
    secrets: SecretStore = Depends(get_secret_store),
) -> List[SecretSchema]:
    """List stored secrets (metadata only)."""
    return await secrets.list_metadata()


@router.get("/{key}", response_model=SecretSchema)
async def get_secret_metadata(
    key: str,
    secrets: SecretStore = Depends(get_secret_store),
) -> SecretSchema:
    """Get description and encryption flag of a secret."""
    try:
        return await secrets.get_metadata(key)
    except InfraDeckError as e:
        raise_for_engine_error(logger, e)


@router.put("/{key}", response_model=SecretSchema)
async def put_secret(
    key: str,
    payload: SecretWrite,
    secrets: SecretStore = Depends(get_secret_store),
) -> SecretSchema:
    """Create or replace a secret."""
    value = payload.value if isinstance(payload.value, str) else json.dumps(payload.value)
    try:
        return await secrets.put(key, value, payload.description)
    except InfraDeckError as e:
        raise_for_engine_error(logger, e)


@router.delete("/{key}", status_code=204)
async def delete_secret(
    key: str,
    secrets: SecretStore = Depends(get_secret_store),
) -> Response:
    """Delete a secret. Deleting a missing key succeeds."""
    await secrets.delete(key)
    return Response(status_code=204)
