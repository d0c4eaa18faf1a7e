"""Pydantic schemas for secrets."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Optional


class SecretSchema(BaseModel):
    """Secret metadata response. The value is never returned."""

    key: str
    description: Optional[str] = None
    encrypted: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SecretWrite(BaseModel):
    """Secret write request.

    Strings are stored as-is; any other JSON value is stored JSON-encoded.
    """

    value: Any = Field(...)
    description: Optional[str] = Field(None, max_length=500)
