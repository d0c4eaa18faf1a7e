"""Pydantic schemas for API validation."""

from app.schemas.secret import SecretSchema, SecretWrite
from app.schemas.proxmox import (
    NodeCreate,
    NodeSchema,
    ConnectionTestResult,
    ServerSchema,
    NodeSyncSchema,
    InventoryResponse,
    ControlRequest,
    ControlResponse,
    ConsoleRequest,
    ConsoleResponse,
)

__all__ = [
    "SecretSchema",
    "SecretWrite",
    "NodeCreate",
    "NodeSchema",
    "ConnectionTestResult",
    "ServerSchema",
    "NodeSyncSchema",
    "InventoryResponse",
    "ControlRequest",
    "ControlResponse",
    "ConsoleRequest",
    "ConsoleResponse",
]
