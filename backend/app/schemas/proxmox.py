"""Pydantic schemas for Proxmox nodes, inventory and control commands."""

from datetime import datetime
from typing import List, Literal, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator


class NodeCreate(BaseModel):
    """Add node request. The password is sealed into the secret store."""

    name: str = Field(..., min_length=1, max_length=255, pattern=r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
    host: str = Field(..., min_length=1, description="Base URL, e.g. https://pve1.example.com")
    port: int = Field(8006, ge=1, le=65535)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    realm: str = "pam"
    verify_ssl: bool = False

    @field_validator("host")
    @classmethod
    def validate_host(cls, v):
        """Ensure the host is an http(s) URL, keeping the string as typed.

        URL types drop a port equal to the scheme default, which would let
        the configured port replace an explicit ``:443``.
        """
        v = v.strip()
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError("Host must be an http or https URL")
        try:
            parts.port
        except ValueError:
            raise ValueError("Host port must be a number between 0 and 65535")
        return v.rstrip("/")


class NodeSchema(BaseModel):
    """Configured node response (credentials are never included)."""

    id: int
    name: str
    host: str
    port: int
    username: str
    realm: str
    verify_ssl: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ConnectionTestResult(BaseModel):
    success: bool
    message: str


class ServerSchema(BaseModel):
    """Local inventory row."""

    vmid: int
    node: str
    type: str
    name: str
    status: str
    cpu_usage_pct: Optional[float] = None
    memory_used_mb: Optional[int] = None
    memory_total_mb: Optional[int] = None
    disk_used_gb: Optional[int] = None
    disk_total_gb: Optional[int] = None
    uptime_sec: Optional[int] = None
    last_synced_at: datetime

    model_config = {"from_attributes": True}


class NodeSyncSchema(BaseModel):
    node: str
    ok: bool
    synced: int = 0
    error_kind: Optional[str] = None
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class InventoryResponse(BaseModel):
    """Reconciliation result: stored inventory plus per-node outcomes."""

    success: bool = True
    servers: List[ServerSchema]
    synced: int
    nodes: List[NodeSyncSchema] = []


class ControlRequest(BaseModel):
    node: str = Field(..., min_length=1)
    vmid: int = Field(..., ge=1)
    type: str = Field(..., description="vm or container (qemu/lxc accepted)")
    action: str = Field(..., description="start, stop, shutdown or reboot")


class ControlResponse(BaseModel):
    success: Literal[True] = True
    action: str
    vmid: int
    type: str
    node: str
    upid: str


class ConsoleRequest(BaseModel):
    node: str = Field(..., min_length=1, max_length=255)
    vmid: int = Field(..., ge=1)


class ConsoleResponse(BaseModel):
    """VNC proxy parameters for the node's vncwebsocket endpoint."""

    success: Literal[True] = True
    node: str
    vmid: int
    type: str
    port: int
    ticket: str
    upid: str
