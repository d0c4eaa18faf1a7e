"""Database models for InfraDeck."""

from app.models.secret import Secret
from app.models.proxmox_node import ProxmoxNode
from app.models.server import Server

__all__ = [
    "Secret",
    "ProxmoxNode",
    "Server",
]
