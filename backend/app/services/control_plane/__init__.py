"""Hypervisor control-plane clients."""

from app.services.control_plane.base import (
    ControlPlane,
    CredentialResolver,
    NodeConfig,
    SessionState,
)
from app.services.control_plane.proxmox import (
    POWER_ACTIONS,
    ConsoleTicket,
    ProxmoxControlPlane,
    ProxmoxSession,
    create_proxmox_control_plane,
)

__all__ = [
    "ControlPlane",
    "CredentialResolver",
    "NodeConfig",
    "SessionState",
    "POWER_ACTIONS",
    "ConsoleTicket",
    "ProxmoxControlPlane",
    "ProxmoxSession",
    "create_proxmox_control_plane",
]
