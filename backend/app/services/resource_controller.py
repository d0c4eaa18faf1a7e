"""Resource controller: power actions and consoles for remote VMs and containers."""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import AppConfig, get_config
from app.exceptions import InvalidActionError
from app.services.control_plane import (
    POWER_ACTIONS,
    ConsoleTicket,
    ControlPlane,
    create_proxmox_control_plane,
)
from app.services.node_service import load_node_config
from app.services.secret_store import SecretStore
from app.utils.encryption import EnvelopeCipher, get_envelope_cipher
from app.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

# Local resource type (and the remote spelling) to API path segment
RESOURCE_TYPE_SEGMENTS = {
    "vm": "qemu",
    "container": "lxc",
    "qemu": "qemu",
    "lxc": "lxc",
}

SEGMENT_TO_TYPE = {"qemu": "vm", "lxc": "container"}


@dataclass(frozen=True)
class ControlResult:
    """Handle of the asynchronous task started on the node."""

    task_handle: str
    node: str
    vmid: int
    resource_type: str
    action: str


class ResourceController:
    """Issue exactly one state-transition command per call.

    Authenticates fresh every time and does not poll the returned task.
    """

    def __init__(
        self,
        db: AsyncSession,
        cipher: EnvelopeCipher,
        control_plane: Optional[ControlPlane] = None,
        config: Optional[AppConfig] = None,
    ):
        self.db = db
        self.cipher = cipher
        self.control_plane = control_plane
        self.config = config

    def _control_plane(self) -> Tuple[ControlPlane, bool]:
        if self.control_plane is not None:
            return self.control_plane, False
        config = self.config or get_config()
        client = create_proxmox_control_plane(
            SecretStore(self.db, self.cipher), timeout=config.http_timeout
        )
        return client, True

    async def control(
        self, node_name: str, vmid: int, resource_type: str, action: str
    ) -> ControlResult:
        """Run ``action`` against one VM or container.

        Args:
            node_name: Configured node name
            vmid: Remote VM/container id
            resource_type: ``vm`` or ``container`` (``qemu``/``lxc`` accepted)
            action: One of start, stop, shutdown, reboot

        Returns:
            ControlResult carrying the remote task id (UPID)

        Raises:
            InvalidActionError: Unknown action or resource type (before any I/O)
            NotFoundError: Unknown node or missing credential
            AuthenticationError: Node rejected the credentials or is unreachable
            RemoteAPIError: Non-2xx response or timeout on the action call
        """
        if action not in POWER_ACTIONS:
            raise InvalidActionError(f"Invalid action: {action}")

        segment = RESOURCE_TYPE_SEGMENTS.get(resource_type)
        if segment is None:
            raise InvalidActionError(f"Unsupported resource type: {resource_type}")

        node = await load_node_config(self.db, node_name)

        control_plane, owned = self._control_plane()
        try:
            session = await control_plane.authenticate(node)
            upid = await control_plane.perform_action(session, node, vmid, segment, action)
        finally:
            if owned:
                await control_plane.close()

        logger.info(
            f"Requested {action} of {SEGMENT_TO_TYPE[segment]} {vmid} on node "
            f"{sanitize_log_message(node.name)} (task {sanitize_log_message(upid)})"
        )
        return ControlResult(
            task_handle=upid,
            node=node.name,
            vmid=vmid,
            resource_type=SEGMENT_TO_TYPE[segment],
            action=action,
        )

    async def console(self, node_name: str, vmid: int) -> ConsoleTicket:
        """Open a VNC console for one VM or container.

        Raises:
            InvalidActionError: If vmid is not a positive integer
            NotFoundError: Unknown node or missing credential
            AuthenticationError: Node rejected the credentials or is unreachable
            RemoteAPIError: The node could not open the console
        """
        if int(vmid) < 1:
            raise InvalidActionError(f"Invalid vmid: {vmid}")

        node = await load_node_config(self.db, node_name)
        control_plane, owned = self._control_plane()
        try:
            session = await control_plane.authenticate(node)
            return await control_plane.console_ticket(session, node, vmid)
        finally:
            if owned:
                await control_plane.close()


async def control_resource(
    db: AsyncSession,
    node_name: str,
    vmid: int,
    resource_type: str,
    action: str,
    cipher: Optional[EnvelopeCipher] = None,
    control_plane: Optional[ControlPlane] = None,
) -> ControlResult:
    """Convenience wrapper using the process-wide cipher."""
    controller = ResourceController(db, cipher or get_envelope_cipher(), control_plane)
    return await controller.control(node_name, vmid, resource_type, action)
