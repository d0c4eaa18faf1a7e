"""Proxmox node configuration service."""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import AppConfig, get_config
from app.exceptions import NotFoundError
from app.models import ProxmoxNode, Server
from app.services.control_plane import ControlPlane, NodeConfig, create_proxmox_control_plane
from app.services.secret_store import SecretStore
from app.utils.encryption import EnvelopeCipher
from app.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

CREDENTIAL_PREFIX = "proxmox_node:"


def credential_key(node_name: str) -> str:
    """Secret key holding the password of ``node_name``."""
    return f"{CREDENTIAL_PREFIX}{node_name}"


async def load_node_configs(db: AsyncSession) -> List[NodeConfig]:
    """Return snapshots of all configured nodes ordered by name."""
    result = await db.execute(select(ProxmoxNode).order_by(ProxmoxNode.name))
    return [NodeConfig.from_model(node) for node in result.scalars().all()]


async def load_node_config(db: AsyncSession, name: str) -> NodeConfig:
    """Return the snapshot of one node.

    Raises:
        NotFoundError: If no node with this name is configured
    """
    result = await db.execute(select(ProxmoxNode).where(ProxmoxNode.name == name))
    node = result.scalar_one_or_none()
    if node is None:
        raise NotFoundError("Node", name)
    return NodeConfig.from_model(node)


class NodeService:
    """Create, list and remove configured Proxmox nodes."""

    def __init__(
        self,
        db: AsyncSession,
        cipher: EnvelopeCipher,
        config: Optional[AppConfig] = None,
    ):
        self.db = db
        self.cipher = cipher
        self.config = config
        self.secrets = SecretStore(db, cipher)

    async def list_nodes(self) -> List[ProxmoxNode]:
        result = await self.db.execute(select(ProxmoxNode).order_by(ProxmoxNode.name))
        return list(result.scalars().all())

    async def get_node(self, name: str) -> ProxmoxNode:
        result = await self.db.execute(select(ProxmoxNode).where(ProxmoxNode.name == name))
        node = result.scalar_one_or_none()
        if node is None:
            raise NotFoundError("Node", name)
        return node

    async def _name_taken(self, name: str) -> bool:
        existing = await self.db.execute(select(ProxmoxNode.id).where(ProxmoxNode.name == name))
        return existing.scalar_one_or_none() is not None

    async def create(
        self,
        name: str,
        host: str,
        username: str,
        password: str,
        port: int = 8006,
        realm: str = "pam",
        verify_ssl: bool = False,
    ) -> ProxmoxNode:
        """Register a node and store its password in the secret store.

        The credential and the node row are committed together; if the
        insert fails neither is kept.

        Raises:
            ValueError: If a node with the same name already exists
        """
        if await self._name_taken(name):
            raise ValueError(f"Node '{name}' already exists")

        ref = credential_key(name)
        await self.secrets.put(
            ref, password, description=f"Proxmox password for node {name}", commit=False
        )

        node = ProxmoxNode(
            name=name,
            host=host.rstrip("/"),
            port=port,
            username=username,
            realm=realm,
            credential_ref=ref,
            verify_ssl=verify_ssl,
        )
        self.db.add(node)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(f"Node {sanitize_log_message(name)} was added concurrently, rolled back")
            raise ValueError(f"Node '{name}' already exists")
        await self.db.refresh(node)

        logger.info(f"Added Proxmox node {sanitize_log_message(name)} ({sanitize_log_message(node.host)})")
        return node

    async def delete(self, name: str) -> None:
        """Remove a node, its inventory rows and its credential.

        Raises:
            NotFoundError: If no node with this name is configured
        """
        node = await self.get_node(name)
        ref = node.credential_ref

        # Explicit cascade; the FK also cascades where the database enforces it
        await self.db.execute(delete(Server).where(Server.node == name))
        await self.db.delete(node)
        await self.db.commit()

        await self.secrets.delete(ref)
        # Sessions are never cached, so there is nothing else to revoke
        logger.info(f"Deleted Proxmox node {sanitize_log_message(name)}")

    async def test_connection(
        self, name: str, control_plane: Optional[ControlPlane] = None
    ) -> Tuple[bool, str]:
        """Authenticate against the node and report the API version.

        Raises:
            NotFoundError: If no node with this name is configured
        """
        node = await load_node_config(self.db, name)

        if control_plane is not None:
            return await control_plane.test_connection(node)

        config = self.config or get_config()
        async with create_proxmox_control_plane(self.secrets, timeout=config.http_timeout) as client:
            return await client.test_connection(node)
