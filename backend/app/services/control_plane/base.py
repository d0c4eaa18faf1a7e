"""Abstract base class for hypervisor control-plane clients."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Tuple
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)

API_PATH = "/api2/json"

# Resolves a credential reference (secret key) to the plaintext password
CredentialResolver = Callable[[str], Awaitable[str]]


class SessionState(str, Enum):
    """Lifecycle of one authenticated session."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    USED = "used"
    REJECTED = "rejected"


@dataclass(frozen=True)
class NodeConfig:
    """Immutable snapshot of a configured node.

    Concurrent per-node work operates on these snapshots instead of ORM
    rows, so no task touches shared session state.
    """

    name: str
    host: str
    port: int
    username: str
    realm: str
    credential_ref: str
    verify_ssl: bool = False

    @classmethod
    def from_model(cls, node) -> "NodeConfig":
        return cls(
            name=node.name,
            host=node.host,
            port=node.port,
            username=node.username,
            realm=node.realm,
            credential_ref=node.credential_ref,
            verify_ssl=bool(node.verify_ssl),
        )

    @property
    def api_base(self) -> str:
        """API root for this node, e.g. ``https://pve1:8006/api2/json``.

        The configured port is applied only when the host URL has none.
        """
        host = self.host.strip().rstrip("/")
        if "://" not in host:
            host = f"https://{host}"

        url = httpx.URL(host)
        # httpx hides a port equal to the scheme default, so check the raw string
        if urlsplit(host).port is None and self.port:
            url = url.copy_with(port=self.port)

        base = str(url).rstrip("/")
        if not base.endswith(API_PATH):
            base = f"{base}{API_PATH}"
        return base


class ControlPlane(ABC):
    """Capability set every hypervisor control plane must provide.

    The inventory reconciler and resource controller depend only on this
    interface, so tests can substitute a fake control plane.
    """

    # Provider identifier used in logging
    provider_name: str = "base"

    @abstractmethod
    async def authenticate(self, node: NodeConfig) -> Any:
        """Open a fresh authenticated session bound to ``node``.

        Raises:
            AuthenticationError: If the node rejects the credentials or is unreachable
            NotFoundError: If the node's credential secret does not exist
            DecryptionError: If the node's credential cannot be decrypted
        """

    @abstractmethod
    async def list_resources(self, session: Any, node: NodeConfig) -> List[Dict[str, Any]]:
        """Return the raw resource listing visible through ``session``."""

    @abstractmethod
    async def perform_action(
        self,
        session: Any,
        node: NodeConfig,
        vmid: int,
        resource_type: str,
        action: str,
    ) -> str:
        """Start an asynchronous state transition and return its task handle."""

    @abstractmethod
    async def console_ticket(self, session: Any, node: NodeConfig, vmid: int) -> Any:
        """Open a remote console for ``vmid`` and return its one-time ticket."""

    @abstractmethod
    async def test_connection(self, node: NodeConfig) -> Tuple[bool, str]:
        """Test the node connection.

        Returns:
            Tuple of (success, message)
        """

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources (close HTTP clients, etc.)."""

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
        return False
