"""Proxmox VE control-plane client with ticket-based sessions."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from app.exceptions import (
    AuthenticationError,
    InfraDeckError,
    InvalidActionError,
    RemoteAPIError,
    RemoteUnavailableError,
    SessionBindingError,
)
from app.services.control_plane.base import (
    ControlPlane,
    CredentialResolver,
    NodeConfig,
    SessionState,
)
from app.utils.security import mask_sensitive, sanitize_log_message, truncate_remote_body

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

# Methods that change remote state and need the anti-forgery token
MUTATING_METHODS = frozenset({"POST", "PUT", "DELETE"})

REMOTE_RESOURCE_TYPES = ("qemu", "lxc")
POWER_ACTIONS = ("start", "stop", "shutdown", "reboot")


@dataclass(frozen=True)
class ProxmoxSession:
    """Ticket and CSRF token issued by one ``/access/ticket`` call.

    Held in memory for a single logical operation only.
    """

    node_name: str
    api_base: str
    ticket: str = field(repr=False)
    csrf_token: str = field(repr=False)
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ConsoleTicket:
    """One-time VNC proxy ticket for a guest console.

    ``port`` and ``ticket`` are the parameters of the node's
    ``vncwebsocket`` endpoint.
    """

    node: str
    vmid: int
    resource_type: str
    port: int
    ticket: str = field(repr=False)
    upid: str = ""
    user: Optional[str] = None


class ProxmoxControlPlane(ControlPlane):
    """Proxmox VE API client.

    Every operation authenticates fresh; sessions are never cached or
    pooled across operations.
    """

    provider_name = "proxmox"

    def __init__(
        self,
        credential_resolver: CredentialResolver,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize Proxmox client.

        Args:
            credential_resolver: Coroutine returning the plaintext password for a credential reference
            timeout: Timeout in seconds applied to every outbound request
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self._resolve_credential = credential_resolver
        self.timeout = timeout
        self._transport = transport
        # One client per TLS verification mode
        self._clients: Dict[bool, httpx.AsyncClient] = {}

    def _client(self, verify_ssl: bool) -> httpx.AsyncClient:
        client = self._clients.get(verify_ssl)
        if client is None:
            client = httpx.AsyncClient(
                timeout=self.timeout,
                verify=verify_ssl,
                transport=self._transport,
            )
            self._clients[verify_ssl] = client
        return client

    async def close(self) -> None:
        """Close HTTP clients."""
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()

    def _log_state(self, node_name: str, state: SessionState) -> None:
        logger.debug(f"[{self.provider_name}:{sanitize_log_message(node_name)}] session {state.value}")

    async def authenticate(self, node: NodeConfig) -> ProxmoxSession:
        """Request a ticket for ``node`` using its stored credential.

        Raises:
            AuthenticationError: On non-2xx status, timeout, transport failure
                or a response without ticket/CSRF token
            NotFoundError: If the credential secret does not exist
            DecryptionError: If the credential cannot be decrypted
        """
        self._log_state(node.name, SessionState.UNAUTHENTICATED)
        password = await self._resolve_credential(node.credential_ref)

        self._log_state(node.name, SessionState.AUTHENTICATING)
        url = f"{node.api_base}/access/ticket"
        try:
            response = await self._client(node.verify_ssl).post(
                url,
                data={
                    "username": node.username,
                    "password": password,
                    "realm": node.realm,
                },
            )
        except httpx.TimeoutException:
            self._log_state(node.name, SessionState.REJECTED)
            raise AuthenticationError(node.name, "request timed out")
        except httpx.HTTPError as e:
            self._log_state(node.name, SessionState.REJECTED)
            raise AuthenticationError(node.name, f"connection failed ({type(e).__name__})")

        if not response.is_success:
            self._log_state(node.name, SessionState.REJECTED)
            raise AuthenticationError(node.name, f"HTTP {response.status_code}")

        try:
            data = response.json().get("data") or {}
            ticket = data.get("ticket")
            csrf_token = data.get("CSRFPreventionToken")
        except (ValueError, AttributeError):
            ticket = csrf_token = None

        if not ticket or not csrf_token:
            self._log_state(node.name, SessionState.REJECTED)
            raise AuthenticationError(node.name, "response did not contain a ticket")

        self._log_state(node.name, SessionState.AUTHENTICATED)
        logger.debug(f"[{self.provider_name}:{sanitize_log_message(node.name)}] ticket {mask_sensitive(ticket)} issued")
        return ProxmoxSession(
            node_name=node.name,
            api_base=node.api_base,
            ticket=ticket,
            csrf_token=csrf_token,
        )

    @staticmethod
    def _check_binding(session: ProxmoxSession, node: NodeConfig) -> None:
        if session.node_name != node.name or session.api_base != node.api_base:
            raise SessionBindingError(
                f"Session issued for node '{session.node_name}' cannot be used for node '{node.name}'"
            )

    async def call(
        self,
        session: ProxmoxSession,
        node: NodeConfig,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Issue one authenticated request against ``node``.

        The session must have been issued for ``node``; this is checked
        before any network I/O. No retries.

        Args:
            session: Session from :meth:`authenticate`
            node: Target node
            method: HTTP method
            path: API path below ``/api2/json`` (e.g. ``/cluster/resources``)
            data: Optional form body

        Returns:
            Decoded JSON response

        Raises:
            SessionBindingError: If the session belongs to another node
            RemoteAPIError: On non-2xx status or a non-JSON body
            RemoteUnavailableError: On timeout or transport failure
        """
        self._check_binding(session, node)

        method = method.upper()
        headers = {"Cookie": f"PVEAuthCookie={session.ticket}"}
        if method in MUTATING_METHODS:
            headers["CSRFPreventionToken"] = session.csrf_token

        url = f"{session.api_base}{path}"
        try:
            response = await self._client(node.verify_ssl).request(
                method, url, headers=headers, data=data
            )
        except httpx.TimeoutException:
            raise RemoteUnavailableError(f"{node.name}{path}", "request timed out")
        except httpx.HTTPError as e:
            raise RemoteUnavailableError(f"{node.name}{path}", type(e).__name__)

        self._log_state(node.name, SessionState.USED)

        if not response.is_success:
            body = truncate_remote_body(response.text)
            logger.warning(
                f"[{self.provider_name}:{sanitize_log_message(node.name)}] "
                f"{method} {sanitize_log_message(path)} returned HTTP {response.status_code}"
            )
            raise RemoteAPIError(response.status_code, body)

        try:
            return response.json()
        except ValueError:
            raise RemoteAPIError(
                response.status_code,
                truncate_remote_body(response.text),
                message=f"Proxmox API returned invalid JSON for {method} {path}",
            )

    async def list_resources(
        self, session: ProxmoxSession, node: NodeConfig
    ) -> List[Dict[str, Any]]:
        """Return the cluster resource listing (all kinds, all nodes)."""
        payload = await self.call(session, node, "GET", "/cluster/resources")
        resources = payload.get("data") or []
        if not isinstance(resources, list):
            raise RemoteAPIError(200, "", message="Proxmox cluster resource listing is not a list")
        return resources

    async def perform_action(
        self,
        session: ProxmoxSession,
        node: NodeConfig,
        vmid: int,
        resource_type: str,
        action: str,
    ) -> str:
        """Trigger a power action and return the task UPID.

        Args:
            resource_type: Remote type segment (``qemu`` or ``lxc``)
            action: One of start, stop, shutdown, reboot
        """
        if resource_type not in REMOTE_RESOURCE_TYPES:
            raise InvalidActionError(f"Unsupported resource type: {resource_type}")
        if action not in POWER_ACTIONS:
            raise InvalidActionError(f"Invalid action: {action}")

        path = f"/nodes/{quote(node.name, safe='')}/{resource_type}/{int(vmid)}/status/{action}"
        payload = await self.call(session, node, "POST", path)

        upid = payload.get("data")
        if not upid:
            raise RemoteAPIError(200, "", message=f"Proxmox did not return a task id for {action}")
        return str(upid)

    async def console_ticket(
        self, session: ProxmoxSession, node: NodeConfig, vmid: int
    ) -> ConsoleTicket:
        """Open a VNC proxy for a VM or container and return its one-time ticket.

        The resource kind is not stored with the request, so the VM status
        endpoint is queried first; a non-2xx answer there means a container.
        The session ticket itself is never part of the result.

        Raises:
            RemoteAPIError: If the proxy cannot be opened
            RemoteUnavailableError: On timeout or transport failure
        """
        node_segment = quote(node.name, safe="")
        vmid = int(vmid)

        try:
            await self.call(session, node, "GET", f"/nodes/{node_segment}/qemu/{vmid}/status/current")
            resource_type = "qemu"
        except RemoteUnavailableError:
            raise
        except RemoteAPIError:
            resource_type = "lxc"

        payload = await self.call(
            session,
            node,
            "POST",
            f"/nodes/{node_segment}/{resource_type}/{vmid}/vncproxy",
            data={"websocket": 1},
        )
        data = payload.get("data") or {}
        if not isinstance(data, dict) or not data.get("ticket") or not str(data.get("port", "")).isdigit():
            raise RemoteAPIError(200, "", message=f"Proxmox did not open a console for {vmid}")

        logger.info(
            f"[{self.provider_name}:{sanitize_log_message(node.name)}] console opened for "
            f"{resource_type} {vmid} on port {sanitize_log_message(str(data['port']))}"
        )
        return ConsoleTicket(
            node=node.name,
            vmid=vmid,
            resource_type=resource_type,
            port=int(data["port"]),
            ticket=str(data["ticket"]),
            upid=str(data.get("upid") or ""),
            user=data.get("user"),
        )

    async def test_connection(self, node: NodeConfig) -> Tuple[bool, str]:
        """Authenticate and read the API version."""
        try:
            session = await self.authenticate(node)
            payload = await self.call(session, node, "GET", "/version")
            version = (payload.get("data") or {}).get("version", "unknown")
            return True, f"Connected to Proxmox VE {version}"
        except InfraDeckError as e:
            logger.warning(f"[{self.provider_name}] Connection test failed: {sanitize_log_message(str(e))}")
            return False, str(e)


def create_proxmox_control_plane(
    secret_store,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProxmoxControlPlane:
    """Build a client whose credentials come from ``secret_store``.

    Credential lookups are serialized because concurrent per-node tasks
    share one database session.
    """
    lookup_lock = asyncio.Lock()

    async def resolve(credential_ref: str) -> str:
        async with lookup_lock:
            return await secret_store.get(credential_ref)

    return ProxmoxControlPlane(resolve, timeout=timeout, transport=transport)
