"""Inventory reconciler: mirror remote VMs and containers into the servers table."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import AppConfig, get_config
from app.exceptions import ErrorKind, InfraDeckError
from app.models import Server
from app.services.control_plane import ControlPlane, NodeConfig, create_proxmox_control_plane
from app.services.node_service import load_node_configs
from app.services.secret_store import SecretStore
from app.utils.encryption import EnvelopeCipher, get_envelope_cipher
from app.utils.locks import get_named_lock
from app.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

# Remote resource kinds mirrored locally; storage, pools, etc. are ignored
REMOTE_TYPE_MAP = {"qemu": "vm", "lxc": "container"}

BYTES_PER_MB = 1024 * 1024
BYTES_PER_GB = 1024 * 1024 * 1024

# Columns overwritten when an existing (vmid, node) row is sighted again
MUTABLE_COLUMNS = (
    "type",
    "name",
    "status",
    "cpu_usage_pct",
    "memory_used_mb",
    "memory_total_mb",
    "disk_used_gb",
    "disk_total_gb",
    "uptime_sec",
    "last_synced_at",
)


@dataclass
class NodeSyncOutcome:
    """Result of one node's portion of a reconciliation pass."""

    node: str
    ok: bool
    synced: int = 0
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None


@dataclass
class ReconcileResult:
    """Stored inventory after a pass plus per-node outcomes."""

    records: List[Server]
    synced_count: int
    nodes: List[NodeSyncOutcome] = field(default_factory=list)

    @property
    def failed_nodes(self) -> List[str]:
        return [outcome.node for outcome in self.nodes if not outcome.ok]


@dataclass
class _NodeFetch:
    node: NodeConfig
    entries: List[Dict[str, Any]] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None


def _optional_float(value: Any, scale: float = 1.0) -> Optional[float]:
    if value is None:
        return None
    return float(value) * scale


def _optional_int_div(value: Any, divisor: int) -> Optional[int]:
    if value is None:
        return None
    return int(value) // divisor


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def normalize_resource(entry: Dict[str, Any], synced_at: datetime) -> Dict[str, Any]:
    """Convert one cluster resource entry into ``servers`` column values.

    Unit conversions: CPU fraction to percent (x100), memory bytes to MB and
    disk bytes to GB by integer division. Missing metrics stay ``None``.

    Raises:
        KeyError, ValueError, TypeError: If the entry lacks a usable vmid or type
    """
    vmid = int(entry["vmid"])
    return {
        "vmid": vmid,
        "node": entry["node"],
        "type": REMOTE_TYPE_MAP[entry["type"]],
        "name": entry.get("name") or f"VM-{vmid}",
        "status": entry.get("status") or "unknown",
        "cpu_usage_pct": _optional_float(entry.get("cpu"), 100.0),
        "memory_used_mb": _optional_int_div(entry.get("mem"), BYTES_PER_MB),
        "memory_total_mb": _optional_int_div(entry.get("maxmem"), BYTES_PER_MB),
        "disk_used_gb": _optional_int_div(entry.get("disk"), BYTES_PER_GB),
        "disk_total_gb": _optional_int_div(entry.get("maxdisk"), BYTES_PER_GB),
        "uptime_sec": _optional_int(entry.get("uptime")),
        "last_synced_at": synced_at,
    }


def _upsert_statement(db: AsyncSession, values: Dict[str, Any]):
    """Build an ``INSERT ... ON CONFLICT (vmid, node) DO UPDATE`` for the session's dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert

    stmt = insert(Server).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=["vmid", "node"],
        set_={column: stmt.excluded[column] for column in MUTABLE_COLUMNS},
    )


async def list_inventory(db: AsyncSession) -> List[Server]:
    """Return every stored server row, fresh from the database."""
    result = await db.execute(
        select(Server)
        .order_by(Server.vmid, Server.node)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


class InventoryReconciler:
    """Fan out over all configured nodes and upsert their VMs and containers.

    One node's failure never aborts the others: each node's work ends in a
    :class:`NodeSyncOutcome`, and the stored (possibly stale) inventory is
    always returned.
    """

    def __init__(
        self,
        db: AsyncSession,
        cipher: EnvelopeCipher,
        control_plane: Optional[ControlPlane] = None,
        config: Optional[AppConfig] = None,
    ):
        """Initialize the reconciler.

        Args:
            db: Database session (used for credential lookups and upserts)
            cipher: Envelope cipher for node credentials
            control_plane: Optional client; when omitted a Proxmox client is
                built for each pass and closed afterwards
            config: Optional configuration (defaults to the process config)
        """
        self.db = db
        self.cipher = cipher
        self.control_plane = control_plane
        self.config = config

    def _build_control_plane(self) -> ControlPlane:
        config = self.config or get_config()
        return create_proxmox_control_plane(
            SecretStore(self.db, self.cipher), timeout=config.http_timeout
        )

    async def _fetch_node(self, control_plane: ControlPlane, node: NodeConfig) -> _NodeFetch:
        """Authenticate, list and filter for one node. Never raises taxonomy errors."""
        node_label = sanitize_log_message(node.name)
        try:
            session = await control_plane.authenticate(node)
            resources = await control_plane.list_resources(session, node)
        except InfraDeckError as e:
            logger.warning(f"Skipping node {node_label}: {sanitize_log_message(str(e))}")
            return _NodeFetch(node=node, error_kind=e.kind, error=str(e))

        # The cluster API may report sibling nodes' resources under one ticket
        entries = [
            entry
            for entry in resources
            if entry.get("type") in REMOTE_TYPE_MAP and entry.get("node") == node.name
        ]
        logger.debug(f"Node {node_label}: {len(entries)} of {len(resources)} resources are VMs/containers")
        return _NodeFetch(node=node, entries=entries)

    async def _upsert_entries(
        self, node: NodeConfig, entries: List[Dict[str, Any]], synced_at: datetime
    ) -> int:
        synced = 0
        for entry in entries:
            try:
                values = normalize_resource(entry, synced_at)
            except (KeyError, ValueError, TypeError):
                logger.warning(
                    f"Ignoring malformed resource from node {sanitize_log_message(node.name)}: "
                    f"{sanitize_log_message(repr(entry))[:200]}"
                )
                continue
            await self.db.execute(_upsert_statement(self.db, values))
            synced += 1
        return synced

    async def reconcile(self) -> ReconcileResult:
        """Run one reconciliation pass.

        Returns:
            All stored records, the number of remote entries synced in this
            pass and one outcome per node
        """
        nodes = await load_node_configs(self.db)
        if not nodes:
            logger.info("No Proxmox nodes configured, nothing to sync")
            return ReconcileResult(records=[], synced_count=0, nodes=[])

        owned = self.control_plane is None
        control_plane = self._build_control_plane() if owned else self.control_plane

        try:
            fetched = await asyncio.gather(
                *(self._fetch_node(control_plane, node) for node in nodes),
                return_exceptions=True,
            )
        finally:
            if owned:
                await control_plane.close()

        outcomes: List[NodeSyncOutcome] = []
        synced_count = 0

        async with get_named_lock("inventory_upsert"):
            synced_at = datetime.now(timezone.utc)

            for node, result in zip(nodes, fetched):
                if isinstance(result, Exception):
                    logger.error(
                        f"Unexpected error syncing node {sanitize_log_message(node.name)}",
                        exc_info=(type(result), result, result.__traceback__),
                    )
                    outcomes.append(
                        NodeSyncOutcome(
                            node=node.name,
                            ok=False,
                            error_kind=ErrorKind.INTERNAL,
                            error=type(result).__name__,
                        )
                    )
                    continue
                if isinstance(result, BaseException):
                    raise result

                if not result.ok:
                    outcomes.append(
                        NodeSyncOutcome(
                            node=node.name,
                            ok=False,
                            error_kind=result.error_kind,
                            error=result.error,
                        )
                    )
                    continue

                try:
                    async with self.db.begin_nested():
                        synced = await self._upsert_entries(node, result.entries, synced_at)
                except (SQLAlchemyError, OverflowError) as e:
                    # Savepoint rolled back; other nodes' rows in this pass are kept
                    logger.error(
                        f"Storing inventory of node {sanitize_log_message(node.name)} failed: "
                        f"{sanitize_log_message(type(e).__name__)}"
                    )
                    outcomes.append(
                        NodeSyncOutcome(
                            node=node.name,
                            ok=False,
                            error_kind=ErrorKind.INTERNAL,
                            error=f"Could not store inventory ({type(e).__name__})",
                        )
                    )
                    continue

                synced_count += synced
                outcomes.append(NodeSyncOutcome(node=node.name, ok=True, synced=synced))

            await self.db.commit()

        failed = [outcome.node for outcome in outcomes if not outcome.ok]
        if failed:
            logger.warning(
                f"Inventory sync finished with {len(failed)} failed node(s): "
                f"{sanitize_log_message(', '.join(failed))}"
            )
        logger.info(f"Inventory sync complete: {synced_count} resources from {len(nodes)} node(s)")

        records = await list_inventory(self.db)
        return ReconcileResult(records=records, synced_count=synced_count, nodes=outcomes)


async def reconcile(
    db: AsyncSession,
    cipher: Optional[EnvelopeCipher] = None,
    control_plane: Optional[ControlPlane] = None,
) -> ReconcileResult:
    """Convenience wrapper using the process-wide cipher."""
    reconciler = InventoryReconciler(db, cipher or get_envelope_cipher(), control_plane)
    return await reconciler.reconcile()
