"""Proxmox API endpoints: nodes, inventory sync, power control and consoles."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import AppConfig
from app.db import get_db
from app.dependencies import get_app_config, get_cipher, get_control_plane
from app.exceptions import InfraDeckError
from app.schemas import (
    ConnectionTestResult,
    ConsoleRequest,
    ConsoleResponse,
    ControlRequest,
    ControlResponse,
    InventoryResponse,
    NodeCreate,
    NodeSchema,
    NodeSyncSchema,
    ServerSchema,
)
from app.services.control_plane import ControlPlane
from app.services.inventory_reconciler import InventoryReconciler, list_inventory
from app.services.node_service import NodeService
from app.services.resource_controller import SEGMENT_TO_TYPE, ResourceController
from app.utils.encryption import EnvelopeCipher
from app.utils.error_handling import raise_for_engine_error

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/nodes", response_model=List[NodeSchema])
async def list_nodes(
    db: AsyncSession = Depends(get_db),
    cipher: EnvelopeCipher = Depends(get_cipher),
) -> List[NodeSchema]:
    """List configured nodes (without credentials)."""
    return await NodeService(db, cipher).list_nodes()


@router.post("/nodes", response_model=NodeSchema, status_code=201)
async def add_node(
    payload: NodeCreate,
    db: AsyncSession = Depends(get_db),
    cipher: EnvelopeCipher = Depends(get_cipher),
    config: AppConfig = Depends(get_app_config),
) -> NodeSchema:
    """Register a node; its password is encrypted before storage."""
    service = NodeService(db, cipher, config)
    try:
        return await service.create(
            name=payload.name,
            host=str(payload.host),
            port=payload.port,
            username=payload.username,
            password=payload.password,
            realm=payload.realm,
            verify_ssl=payload.verify_ssl,
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/nodes/{name}", status_code=204)
async def delete_node(
    name: str,
    db: AsyncSession = Depends(get_db),
    cipher: EnvelopeCipher = Depends(get_cipher),
) -> Response:
    """Delete a node together with its inventory rows and credential."""
    try:
        await NodeService(db, cipher).delete(name)
    except InfraDeckError as e:
        raise_for_engine_error(logger, e)
    return Response(status_code=204)


@router.post("/nodes/{name}/test", response_model=ConnectionTestResult)
async def check_node_connection(
    name: str,
    db: AsyncSession = Depends(get_db),
    cipher: EnvelopeCipher = Depends(get_cipher),
    control_plane: ControlPlane = Depends(get_control_plane),
) -> ConnectionTestResult:
    """Authenticate against a node and report its API version."""
    try:
        success, message = await NodeService(db, cipher).test_connection(name, control_plane)
    except InfraDeckError as e:
        raise_for_engine_error(logger, e)
    return ConnectionTestResult(success=success, message=message)


@router.get("/resources", response_model=InventoryResponse)
async def sync_resources(
    db: AsyncSession = Depends(get_db),
    cipher: EnvelopeCipher = Depends(get_cipher),
    control_plane: ControlPlane = Depends(get_control_plane),
) -> InventoryResponse:
    """Sync VMs/containers from every node and return the stored inventory.

    Unreachable nodes are reported per node; their rows stay at the last
    known state.
    """
    result = await InventoryReconciler(db, cipher, control_plane).reconcile()
    return InventoryResponse(
        servers=[ServerSchema.model_validate(record) for record in result.records],
        synced=result.synced_count,
        nodes=[
            NodeSyncSchema(
                node=outcome.node,
                ok=outcome.ok,
                synced=outcome.synced,
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
                error=outcome.error,
            )
            for outcome in result.nodes
        ],
    )


@router.get("/resources/cached", response_model=List[ServerSchema])
async def cached_resources(db: AsyncSession = Depends(get_db)) -> List[ServerSchema]:
    """Return the stored inventory without contacting any node."""
    return await list_inventory(db)


@router.post("/control", response_model=ControlResponse)
async def control_resource(
    payload: ControlRequest,
    db: AsyncSession = Depends(get_db),
    cipher: EnvelopeCipher = Depends(get_cipher),
    control_plane: ControlPlane = Depends(get_control_plane),
) -> ControlResponse:
    """Start, stop, shut down or reboot one VM or container."""
    controller = ResourceController(db, cipher, control_plane)
    try:
        result = await controller.control(payload.node, payload.vmid, payload.type, payload.action)
    except InfraDeckError as e:
        raise_for_engine_error(logger, e)

    return ControlResponse(
        action=result.action,
        vmid=result.vmid,
        type=result.resource_type,
        node=result.node,
        upid=result.task_handle,
    )


@router.post("/console", response_model=ConsoleResponse)
async def open_console(
    payload: ConsoleRequest,
    db: AsyncSession = Depends(get_db),
    cipher: EnvelopeCipher = Depends(get_cipher),
    control_plane: ControlPlane = Depends(get_control_plane),
) -> ConsoleResponse:
    """Open a VNC console and return the one-time ticket for its websocket."""
    controller = ResourceController(db, cipher, control_plane)
    try:
        console = await controller.console(payload.node, payload.vmid)
    except InfraDeckError as e:
        raise_for_engine_error(logger, e)

    return ConsoleResponse(
        node=console.node,
        vmid=console.vmid,
        type=SEGMENT_TO_TYPE[console.resource_type],
        port=console.port,
        ticket=console.ticket,
        upid=console.upid,
    )
