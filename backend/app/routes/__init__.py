"""API routers for InfraDeck."""

from fastapi import APIRouter
from app.routes import secrets, proxmox

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(secrets.router, prefix="/secrets", tags=["secrets"])
api_router.include_router(proxmox.router, prefix="/proxmox", tags=["proxmox"])

__all__ = ["api_router"]
