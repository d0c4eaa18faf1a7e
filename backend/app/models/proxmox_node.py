"""Proxmox node model for configured hypervisor control planes."""

from sqlalchemy import Column, String, Boolean, DateTime, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.db import Base


class ProxmoxNode(Base):
    """Hypervisor node whose API is used for inventory sync and control."""

    __tablename__ = "proxmox_nodes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False, index=True)  # matches remote node name
    host = Column(String, nullable=False)  # e.g. https://pve1.example.com
    port = Column(Integer, nullable=False, default=8006)
    username = Column(String, nullable=False)
    realm = Column(String, nullable=False, default="pam")
    credential_ref = Column(String, nullable=False)  # key in the secrets table
    verify_ssl = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    servers = relationship(
        "Server",
        back_populates="proxmox_node",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<ProxmoxNode(name={self.name}, host={self.host})>"
