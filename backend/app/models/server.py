"""Server model mirroring remote VMs and containers."""

from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship
from app.db import Base


class Server(Base):
    """Local inventory row for a remote compute resource.

    Natural key is ``(vmid, node)``. Rows are upserted by the inventory
    reconciler and never removed when the remote resource disappears.
    """

    __tablename__ = "servers"
    __table_args__ = (UniqueConstraint("vmid", "node", name="uq_servers_vmid_node"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    vmid = Column(Integer, nullable=False, index=True)
    node = Column(
        String(255),
        ForeignKey("proxmox_nodes.name", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String, nullable=False)  # vm, container
    name = Column(String, nullable=False)
    status = Column(String, nullable=False)  # running, stopped, paused

    cpu_usage_pct = Column(Float, nullable=True)
    memory_used_mb = Column(Integer, nullable=True)
    memory_total_mb = Column(Integer, nullable=True)
    disk_used_gb = Column(Integer, nullable=True)
    disk_total_gb = Column(Integer, nullable=True)
    uptime_sec = Column(Integer, nullable=True)

    last_synced_at = Column(DateTime(timezone=True), nullable=False, index=True)

    proxmox_node = relationship("ProxmoxNode", back_populates="servers")

    def __repr__(self):
        return f"<Server(vmid={self.vmid}, node={self.node}, status={self.status})>"
