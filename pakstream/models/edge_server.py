"""
Edge server model for replica nodes that receive processed videos.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from datetime import datetime, timezone

from ..database import Base


class EdgeServer(Base):
    __tablename__ = "edge_servers"
    __table_args__ = (UniqueConstraint("host", "port", name="uq_edge_host_port"),)

    STATUSES = ["active", "inactive", "error"]
    PROTOCOLS = ["http", "https"]

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    host = Column(String(255), nullable=False)
    port = Column(Integer, default=5000)
    protocol = Column(String(5), default="http")
    api_key = Column(String(128), nullable=False, unique=True, index=True)
    status = Column(String(20), default="active", index=True)
    last_heartbeat = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    capacity = Column(JSON, nullable=True)  # {"storage": GB, "bandwidth": Mbps}
    location = Column(JSON, nullable=True)  # {"region": ..., "datacenter": ...}

    # Sync stats, only ever incremented
    videos_synced = Column(Integer, default=0, nullable=False)
    last_sync_time = Column(DateTime, nullable=True)
    sync_errors = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    def to_dict(self):
        """Convert to dictionary for API responses (api key excluded)"""
        return {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "protocol": self.protocol,
            "status": self.status,
            "last_heartbeat": self.last_heartbeat.isoformat() if self.last_heartbeat else None,
            "capacity": self.capacity or {},
            "location": self.location or {},
            "stats": {
                "videos_synced": self.videos_synced,
                "last_sync_time": self.last_sync_time.isoformat() if self.last_sync_time else None,
                "sync_errors": self.sync_errors,
            },
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
