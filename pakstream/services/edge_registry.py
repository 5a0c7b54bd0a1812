"""
Edge server registry: CRUD, credential lookup and sync stats.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import EdgeServerConflict
from ..models.edge_server import EdgeServer

# Fields an admin may change after registration
UPDATABLE_FIELDS = ["name", "host", "port", "protocol", "api_key", "status", "capacity", "location"]


class EdgeRegistry:
    """Access to edge server records."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def register(
        self,
        name: str,
        host: str,
        api_key: str,
        port: int = 5000,
        protocol: str = "http",
        capacity: Optional[Dict[str, Any]] = None,
        location: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        with self._session_factory() as db:
            existing = db.query(EdgeServer).filter(
                or_(
                    (EdgeServer.host == host) & (EdgeServer.port == port),
                    EdgeServer.api_key == api_key,
                )
            ).first()
            if existing:
                raise EdgeServerConflict("Edge server with this host and port or api key already exists")

            server = EdgeServer(
                name=name,
                host=host,
                port=port,
                protocol=protocol,
                api_key=api_key,
                status="active",
                capacity=capacity or {},
                location=location or {},
            )
            db.add(server)
            db.commit()
            db.refresh(server)
            return server.to_dict()

    def list_all(self) -> List[Dict[str, Any]]:
        with self._session_factory() as db:
            servers = db.query(EdgeServer).order_by(EdgeServer.created_at.desc()).all()
            return [s.to_dict() for s in servers]

    def list_active(self) -> List[EdgeServer]:
        """Active servers, detached from the session for use by sync tasks."""
        with self._session_factory() as db:
            servers = db.query(EdgeServer).filter(EdgeServer.status == "active").all()
            db.expunge_all()
            return servers

    def list_monitored(self) -> List[EdgeServer]:
        """Servers the health monitor probes (everything not disabled by an admin)."""
        with self._session_factory() as db:
            servers = db.query(EdgeServer).filter(EdgeServer.status != "inactive").all()
            db.expunge_all()
            return servers

    def get(self, server_id: int) -> Optional[EdgeServer]:
        with self._session_factory() as db:
            server = db.get(EdgeServer, server_id)
            if server:
                db.expunge(server)
            return server

    def find_by_api_key(self, api_key: str) -> Optional[EdgeServer]:
        """Look up a server by credential. Returns None when unknown."""
        if not api_key:
            return None
        with self._session_factory() as db:
            server = db.query(EdgeServer).filter(EdgeServer.api_key == api_key).first()
            if server:
                db.expunge(server)
            return server

    def update(self, server_id: int, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._session_factory() as db:
            server = db.get(EdgeServer, server_id)
            if not server:
                return None
            for key in UPDATABLE_FIELDS:
                if fields.get(key) is not None:
                    setattr(server, key, fields[key])
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise EdgeServerConflict("Edge server with this host and port or api key already exists")
            db.refresh(server)
            return server.to_dict()

    def delete(self, server_id: int) -> bool:
        with self._session_factory() as db:
            server = db.get(EdgeServer, server_id)
            if not server:
                return False
            db.delete(server)
            db.commit()
            return True

    # Stats are incremented in SQL so concurrent syncs never overwrite each other

    def record_sync_success(self, server_id: int) -> None:
        with self._session_factory() as db:
            db.execute(
                update(EdgeServer)
                .where(EdgeServer.id == server_id)
                .values(
                    videos_synced=EdgeServer.videos_synced + 1,
                    last_sync_time=datetime.now(timezone.utc),
                )
            )
            db.commit()

    def record_sync_failure(self, server_id: int) -> None:
        with self._session_factory() as db:
            db.execute(
                update(EdgeServer)
                .where(EdgeServer.id == server_id)
                .values(sync_errors=EdgeServer.sync_errors + 1)
            )
            db.commit()

    def mark_heartbeat(self, server_id: int, reachable: bool) -> None:
        values = {"status": "active", "last_heartbeat": datetime.now(timezone.utc)} if reachable else {"status": "error"}
        with self._session_factory() as db:
            db.execute(update(EdgeServer).where(EdgeServer.id == server_id).values(**values))
            db.commit()

    def counts(self) -> Dict[str, int]:
        with self._session_factory() as db:
            counts = {status: 0 for status in EdgeServer.STATUSES}
            for (status,) in db.query(EdgeServer.status).all():
                counts[status] = counts.get(status, 0) + 1
            return counts
