"""
Edge Sync Service

Replicates processed videos to every active edge server:
- Metadata push (create-if-absent on the edge)
- Artifact push (playlists, segments, thumbnails) as multipart requests of
  at most ``batch_size`` parts each
- Per-server outcome recorded into that server's stats
- Health probing of registered edges

Servers are handled concurrently and independently: one edge failing never
aborts the others. Outbound HTTP and database access run on worker threads.
"""

import asyncio
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import requests

from ..exceptions import EdgeSyncError
from ..logging_config import get_logger
from ..services.streaming import ARTIFACT_EXTENSIONS, content_type_for

logger = get_logger("edge_sync")

API_KEY_HEADER = "X-Api-Key"
DEFAULT_BATCH_SIZE = 500


def collect_artifacts(output_dir: str) -> List[Tuple[str, Path]]:
    """(relative directory, path) for every artifact under ``output_dir``."""
    root = Path(output_dir)
    if not root.is_dir():
        return []

    artifacts = []
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.suffix.lower() in ARTIFACT_EXTENSIONS:
            relative_dir = path.parent.relative_to(root).as_posix()
            artifacts.append((relative_dir, path))
    return artifacts


class EdgeSyncService:
    """Pushes finished videos to edge servers"""

    def __init__(
        self,
        registry,
        store,
        metadata_timeout: float = 10,
        upload_timeout: float = 300,
        health_timeout: float = 5,
        max_retries: int = 3,
        backoff: float = 2,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self._registry = registry
        self._store = store
        self.metadata_timeout = metadata_timeout
        self.upload_timeout = upload_timeout
        self.health_timeout = health_timeout
        self.max_retries = max(1, max_retries)
        self.backoff = backoff
        self.batch_size = max(1, batch_size)

    # ============================================================
    # SYNC
    # ============================================================

    async def sync_video_to_edges(self, video_id: str, input_path: Optional[str], output_dir: str) -> Dict[str, Any]:
        """Push one video to all active edges. Never raises for a single edge's failure."""
        servers = await asyncio.to_thread(self._registry.list_active)
        if not servers:
            logger.info("edge_sync_skipped", video_id=video_id, reason="no active edge servers")
            return {"synced": 0, "failed": 0, "results": []}

        logger.info("edge_sync_started", video_id=video_id, source=input_path, servers=len(servers))

        snapshot = await asyncio.to_thread(self._store.get, video_id)
        artifacts = collect_artifacts(output_dir)

        outcomes = await asyncio.gather(
            *(self._sync_to_edge(server, video_id, snapshot, artifacts) for server in servers),
            return_exceptions=True,
        )

        results = []
        for server, outcome in zip(servers, outcomes):
            if isinstance(outcome, BaseException):
                results.append({"server": server.name, "server_id": server.id, "success": False, "error": str(outcome)})
            else:
                results.append(outcome)

        synced = sum(1 for r in results if r["success"])
        failed = len(results) - synced
        logger.info("edge_sync_completed", video_id=video_id, synced=synced, failed=failed)
        return {"synced": synced, "failed": failed, "results": results}

    async def _sync_to_edge(self, server, video_id: str, snapshot: Optional[Dict[str, Any]], artifacts) -> Dict[str, Any]:
        try:
            if snapshot is None:
                raise EdgeSyncError(server.name, "send metadata", "Video not found")

            await self._with_retry(server, "send metadata", self._send_metadata, server, video_id, snapshot)
            files = await self._with_retry(server, "upload files", self._upload_files, server, video_id, artifacts)
        except Exception as e:
            await asyncio.to_thread(self._registry.record_sync_failure, server.id)
            logger.warning("edge_sync_server_failed", server=server.name, video_id=video_id, error=str(e))
            raise

        await asyncio.to_thread(self._registry.record_sync_success, server.id)
        logger.info("edge_sync_server_done", server=server.name, video_id=video_id, files=files)
        return {"server": server.name, "server_id": server.id, "success": True, "files": files}

    async def _with_retry(self, server, step: str, func, *args):
        """Run a blocking push with bounded retries and exponential backoff"""
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                return await asyncio.to_thread(func, *args)
            except Exception as e:
                last_error = e

            if attempt < self.max_retries - 1:
                wait_time = self.backoff ** attempt if self.backoff else 0
                logger.warning(
                    "edge_push_retry",
                    server=server.name,
                    step=step,
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(last_error),
                )
                await asyncio.sleep(wait_time)

        if isinstance(last_error, EdgeSyncError):
            raise last_error
        raise EdgeSyncError(server.name, step, str(last_error)) from last_error

    def _send_metadata(self, server, video_id: str, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        response = requests.post(
            f"{server.base_url}/api/edge/video/metadata",
            json={"videoId": video_id, "videoData": snapshot},
            headers={API_KEY_HEADER: server.api_key},
            timeout=self.metadata_timeout,
        )
        if not 200 <= response.status_code < 300:
            raise EdgeSyncError(server.name, "send metadata", f"HTTP {response.status_code}")
        return response.json()

    def _upload_files(self, server, video_id: str, artifacts: List[Tuple[str, Path]]) -> int:
        if not artifacts:
            logger.warning("edge_sync_no_artifacts", server=server.name, video_id=video_id)
            return 0

        for start in range(0, len(artifacts), self.batch_size):
            self._upload_batch(server, video_id, artifacts[start:start + self.batch_size])
        return len(artifacts)

    def _upload_batch(self, server, video_id: str, batch: List[Tuple[str, Path]]):
        # Field name carries the directory, filename the basename
        with ExitStack() as stack:
            files = [
                (relative_dir, (path.name, stack.enter_context(open(path, "rb")), content_type_for(path.name)))
                for relative_dir, path in batch
            ]
            response = requests.post(
                f"{server.base_url}/api/edge/video/files",
                data={"videoId": video_id},
                files=files,
                headers={API_KEY_HEADER: server.api_key},
                timeout=self.upload_timeout,
            )

        if not 200 <= response.status_code < 300:
            raise EdgeSyncError(server.name, "upload files", f"HTTP {response.status_code}")

    # ============================================================
    # HEALTH
    # ============================================================

    async def check_edge_health(self, server) -> bool:
        """Probe one edge; any 2xx marks it active."""
        try:
            response = await asyncio.to_thread(
                requests.get,
                f"{server.base_url}/api/edge/health",
                headers={API_KEY_HEADER: server.api_key},
                timeout=self.health_timeout,
            )
            reachable = 200 <= response.status_code < 300
        except requests.RequestException as e:
            logger.warning("edge_health_failed", server=server.name, error=str(e))
            reachable = False

        await asyncio.to_thread(self._registry.mark_heartbeat, server.id, reachable)
        return reachable

    async def check_all(self) -> Dict[str, bool]:
        servers = await asyncio.to_thread(self._registry.list_monitored)
        outcomes = await asyncio.gather(*(self.check_edge_health(s) for s in servers), return_exceptions=True)
        return {
            server.name: (outcome is True)
            for server, outcome in zip(servers, outcomes)
        }

    async def run_health_monitor(self, interval: float):
        """Probe all edges every ``interval`` seconds until cancelled."""
        logger.info("edge_health_monitor_started", interval=interval)
        while True:
            try:
                results = await self.check_all()
                logger.debug("edge_health_checked", results=results)
            except Exception as e:
                logger.error("edge_health_monitor_error", error=e)
            await asyncio.sleep(interval)
