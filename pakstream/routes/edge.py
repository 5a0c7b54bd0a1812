"""
Edge server routes.

Admin side: register and manage edge servers, trigger syncs and probes.
Receiving side (called by the origin with ``X-Api-Key``): accept replicated
metadata and artifacts, answer health probes.
"""
import shutil
from pathlib import Path

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from starlette.datastructures import UploadFile

from ..auth import get_edge_server, require_admin
from ..exceptions import EdgeServerConflict
from ..limiter import limiter
from ..logging_config import get_logger
from ..models.edge_server import EdgeServer
from ..responses import bad_request, conflict, not_found, success
from ..schemas.edge import EdgeMetadataPush, EdgeServerCreate, EdgeServerUpdate
from ..services.streaming import ARTIFACT_EXTENSIONS
from ..services.uploads import processed_dir_for, safe_join

router = APIRouter(prefix="/api/edge", tags=["edge"])

logger = get_logger("edge")


# ============================================================
# ADMIN
# ============================================================

@router.post("/register", status_code=201)
@limiter.limit("10/minute")
async def register_edge_server(request: Request, body: EdgeServerCreate, admin: dict = Depends(require_admin)):
    try:
        server = request.app.state.edge_registry.register(**body.model_dump())
    except EdgeServerConflict as e:
        conflict(str(e))

    logger.info("edge_registered", server=server["name"], host=server["host"], port=server["port"])
    return success(data=server, message="Edge server registered")


@router.get("/servers")
async def list_edge_servers(request: Request, admin: dict = Depends(require_admin)):
    registry = request.app.state.edge_registry
    return success(data=registry.list_all(), meta={"counts": registry.counts()})


@router.put("/servers/{server_id}")
async def update_edge_server(
    server_id: int,
    body: EdgeServerUpdate,
    request: Request,
    admin: dict = Depends(require_admin),
):
    try:
        server = request.app.state.edge_registry.update(server_id, body.model_dump(exclude_unset=True))
    except EdgeServerConflict as e:
        conflict(str(e))
    if server is None:
        not_found("Edge server", str(server_id))
    return success(data=server, message="Edge server updated")


@router.delete("/servers/{server_id}")
async def delete_edge_server(server_id: int, request: Request, admin: dict = Depends(require_admin)):
    if not request.app.state.edge_registry.delete(server_id):
        not_found("Edge server", str(server_id))
    logger.info("edge_deleted", server_id=server_id)
    return success(message="Edge server deleted")


@router.post("/servers/{server_id}/health")
async def probe_edge_server(server_id: int, request: Request, admin: dict = Depends(require_admin)):
    """Probe one edge now instead of waiting for the monitor."""
    server = request.app.state.edge_registry.get(server_id)
    if server is None:
        not_found("Edge server", str(server_id))

    reachable = await request.app.state.edge_sync.check_edge_health(server)
    return success(data={"server_id": server_id, "reachable": reachable})


@router.post("/video/{video_id}/sync", status_code=202)
async def sync_video(
    video_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    admin: dict = Depends(require_admin),
):
    """Push a ready video to every active edge in the background."""
    video = request.app.state.store.get(video_id)
    if not video:
        not_found("Video", video_id)
    if video["status"] != "ready":
        bad_request("Video must be ready before syncing", "VIDEO_NOT_READY")

    output_dir = processed_dir_for(request.app.state.settings.processed_dir, video_id)
    background_tasks.add_task(
        request.app.state.edge_sync.sync_video_to_edges,
        video_id,
        video.get("original_path"),
        str(output_dir),
    )
    return success(message="Edge sync started")


# ============================================================
# RECEIVING SIDE
# ============================================================

@router.post("/video/metadata")
async def receive_metadata(
    body: EdgeMetadataPush,
    request: Request,
    server: EdgeServer = Depends(get_edge_server),
):
    """Create the replicated record unless it already exists."""
    created = request.app.state.store.create_from_snapshot(body.videoId, body.videoData)
    if not created:
        return success(data={"videoId": body.videoId, "created": False}, message="Video metadata already exists")

    logger.info("edge_metadata_received", video_id=body.videoId, source=server.name)
    return success(data={"videoId": body.videoId, "created": True}, message="Video metadata received")


@router.post("/video/files")
async def receive_files(request: Request, server: EdgeServer = Depends(get_edge_server)):
    """Store pushed artifacts under the video's processed directory.

    Each part's field name is the directory relative to the video's output
    root, the part's filename is the file name.
    """
    limit = request.app.state.settings.edge_receive_max_files
    form = await request.form(max_files=limit, max_fields=limit)
    video_id = form.get("videoId")
    if not video_id or not isinstance(video_id, str):
        bad_request("videoId is required")

    store = request.app.state.store
    if not store.exists(video_id):
        not_found("Video", video_id)

    root = processed_dir_for(request.app.state.settings.processed_dir, video_id)
    received = 0
    for field, value in form.multi_items():
        if not isinstance(value, UploadFile) or not value.filename:
            continue

        name = Path(value.filename).name
        if Path(name).suffix.lower() not in ARTIFACT_EXTENSIONS:
            logger.warning("edge_file_skipped", video_id=video_id, filename=name)
            continue

        destination = safe_join(root, f"{field}/{name}")
        if destination is None:
            bad_request("Invalid file path", details={"field": field, "filename": name})

        destination.parent.mkdir(parents=True, exist_ok=True)
        with open(destination, "wb") as out:
            shutil.copyfileobj(value.file, out)
        received += 1

    await form.close()
    request.app.state.cache.invalidate(video_id)

    logger.info("edge_files_received", video_id=video_id, files=received, source=server.name)
    return success(data={"videoId": video_id, "filesReceived": received})


@router.get("/health")
async def edge_health(request: Request, server: EdgeServer = Depends(get_edge_server)):
    """Answer a probe; the caller is marked reachable."""
    request.app.state.edge_registry.mark_heartbeat(server.id, True)
    return {
        "ok": True,
        "status": "healthy",
        "server": server.name,
    }
