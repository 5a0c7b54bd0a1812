"""
Video upload, queue control and serving routes.

Uploads are stored under ``videos/original`` and handed to the processing
queue. Finished HLS output is served from ``videos/processed/<id>/hls``
through the metadata cache; originals support byte ranges for seeking.
"""
import shutil
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import FileResponse, StreamingResponse

from ..auth import get_required_user, require_admin
from ..exceptions import DuplicateJobError, InvalidRangeError, UploadRejected
from ..limiter import limiter
from ..logging_config import get_logger
from ..responses import ApiException, bad_request, conflict, forbidden, not_found, range_not_satisfiable, success
from ..schemas.video import VideoUpdate
from ..services.streaming import cache_control_for, content_type_for, iter_file_range, parse_range
from ..services.uploads import destination_for, processed_dir_for, require_video_file, safe_join

router = APIRouter(prefix="/api/videos", tags=["videos"])

logger = get_logger("videos")

UPLOAD_CHUNK_SIZE = 1024 * 1024


def _can_modify(video: dict, user: dict) -> bool:
    return user["role"] == "admin" or video.get("uploaded_by") == user["id"]


async def _save_upload(upload: UploadFile, destination: Path, max_size: int) -> int:
    """Stream an upload to disk, enforcing the size limit. Returns bytes written."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    with open(destination, "wb") as out:
        while True:
            chunk = await upload.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_size:
                break
            out.write(chunk)

    if written > max_size:
        destination.unlink(missing_ok=True)
        raise ApiException(
            413,
            f"File too large. Maximum size is {max_size // (1024 ** 3)}GB.",
            "FILE_TOO_LARGE",
        )
    return written


# ============================================================
# UPLOAD
# ============================================================

@router.post("/upload", status_code=201)
@limiter.limit("10/minute")
async def upload_video(
    request: Request,
    video: Optional[UploadFile] = File(None),
    title: str = Form(...),
    description: str = Form(""),
    current_user: dict = Depends(get_required_user),
):
    """Store an uploaded video and queue it for processing."""
    settings = request.app.state.settings

    if video is None or not video.filename:
        bad_request("No video file provided", "NO_FILE")

    try:
        require_video_file(video.filename, video.content_type, video.size, settings.max_upload_size)
    except UploadRejected as e:
        bad_request(str(e), "INVALID_FILE")

    destination = destination_for(settings.original_dir, video.filename)
    size = await _save_upload(video, destination, settings.max_upload_size)

    store = request.app.state.store
    record = store.create(
        title=title,
        description=description,
        uploaded_by=current_user["id"],
        original_filename=video.filename,
        original_path=str(destination),
        original_size=size,
        mimetype=video.content_type,
    )
    logger.info("video_uploaded", video_id=record["id"], size=size, filename=video.filename)

    queue = request.app.state.queue
    try:
        queue.enqueue(record["id"], str(destination))
    except DuplicateJobError as e:
        conflict(str(e))

    return success(
        data={"video": record, "queue": queue.status()},
        message="Video uploaded and queued for processing",
    )


# ============================================================
# QUEUE CONTROL
# ============================================================

@router.get("/queue/status")
async def queue_status(request: Request, current_user: dict = Depends(get_required_user)):
    return success(data=request.app.state.queue.status())


@router.delete("/queue/{video_id}")
async def cancel_queued_video(video_id: str, request: Request, admin: dict = Depends(require_admin)):
    """Remove a job that has not started yet."""
    if not request.app.state.queue.cancel(video_id):
        not_found("Queued job", video_id)
    return success(message="Job removed from queue")


@router.delete("/queue")
async def clear_queue(request: Request, admin: dict = Depends(require_admin)):
    """Drop all pending jobs. Jobs already running finish normally."""
    removed = request.app.state.queue.clear()
    return success(data={"removed": removed}, message="Queue cleared")


# ============================================================
# RECORDS
# ============================================================

@router.get("/{video_id}")
async def get_video(video_id: str, request: Request):
    video = request.app.state.store.get(video_id)
    if not video:
        not_found("Video", video_id)
    return success(data=video)


@router.get("/{video_id}/status")
async def get_video_status(video_id: str, request: Request):
    """Processing status for polling clients."""
    video = request.app.state.store.get(video_id)
    if not video:
        not_found("Video", video_id)

    queue = request.app.state.queue
    return success(data={
        "videoId": video_id,
        "status": video["status"],
        "progress": video["processing_progress"],
        "error": video["processing_error"],
        "queued": queue.is_queued(video_id),
        "processing": queue.is_processing(video_id),
    })


@router.put("/{video_id}")
async def update_video(
    video_id: str,
    body: VideoUpdate,
    request: Request,
    current_user: dict = Depends(get_required_user),
):
    store = request.app.state.store
    video = store.get(video_id)
    if not video:
        not_found("Video", video_id)
    if not _can_modify(video, current_user):
        forbidden("Not allowed to modify this video")

    updated = store.update(video_id, body.model_dump(exclude_unset=True))
    request.app.state.cache.invalidate(video_id)
    return success(data=updated, message="Video updated")


@router.delete("/{video_id}")
async def delete_video(video_id: str, request: Request, current_user: dict = Depends(get_required_user)):
    """Delete a video record with its original and processed files."""
    store = request.app.state.store
    queue = request.app.state.queue

    video = store.get(video_id)
    if not video:
        not_found("Video", video_id)
    if not _can_modify(video, current_user):
        forbidden("Not allowed to delete this video")
    if queue.is_processing(video_id):
        conflict("Video is currently being processed")

    queue.cancel(video_id)
    store.delete(video_id)
    request.app.state.cache.invalidate(video_id)

    if video.get("original_path"):
        Path(video["original_path"]).unlink(missing_ok=True)
    shutil.rmtree(processed_dir_for(request.app.state.settings.processed_dir, video_id), ignore_errors=True)

    logger.info("video_deleted", video_id=video_id)
    return success(message="Video deleted")


# ============================================================
# SERVING
# ============================================================

@router.get("/{video_id}/original")
async def stream_original(video_id: str, request: Request):
    """Serve the uploaded file, honouring a single byte range."""
    video = request.app.state.cache.get(video_id)
    if not video:
        not_found("Video", video_id)

    path = Path(video.get("original_path") or "")
    if not video.get("original_path") or not path.is_file():
        not_found("Original file")

    file_size = path.stat().st_size
    media_type = video.get("mimetype") or content_type_for(path.name)
    range_header = request.headers.get("range")

    if not range_header:
        return FileResponse(path, media_type=media_type, headers={"Accept-Ranges": "bytes"})

    try:
        start, end = parse_range(range_header, file_size)
    except InvalidRangeError:
        range_not_satisfiable(file_size)

    return StreamingResponse(
        iter_file_range(path, start, end),
        status_code=206,
        media_type=media_type,
        headers={
            "Content-Range": f"bytes {start}-{end}/{file_size}",
            "Accept-Ranges": "bytes",
            "Content-Length": str(end - start + 1),
        },
    )


@router.get("/{video_id}/hls/{file_path:path}")
async def serve_hls(video_id: str, file_path: str, request: Request):
    """Serve playlists, segments and thumbnails of a processed video."""
    video = request.app.state.cache.get(video_id)
    if not video:
        not_found("Video", video_id)

    hls_root = processed_dir_for(request.app.state.settings.processed_dir, video_id) / "hls"
    path = safe_join(hls_root, file_path)
    if path is None:
        forbidden("Invalid file path")
    if not path.is_file():
        not_found("File", file_path)

    headers = {}
    cache_control = cache_control_for(path.name)
    if cache_control:
        headers["Cache-Control"] = cache_control
    return FileResponse(path, media_type=content_type_for(path.name), headers=headers)
