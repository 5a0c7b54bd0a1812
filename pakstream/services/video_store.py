"""
Video record store.

Thin persistence layer over the ``videos`` table used by the processing
queue, the edge receiver and the serving routes. Every call opens its own
short-lived session so the store can be shared by background tasks that
outlive a request.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..models.video import Video

# Columns an edge receiver accepts from a replicated snapshot
SNAPSHOT_FIELDS = [
    "title",
    "description",
    "uploaded_by",
    "original_filename",
    "original_path",
    "original_size",
    "mimetype",
    "status",
    "processing_progress",
    "duration",
    "resolution",
    "file_size",
    "processed_files",
]

# Columns the owner may edit through the API
EDITABLE_FIELDS = ["title", "description"]


class VideoStore:
    """Read/write access to video records."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory
        self.reads = 0

    def create(self, title: str, description: str = "", **fields) -> Dict[str, Any]:
        with self._session_factory() as db:
            video = Video(title=title, description=description, status="uploading", **fields)
            db.add(video)
            db.commit()
            db.refresh(video)
            return video.to_dict()

    def create_from_snapshot(self, video_id: str, snapshot: Dict[str, Any]) -> bool:
        """Create a replicated record. Returns False if the id already exists."""
        with self._session_factory() as db:
            if db.get(Video, video_id) is not None:
                return False
            fields = {k: snapshot[k] for k in SNAPSHOT_FIELDS if k in snapshot}
            fields.setdefault("title", video_id)
            db.add(Video(id=video_id, **fields))
            db.commit()
            return True

    def get(self, video_id: str) -> Optional[Dict[str, Any]]:
        self.reads += 1
        with self._session_factory() as db:
            video = db.get(Video, video_id)
            return video.to_dict() if video else None

    def exists(self, video_id: str) -> bool:
        with self._session_factory() as db:
            return db.get(Video, video_id) is not None

    def mark_processing(self, video_id: str) -> bool:
        with self._session_factory() as db:
            video = db.get(Video, video_id)
            if not video:
                return False
            video.status = "processing"
            video.processing_progress = 0
            video.processing_error = None
            db.commit()
            return True

    def update_progress(self, video_id: str, progress: int) -> bool:
        """Raise the stored progress of a processing record. Lower values are ignored."""
        progress = max(0, min(100, int(progress)))
        with self._session_factory() as db:
            video = db.get(Video, video_id)
            if not video or video.status != "processing":
                return False
            if progress <= (video.processing_progress or 0):
                return False
            video.processing_progress = progress
            db.commit()
            return True

    def mark_ready(
        self,
        video_id: str,
        duration: Optional[float],
        resolution: Optional[str],
        file_size: Optional[int],
        processed_files: Dict[str, Any],
    ) -> bool:
        # Single commit: readers never see a ready record without its outputs
        with self._session_factory() as db:
            video = db.get(Video, video_id)
            if not video:
                return False
            video.status = "ready"
            video.processing_progress = 100
            video.duration = duration
            video.resolution = resolution
            video.file_size = file_size
            video.processed_files = processed_files
            video.processing_error = None
            db.commit()
            return True

    def mark_error(self, video_id: str, message: str) -> bool:
        with self._session_factory() as db:
            video = db.get(Video, video_id)
            if not video:
                return False
            video.status = "error"
            video.processing_error = message
            db.commit()
            return True

    def update(self, video_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._session_factory() as db:
            video = db.get(Video, video_id)
            if not video:
                return None
            for key in EDITABLE_FIELDS:
                if fields.get(key) is not None:
                    setattr(video, key, fields[key])
            video.updated_at = datetime.now(timezone.utc)
            db.commit()
            db.refresh(video)
            return video.to_dict()

    def delete(self, video_id: str) -> Optional[Dict[str, Any]]:
        """Delete a record and return its last snapshot."""
        with self._session_factory() as db:
            video = db.get(Video, video_id)
            if not video:
                return None
            snapshot = video.to_dict()
            db.delete(video)
            db.commit()
            return snapshot
