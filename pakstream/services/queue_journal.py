"""
Write-ahead journal for the processing queue.

One row per queued or running job; removed when the job reaches a terminal
state or is cancelled. On startup the queue replays whatever is left.
"""
from datetime import datetime
from typing import Callable, List, Tuple

from sqlalchemy.orm import Session

from ..models.queue_entry import QueueEntry


class QueueJournal:

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(self, video_id: str, input_path: str, enqueued_at: datetime) -> None:
        with self._session_factory() as db:
            entry = db.get(QueueEntry, video_id)
            if entry is None:
                db.add(QueueEntry(video_id=video_id, input_path=input_path, enqueued_at=enqueued_at))
            else:
                entry.input_path = input_path
                entry.enqueued_at = enqueued_at
            db.commit()

    def remove(self, video_id: str) -> None:
        with self._session_factory() as db:
            db.query(QueueEntry).filter(QueueEntry.video_id == video_id).delete()
            db.commit()

    def remove_many(self, video_ids: List[str]) -> None:
        if not video_ids:
            return
        with self._session_factory() as db:
            db.query(QueueEntry).filter(QueueEntry.video_id.in_(video_ids)).delete(synchronize_session=False)
            db.commit()

    def entries(self) -> List[Tuple[str, str]]:
        """(video_id, input_path) pairs in enqueue order."""
        with self._session_factory() as db:
            rows = db.query(QueueEntry).order_by(QueueEntry.enqueued_at.asc()).all()
            return [(row.video_id, row.input_path) for row in rows]
