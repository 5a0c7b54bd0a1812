"""
Queue entry model for processing jobs that survive a restart.
"""
from sqlalchemy import Column, String, DateTime
from datetime import datetime, timezone

from ..database import Base


class QueueEntry(Base):
    __tablename__ = "queue_entries"

    video_id = Column(String(36), primary_key=True, index=True)
    input_path = Column(String(1000), nullable=False)
    enqueued_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
