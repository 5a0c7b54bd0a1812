"""
Video record model for uploaded and processed videos.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Float, BigInteger
from datetime import datetime, timezone
import uuid

from ..database import Base


class Video(Base):
    __tablename__ = "videos"

    # Processing lifecycle
    STATUSES = ["uploading", "processing", "ready", "error", "failed"]
    TERMINAL_STATUSES = ["ready", "failed"]

    id = Column(String(36), primary_key=True, index=True, default=lambda: uuid.uuid4().hex)
    title = Column(String(200), nullable=False)
    description = Column(Text, default="")
    uploaded_by = Column(String(50), nullable=True, index=True)  # Subject of the uploader's token
    original_filename = Column(String(255), nullable=True)
    original_path = Column(String(1000), nullable=True)
    original_size = Column(BigInteger, default=0)
    mimetype = Column(String(100), nullable=True)
    status = Column(String(20), default="uploading", index=True)
    processing_progress = Column(Integer, default=0)  # 0-100
    processing_error = Column(Text, nullable=True)
    duration = Column(Float, nullable=True)
    resolution = Column(String(20), nullable=True)
    file_size = Column(BigInteger, nullable=True)
    processed_files = Column(JSON, nullable=True)  # hls manifest/variants/segments, thumbnails, poster
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        """Convert to dictionary for API responses and edge replication"""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "uploaded_by": self.uploaded_by,
            "original_filename": self.original_filename,
            "original_path": self.original_path,
            "original_size": self.original_size,
            "mimetype": self.mimetype,
            "status": self.status,
            "processing_progress": self.processing_progress,
            "processing_error": self.processing_error,
            "duration": self.duration,
            "resolution": self.resolution,
            "file_size": self.file_size,
            "processed_files": self.processed_files,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
