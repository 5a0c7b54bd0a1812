"""
Application configuration using environment variables.
"""
import os
import secrets
from functools import lru_cache
from pathlib import Path
from pydantic_settings import BaseSettings
from typing import List, Optional

# Concurrent transcode ceilings per queue mode
QUEUE_MODE_LIMITS = {
    "light": 1,
    "normal": 2,
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "PakStream Media Core"
    debug: bool = False
    environment: str = "development"

    # Security (tokens are issued by the auth service, verified here)
    secret_key: str = os.getenv("SECRET_KEY", secrets.token_urlsafe(32))
    algorithm: str = "HS256"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./pakstream.db")

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Storage
    media_root: str = "./uploads"
    max_upload_size: int = 2 * 1024 * 1024 * 1024  # 2GB

    # Processing queue
    queue_mode: str = "normal"  # light, normal
    queue_max_concurrent: Optional[int] = None
    queue_persistence: bool = True
    job_timeout_seconds: Optional[float] = 3600

    # Metadata cache
    cache_ttl_seconds: float = 300  # 5 minutes
    cache_max_entries: int = 10000

    # Edge servers
    edge_metadata_timeout: float = 10
    edge_upload_timeout: float = 300
    edge_health_timeout: float = 5
    edge_sync_max_retries: int = 3
    edge_sync_backoff: float = 2
    edge_health_interval: float = 60  # 0 disables the monitor
    edge_upload_batch_size: int = 500  # artifact parts per outbound request
    edge_receive_max_files: int = 5000  # multipart parts accepted per inbound request

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def max_concurrent_jobs(self) -> int:
        """Effective transcode ceiling: explicit value wins over the mode default."""
        if self.queue_max_concurrent:
            return self.queue_max_concurrent
        return QUEUE_MODE_LIMITS.get(self.queue_mode, QUEUE_MODE_LIMITS["normal"])

    @property
    def original_dir(self) -> Path:
        return Path(self.media_root) / "videos" / "original"

    @property
    def processed_dir(self) -> Path:
        return Path(self.media_root) / "videos" / "processed"

    @property
    def temp_dir(self) -> Path:
        return Path(self.media_root) / "videos" / "temp"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
