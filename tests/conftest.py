"""
Pytest configuration and fixtures for PakStream tests.
"""
import os
import tempfile
import time
from pathlib import Path

# Keep the module-level app away from the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="pakstream-test-"))
os.environ.setdefault("EDGE_HEALTH_INTERVAL", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pakstream.auth import create_access_token
from pakstream.config import Settings
from pakstream.database import Base
from pakstream.exceptions import TranscodeError
from pakstream.limiter import limiter
from pakstream.main import create_app
from pakstream.services.edge_registry import EdgeRegistry
from pakstream.services.video_store import VideoStore
from pakstream.worker.transcoder import TranscodeResult

# Disable rate limiting for tests
limiter.enabled = False


# ============================================================
# FAKE COLLABORATORS
# ============================================================

class FakeTranscoder:
    """Writes a tiny HLS package instead of running ffmpeg."""

    def __init__(self, fail_for=(), delay=0.0, fail_all=False):
        self.fail_for = set(fail_for)
        self.fail_all = fail_all
        self.delay = delay
        self.calls = []

    def process(self, video_id, input_path, output_dir, progress):
        self.calls.append(video_id)
        if self.delay:
            time.sleep(self.delay)
        if self.fail_all or video_id in self.fail_for:
            raise TranscodeError("ffmpeg failed: corrupt input")

        hls_dir = Path(output_dir) / "hls"
        hls_dir.mkdir(parents=True, exist_ok=True)
        (hls_dir / "master.m3u8").write_text("#EXTM3U\n#EXT-X-VERSION:3\n")
        (hls_dir / f"{video_id}_360p.m3u8").write_text("#EXTM3U\n")
        (hls_dir / f"{video_id}_360p_000.ts").write_bytes(b"\x47" * 188)
        (hls_dir / f"{video_id}_thumb_1.jpg").write_bytes(b"\xff\xd8\xff")

        progress(50, "Encoded 360p")
        progress(100, "Processing completed!")
        return TranscodeResult(
            duration=12.5,
            resolution="640x360",
            file_size=4096,
            processed_files={
                "hls": {
                    "master_playlist": "master.m3u8",
                    "variants": [{"resolution": "360p", "playlist": f"{video_id}_360p.m3u8"}],
                    "segments": [f"{video_id}_360p_000.ts"],
                },
                "thumbnails": [f"{video_id}_thumb_1.jpg"],
                "poster": f"{video_id}_thumb_1.jpg",
            },
        )


class RecordingNotifier:
    """Collects published events."""

    def __init__(self):
        self.events = []

    def publish(self, event_name, payload):
        self.events.append((event_name, payload))
        return 0

    def names(self, video_id=None):
        return [name for name, payload in self.events if video_id is None or payload["videoId"] == video_id]


# ============================================================
# DATABASE
# ============================================================

@pytest.fixture(scope="function")
def session_factory(tmp_path):
    """Fresh database file for each test.

    Jobs and edge syncs reach the store from worker threads, so each thread
    gets its own connection.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)

    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return VideoStore(session_factory)


@pytest.fixture
def registry(session_factory):
    return EdgeRegistry(session_factory)


# ============================================================
# APPLICATION
# ============================================================

@pytest.fixture
def settings(tmp_path):
    return Settings(
        media_root=str(tmp_path / "media"),
        queue_mode="normal",
        queue_persistence=True,
        job_timeout_seconds=None,
        edge_health_interval=0,
        edge_sync_max_retries=1,
        edge_sync_backoff=0,
    )


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def app(settings, session_factory, transcoder):
    return create_app(settings=settings, session_factory=session_factory, transcoder=transcoder)


@pytest.fixture
def client(app):
    """Create a test client (runs startup and shutdown)."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers():
    """Auth headers for a regular user."""
    token = create_access_token({"sub": "user-1", "role": "user"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_user_headers():
    token = create_access_token({"sub": "user-2", "role": "user"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    """Auth headers for an admin."""
    token = create_access_token({"sub": "admin-1", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


def wait_for_status(client, video_id, statuses=("ready", "error"), timeout=5.0):
    """Poll the status endpoint until the video reaches one of ``statuses``."""
    deadline = time.time() + timeout
    data = None
    while time.time() < deadline:
        data = client.get(f"/api/videos/{video_id}/status").json()["data"]
        if data["status"] in statuses and not data["processing"]:
            return data
        time.sleep(0.02)
    raise AssertionError(f"Video {video_id} did not reach {statuses}: {data}")
