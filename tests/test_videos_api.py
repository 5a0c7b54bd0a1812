"""
Tests for video upload, queue control and serving endpoints.
"""
import pytest

from conftest import wait_for_status


def upload(client, headers, filename="clip.mp4", content=b"\x00" * 2048, mimetype="video/mp4", title="My clip"):
    return client.post(
        "/api/videos/upload",
        headers=headers,
        files={"video": (filename, content, mimetype)},
        data={"title": title, "description": "test upload"},
    )


@pytest.fixture
def original(app, tmp_path):
    """A 1000-byte original file with a record pointing at it."""
    data = bytes(i % 256 for i in range(1000))
    path = tmp_path / "original.mp4"
    path.write_bytes(data)
    video = app.state.store.create(
        title="Seekable",
        uploaded_by="user-1",
        original_path=str(path),
        original_size=len(data),
        mimetype="video/mp4",
    )
    return video["id"], data


@pytest.fixture
def ready_video(app, settings):
    """A ready video with an HLS package on disk."""
    store = app.state.store
    video_id = store.create(title="Ready", uploaded_by="user-1")["id"]
    hls = settings.processed_dir / video_id / "hls"
    (hls / "720p").mkdir(parents=True)
    (hls / "master.m3u8").write_text("#EXTM3U\n")
    (hls / "720p" / "segment_000.ts").write_bytes(b"\x47" * 188)
    (hls / "thumb.jpg").write_bytes(b"\xff\xd8\xff")
    (hls / "poster.png").write_bytes(b"\x89PNG")
    store.mark_ready(video_id, duration=1.0, resolution="1280x720", file_size=188, processed_files={})
    return video_id


class TestUpload:
    """Upload and processing through the queue."""

    def test_upload_is_processed(self, client, auth_headers, transcoder, settings):
        response = upload(client, auth_headers)
        assert response.status_code == 201
        data = response.json()["data"]
        video = data["video"]
        assert video["status"] == "uploading"
        assert video["uploaded_by"] == "user-1"
        assert video["original_size"] == 2048
        assert data["queue"]["max_concurrent"] == 2

        status = wait_for_status(client, video["id"])
        assert status["status"] == "ready"
        assert status["progress"] == 100
        assert transcoder.calls == [video["id"]]

        stored = client.get(f"/api/videos/{video['id']}").json()["data"]
        assert stored["resolution"] == "640x360"
        assert stored["processed_files"]["poster"] == f"{video['id']}_thumb_1.jpg"

        playlist = client.get(f"/api/videos/{video['id']}/hls/master.m3u8")
        assert playlist.status_code == 200
        assert playlist.headers["content-type"] == "application/vnd.apple.mpegurl"

    def test_failed_processing_reports_error(self, client, auth_headers, transcoder):
        transcoder.fail_all = True
        response = upload(client, auth_headers)
        video_id = response.json()["data"]["video"]["id"]

        status = wait_for_status(client, video_id)
        assert status["status"] == "error"
        assert "corrupt input" in status["error"]

    def test_upload_requires_auth(self, client):
        response = upload(client, {})
        assert response.status_code == 401

    def test_upload_rejects_non_video(self, client, auth_headers):
        response = upload(client, auth_headers, filename="notes.txt", mimetype="text/plain")
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_FILE"

    def test_upload_accepts_extension_with_generic_mime(self, client, auth_headers):
        response = upload(client, auth_headers, filename="clip.mkv", mimetype="application/x-unknown")
        assert response.status_code == 201

    def test_upload_too_large(self, client, auth_headers, app):
        app.state.settings.max_upload_size = 1024
        response = upload(client, auth_headers, content=b"\x00" * 4096)
        assert response.status_code in (400, 413)


class TestQueueEndpoints:
    def test_queue_status(self, client, auth_headers):
        response = client.get("/api/videos/queue/status", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["pending"] == 0
        assert data["active_jobs"] == 0
        assert data["max_concurrent"] == 2

    def test_clear_requires_admin(self, client, auth_headers, admin_headers):
        assert client.delete("/api/videos/queue", headers=auth_headers).status_code == 403
        response = client.delete("/api/videos/queue", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["data"]["removed"] == 0

    def test_cancel_unknown_job(self, client, admin_headers):
        response = client.delete("/api/videos/queue/nope", headers=admin_headers)
        assert response.status_code == 404


class TestRecords:
    def test_get_missing_video(self, client):
        response = client.get("/api/videos/missing")
        assert response.status_code == 404
        assert response.json()["ok"] is False

    def test_update_invalidates_cache(self, client, app, ready_video, auth_headers):
        assert client.get(f"/api/videos/{ready_video}/hls/master.m3u8").status_code == 200
        assert app.state.cache.get(ready_video)["title"] == "Ready"

        response = client.put(f"/api/videos/{ready_video}", headers=auth_headers, json={"title": "Renamed"})
        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Renamed"
        assert app.state.cache.get(ready_video)["title"] == "Renamed"

    def test_update_by_other_user_forbidden(self, client, ready_video, other_user_headers, admin_headers):
        response = client.put(f"/api/videos/{ready_video}", headers=other_user_headers, json={"title": "Mine"})
        assert response.status_code == 403

        response = client.put(f"/api/videos/{ready_video}", headers=admin_headers, json={"title": "Moderated"})
        assert response.status_code == 200

    def test_delete_removes_record_and_files(self, client, app, settings, ready_video, auth_headers):
        client.get(f"/api/videos/{ready_video}/hls/master.m3u8")

        response = client.delete(f"/api/videos/{ready_video}", headers=auth_headers)
        assert response.status_code == 200
        assert not (settings.processed_dir / ready_video).exists()
        assert client.get(f"/api/videos/{ready_video}/hls/master.m3u8").status_code == 404
        assert client.get(f"/api/videos/{ready_video}").status_code == 404


class TestOriginalRange:
    """Byte-range serving of originals."""

    def test_range_returns_partial_content(self, client, original):
        video_id, data = original
        response = client.get(f"/api/videos/{video_id}/original", headers={"Range": "bytes=100-199"})

        assert response.status_code == 206
        assert response.headers["content-range"] == "bytes 100-199/1000"
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["content-length"] == "100"
        assert response.content == data[100:200]

    def test_open_ended_range(self, client, original):
        video_id, data = original
        response = client.get(f"/api/videos/{video_id}/original", headers={"Range": "bytes=900-"})

        assert response.status_code == 206
        assert response.headers["content-range"] == "bytes 900-999/1000"
        assert response.content == data[900:]

    def test_suffix_range(self, client, original):
        video_id, data = original
        response = client.get(f"/api/videos/{video_id}/original", headers={"Range": "bytes=-10"})

        assert response.status_code == 206
        assert response.content == data[-10:]

    def test_unsatisfiable_range(self, client, original):
        video_id, _ = original
        response = client.get(f"/api/videos/{video_id}/original", headers={"Range": "bytes=2000-3000"})

        assert response.status_code == 416
        assert response.headers["content-range"] == "bytes */1000"

    def test_full_file_without_range(self, client, original):
        video_id, data = original
        response = client.get(f"/api/videos/{video_id}/original")

        assert response.status_code == 200
        assert response.content == data
        assert response.headers["content-type"] == "video/mp4"


class TestHlsServing:
    def test_content_types_and_cache_control(self, client, ready_video):
        base = f"/api/videos/{ready_video}/hls"

        playlist = client.get(f"{base}/master.m3u8")
        assert playlist.headers["content-type"] == "application/vnd.apple.mpegurl"
        assert playlist.headers["cache-control"] == "no-cache"

        segment = client.get(f"{base}/720p/segment_000.ts")
        assert segment.status_code == 200
        assert segment.headers["content-type"] == "video/mp2t"
        assert "immutable" in segment.headers["cache-control"]

        assert client.get(f"{base}/thumb.jpg").headers["content-type"] == "image/jpeg"
        assert client.get(f"{base}/poster.png").headers["content-type"] == "image/png"

    def test_missing_file(self, client, ready_video):
        assert client.get(f"/api/videos/{ready_video}/hls/nope.ts").status_code == 404

    def test_unknown_video(self, client):
        assert client.get("/api/videos/unknown/hls/master.m3u8").status_code == 404

    def test_segment_requests_use_cache(self, client, app, ready_video):
        store = app.state.store
        client.get(f"/api/videos/{ready_video}/hls/master.m3u8")
        reads = store.reads

        for _ in range(5):
            client.get(f"/api/videos/{ready_video}/hls/720p/segment_000.ts")

        assert store.reads == reads
