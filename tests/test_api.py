"""
Tests for the video API.

Routes run through FastAPI's TestClient; the encoder is replaced so no
ffmpeg process is spawned.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from slidecast.api.videos import get_pipeline, get_upload_store, parse_byte_range, resolve_output_file
from slidecast.exceptions import NotFoundError
from slidecast.main import app
from slidecast.render.pipeline import RenderPipeline
from slidecast.services.job_ledger import JobLedger, get_job_ledger
from slidecast.services.upload_store import UploadStore

VIDEO_BYTES = bytes(range(256)) * 4


def _fake_orchestrator() -> MagicMock:
    async def _encode(graph, audio_path, output_path, total, **kwargs):
        Path(output_path).write_bytes(VIDEO_BYTES)
        return output_path

    orchestrator = MagicMock()
    orchestrator.encode = AsyncMock(side_effect=_encode)
    return orchestrator


@pytest.fixture
def ledger(settings) -> JobLedger:
    return JobLedger(settings.ledger_path)


@pytest.fixture
def client(settings, ledger):
    """TestClient wired to per-test settings, storage and a fake encoder."""
    pipeline = RenderPipeline(settings, orchestrator=_fake_orchestrator(), ledger=ledger)
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_upload_store] = lambda: UploadStore(settings)
    app.dependency_overrides[get_job_ledger] = lambda: ledger
    with patch("slidecast.api.videos.get_settings", return_value=settings):
        yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def finished_video(settings) -> str:
    output_dir = Path(settings.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / "clip.mp4").write_bytes(VIDEO_BYTES)
    return "clip.mp4"


def _upload(name: str, content: bytes = b"\xff\xd8\xff\xe0data", content_type: str = "image/jpeg"):
    return (name, content, content_type)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestEffectRoutes:
    """Test the effect catalog endpoints."""

    def test_catalog(self, client):
        response = client.get("/api/video/effects")
        assert response.status_code == 200

        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert "kenburns" in data["motions"]
        assert "fadeblack" not in data["transitions"]
        assert data["presets"]["cinematic"]["overlay"] == "light_leaks"
        assert body["meta"]["api_version"] == "1.0"

    def test_preset(self, client):
        response = client.get("/api/video/effects/preset/nature")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["type"] == "preset"
        assert data["effects"]["transition"] == "wipeleft"

    def test_unknown_preset(self, client):
        response = client.get("/api/video/effects/preset/psychedelic")
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"

    def test_effect_preview(self, client):
        response = client.get("/api/video/effects/preview/overlay/snow")
        assert response.status_code == 200
        assert response.json()["data"] == {"type": "overlay", "name": "snow", "description": "Falling snowflakes"}

    def test_effect_preview_unknown(self, client):
        assert client.get("/api/video/effects/preview/color/neon").status_code == 404


class TestGenerate:
    """Test the generation endpoints."""

    def test_missing_images(self, client, settings):
        """A request without images is rejected before anything is stored."""
        response = client.post(
            "/api/video/generate",
            files=[("voiceover", _upload("voice.mp3", b"ID3audio", "audio/mpeg"))],
        )
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "At least one image is required" in error["details"]["errors"]
        assert not Path(settings.upload_dir).exists()

    def test_two_voiceovers_rejected(self, client):
        response = client.post(
            "/api/video/generate",
            files=[
                ("images", _upload("a.jpg")),
                ("voiceover", _upload("one.mp3", b"ID3audio", "audio/mpeg")),
                ("voiceover", _upload("two.mp3", b"ID3audio", "audio/mpeg")),
            ],
        )
        assert response.status_code == 400
        assert "Too many voiceover files" in response.json()["error"]["message"]

    def test_unsupported_image(self, client):
        response = client.post(
            "/api/video/generate",
            files=[
                ("images", _upload("notes.txt", b"hello", "text/plain")),
                ("voiceover", _upload("voice.mp3", b"ID3audio", "audio/mpeg")),
            ],
        )
        assert response.status_code == 400
        assert "Unsupported image format" in response.json()["error"]["message"]

    def test_invalid_effects_rejected_before_upload(self, client, settings):
        response = client.post(
            "/api/video/generate-with-effects",
            files=[
                ("images", _upload("a.jpg")),
                ("voiceover", _upload("voice.mp3", b"ID3audio", "audio/mpeg")),
            ],
            data={"effects": '{"transition": "spin"}'},
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"]["errors"] == ["Invalid transition effect: spin"]
        assert not Path(settings.upload_dir).exists()

    def test_malformed_effects_json(self, client):
        response = client.post(
            "/api/video/generate-with-effects",
            files=[("images", _upload("a.jpg")), ("voiceover", _upload("voice.mp3", b"ID3", "audio/mpeg"))],
            data={"effects": "{not json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_generate_with_effects(self, client, ledger):
        """A full request with a preset records the job and links to the output."""
        with patch("slidecast.render.pipeline.estimate_total_async", new=AsyncMock(return_value=20.0)):
            response = client.post(
                "/api/video/generate-with-effects",
                files=[
                    ("images", _upload("first.jpg")),
                    ("images", _upload("second.png", b"\x89PNGdata", "image/png")),
                    ("voiceover", _upload("voice.mp3", b"ID3audio", "audio/mpeg")),
                ],
                data={"effects": '{"preset": "nostalgic", "transitionDuration": 0.5}'},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Video with effects generated successfully"
        data = body["data"]
        assert data["videoFile"].startswith("generated_video_")
        assert data["downloadUrl"] == f"/api/video/download/{data['videoFile']}"
        assert data["previewUrl"] == f"/api/video/preview/{data['videoFile']}"
        assert data["effects"]["color"] == "sepia"
        assert data["effects"]["transition_duration"] == 0.5
        assert data["mapping"]["settings"]["durationPerImage"] == "10.00s"

        entries = ledger.list()
        assert [e["id"] for e in entries] == [data["mapping"]["id"]]

        download = client.get(data["downloadUrl"])
        assert download.status_code == 200
        assert download.content == VIDEO_BYTES


class TestMappings:
    """Test the ledger listing endpoint."""

    def test_empty(self, client):
        response = client.get("/api/video/mappings")
        assert response.status_code == 200
        body = response.json()
        assert body["data"] == {"mappings": []}
        assert body["message"] == "No mappings found"

    def test_lists_entries(self, client, ledger):
        ledger.append({"id": "a"})
        ledger.append({"id": "b"})
        response = client.get("/api/video/mappings")
        assert [m["id"] for m in response.json()["data"]["mappings"]] == ["a", "b"]


class TestOutputRoutes:
    """Test download and ranged preview."""

    def test_download(self, client, finished_video):
        response = client.get(f"/api/video/download/{finished_video}")
        assert response.status_code == 200
        assert response.headers["content-type"] == "video/mp4"
        assert response.content == VIDEO_BYTES

    def test_download_missing(self, client, finished_video):
        response = client.get("/api/video/download/nothing.mp4")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_preview_full(self, client, finished_video):
        response = client.get(f"/api/video/preview/{finished_video}")
        assert response.status_code == 200
        assert response.headers["accept-ranges"] == "bytes"
        assert response.content == VIDEO_BYTES

    def test_preview_range(self, client, finished_video):
        response = client.get(f"/api/video/preview/{finished_video}", headers={"Range": "bytes=0-99"})
        assert response.status_code == 206
        assert response.headers["content-range"] == "bytes 0-99/1024"
        assert response.content == VIDEO_BYTES[:100]

    def test_preview_suffix_range(self, client, finished_video):
        response = client.get(f"/api/video/preview/{finished_video}", headers={"Range": "bytes=-24"})
        assert response.status_code == 206
        assert response.content == VIDEO_BYTES[-24:]

    def test_preview_unsatisfiable_range(self, client, finished_video):
        response = client.get(f"/api/video/preview/{finished_video}", headers={"Range": "bytes=2000-3000"})
        assert response.status_code == 416
        assert response.headers["content-range"] == "bytes */1024"


class TestOutputHelpers:
    """Unit tests for output path and range helpers."""

    def test_resolve_output_file(self, settings, finished_video):
        with patch("slidecast.api.videos.get_settings", return_value=settings):
            path = resolve_output_file(finished_video)
        assert Path(path).read_bytes() == VIDEO_BYTES

    @pytest.mark.parametrize("name", ["../mappings.json", "..", "", "sub/clip.mp4"])
    def test_resolve_rejects_escapes(self, settings, finished_video, name):
        Path(settings.ledger_path).write_text("[]")
        with patch("slidecast.api.videos.get_settings", return_value=settings):
            with pytest.raises(NotFoundError):
                resolve_output_file(name)

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("bytes=0-99", (0, 99)),
            ("bytes=100-", (100, 1023)),
            ("bytes=1000-5000", (1000, 1023)),
            ("bytes=-24", (1000, 1023)),
            ("BYTES=5-5", (5, 5)),
        ],
    )
    def test_parse_byte_range(self, header, expected):
        assert parse_byte_range(header, 1024) == expected

    @pytest.mark.parametrize("header", ["items=0-1", "bytes=0-1,5-6", "bytes=abc", "bytes=9-2", "bytes=-0"])
    def test_parse_byte_range_rejects(self, header):
        with pytest.raises(HTTPException) as exc_info:
            parse_byte_range(header, 1024)
        assert exc_info.value.status_code == 416
