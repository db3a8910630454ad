"""
HTTP API Tests
==============
"""
import base64

import pytest
from fastapi.testclient import TestClient

from api import main
from design_extractor.config import Config
from design_extractor.errors import ApiError, ErrorCode, NetworkError, ProcessingError
from design_extractor.processor import ImageProcessor

from conftest import FakeRemovalService, solid_png


@pytest.fixture
def service():
    return FakeRemovalService()


@pytest.fixture
def client(monkeypatch, service):
    processor = ImageProcessor(service=service, config=Config())
    monkeypatch.setattr(main, "processor", processor)
    return TestClient(main.app)


def upload(content=None, name="tee.png", content_type="image/png"):
    content = content if content is not None else solid_png(64, 48)
    return {"file": (name, content, content_type)}


class TestHealth:

    def test_health(self, client, service):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service_available"] is True
        assert data["in_flight"] == 0

    def test_health_service_down(self, client, service):
        service.available = False
        assert client.get("/health").json()["service_available"] is False


class TestExtract:

    def test_upload_returns_data_urls(self, client, service):
        response = client.post("/api/v1/extract/upload", files=upload())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert (data["width"], data["height"]) == (40, 30)
        assert data["from_cache"] is False
        assert data["filename"].startswith("extracted-design-")
        prefix = "data:image/png;base64,"
        assert data["extracted"].startswith(prefix)
        assert base64.b64decode(data["extracted"][len(prefix):]) == service.result

    def test_repeat_upload_hits_cache(self, client, service):
        content = solid_png(64, 48)
        client.post("/api/v1/extract/upload", files=upload(content))
        response = client.post("/api/v1/extract/upload", files=upload(content))
        assert response.json()["from_cache"] is True
        assert len(service.calls) == 1

    def test_download_streams_png(self, client, service):
        response = client.post("/api/v1/extract/download", files=upload())

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        disposition = response.headers["content-disposition"]
        assert disposition.startswith("attachment; filename=extracted-design-")
        assert disposition.endswith(".png")
        assert response.content == service.result

    def test_invalid_type_rejected(self, client, service):
        response = client.post("/api/v1/extract/upload", files=upload(b"GIF89a", "tee.gif", "image/gif"))

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["category"] == "UPLOAD_ERROR"
        assert error["code"] == "INVALID_TYPE"
        assert service.calls == []

    @pytest.mark.parametrize("error,status", [
        (ApiError(ErrorCode.API_BAD_REQUEST), 422),
        (ApiError(ErrorCode.API_KEY_INVALID), 502),
        (ApiError(ErrorCode.API_QUOTA_EXCEEDED), 429),
        (ApiError(ErrorCode.API_SERVICE_UNAVAILABLE, retryable=True), 503),
        (NetworkError(ErrorCode.NETWORK_TIMEOUT), 504),
        (ProcessingError(ErrorCode.CANVAS_ERROR), 500),
    ])
    def test_error_status_mapping(self, client, service, error, status):
        service.errors = [error]
        response = client.post("/api/v1/extract/upload", files=upload())
        assert response.status_code == status
        assert response.json()["error"]["code"] == error.code.value


class TestCache:

    def test_stats_and_clear(self, client):
        client.post("/api/v1/extract/upload", files=upload())

        stats = client.get("/api/v1/cache/stats").json()
        assert stats["size"] == 1
        assert stats["max_size"] == 10

        assert client.delete("/api/v1/cache").json() == {"cleared": True}
        assert client.get("/api/v1/cache/stats").json()["size"] == 0
