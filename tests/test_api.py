"""Tests for the FastAPI surface."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from revamp.errors import AuditTimeoutError, BuildError, NavigationError
from revamp.main import app
from revamp.models import AuditResult, PipelineOutcome, PipelineStage


class FakePipeline:
    error = None

    def __init__(self, on_progress=None, **kwargs):
        self.on_progress = on_progress

    async def run(self, url):
        if self.on_progress:
            self.on_progress(PipelineStage.CAPTURING, f"Capturing {url}")
            self.on_progress(PipelineStage.AUDITING_BEFORE, "Auditing captured site")
        if self.error:
            raise self.error
        return PipelineOutcome(before=61, after=97)


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture(autouse=True)
def reset_fake():
    FakePipeline.error = None
    yield
    FakePipeline.error = None


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_pipeline_success(client):
    with patch("revamp.main.AccessibilityPipeline", FakePipeline):
        response = client.post("/api/pipeline", json={"url": "https://example.com"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert (body["before"], body["after"], body["improvement"]) == (61, 97, 36)
    assert body["metadata"]["source_url"] == "https://example.com/"


@pytest.mark.parametrize(
    "error, status",
    [
        (NavigationError("unreachable"), 502),
        (BuildError("npm run build failed", returncode=1), 502),
        (AuditTimeoutError("never idle"), 504),
    ],
)
def test_pipeline_failure_maps_to_status(client, error, status):
    FakePipeline.error = error
    with patch("revamp.main.AccessibilityPipeline", FakePipeline):
        response = client.post("/api/pipeline", json={"url": "https://example.com"})

    assert response.status_code == status
    body = response.json()
    assert body["success"] is False
    assert body["error_type"] == type(error).__name__
    assert body["error"] == str(error)
    assert "before" not in body


def test_pipeline_rejects_invalid_url(client):
    response = client.post("/api/pipeline", json={"url": "not a url"})
    assert response.status_code == 422


def test_unexpected_error_is_generic(client):
    FakePipeline.error = RuntimeError("secret internals")
    with patch("revamp.main.AccessibilityPipeline", FakePipeline):
        response = TestClient(app, raise_server_exceptions=False).post(
            "/api/pipeline", json={"url": "https://example.com"}
        )

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"


def test_audit_endpoint(client):
    runner = MagicMock()
    runner.audit = AsyncMock(return_value=AuditResult(
        violations=[{"id": "image-alt", "impact": "critical"}] + [{"id": f"r{i}"} for i in range(6)],
    ))
    with patch("revamp.main.BrowserAuditRunner", return_value=runner):
        response = client.post("/api/audit", json={"url": "https://example.com"})

    assert response.status_code == 200
    body = response.json()
    assert body["score"] == 93
    assert body["summary"]["violations"] == 7
    runner.audit.assert_awaited_once_with("https://example.com/")


def _events(text):
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


def test_stream_success(client):
    with patch("revamp.main.AccessibilityPipeline", FakePipeline):
        response = client.get("/api/pipeline/stream", params={"url": "https://example.com"})

    events = _events(response.text)
    assert [e["status"] for e in events] == ["capturing", "auditing_before", "complete"]
    assert events[-1]["before"] == 61
    assert events[-1]["after"] == 97


def test_stream_error(client):
    FakePipeline.error = NavigationError("unreachable")
    with patch("revamp.main.AccessibilityPipeline", FakePipeline):
        response = client.get("/api/pipeline/stream", params={"url": "https://example.com"})

    events = _events(response.text)
    assert events[-1]["status"] == "error"
    assert events[-1]["error_type"] == "NavigationError"
    assert all(e["status"] != "complete" for e in events)


def test_stream_rejects_invalid_url(client):
    with patch("revamp.main.AccessibilityPipeline", FakePipeline):
        response = client.get("/api/pipeline/stream", params={"url": "not-a-url"})

    assert response.status_code == 422


class SlowPipeline(FakePipeline):
    urls = []

    async def run(self, url):
        self.urls.append(url)
        self.on_progress(PipelineStage.CAPTURING, "Capturing")
        await asyncio.sleep(0.05)
        self.on_progress(PipelineStage.GENERATING, "Generating")
        await asyncio.sleep(0.05)
        return PipelineOutcome(before=10, after=80)


def test_stream_delivers_events_until_run_finishes(client):
    with patch("revamp.main.AccessibilityPipeline", SlowPipeline):
        response = client.get("/api/pipeline/stream", params={"url": "https://example.com"})

    events = _events(response.text)
    assert [e["status"] for e in events] == ["capturing", "generating", "complete"]
    assert SlowPipeline.urls == ["https://example.com/"]
