"""
Tests for the HTTP API.

Drives the FastAPI application end to end against a temporary store.
"""

import os
import shutil
import tempfile
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from skill_tracker.api.app import create_app
from skill_tracker.config.loader import DatabaseConfig, TrackerConfig, TrackingConfig
from skill_tracker.core.hashing import hash_user_id
from skill_tracker.storage.repository import fetch_recent_usage_events


@pytest.fixture
def db_path():
    temp_dir = tempfile.mkdtemp()
    yield os.path.join(temp_dir, "test.db")
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def client(db_path):
    """Create a test client; entering it runs startup, which creates the schema."""
    config = TrackerConfig(
        database=DatabaseConfig(path=db_path),
        tracking=TrackingConfig(default_category="cms_ontology"),
    )
    with TestClient(create_app(config)) as test_client:
        yield test_client


def _track(client, headers=None, **body):
    payload = {"tool_name": "query_data", "status": "success", "duration_ms": 100}
    payload.update(body)
    return client.post("/api/track", json=payload, headers=headers or {})


class TestTrackEndpoint:
    """Test POST /api/track."""

    def test_track_success(self, client, db_path):
        response = _track(client)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Event tracked"}

        events = fetch_recent_usage_events(db_path=db_path)
        assert len(events) == 1
        assert events[0].tool_name == "query_data"
        assert events[0].tool_category == "cms_ontology"

    def test_session_header_identifies_caller(self, client, db_path):
        _track(client, headers={"mcp-session-id": "sess-42", "Authorization": "Bearer k"})

        stored = fetch_recent_usage_events(db_path=db_path)[0]
        assert stored.user_id_hash == hash_user_id("sess-42")

    def test_authorization_identifies_caller(self, client, db_path):
        _track(client, headers={"Authorization": "Bearer k"})

        stored = fetch_recent_usage_events(db_path=db_path)[0]
        assert stored.user_id_hash == hash_user_id("Bearer k")

    def test_ip_and_user_agent_identify_caller(self, client, db_path):
        _track(client, headers={"cf-connecting-ip": "203.0.113.5", "user-agent": "skills/1.0"})

        stored = fetch_recent_usage_events(db_path=db_path)[0]
        assert stored.user_id_hash == hash_user_id("203.0.113.5_skills/1.0")

    def test_missing_tool_name_rejected(self, client, db_path):
        response = client.post("/api/track", json={"status": "success"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "tool_name" in body["error"]
        assert fetch_recent_usage_events(db_path=db_path) == []

    def test_invalid_status_rejected(self, client):
        response = _track(client, status="maybe")

        assert response.status_code == 400
        assert "status must be one of" in response.json()["error"]

    def test_malformed_json_rejected(self, client):
        response = client.post(
            "/api/track",
            content=b"{not json",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_persistence_failure_reported(self, client):
        with patch("skill_tracker.core.ingest.insert_usage_event", side_effect=RuntimeError("database is locked")):
            response = _track(client)

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "database is locked"}

    def test_cors_preflight(self, client):
        response = client.options(
            "/api/track",
            headers={
                "Origin": "https://dashboard.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            }
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"


class TestAnalyticsEndpoints:
    """Test the read-only aggregation endpoints."""

    def test_summary_empty(self, client):
        response = client.get("/analytics/summary?days=7")

        assert response.status_code == 200
        body = response.json()
        assert body["total_invocations"] == 0
        assert body["success_rate"] == "0.00"
        assert body["error_rate"] == "0.00"

    def test_summary_default_window(self, client):
        assert client.get("/analytics/summary").json()["period"] == "7 days"

    def test_summary_after_tracking(self, client):
        _track(client, headers={"mcp-session-id": "a"})
        _track(client, headers={"mcp-session-id": "b"}, status="error", error_type="E")

        body = client.get("/analytics/summary").json()
        assert body["total_invocations"] == 2
        assert body["unique_users"] == 2
        assert body["success_rate"] == "50.00"
        assert body["error_rate"] == "50.00"

    def test_tools_ordering(self, client):
        for _ in range(2):
            _track(client, tool_name="A")
        for _ in range(3):
            _track(client, tool_name="B")
        _track(client, tool_name="C")

        body = client.get("/analytics/tools?days=7").json()
        assert [row["tool_name"] for row in body] == ["B", "A", "C"]
        assert body[0]["invocations"] == 3

    def test_retention(self, client):
        _track(client, headers={"mcp-session-id": "u1"})
        _track(client, headers={"mcp-session-id": "u2"})
        _track(client, headers={"mcp-session-id": "u1"})

        body = client.get("/analytics/retention").json()
        assert body["period"] == "30 days"
        assert body["weekly_active_users"] == 2
        assert len(body["daily_active_users"]) == 1
        assert body["daily_active_users"][0]["dau"] == 2

    def test_errors_limit(self, client):
        for message in ["one", "two", "three"]:
            _track(client, status="error", error_type="ValueError", error_message=message)

        body = client.get("/analytics/errors?days=7&limit=2").json()
        assert body["count"] == 2
        assert len(body["errors"]) == 2
        assert body["errors"][0]["error_type"] == "ValueError"

    def test_invalid_days_rejected(self, client):
        assert client.get("/analytics/summary?days=0").status_code == 422
        assert client.get("/analytics/errors?limit=abc").status_code == 422

    def test_very_long_window_covers_everything(self, client):
        _track(client)

        response = client.get("/analytics/summary?days=1000000")

        assert response.status_code == 200
        assert response.json()["total_invocations"] == 1
        assert client.get("/analytics/errors?days=1000000").status_code == 200
