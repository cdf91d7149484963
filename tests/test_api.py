"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from appointment_agent.scheduling.sync import SyncReport
from appointment_agent.server import app
from appointment_agent.services.calendar_client import CalendarAPIError


@pytest.fixture
def mock_conversations():
    """Mock ConversationService attached to app state (mirrors the lifespan)."""
    conversations = MagicMock()
    conversations.handle_turn.return_value = "Hi! I'm the scheduling assistant. How can I help?"
    app.state.conversations = conversations
    yield conversations
    app.state.conversations = None


@pytest.fixture
def mock_reconciler():
    reconciler = MagicMock()
    reconciler.is_running = False
    reconciler.run_once.return_value = SyncReport(fetched=4, synced=3)
    app.state.reconciler = reconciler
    yield reconciler
    app.state.reconciler = None


@pytest.fixture
def client(mock_conversations, mock_reconciler):
    """FastAPI test client with mocked services wired up."""
    return TestClient(app)


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "appointment-agent"


class TestChatEndpoint:
    def test_chat_returns_response(self, client):
        response = client.post("/api/chat", json={"phone": "5513999998888", "message": "Oi"})
        assert response.status_code == 200
        data = response.json()
        assert data["phone"] == "5513999998888"
        assert "scheduling assistant" in data["reply"]

    def test_chat_normalises_phone(self, client, mock_conversations):
        response = client.post("/api/chat", json={"phone": "+55 (13) 99999-8888", "message": "Oi"})
        assert response.json()["phone"] == "5513999998888"
        mock_conversations.handle_turn.assert_called_once_with("5513999998888", "Oi")

    def test_chat_validates_empty_message(self, client):
        response = client.post("/api/chat", json={"phone": "5513999998888", "message": ""})
        assert response.status_code == 422

    def test_chat_validates_missing_phone(self, client):
        response = client.post("/api/chat", json={"message": "Oi"})
        assert response.status_code == 422

    def test_chat_rejects_phone_without_digits(self, client, mock_conversations):
        response = client.post("/api/chat", json={"phone": "no-digits", "message": "Oi"})
        assert response.status_code == 422
        mock_conversations.handle_turn.assert_not_called()

    def test_chat_handles_service_error(self, client, mock_conversations):
        mock_conversations.handle_turn.side_effect = RuntimeError("sqlite exploded")
        response = client.post("/api/chat", json={"phone": "5513999998888", "message": "Oi"})
        assert response.status_code == 500
        detail = response.json()["detail"]
        assert "sqlite exploded" not in detail
        assert "internal error" in detail.lower()

    def test_response_includes_request_id_header(self, client):
        response = client.post("/api/chat", json={"phone": "5513999998888", "message": "Oi"})
        assert "X-Request-ID" in response.headers

    def test_client_supplied_request_id_is_echoed(self, client):
        response = client.post(
            "/api/chat",
            json={"phone": "5513999998888", "message": "Oi"},
            headers={"X-Request-ID": "my-trace-id-123"},
        )
        assert response.headers["X-Request-ID"] == "my-trace-id-123"


class TestSyncEndpoint:
    def test_sync_returns_report(self, client):
        response = client.post("/api/sync")
        assert response.status_code == 200
        assert response.json() == {"fetched": 4, "synced": 3}

    def test_sync_conflict_when_running(self, client, mock_reconciler):
        mock_reconciler.is_running = True
        response = client.post("/api/sync")
        assert response.status_code == 409
        mock_reconciler.run_once.assert_not_called()

    def test_sync_conflict_when_run_is_skipped(self, client, mock_reconciler):
        mock_reconciler.run_once.return_value = None
        assert client.post("/api/sync").status_code == 409

    def test_sync_calendar_failure(self, client, mock_reconciler):
        mock_reconciler.run_once.side_effect = CalendarAPIError("down", status_code=503)
        response = client.post("/api/sync")
        assert response.status_code == 502


class TestAgentNotReady:
    def test_returns_503_when_service_not_initialised(self):
        app.state.conversations = None
        response = TestClient(app).post("/api/chat", json={"phone": "5513999998888", "message": "Oi"})
        assert response.status_code == 503
        assert "starting up" in response.json()["detail"].lower()


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "Appointment Scheduling Agent"
        assert "docs" in data
