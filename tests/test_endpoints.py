"""Tests for API endpoints."""

import pytest
from fastapi.testclient import TestClient

from sandcoder import __version__
from sandcoder.api.endpoints import get_chat_service
from sandcoder.errors import ProviderError
from sandcoder.main import app
from sandcoder.services.chat import ChatService
from sandcoder.services.conversation_store import ConversationStore
from sandcoder.services.tool_loop import ToolExecutionLoop
from sandcoder.services.usage import UsageLog
from tests.fakes import anthropic_text, anthropic_tool_use, make_anthropic_adapter


@pytest.fixture
def responses():
    """Scripted provider responses; tests append before calling the API."""
    return []


@pytest.fixture
def service(settings, registry, responses):
    adapter, _ = make_anthropic_adapter(responses)
    return ChatService(
        settings,
        ConversationStore(settings),
        ToolExecutionLoop(adapter, registry),
        UsageLog(settings.usage_log_path),
    )


@pytest.fixture
def client(service):
    app.dependency_overrides[get_chat_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_200(self, client):
        """Test that health check returns 200 status."""
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_check_response_structure(self, client):
        """Test that health check returns expected JSON structure."""
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert "timestamp" in data

    def test_health_check_content_type(self, client):
        """Test that health check returns JSON content type."""
        response = client.get("/health")
        assert response.headers["content-type"] == "application/json"


class TestCors:
    """Tests for cross-origin access from local editors."""

    @pytest.mark.parametrize("origin", ["http://localhost:5173", "http://127.0.0.1:8080", "http://localhost"])
    def test_local_origins_allowed(self, client, origin):
        """Test that localhost origins on any port get CORS headers."""
        response = client.get("/health", headers={"Origin": origin})
        assert response.headers["access-control-allow-origin"] == origin

    def test_preflight_from_editor_port(self, client):
        """Test that a preflight request from a dev server port succeeds."""
        response = client.options(
            "/health",
            headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"

    @pytest.mark.parametrize("origin", ["http://evil.example", "http://localhost.evil.example:80"])
    def test_remote_origins_rejected(self, client, origin):
        """Test that non-local origins get no CORS header."""
        response = client.get("/health", headers={"Origin": origin})
        assert "access-control-allow-origin" not in response.headers


class TestConversationEndpoints:
    """Tests for conversation CRUD."""

    def test_create_conversation(self, client):
        """Test creating a conversation."""
        response = client.post("/conversations", json={"title": "Refactor parser"})
        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "Refactor parser"
        assert data["messages"] == []

    def test_create_without_title(self, client):
        """Test the default title."""
        data = client.post("/conversations", json={}).json()
        assert data["title"] == "New Conversation"

    def test_list_conversations(self, client):
        """Test listing created conversations."""
        created = client.post("/conversations", json={}).json()
        listing = client.get("/conversations").json()
        assert [item["id"] for item in listing] == [created["id"]]
        assert listing[0]["message_count"] == 0

    def test_get_conversation(self, client):
        """Test fetching one conversation."""
        created = client.post("/conversations", json={}).json()
        response = client.get(f"/conversations/{created['id']}")
        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    def test_get_missing_conversation(self, client):
        """Test 404 for an unknown id."""
        response = client.get("/conversations/conv_missing")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"].lower()

    def test_corrupted_conversation(self, client, settings):
        """Test 409 for a damaged file."""
        (settings.conversations_dir / "broken.json").write_text("{oops")
        assert client.get("/conversations/broken").status_code == 409

    def test_delete_conversation(self, client):
        """Test deletion and a second delete."""
        created = client.post("/conversations", json={}).json()
        assert client.delete(f"/conversations/{created['id']}").status_code == 204
        assert client.delete(f"/conversations/{created['id']}").status_code == 404


class TestMessageEndpoints:
    """Tests for sending messages and approving tool calls."""

    def test_send_message(self, client, responses):
        """Test a plain text turn."""
        responses.append(anthropic_text("Hi! How can I help?"))
        created = client.post("/conversations", json={}).json()

        response = client.post(f"/conversations/{created['id']}/messages", json={"message": "hello"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "done"
        assert data["text"] == "Hi! How can I help?"
        assert data["conversation_id"] == created["id"]

        stored = client.get(f"/conversations/{created['id']}").json()
        assert [m["role"] for m in stored["messages"]] == ["user", "assistant"]
        assert stored["title"] == "hello"

    def test_send_to_missing_conversation(self, client):
        """Test 404 when the conversation does not exist."""
        response = client.post("/conversations/conv_missing/messages", json={"message": "hello"})
        assert response.status_code == 404

    def test_empty_message(self, client):
        """Test 400 for a blank message."""
        created = client.post("/conversations", json={}).json()
        response = client.post(f"/conversations/{created['id']}/messages", json={"message": " "})
        assert response.status_code == 400

    def test_missing_message_field(self, client):
        """Test request validation."""
        created = client.post("/conversations", json={}).json()
        response = client.post(f"/conversations/{created['id']}/messages", json={})
        assert response.status_code == 422

    def test_provider_failure_is_502(self, client, responses):
        """Test that a provider failure maps to 502 and keeps the message."""
        responses.append(ProviderError("anthropic", "overloaded", 529))
        created = client.post("/conversations", json={}).json()

        response = client.post(f"/conversations/{created['id']}/messages", json={"message": "hello"})

        assert response.status_code == 502
        assert "overloaded" in response.json()["detail"]
        stored = client.get(f"/conversations/{created['id']}").json()
        assert [m["content"] for m in stored["messages"]] == ["hello"]

    def test_manual_mode_and_approval(self, client, responses, workspace):
        """Test pending tool calls followed by approval."""
        (workspace / "app.py").write_text("")
        responses.extend(
            [anthropic_tool_use(("toolu_1", "list_dir", {"rel_path": "."})), anthropic_text("There is app.py")]
        )
        created = client.post("/conversations", json={}).json()

        pending = client.post(
            f"/conversations/{created['id']}/messages", json={"message": "ls", "auto_execute_tools": False}
        ).json()
        assert pending["stop_reason"] == "tool_calls_pending"
        assert pending["pending_tool_calls"][0]["id"] == "toolu_1"

        response = client.post(f"/conversations/{created['id']}/tool-approvals", json={"approved_ids": ["toolu_1"]})

        assert response.status_code == 200
        assert response.json()["text"] == "There is app.py"

    def test_approval_without_pending_calls(self, client):
        """Test 409 when nothing awaits approval."""
        created = client.post("/conversations", json={}).json()
        response = client.post(f"/conversations/{created['id']}/tool-approvals", json={"approved_ids": []})
        assert response.status_code == 409


class TestUsageEndpoint:
    """Tests for the usage summary."""

    def test_usage_after_turn(self, client, responses):
        """Test that a completed turn shows up in the summary."""
        responses.append(anthropic_text("ok", input_tokens=12, output_tokens=3))
        created = client.post("/conversations", json={}).json()
        client.post(f"/conversations/{created['id']}/messages", json={"message": "hi"})

        data = client.get("/usage", params={"hours": 1}).json()

        assert data["requests"] == 1
        assert data["total_tokens"] == 15
        assert data["currency"] == "USD"

    def test_usage_empty(self, client):
        """Test the summary with no traffic."""
        assert client.get("/usage").json()["requests"] == 0

    def test_usage_disabled(self, client, service):
        """Test 404 when usage logging is off."""
        service.usage_log = None
        assert client.get("/usage").status_code == 404
