"""Integration tests for the chat endpoints (streaming and collected turns)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterator, List

import pytest
from fastapi.testclient import TestClient

from backend.src.api.dependencies import get_provider_builder
from backend.src.api.main import create_app
from backend.src.models.chat import Citation, ToolCallRequest
from backend.src.services.config import AppConfig
from backend.src.services.providers.base import ProviderError, ProviderResponse
from backend.tests.fakes import FakeProvider, stream_response


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def client(tmp_path: Path, provider: FakeProvider) -> Iterator[TestClient]:
    app = create_app(AppConfig(db_path=tmp_path / "chat.db"))
    app.dependency_overrides[get_provider_builder] = lambda: (lambda name=None: provider)
    with TestClient(app) as test_client:
        yield test_client


def parse_events(body: str) -> List[Dict[str, Any]]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def create_folder_call(name: str) -> ToolCallRequest:
    return ToolCallRequest(id="call-1", name="create_folder", arguments={"name": name})


class TestChatTurn:
    """POST /api/chat returns the collected turn."""

    def test_tool_turn_creates_folder(self, client: TestClient, provider: FakeProvider) -> None:
        provider.responses.extend(
            [
                ProviderResponse(tool_calls=[create_folder_call("Ideas")]),
                ProviderResponse(text="I created the Ideas folder."),
            ]
        )

        response = client.post("/api/chat", json={"message": "Create a folder called Ideas"})

        body = response.json()
        assert response.status_code == 200
        assert body["text"] == "I created the Ideas folder."
        assert body["error"] is None
        assert body["tool_results"][0]["content"].startswith("Successfully created folder with ID folder-")
        assert "Ideas" in [f["name"] for f in client.get("/api/folders").json()]
        assert provider.calls[0]["options"].stream is False

    def test_history_is_persisted_and_replayed(self, client: TestClient, provider: FakeProvider) -> None:
        provider.responses.extend([ProviderResponse(text="first answer"), ProviderResponse(text="second")])

        client.post("/api/chat", json={"message": "first"})
        client.post("/api/chat", json={"message": "second", "threadId": "default"})

        second_call = provider.calls[1]
        assert [t.text for t in second_call["history"]] == ["first", "first answer"]
        history = client.get("/api/chat/history").json()
        assert [m["content"] for m in history] == ["first", "first answer", "second", "second"]

    def test_failed_turn_keeps_user_message_only(self, client: TestClient, provider: FakeProvider) -> None:
        provider.responses.append(ProviderError("API error: 500", retryable=True))

        body = client.post("/api/chat", json={"message": "hello"}).json()

        assert body["error"] == "API error: 500"
        assert [m["role"] for m in client.get("/api/chat/history").json()] == ["user"]

    def test_retry_and_clear_history(self, client: TestClient, provider: FakeProvider) -> None:
        provider.responses.append(ProviderResponse(text="meh"))
        client.post("/api/chat", json={"message": "try me"})

        retried = client.post("/api/chat/history/retry")
        assert retried.status_code == 200
        assert retried.json()["content"] == "try me"
        assert client.get("/api/chat/history").json() == []
        assert client.post("/api/chat/history/retry").status_code == 404

        provider.responses.append(ProviderResponse(text="again"))
        client.post("/api/chat", json={"message": "again"})
        assert client.delete("/api/chat/history").status_code == 204
        assert client.get("/api/chat/history").json() == []

    def test_empty_message_is_rejected(self, client: TestClient) -> None:
        assert client.post("/api/chat", json={"message": ""}).status_code == 400


class TestChatStream:
    """POST /api/chat/stream emits SSE chunks.

    Kept in one test so every request shares the same client event loop.
    """

    def test_stream_events(self, client: TestClient, provider: FakeProvider) -> None:
        citation = Citation(uri="https://example.com/pomodoro", title="Pomodoro")
        provider.responses.extend(
            [
                stream_response(tool_calls=[create_folder_call("Ideas")]),
                stream_response("Done: ", "folder created."),
                stream_response("It is a time ", "management method.", citations=[citation]),
                stream_response("partial", ProviderError("Network error: reset", retryable=True)),
            ]
        )

        events = parse_events(client.post("/api/chat/stream", json={"message": "Make Ideas"}).text)
        assert [e["type"] for e in events] == ["tool_call", "tool_result", "content", "content", "done"]
        assert events[0]["tool_call"]["name"] == "create_folder"
        assert events[-1]["content"] == "Done: folder created."

        web = parse_events(
            client.post("/api/chat/stream", json={"message": "What is Pomodoro?", "webSearch": True}).text
        )
        assert web[-1]["type"] == "done"
        assert web[-1]["citations"] == [{"uri": "https://example.com/pomodoro", "title": "Pomodoro"}]
        assert provider.calls[-1]["options"].tools == []

        failed = parse_events(client.post("/api/chat/stream", json={"message": "again"}).text)
        assert [e["type"] for e in failed] == ["content", "error"]
        assert failed[-1]["retryable"] is True

        history = client.get("/api/chat/history").json()
        assert [m["role"] for m in history] == ["user", "model", "user", "model", "user"]
        assert history[3]["citations"][0]["uri"] == "https://example.com/pomodoro"

        def unavailable(name=None):
            raise ProviderError("OpenRouter API key not configured")

        client.app.dependency_overrides[get_provider_builder] = lambda: unavailable
        missing = parse_events(client.post("/api/chat/stream", json={"message": "hi"}).text)
        assert missing == [
            {"type": "error", "citations": [], "error": "OpenRouter API key not configured", "retryable": False}
        ]
        assert len(client.get("/api/chat/history").json()) == 5
