"""Unit tests for provider adapters, exercised over httpx.MockTransport."""

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from backend.src.models.chat import ChatTurn, ToolCallRequest, ToolResult, TurnOptions, TurnRole
from backend.src.models.settings import AiSettings
from backend.src.services.config import AppConfig
from backend.src.services.providers import (
    GeminiAdapter,
    OpenAICompatibleAdapter,
    OpenRouterAdapter,
    ProviderError,
    build_provider,
    default_model,
)
from backend.src.services.providers.base import parse_json_text
from backend.src.services.providers.gemini import turn_to_content
from backend.src.services.providers.openai_compat import turn_to_messages


def sse_body(*events: Dict[str, Any], done: bool = False) -> bytes:
    lines = [f"data: {json.dumps(event)}\n\n" for event in events]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, response: Callable[[httpx.Request], httpx.Response]):
        self._response = response
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._response(request)

    @property
    def body(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)


def transport_for(handler: Recorder) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


async def drain(response) -> str:
    return "".join([chunk async for chunk in response.iter_text()])


class TestGeminiAdapter:
    """Gemini generateContent / streamGenerateContent."""

    @pytest.mark.asyncio
    async def test_non_streaming_text_and_function_call(self) -> None:
        handler = Recorder(
            lambda request: httpx.Response(
                200,
                json={
                    "candidates": [
                        {
                            "content": {
                                "parts": [
                                    {"text": "thinking...", "thought": True},
                                    {"text": "On it."},
                                    {"functionCall": {"name": "create_folder", "args": {"name": "Ideas"}}},
                                ]
                            }
                        }
                    ]
                },
            )
        )
        adapter = GeminiAdapter(api_key="g-key", transport=transport_for(handler))
        options = TurnOptions(
            model="gemini-2.5-flash",
            stream=False,
            system_instruction="Be brief.",
            tools=[{"functionDeclarations": []}],
            thinking_budget=256,
        )

        response = await adapter.send_turn([], ChatTurn.user("make a folder"), options)

        request = handler.requests[0]
        assert request.url.path.endswith("/models/gemini-2.5-flash:generateContent")
        assert request.headers["x-goog-api-key"] == "g-key"
        assert handler.body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert handler.body["generationConfig"]["thinkingConfig"]["thinkingBudget"] == 256
        assert response.text == "On it."
        assert response.tool_calls == [
            ToolCallRequest(id="call-0", name="create_folder", arguments={"name": "Ideas"})
        ]

    @pytest.mark.asyncio
    async def test_streaming_collects_citations(self) -> None:
        grounding = {
            "groundingChunks": [
                {"web": {"uri": "https://a.example", "title": "A"}},
                {"web": {"uri": "https://a.example", "title": "A again"}},
            ]
        }
        body = sse_body(
            {"candidates": [{"content": {"parts": [{"text": "Hello "}]}}]},
            {"candidates": [{"content": {"parts": [{"text": "world"}]}, "groundingMetadata": grounding}]},
        )
        handler = Recorder(lambda request: httpx.Response(200, content=body))
        adapter = GeminiAdapter(api_key="g-key", transport=transport_for(handler))

        response = await adapter.send_turn(
            [], ChatTurn.user("news?"), TurnOptions(model="gemini-2.5-flash", web_search=True)
        )
        text = await drain(response)

        assert "alt=sse" in str(handler.requests[0].url)
        assert handler.body["tools"] == [{"googleSearch": {}}]
        assert text == "Hello world"
        assert [c.uri for c in response.citations] == ["https://a.example"]

    @pytest.mark.asyncio
    async def test_http_errors_map_to_provider_error(self) -> None:
        handler = Recorder(lambda request: httpx.Response(429, text="slow down"))
        adapter = GeminiAdapter(api_key="g-key", transport=transport_for(handler))

        with pytest.raises(ProviderError) as exc_info:
            await adapter.send_turn([], ChatTurn.user("hi"), TurnOptions(model="m", stream=False))

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_stream_auth_error(self) -> None:
        handler = Recorder(lambda request: httpx.Response(403, text="forbidden"))
        adapter = GeminiAdapter(api_key="bad", transport=transport_for(handler))

        response = await adapter.send_turn([], ChatTurn.user("hi"), TurnOptions(model="m"))

        with pytest.raises(ProviderError) as exc_info:
            await drain(response)
        assert "Authentication failed" in exc_info.value.message
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_network_failure_is_retryable(self) -> None:
        def explode(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        adapter = GeminiAdapter(api_key="k", transport=httpx.MockTransport(explode))

        with pytest.raises(ProviderError) as exc_info:
            await adapter.send_turn([], ChatTurn.user("hi"), TurnOptions(model="m", stream=False))

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_generate_json(self) -> None:
        payload = {"summary": "Short.", "tags": ["a"]}
        handler = Recorder(
            lambda request: httpx.Response(
                200, json={"candidates": [{"content": {"parts": [{"text": json.dumps(payload)}]}}]}
            )
        )
        adapter = GeminiAdapter(api_key="k", transport=transport_for(handler))

        data = await adapter.generate_json("Summarize", {"type": "object"}, "gemini-2.5-flash")

        assert data == payload
        assert handler.body["generationConfig"]["responseMimeType"] == "application/json"

    def test_tool_turn_becomes_function_responses(self) -> None:
        turn = ChatTurn(
            role=TurnRole.TOOL,
            tool_results=[ToolResult(call_id="c1", name="list_folders", content="[]")],
        )

        content = turn_to_content(turn)

        assert content == {
            "role": "user",
            "parts": [
                {"functionResponse": {"id": "c1", "name": "list_folders", "response": {"result": "[]"}}}
            ],
        }


class TestOpenAICompatibleAdapter:
    """Chat completions over SSE, for OpenRouter and local endpoints."""

    @pytest.mark.asyncio
    async def test_streamed_tool_call_fragments_are_joined(self) -> None:
        body = sse_body(
            {"choices": [{"delta": {"content": "Sure."}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "tc-1", "function": {"name": "create_folder", "arguments": '{"na'}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": 'me": "Ideas"}'}}]}}]},
            done=True,
        )
        handler = Recorder(lambda request: httpx.Response(200, content=body))
        adapter = OpenAICompatibleAdapter("http://localhost:11434/v1/", transport=transport_for(handler))
        options = TurnOptions(model="llama3", tools=[{"type": "function", "function": {"name": "create_folder"}}])

        response = await adapter.send_turn([], ChatTurn.user("folder please"), options)
        text = await drain(response)

        assert str(handler.requests[0].url) == "http://localhost:11434/v1/chat/completions"
        assert "Authorization" not in handler.requests[0].headers
        assert handler.body["tool_choice"] == "auto"
        assert text == "Sure."
        assert response.tool_calls == [
            ToolCallRequest(id="tc-1", name="create_folder", arguments={"name": "Ideas"})
        ]

    @pytest.mark.asyncio
    async def test_non_streaming_with_annotations(self) -> None:
        handler = Recorder(
            lambda request: httpx.Response(
                200,
                json={
                    "choices": [
                        {
                            "message": {
                                "content": "Answer",
                                "annotations": [
                                    {"type": "url_citation", "url_citation": {"url": "https://b.example", "title": "B"}}
                                ],
                            }
                        }
                    ]
                },
            )
        )
        adapter = OpenAICompatibleAdapter("http://x/v1", api_key="tok", transport=transport_for(handler))

        response = await adapter.send_turn([], ChatTurn.user("q"), TurnOptions(model="m", stream=False))

        assert handler.requests[0].headers["Authorization"] == "Bearer tok"
        assert response.text == "Answer"
        assert response.citations[0].title == "B"

    @pytest.mark.asyncio
    async def test_openrouter_web_and_reasoning_options(self) -> None:
        handler = Recorder(
            lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})
        )
        adapter = OpenRouterAdapter(api_key="or-key", transport=transport_for(handler))
        options = TurnOptions(model="google/gemini-2.5-flash", stream=False, web_search=True, thinking_budget=1024)

        await adapter.send_turn([], ChatTurn.user("q"), options)

        body = handler.body
        assert str(handler.requests[0].url).startswith("https://openrouter.ai/api/v1/")
        assert handler.requests[0].headers["X-Title"] == "Cogniflow"
        assert body["plugins"] == [{"id": "web"}]
        assert body["reasoning"] == {"max_tokens": 1024}
        assert "tools" not in body

    @pytest.mark.asyncio
    async def test_empty_choices_is_malformed(self) -> None:
        handler = Recorder(lambda request: httpx.Response(200, json={"choices": []}))
        adapter = OpenAICompatibleAdapter("http://x/v1", transport=transport_for(handler))

        with pytest.raises(ProviderError, match="Malformed response"):
            await adapter.send_turn([], ChatTurn.user("q"), TurnOptions(model="m", stream=False))

    def test_history_conversion(self) -> None:
        call = ToolCallRequest(id="c1", name="list_folders", arguments={})
        model_turn = ChatTurn(role=TurnRole.MODEL, text="", tool_calls=[call])
        tool_turn = ChatTurn(
            role=TurnRole.TOOL,
            tool_results=[ToolResult(call_id="c1", name="list_folders", content="[]")],
        )

        [assistant] = turn_to_messages(model_turn)
        [tool] = turn_to_messages(tool_turn)

        assert assistant["content"] is None
        assert assistant["tool_calls"][0]["function"] == {"name": "list_folders", "arguments": "{}"}
        assert tool == {"role": "tool", "tool_call_id": "c1", "content": "[]"}


class TestJsonParsing:
    def test_fenced_json(self) -> None:
        assert parse_json_text('```json\n{"a": 1}\n```') == {"a": 1}

    def test_non_object_is_rejected(self) -> None:
        with pytest.raises(ProviderError):
            parse_json_text("[1, 2]")


class TestFactory:
    def test_missing_key_raises(self, tmp_path) -> None:
        config = AppConfig(db_path=tmp_path / "db.sqlite")

        with pytest.raises(ProviderError, match="GEMINI_API_KEY"):
            build_provider(config, "gemini")

    def test_unknown_provider(self, tmp_path) -> None:
        with pytest.raises(ProviderError):
            build_provider(AppConfig(db_path=tmp_path / "db.sqlite"), "claude")

    def test_builds_each_adapter(self, tmp_path) -> None:
        config = AppConfig(
            db_path=tmp_path / "db.sqlite", gemini_api_key="g", openrouter_api_key="o"
        )
        settings = AiSettings()
        settings.universal.base_url = "http://lmstudio:1234/v1"

        assert isinstance(build_provider(config, "gemini"), GeminiAdapter)
        assert isinstance(build_provider(config, "openrouter"), OpenRouterAdapter)
        universal = build_provider(config, "universal", settings)
        assert type(universal) is OpenAICompatibleAdapter
        assert universal.base_url == "http://lmstudio:1234/v1"

    def test_default_model(self, tmp_path) -> None:
        config = AppConfig(db_path=tmp_path / "db.sqlite", chat_model="gemini-2.5-pro")
        settings = AiSettings()
        settings.universal.model_id = "mistral"

        assert default_model(config, "gemini") == "gemini-2.5-pro"
        assert default_model(config, "openrouter") == "google/gemini-2.5-flash"
        assert default_model(config, "universal", settings) == "mistral"
