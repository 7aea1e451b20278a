"""OpenAI-compatible chat completions adapters (OpenRouter, Ollama, LM Studio...)."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from ...models.chat import ChatTurn, ToolCallRequest, TurnOptions, TurnRole
from .base import ProviderAdapter, ProviderError, ProviderResponse, parse_json_text

logger = logging.getLogger(__name__)


def turn_to_messages(turn: ChatTurn) -> List[Dict[str, Any]]:
    """Convert a neutral turn to one or more chat completion messages."""
    if turn.role == TurnRole.TOOL:
        return [
            {"role": "tool", "tool_call_id": result.call_id, "content": result.content}
            for result in turn.tool_results
        ]
    if turn.role == TurnRole.MODEL:
        message: Dict[str, Any] = {"role": "assistant", "content": turn.text or None}
        if turn.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in turn.tool_calls
            ]
        return [message]
    return [{"role": "user", "content": turn.text}]


def _parse_arguments(raw: Any, name: str) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Malformed arguments for tool call {name}: {str(raw)[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAICompatibleAdapter(ProviderAdapter):
    """Chat completions with OpenAI function calling and SSE streaming."""

    name = "universal"

    def __init__(self, base_url: str, api_key: Optional[str] = None, **kwargs: Any):
        super().__init__(api_key=api_key, **kwargs)
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _web_search_options(self, body: Dict[str, Any], options: TurnOptions) -> None:
        logger.warning(f"{self.name} does not support web search; sending a plain turn")

    def _thinking_options(self, body: Dict[str, Any], options: TurnOptions) -> None:
        """Generic endpoints have no thinking budget parameter."""

    def build_request(
        self, history: Sequence[ChatTurn], new_message: ChatTurn, options: TurnOptions
    ) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = []
        if options.system_instruction:
            messages.append({"role": "system", "content": options.system_instruction})
        for turn in [*history, new_message]:
            messages.extend(turn_to_messages(turn))

        body: Dict[str, Any] = {
            "model": options.model,
            "messages": messages,
            "stream": options.stream,
        }
        if options.web_search:
            self._web_search_options(body, options)
        elif options.tools:
            body["tools"] = options.tools
            body["tool_choice"] = "auto"
        if options.thinking_budget is not None:
            self._thinking_options(body, options)
        return body

    def _absorb_annotations(self, annotations: Optional[List[Dict[str, Any]]], response: ProviderResponse) -> None:
        for annotation in annotations or []:
            if annotation.get("type") == "url_citation":
                citation = annotation.get("url_citation") or {}
                response.add_citation(citation.get("url", ""), citation.get("title"))

    async def send_turn(
        self,
        history: Sequence[ChatTurn],
        new_message: ChatTurn,
        options: TurnOptions,
        abort: Optional[asyncio.Event] = None,
    ) -> ProviderResponse:
        body = self.build_request(history, new_message, options)
        url = f"{self.base_url}/chat/completions"

        if not options.stream:
            data = await self._post_json(url, self._headers(), body)
            if "error" in data:
                raise ProviderError(f"API error: {data['error'].get('message', data['error'])}")
            choices = data.get("choices") or []
            if not choices:
                raise ProviderError("Malformed response: no choices returned")
            message = choices[0].get("message") or {}
            response = ProviderResponse(text=message.get("content") or "")
            for call in message.get("tool_calls") or []:
                fn = call.get("function") or {}
                response.tool_calls.append(
                    ToolCallRequest(
                        id=call.get("id") or f"call-{len(response.tool_calls)}",
                        name=fn.get("name", ""),
                        arguments=_parse_arguments(fn.get("arguments"), fn.get("name", "")),
                    )
                )
            self._absorb_annotations(message.get("annotations"), response)
            return response

        response = ProviderResponse()

        async def _chunks() -> AsyncIterator[str]:
            tool_calls_buffer: Dict[int, Dict[str, Any]] = {}
            async for data in self._iter_sse(url, self._headers(), body, abort):
                if "error" in data:
                    raise ProviderError(f"API error: {data['error'].get('message', data['error'])}")
                choices = data.get("choices", [])
                if not choices:
                    continue
                delta = choices[0].get("delta", {})

                if delta.get("content"):
                    yield delta["content"]

                for tc in delta.get("tool_calls") or []:
                    idx = tc.get("index", 0)
                    entry = tool_calls_buffer.setdefault(idx, {"id": "", "name": "", "arguments": ""})
                    if tc.get("id"):
                        entry["id"] = tc["id"]
                    fn = tc.get("function") or {}
                    if fn.get("name"):
                        entry["name"] = fn["name"]
                    if fn.get("arguments"):
                        entry["arguments"] += fn["arguments"]

                self._absorb_annotations(delta.get("annotations"), response)

            for idx in sorted(tool_calls_buffer):
                entry = tool_calls_buffer[idx]
                response.tool_calls.append(
                    ToolCallRequest(
                        id=entry["id"] or f"call-{idx}",
                        name=entry["name"],
                        arguments=_parse_arguments(entry["arguments"], entry["name"]),
                    )
                )

        return response.attach_stream(_chunks())

    async def generate_json(
        self, prompt: str, schema: Dict[str, Any], model: str
    ) -> Dict[str, Any]:
        instruction = (
            f"{prompt}\n\nRespond with a single JSON object matching this schema:\n"
            f"{json.dumps(schema)}"
        )
        body = {
            "model": model,
            "messages": [{"role": "user", "content": instruction}],
            "response_format": {"type": "json_object"},
            "stream": False,
        }
        data = await self._post_json(f"{self.base_url}/chat/completions", self._headers(), body)
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("Malformed response: no choices returned")
        return parse_json_text((choices[0].get("message") or {}).get("content") or "")


class OpenRouterAdapter(OpenAICompatibleAdapter):
    """OpenRouter: web plugin for search, reasoning budget for thinking models."""

    name = "openrouter"
    BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(self, api_key: str, **kwargs: Any):
        super().__init__(self.BASE_URL, api_key=api_key, **kwargs)

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["HTTP-Referer"] = "https://cogniflow.app"
        headers["X-Title"] = "Cogniflow"
        return headers

    def _web_search_options(self, body: Dict[str, Any], options: TurnOptions) -> None:
        body["plugins"] = [{"id": "web"}]

    def _thinking_options(self, body: Dict[str, Any], options: TurnOptions) -> None:
        body["reasoning"] = {"max_tokens": options.thinking_budget}


__all__ = ["OpenAICompatibleAdapter", "OpenRouterAdapter", "turn_to_messages"]
