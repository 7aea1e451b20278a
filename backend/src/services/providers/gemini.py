"""Google Gemini adapter over the Generative Language REST API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from ...models.chat import ChatTurn, ToolCallRequest, TurnOptions, TurnRole
from .base import ProviderAdapter, ProviderError, ProviderResponse, parse_json_text

logger = logging.getLogger(__name__)


def turn_to_content(turn: ChatTurn) -> Dict[str, Any]:
    """Convert a neutral turn to a Gemini ``Content`` object."""
    if turn.role == TurnRole.TOOL:
        return {
            "role": "user",
            "parts": [
                {
                    "functionResponse": {
                        "id": result.call_id,
                        "name": result.name,
                        "response": {"result": result.content},
                    }
                }
                for result in turn.tool_results
            ],
        }

    parts: List[Dict[str, Any]] = []
    if turn.text:
        parts.append({"text": turn.text})
    for call in turn.tool_calls:
        parts.append({"functionCall": {"id": call.id, "name": call.name, "args": call.arguments}})
    role = "model" if turn.role == TurnRole.MODEL else "user"
    return {"role": role, "parts": parts or [{"text": ""}]}


class GeminiAdapter(ProviderAdapter):
    """``generateContent`` / ``streamGenerateContent`` with tools or Google Search."""

    name = "gemini"
    BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, api_key: str, base_url: Optional[str] = None, **kwargs: Any):
        super().__init__(api_key=api_key, **kwargs)
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key or "", "Content-Type": "application/json"}

    def build_request(
        self, history: Sequence[ChatTurn], new_message: ChatTurn, options: TurnOptions
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "contents": [turn_to_content(t) for t in [*history, new_message]],
        }
        if options.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": options.system_instruction}]}
        # Web search and function calling are mutually exclusive.
        if options.web_search:
            body["tools"] = [{"googleSearch": {}}]
        elif options.tools:
            body["tools"] = options.tools
        if options.thinking_budget is not None:
            body["generationConfig"] = {
                "thinkingConfig": {"thinkingBudget": options.thinking_budget}
            }
        return body

    def _absorb(self, data: Dict[str, Any], response: ProviderResponse) -> str:
        """Collect tool calls and citations from one candidate payload; return its text."""
        if "error" in data:
            error = data["error"]
            raise ProviderError(f"API error: {error.get('message', error)}")
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        candidate = candidates[0]
        text = ""
        for part in (candidate.get("content") or {}).get("parts", []):
            if part.get("thought"):
                continue
            if "text" in part:
                text += part["text"]
            elif "functionCall" in part:
                call = part["functionCall"]
                call_id = call.get("id") or f"call-{len(response.tool_calls)}"
                response.tool_calls.append(
                    ToolCallRequest(id=call_id, name=call.get("name", ""), arguments=call.get("args") or {})
                )
        grounding = candidate.get("groundingMetadata") or {}
        for chunk in grounding.get("groundingChunks", []):
            web = chunk.get("web") or {}
            response.add_citation(web.get("uri", ""), web.get("title"))
        return text

    async def send_turn(
        self,
        history: Sequence[ChatTurn],
        new_message: ChatTurn,
        options: TurnOptions,
        abort: Optional[asyncio.Event] = None,
    ) -> ProviderResponse:
        body = self.build_request(history, new_message, options)

        if not options.stream:
            data = await self._post_json(
                f"{self.base_url}/models/{options.model}:generateContent", self._headers(), body
            )
            response = ProviderResponse()
            response.text = self._absorb(data, response)
            return response

        response = ProviderResponse()

        async def _chunks() -> AsyncIterator[str]:
            url = f"{self.base_url}/models/{options.model}:streamGenerateContent?alt=sse"
            async for data in self._iter_sse(url, self._headers(), body, abort):
                text = self._absorb(data, response)
                if text:
                    yield text

        return response.attach_stream(_chunks())

    async def generate_json(
        self, prompt: str, schema: Dict[str, Any], model: str
    ) -> Dict[str, Any]:
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }
        data = await self._post_json(
            f"{self.base_url}/models/{model}:generateContent", self._headers(), body
        )
        response = ProviderResponse()
        return parse_json_text(self._absorb(data, response))


__all__ = ["GeminiAdapter", "turn_to_content"]
