"""Pydantic models for conversation turns, tool calls and streamed chunks."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .note import CamelModel, utcnow


class TurnRole(str, Enum):
    """Role of a participant in a conversation turn."""

    USER = "user"
    MODEL = "model"
    TOOL = "tool"


class TurnState(str, Enum):
    """Lifecycle of a single conversation turn."""

    AWAITING_FIRST_RESPONSE = "awaiting_first_response"
    TOOL_CALLS_REQUESTED = "tool_calls_requested"
    EXECUTING_TOOLS = "executing_tools"
    AWAITING_FOLLOWUP_RESPONSE = "awaiting_followup_response"
    DONE = "done"


class AiAction(BaseModel):
    """A named tool invocation requested by the model."""

    tool: str = Field(..., description="Tool name (e.g., 'create_folder')")
    args: Dict[str, Any] = Field(default_factory=dict, description="Tool arguments")


class ToolCallRequest(BaseModel):
    """A tool call as returned by a provider, paired with its call id."""

    id: str = Field(..., description="Provider call identifier")
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

    def to_action(self) -> AiAction:
        return AiAction(tool=self.name, args=self.arguments)


class ToolResult(BaseModel):
    """Text result of one executed tool call."""

    call_id: str
    name: str
    content: str


class Citation(BaseModel):
    """Web source returned by a provider in web-search mode."""

    uri: str
    title: str


class ChatTurn(BaseModel):
    """Provider-neutral message in a conversation history."""

    role: TurnRole
    text: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    tool_results: List[ToolResult] = Field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "ChatTurn":
        return cls(role=TurnRole.USER, text=text)

    @classmethod
    def model(cls, text: str) -> "ChatTurn":
        return cls(role=TurnRole.MODEL, text=text)


class TurnOptions(BaseModel):
    """Per-call options passed through to the provider untouched."""

    model: str = Field(..., min_length=1)
    thinking_budget: Optional[int] = Field(None, ge=0, description="Thinking token budget")
    web_search: bool = Field(False, description="Ground on web search instead of local tools")
    stream: bool = True
    system_instruction: Optional[str] = None
    tools: List[Dict[str, Any]] = Field(default_factory=list, description="Tool declarations")


class ChatStreamChunk(BaseModel):
    """Server-sent event chunk for streaming turns."""

    type: Literal["content", "tool_call", "tool_result", "done", "error"] = Field(
        ..., description="Chunk type"
    )
    content: Optional[str] = Field(None, description="Text for content chunks, final text on done")
    tool_call: Optional[ToolCallRequest] = None
    tool_result: Optional[ToolResult] = None
    citations: List[Citation] = Field(default_factory=list, description="Done chunk only")
    error: Optional[str] = Field(None, description="Error message (error chunk only)")
    retryable: bool = False


class TurnResult(BaseModel):
    """Collected outcome of a conversation turn."""

    text: str = ""
    citations: List[Citation] = Field(default_factory=list)
    tool_results: List[ToolResult] = Field(default_factory=list)
    error: Optional[str] = None


class ChatMessage(BaseModel):
    """Persisted chat history message."""

    id: Optional[int] = None
    thread_id: str = "default"
    role: Literal["user", "model"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    citations: List[Citation] = Field(default_factory=list)


class ChatRequest(CamelModel):
    """Request payload for a chat turn."""

    message: str = Field(..., min_length=1, max_length=5000)
    thread_id: str = "default"
    model: Optional[str] = None
    provider: Optional[Literal["gemini", "openrouter", "universal"]] = None
    web_search: bool = False
    thinking_budget: Optional[int] = Field(None, ge=0)
    current_note_id: Optional[str] = None


__all__ = [
    "AiAction",
    "ChatMessage",
    "ChatRequest",
    "ChatStreamChunk",
    "ChatTurn",
    "Citation",
    "ToolCallRequest",
    "ToolResult",
    "TurnOptions",
    "TurnResult",
    "TurnRole",
    "TurnState",
]
