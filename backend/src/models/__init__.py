"""Pydantic models for data validation and serialization."""

from .chat import (
    AiAction,
    ChatMessage,
    ChatRequest,
    ChatStreamChunk,
    ChatTurn,
    Citation,
    ToolCallRequest,
    ToolResult,
    TurnOptions,
    TurnResult,
    TurnRole,
    TurnState,
)
from .export import ExportBundle
from .note import Attachment, Connection, Folder, Note, NoteVersion
from .settings import AiSettings, ModelProvider
from .studio import AuditLogEntry, FeatureFlag, PatchProposal

__all__ = [
    "AiAction",
    "AiSettings",
    "Attachment",
    "AuditLogEntry",
    "ChatMessage",
    "ChatRequest",
    "ChatStreamChunk",
    "ChatTurn",
    "Citation",
    "Connection",
    "ExportBundle",
    "FeatureFlag",
    "Folder",
    "ModelProvider",
    "Note",
    "NoteVersion",
    "PatchProposal",
    "ToolCallRequest",
    "ToolResult",
    "TurnOptions",
    "TurnResult",
    "TurnRole",
    "TurnState",
]
