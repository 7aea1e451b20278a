"""Note-related Pydantic models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

NoteKind = Literal["text", "code", "link"]
NOTE_KINDS: tuple[str, ...] = ("text", "code", "link")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model accepting both snake_case and the camelCase export keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Attachment(CamelModel):
    """File attached to a note (image, audio, document)."""

    id: str
    name: str
    mime_type: str = Field(..., description="MIME type of the attachment payload")
    data: str = Field("", description="Base64 payload or external URL")


class Note(CamelModel):
    """A single knowledge note.

    ``folder_id`` of ``None`` means the note is uncategorized. Tags are kept
    unique while preserving first-seen order.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "note-1718000000000",
                "title": "Atomic Notes",
                "content": "One idea per note.",
                "summary": "",
                "tags": ["zettelkasten"],
                "folderId": None,
                "type": "text",
            }
        },
    )

    id: str = Field(..., min_length=1)
    title: str = Field(default="Untitled Note")
    content: str = Field(default="")
    summary: str = Field(default="", description="AI-generated one sentence summary")
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    folder_id: Optional[str] = Field(default=None, description="None means uncategorized")
    type: NoteKind = Field(default="text", description="Content kind")
    language: Optional[str] = Field(default=None, description="Language hint for code notes")
    attachments: List[Attachment] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, value: List[str]) -> List[str]:
        seen: list[str] = []
        for tag in value:
            cleaned = tag.strip()
            if cleaned and cleaned not in seen:
                seen.append(cleaned)
        return seen


class Folder(CamelModel):
    """Folder grouping notes. Names are unique across folders."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class Connection(CamelModel):
    """Undirected edge between two notes, as discovered by the model."""

    id: Optional[int] = None
    source: str
    target: str
    reason: str = ""

    def pair(self) -> frozenset[str]:
        return frozenset((self.source, self.target))


class NoteVersion(CamelModel):
    """Immutable snapshot of a note's title and body."""

    id: Optional[int] = None
    note_id: str
    title: str
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class NoteCreate(CamelModel):
    """Request payload to create a note."""

    title: str = Field(default="Untitled Note")
    content: str = Field(default="", max_length=1_048_576)
    folder_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    type: NoteKind = "text"
    language: Optional[str] = None


class NoteUpdate(CamelModel):
    """Request payload to update a note. Unset fields are left alone."""

    title: Optional[str] = None
    content: Optional[str] = Field(default=None, max_length=1_048_576)
    summary: Optional[str] = None
    tags: Optional[List[str]] = None
    folder_id: Optional[str] = None
    type: Optional[NoteKind] = None
    language: Optional[str] = None


class FolderCreate(CamelModel):
    name: str = Field(..., min_length=1)
    description: str = ""


class FolderUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None


__all__ = [
    "NOTE_KINDS",
    "Attachment",
    "CamelModel",
    "Connection",
    "Folder",
    "FolderCreate",
    "FolderUpdate",
    "Note",
    "NoteCreate",
    "NoteKind",
    "NoteUpdate",
    "NoteVersion",
    "utcnow",
]
