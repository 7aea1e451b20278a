"""Export/import document model."""

from __future__ import annotations

from typing import List

from pydantic import Field

from .note import CamelModel, Connection, Folder, Note
from .settings import AiSettings
from .studio import AuditLogEntry, FeatureFlag, PatchProposal


class ExportBundle(CamelModel):
    """Whole-workspace JSON document: parallel arrays plus the settings object."""

    notes: List[Note] = Field(default_factory=list)
    folders: List[Folder] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    settings: AiSettings = Field(default_factory=AiSettings)
    patches: List[PatchProposal] = Field(default_factory=list)
    feature_flags: List[FeatureFlag] = Field(default_factory=list)
    audit_log: List[AuditLogEntry] = Field(default_factory=list)


__all__ = ["ExportBundle"]
