"""Pydantic models for the dev studio: patch proposals, audit log, feature flags."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from .note import CamelModel, utcnow

PatchStatus = Literal["pending", "approved", "rejected"]


class PatchProposal(CamelModel):
    """A model-proposed code change awaiting human review.

    ``code_diff`` is opaque text. Nothing in the core parses or applies it.
    """

    id: str
    title: str
    description: str = ""
    code_diff: str = ""
    tests: str = ""
    status: PatchStatus = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    model_used: str = "unknown"


class AuditLogEntry(CamelModel):
    """Append-only record of a patch status transition."""

    id: str
    patch_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    status: PatchStatus


class FeatureFlag(CamelModel):
    id: str
    name: str
    description: str = ""
    is_enabled: bool = False


class PatchCreate(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    code_diff: str = ""
    tests: str = ""
    model_used: str = "manual"


class PatchStatusChange(BaseModel):
    status: Literal["approved", "rejected"]


__all__ = [
    "AuditLogEntry",
    "FeatureFlag",
    "PatchCreate",
    "PatchProposal",
    "PatchStatus",
    "PatchStatusChange",
]
