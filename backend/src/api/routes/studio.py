"""Dev studio routes: patch proposals, audit log and feature flags."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from ...models.studio import AuditLogEntry, FeatureFlag, PatchCreate, PatchProposal, PatchStatusChange
from ...services.notebook import NotebookService
from ..dependencies import get_notebook

router = APIRouter(prefix="/api/studio", tags=["studio"])


@router.get("/patches", response_model=List[PatchProposal])
async def list_patches(notebook: NotebookService = Depends(get_notebook)):
    return notebook.state.patches


@router.post("/patches", response_model=PatchProposal, status_code=status.HTTP_201_CREATED)
async def propose_patch(create: PatchCreate, notebook: NotebookService = Depends(get_notebook)):
    """Store a patch proposal as pending. The diff is never applied."""
    return await notebook.propose_patch(
        create.title, create.description, create.code_diff, create.tests, create.model_used
    )


@router.post("/patches/{patch_id}/status", response_model=PatchProposal)
async def change_patch_status(
    patch_id: str, change: PatchStatusChange, notebook: NotebookService = Depends(get_notebook)
):
    """Approve or reject a pending patch (409 if it was already reviewed)."""
    return await notebook.set_patch_status(patch_id, change.status)


@router.get("/audit-log", response_model=List[AuditLogEntry])
async def list_audit_log(notebook: NotebookService = Depends(get_notebook)):
    return notebook.state.audit_log


@router.get("/feature-flags", response_model=List[FeatureFlag])
async def list_feature_flags(notebook: NotebookService = Depends(get_notebook)):
    return notebook.state.feature_flags


@router.post("/feature-flags/{flag_id}/toggle", response_model=FeatureFlag)
async def toggle_feature_flag(flag_id: str, notebook: NotebookService = Depends(get_notebook)):
    return await notebook.toggle_feature_flag(flag_id)
