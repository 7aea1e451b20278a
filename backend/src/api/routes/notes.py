"""HTTP API routes for note operations."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ...models.note import Note, NoteCreate, NoteUpdate, NoteVersion
from ...services.insights import InsightsService
from ...services.notebook import ALL_FOLDERS, NotebookService
from ...services.providers import default_model
from ...services.versioning import VersionRecorder
from ..dependencies import (
    AppServices,
    ProviderBuilder,
    get_notebook,
    get_provider_builder,
    get_recorder,
    get_services,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notes", tags=["notes"])

NULLABLE_NOTE_FIELDS = ("folder_id", "language")


@router.get("", response_model=List[Note])
async def list_notes(
    folder: Optional[str] = Query(None, description="Folder id, 'all' or 'uncategorized'"),
    notebook: NotebookService = Depends(get_notebook),
):
    """List notes, most recently updated first."""
    notes = notebook.list_notes(folder or ALL_FOLDERS)
    return sorted(notes, key=lambda n: n.updated_at, reverse=True)


@router.post("", response_model=Note, status_code=status.HTTP_201_CREATED)
async def create_note(create: NoteCreate, notebook: NotebookService = Depends(get_notebook)):
    return await notebook.create_note(
        create.title,
        create.content,
        folder_id=create.folder_id,
        tags=create.tags,
        kind=create.type,
        language=create.language,
        activate=True,
    )


@router.get("/{note_id}", response_model=Note)
async def get_note(note_id: str, notebook: NotebookService = Depends(get_notebook)):
    return notebook.get_note(note_id)


@router.patch("/{note_id}", response_model=Note)
async def update_note(
    note_id: str, update: NoteUpdate, notebook: NotebookService = Depends(get_notebook)
):
    """Update the fields present in the body; ``folderId: null`` moves to uncategorized."""
    fields = {
        key: value
        for key, value in update.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_NOTE_FIELDS
    }
    return await notebook.update_note(note_id, **fields)


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(note_id: str, notebook: NotebookService = Depends(get_notebook)):
    await notebook.delete_note(note_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{note_id}/analyze", response_model=Note)
async def analyze_note(
    note_id: str,
    notebook: NotebookService = Depends(get_notebook),
    services: AppServices = Depends(get_services),
    build: ProviderBuilder = Depends(get_provider_builder),
):
    """Generate a summary and tags with the provider assigned to the summary task."""
    notebook.get_note(note_id)
    task = notebook.state.settings.tasks.summary
    provider = build(task.provider.value)
    model = task.model or default_model(services.config, task.provider.value, notebook.state.settings)
    insights = InsightsService(notebook, provider, model, services.prompt_loader)
    return await insights.summarize_and_tag(note_id)


@router.get("/{note_id}/versions", response_model=List[NoteVersion])
async def list_versions(
    note_id: str,
    notebook: NotebookService = Depends(get_notebook),
    recorder: VersionRecorder = Depends(get_recorder),
):
    """Saved versions, newest first."""
    notebook.get_note(note_id)
    return await recorder.list_versions(note_id)


@router.post("/{note_id}/versions/{version_id}/restore", response_model=Note)
async def restore_version(
    note_id: str,
    version_id: int,
    notebook: NotebookService = Depends(get_notebook),
    recorder: VersionRecorder = Depends(get_recorder),
):
    return await recorder.restore(note_id, version_id)
