"""HTTP API routes for folders."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response, status

from ...models.note import Folder, FolderCreate, FolderUpdate
from ...services.notebook import NotebookService
from ..dependencies import get_notebook

router = APIRouter(prefix="/api/folders", tags=["folders"])


@router.get("", response_model=List[Folder])
async def list_folders(notebook: NotebookService = Depends(get_notebook)):
    return notebook.state.folders


@router.post("", response_model=Folder, status_code=status.HTTP_201_CREATED)
async def create_folder(create: FolderCreate, notebook: NotebookService = Depends(get_notebook)):
    """Create a folder. Duplicate names are rejected with 409."""
    return await notebook.add_folder(create.name, create.description)


@router.patch("/{folder_id}", response_model=Folder)
async def update_folder(
    folder_id: str, update: FolderUpdate, notebook: NotebookService = Depends(get_notebook)
):
    return await notebook.update_folder(folder_id, name=update.name, description=update.description)


@router.delete("/{folder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_folder(folder_id: str, notebook: NotebookService = Depends(get_notebook)):
    """Delete a folder; its notes become uncategorized."""
    await notebook.delete_folder(folder_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
