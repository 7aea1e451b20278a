"""Knowledge graph routes: connections and AI discovery."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from ...models.note import Connection
from ...services.insights import InsightsService
from ...services.notebook import NotebookService
from ...services.providers import default_model
from ..dependencies import AppServices, ProviderBuilder, get_notebook, get_provider_builder, get_services

router = APIRouter(prefix="/api/graph", tags=["graph"])


@router.get("/connections", response_model=List[Connection])
async def list_connections(notebook: NotebookService = Depends(get_notebook)):
    """Connections whose endpoints both still exist."""
    note_ids = {n.id for n in notebook.state.notes}
    return [
        c for c in notebook.state.connections if c.source in note_ids and c.target in note_ids
    ]


@router.post("/discover", response_model=List[Connection])
async def discover_connections(
    notebook: NotebookService = Depends(get_notebook),
    services: AppServices = Depends(get_services),
    build: ProviderBuilder = Depends(get_provider_builder),
):
    """Ask the model for related notes; returns only the newly added connections."""
    task = notebook.state.settings.tasks.summary
    provider = build(task.provider.value)
    model = task.model or default_model(services.config, task.provider.value, notebook.state.settings)
    insights = InsightsService(notebook, provider, model, services.prompt_loader)
    return await insights.discover_connections()
