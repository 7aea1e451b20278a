"""Export and import of the whole workspace."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse, Response

from ...services.export_import import export_json, export_markdown, parse_import
from ...services.notebook import NotebookService
from ..dependencies import get_notebook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["data"])


@router.get("/export")
async def export_data(
    format: str = Query("json", pattern="^(json|markdown)$"),
    notebook: NotebookService = Depends(get_notebook),
):
    """Download everything as one JSON document, or the notes as markdown."""
    if format == "markdown":
        return PlainTextResponse(
            export_markdown(notebook),
            media_type="text/markdown",
            headers={"Content-Disposition": 'attachment; filename="cogniflow-notes.md"'},
        )
    return Response(
        export_json(notebook),
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="cogniflow-backup.json"'},
    )


@router.post("/import")
async def import_data(
    request: Request,
    confirm: bool = Query(False, description="Must be true: import replaces all local data"),
    notebook: NotebookService = Depends(get_notebook),
):
    """Replace all local data with an export document."""
    body = (await request.body()).decode("utf-8")
    bundle = parse_import(body)
    await notebook.replace_all(bundle, confirmed=confirm)
    return {
        "status": "imported",
        "notes": len(bundle.notes),
        "folders": len(bundle.folders),
    }
