"""FastAPI application main entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from .dependencies import build_services
from .middleware import register_error_handlers
from .routes import chat, data, folders, graph, notes, studio
from ..services.config import AppConfig, get_config

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store, load the workspace and start version recording."""
    config = app.state.config or get_config()
    services = build_services(config)
    app.state.services = services

    logger.info("Running startup: initializing store and loading workspace...")
    try:
        await services.notebook.initialize()
        logger.info("Startup complete: workspace ready")
    except Exception as exc:
        # Requests retry the load through get_notebook.
        logger.exception("Startup failed: %s", exc)

    services.recorder.start()
    try:
        yield
    finally:
        await services.recorder.close()
        logger.info("Shutdown complete")


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    app = FastAPI(
        title="Cogniflow API",
        description="Local knowledge notes with a tool-using AI assistant",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(notes.router)
    app.include_router(folders.router)
    app.include_router(chat.router)
    app.include_router(studio.router)
    app.include_router(data.router)
    app.include_router(graph.router)

    @app.get("/health")
    async def health():
        services = getattr(app.state, "services", None)
        initialized = bool(services and services.notebook.state.is_initialized)
        return {"status": "healthy", "initialized": initialized}

    return app


app = create_app()

__all__ = ["app", "create_app"]
