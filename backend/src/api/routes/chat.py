"""Chat API endpoints - tool-augmented conversation turns."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncGenerator, List

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sse_starlette.sse import EventSourceResponse

from ...models.chat import ChatMessage, ChatRequest, ChatStreamChunk, TurnOptions, TurnResult
from ...services.action_dispatcher import ActionDispatcher
from ...services.chat_history import ChatHistoryService
from ...services.conversation import ConversationTurnController
from ...services.notebook import NotebookService
from ...services.providers import ProviderError, default_model
from ..dependencies import (
    AppServices,
    ProviderBuilder,
    get_chat_history,
    get_notebook,
    get_provider_builder,
    get_services,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


def _build_controller(
    request: ChatRequest,
    notebook: NotebookService,
    services: AppServices,
    build: ProviderBuilder,
) -> tuple[ConversationTurnController, TurnOptions]:
    provider_name = request.provider or services.config.chat_provider
    provider = build(provider_name)
    settings = notebook.state.settings
    options = TurnOptions(
        model=request.model or default_model(services.config, provider_name, settings),
        thinking_budget=(
            request.thinking_budget
            if request.thinking_budget is not None
            else settings.thinking_budget
        ),
        web_search=request.web_search,
    )
    dispatcher = ActionDispatcher(notebook, model_used=options.model)
    controller = ConversationTurnController(
        provider,
        dispatcher,
        services.prompt_loader,
        tool_format="gemini" if provider_name == "gemini" else "openai",
    )
    return controller, options


@router.post("/stream")
async def chat_stream(
    request: ChatRequest,
    http_request: Request,
    notebook: NotebookService = Depends(get_notebook),
    services: AppServices = Depends(get_services),
    history_service: ChatHistoryService = Depends(get_chat_history),
    build: ProviderBuilder = Depends(get_provider_builder),
):
    """
    Run a chat turn with Server-Sent Events streaming.

    **Response:** SSE stream of JSON objects

    **Example chunk:**
    ```json
    data: {"type": "content", "content": "I created the folder..."}
    ```
    """
    abort = asyncio.Event()

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            controller, options = _build_controller(request, notebook, services, build)
        except ProviderError as e:
            logger.error(f"Provider unavailable: {e.message}")
            yield json.dumps(ChatStreamChunk(type="error", error=e.message).model_dump(exclude_none=True))
            return

        history = await history_service.history(request.thread_id)
        await history_service.add_message("user", request.message, request.thread_id)
        try:
            async for chunk in controller.run_turn(
                history, request.message, options, abort, request.current_note_id
            ):
                if await http_request.is_disconnected():
                    abort.set()
                if chunk.type == "done":
                    await history_service.add_message(
                        "model", chunk.content or "", request.thread_id, chunk.citations
                    )
                yield json.dumps(chunk.model_dump(mode="json", exclude_none=True))
        finally:
            abort.set()

    return EventSourceResponse(event_generator())


@router.post("", response_model=TurnResult)
async def chat(
    request: ChatRequest,
    notebook: NotebookService = Depends(get_notebook),
    services: AppServices = Depends(get_services),
    history_service: ChatHistoryService = Depends(get_chat_history),
    build: ProviderBuilder = Depends(get_provider_builder),
):
    """Run a chat turn and return the collected result (non-streaming)."""
    controller, options = _build_controller(request, notebook, services, build)
    options = options.model_copy(update={"stream": False})
    history = await history_service.history(request.thread_id)
    await history_service.add_message("user", request.message, request.thread_id)
    result = await controller.complete_turn(
        history, request.message, options, current_note_id=request.current_note_id
    )
    if result.error is None:
        await history_service.add_message("model", result.text, request.thread_id, result.citations)
    return result


@router.get("/history", response_model=List[ChatMessage])
async def get_history(
    thread_id: str = "default",
    history_service: ChatHistoryService = Depends(get_chat_history),
):
    return await history_service.list_messages(thread_id)


@router.delete("/history", status_code=status.HTTP_204_NO_CONTENT)
async def clear_history(
    thread_id: str = "default",
    history_service: ChatHistoryService = Depends(get_chat_history),
):
    await history_service.clear(thread_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/history/retry", response_model=ChatMessage)
async def retry_last(
    thread_id: str = "default",
    history_service: ChatHistoryService = Depends(get_chat_history),
):
    """Drop the last user message and its replies; return it so the client can resend it."""
    message = await history_service.retry_last(thread_id)
    if message is None:
        raise HTTPException(status_code=404, detail="No user message to retry")
    return message
