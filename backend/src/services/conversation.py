"""Conversation Turn Controller - one user turn, with at most one tool round.

A turn sends the history and the new user message to a provider. If the
provider asks for tool calls, they run one after another through the
:class:`ActionDispatcher`, and their results go back to the provider for a
second and final pass. Text is streamed to the caller as it arrives; any
provider failure ends the turn with a single ``error`` chunk.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import AsyncGenerator, List, Optional, Sequence

from ..models.chat import (
    ChatStreamChunk,
    ChatTurn,
    Citation,
    ToolResult,
    TurnOptions,
    TurnResult,
    TurnRole,
    TurnState,
)
from .action_dispatcher import ActionDispatcher, get_tool_schemas
from .prompt_loader import PromptLoader
from .providers.base import ProviderAdapter, ProviderError, ProviderResponse

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"


class TurnCancelled(Exception):
    """Internal signal: the abort event was set during the turn."""


class ConversationTurnController:
    """Drive a single turn against a :class:`ProviderAdapter`.

    ``state`` follows AWAITING_FIRST_RESPONSE -> (TOOL_CALLS_REQUESTED ->
    EXECUTING_TOOLS -> AWAITING_FOLLOWUP_RESPONSE) -> DONE. Every state entered
    during the last turn is kept in ``transitions``.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        dispatcher: ActionDispatcher,
        prompt_loader: Optional[PromptLoader] = None,
        tool_format: str = "openai",
    ):
        self.provider = provider
        self.dispatcher = dispatcher
        self.prompt_loader = prompt_loader or PromptLoader()
        self.tool_format = tool_format
        self.state: Optional[TurnState] = None
        self.transitions: List[TurnState] = []

    def _enter(self, state: TurnState) -> None:
        self.state = state
        self.transitions.append(state)
        logger.debug(f"Turn state -> {state.value}")

    def build_system_prompt(self, current_note_id: Optional[str] = None, web_search: bool = False) -> str:
        state = self.dispatcher.notebook.state
        current = state.find_note(current_note_id) if current_note_id else None
        return self.prompt_loader.load(
            "chat/system.md",
            {
                "notes": [{"id": n.id, "title": n.title} for n in state.notes],
                "folders": [{"id": f.id, "name": f.name} for f in state.folders],
                "current_note": current,
                "web_search": web_search,
            },
        )

    def prepare_options(self, options: TurnOptions, current_note_id: Optional[str] = None) -> TurnOptions:
        """Fill in the system prompt and tool declarations the caller left out."""
        updates = {}
        if options.system_instruction is None:
            updates["system_instruction"] = self.build_system_prompt(current_note_id, options.web_search)
        if options.web_search:
            updates["tools"] = []
        elif not options.tools:
            updates["tools"] = get_tool_schemas(self.tool_format)
        return options.model_copy(update=updates)

    async def _forward(
        self, response: ProviderResponse, abort: Optional[asyncio.Event]
    ) -> AsyncGenerator[str, None]:
        async with aclosing(response.iter_text()) as chunks:
            async for text in chunks:
                if abort is not None and abort.is_set():
                    raise TurnCancelled()
                yield text
        if abort is not None and abort.is_set():
            raise TurnCancelled()

    async def run_turn(
        self,
        history: Sequence[ChatTurn],
        message: str,
        options: TurnOptions,
        abort: Optional[asyncio.Event] = None,
        current_note_id: Optional[str] = None,
    ) -> AsyncGenerator[ChatStreamChunk, None]:
        """Run one turn, yielding content/tool/done/error chunks."""
        self.transitions = []
        self._enter(TurnState.AWAITING_FIRST_RESPONSE)
        options = self.prepare_options(options, current_note_id)
        user_turn = ChatTurn.user(message)
        final_text = ""

        try:
            response = await self.provider.send_turn(history, user_turn, options, abort)
            async for text in self._forward(response, abort):
                final_text += text
                yield ChatStreamChunk(type="content", content=text)

            citations: List[Citation] = list(response.citations)
            tool_calls = response.tool_calls
            if tool_calls and options.web_search:
                logger.warning(f"Ignoring {len(tool_calls)} tool call(s) returned in web search mode")
                tool_calls = []

            if tool_calls:
                self._enter(TurnState.TOOL_CALLS_REQUESTED)
                for call in tool_calls:
                    yield ChatStreamChunk(type="tool_call", tool_call=call)

                self._enter(TurnState.EXECUTING_TOOLS)
                results: List[ToolResult] = []
                for call in tool_calls:
                    if abort is not None and abort.is_set():
                        logger.info(
                            f"Turn aborted; skipping {len(tool_calls) - len(results)} tool call(s)"
                        )
                        raise TurnCancelled()
                    content = await self.dispatcher.execute(call.to_action())
                    result = ToolResult(call_id=call.id, name=call.name, content=content)
                    results.append(result)
                    logger.info(
                        f"Tool {call.name} finished",
                        extra={"tool": call.name, "call_id": call.id},
                    )
                    yield ChatStreamChunk(type="tool_result", tool_result=result)

                self._enter(TurnState.AWAITING_FOLLOWUP_RESPONSE)
                followup_history = [
                    *history,
                    user_turn,
                    ChatTurn(role=TurnRole.MODEL, text=response.text, tool_calls=tool_calls),
                ]
                followup = await self.provider.send_turn(
                    followup_history,
                    ChatTurn(role=TurnRole.TOOL, tool_results=results),
                    options,
                    abort,
                )
                async for text in self._forward(followup, abort):
                    final_text += text
                    yield ChatStreamChunk(type="content", content=text)
                citations.extend(c for c in followup.citations if c not in citations)
                if followup.tool_calls:
                    logger.warning(
                        f"Ignoring {len(followup.tool_calls)} tool call(s) requested on the second pass"
                    )

            self._enter(TurnState.DONE)
            logger.info(f"Turn finished ({len(final_text)} chars, {len(citations)} citations)")
            yield ChatStreamChunk(type="done", content=final_text, citations=citations)

        except TurnCancelled:
            self._enter(TurnState.DONE)
            logger.info("Turn cancelled by user")
            yield ChatStreamChunk(type="error", error=CANCELLED_MESSAGE)
        except ProviderError as e:
            self._enter(TurnState.DONE)
            logger.error(f"Provider {self.provider.name} failed: {e.message}")
            yield ChatStreamChunk(type="error", error=e.message, retryable=e.retryable)
        except Exception as e:
            self._enter(TurnState.DONE)
            logger.exception(f"Turn failed: {e}")
            yield ChatStreamChunk(type="error", error=f"Chat error: {e}")

    async def complete_turn(
        self,
        history: Sequence[ChatTurn],
        message: str,
        options: TurnOptions,
        abort: Optional[asyncio.Event] = None,
        current_note_id: Optional[str] = None,
    ) -> TurnResult:
        """Run a turn to completion and collect its outcome."""
        result = TurnResult()
        async for chunk in self.run_turn(history, message, options, abort, current_note_id):
            if chunk.type == "tool_result" and chunk.tool_result is not None:
                result.tool_results.append(chunk.tool_result)
            elif chunk.type == "done":
                result.text = chunk.content or ""
                result.citations = chunk.citations
            elif chunk.type == "error":
                result.error = chunk.error
        return result


__all__ = ["CANCELLED_MESSAGE", "ConversationTurnController"]
