"""Unit tests for ConversationTurnController (one turn, at most one tool round)."""

import asyncio

import pytest

from backend.src.models.chat import (
    ChatTurn,
    Citation,
    ToolCallRequest,
    TurnOptions,
    TurnRole,
    TurnState,
)
from backend.src.services.action_dispatcher import ActionDispatcher
from backend.src.services.conversation import CANCELLED_MESSAGE, ConversationTurnController
from backend.src.services.notebook import NotebookService
from backend.src.services.providers.base import ProviderError, ProviderResponse
from backend.tests.fakes import FakeProvider, stream_response


def make_controller(provider: FakeProvider, notebook: NotebookService) -> ConversationTurnController:
    return ConversationTurnController(provider, ActionDispatcher(notebook))


async def collect(controller, message="hi", history=(), **option_overrides):
    options = TurnOptions(model="test-model", **option_overrides)
    return [chunk async for chunk in controller.run_turn(list(history), message, options)]


class TestPlainTurns:
    """Turns without tool calls."""

    @pytest.mark.asyncio
    async def test_streams_content_then_done(self, notebook: NotebookService) -> None:
        provider = FakeProvider([stream_response("Hel", "lo")])
        controller = make_controller(provider, notebook)

        chunks = await collect(controller)

        assert [c.type for c in chunks] == ["content", "content", "done"]
        assert chunks[-1].content == "Hello"
        assert controller.transitions == [TurnState.AWAITING_FIRST_RESPONSE, TurnState.DONE]

    @pytest.mark.asyncio
    async def test_non_streaming_response(self, notebook: NotebookService) -> None:
        provider = FakeProvider([ProviderResponse(text="All at once")])
        controller = make_controller(provider, notebook)

        chunks = await collect(controller, stream=False)

        assert [(c.type, c.content) for c in chunks] == [
            ("content", "All at once"),
            ("done", "All at once"),
        ]

    @pytest.mark.asyncio
    async def test_system_prompt_and_tools_are_filled_in(self, notebook: NotebookService) -> None:
        note = await notebook.create_note("Groceries", "milk")
        provider = FakeProvider([ProviderResponse(text="ok")])
        controller = make_controller(provider, notebook)

        await collect(controller)

        options = provider.calls[0]["options"]
        assert note.id in options.system_instruction
        assert any(t["function"]["name"] == "create_folder" for t in options.tools)

    @pytest.mark.asyncio
    async def test_history_is_sent_before_new_message(self, notebook: NotebookService) -> None:
        provider = FakeProvider([ProviderResponse(text="ok")])
        controller = make_controller(provider, notebook)
        history = [ChatTurn.user("earlier"), ChatTurn.model("reply")]

        await collect(controller, "now", history=history)

        call = provider.calls[0]
        assert [t.text for t in call["history"]] == ["earlier", "reply"]
        assert call["new_message"] == ChatTurn.user("now")


class TestToolRound:
    """One round of tool calls followed by a final response."""

    @pytest.mark.asyncio
    async def test_ideas_folder_scenario(self, notebook: NotebookService) -> None:
        """'Create a folder called Ideas' runs the tool and reports back."""
        provider = FakeProvider(
            [
                stream_response(
                    tool_calls=[ToolCallRequest(id="call-1", name="create_folder", arguments={"name": "Ideas"})]
                ),
                stream_response("I created the ", "Ideas folder."),
            ]
        )
        controller = make_controller(provider, notebook)

        chunks = await collect(controller, "Create a folder called Ideas")

        assert [c.type for c in chunks] == ["tool_call", "tool_result", "content", "content", "done"]
        [folder] = notebook.state.folders
        assert folder.name == "Ideas"
        assert chunks[1].tool_result.content == f"Successfully created folder with ID {folder.id}."
        assert chunks[-1].content == "I created the Ideas folder."
        assert controller.transitions == [
            TurnState.AWAITING_FIRST_RESPONSE,
            TurnState.TOOL_CALLS_REQUESTED,
            TurnState.EXECUTING_TOOLS,
            TurnState.AWAITING_FOLLOWUP_RESPONSE,
            TurnState.DONE,
        ]

        followup = provider.calls[1]
        assert [t.role for t in followup["history"]] == [TurnRole.USER, TurnRole.MODEL]
        assert followup["history"][1].tool_calls[0].id == "call-1"
        assert followup["new_message"].role == TurnRole.TOOL
        assert followup["new_message"].tool_results[0].call_id == "call-1"

    @pytest.mark.asyncio
    async def test_calls_run_in_order_and_see_earlier_results(self, notebook: NotebookService) -> None:
        note = await notebook.create_note("Loose")
        provider = FakeProvider(
            [
                ProviderResponse(
                    tool_calls=[
                        ToolCallRequest(id="c1", name="create_folder", arguments={"name": "Ideas"}),
                        ToolCallRequest(id="c2", name="list_folders"),
                        ToolCallRequest(id="c3", name="move_note_to_folder", arguments={"note_id": note.id, "folder_id": "folder-nope"}),
                    ]
                ),
                ProviderResponse(text="Done."),
            ]
        )
        controller = make_controller(provider, notebook)

        chunks = await collect(controller)

        results = [c.tool_result for c in chunks if c.type == "tool_result"]
        assert [r.call_id for r in results] == ["c1", "c2", "c3"]
        assert '"name":"Ideas"' in results[1].content
        assert results[2].content == "Error: Folder with ID 'folder-nope' does not exist."
        assert chunks[-1].type == "done"

    @pytest.mark.asyncio
    async def test_second_pass_tool_calls_are_ignored(self, notebook: NotebookService) -> None:
        provider = FakeProvider(
            [
                ProviderResponse(tool_calls=[ToolCallRequest(id="c1", name="list_folders")]),
                ProviderResponse(
                    text="Final",
                    tool_calls=[ToolCallRequest(id="c2", name="create_folder", arguments={"name": "X"})],
                ),
            ]
        )
        controller = make_controller(provider, notebook)

        chunks = await collect(controller)

        assert len(provider.calls) == 2
        assert notebook.state.folders == []
        assert chunks[-1].content == "Final"

    @pytest.mark.asyncio
    async def test_unknown_tool_does_not_fail_turn(self, notebook: NotebookService) -> None:
        provider = FakeProvider(
            [
                ProviderResponse(tool_calls=[ToolCallRequest(id="c1", name="format_disk")]),
                ProviderResponse(text="Sorry."),
            ]
        )

        chunks = await collect(make_controller(provider, notebook))

        assert chunks[1].tool_result.content == "Error: Unknown tool 'format_disk'."
        assert chunks[-1].type == "done"


class TestWebSearch:
    @pytest.mark.asyncio
    async def test_web_mode_sends_no_tools_and_returns_citations(self, notebook: NotebookService) -> None:
        citation = Citation(uri="https://example.com/a", title="Example")
        provider = FakeProvider([stream_response("Per the web...", citations=[citation])])
        controller = make_controller(provider, notebook)

        chunks = await collect(controller, web_search=True)

        assert provider.calls[0]["options"].tools == []
        assert chunks[-1].type == "done"
        assert chunks[-1].citations == [citation]

    @pytest.mark.asyncio
    async def test_web_mode_ignores_tool_calls(self, notebook: NotebookService) -> None:
        provider = FakeProvider(
            [
                ProviderResponse(
                    text="answer",
                    tool_calls=[ToolCallRequest(id="c1", name="create_folder", arguments={"name": "X"})],
                )
            ]
        )

        chunks = await collect(make_controller(provider, notebook), web_search=True)

        assert [c.type for c in chunks] == ["content", "done"]
        assert notebook.state.folders == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_provider_error_before_streaming(self, notebook: NotebookService) -> None:
        provider = FakeProvider([ProviderError("API error: 503", retryable=True)])
        controller = make_controller(provider, notebook)

        chunks = await collect(controller)

        assert len(chunks) == 1
        assert chunks[0].type == "error"
        assert chunks[0].error == "API error: 503"
        assert chunks[0].retryable is True
        assert controller.state == TurnState.DONE

    @pytest.mark.asyncio
    async def test_mid_stream_error_ends_with_single_error_chunk(self, notebook: NotebookService) -> None:
        provider = FakeProvider([stream_response("partial ", ProviderError("Network error: reset"))])

        chunks = await collect(make_controller(provider, notebook))

        assert [c.type for c in chunks] == ["content", "error"]
        assert chunks[-1].error == "Network error: reset"

    @pytest.mark.asyncio
    async def test_abort_during_stream(self, notebook: NotebookService) -> None:
        abort = asyncio.Event()
        provider = FakeProvider([stream_response("one ", "two ", "three")])
        controller = make_controller(provider, notebook)
        options = TurnOptions(model="test-model")

        chunks = []
        async for chunk in controller.run_turn([], "hi", options, abort):
            chunks.append(chunk)
            abort.set()

        assert [c.type for c in chunks] == ["content", "error"]
        assert chunks[-1].error == CANCELLED_MESSAGE

    @pytest.mark.asyncio
    async def test_abort_skips_remaining_tool_calls(self, notebook: NotebookService) -> None:
        abort = asyncio.Event()
        provider = FakeProvider(
            [
                ProviderResponse(
                    tool_calls=[
                        ToolCallRequest(id="c1", name="create_folder", arguments={"name": "A"}),
                        ToolCallRequest(id="c2", name="create_folder", arguments={"name": "B"}),
                    ]
                )
            ]
        )
        controller = make_controller(provider, notebook)
        options = TurnOptions(model="test-model")

        chunks = []
        async for chunk in controller.run_turn([], "hi", options, abort):
            chunks.append(chunk)
            if chunk.type == "tool_result":
                abort.set()

        assert [f.name for f in notebook.state.folders] == ["A"]
        assert chunks[-1].error == CANCELLED_MESSAGE
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_complete_turn_collects_result(self, notebook: NotebookService) -> None:
        provider = FakeProvider(
            [
                ProviderResponse(tool_calls=[ToolCallRequest(id="c1", name="create_folder", arguments={"name": "A"})]),
                ProviderResponse(text="Created."),
            ]
        )

        result = await make_controller(provider, notebook).complete_turn([], "hi", TurnOptions(model="m"))

        assert result.text == "Created."
        assert result.error is None
        assert len(result.tool_results) == 1
