"""Persisted chat history per thread."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from ..models.chat import ChatMessage, ChatTurn, Citation, TurnRole
from .local_store import LocalStore

logger = logging.getLogger(__name__)


class ChatHistoryService:
    """Store user and final model messages so a conversation survives restarts."""

    def __init__(self, store: LocalStore):
        self.store = store

    async def add_message(
        self,
        role: str,
        content: str,
        thread_id: str = "default",
        citations: Sequence[Citation] = (),
    ) -> ChatMessage:
        message = ChatMessage(
            thread_id=thread_id, role=role, content=content, citations=list(citations)
        )
        await self.store.chat_messages.add(message)
        return message

    async def list_messages(self, thread_id: str = "default") -> List[ChatMessage]:
        return await self.store.chat_messages.for_thread(thread_id)

    async def history(self, thread_id: str = "default") -> List[ChatTurn]:
        """Thread messages as provider-neutral turns."""
        return [
            ChatTurn(role=TurnRole(m.role), text=m.content)
            for m in await self.list_messages(thread_id)
        ]

    async def clear(self, thread_id: str = "default") -> None:
        await self.store.chat_messages.delete_thread(thread_id)
        logger.info(f"Cleared chat thread {thread_id}")

    async def retry_last(self, thread_id: str = "default") -> Optional[ChatMessage]:
        """Drop the last user message and everything after it; return that message.

        The caller re-sends its content as a new turn.
        """
        messages = await self.list_messages(thread_id)
        last_user = next((m for m in reversed(messages) if m.role == "user"), None)
        if last_user is None:
            return None
        await self.store.chat_messages.delete_after(thread_id, last_user.id - 1)
        return last_user


__all__ = ["ChatHistoryService"]
