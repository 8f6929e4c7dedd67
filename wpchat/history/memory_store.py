#!/usr/bin/env python3
"""
In-Memory Chat Store

CONFIG: storage.type = "memory"
PURPOSE: Development/testing - all data lost on restart
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from wpchat.history.models import StoredChat, StoredChatSummary, generate_chat_title
from wpchat.history.repository import ChangeNotifier
from wpchat.stream.models import ConversationTurn

logger = logging.getLogger(__name__)


class InMemoryChatStore(ChangeNotifier):
    """Chats kept in a dict ordered by last save. Data lost on restart."""

    def __init__(self, max_chats: int = 50):
        super().__init__()
        self.max_chats = max_chats
        self._chats: dict[str, StoredChat] = {}

    async def save(self, thread_id: str, turns: list[ConversationTurn]) -> None:
        if not turns:
            return

        now = datetime.now(UTC)
        existing = self._chats.pop(thread_id, None)
        self._chats[thread_id] = StoredChat(
            thread_id=thread_id,
            title=generate_chat_title(turns),
            # copies, so later mutation of live turns never leaks in
            turns=[turn.model_copy(deep=True) for turn in turns],
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )

        while len(self._chats) > self.max_chats:
            oldest = next(iter(self._chats))
            del self._chats[oldest]
            logger.debug(f"Dropped oldest chat {oldest} (limit {self.max_chats})")

        self._notify_change("saved", thread_id)

    async def load(self, thread_id: str) -> list[ConversationTurn] | None:
        chat = self._chats.get(thread_id)
        if chat is None:
            return None
        return [turn.model_copy(deep=True) for turn in chat.turns]

    async def delete(self, thread_id: str) -> None:
        if self._chats.pop(thread_id, None) is not None:
            self._notify_change("deleted", thread_id)

    async def list_chats(self) -> list[StoredChatSummary]:
        return [
            StoredChatSummary(
                thread_id=chat.thread_id,
                title=chat.title,
                created_at=chat.created_at,
                updated_at=chat.updated_at,
                turn_count=len(chat.turns),
            )
            for chat in reversed(self._chats.values())
        ]

    async def clear(self) -> None:
        self._chats.clear()
        self._notify_change("cleared")

    async def close(self) -> None:
        return None
