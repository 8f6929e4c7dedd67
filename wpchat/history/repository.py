#!/usr/bin/env python3
"""
Chat Store Interface

Protocol every storage backend implements, plus the change notifier that
replaces a global "chat updated" broadcast with explicit subscriptions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Literal, Protocol

from wpchat.history.models import StoredChatSummary
from wpchat.stream.models import ConversationTurn

logger = logging.getLogger(__name__)

ChangeAction = Literal["saved", "deleted", "cleared"]
ChangeCallback = Callable[[ChangeAction, str | None], None]


# ---------- Store interface ----------


class ChatStore(Protocol):
    """Protocol defining the interface for chat storage backends."""

    async def save(self, thread_id: str, turns: list[ConversationTurn]) -> None: ...

    async def load(self, thread_id: str) -> list[ConversationTurn] | None: ...

    async def delete(self, thread_id: str) -> None: ...

    async def list_chats(self) -> list[StoredChatSummary]: ...

    async def clear(self) -> None: ...

    def subscribe(self, callback: ChangeCallback) -> None: ...

    def unsubscribe(self, callback: ChangeCallback) -> None: ...

    async def close(self) -> None: ...


class ChangeNotifier:
    """Observer list shared by the store implementations."""

    def __init__(self) -> None:
        self._change_callbacks: list[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> None:
        if callback not in self._change_callbacks:
            self._change_callbacks.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        if callback in self._change_callbacks:
            self._change_callbacks.remove(callback)

    def _notify_change(self, action: ChangeAction, thread_id: str | None = None) -> None:
        for callback in list(self._change_callbacks):
            try:
                callback(action, thread_id)
            except Exception as e:
                logger.error(f"Error in chat store change callback: {e}")
