#!/usr/bin/env python3
"""
Chat History Module

Chat list persistence with in-memory and SQLite backends.
"""

from __future__ import annotations

from .factory import create_store
from .memory_store import InMemoryChatStore
from .models import StoredChat, StoredChatSummary, generate_chat_title
from .repository import ChatStore
from .sqlite_store import SQLiteChatStore

__all__ = [
    "ChatStore",
    "InMemoryChatStore",
    "SQLiteChatStore",
    "StoredChat",
    "StoredChatSummary",
    "create_store",
    "generate_chat_title",
]
