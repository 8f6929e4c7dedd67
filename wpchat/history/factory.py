#!/usr/bin/env python3
"""
Store Factory

Factory function to create the chat store based on configuration.
"""

from __future__ import annotations

import logging
from typing import Any

from wpchat.history.memory_store import InMemoryChatStore
from wpchat.history.repository import ChatStore
from wpchat.history.sqlite_store import SQLiteChatStore

logger = logging.getLogger(__name__)


def create_store(storage_config: dict[str, Any]) -> ChatStore:
    """Create the chat store for ``storage.type`` ("memory" or "sqlite")."""
    store_type = storage_config.get("type", "sqlite")
    max_chats = storage_config.get("max_chats", 50)

    if store_type == "memory":
        logger.info("Using in-memory chat store")
        return InMemoryChatStore(max_chats=max_chats)
    if store_type == "sqlite":
        db_path = storage_config.get("db_path", "wpchat_history.db")
        logger.info(f"Using SQLite chat store at {db_path}")
        return SQLiteChatStore(db_path=db_path, max_chats=max_chats)

    raise ValueError(f"Unknown storage type: {store_type!r} (expected 'memory' or 'sqlite')")
