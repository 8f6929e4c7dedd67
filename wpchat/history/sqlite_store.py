#!/usr/bin/env python3
"""
SQLite Chat Store

CONFIG: storage.type = "sqlite", storage.db_path
PURPOSE: Persistent chat list across restarts
FEATURES: async via aiosqlite, turns stored as JSON, oldest chats pruned
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import aiosqlite

from wpchat.history.models import StoredChatSummary, generate_chat_title, turns_adapter
from wpchat.history.repository import ChangeNotifier
from wpchat.stream.models import ConversationTurn

logger = logging.getLogger(__name__)


class SQLiteChatStore(ChangeNotifier):
    """Chat list persisted in one SQLite table."""

    def __init__(self, db_path: str = "wpchat_history.db", max_chats: int = 50):
        super().__init__()
        self.db_path = db_path
        self.max_chats = max_chats
        self._lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Initialize database schema if not already done."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute("PRAGMA synchronous=NORMAL")

                # seq orders chats by last save, independent of clock resolution
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS chats (
                        thread_id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        turns TEXT NOT NULL,
                        turn_count INTEGER NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        seq INTEGER NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_chats_seq
                    ON chats(seq)
                """)
                await db.commit()

            self._initialized = True
            logger.info(f"Chat store ready at {self.db_path}")

    async def save(self, thread_id: str, turns: list[ConversationTurn]) -> None:
        if not turns:
            return
        await self._ensure_initialized()

        now = datetime.now(UTC).isoformat()
        payload = turns_adapter.dump_json(turns).decode("utf-8")
        title = generate_chat_title(turns)

        async with self._lock, aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO chats (thread_id, title, turns, turn_count, created_at, updated_at, seq)
                VALUES (?, ?, ?, ?, ?, ?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM chats))
                ON CONFLICT(thread_id) DO UPDATE SET
                    title = excluded.title,
                    turns = excluded.turns,
                    turn_count = excluded.turn_count,
                    updated_at = excluded.updated_at,
                    seq = excluded.seq
                """,
                (thread_id, title, payload, len(turns), now, now),
            )
            cursor = await db.execute(
                """
                DELETE FROM chats WHERE thread_id NOT IN (
                    SELECT thread_id FROM chats ORDER BY seq DESC LIMIT ?
                )
                """,
                (self.max_chats,),
            )
            if cursor.rowcount and cursor.rowcount > 0:
                logger.debug(f"Dropped {cursor.rowcount} oldest chat(s) (limit {self.max_chats})")
            await db.commit()

        self._notify_change("saved", thread_id)

    async def load(self, thread_id: str) -> list[ConversationTurn] | None:
        await self._ensure_initialized()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT turns FROM chats WHERE thread_id = ?", (thread_id,))
            row = await cursor.fetchone()

        if row is None:
            return None
        return turns_adapter.validate_json(row[0])

    async def delete(self, thread_id: str) -> None:
        await self._ensure_initialized()
        async with self._lock, aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM chats WHERE thread_id = ?", (thread_id,))
            await db.commit()
            deleted = cursor.rowcount

        if deleted:
            self._notify_change("deleted", thread_id)

    async def list_chats(self) -> list[StoredChatSummary]:
        await self._ensure_initialized()
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT thread_id, title, turn_count, created_at, updated_at FROM chats ORDER BY seq DESC"
            )
            rows = await cursor.fetchall()

        return [
            StoredChatSummary(
                thread_id=row["thread_id"],
                title=row["title"],
                turn_count=row["turn_count"],
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
            for row in rows
        ]

    async def clear(self) -> None:
        await self._ensure_initialized()
        async with self._lock, aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM chats")
            await db.commit()
        self._notify_change("cleared")

    async def close(self) -> None:
        # connections are per operation; nothing held open
        return None
