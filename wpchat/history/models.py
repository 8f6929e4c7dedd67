#!/usr/bin/env python3
"""
Chat History Models

Stored chat records and title generation.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field, TypeAdapter

from wpchat.stream.models import ConversationTurn

TITLE_MAX_LENGTH = 50
DEFAULT_TITLE = "New Chat"

# order matters: the first two hits make the title
WORDPRESS_KEYWORDS = (
    "post",
    "page",
    "theme",
    "plugin",
    "woocommerce",
    "product",
    "order",
    "menu",
    "widget",
    "user",
    "backup",
    "optimize",
    "seo",
    "security",
    "media",
    "image",
    "category",
    "tag",
    "comment",
    "database",
)

turns_adapter: TypeAdapter[list[ConversationTurn]] = TypeAdapter(list[ConversationTurn])


class StoredChat(BaseModel):
    thread_id: str
    title: str = DEFAULT_TITLE
    turns: list[ConversationTurn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class StoredChatSummary(BaseModel):
    """Sidebar entry: everything but the turns."""

    thread_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    turn_count: int = 0


def generate_chat_title(turns: list[ConversationTurn]) -> str:
    """
    Title from the first user turn.

    WordPress operation words win ("Post + Plugin Task"); otherwise the user
    text itself is used. Titles longer than 50 characters are shortened.
    """
    first_user = next((turn for turn in turns if turn.role == "user"), None)
    if first_user is None or not first_user.content.strip():
        return DEFAULT_TITLE

    title = first_user.content.strip()
    lowered = title.lower()
    found = [keyword for keyword in WORDPRESS_KEYWORDS if keyword in lowered]
    if found:
        title = " + ".join(keyword.capitalize() for keyword in found[:2]) + " Task"

    if len(title) > TITLE_MAX_LENGTH:
        return title[: TITLE_MAX_LENGTH - 3] + "..."
    return title
