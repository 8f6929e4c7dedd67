"""
Stream Data Models

Typed structures for the streaming chat client: wire commands produced by the
event classifier, transcript turns and their sub-events, and workflow artifacts.
All strongly typed with Pydantic for validation and serialization.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ==============================================================================
# WIRE COMMANDS (one per decoded SSE record)
# ==============================================================================


class TokenCommand(BaseModel):
    """Text fragment to append to the current turn."""

    type: Literal["token"] = "token"
    content: str


class ToolCallCommand(BaseModel):
    """Notice that the agent started a tool invocation."""

    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Numeric ids are accepted and kept as strings."""
        if isinstance(v, int | float):
            return str(v)
        return v

    @field_validator("args", mode="before")
    @classmethod
    def normalize_args(cls, v: Any) -> Any:
        """Accept JSON-encoded argument strings and wrap non-object values."""
        if v is None:
            return {}
        if isinstance(v, str):
            try:
                v = json.loads(v) if v.strip() else {}
            except json.JSONDecodeError:
                return {"raw": v}
        if not isinstance(v, dict):
            return {"value": v}
        return v


class ToolResultCommand(BaseModel):
    """Result payload for a previously announced tool invocation."""

    type: Literal["tool_result"] = "tool_result"
    name: str
    content: str
    id: str | None = None

    @field_validator("content", mode="before")
    @classmethod
    def stringify_content(cls, v: Any) -> Any:
        """Structured tool output is kept as its JSON text."""
        if v is None:
            return ""
        if not isinstance(v, str):
            return json.dumps(v, ensure_ascii=False)
        return v

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int | float):
            return str(v)
        return v


class CompleteCommand(BaseModel):
    """Server signalled the end of the stream."""

    type: Literal["complete"] = "complete"


class ErrorCommand(BaseModel):
    """Server signalled a failure; ends the stream."""

    type: Literal["error"] = "error"
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def default_content(cls, v: Any) -> Any:
        return "" if v is None else v


StreamCommand = TokenCommand | ToolCallCommand | ToolResultCommand | CompleteCommand | ErrorCommand


# ==============================================================================
# TRANSCRIPT
# ==============================================================================


class TextEvent(BaseModel):
    """Run of coalesced text tokens."""

    kind: Literal["text"] = "text"
    text: str = ""
    is_error: bool = False


class ToolInvocationEvent(BaseModel):
    """Single tool invocation, pending until its result arrives."""

    kind: Literal["tool"] = "tool"
    call_id: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    status: Literal["pending", "done"] = "pending"
    result: str | None = None


TurnEvent = Annotated[TextEvent | ToolInvocationEvent, Field(discriminator="kind")]


class AttachedFile(BaseModel):
    """Descriptor of a file attached to a user turn."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    type: Literal["text", "image", "other"] = "other"
    mime_type: str | None = None
    size: int = 0
    content: str | None = None


class ConversationTurn(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant"]
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    # user turns carry their visible text directly
    content: str = ""
    events: list[TurnEvent] = Field(default_factory=list)
    attachments: tuple[AttachedFile, ...] = ()
    materialized_artifact_id: str | None = None

    @property
    def text(self) -> str:
        """Visible text of the turn (user content or joined assistant text runs)."""
        if self.role == "user":
            return self.content
        return "\n\n".join(ev.text for ev in self.events if isinstance(ev, TextEvent) and ev.text)

    @property
    def tool_invocations(self) -> list[ToolInvocationEvent]:
        return [ev for ev in self.events if isinstance(ev, ToolInvocationEvent)]


# ==============================================================================
# ARTIFACTS
# ==============================================================================


ArtifactType = Literal["workflow", "document", "code", "svg"]


class ArtifactVersion(BaseModel):
    id: str = Field(default_factory=lambda: f"version_{uuid.uuid4().hex[:12]}")
    content: Any
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    title: str
    content_hash: str | None = None


class Artifact(BaseModel):
    """Structured side-document extracted from assistant text, with version history."""

    id: str = Field(default_factory=lambda: f"artifact_{uuid.uuid4().hex[:12]}")
    type: ArtifactType = "workflow"
    title: str
    description: str = ""
    status: Literal["generating", "ready"] = "ready"
    turn_id: str | None = None
    versions: list[ArtifactVersion] = Field(default_factory=list)
    current_version_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def current_version(self) -> ArtifactVersion | None:
        if not self.versions:
            return None
        for version in self.versions:
            if version.id == self.current_version_id:
                return version
        return self.versions[-1]

    @property
    def is_placeholder(self) -> bool:
        return self.status == "generating"


class ParsedArtifact(BaseModel):
    """Artifact payload recognized in streaming text, not yet stored."""

    type: ArtifactType
    title: str
    content: Any


# ==============================================================================
# SESSION
# ==============================================================================


class SessionOutcome(str, Enum):
    """How a stream session ended."""

    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"
    TRANSPORT_FAILED = "transport_failed"
    ENDED = "ended"  # stream closed without a completion record
