"""
Render Projection

Pure mapping from the transcript and the active artifact to frozen view
models. Nothing here keeps state between calls, so rendering the same input
twice gives equal output.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from wpchat.stream.models import Artifact, ConversationTurn, TextEvent, ToolInvocationEvent

WORDPRESS_TOOL_PREFIX = "wordpress_"


class RenderedBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text", "error", "tool"]
    text: str = ""
    tool_name: str | None = None
    display_name: str | None = None
    icon: str | None = None
    status: Literal["pending", "done"] | None = None
    arguments: str | None = None
    result: str | None = None


class RenderedTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    role: Literal["user", "assistant"]
    blocks: tuple[RenderedBlock, ...] = ()
    attachments: tuple[str, ...] = ()
    artifact_id: str | None = None


class RenderedArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    title: str
    description: str
    loading: bool
    version_number: int
    version_count: int
    version_ids: tuple[str, ...] = ()
    content: str = ""


class RenderedTranscript(BaseModel):
    model_config = ConfigDict(frozen=True)

    turns: tuple[RenderedTurn, ...] = ()
    artifact: RenderedArtifact | None = None
    streaming: bool = False


def tool_display_name(tool_name: str) -> str:
    """Human label for a tool: 'wordpress_list_posts' becomes 'List Posts'."""
    if tool_name.startswith(WORDPRESS_TOOL_PREFIX):
        words = tool_name.replace(WORDPRESS_TOOL_PREFIX, "", 1).split("_")
        return " ".join(word[:1].upper() + word[1:] for word in words)
    if tool_name == "web_search":
        return "Web Search"
    return tool_name


def tool_icon(tool_name: str) -> str:
    if tool_name.startswith(WORDPRESS_TOOL_PREFIX):
        return "🔧"
    if tool_name == "web_search":
        return "🔍"
    return "🌐"


def _format_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, indent=2, ensure_ascii=False, sort_keys=True)


def render_block(event: TextEvent | ToolInvocationEvent) -> RenderedBlock | None:
    if isinstance(event, TextEvent):
        if not event.text:
            return None
        return RenderedBlock(kind="error" if event.is_error else "text", text=event.text)
    return RenderedBlock(
        kind="tool",
        tool_name=event.tool_name,
        display_name=tool_display_name(event.tool_name),
        icon=tool_icon(event.tool_name),
        status=event.status,
        arguments=json.dumps(event.arguments, ensure_ascii=False, sort_keys=True),
        result=event.result,
    )


def render_turn(turn: ConversationTurn) -> RenderedTurn:
    if turn.role == "user":
        blocks = (RenderedBlock(kind="text", text=turn.content),) if turn.content else ()
    else:
        blocks = tuple(block for block in (render_block(ev) for ev in turn.events) if block is not None)
    return RenderedTurn(
        id=turn.id,
        role=turn.role,
        blocks=blocks,
        attachments=tuple(f.name for f in turn.attachments),
        artifact_id=turn.materialized_artifact_id,
    )


def render_artifact(artifact: Artifact | None) -> RenderedArtifact | None:
    if artifact is None:
        return None
    version_ids = tuple(v.id for v in artifact.versions)
    current = artifact.current_version
    version_number = version_ids.index(current.id) + 1 if current is not None else 0
    return RenderedArtifact(
        id=artifact.id,
        type=artifact.type,
        title=artifact.title,
        description=artifact.description,
        loading=artifact.is_placeholder,
        version_number=version_number,
        version_count=len(version_ids),
        version_ids=version_ids,
        content=_format_content(current.content) if current is not None else "",
    )


def render_transcript(
    turns: list[ConversationTurn],
    active_artifact: Artifact | None = None,
    streaming: bool = False,
) -> RenderedTranscript:
    return RenderedTranscript(
        turns=tuple(render_turn(turn) for turn in turns),
        artifact=render_artifact(active_artifact),
        streaming=streaming,
    )


def render_text(transcript: RenderedTranscript, show_tool_results: bool = False) -> str:
    """Plain terminal rendering used by the CLI."""
    lines: list[str] = []
    for turn in transcript.turns:
        speaker = "You" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}:")
        for name in turn.attachments:
            lines.append(f"  📎 {name}")
        for block in turn.blocks:
            if block.kind == "tool":
                marker = "…" if block.status == "pending" else "✓"
                lines.append(f"  {block.icon} {block.display_name} {marker}")
                if show_tool_results and block.result:
                    lines.extend(f"    {line}" for line in block.result.splitlines())
            elif block.kind == "error":
                lines.append(f"  ⚠️ {block.text}")
            else:
                lines.extend(f"  {line}" for line in block.text.splitlines())
        if turn.artifact_id:
            lines.append(f"  [artifact {turn.artifact_id}]")
        lines.append("")

    artifact = transcript.artifact
    if artifact is not None:
        if artifact.loading:
            lines.append(f"▶ {artifact.title} (generating...)")
        else:
            lines.append(
                f"▶ {artifact.title} (v{artifact.version_number}/{artifact.version_count}) - {artifact.description}"
            )
    return "\n".join(lines).rstrip() + "\n" if lines else ""
