"""
Event Classifier

Parses one record payload into a typed stream command. Malformed records are
logged and skipped, and unknown event kinds are ignored, so a single bad line
never ends the session.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from wpchat.stream.logging_utils import log_malformed_record
from wpchat.stream.models import (
    CompleteCommand,
    ErrorCommand,
    StreamCommand,
    TokenCommand,
    ToolCallCommand,
    ToolResultCommand,
)

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

_COMMANDS: dict[str, type[StreamCommand]] = {
    "token": TokenCommand,
    "tool_call": ToolCallCommand,
    "tool_result": ToolResultCommand,
    "complete": CompleteCommand,
    "error": ErrorCommand,
}


def classify_record(payload: str) -> StreamCommand | None:
    """Classify a decoded payload. Returns None for anything that should be skipped."""
    if not payload:
        return None
    if payload == DONE_SENTINEL:
        return CompleteCommand()

    try:
        data: Any = json.loads(payload)
    except json.JSONDecodeError as e:
        log_malformed_record(payload, e)
        return None

    if not isinstance(data, dict):
        log_malformed_record(payload, TypeError(f"expected object, got {type(data).__name__}"))
        return None

    kind = data.get("type")
    command_cls = _COMMANDS.get(kind) if isinstance(kind, str) else None
    if command_cls is None:
        logger.debug("Ignoring unknown stream event kind: %r", kind)
        return None

    try:
        command = command_cls.model_validate(data)
    except ValidationError as e:
        log_malformed_record(payload, e)
        return None

    if isinstance(command, ToolCallCommand) and data.get("args") is None:
        logger.debug("tool_call %s (%s) without args; defaulting to {}", command.name, command.id)
    return command
