"""
Stream Logging Utilities

Shared logging helpers with feature control, used by the decoder, assembler,
artifact extractor and session so log lines look the same everywhere.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TRUNCATE = 200


def should_log_feature(module: str, feature: str) -> bool:
    """
    Check if a specific logging feature should be enabled.

    Feature flags are installed by main._configure_advanced_logging.
    """
    if hasattr(logging, "_module_features"):
        module_features = getattr(logging, "_module_features", {}).get(module, {})
        return bool(module_features.get(feature, False))
    return False


def truncate(text: str, length: int = DEFAULT_TRUNCATE) -> str:
    if len(text) > length:
        return text[:length] + "..."
    return text


def log_record(record: str) -> None:
    """Log a raw SSE record when the 'records' feature is enabled."""
    if not should_log_feature("stream", "records"):
        return
    logger.info("← Backend: record %s", truncate(record))


def log_malformed_record(payload: str, error: Exception) -> None:
    logger.warning("Skipping malformed stream record (%s): %s", error, truncate(payload))


def log_tool_call(tool_name: str, call_id: str, arguments: dict[str, Any]) -> None:
    if not should_log_feature("stream", "tool_events"):
        return
    logger.info("← Backend[%s]: tool call id=%s args=%s", tool_name, call_id, truncate(str(arguments)))


def log_tool_result(tool_name: str, call_id: str | None, content: str) -> None:
    if not should_log_feature("stream", "tool_events"):
        return
    logger.info(
        "← Backend[%s]: tool result id=%s, content length: %d",
        tool_name,
        call_id,
        len(content),
    )


def log_artifact_event(action: str, artifact_id: str, title: str) -> None:
    if not should_log_feature("stream", "artifacts"):
        return
    logger.info("→ Frontend: artifact %s id=%s title=%r", action, artifact_id, title)


def log_directional_flow(direction: str, component: str, message: str, *args: Any) -> None:
    """
    Log directional flow messages with consistent arrow formatting.

    Args:
        direction: Either "→" (outgoing) or "←" (incoming/completed)
        component: Component name (e.g., "Backend", "Frontend", "Store")
        message: Message template with optional format placeholders
        *args: Arguments for message formatting
    """
    formatted_msg = message % args if args else message
    logger.info("%s %s: %s", direction, component, formatted_msg)
