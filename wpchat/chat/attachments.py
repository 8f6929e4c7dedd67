"""
Outbound message assembly.

The user turn shows only what was typed. The text sent to the agent also
describes every attached file, and inlines the content of text files.
"""

from __future__ import annotations

import logging
import mimetypes
import os

from wpchat.stream.models import AttachedFile

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {
    ".txt",
    ".md",
    ".json",
    ".csv",
    ".html",
    ".css",
    ".js",
    ".ts",
    ".php",
    ".py",
    ".xml",
    ".yaml",
    ".yml",
}
MAX_TEXT_ATTACHMENT_BYTES = 1024 * 1024


def describe_attachment(attachment: AttachedFile) -> str:
    if attachment.type == "text" and attachment.content:
        return f"\n\n**File: {attachment.name}**\n```\n{attachment.content}\n```"
    if attachment.type == "image":
        return f"\n\n**Image: {attachment.name}** (attached)"
    return f"\n\n**File: {attachment.name}** ({attachment.mime_type or 'unknown type'})"


def build_outbound_text(text: str, attachments: tuple[AttachedFile, ...] | list[AttachedFile] = ()) -> str:
    """Message text plus attachment descriptions, as sent to the agent."""
    return text.strip() + "".join(describe_attachment(a) for a in attachments)


def load_attachment(path: str) -> AttachedFile:
    """Build an attachment descriptor from a local file (used by the CLI)."""
    name = os.path.basename(path)
    size = os.path.getsize(path)
    mime_type, _ = mimetypes.guess_type(path)
    extension = os.path.splitext(name)[1].lower()

    if mime_type and mime_type.startswith("image/"):
        return AttachedFile(name=name, type="image", mime_type=mime_type, size=size)

    if (extension in TEXT_EXTENSIONS or (mime_type or "").startswith("text/")) and size <= MAX_TEXT_ATTACHMENT_BYTES:
        with open(path, encoding="utf-8", errors="replace") as f:
            content = f.read()
        return AttachedFile(name=name, type="text", mime_type=mime_type, size=size, content=content)

    logger.debug(f"Attaching {name} without inline content ({mime_type}, {size} bytes)")
    return AttachedFile(name=name, type="other", mime_type=mime_type, size=size)
