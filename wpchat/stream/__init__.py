"""
Streaming Core

SSE decoding, event classification, transcript assembly, artifact extraction
and cancellation for one chat stream.
"""

from .artifacts import ArtifactExtractor, ArtifactNotFoundError, ArtifactStore
from .assembler import AssemblerState, TranscriptAssembler
from .cancellation import CancellationController
from .classifier import classify_record
from .models import (
    Artifact,
    ArtifactVersion,
    AttachedFile,
    ConversationTurn,
    SessionOutcome,
    TextEvent,
    ToolInvocationEvent,
)
from .render import render_text, render_transcript
from .session import StreamSession
from .transport import SSEDecoder, TransportError, iter_records

__all__ = [
    "Artifact",
    "ArtifactExtractor",
    "ArtifactNotFoundError",
    "ArtifactStore",
    "ArtifactVersion",
    "AssemblerState",
    "AttachedFile",
    "CancellationController",
    "ConversationTurn",
    "SSEDecoder",
    "SessionOutcome",
    "StreamSession",
    "TextEvent",
    "ToolInvocationEvent",
    "TranscriptAssembler",
    "TransportError",
    "classify_record",
    "iter_records",
    "render_text",
    "render_transcript",
]
