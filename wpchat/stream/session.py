"""
Stream Session

One session per in-flight request. Drives the pipeline

    bytes → SSEDecoder → classify_record → TranscriptAssembler → ArtifactExtractor

strictly in arrival order and notifies render listeners after every record.
The only suspension point is the chunk read, so each record is fully applied
before the next one is looked at.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import Any

import httpx

from wpchat.stream.artifacts import ArtifactExtractor, ArtifactStore
from wpchat.stream.assembler import DEFAULT_ERROR_FALLBACK, DEFAULT_FAILURE_MESSAGE, TranscriptAssembler
from wpchat.stream.cancellation import CancellationController
from wpchat.stream.classifier import classify_record
from wpchat.stream.logging_utils import log_directional_flow
from wpchat.stream.models import Artifact, ConversationTurn, ErrorCommand, SessionOutcome
from wpchat.stream.transport import SSEDecoder, TransportError, iter_records, payload

logger = logging.getLogger(__name__)

RenderListener = Callable[[list[ConversationTurn], Artifact | None], None]


class StreamSession:
    """Owns the decoder, assembler and abort handle of one streaming reply."""

    def __init__(
        self,
        turns: list[ConversationTurn],
        artifacts: ArtifactStore | None = None,
        *,
        streaming_config: dict[str, Any] | None = None,
        artifact_config: dict[str, Any] | None = None,
        controller: CancellationController | None = None,
        on_turn_created: Callable[[ConversationTurn], None] | None = None,
    ):
        streaming_config = streaming_config or {}
        artifact_config = artifact_config or {}

        self.session_id = str(uuid.uuid4())
        self.turns = turns
        self.artifacts = artifacts
        self.controller = controller or CancellationController()
        self.decoder = SSEDecoder(max_line_bytes=streaming_config.get("max_line_bytes", 1024 * 1024))
        self.assembler = TranscriptAssembler(
            extractor=ArtifactExtractor(
                supported_types=artifact_config.get("supported_types"),
                enabled=artifact_config.get("enabled", True),
            ),
            artifacts=artifacts,
            on_turn_created=self._turn_created,
            failure_message=streaming_config.get("failure_message", DEFAULT_FAILURE_MESSAGE),
            error_fallback_message=streaming_config.get("error_fallback_message", DEFAULT_ERROR_FALLBACK),
        )
        self._external_turn_created = on_turn_created
        self._listeners: list[RenderListener] = []
        self._started = False

        self.outcome: SessionOutcome | None = None
        self.closed = asyncio.Event()

    # ----- observers -----

    def subscribe(self, listener: RenderListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: RenderListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        active = self.artifacts.active if self.artifacts is not None else None
        for listener in list(self._listeners):
            try:
                listener(self.turns, active)
            except Exception as e:
                logger.error(f"Error in render listener: {e}")

    def _turn_created(self, turn: ConversationTurn) -> None:
        self.turns.append(turn)
        if self._external_turn_created is not None:
            self._external_turn_created(turn)

    # ----- lifecycle -----

    @property
    def active(self) -> bool:
        return self._started and not self.closed.is_set()

    @property
    def turn(self) -> ConversationTurn | None:
        return self.assembler.turn

    def cancel(self) -> None:
        self.controller.cancel()

    async def run(self, chunks: AsyncIterator[bytes]) -> SessionOutcome:
        """
        Consume the byte stream until completion, error, cancellation or end.

        Transport exceptions are turned into a failure message in the transcript.
        Cancellation is silent: whatever was assembled stays, nothing is added.
        """
        if self._started:
            raise RuntimeError("StreamSession.run() can only be called once")
        self._started = True

        task = asyncio.current_task()
        if task is not None:
            self.controller.bind(task)

        outcome = SessionOutcome.ENDED
        log_directional_flow("→", "Backend", "stream session %s started", self.session_id)
        try:
            async with aclosing(iter_records(chunks, self.controller, self.decoder)) as records:
                async for record in records:
                    command = classify_record(payload(record))
                    if command is None:
                        continue
                    ends_session = self.assembler.apply(command)
                    self._notify()
                    if ends_session:
                        outcome = SessionOutcome.ERRORED if isinstance(command, ErrorCommand) else SessionOutcome.COMPLETED
                        break

            if outcome is SessionOutcome.ENDED:
                if self.controller.cancelled:
                    outcome = SessionOutcome.CANCELLED
                else:
                    logger.warning("Stream ended without a completion record")
                    self.assembler.finalize()
                    self._notify()

        except asyncio.CancelledError:
            if not self.controller.cancelled:
                raise
            if task is not None:
                task.uncancel()
            outcome = SessionOutcome.CANCELLED

        except (TransportError, httpx.HTTPError) as e:
            if self.controller.cancelled:
                outcome = SessionOutcome.CANCELLED
            else:
                logger.error(f"Transport failure in session {self.session_id}: {e}")
                self.assembler.transport_failure()
                self._notify()
                outcome = SessionOutcome.TRANSPORT_FAILED

        finally:
            self.controller.unbind()
            if outcome is SessionOutcome.CANCELLED:
                self.assembler.freeze()
                self._notify()
            self.outcome = outcome
            await _close_source(chunks)
            self.closed.set()

        log_directional_flow("←", "Backend", "stream session %s ended: %s", self.session_id, outcome.value)
        return outcome


async def _close_source(chunks: AsyncIterator[bytes]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"Error closing stream source: {e}")
