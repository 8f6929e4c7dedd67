"""
Transcript Assembler

State machine that folds stream commands into the assistant turn being built.

States:
- NO_TURN: nothing has arrived yet, no turn exists
- TEXT_OPEN: the last event of the turn is a text run that takes new tokens
- TOOL_OPEN: the last event is a tool invocation; the next token opens a new run

Consecutive tokens coalesce into one TextEvent. A tool call always closes the
current run, so text before and after a tool is never merged. Text runs go
through the artifact extractor; the event keeps the display text only. An
artifact tag left open by a tool call hides the text of the following run
until its end tag arrives.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from wpchat.stream.artifacts import ArtifactExtractor, ArtifactStore, ExtractionResult
from wpchat.stream.logging_utils import log_tool_call, log_tool_result
from wpchat.stream.models import (
    CompleteCommand,
    ConversationTurn,
    ErrorCommand,
    StreamCommand,
    TextEvent,
    TokenCommand,
    ToolCallCommand,
    ToolInvocationEvent,
    ToolResultCommand,
)

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Sorry, I encountered an error. Please try again."
DEFAULT_ERROR_FALLBACK = "The assistant reported an error."


class AssemblerState(str, Enum):
    NO_TURN = "no_turn"
    TEXT_OPEN = "text_open"
    TOOL_OPEN = "tool_open"


class TranscriptAssembler:
    """Builds one assistant turn from the commands of one stream session."""

    def __init__(
        self,
        extractor: ArtifactExtractor | None = None,
        artifacts: ArtifactStore | None = None,
        on_turn_created: Callable[[ConversationTurn], None] | None = None,
        failure_message: str = DEFAULT_FAILURE_MESSAGE,
        error_fallback_message: str = DEFAULT_ERROR_FALLBACK,
    ):
        self.extractor = extractor or ArtifactExtractor()
        self.artifacts = artifacts
        self.on_turn_created = on_turn_created
        self.failure_message = failure_message
        self.error_fallback_message = error_fallback_message

        self.state = AssemblerState.NO_TURN
        self.turn: ConversationTurn | None = None
        self.frozen = False
        self.finished = False

    @property
    def accepting(self) -> bool:
        return not (self.frozen or self.finished)

    def apply(self, command: StreamCommand) -> bool:
        """
        Apply one command. Returns True when the command ends the session.

        Commands arriving after the turn was frozen or finished are ignored.
        """
        if not self.accepting:
            logger.debug("Ignoring %s after assembler stopped", command.type)
            return True

        if isinstance(command, TokenCommand):
            self._on_token(command)
            return False
        if isinstance(command, ToolCallCommand):
            self._on_tool_call(command)
            return False
        if isinstance(command, ToolResultCommand):
            self._on_tool_result(command)
            return False
        if isinstance(command, CompleteCommand):
            self.finalize()
            return True
        if isinstance(command, ErrorCommand):
            self._append_error(command.content or self.error_fallback_message)
            return True

        logger.debug("Unhandled command type: %r", command)
        return False

    # ----- transitions -----

    def _on_token(self, command: TokenCommand) -> None:
        if not command.content:
            return

        if self.state == AssemblerState.TEXT_OPEN:
            run = self._current_run()
        else:
            run = TextEvent()
            self._ensure_turn().events.append(run)
            self.extractor.begin_run()
            self.state = AssemblerState.TEXT_OPEN

        result = self.extractor.feed(command.content)
        run.text = result.display
        self._apply_extraction(result)

    def _on_tool_call(self, command: ToolCallCommand) -> None:
        self._close_text_run()
        log_tool_call(command.name, command.id, command.args)
        self._ensure_turn().events.append(
            ToolInvocationEvent(call_id=command.id, tool_name=command.name, arguments=command.args)
        )
        self.state = AssemblerState.TOOL_OPEN

    def _on_tool_result(self, command: ToolResultCommand) -> None:
        log_tool_result(command.name, command.id, command.content)
        invocation = self._match_pending(command)
        if invocation is None:
            logger.warning(
                "No pending tool invocation for result name=%s id=%s; ignoring",
                command.name,
                command.id,
            )
            return
        invocation.status = "done"
        invocation.result = command.content

    def _match_pending(self, command: ToolResultCommand) -> ToolInvocationEvent | None:
        if self.turn is None:
            return None
        pending = [ev for ev in reversed(self.turn.events) if isinstance(ev, ToolInvocationEvent) and ev.status == "pending"]
        if command.id is not None:
            for invocation in pending:
                if invocation.call_id == command.id:
                    return invocation
        for invocation in pending:
            if invocation.tool_name == command.name:
                return invocation
        return None

    # ----- terminal states -----

    def finalize(self) -> None:
        """Close the turn at the end of the stream. Empty turns are never created."""
        if self.finished:
            return
        self._close_text_run()
        if self.turn is not None and self.artifacts is not None:
            self.artifacts.discard_placeholder(self.turn.id)
        self.finished = True

    def transport_failure(self, message: str | None = None) -> None:
        """Surface a transport fault as assistant error text."""
        if not self.accepting:
            return
        self._append_error(message or self.failure_message)

    def freeze(self) -> None:
        """Stop all further mutation. Content already assembled stays as it is."""
        if self.frozen:
            return
        self.frozen = True
        if self.turn is not None and self.artifacts is not None:
            self.artifacts.discard_placeholder(self.turn.id)

    def _append_error(self, message: str) -> None:
        self._close_text_run()
        self._ensure_turn().events.append(TextEvent(text=message, is_error=True))
        logger.warning("← Backend: stream ended with error: %s", message)
        if self.turn is not None and self.artifacts is not None:
            self.artifacts.discard_placeholder(self.turn.id)
        self.finished = True

    # ----- helpers -----

    def _ensure_turn(self) -> ConversationTurn:
        if self.turn is None:
            self.turn = ConversationTurn(role="assistant")
            if self.on_turn_created is not None:
                self.on_turn_created(self.turn)
        return self.turn

    def _current_run(self) -> TextEvent:
        assert self.turn is not None
        last = self.turn.events[-1]
        assert isinstance(last, TextEvent)
        return last

    def _close_text_run(self) -> None:
        """Flush characters the extractor was holding back before the run ends."""
        if self.state != AssemblerState.TEXT_OPEN:
            return
        run = self._current_run()
        result = self.extractor.finish()
        run.text = result.display
        self._apply_extraction(result)

    def _apply_extraction(self, result: ExtractionResult) -> None:
        if self.artifacts is None or self.turn is None:
            return
        turn_id = self.turn.id
        for parsed in result.completed:
            artifact = self.artifacts.commit(turn_id, parsed)
            self.turn.materialized_artifact_id = artifact.id
        if result.pending is not None:
            self.artifacts.begin_placeholder(turn_id, result.pending.type, result.pending.title)
        elif result.dropped and not result.completed:
            self.artifacts.discard_placeholder(turn_id)
