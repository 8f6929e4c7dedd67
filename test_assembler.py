#!/usr/bin/env python3
"""Tests for the transcript assembler state machine."""

from __future__ import annotations

from wpchat.stream.assembler import AssemblerState, TranscriptAssembler
from wpchat.stream.models import (
    CompleteCommand,
    ConversationTurn,
    ErrorCommand,
    TextEvent,
    TokenCommand,
    ToolCallCommand,
    ToolInvocationEvent,
    ToolResultCommand,
)


def make_assembler() -> tuple[TranscriptAssembler, list[ConversationTurn]]:
    turns: list[ConversationTurn] = []
    assembler = TranscriptAssembler(on_turn_created=turns.append, failure_message="Connection lost.")
    return assembler, turns


def test_consecutive_tokens_coalesce_into_one_text_event():
    assembler, turns = make_assembler()
    pieces = ["Here ", "are ", "your ", "posts", "."]
    for piece in pieces:
        assembler.apply(TokenCommand(content=piece))

    assert len(turns) == 1
    events = turns[0].events
    assert len(events) == 1
    assert isinstance(events[0], TextEvent)
    assert events[0].text == "".join(pieces)
    assert assembler.state == AssemblerState.TEXT_OPEN


def test_tool_call_never_merges_text_runs():
    assembler, turns = make_assembler()
    assembler.apply(TokenCommand(content="Let me check."))
    assembler.apply(ToolCallCommand(id="c1", name="wordpress_list_posts", args={}))
    assembler.apply(TokenCommand(content="Found 3 posts."))

    events = turns[0].events
    assert len(events) >= 3
    assert [type(ev) for ev in events] == [TextEvent, ToolInvocationEvent, TextEvent]
    assert events[0].text == "Let me check."
    assert events[2].text == "Found 3 posts."


def test_tool_call_first_creates_turn_and_siblings_stay_separate():
    assembler, turns = make_assembler()
    assembler.apply(ToolCallCommand(id="c1", name="wordpress_list_posts", args={}))
    assert assembler.state == AssemblerState.TOOL_OPEN
    assembler.apply(ToolCallCommand(id="c2", name="wordpress_list_pages", args={}))

    assert len(turns) == 1
    assert [ev.call_id for ev in turns[0].tool_invocations] == ["c1", "c2"]
    assert assembler.state == AssemblerState.TOOL_OPEN


def test_empty_token_creates_nothing():
    assembler, turns = make_assembler()
    assembler.apply(TokenCommand(content=""))
    assert turns == []
    assert assembler.state == AssemblerState.NO_TURN


def test_result_resolves_most_recent_pending_with_same_name():
    assembler, turns = make_assembler()
    assembler.apply(ToolCallCommand(id="a", name="wordpress_get_post", args={"id": 1}))
    assembler.apply(ToolResultCommand(name="wordpress_get_post", content="first"))
    assembler.apply(ToolCallCommand(id="b", name="wordpress_get_post", args={"id": 2}))
    assembler.apply(ToolCallCommand(id="c", name="wordpress_get_post", args={"id": 3}))
    assembler.apply(ToolResultCommand(name="wordpress_get_post", content="third"))

    first, second, third = turns[0].tool_invocations
    assert first.status == "done" and first.result == "first"
    assert second.status == "pending" and second.result is None
    assert third.status == "done" and third.result == "third"


def test_result_prefers_matching_call_id():
    assembler, turns = make_assembler()
    assembler.apply(ToolCallCommand(id="a", name="web_search", args={}))
    assembler.apply(ToolCallCommand(id="b", name="web_search", args={}))
    assembler.apply(ToolResultCommand(id="a", name="web_search", content="for a"))

    first, second = turns[0].tool_invocations
    assert first.result == "for a"
    assert second.status == "pending"


def test_unmatched_result_is_a_no_op():
    assembler, turns = make_assembler()
    assembler.apply(TokenCommand(content="hi"))
    assembler.apply(ToolResultCommand(name="nothing_pending", content="x"))
    assert len(turns[0].events) == 1


def test_complete_without_content_suppresses_turn():
    assembler, turns = make_assembler()
    assert assembler.apply(CompleteCommand()) is True
    assert turns == []
    assert assembler.finished


def test_error_appends_to_open_turn():
    assembler, turns = make_assembler()
    assembler.apply(TokenCommand(content="Working on it"))
    assert assembler.apply(ErrorCommand(content="Server error: rate limited")) is True

    events = turns[0].events
    assert events[0].text == "Working on it"
    assert isinstance(events[1], TextEvent)
    assert events[1].is_error
    assert events[1].text == "Server error: rate limited"


def test_error_without_turn_creates_one_with_verbatim_text():
    assembler, turns = make_assembler()
    assembler.apply(ErrorCommand(content="Anthropic API key not configured"))
    assert len(turns) == 1
    assert turns[0].role == "assistant"
    assert turns[0].text == "Anthropic API key not configured"


def test_commands_after_finish_are_ignored():
    assembler, turns = make_assembler()
    assembler.apply(TokenCommand(content="done"))
    assembler.apply(CompleteCommand())
    assembler.apply(TokenCommand(content=" more"))
    assert turns[0].text == "done"


def test_freeze_keeps_content_and_stops_mutation():
    assembler, turns = make_assembler()
    assembler.apply(TokenCommand(content="partial"))
    assembler.freeze()
    assembler.apply(TokenCommand(content=" ignored"))
    assembler.transport_failure()
    assert turns[0].text == "partial"
    assert len(turns[0].events) == 1


def test_transport_failure_uses_configured_message():
    assembler, turns = make_assembler()
    assembler.transport_failure()
    assert len(turns) == 1
    assert turns[0].events[0].is_error
    assert turns[0].text == "Connection lost."


if __name__ == "__main__":
    test_consecutive_tokens_coalesce_into_one_text_event()
    test_tool_call_never_merges_text_runs()
    test_tool_call_first_creates_turn_and_siblings_stay_separate()
    test_empty_token_creates_nothing()
    test_result_resolves_most_recent_pending_with_same_name()
    test_result_prefers_matching_call_id()
    test_unmatched_result_is_a_no_op()
    test_complete_without_content_suppresses_turn()
    test_error_appends_to_open_turn()
    test_error_without_turn_creates_one_with_verbatim_text()
    test_commands_after_finish_are_ignored()
    test_freeze_keeps_content_and_stops_mutation()
    test_transport_failure_uses_configured_message()
    print("✅ assembler tests passed")
