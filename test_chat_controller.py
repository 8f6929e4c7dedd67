#!/usr/bin/env python3
"""Tests for the chat controller: send flow, persistence and chat switching."""

from __future__ import annotations

import asyncio
import json
import re

from wpchat.chat.attachments import build_outbound_text
from wpchat.chat.chat_controller import ChatController, generate_thread_id
from wpchat.clients.credentials import StaticCredentialProvider, WordPressCredentials
from wpchat.history.memory_store import InMemoryChatStore
from wpchat.stream.artifacts import ArtifactNotFoundError
from wpchat.stream.models import AttachedFile, SessionOutcome
from wpchat.stream.transport import TransportError


def record(obj: dict) -> bytes:
    return f"data: {json.dumps(obj)}\n\n".encode()


class FakeBackend:
    """Stream opener that replays canned replies and records every request."""

    def __init__(self, *replies: list[bytes]):
        self.replies = list(replies)
        self.requests: list[tuple[str, str, dict | None]] = []

    def __call__(self, message: str, thread_id: str, credentials: dict | None):
        self.requests.append((message, thread_id, credentials))
        parts = self.replies.pop(0) if self.replies else [record({"type": "complete"})]

        async def chunks():
            for part in parts:
                yield part

        return chunks()


def reply(*texts: str) -> list[bytes]:
    return [record({"type": "token", "content": t}) for t in texts] + [record({"type": "complete"})]


def test_send_appends_user_and_assistant_turns_and_persists():
    async def run():
        store = InMemoryChatStore()
        backend = FakeBackend(reply("Hi ", "there"))
        controller = ChatController(backend, store)
        rendered = []
        controller.subscribe(lambda turns, _active: rendered.append(len(turns)))

        outcome = await controller.send_message("  hello  ")
        await controller.flush()
        stored = await store.load(controller.thread_id)
        return controller, backend, outcome, stored, rendered

    controller, backend, outcome, stored, rendered = asyncio.run(run())
    assert outcome == SessionOutcome.COMPLETED
    assert [turn.role for turn in controller.turns] == ["user", "assistant"]
    assert controller.turns[0].content == "hello"
    assert controller.turns[1].text == "Hi there"
    assert backend.requests[0][0] == "hello"
    assert backend.requests[0][1] == controller.thread_id
    assert rendered and rendered[-1] == 2
    assert stored is not None
    assert [turn.text for turn in stored] == ["hello", "Hi there"]
    assert not controller.is_streaming


def test_empty_input_is_ignored():
    async def run():
        backend = FakeBackend()
        controller = ChatController(backend)
        outcome = await controller.send_message("   ")
        return controller, backend, outcome

    controller, backend, outcome = asyncio.run(run())
    assert outcome is None
    assert controller.turns == []
    assert backend.requests == []


def test_credentials_and_attachments_go_into_the_request():
    credentials = WordPressCredentials(
        url="https://example.com", username="admin", password="app pass", anthropic_api_key="sk-test"
    )
    attachment = AttachedFile(name="notes.md", type="text", mime_type="text/markdown", size=5, content="# hi")

    async def run():
        backend = FakeBackend(reply("ok"))
        controller = ChatController(backend, credentials=StaticCredentialProvider(credentials))
        await controller.send_message("Summarize this", [attachment])
        return controller, backend

    controller, backend = asyncio.run(run())
    message, _thread_id, sent_credentials = backend.requests[0]
    assert message == build_outbound_text("Summarize this", [attachment])
    assert "**File: notes.md**" in message
    assert "# hi" in message
    assert sent_credentials == {
        "url": "https://example.com",
        "username": "admin",
        "password": "app pass",
        "anthropicApiKey": "sk-test",
    }
    # the visible user turn carries only the typed text
    assert controller.turns[0].content == "Summarize this"
    assert controller.turns[0].attachments == (attachment,)


def test_transport_failure_shows_configured_message():
    async def run():
        def failing_opener(message, thread_id, credentials):
            async def chunks():
                raise TransportError("HTTP 500", status_code=500)
                yield b""  # pragma: no cover

            return chunks()

        controller = ChatController(failing_opener, streaming_config={"failure_message": "Backend unavailable."})
        outcome = await controller.send_message("hello")
        return controller, outcome

    controller, outcome = asyncio.run(run())
    assert outcome == SessionOutcome.TRANSPORT_FAILED
    assert controller.turns[-1].text == "Backend unavailable."


def test_new_send_cancels_the_active_one():
    async def run():
        gate = asyncio.Event()
        started = asyncio.Event()
        calls = []

        def opener(message, thread_id, credentials):
            calls.append(message)
            if len(calls) == 1:

                async def slow():
                    yield record({"type": "token", "content": "first reply"})
                    started.set()
                    await gate.wait()
                    yield record({"type": "token", "content": " too late"})

                return slow()

            async def fast():
                yield record({"type": "token", "content": "second reply"})
                yield record({"type": "complete"})

            return fast()

        controller = ChatController(opener)
        first = asyncio.create_task(controller.send_message("one"))
        await started.wait()
        second_outcome = await controller.send_message("two")
        first_outcome = await first
        return controller, first_outcome, second_outcome

    controller, first_outcome, second_outcome = asyncio.run(run())
    assert first_outcome == SessionOutcome.CANCELLED
    assert second_outcome == SessionOutcome.COMPLETED
    assert [turn.text for turn in controller.turns] == ["one", "first reply", "two", "second reply"]


def test_cancel_keeps_partial_reply():
    async def run():
        gate = asyncio.Event()
        started = asyncio.Event()

        def opener(message, thread_id, credentials):
            async def slow():
                yield record({"type": "token", "content": "partial"})
                started.set()
                await gate.wait()

            return slow()

        controller = ChatController(opener)
        task = asyncio.create_task(controller.send_message("go"))
        await started.wait()
        controller.cancel()
        return controller, await task

    controller, outcome = asyncio.run(run())
    assert outcome == SessionOutcome.CANCELLED
    assert controller.turns[-1].text == "partial"


def test_new_select_and_discard_chat():
    async def run():
        store = InMemoryChatStore()
        controller = ChatController(FakeBackend(reply("a1"), reply("b1")), store)

        await controller.send_message("first chat")
        first_id = controller.thread_id
        second_id = await controller.new_chat()
        assert second_id != first_id
        assert controller.turns == []

        await controller.send_message("second chat")
        assert await controller.select_chat(first_id)
        assert controller.thread_id == first_id
        assert [turn.text for turn in controller.turns] == ["first chat", "a1"]
        assert not await controller.select_chat("thread_missing")

        await controller.discard_chat()
        remaining = [chat.thread_id for chat in await store.list_chats()]
        return first_id, second_id, controller, remaining

    first_id, second_id, controller, remaining = asyncio.run(run())
    assert remaining == [second_id]
    assert controller.thread_id not in (first_id, second_id)
    assert controller.turns == []


def test_artifact_versions_through_controller():
    first = '<artifact type="workflow" title="One">{"name": "W", "nodes": []}</artifact>'
    second = '<artifact type="workflow" title="Two">{"name": "W", "nodes": [{"name": "n", "type": "t"}]}</artifact>'

    async def run():
        controller = ChatController(FakeBackend(reply(first, "and ", second)))
        await controller.send_message("build a workflow")
        return controller

    controller = asyncio.run(run())
    artifact = controller.active_artifact
    assert artifact is not None
    assert len(artifact.versions) == 2
    assert controller.turns[-1].materialized_artifact_id == artifact.id

    controller.switch_artifact_version(artifact.versions[0].id)
    assert controller.active_artifact.current_version.title == "One"

    try:
        controller.switch_artifact_version("version_missing")
    except ArtifactNotFoundError:
        pass
    else:
        raise AssertionError("expected ArtifactNotFoundError")

    controller.close_artifact()
    assert controller.active_artifact is None
    controller.open_artifact(artifact.id)
    assert controller.active_artifact is artifact


def test_thread_id_format():
    thread_id = generate_thread_id()
    assert re.fullmatch(r"thread_\d{13}_[a-z0-9]{9}", thread_id)
    assert generate_thread_id() != thread_id


if __name__ == "__main__":
    test_send_appends_user_and_assistant_turns_and_persists()
    test_empty_input_is_ignored()
    test_credentials_and_attachments_go_into_the_request()
    test_transport_failure_shows_configured_message()
    test_new_send_cancels_the_active_one()
    test_cancel_keeps_partial_reply()
    test_new_select_and_discard_chat()
    test_artifact_versions_through_controller()
    test_thread_id_format()
    print("✅ chat controller tests passed")
