"""
Chat Controller

Owns one chat at a time: the turn list, the artifacts of the chat, the active
stream session and the render listeners. At most one session is active; a new
send cancels the previous one and waits for it to close first.
"""

from __future__ import annotations

import asyncio
import logging
import random
import string
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

from wpchat.chat.attachments import build_outbound_text
from wpchat.clients.credentials import CredentialProvider
from wpchat.history.repository import ChatStore
from wpchat.stream.artifacts import ArtifactNotFoundError, ArtifactStore
from wpchat.stream.models import Artifact, AttachedFile, ConversationTurn, SessionOutcome
from wpchat.stream.session import RenderListener, StreamSession

logger = logging.getLogger(__name__)

StreamOpener = Callable[[str, str, dict[str, Any] | None], AsyncIterator[bytes]]

_THREAD_SUFFIX_CHARS = string.ascii_lowercase + string.digits


def generate_thread_id() -> str:
    """Thread ids look like ``thread_<epoch ms>_<9 base36 chars>``."""
    suffix = "".join(random.choices(_THREAD_SUFFIX_CHARS, k=9))
    return f"thread_{int(time.time() * 1000)}_{suffix}"


class ChatController:
    """Coordinates sending, streaming, persistence and artifacts for the open chat."""

    def __init__(
        self,
        open_stream: StreamOpener,
        store: ChatStore | None = None,
        credentials: CredentialProvider | None = None,
        *,
        streaming_config: dict[str, Any] | None = None,
        artifact_config: dict[str, Any] | None = None,
        thread_id: str | None = None,
    ):
        self._open_stream = open_stream
        self.store = store
        self.credentials = credentials
        self.streaming_config = streaming_config or {}
        self.artifact_config = artifact_config or {}

        self.thread_id = thread_id or generate_thread_id()
        self.turns: list[ConversationTurn] = []
        self._artifact_stores: dict[str, ArtifactStore] = {}
        self._session: StreamSession | None = None
        self._listeners: list[RenderListener] = []

        # saves run in FIFO order so an older snapshot never overwrites a newer one
        self._persist_lock = asyncio.Lock()
        self._background_tasks: set[asyncio.Task[Any]] = set()

    # ----- state -----

    @property
    def artifacts(self) -> ArtifactStore:
        store = self._artifact_stores.get(self.thread_id)
        if store is None:
            store = self._artifact_stores[self.thread_id] = ArtifactStore()
        return store

    @property
    def active_artifact(self) -> Artifact | None:
        return self.artifacts.active

    @property
    def session(self) -> StreamSession | None:
        return self._session

    @property
    def is_streaming(self) -> bool:
        return self._session is not None and self._session.active

    # ----- listeners -----

    def subscribe(self, listener: RenderListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: RenderListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, turns: list[ConversationTurn] | None = None, active: Artifact | None = None) -> None:
        turns = self.turns if turns is None else turns
        if active is None:
            active = self.active_artifact
        for listener in list(self._listeners):
            try:
                listener(turns, active)
            except Exception as e:
                logger.error(f"Error in chat listener: {e}")

    # ----- sending -----

    async def send_message(
        self,
        text: str,
        attachments: list[AttachedFile] | None = None,
    ) -> SessionOutcome | None:
        """
        Send one user message and stream the reply into the transcript.

        Returns the session outcome, or None when there was nothing to send.
        """
        attachments = attachments or []
        if not text.strip() and not attachments:
            return None

        await self._stop_active_session()

        self.turns.append(ConversationTurn(role="user", content=text.strip(), attachments=tuple(attachments)))
        self._notify()
        await self._persist()

        outbound = build_outbound_text(text, attachments)
        credentials = self.credentials.get_credentials() if self.credentials is not None else None
        credentials_payload = credentials.to_payload() if credentials is not None else None

        session = StreamSession(
            self.turns,
            self.artifacts,
            streaming_config=self.streaming_config,
            artifact_config=self.artifact_config,
            on_turn_created=self._on_turn_created,
        )
        session.subscribe(self._notify)
        self._session = session

        logger.info(f"→ Backend: sending message on {self.thread_id} ({len(outbound)} chars)")
        try:
            chunks = self._open_stream(outbound, self.thread_id, credentials_payload)
            outcome = await session.run(chunks)
        finally:
            session.unsubscribe(self._notify)
            if self._session is session:
                self._session = None
            await self._persist()

        return outcome

    def cancel(self) -> None:
        """Abort the streaming reply, if any. Silent, keeps partial content."""
        if self._session is not None:
            self._session.cancel()

    async def _stop_active_session(self) -> None:
        session = self._session
        if session is None:
            return
        session.cancel()
        if session.active:
            await session.closed.wait()

    def _on_turn_created(self, turn: ConversationTurn) -> None:
        self._schedule_persist()

    # ----- persistence -----

    def _snapshot(self) -> tuple[str, list[ConversationTurn]]:
        return self.thread_id, [turn.model_copy(deep=True) for turn in self.turns]

    async def _save(self, thread_id: str, turns: list[ConversationTurn]) -> None:
        if self.store is None or not turns:
            return
        async with self._persist_lock:
            try:
                await self.store.save(thread_id, turns)
            except Exception as e:
                logger.error(f"Failed to save chat {thread_id}: {e}")

    async def _persist(self) -> None:
        await self._save(*self._snapshot())

    def _schedule_persist(self) -> None:
        if self.store is None:
            return
        task = asyncio.get_running_loop().create_task(self._save(*self._snapshot()))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def flush(self) -> None:
        """Wait for scheduled saves to finish."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    # ----- chat management -----

    async def new_chat(self) -> str:
        await self._stop_active_session()
        await self._persist()
        self.thread_id = generate_thread_id()
        self.turns = []
        self._notify()
        logger.info(f"Started new chat {self.thread_id}")
        return self.thread_id

    async def select_chat(self, thread_id: str) -> bool:
        """Open a stored chat. Returns False if the store has no such chat."""
        if self.store is None:
            return False
        await self._stop_active_session()
        await self._persist()

        turns = await self.store.load(thread_id)
        if turns is None:
            logger.warning(f"Chat {thread_id} not found in store")
            return False

        self.thread_id = thread_id
        self.turns = turns
        self._notify()
        return True

    async def discard_chat(self) -> str:
        """Delete the open chat and its artifacts, then start a fresh one."""
        await self._stop_active_session()
        await self.flush()
        if self.store is not None:
            await self.store.delete(self.thread_id)

        store = self._artifact_stores.pop(self.thread_id, None)
        if store is not None:
            store.clear()

        self.thread_id = generate_thread_id()
        self.turns = []
        self._notify()
        return self.thread_id

    # ----- artifacts -----

    def switch_artifact_version(self, version_id: str) -> Artifact:
        active = self.active_artifact
        if active is None or active.is_placeholder:
            raise ArtifactNotFoundError(version_id)
        artifact = self.artifacts.switch_version(active.id, version_id)
        self._notify()
        return artifact

    def open_artifact(self, artifact_id: str) -> Artifact:
        artifact = self.artifacts.open(artifact_id)
        self._notify()
        return artifact

    def close_artifact(self) -> None:
        self.artifacts.close_active()
        self._notify()

    async def close(self) -> None:
        await self._stop_active_session()
        await self.flush()
        await self._persist()
