"""
Agent stream HTTP client.

Opens the SSE stream for one chat message and hands the raw byte chunks to the
stream session. Connection settings come from the ``backend`` config section
and the client is rebuilt when that section changes (deferred while a stream
is in flight).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from wpchat.config import Configuration
from wpchat.stream.logging_utils import should_log_feature, truncate
from wpchat.stream.transport import TransportError

logger = logging.getLogger(__name__)


class AgentStreamClient:
    """HTTP client for the agent's streaming endpoint."""

    def __init__(
        self,
        configuration: Configuration,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.configuration = configuration
        self._transport = transport
        self._backend_config: dict[str, Any] = {}
        self.client: httpx.AsyncClient | None = None
        self._active_streams = 0
        self._rebuild_pending = False
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._build_client(self.configuration.get_backend_config())
        self.configuration.subscribe_to_changes(self._on_config_change)

    @property
    def backend_config(self) -> dict[str, Any]:
        return self._backend_config

    def _build_client(self, backend_config: dict[str, Any]) -> None:
        self._backend_config = backend_config
        self.client = httpx.AsyncClient(
            base_url=backend_config["base_url"],
            headers={"Content-Type": "application/json"},
            timeout=backend_config["request_timeout_seconds"],
            http2=backend_config["http2"],
            limits=httpx.Limits(
                max_connections=backend_config["max_connections"],
                max_keepalive_connections=backend_config["max_keepalive_connections"],
                keepalive_expiry=backend_config["keepalive_expiry_seconds"],
            ),
            transport=self._transport,
            trust_env=False,
        )
        logger.info(f"Agent client initialized for {backend_config['base_url']}{backend_config['stream_path']}")

    def _on_config_change(self, new_config: dict[str, Any]) -> None:
        """Event handler for configuration changes."""
        try:
            backend_config = self.configuration.get_backend_config()
        except ValueError as e:
            logger.error(f"Ignoring invalid backend configuration: {e}")
            return
        if backend_config == self._backend_config:
            return
        if self._active_streams > 0:
            logger.warning(f"⏸️  Deferring client replacement due to {self._active_streams} active stream(s)")
            self._rebuild_pending = True
            return
        self._schedule_rebuild()

    def _schedule_rebuild(self) -> None:
        self._rebuild_pending = False
        try:
            task = asyncio.get_running_loop().create_task(self._rebuild())
        except RuntimeError:
            # no loop: nothing can be streaming, swap synchronously
            self._build_client(self.configuration.get_backend_config())
            return
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _rebuild(self) -> None:
        old = self.client
        self._build_client(self.configuration.get_backend_config())
        if old is not None:
            await old.aclose()
        logger.info("🔄 Agent client replaced after configuration change")

    def build_payload(
        self,
        message: str,
        thread_id: str,
        credentials: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": message, "thread_id": thread_id}
        if credentials:
            payload["wordpress_credentials"] = credentials
        return payload

    async def stream(
        self,
        message: str,
        thread_id: str,
        credentials: dict[str, Any] | None = None,
    ) -> AsyncGenerator[bytes]:
        """
        POST one message and yield the raw response body chunk by chunk.

        Raises:
            TransportError: On network failure, a non-2xx status or an empty body.
        """
        if self.client is None:
            raise TransportError("Agent client not initialized")

        path = self._backend_config["stream_path"]
        payload = self.build_payload(message, thread_id, credentials)
        self._active_streams += 1
        start = time.monotonic()
        try:
            async with self.client.stream(
                "POST",
                path,
                json=payload,
                headers={"Accept": "text/event-stream", "Accept-Encoding": "identity"},
            ) as response:
                self._log_http_request("POST", path, response.status_code, (time.monotonic() - start) * 1000)
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"Stream request failed with status {response.status_code}: {truncate(body)}",
                        status_code=response.status_code,
                    )

                content_type = response.headers.get("content-type", "")
                if "text/event-stream" not in content_type:
                    logger.warning(f"Unexpected content-type: {content_type}, proceeding anyway")

                received = 0
                async for chunk in response.aiter_bytes():
                    if not chunk:
                        continue
                    received += len(chunk)
                    yield chunk

                if received == 0:
                    raise TransportError("Stream response had no body", status_code=response.status_code)

        except httpx.HTTPError as e:
            logger.error(f"HTTP error during streaming: {type(e).__name__}: {e}")
            raise TransportError(f"HTTP error: {e!s}") from e
        finally:
            self._active_streams -= 1
            if self._active_streams == 0 and self._rebuild_pending:
                self._schedule_rebuild()

    def _log_http_request(self, method: str, url: str, status_code: int, duration_ms: float) -> None:
        if not should_log_feature("clients", "http_requests"):
            return
        logger.info(f"🔌 HTTP {method} {url} | Status: {status_code} | Duration: {duration_ms:.2f}ms")

    async def close(self) -> None:
        """Close the HTTP client and unsubscribe from config changes."""
        self.configuration.unsubscribe_from_changes(self._on_config_change)
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def __aenter__(self) -> AgentStreamClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()
