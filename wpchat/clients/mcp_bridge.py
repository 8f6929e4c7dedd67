"""
MCP bridge registry.

Shared connections to the WordPress MCP server with an explicit lifecycle:
``acquire(config)`` returns a handle, ``release(handle)`` gives it back. Equal
configurations share one connected ClientSession; the session is closed when
its last handle is released.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mcp import ClientSession, McpError, StdioServerParameters, types
from mcp.client.stdio import stdio_client
from wpchat.clients.credentials import WordPressCredentials

logger = logging.getLogger(__name__)

CLIENT_NAME = "wpchat"
CLIENT_VERSION = "0.1.0"


class BridgeConfig(BaseModel):
    """Launch settings for one MCP server process. Hashable, compared by value."""

    model_config = ConfigDict(frozen=True)

    command: str = "npx"
    args: tuple[str, ...] = ("-y", "wpmcp@3.0.0")
    env: tuple[tuple[str, str], ...] = ()
    connection_timeout: float = 30.0

    @classmethod
    def from_settings(
        cls,
        mcp_config: dict[str, Any],
        credentials: WordPressCredentials | None = None,
    ) -> BridgeConfig:
        env: dict[str, str] = dict(mcp_config.get("env") or {})
        if credentials is not None:
            env.update(
                {
                    "WORDPRESS_URL": credentials.url,
                    "WORDPRESS_USERNAME": credentials.username,
                    "WORDPRESS_PASSWORD": credentials.password,
                }
            )
        return cls(
            command=mcp_config.get("command", "npx"),
            args=tuple(mcp_config.get("args", ("-y", "wpmcp@3.0.0"))),
            env=tuple(sorted(env.items())),
            connection_timeout=mcp_config.get("connection_timeout", 30.0),
        )


class BridgeHandle(BaseModel):
    """Token returned by acquire(); valid until released."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    config: BridgeConfig


Connector = Callable[[BridgeConfig, AsyncExitStack], Awaitable[ClientSession]]


class _BridgeEntry:
    def __init__(self, config: BridgeConfig):
        self.config = config
        self.exit_stack = AsyncExitStack()
        self.session: ClientSession | None = None
        self.handles: set[str] = set()
        self.tools: list[types.Tool] | None = None


def _resolve_command(command: str) -> str | None:
    """Absolute path of the server executable, or None if it cannot be found."""
    if os.path.isabs(command):
        return command if os.path.exists(command) else None
    return shutil.which(command)


async def stdio_connector(config: BridgeConfig, exit_stack: AsyncExitStack) -> ClientSession:
    """Start the MCP server over stdio and complete the initialize handshake."""
    command = _resolve_command(config.command)
    if not command:
        raise ValueError(f"Command '{config.command}' not found in PATH")

    server_params = StdioServerParameters(
        command=command,
        args=list(config.args),
        env={**os.environ, **dict(config.env)} if config.env else None,
    )
    read_stream, write_stream = await exit_stack.enter_async_context(stdio_client(server_params))
    client_info = types.Implementation(name=CLIENT_NAME, version=CLIENT_VERSION)
    session = await exit_stack.enter_async_context(ClientSession(read_stream, write_stream, client_info=client_info))
    await asyncio.wait_for(session.initialize(), timeout=config.connection_timeout)
    logger.info(f"MCP bridge connected: {config.command} {' '.join(config.args)}")
    return session


class MCPBridgeRegistry:
    """Reference-counted MCP sessions keyed by configuration equality."""

    def __init__(self, connector: Connector | None = None):
        self._connector = connector or stdio_connector
        self._entries: dict[BridgeConfig, _BridgeEntry] = {}
        self._lock = asyncio.Lock()

    def ref_count(self, config: BridgeConfig) -> int:
        entry = self._entries.get(config)
        return len(entry.handles) if entry else 0

    async def acquire(self, config: BridgeConfig) -> BridgeHandle:
        async with self._lock:
            entry = self._entries.get(config)
            if entry is None:
                entry = _BridgeEntry(config)
                try:
                    entry.session = await self._connector(config, entry.exit_stack)
                except BaseException:
                    await entry.exit_stack.aclose()
                    raise
                self._entries[config] = entry
                logger.info("→ MCP: bridge opened")

            handle = BridgeHandle(config=config)
            entry.handles.add(handle.id)
            logger.debug(f"MCP bridge acquired, ref count {len(entry.handles)}")
            return handle

    async def release(self, handle: BridgeHandle) -> None:
        async with self._lock:
            entry = self._entries.get(handle.config)
            if entry is None or handle.id not in entry.handles:
                logger.warning("Releasing unknown or already released MCP bridge handle")
                return
            entry.handles.discard(handle.id)
            if entry.handles:
                return
            del self._entries[handle.config]
            await self._close_entry(entry)

    async def list_tools(self, handle: BridgeHandle) -> list[types.Tool]:
        entry = self._entries.get(handle.config)
        if entry is None or entry.session is None or handle.id not in entry.handles:
            raise McpError(error=types.ErrorData(code=types.INTERNAL_ERROR, message="MCP bridge handle not active"))
        if entry.tools is None:
            result = await entry.session.list_tools()
            entry.tools = list(result.tools)
            logger.info(f"← MCP: {len(entry.tools)} tools available")
        return entry.tools

    async def close_all(self) -> None:
        async with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            for entry in entries:
                await self._close_entry(entry)

    async def _close_entry(self, entry: _BridgeEntry) -> None:
        try:
            await entry.exit_stack.aclose()
        except Exception as e:
            logger.error(f"Error closing MCP bridge: {e}")
        entry.session = None
        entry.tools = None
        logger.info("← MCP: bridge closed")
