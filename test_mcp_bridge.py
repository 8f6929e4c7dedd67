#!/usr/bin/env python3
"""Tests for the reference-counted MCP bridge registry with a fake connector."""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack

from mcp import McpError, types
from wpchat.clients.credentials import WordPressCredentials
from wpchat.clients.mcp_bridge import BridgeConfig, MCPBridgeRegistry


class FakeSession:
    def __init__(self):
        self.list_calls = 0

    async def list_tools(self) -> types.ListToolsResult:
        self.list_calls += 1
        return types.ListToolsResult(
            tools=[
                types.Tool(
                    name="wordpress_list_posts",
                    description="List posts",
                    inputSchema={"type": "object"},
                )
            ]
        )


class FakeConnector:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.opened: list[BridgeConfig] = []
        self.closed: list[BridgeConfig] = []
        self.sessions: list[FakeSession] = []

    async def __call__(self, config: BridgeConfig, exit_stack: AsyncExitStack) -> FakeSession:
        async def on_close():
            self.closed.append(config)

        exit_stack.push_async_callback(on_close)
        if self.fail:
            raise ConnectionError("server did not start")
        self.opened.append(config)
        session = FakeSession()
        self.sessions.append(session)
        return session


def test_equal_configs_share_one_session():
    async def run():
        connector = FakeConnector()
        registry = MCPBridgeRegistry(connector)
        config = BridgeConfig(args=("-y", "wpmcp@3.0.0"))

        first = await registry.acquire(config)
        second = await registry.acquire(BridgeConfig(args=("-y", "wpmcp@3.0.0")))
        assert len(connector.opened) == 1
        assert registry.ref_count(config) == 2

        await registry.release(first)
        assert connector.closed == []
        await registry.release(second)
        assert connector.closed == [config]
        assert registry.ref_count(config) == 0

        # a second release of the same handle is ignored
        await registry.release(second)
        assert len(connector.closed) == 1

    asyncio.run(run())


def test_different_configs_get_separate_sessions():
    async def run():
        connector = FakeConnector()
        registry = MCPBridgeRegistry(connector)
        await registry.acquire(BridgeConfig(env=(("WORDPRESS_URL", "https://a.example"),)))
        await registry.acquire(BridgeConfig(env=(("WORDPRESS_URL", "https://b.example"),)))
        assert len(connector.opened) == 2

        await registry.close_all()
        assert len(connector.closed) == 2

    asyncio.run(run())


def test_tools_are_cached_per_session():
    async def run():
        connector = FakeConnector()
        registry = MCPBridgeRegistry(connector)
        handle = await registry.acquire(BridgeConfig())

        tools = await registry.list_tools(handle)
        again = await registry.list_tools(handle)
        assert [tool.name for tool in tools] == ["wordpress_list_posts"]
        assert again == tools
        assert connector.sessions[0].list_calls == 1

        await registry.release(handle)
        try:
            await registry.list_tools(handle)
        except McpError:
            pass
        else:
            raise AssertionError("expected McpError for a released handle")

    asyncio.run(run())


def test_failed_connect_is_not_registered():
    async def run():
        connector = FakeConnector(fail=True)
        registry = MCPBridgeRegistry(connector)
        config = BridgeConfig()
        try:
            await registry.acquire(config)
        except ConnectionError:
            pass
        else:
            raise AssertionError("expected ConnectionError")
        return connector, registry.ref_count(config)

    connector, count = asyncio.run(run())
    assert count == 0
    # partially entered resources are unwound
    assert len(connector.closed) == 1


def test_from_settings_injects_credentials():
    credentials = WordPressCredentials(url="https://example.com", username="admin", password="secret")
    config = BridgeConfig.from_settings(
        {"command": "npx", "args": ["-y", "wpmcp@3.0.0"], "env": {"DEBUG": "1"}, "connection_timeout": 10.0},
        credentials,
    )
    env = dict(config.env)
    assert env == {
        "DEBUG": "1",
        "WORDPRESS_URL": "https://example.com",
        "WORDPRESS_USERNAME": "admin",
        "WORDPRESS_PASSWORD": "secret",
    }
    assert config.args == ("-y", "wpmcp@3.0.0")
    assert config.connection_timeout == 10.0
    assert config == BridgeConfig.from_settings(
        {"args": ["-y", "wpmcp@3.0.0"], "env": {"DEBUG": "1"}, "connection_timeout": 10.0}, credentials
    )


if __name__ == "__main__":
    test_equal_configs_share_one_session()
    test_different_configs_get_separate_sessions()
    test_tools_are_cached_per_session()
    test_failed_connect_is_not_registered()
    test_from_settings_injects_credentials()
    print("✅ MCP bridge tests passed")
