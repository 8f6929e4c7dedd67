"""Clients package: agent stream HTTP client, credentials and the MCP bridge."""

from __future__ import annotations

from .agent_client import AgentStreamClient
from .credentials import (
    EnvCredentialProvider,
    StaticCredentialProvider,
    WordPressCredentials,
    format_wordpress_url,
)
from .mcp_bridge import BridgeConfig, BridgeHandle, MCPBridgeRegistry

__all__ = [
    "AgentStreamClient",
    "BridgeConfig",
    "BridgeHandle",
    "EnvCredentialProvider",
    "MCPBridgeRegistry",
    "StaticCredentialProvider",
    "WordPressCredentials",
    "format_wordpress_url",
]
