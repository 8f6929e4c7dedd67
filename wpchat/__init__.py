"""wpchat - streaming chat client for a WordPress MCP agent."""

__version__ = "0.1.0"
