"""Configuration management for the wpchat streaming client."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
import time
from collections.abc import Callable
from typing import Any, cast

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")


class Configuration:
    """Event-driven configuration manager with observer pattern."""

    def __init__(
        self,
        config_path: str | None = None,
        runtime_config_path: str | None = None,
    ) -> None:
        """Initialize configuration from YAML and environment variables.

        Args:
            config_path: Default YAML file. Falls back to the packaged config.yaml.
            runtime_config_path: Optional YAML file whose values override the
                defaults. Falls back to $WPCHAT_RUNTIME_CONFIG when not given.
        """
        self.load_env()  # Load .env for backend URL and WordPress credentials
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._default_config = self._load_yaml_config()
        self._runtime_config_path = runtime_config_path or os.getenv("WPCHAT_RUNTIME_CONFIG")
        self._runtime_config_mtime: float | None = None
        self._current_config: dict[str, Any] = {}

        # Event-driven observer pattern
        self._config_change_callbacks: list[Callable[[dict[str, Any]], None]] = []
        self._watch_task: asyncio.Task[None] | None = None

        if self._runtime_config_path:
            self._initialize_runtime_config()
        self._reload_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load default configuration from YAML file."""
        with open(self._config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError("Configuration file must contain a dictionary")
            return cast(dict[str, Any], config)

    def _initialize_runtime_config(self) -> None:
        """Create the runtime configuration file from defaults if it doesn't exist."""
        assert self._runtime_config_path is not None
        if not os.path.exists(self._runtime_config_path):
            initial_config = self._default_config.copy()
            initial_config["_runtime_config"] = {
                "last_modified": time.time(),
                "version": 1,
                "is_runtime_config": True,
                "created_from_defaults": True,
            }

            with open(self._runtime_config_path, "w") as file:
                yaml.safe_dump(initial_config, file, default_flow_style=False, indent=2)

    def _load_runtime_config(self) -> dict[str, Any]:
        """Load runtime overrides, recreating the file from defaults if corrupted."""
        if not self._runtime_config_path:
            return {}
        try:
            with open(self._runtime_config_path) as file:
                config = yaml.safe_load(file)
                if not isinstance(config, dict):
                    os.remove(self._runtime_config_path)
                    self._initialize_runtime_config()
                    return self._load_runtime_config()
                return cast(dict[str, Any], config)
        except (yaml.YAMLError, OSError):
            with contextlib.suppress(OSError):
                os.remove(self._runtime_config_path)
            self._initialize_runtime_config()
            return self._load_runtime_config()

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(cast(dict[str, Any], result[key]), cast(dict[str, Any], value))
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variable overrides on top of the merged YAML config."""
        backend_url = os.getenv("WPCHAT_BACKEND_URL")
        if backend_url:
            config = self._deep_merge(config, {"backend": {"base_url": backend_url}})
        return config

    def _reload_config(self) -> bool:
        """Reload configuration from runtime config if it has been modified.

        Returns:
            True if config was actually reloaded, False if no changes.
        """
        current_mtime = None
        if self._runtime_config_path and os.path.exists(self._runtime_config_path):
            current_mtime = os.path.getmtime(self._runtime_config_path)

        if current_mtime != self._runtime_config_mtime or not self._current_config:
            old_config = self._current_config.copy()
            self._runtime_config_mtime = current_mtime
            runtime_config = {
                k: v for k, v in self._load_runtime_config().items() if not k.startswith("_runtime_config")
            }
            merged = self._deep_merge(self._default_config, runtime_config)
            self._current_config = self._apply_env_overrides(merged)

            # Notify observers if config actually changed (not just first load)
            if old_config and self._current_config != old_config:
                self._notify_config_change()

            return True
        return False

    def _get_current_config(self) -> dict[str, Any]:
        """Get current configuration (cached, no file system access)."""
        return self._current_config

    def _notify_config_change(self) -> None:
        """Notify all registered observers of configuration changes."""
        for callback in self._config_change_callbacks:
            try:
                callback(self._current_config.copy())
            except Exception as e:
                logging.error(f"Error in config change callback: {e}")

    def subscribe_to_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Subscribe to configuration change events.

        Args:
            callback: Function to call when config changes. Receives new
                config as argument.
        """
        if callback not in self._config_change_callbacks:
            self._config_change_callbacks.append(callback)

    def unsubscribe_from_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Unsubscribe from configuration change events."""
        if callback in self._config_change_callbacks:
            self._config_change_callbacks.remove(callback)

    async def start_watching(self) -> None:
        """Start the async file watching task for automatic config updates."""
        if self._watch_task is not None or not self._runtime_config_path:
            return

        self._watch_task = asyncio.create_task(self._watch_config_file())
        logging.info("Started watching runtime configuration file for changes")

    async def stop_watching(self) -> None:
        """Stop the async file watching task."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
            logging.info("Stopped watching runtime configuration file")

    async def _watch_config_file(self) -> None:
        """Async task that watches for config file changes."""
        while True:
            try:
                await asyncio.sleep(1)
                if self._reload_config():
                    logging.info("Runtime configuration file changed - config reloaded")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logging.error(f"Error watching config file: {e}")
                await asyncio.sleep(5)  # Back off on errors

    def reload_runtime_config(self) -> bool:
        """Manually reload runtime configuration.

        Returns:
            True if configuration was reloaded, False if no changes detected.
        """
        old_mtime = self._runtime_config_mtime
        self._reload_config()
        return old_mtime != self._runtime_config_mtime

    def save_runtime_config(self, config: dict[str, Any]) -> None:
        """Save configuration to the runtime config file and reload it."""
        if not self._runtime_config_path:
            raise ValueError("No runtime configuration file configured")

        current_version = 0
        if os.path.exists(self._runtime_config_path):
            try:
                with open(self._runtime_config_path) as f:
                    loaded_config = yaml.safe_load(f)
                    if isinstance(loaded_config, dict):
                        current_version = loaded_config.get("_runtime_config", {}).get("version", 0)
            except (yaml.YAMLError, OSError):
                pass

        runtime_config = config.copy()
        runtime_config["_runtime_config"] = {
            "last_modified": time.time(),
            "version": current_version + 1,
            "is_runtime_config": True,
        }

        with open(self._runtime_config_path, "w") as file:
            yaml.safe_dump(runtime_config, file, default_flow_style=False, indent=2)

        # Force a reload even when the filesystem mtime resolution hides the write
        self._runtime_config_mtime = None
        self._reload_config()

    def get_backend_config(self) -> dict[str, Any]:
        """Get agent backend connection configuration.

        Returns:
            Backend configuration dictionary with validated values.
        """
        backend = self._get_current_config().get("backend", {})
        base_url = backend.get("base_url")
        if not base_url or not isinstance(base_url, str):
            raise ValueError("backend.base_url must be a non-empty string")

        stream_path = backend.get("stream_path", "/api/wordpress")
        if not stream_path.startswith("/"):
            raise ValueError("backend.stream_path must start with '/'")

        return {
            "base_url": base_url.rstrip("/"),
            "stream_path": stream_path,
            "http2": bool(backend.get("http2", False)),
            **self.get_connection_pool_config(),
        }

    def get_connection_pool_config(self) -> dict[str, Any]:
        """Get HTTP connection pool configuration.

        Returns:
            Connection pool configuration dictionary with validated defaults.
        """
        backend = self._get_current_config().get("backend", {})
        max_connections = backend.get("max_connections", 10)
        max_keepalive = backend.get("max_keepalive_connections", 5)
        keepalive_expiry = backend.get("keepalive_expiry_seconds", 30.0)
        request_timeout = backend.get("request_timeout_seconds", 60.0)

        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        if max_keepalive < 0:
            raise ValueError("max_keepalive_connections must be non-negative")
        if keepalive_expiry <= 0:
            raise ValueError("keepalive_expiry_seconds must be positive")
        if request_timeout <= 0:
            raise ValueError("request_timeout_seconds must be positive")

        return {
            "max_connections": max_connections,
            "max_keepalive_connections": max_keepalive,
            "keepalive_expiry_seconds": keepalive_expiry,
            "request_timeout_seconds": request_timeout,
        }

    def get_streaming_config(self) -> dict[str, Any]:
        """Get stream handling configuration (failure messages, line limits)."""
        streaming = self._get_current_config().get("streaming", {})
        max_line_bytes = streaming.get("max_line_bytes", 1024 * 1024)
        if not isinstance(max_line_bytes, int) or max_line_bytes < 1:
            raise ValueError("max_line_bytes must be a positive integer")

        return {
            "failure_message": streaming.get(
                "failure_message", "Sorry, I encountered an error while processing your request."
            ),
            "error_fallback_message": streaming.get(
                "error_fallback_message", "The agent reported an error without details."
            ),
            "max_line_bytes": max_line_bytes,
        }

    def get_artifact_config(self) -> dict[str, Any]:
        """Get artifact extraction configuration."""
        artifacts = self._get_current_config().get("artifacts", {})
        supported = artifacts.get("supported_types", ["workflow"])
        if not isinstance(supported, list) or not supported:
            raise ValueError("artifacts.supported_types must be a non-empty list")
        return {"enabled": bool(artifacts.get("enabled", True)), "supported_types": list(supported)}

    def get_storage_config(self) -> dict[str, Any]:
        """Get chat storage configuration."""
        storage = self._get_current_config().get("storage", {})
        store_type = storage.get("type", "sqlite")
        if store_type not in ("memory", "sqlite"):
            raise ValueError(f"Unknown storage type '{store_type}'")

        max_chats = storage.get("max_chats", 50)
        if not isinstance(max_chats, int) or max_chats < 1:
            raise ValueError("max_chats must be a positive integer")

        return {
            "type": store_type,
            "db_path": storage.get("db_path", "wpchat_history.db"),
            "max_chats": max_chats,
        }

    def get_mcp_config(self) -> dict[str, Any]:
        """Get MCP bridge launch configuration."""
        mcp_config = self._get_current_config().get("mcp", {})
        connection_timeout = mcp_config.get("connection_timeout", 30.0)
        if connection_timeout <= 0:
            raise ValueError("connection_timeout must be positive")
        return {
            "command": mcp_config.get("command", "npx"),
            "args": list(mcp_config.get("args", ["-y", "wpmcp@3.0.0"])),
            "env": dict(mcp_config.get("env") or {}),
            "connection_timeout": connection_timeout,
        }

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._get_current_config().get("logging", {})

    def reset_to_defaults(self) -> None:
        """Reset the runtime config file to the packaged defaults."""
        self.save_runtime_config(self._default_config.copy())


def reset_runtime_config_cli() -> None:
    """Console script that resets the runtime configuration file to defaults."""
    try:
        cfg = Configuration()
        cfg.reset_to_defaults()
        logging.info("✓ runtime configuration reset to defaults")
    except Exception as e:
        logging.error(f"Error resetting runtime configuration: {e}")
        sys.exit(1)
