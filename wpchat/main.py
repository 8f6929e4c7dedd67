"""
Main application entry point - interactive terminal chat with graceful shutdown handling.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any, TextIO

from wpchat.chat import ChatController, load_attachment
from wpchat.clients import AgentStreamClient, BridgeConfig, EnvCredentialProvider, MCPBridgeRegistry
from wpchat.config import Configuration
from wpchat.history import ChatStore, create_store
from wpchat.stream.artifacts import ArtifactNotFoundError
from wpchat.stream.models import Artifact, AttachedFile, ConversationTurn, SessionOutcome
from wpchat.stream.render import render_artifact, render_block, render_text, render_transcript

HELP_TEXT = """Commands:
  /new               start a new chat
  /chats             list saved chats
  /open <thread>     open a saved chat
  /delete            delete the current chat
  /attach <path>     attach a file to the next message
  /artifact          show the active artifact
  /version <id>      switch the active artifact to another version
  /tools             list WordPress MCP tools
  /quit              exit
Ctrl+C while a reply is streaming stops it."""


def _configure_advanced_logging(logging_config: dict[str, Any]) -> None:
    """
    Logging configuration with hierarchical loggers and feature control.

    Levels are set on parent loggers so child modules inherit them. Feature
    flags are stored on the logging module for should_log_feature().
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    global_level = logging_config.get("level", "WARNING")
    logging.getLogger().setLevel(level_map.get(global_level, logging.WARNING))

    module_logger_map = {
        "stream": {
            "loggers": ["wpchat.stream"],
            "default_level": "INFO",
            "features": ["records", "tool_events", "artifacts"],
        },
        "clients": {
            "loggers": ["wpchat.clients"],
            "default_level": "INFO",
            "features": ["http_requests"],
        },
        "history": {
            "loggers": ["wpchat.history"],
            "default_level": "WARNING",
            "features": [],
        },
        "mcp": {
            "loggers": ["mcp", "wpchat.clients.mcp_bridge"],
            "default_level": "INFO",
            "features": [],
        },
    }

    modules_config = logging_config.get("modules", {})

    for module_name, module_config in modules_config.items():
        if not isinstance(module_config, dict):
            continue

        module_level = module_config.get(
            "level", module_logger_map.get(module_name, {}).get("default_level", global_level)
        )
        level_value = level_map.get(module_level, logging.WARNING)

        for logger_name in module_logger_map.get(module_name, {}).get("loggers", []):
            logging.getLogger(logger_name).setLevel(level_value)

        if not hasattr(logging, "_module_features"):
            logging._module_features = {}  # type: ignore[attr-defined]
        logging._module_features[module_name] = module_config.get("enable_features", {})  # type: ignore[attr-defined]


def _on_logging_config_change(new_config: dict[str, Any]) -> None:
    """Reconfigure logging whenever the runtime configuration file changes."""
    try:
        logging_config = new_config.get("logging", {})
        if logging_config:
            _configure_advanced_logging(logging_config)
            logging.info("🔄 Logging configuration updated in real-time")
    except Exception as e:
        logging.error(f"❌ Failed to update logging configuration: {e}")


class TerminalPrinter:
    """Render listener that prints only what changed since the last record."""

    def __init__(self, out: TextIO | None = None):
        self.out = out or sys.stdout
        self._printed: dict[tuple[str, int], str] = {}
        self._artifact_key: tuple[str, str | None, bool] | None = None

    def reset(self) -> None:
        self._printed.clear()
        self._artifact_key = None

    def __call__(self, turns: list[ConversationTurn], active: Artifact | None) -> None:
        if turns and turns[-1].role == "assistant":
            self._print_turn(turns[-1])
        self._print_artifact(active)
        self.out.flush()

    def _print_turn(self, turn: ConversationTurn) -> None:
        for index, event in enumerate(turn.events):
            block = render_block(event)
            if block is None:
                continue
            key = (turn.id, index)
            previous = self._printed.get(key)

            if block.kind == "tool":
                if previous == block.status:
                    continue
                marker = "…" if block.status == "pending" else "✓"
                self.out.write(f"\n{block.icon} {block.display_name} {marker}\n")
                self._printed[key] = block.status or ""
            elif previous is None:
                prefix = "⚠️ " if block.kind == "error" else ""
                self.out.write(f"{prefix}{block.text}")
                self._printed[key] = block.text
            elif block.text.startswith(previous):
                self.out.write(block.text[len(previous) :])
                self._printed[key] = block.text

    def _print_artifact(self, active: Artifact | None) -> None:
        rendered = render_artifact(active)
        if rendered is None:
            self._artifact_key = None
            return
        current = active.current_version_id if active is not None else None
        key = (rendered.id, current, rendered.loading)
        if key == self._artifact_key:
            return
        self._artifact_key = key
        if rendered.loading:
            self.out.write(f"\n▶ {rendered.title} (generating...)\n")
        else:
            self.out.write(
                f"\n▶ {rendered.title} v{rendered.version_number}/{rendered.version_count}"
                f" [{rendered.id}] - {rendered.description}\n"
            )


async def _list_tools(registry: MCPBridgeRegistry, config: Configuration) -> None:
    credentials = EnvCredentialProvider().get_credentials()
    if credentials is None:
        print("WordPress credentials are not configured (WORDPRESS_URL, WORDPRESS_USERNAME, WORDPRESS_APP_PASSWORD).")
        return

    bridge_config = BridgeConfig.from_settings(config.get_mcp_config(), credentials)
    try:
        handle = await registry.acquire(bridge_config)
    except Exception as e:
        logging.error(f"Could not start the WordPress MCP server: {e}")
        print(f"Could not start the WordPress MCP server: {e}")
        return

    try:
        tools = await registry.list_tools(handle)
        for tool in tools:
            summary = (tool.description or "").strip().splitlines()
            print(f"  {tool.name}: {summary[0] if summary else ''}")
    finally:
        await registry.release(handle)


async def _list_chats(store: ChatStore, current_thread: str) -> None:
    chats = await store.list_chats()
    if not chats:
        print("No saved chats.")
        return
    for chat in chats:
        marker = "*" if chat.thread_id == current_thread else " "
        print(f"{marker} {chat.thread_id}  {chat.title}  ({chat.turn_count} turns, {chat.updated_at:%Y-%m-%d %H:%M})")


def _show_artifact(controller: ChatController) -> None:
    rendered = render_artifact(controller.active_artifact)
    if rendered is None:
        print("No active artifact.")
        return
    if rendered.loading:
        print(f"{rendered.title} (generating...)")
        return
    print(f"{rendered.title} v{rendered.version_number}/{rendered.version_count}")
    print(f"versions: {', '.join(rendered.version_ids)}")
    print(rendered.content)


async def _read_line(prompt: str) -> str | None:
    try:
        return await asyncio.get_running_loop().run_in_executor(None, input, prompt)
    except EOFError:
        return None


async def _repl(
    controller: ChatController,
    store: ChatStore,
    registry: MCPBridgeRegistry,
    config: Configuration,
    printer: TerminalPrinter,
) -> None:
    pending_attachments: list[AttachedFile] = []
    print("WordPress chat. Type /help for commands.")

    while True:
        line = await _read_line("\nYou: ")
        if line is None:
            break
        line = line.strip()
        if not line:
            continue

        if line.startswith("/"):
            command, _, argument = line.partition(" ")
            argument = argument.strip()

            if command in ("/quit", "/exit"):
                break
            if command == "/help":
                print(HELP_TEXT)
            elif command == "/new":
                thread_id = await controller.new_chat()
                printer.reset()
                print(f"New chat {thread_id}")
            elif command == "/chats":
                await _list_chats(store, controller.thread_id)
            elif command == "/open":
                if await controller.select_chat(argument):
                    printer.reset()
                    print(render_text(render_transcript(controller.turns, controller.active_artifact)))
                else:
                    print(f"No chat {argument!r}")
            elif command == "/delete":
                thread_id = await controller.discard_chat()
                printer.reset()
                print(f"Chat deleted. New chat {thread_id}")
            elif command == "/attach":
                try:
                    pending_attachments.append(load_attachment(argument))
                    print(f"Attached {argument}")
                except OSError as e:
                    print(f"Cannot attach {argument!r}: {e}")
            elif command == "/artifact":
                _show_artifact(controller)
            elif command == "/version":
                try:
                    controller.switch_artifact_version(argument)
                except ArtifactNotFoundError:
                    print(f"No version {argument!r} on the active artifact")
            elif command == "/tools":
                await _list_tools(registry, config)
            else:
                print(f"Unknown command {command}. Type /help for commands.")
            continue

        print("Assistant: ", end="", flush=True)
        attachments, pending_attachments = pending_attachments, []
        outcome = await controller.send_message(line, attachments)
        if outcome is SessionOutcome.CANCELLED:
            print("\n(stopped)")
        else:
            print()


async def main() -> None:
    """Main entry point - interactive chat with graceful shutdown handling."""
    config = Configuration()

    logging_config = config.get_logging_config()

    if "format" in logging_config:
        for handler in logging.getLogger().handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setFormatter(logging.Formatter(logging_config["format"]))

    _configure_advanced_logging(logging_config)
    config.subscribe_to_changes(_on_logging_config_change)

    store = create_store(config.get_storage_config())
    registry = MCPBridgeRegistry()

    async with AgentStreamClient(config) as agent_client:
        controller = ChatController(
            agent_client.stream,
            store,
            EnvCredentialProvider(),
            streaming_config=config.get_streaming_config(),
            artifact_config=config.get_artifact_config(),
        )
        printer = TerminalPrinter()
        controller.subscribe(printer)

        def signal_handler() -> None:
            """Ctrl+C stops a streaming reply; otherwise it only prints a hint."""
            if controller.is_streaming:
                controller.cancel()
            else:
                print("\n(use /quit or Ctrl+D to exit)")

        if sys.platform != "win32":
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, signal_handler)

        try:
            await config.start_watching()
            await _repl(controller, store, registry, config, printer)
        except KeyboardInterrupt:
            logging.info("Keyboard interrupt received, shutting down...")
        finally:
            await controller.close()
            await registry.close_all()
            await store.close()
            await config.stop_watching()
            if sys.platform != "win32":
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
            logging.info("Application shutdown complete")


# Configure logging for the application
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")


def cli_main() -> None:
    """Synchronous CLI entrypoint that runs the async main."""
    asyncio.run(main())


if __name__ == "__main__":
    cli_main()
