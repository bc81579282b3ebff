"""Command-line session driver.

Reads user input, hands it to the ConversationManager and renders the
session events it produces. Input is read on a background thread so a
`quit` typed while a turn is running closes the session right away; any
other line typed meanwhile is queued as the next message.
"""

import argparse
import asyncio
import logging
import sys
import threading
from typing import TextIO

import httpx
from pydantic import ValidationError

from toolchat import __version__
from toolchat.config import ToolchatSettings
from toolchat.conversation import (
    ConversationManager,
    ConversationState,
    Diagnostic,
    SessionEvent,
    TextDeltaEvent,
    ToolCallFinished,
    ToolCallStarted,
    TurnFailed,
    is_close_command,
)
from toolchat.errors import ConfigurationError
from toolchat.llm import ModelClient
from toolchat.logging_setup import configure_logging
from toolchat.tools import ToolDispatcher, ToolRegistry, ToolServerClient

logger = logging.getLogger(__name__)


class SessionDriver:
    """Terminal front end for one conversation.

    Attributes:
        manager: The conversation being driven
        raw_input: Lines as typed by the user; None marks end of input
        output: Where events are rendered
    """

    def __init__(self, manager: ConversationManager, output: TextIO | None = None) -> None:
        self.manager = manager
        self.output = output or sys.stdout
        self.raw_input: asyncio.Queue[str | None] = asyncio.Queue()
        self._messages: asyncio.Queue[str | None] = asyncio.Queue()
        self._mid_line = False

    async def run(self) -> None:
        """Run the session until the user quits or the session closes."""
        router = asyncio.create_task(self._route_input(), name="input-router")
        try:
            for event in await self.manager.connection_status():
                self.render(event)

            while True:
                if self._messages.empty():
                    self._write("\nYou: ")
                message = await self._messages.get()
                if message is None:
                    break

                async for event in self.manager.handle(message):
                    self.render(event)
                if self.manager.state is ConversationState.CLOSED:
                    break
        finally:
            router.cancel()
            await self.manager.close()
            self._write("\nGoodbye!\n")

    async def _route_input(self) -> None:
        # Close commands act immediately, even in the middle of a turn
        while True:
            line = await self.raw_input.get()
            if line is None or is_close_command(line):
                await self.manager.close()
                await self._messages.put(None)
                return
            if line.strip():
                await self._messages.put(line)

    def render(self, event: SessionEvent) -> None:
        """Write one session event to the output."""
        if isinstance(event, TextDeltaEvent):
            if not self._mid_line:
                self._write("\nAssistant: ")
            self._write(event.text)
            self._mid_line = not event.text.endswith("\n")
            return

        if self._mid_line:
            self._write("\n")
            self._mid_line = False

        if isinstance(event, ToolCallStarted):
            self._write(f"[tool] {event.name} {event.arguments} ...\n")
        elif isinstance(event, ToolCallFinished):
            outcome = "done" if event.ok else "failed"
            self._write(f"[tool] {event.name} {outcome}: {event.detail}\n")
        elif isinstance(event, TurnFailed):
            prefix = "Fatal error" if event.fatal else "Error"
            self._write(f"{prefix}: {event.message}\n")
        elif isinstance(event, Diagnostic):
            self._write(f"[debug] {event.message}\n")

    def notice(self, text: str) -> None:
        """Write a line of session information outside any turn."""
        self._write(f"{text}\n")

    def _write(self, text: str) -> None:
        self.output.write(text)
        self.output.flush()


def start_stdin_reader(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> threading.Thread:
    """Feed stdin lines into `queue` from a daemon thread.

    A daemon thread is used because a blocked input() cannot be interrupted;
    it must not keep the process alive after the session ends.
    """

    def read() -> None:
        while True:
            try:
                line: str | None = input()
            except EOFError:
                line = None
            try:
                loop.call_soon_threadsafe(queue.put_nowait, line)
            except RuntimeError:
                # Event loop already closed
                return
            if line is None:
                return

    thread = threading.Thread(target=read, name="stdin-reader", daemon=True)
    thread.start()
    return thread


async def load_registry(client: ToolServerClient) -> ToolRegistry:
    """Fetch the tool catalog, falling back to no tools if the server is down."""
    try:
        return await ToolRegistry.from_server(client)
    except (httpx.HTTPError, ValidationError, ValueError) as e:
        logger.warning(f"Could not load tools from {client.base_url}: {e}")
        return ToolRegistry()


async def run_session(settings: ToolchatSettings, output: TextIO | None = None) -> None:
    """Connect to the model API and tool server and run an interactive session.

    Args:
        settings: Configuration snapshot with a non-empty api_key
        output: Stream to render to (default: stdout)
    """
    if settings.api_key is None:
        raise ConfigurationError("An API key is required to start a session")
    tool_client = ToolServerClient(settings.tools_addr, timeout=settings.tool_timeout)
    model_client = ModelClient(
        api_key=settings.api_key.get_secret_value(),
        api_base=settings.api_base,
        model=settings.model,
        temperature=settings.temperature,
    )

    try:
        registry = await load_registry(tool_client)
        dispatcher = ToolDispatcher(tool_client, registry, default_timeout=settings.tool_timeout)
        manager = ConversationManager(settings, model_client, dispatcher, registry)
        driver = SessionDriver(manager, output=output)

        if len(registry):
            driver.notice(f"Tools: {', '.join(registry.names())}")
        else:
            driver.notice(
                f"Tool server not available at {settings.tools_addr}; chatting without tools"
            )
        driver.notice("Type 'quit' or 'exit' to end the session.")

        start_stdin_reader(asyncio.get_running_loop(), driver.raw_input)
        try:
            await driver.run()
        finally:
            await manager.shutdown()
    finally:
        await model_client.close()
        await tool_client.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="toolchat",
        description="Chat with a language model that can run tools on a tool server",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"toolchat {__version__}",
    )

    parser.add_argument(
        "--api-key",
        type=str,
        default=None,
        help="Model API key (can be set via TOOLCHAT_API_KEY)",
    )

    parser.add_argument(
        "--api-base",
        type=str,
        default=None,
        help="Model API base URL (default: https://api.deepseek.com/v1, can be set via TOOLCHAT_API_BASE)",
    )

    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Model name (default: deepseek-chat, can be set via TOOLCHAT_MODEL)",
    )

    parser.add_argument(
        "--tools-addr",
        type=str,
        default=None,
        help="Tool server URL (default: http://127.0.0.1:50051, can be set via TOOLCHAT_TOOLS_ADDR)",
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Show diagnostics such as history size and tool connection status",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO, can be set via TOOLCHAT_LOG_LEVEL)",
    )

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> ToolchatSettings:
    """Build the settings snapshot, CLI args overriding environment variables.

    Raises:
        ConfigurationError: If the settings are invalid or no API key is set
    """
    overrides = {
        "api_key": args.api_key,
        "api_base": args.api_base,
        "model": args.model,
        "tools_addr": args.tools_addr,
        "verbose": args.verbose,
        "log_level": args.log_level,
    }
    settings_kwargs = {key: value for key, value in overrides.items() if value is not None}

    try:
        settings = ToolchatSettings(**settings_kwargs)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    if settings.api_key is None or not settings.api_key.get_secret_value():
        raise ConfigurationError(
            "An API key is required: pass --api-key or set TOOLCHAT_API_KEY"
        )
    return settings


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the toolchat CLI."""
    args = parse_args(argv)

    try:
        settings = build_settings(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    configure_logging(
        settings.resolved_log_dir,
        file_prefix="toolchat",
        level=settings.log_level,
        console_output=False,
    )
    logger.info(f"Starting session with model {settings.model} at {settings.api_base}")

    try:
        asyncio.run(run_session(settings))
    except KeyboardInterrupt:
        print("\nGoodbye!")
    return 0
