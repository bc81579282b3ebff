"""Conversation manager: the orchestration state machine.

The manager owns the conversation history and drives each user turn:

1. The user message is appended and a model stream is opened.
2. Stream events are consumed in order. Text is forwarded for display,
   complete tool calls are collected.
3. When the stream ends with tool calls, the assistant message is appended,
   every call is dispatched concurrently, and once all results are in, one
   tool message per call is appended in request order before the next model
   stream is opened.
4. When the stream ends without tool calls the turn is complete.

Tool failures are folded into the conversation as tool messages. A broken
model stream, or an explicit close, ends the session.
"""

import asyncio
import logging
from contextlib import suppress
from typing import Any, AsyncIterator, Awaitable, Callable

from toolchat.config import ToolchatSettings
from toolchat.conversation.formatting import (
    build_system_prompt,
    format_tool_result,
    messages_to_api_format,
    summarize_tool_result,
)
from toolchat.conversation.types import (
    AssistantMessage,
    ConversationState,
    Diagnostic,
    Message,
    SessionClosed,
    SessionEvent,
    SystemMessage,
    TextDeltaEvent,
    ToolCallFinished,
    ToolCallStarted,
    ToolMessage,
    TurnComplete,
    TurnFailed,
    UserMessage,
)
from toolchat.llm.client import ModelClient
from toolchat.llm.events import (
    StreamEnd,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCallFragment,
)
from toolchat.llm.parser import StreamParser
from toolchat.tools.dispatcher import ToolDispatcher
from toolchat.tools.registry import ToolRegistry
from toolchat.tools.types import FailureKind, ToolCallRequest, ToolCallResult

logger = logging.getLogger(__name__)

CLOSE_COMMANDS = frozenset({"quit", "exit"})


def is_close_command(text: str) -> bool:
    """Check whether user input asks to end the session."""
    return text.strip().lower() in CLOSE_COMMANDS


class ConversationManager:
    """Drives a conversation between the user, the model and the tool server.

    Attributes:
        settings: Immutable configuration snapshot
        model_client: Client used to open model streams
        dispatcher: Dispatcher used to run tool calls
        registry: Tools advertised to the model
    """

    def __init__(
        self,
        settings: ToolchatSettings,
        model_client: ModelClient,
        dispatcher: ToolDispatcher,
        registry: ToolRegistry,
        parser_factory: Callable[[AsyncIterator[bytes]], StreamParser] = StreamParser,
    ) -> None:
        self.settings = settings
        self.model_client = model_client
        self.dispatcher = dispatcher
        self.registry = registry
        self._parser_factory = parser_factory
        self._history: list[Message] = []
        self._state = ConversationState.IDLE
        self._closed = asyncio.Event()
        self._outstanding: dict[str, asyncio.Task[ToolCallResult]] = {}

        # Sent ahead of the history on every request, never part of it
        self.system_prompt: SystemMessage | None = None
        if len(registry):
            self.system_prompt = SystemMessage(content=build_system_prompt(registry.list()))

    @property
    def history(self) -> tuple[Message, ...]:
        """Read-only view of the conversation history."""
        return tuple(self._history)

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def outstanding(self) -> list[str]:
        """Call ids dispatched by this session that have not finished yet."""
        return list(self._outstanding)

    async def connection_status(self) -> list[SessionEvent]:
        """Diagnostics about the tool server connection (verbose mode only)."""
        if not self.settings.verbose:
            return []
        connected = await self.dispatcher.client.check_connection()
        status = "connected" if connected else "not reachable"
        return [
            Diagnostic(
                f"Tool server {self.dispatcher.client.base_url} {status}, "
                f"{len(self.registry)} tools available"
            )
        ]

    async def handle(self, command: str) -> AsyncIterator[SessionEvent]:
        """Handle one line of user input.

        `quit` and `exit` (any case) close the session; anything else is sent
        to the model as a user message.
        """
        if is_close_command(command):
            await self.close()
            yield SessionClosed()
            return
        async for event in self.submit(command):
            yield event

    async def close(self) -> None:
        """Close the session.

        An active model stream is cancelled. Tool calls already dispatched are
        left to finish, but their results are discarded.
        """
        if self._state is ConversationState.CLOSED:
            return
        logger.info(
            f"Closing session in state {self._state}, "
            f"{len(self._outstanding)} tool calls outstanding"
        )
        self._state = ConversationState.CLOSED
        self._closed.set()

    async def shutdown(self, grace: float = 5.0) -> None:
        """Close the session and wait for outstanding tool calls to drain.

        Calls still running after `grace` seconds are cancelled. Their
        results are discarded either way.
        """
        await self.close()
        tasks = list(self._outstanding.values())
        if not tasks:
            return
        logger.info(f"Waiting up to {grace:.0f}s for {len(tasks)} outstanding tool calls")
        _, pending = await asyncio.wait(tasks, timeout=grace)
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def submit(self, text: str) -> AsyncIterator[SessionEvent]:
        """Run one user turn, including automatic follow-up model turns.

        Args:
            text: The user's message

        Yields:
            SessionEvent: Display events, ending with TurnComplete, TurnFailed
                          or SessionClosed

        Raises:
            RuntimeError: If a turn is already in progress
        """
        if self._state is ConversationState.CLOSED:
            yield SessionClosed()
            return
        if self._state is not ConversationState.IDLE:
            raise RuntimeError(f"Cannot submit while {self._state}")

        self._append(UserMessage(content=text))
        self._state = ConversationState.AWAITING_MODEL
        tool_rounds = 0

        try:
            while True:
                text_parts: list[str] = []
                requests: list[ToolCallRequest] = []
                failure: StreamError | None = None

                events = aiter(
                    self._parser_factory(
                        self.model_client.chat_stream(
                            self._request_messages(),
                            self.registry.to_model_tools() or None,
                        )
                    )
                )
                try:
                    while True:
                        closed, event = await self._race_close(_pull(events))
                        if closed:
                            yield SessionClosed()
                            return
                        if isinstance(event, TextDelta):
                            text_parts.append(event.text)
                            yield TextDeltaEvent(event.text)
                        elif isinstance(event, ToolCallFragment):
                            requests.append(
                                ToolCallRequest(
                                    call_id=event.call_id,
                                    name=event.name,
                                    arguments=event.arguments,
                                )
                            )
                        elif isinstance(event, StreamEnd):
                            break
                        else:
                            failure = event
                            break
                finally:
                    await events.aclose()

                if failure is not None:
                    # The partial assistant message is dropped
                    logger.error(f"Model stream failed ({failure.kind}): {failure.message}")
                    self._state = ConversationState.CLOSED
                    self._closed.set()
                    yield TurnFailed(
                        f"Model stream failed ({failure.kind}): {failure.message}",
                        fatal=True,
                    )
                    yield SessionClosed()
                    return

                self._append(
                    AssistantMessage(content="".join(text_parts), tool_calls=tuple(requests))
                )

                if not requests:
                    self._state = ConversationState.IDLE
                    yield TurnComplete()
                    if self.settings.verbose:
                        yield Diagnostic(f"{len(self._history)} messages in history")
                    return

                self._state = ConversationState.AWAITING_TOOLS
                for request in requests:
                    yield ToolCallStarted(request.call_id, request.name, request.arguments)

                if tool_rounds >= self.settings.max_tool_rounds:
                    for event in self._refuse(requests):
                        yield event
                    self._state = ConversationState.IDLE
                    yield TurnFailed(
                        f"Stopped after {tool_rounds} rounds of tool calls", fatal=False
                    )
                    return

                if self._closed.is_set():
                    yield SessionClosed()
                    return

                tasks = self._dispatch_all(requests)
                closed, _ = await self._race_close(asyncio.wait(tasks))
                if closed:
                    logger.info(f"Discarding results of {len(self._outstanding)} tool calls")
                    yield SessionClosed()
                    return

                for request, task in zip(requests, tasks):
                    result = _task_result(request, task)
                    self._append(
                        ToolMessage(
                            tool_call_id=result.call_id,
                            tool_name=result.name,
                            content=format_tool_result(result),
                        )
                    )
                    yield ToolCallFinished(
                        call_id=result.call_id,
                        name=result.name,
                        ok=result.ok,
                        detail=summarize_tool_result(result),
                    )

                tool_rounds += 1
                self._state = ConversationState.AWAITING_MODEL
                if self.settings.verbose:
                    yield Diagnostic(f"{len(self._history)} messages in history")
        finally:
            if self._state in (
                ConversationState.AWAITING_MODEL,
                ConversationState.AWAITING_TOOLS,
            ):
                # Abandoned mid-turn: the history may end in unanswered tool calls
                logger.warning("Turn abandoned by its consumer; closing session")
                self._state = ConversationState.CLOSED
                self._closed.set()

    def _dispatch_all(self, requests: list[ToolCallRequest]) -> list[asyncio.Task]:
        deadline = self.dispatcher.deadline_after(self.settings.tool_timeout)
        tasks = []
        for request in requests:
            logger.info(f"Dispatching tool call {request.name} ({request.call_id})")
            task = asyncio.create_task(
                self.dispatcher.dispatch(request, deadline), name=f"tool-{request.call_id}"
            )
            self._outstanding[request.call_id] = task
            task.add_done_callback(
                lambda _task, call_id=request.call_id: self._outstanding.pop(call_id, None)
            )
            tasks.append(task)
        return tasks

    def _refuse(self, requests: list[ToolCallRequest]) -> list[SessionEvent]:
        events: list[SessionEvent] = []
        for request in requests:
            result = ToolCallResult.failed(
                request,
                FailureKind.UNAVAILABLE,
                "Tool call limit for this turn reached; answer the user directly",
            )
            self._append(
                ToolMessage(
                    tool_call_id=result.call_id,
                    tool_name=result.name,
                    content=format_tool_result(result),
                )
            )
            events.append(
                ToolCallFinished(
                    result.call_id, result.name, ok=False, detail=summarize_tool_result(result)
                )
            )
        return events

    async def _race_close(self, awaitable: Awaitable[Any]) -> tuple[bool, Any]:
        """Await something unless the session closes first.

        Returns:
            (True, None) if the session closed first, else (False, result).
            On close the awaited work is cancelled; tasks it was merely
            waiting on are not.
        """
        work = asyncio.ensure_future(awaitable)
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait(
                {work, closed}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            closed.cancel()

        if closed in done or self._closed.is_set():
            if not work.done():
                work.cancel()
                with suppress(asyncio.CancelledError):
                    await work
            return True, None
        return False, work.result()

    def _request_messages(self) -> list[dict[str, Any]]:
        messages: list[Message] = list(self._history)
        if self.system_prompt is not None:
            messages.insert(0, self.system_prompt)
        return messages_to_api_format(messages)

    def _append(self, message: Message) -> None:
        self._history.append(message)
        logger.debug(f"Appended {message.role} message, history size {len(self._history)}")


async def _pull(events: AsyncIterator[StreamEvent]) -> StreamEvent:
    try:
        return await anext(events)
    except StopAsyncIteration:
        return StreamError("incomplete", "Stream ended without a terminal event")


def _task_result(request: ToolCallRequest, task: asyncio.Task) -> ToolCallResult:
    try:
        return task.result()
    except Exception as e:
        logger.exception(f"Dispatch of {request.name} ({request.call_id}) crashed")
        return ToolCallResult.failed(request, FailureKind.UNAVAILABLE, str(e))
