"""Streaming response parser for chat-completions SSE streams.

The parser sits between the raw byte stream of the model API and the
conversation manager. It turns chunks into StreamEvents:

- bytes are decoded incrementally, so a UTF-8 sequence split across chunks
  is held until complete;
- SSE `data:` payloads are decoded as chat-completion chunks;
- native tool calls (`delta.tool_calls`) are assembled per index and only
  emitted once the choice's `finish_reason` arrives;
- tool calls written into the text as ```tool fenced blocks are cut out of
  the text and emitted as tool calls too.

A parser is single-use: iterate it once, then build a new one for the next
request.
"""

import codecs
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator

from toolchat.llm.events import (
    StreamEnd,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCallFragment,
)

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
FENCE_OPEN = "```tool"
FENCE_CLOSE = "\n```"
_OPENER_LINE = re.compile(r"[ \t\r\f\v]*\n")
_OPENER_PENDING = re.compile(r"[ \t\r\f\v]*")


class _MalformedStream(Exception):
    def __init__(self, kind: str, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)


@dataclass
class _NativeCall:
    call_id: str = ""
    name: str = ""
    argument_parts: list[str] = field(default_factory=list)


def _partial_suffix(text: str, marker: str) -> int:
    """Length of the longest suffix of text that is a proper prefix of marker."""
    for size in range(min(len(marker) - 1, len(text)), 0, -1):
        if text.endswith(marker[:size]):
            return size
    return 0


def _decode_arguments(raw: str) -> dict[str, Any] | None:
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _expect_object(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise _MalformedStream("protocol", f"Stream {what} is not a JSON object")
    return value


class _FenceScanner:
    """Splits assistant text into plain text and ```tool blocks."""

    def __init__(self, next_id):
        self._buffer = ""
        self._in_block = False
        self._next_id = next_id

    def feed(self, text: str, out: list[StreamEvent]) -> None:
        self._buffer += text
        self._scan(out, final=False)

    def finish(self, out: list[StreamEvent]) -> None:
        self._scan(out, final=True)
        if self._in_block:
            raise _MalformedStream("incomplete", "Stream ended inside a ```tool block")

    def _scan(self, out: list[StreamEvent], final: bool) -> None:
        while True:
            if self._in_block:
                end = self._buffer.find(FENCE_CLOSE)
                if end < 0:
                    return
                body = self._buffer[:end]
                self._buffer = self._buffer[end + len(FENCE_CLOSE) :]
                self._in_block = False
                self._emit_block(body, out)
                continue

            start = self._buffer.find(FENCE_OPEN)
            if start < 0:
                keep = 0 if final else _partial_suffix(self._buffer, FENCE_OPEN)
                cut = len(self._buffer) - keep
                self._emit_text(self._buffer[:cut], out)
                self._buffer = self._buffer[cut:]
                return

            self._emit_text(self._buffer[:start], out)
            rest = self._buffer[start + len(FENCE_OPEN) :]
            opener = _OPENER_LINE.match(rest)
            if opener:
                self._in_block = True
                self._buffer = rest[opener.end() :]
            elif not final and _OPENER_PENDING.fullmatch(rest):
                # "```tool" seen, rest of its line not yet
                self._buffer = self._buffer[start:]
                return
            else:
                # e.g. "```toolbox": not a tool block
                self._emit_text(FENCE_OPEN, out)
                self._buffer = rest

    def _emit_text(self, text: str, out: list[StreamEvent]) -> None:
        if text:
            out.append(TextDelta(text))

    def _emit_block(self, body: str, out: list[StreamEvent]) -> None:
        call = self._parse_block(body)
        if call is None:
            logger.warning(f"Ignoring unparsable tool block: {body!r}")
            self._emit_text(f"{FENCE_OPEN}\n{body}{FENCE_CLOSE}", out)
            return
        out.append(call)

    def _parse_block(self, body: str) -> ToolCallFragment | None:
        # {"name": "...", "args": {...}}
        try:
            value = json.loads(body)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict) and isinstance(value.get("name"), str):
            raw_args = value.get("args", value.get("arguments", {}))
            if isinstance(raw_args, str):
                raw_args = _decode_arguments(raw_args)
            if isinstance(raw_args, dict) and value["name"]:
                return ToolCallFragment(
                    call_id=self._next_id(), name=value["name"], arguments=raw_args
                )
            return None

        # name: {"key": "value"}
        name, sep, raw_args = body.partition(":")
        name = name.strip()
        if sep and name and name.isidentifier():
            arguments = _decode_arguments(raw_args)
            if arguments is not None:
                return ToolCallFragment(
                    call_id=self._next_id(), name=name, arguments=arguments
                )
        return None


class StreamParser:
    """Single-use async iterator of StreamEvents over raw stream chunks.

    Args:
        chunks: Async iterable of raw chunks (bytes or str) in arrival order
        id_prefix: Prefix for call ids the parser has to invent (fenced
                   blocks, native calls without an id). Defaults to a random
                   prefix so ids stay unique across turns.
    """

    def __init__(
        self, chunks: AsyncIterable[bytes | str], id_prefix: str | None = None
    ) -> None:
        self._chunks = chunks
        self._id_prefix = id_prefix or f"call_{uuid.uuid4().hex[:8]}"
        self._id_counter = 0
        self._consumed = False
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._line_buffer = ""
        self._data_lines: list[str] = []
        self._native: dict[int, _NativeCall] = {}
        self._fence = _FenceScanner(self._new_call_id)
        self._finish_reason: str | None = None
        self._done = False

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._consumed:
            raise RuntimeError("StreamParser can only be iterated once")
        self._consumed = True
        return self._events()

    def _new_call_id(self) -> str:
        call_id = f"{self._id_prefix}_{self._id_counter}"
        self._id_counter += 1
        return call_id

    async def _events(self) -> AsyncIterator[StreamEvent]:
        iterator = aiter(self._chunks)
        try:
            while not self._done:
                try:
                    chunk = await anext(iterator)
                except StopAsyncIteration:
                    break
                except Exception as e:
                    logger.error(f"Model stream interrupted: {e}")
                    yield StreamError("transport", str(e) or type(e).__name__)
                    return

                out: list[StreamEvent] = []
                try:
                    self._feed(chunk, out)
                except _MalformedStream as e:
                    for event in out:
                        yield event
                    logger.error(f"Malformed model stream ({e.kind}): {e.message}")
                    yield StreamError(e.kind, e.message)
                    return
                for event in out:
                    yield event

            out = []
            try:
                self._finish(out)
            except _MalformedStream as e:
                for event in out:
                    yield event
                logger.error(f"Malformed model stream ({e.kind}): {e.message}")
                yield StreamError(e.kind, e.message)
                return
            for event in out:
                yield event
        finally:
            close = getattr(iterator, "aclose", None)
            if close is not None:
                await close()

    def _feed(self, chunk: bytes | str, out: list[StreamEvent]) -> None:
        if isinstance(chunk, bytes):
            try:
                text = self._decoder.decode(chunk)
            except UnicodeDecodeError as e:
                raise _MalformedStream("encoding", f"Invalid UTF-8 in stream: {e}")
        else:
            text = chunk

        self._line_buffer += text
        *lines, self._line_buffer = self._line_buffer.split("\n")
        for line in lines:
            self._handle_line(line.rstrip("\r"), out)
            if self._done:
                return

    def _finish(self, out: list[StreamEvent]) -> None:
        if not self._done:
            try:
                self._line_buffer += self._decoder.decode(b"", final=True)
            except UnicodeDecodeError as e:
                raise _MalformedStream("encoding", f"Truncated UTF-8 sequence: {e}")
            if self._line_buffer:
                self._handle_line(self._line_buffer.rstrip("\r"), out)
                self._line_buffer = ""
            if self._data_lines:
                self._dispatch_event(out)

        if not self._done and self._finish_reason is None:
            raise _MalformedStream(
                "incomplete", "Stream ended without completion marker"
            )

        self._flush_native(out)
        self._fence.finish(out)
        out.append(StreamEnd(self._finish_reason))

    def _handle_line(self, line: str, out: list[StreamEvent]) -> None:
        if not line:
            self._dispatch_event(out)
        elif line.startswith(":"):
            return
        elif line.startswith("data:"):
            value = line[5:]
            self._data_lines.append(value[1:] if value.startswith(" ") else value)
        # event:, id:, retry: carry nothing for chat completions

    def _dispatch_event(self, out: list[StreamEvent]) -> None:
        if not self._data_lines:
            return
        data = "\n".join(self._data_lines)
        self._data_lines = []

        if data.strip() == DONE_SENTINEL:
            self._done = True
            return

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise _MalformedStream("protocol", f"Invalid JSON in stream event: {e}")
        if not isinstance(payload, dict):
            raise _MalformedStream("protocol", "Stream event is not a JSON object")

        if payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise _MalformedStream("api", str(message or "Model API reported an error"))

        choices = payload.get("choices") or []
        if not isinstance(choices, list):
            raise _MalformedStream("protocol", "'choices' is not a list")
        if not choices:
            return
        choice = _expect_object(choices[0], "choice")
        delta = _expect_object(choice.get("delta") or {}, "delta")

        content = delta.get("content")
        if content:
            if not isinstance(content, str):
                raise _MalformedStream("protocol", "'delta.content' is not a string")
            self._fence.feed(content, out)

        tool_calls = delta.get("tool_calls") or []
        if not isinstance(tool_calls, list):
            raise _MalformedStream("protocol", "'delta.tool_calls' is not a list")
        for fragment in tool_calls:
            self._absorb_tool_fragment(_expect_object(fragment, "tool call fragment"))

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            if not isinstance(finish_reason, str):
                raise _MalformedStream("protocol", "'finish_reason' is not a string")
            self._finish_reason = finish_reason
            self._flush_native(out)

    def _absorb_tool_fragment(self, fragment: dict[str, Any]) -> None:
        index = fragment.get("index", 0)
        if not isinstance(index, int) or isinstance(index, bool):
            raise _MalformedStream("protocol", "Tool call index is not an integer")
        call_id = fragment.get("id")
        if call_id is not None and not isinstance(call_id, str):
            raise _MalformedStream("protocol", "Tool call id is not a string")
        function = _expect_object(fragment.get("function") or {}, "tool call function")
        name = function.get("name")
        if name is not None and not isinstance(name, str):
            raise _MalformedStream("protocol", "Tool call name is not a string")
        arguments = function.get("arguments")
        if arguments is not None and not isinstance(arguments, str):
            raise _MalformedStream("protocol", "Tool call arguments are not a string")

        call = self._native.setdefault(index, _NativeCall())
        if call_id:
            call.call_id = call_id
        if name:
            call.name += name
        if arguments:
            call.argument_parts.append(arguments)

    def _flush_native(self, out: list[StreamEvent]) -> None:
        for index in sorted(self._native):
            call = self._native[index]
            if not call.name:
                raise _MalformedStream("protocol", f"Tool call {index} has no name")
            arguments = _decode_arguments("".join(call.argument_parts))
            if arguments is None:
                raise _MalformedStream(
                    "protocol",
                    f"Arguments of tool call '{call.name}' are not a complete JSON object",
                )
            out.append(
                ToolCallFragment(
                    call_id=call.call_id or self._new_call_id(),
                    name=call.name,
                    arguments=arguments,
                )
            )
        self._native.clear()
