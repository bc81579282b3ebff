"""Tool call dispatcher.

This module turns ToolCallRequests from the model into remote calls on the
tool server and always answers with a ToolCallResult, never an exception:

- Requests are validated against the registry before any network I/O.
- Connection failures are retried once on a fresh connection. Failures that
  leave the outcome ambiguous (the request may have reached the tool) are
  only retried for idempotent tools.
- Each call runs under an absolute deadline, shared between its attempts.
- Tool-side domain errors are reported as-is and never retried.
"""

import asyncio
import logging
from dataclasses import dataclass, field

import httpx
from pydantic import ValidationError

from toolchat.tools.client import ToolServerClient
from toolchat.tools.protocol import ExecuteResponse
from toolchat.tools.registry import ToolRegistry
from toolchat.tools.types import (
    FailureKind,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
)

logger = logging.getLogger(__name__)

# Raised before the request left the client: the tool cannot have run
_NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)
_TRANSIENT_STATUS = {502, 503, 504}
MAX_ATTEMPTS = 2


@dataclass
class PendingCall:
    """In-flight state of one dispatched call."""

    request: ToolCallRequest
    descriptor: ToolDescriptor
    deadline: float
    attempts: int = 0
    errors: list[str] = field(default_factory=list)


class _TransientFailure(Exception):
    """An attempt failed in a way that may succeed on a fresh connection."""

    def __init__(self, message: str, request_sent: bool):
        self.message = message
        self.request_sent = request_sent
        super().__init__(message)


class ToolDispatcher:
    """Dispatches validated tool calls to the tool server.

    Attributes:
        client: Shared connection to the tool server
        registry: Registry used to resolve and validate calls
        default_timeout: Seconds allowed per call when no deadline is given
    """

    def __init__(
        self,
        client: ToolServerClient,
        registry: ToolRegistry,
        default_timeout: float = 30.0,
    ) -> None:
        self.client = client
        self.registry = registry
        self.default_timeout = default_timeout
        self._pending: dict[str, PendingCall] = {}
        self._dispatched: set[str] = set()

    @property
    def in_flight(self) -> list[str]:
        """Call ids that have been dispatched but not yet resolved."""
        return list(self._pending)

    def deadline_after(self, seconds: float | None = None) -> float:
        """Absolute deadline `seconds` from now on the running loop's clock."""
        timeout = self.default_timeout if seconds is None else seconds
        return asyncio.get_running_loop().time() + timeout

    async def dispatch(
        self, request: ToolCallRequest, deadline: float | None = None
    ) -> ToolCallResult:
        """Run one tool call and return its terminal result.

        Args:
            request: The model's tool call
            deadline: Absolute loop time by which the call must finish
                      (default: now + default_timeout)

        Returns:
            ToolCallResult: Success with the tool's payload, or a typed failure
        """
        if request.call_id in self._dispatched:
            logger.warning(f"Refusing duplicate dispatch of call {request.call_id}")
            return ToolCallResult.failed(
                request,
                FailureKind.INVALID_ARGUMENT,
                f"Tool call '{request.call_id}' was already dispatched",
            )
        self._dispatched.add(request.call_id)

        descriptor = self.registry.resolve(request.name)
        if descriptor is None:
            logger.info(f"Model requested unknown tool '{request.name}'")
            return ToolCallResult.failed(
                request,
                FailureKind.NOT_FOUND,
                f"Unknown tool '{request.name}'. Available tools: "
                f"{', '.join(self.registry.names()) or 'none'}",
            )

        try:
            arguments = self.registry.validate_arguments(request.name, request.arguments)
        except ValidationError as e:
            logger.info(f"Invalid arguments for {request.name} ({request.call_id}): {e}")
            return ToolCallResult.failed(
                request, FailureKind.INVALID_ARGUMENT, _format_validation_error(e)
            )

        if deadline is None:
            deadline = self.deadline_after()

        pending = PendingCall(request=request, descriptor=descriptor, deadline=deadline)
        self._pending[request.call_id] = pending
        try:
            return await self._run(pending, arguments)
        finally:
            del self._pending[request.call_id]

    async def _run(self, pending: PendingCall, arguments: dict) -> ToolCallResult:
        request = pending.request
        loop = asyncio.get_running_loop()

        while True:
            remaining = pending.deadline - loop.time()
            if remaining <= 0:
                return self._deadline_exceeded(pending)

            pending.attempts += 1
            last = pending.attempts >= MAX_ATTEMPTS
            # leave an equal share of the deadline for each remaining attempt
            attempt_timeout = min(
                self.client.timeout, remaining / (MAX_ATTEMPTS - pending.attempts + 1)
            )
            generation = self.client.generation
            logger.debug(
                f"Dispatching {request.name} ({request.call_id}), "
                f"attempt {pending.attempts}, {remaining:.1f}s left"
            )

            try:
                async with asyncio.timeout_at(pending.deadline):
                    response = await self._attempt(request, arguments, attempt_timeout, last)
                return self._map_response(request, response)
            except TimeoutError:
                return self._deadline_exceeded(pending)
            except _TransientFailure as e:
                failure = e
            except _NOT_SENT_ERRORS as e:
                failure = _TransientFailure(_describe(e), request_sent=False)
            except httpx.TransportError as e:
                failure = _TransientFailure(_describe(e), request_sent=True)

            pending.errors.append(failure.message)
            logger.warning(
                f"Transport failure for {request.name} ({request.call_id}) "
                f"on attempt {pending.attempts}: {failure.message}"
            )

            if failure.request_sent and not pending.descriptor.idempotent:
                return ToolCallResult.failed(
                    request,
                    FailureKind.UNKNOWN_OUTCOME,
                    f"Connection lost during a call to non-idempotent tool "
                    f"'{request.name}'; it may or may not have run: {failure.message}",
                )

            if pending.attempts >= MAX_ATTEMPTS:
                return ToolCallResult.failed(
                    request,
                    FailureKind.UNAVAILABLE,
                    f"Tool server unavailable after {pending.attempts} attempts: "
                    f"{'; '.join(pending.errors)}",
                )

            await self.client.reconnect(generation)

    async def _attempt(
        self,
        request: ToolCallRequest,
        arguments: dict,
        timeout: float,
        last: bool,
    ) -> httpx.Response:
        """Send one execute request.

        Every attempt but the last is bounded by its own timeout, so a hung
        connection still leaves time to retry on a fresh one. The last
        attempt runs until the call's deadline.
        """
        if last:
            return await self.client.execute(
                request.name, request.call_id, arguments, timeout=timeout
            )
        try:
            async with asyncio.timeout(timeout):
                return await self.client.execute(
                    request.name, request.call_id, arguments, timeout=timeout
                )
        except TimeoutError:
            raise _TransientFailure(
                f"No answer within {timeout:.2f}s", request_sent=True
            ) from None

    def _map_response(
        self, request: ToolCallRequest, response: httpx.Response
    ) -> ToolCallResult:
        status = response.status_code

        if status in _TRANSIENT_STATUS:
            raise _TransientFailure(f"HTTP {status}", request_sent=True)
        if status == 404:
            return ToolCallResult.failed(
                request,
                FailureKind.NOT_FOUND,
                f"Tool server does not provide '{request.name}'",
            )
        if status in (400, 422):
            return ToolCallResult.failed(
                request, FailureKind.INVALID_ARGUMENT, _error_detail(response)
            )
        if status >= 400:
            return ToolCallResult.failed(
                request,
                FailureKind.TOOL_ERROR,
                f"Tool server error {status}: {_error_detail(response)}",
            )

        try:
            body = ExecuteResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"Malformed response for {request.name} ({request.call_id}): {e}")
            return ToolCallResult.failed(
                request, FailureKind.UNAVAILABLE, "Malformed response from tool server"
            )

        if body.success:
            logger.info(f"Tool {request.name} ({request.call_id}) succeeded")
            return ToolCallResult.success(request, body.data)

        logger.info(f"Tool {request.name} ({request.call_id}) reported: {body.error}")
        return ToolCallResult.failed(
            request, FailureKind.TOOL_ERROR, body.error or "Tool reported an unknown error"
        )

    def _deadline_exceeded(self, pending: PendingCall) -> ToolCallResult:
        request = pending.request
        logger.warning(f"Deadline exceeded for {request.name} ({request.call_id})")
        return ToolCallResult.failed(
            request,
            FailureKind.UNAVAILABLE,
            f"Tool '{request.name}' did not answer before its deadline",
        )


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    return str(detail) if detail else response.text or f"HTTP {response.status_code}"


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "arguments"
        problems.append(f"{location}: {item['msg']}")
    return "Invalid arguments: " + "; ".join(problems)
