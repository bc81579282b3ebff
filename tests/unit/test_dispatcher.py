"""Unit tests for the tool call dispatcher.

The tool server is replaced by an httpx.MockTransport that counts requests,
so each test can assert exactly how many times a call reached the network.
"""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from toolchat.tools import (
    FailureKind,
    ToolCallRequest,
    ToolDispatcher,
    ToolRegistry,
    ToolServerClient,
)


class CountingServer:
    """Mock tool server answering from a list of scripted outcomes.

    Each outcome is an httpx.Response, an exception to raise, or a coroutine
    function producing either. The last outcome repeats.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if callable(outcome):
            outcome = await outcome(request)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @property
    def calls(self) -> int:
        return len(self.requests)


def ok(data) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "data": data, "error": None})


@pytest.fixture
def registry(analyzer_descriptor, file_tool_descriptor):
    return ToolRegistry([analyzer_descriptor, file_tool_descriptor])


@pytest_asyncio.fixture
async def make_dispatcher(registry):
    clients = []

    def factory(
        server: CountingServer, timeout: float = 5.0, client_timeout: float = 30.0
    ) -> ToolDispatcher:
        client = ToolServerClient(
            "http://tools.test", timeout=client_timeout, transport=httpx.MockTransport(server)
        )
        clients.append(client)
        return ToolDispatcher(client, registry, default_timeout=timeout)

    yield factory
    for client in clients:
        await client.close()


def analyze(call_id="call_1", **arguments) -> ToolCallRequest:
    return ToolCallRequest(call_id, "file_analyzer", arguments or {"path": "/tmp"})


def convert(call_id="call_1") -> ToolCallRequest:
    return ToolCallRequest(
        call_id, "file_tool", {"operation": "convert", "input": "a.docx", "output": "a.pdf"}
    )


@pytest.mark.asyncio
async def test_successful_call(make_dispatcher):
    """Test that a successful response yields the tool's payload."""
    server = CountingServer(ok({"file_count": 3}))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(analyze())

    assert result.ok
    assert result.content == {"file_count": 3}
    assert result.call_id == "call_1"
    assert server.calls == 1
    request = server.requests[0]
    assert request.url.path == "/api/v1/tools/file_analyzer/execute"
    assert json.loads(request.content) == {"call_id": "call_1", "arguments": {"path": "/tmp"}}


@pytest.mark.asyncio
async def test_invalid_arguments_never_reach_network(make_dispatcher):
    """Test that schema-invalid calls fail locally."""
    server = CountingServer(ok(None))
    dispatcher = make_dispatcher(server)

    results = [
        await dispatcher.dispatch(analyze("c1", path=5)),
        await dispatcher.dispatch(ToolCallRequest("c2", "file_analyzer", {})),
        await dispatcher.dispatch(analyze("c3", path="/tmp", depth=2)),
    ]

    assert server.calls == 0
    assert all(r.failure.kind is FailureKind.INVALID_ARGUMENT for r in results)
    assert "path" in results[0].failure.message


@pytest.mark.asyncio
async def test_unknown_tool_is_not_found(make_dispatcher):
    """Test that unknown tools fail without a network call."""
    server = CountingServer(ok(None))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(ToolCallRequest("c1", "rm_rf", {}))

    assert result.failure.kind is FailureKind.NOT_FOUND
    assert "file_analyzer" in result.failure.message
    assert server.calls == 0


@pytest.mark.asyncio
async def test_duplicate_call_id_refused(make_dispatcher):
    """Test that a call id is dispatched at most once."""
    server = CountingServer(ok(1))
    dispatcher = make_dispatcher(server)

    first = await dispatcher.dispatch(analyze("same"))
    second = await dispatcher.dispatch(analyze("same"))

    assert first.ok
    assert second.failure.kind is FailureKind.INVALID_ARGUMENT
    assert server.calls == 1


@pytest.mark.asyncio
async def test_connect_error_then_success_is_retried(make_dispatcher):
    """Test that one transport failure is retried on a fresh connection."""
    server = CountingServer(httpx.ConnectError("refused"), ok("fine"))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(analyze())

    assert result.ok
    assert result.content == "fine"
    assert server.calls == 2
    assert dispatcher.client.generation == 1


@pytest.mark.asyncio
async def test_two_transport_failures_are_unavailable(make_dispatcher):
    """Test that a second consecutive failure is final."""
    server = CountingServer(httpx.ConnectError("refused"))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(analyze())

    assert result.failure.kind is FailureKind.UNAVAILABLE
    assert "refused" in result.failure.message
    assert server.calls == 2


@pytest.mark.asyncio
async def test_tool_error_is_not_retried(make_dispatcher):
    """Test that a domain error comes back after a single attempt."""
    server = CountingServer(
        httpx.Response(200, json={"success": False, "data": None, "error": "no such dir"})
    )
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(analyze())

    assert result.failure.kind is FailureKind.TOOL_ERROR
    assert result.failure.message == "no such dir"
    assert server.calls == 1


@pytest.mark.asyncio
async def test_non_idempotent_lost_mid_call_is_unknown_outcome(make_dispatcher):
    """Test that a non-idempotent call is not repeated once sent."""
    server = CountingServer(httpx.ReadError("connection reset"), ok("converted"))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(convert())

    assert result.failure.kind is FailureKind.UNKNOWN_OUTCOME
    assert server.calls == 1


@pytest.mark.asyncio
async def test_non_idempotent_connect_error_is_retried(make_dispatcher):
    """Test that a call that never left the client may be retried."""
    server = CountingServer(httpx.ConnectError("refused"), ok("converted"))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(convert())

    assert result.ok
    assert server.calls == 2


@pytest.mark.asyncio
async def test_idempotent_read_error_is_retried(make_dispatcher):
    """Test that an idempotent call is retried after losing the connection."""
    server = CountingServer(httpx.ReadError("connection reset"), ok({"file_count": 1}))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(analyze())

    assert result.ok
    assert server.calls == 2


@pytest.mark.asyncio
async def test_transient_status_is_retried(make_dispatcher):
    """Test that 503 counts as a transport failure."""
    server = CountingServer(httpx.Response(503), ok(1))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(analyze())

    assert result.ok
    assert server.calls == 2


@pytest.mark.asyncio
async def test_transient_status_for_non_idempotent_tool(make_dispatcher):
    """Test that 502 after sending a non-idempotent call is ambiguous."""
    server = CountingServer(httpx.Response(502))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(convert())

    assert result.failure.kind is FailureKind.UNKNOWN_OUTCOME
    assert server.calls == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,kind",
    [
        (404, FailureKind.NOT_FOUND),
        (422, FailureKind.INVALID_ARGUMENT),
        (400, FailureKind.INVALID_ARGUMENT),
        (500, FailureKind.TOOL_ERROR),
    ],
)
async def test_http_status_mapping(make_dispatcher, status, kind):
    """Test how non-transient error statuses map to failure kinds."""
    server = CountingServer(httpx.Response(status, json={"detail": "nope"}))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(analyze())

    assert result.failure.kind is kind
    assert server.calls == 1


@pytest.mark.asyncio
async def test_malformed_response_body(make_dispatcher):
    """Test that a 200 without the execute response shape is unavailable."""
    server = CountingServer(httpx.Response(200, text="<html>proxy</html>"))
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(analyze())

    assert result.failure.kind is FailureKind.UNAVAILABLE


@pytest.mark.asyncio
async def test_deadline_exceeded(make_dispatcher):
    """Test that a call not answered before its deadline fails."""

    async def slow(request):
        await asyncio.sleep(5)
        return ok("late")

    server = CountingServer(slow)
    dispatcher = make_dispatcher(server)

    result = await dispatcher.dispatch(analyze(), deadline=dispatcher.deadline_after(0.2))

    assert result.failure.kind is FailureKind.UNAVAILABLE
    assert "deadline" in result.failure.message
    assert server.calls == 2
    assert dispatcher.in_flight == []


async def hang(request):
    await asyncio.sleep(60)
    return ok("too late")


@pytest.mark.asyncio
async def test_hung_first_attempt_is_retried(make_dispatcher):
    """Test that a connection that never answers leaves time for a retry."""
    server = CountingServer(hang, ok("fine"))
    dispatcher = make_dispatcher(server, client_timeout=0.1)

    result = await dispatcher.dispatch(analyze(), deadline=dispatcher.deadline_after(2.0))

    assert result.ok
    assert result.content == "fine"
    assert server.calls == 2
    assert dispatcher.client.generation == 1


@pytest.mark.asyncio
async def test_hung_first_attempt_of_non_idempotent_tool(make_dispatcher):
    """Test that a hung non-idempotent call is ambiguous and not repeated."""
    server = CountingServer(hang, ok("converted"))
    dispatcher = make_dispatcher(server, client_timeout=0.1)

    result = await dispatcher.dispatch(convert(), deadline=dispatcher.deadline_after(2.0))

    assert result.failure.kind is FailureKind.UNKNOWN_OUTCOME
    assert server.calls == 1


@pytest.mark.asyncio
async def test_replaced_connection_is_closed(make_dispatcher):
    """Test that the pool replaced by a retry is closed once it is idle."""
    server = CountingServer(httpx.ReadError("connection reset"), ok("fine"))
    dispatcher = make_dispatcher(server)
    first_pool = dispatcher.client._client

    result = await dispatcher.dispatch(analyze())

    assert result.ok
    assert dispatcher.client._retired == []
    assert first_pool.is_closed
    assert not dispatcher.client._client.is_closed


@pytest.mark.asyncio
async def test_replaced_connection_closed_after_its_last_request(make_dispatcher):
    """Test that a replaced pool stays open until requests still on it finish."""
    release = asyncio.Event()

    async def gated(request):
        await release.wait()
        return ok("slow")

    server = CountingServer(gated, httpx.ConnectError("refused"), ok("fast"))
    dispatcher = make_dispatcher(server)
    first_pool = dispatcher.client._client

    slow = asyncio.create_task(dispatcher.dispatch(analyze("slow")))
    await asyncio.sleep(0.01)
    fast = await dispatcher.dispatch(analyze("fast"))

    assert fast.ok
    assert dispatcher.client.generation == 1
    assert dispatcher.client._retired == [first_pool]
    assert not first_pool.is_closed

    release.set()
    assert (await slow).ok
    assert dispatcher.client._retired == []
    assert first_pool.is_closed


@pytest.mark.asyncio
async def test_in_flight_table_tracks_pending_calls(make_dispatcher):
    """Test that calls are in the table while running and removed after."""
    release = asyncio.Event()

    async def gated(request):
        await release.wait()
        return ok("done")

    dispatcher = make_dispatcher(CountingServer(gated))

    task = asyncio.create_task(dispatcher.dispatch(analyze("c1")))
    await asyncio.sleep(0.01)
    assert dispatcher.in_flight == ["c1"]

    release.set()
    result = await task

    assert result.ok
    assert dispatcher.in_flight == []


@pytest.mark.asyncio
async def test_concurrent_calls_share_one_client(make_dispatcher):
    """Test that several calls can be in flight at once."""
    arrived = 0
    all_arrived = asyncio.Event()

    async def barrier(request):
        nonlocal arrived
        arrived += 1
        if arrived == 3:
            all_arrived.set()
        await all_arrived.wait()
        return ok(json.loads(request.content)["call_id"])

    dispatcher = make_dispatcher(CountingServer(barrier))

    results = await asyncio.wait_for(
        asyncio.gather(*(dispatcher.dispatch(analyze(f"c{i}")) for i in range(3))),
        timeout=2,
    )

    assert [r.content for r in results] == ["c0", "c1", "c2"]
