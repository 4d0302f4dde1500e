from __future__ import annotations

import asyncio

import pytest

from mcp_starter.app.context import RequestContext
from mcp_starter.app.errors import CapabilityNotSupportedError
from mcp_starter.app.registry import CapabilityRegistry
from mcp_starter.app.server import McpServer
from mcp_starter.app.session import SessionState, decode_cursor, drain, encode_cursor

from tests.conftest import (
    PROTOCOL_VERSION,
    RecordingSink,
    call,
    initialize,
    make_session,
    notification,
    request,
    settle,
    wait_until,
)


def _long_task(request_id: int, steps: int = 200, meta: dict | None = None) -> dict:
    params: dict = {"name": "long_task", "arguments": {"taskName": "job", "steps": steps}}
    if meta is not None:
        params["_meta"] = meta
    return request(request_id, "tools/call", params)


# ── 수명 주기 ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_requests_before_initialize_are_rejected(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()

    for request_id, method in [(1, "tools/list"), (2, "ping")]:
        response = await call(session, sink, request_id, method)
        assert response["error"]["code"] == -32000

    assert session.state is SessionState.UNINITIALIZED


@pytest.mark.asyncio
async def test_initialize_negotiates_and_reports_server(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()

    await session.receive(
        request(1, "initialize", {"protocolVersion": PROTOCOL_VERSION, "capabilities": {"sampling": {}}}),
        sink,
    )
    result = sink.response_for(1)["result"]

    assert result["protocolVersion"] == PROTOCOL_VERSION
    assert result["serverInfo"] == {"name": "mcp-starter-test", "version": "9.9.9"}
    assert result["capabilities"]["tools"] == {"listChanged": True}
    assert session.state is SessionState.INITIALIZING
    assert session.client_capabilities.sampling is True
    assert session.client_capabilities.elicitation is False


@pytest.mark.asyncio
async def test_initializing_session_answers_ping_but_not_tools(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await session.receive(request(1, "initialize", {"protocolVersion": PROTOCOL_VERSION}), sink)

    assert (await call(session, sink, 2, "ping"))["result"] == {}
    assert (await call(session, sink, 3, "tools/list"))["error"]["code"] == -32000

    await session.receive(notification("initialized"), sink)
    assert session.state is SessionState.READY
    assert "tools" in (await call(session, sink, 4, "tools/list"))["result"]


@pytest.mark.asyncio
async def test_unsupported_version_keeps_session_uninitialized(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()

    response = await call(session, sink, 1, "initialize", {"protocolVersion": "1999-01-01"})

    assert response["error"]["code"] == -32602
    assert PROTOCOL_VERSION in response["error"]["data"]["supported"]
    assert session.state is SessionState.UNINITIALIZED

    retry = await call(session, sink, 2, "initialize", {"protocolVersion": PROTOCOL_VERSION})
    assert "result" in retry


@pytest.mark.asyncio
async def test_second_initialize_is_rejected(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    response = await call(session, sink, 2, "initialize", {"protocolVersion": PROTOCOL_VERSION})
    assert response["error"]["code"] == -32600
    assert session.state is SessionState.READY


@pytest.mark.asyncio
async def test_initialize_without_version_is_invalid_params(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()

    response = await call(session, sink, 1, "initialize", {})
    assert response["error"]["code"] == -32602
    assert response["error"]["data"]["field"] == "protocolVersion"


# ── 프로토콜 오류 ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_unknown_method_is_method_not_found(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    response = await call(session, sink, 9, "tools/explode")
    assert response["error"]["code"] == -32601


@pytest.mark.asyncio
async def test_malformed_frame_with_recoverable_id_gets_parse_error(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()

    await session.receive_frame('{"jsonrpc": "2.0", "id": 17, "method": "ping", ', sink)

    assert sink.messages == [
        {"jsonrpc": "2.0", "id": 17, "error": {"code": -32700, "message": sink.messages[0]["error"]["message"]}}
    ]


@pytest.mark.asyncio
async def test_malformed_frame_without_id_is_dropped(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()

    await session.receive_frame("not json at all", sink)

    assert sink.messages == []
    assert session.state is SessionState.UNINITIALIZED


@pytest.mark.asyncio
async def test_invalid_envelope_is_invalid_request(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()

    await session.receive({"jsonrpc": "1.0", "id": 3, "method": "ping"}, sink)

    assert sink.response_for(3)["error"]["code"] == -32600


@pytest.mark.asyncio
async def test_batch_produces_one_response_per_request(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    tasks = await session.receive([request(1, "tools/list"), notification("notifications/whatever"), request(2, "ping")], sink)
    await settle(tasks)

    assert sink.response_for(1) is not None
    assert sink.response_for(2)["result"] == {}


@pytest.mark.asyncio
async def test_empty_batch_is_invalid_request(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()

    await session.receive([], sink)
    assert sink.messages[0]["id"] is None
    assert sink.messages[0]["error"]["code"] == -32600


@pytest.mark.asyncio
async def test_unknown_tool_uses_not_found_error(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    unknown = await call(session, sink, 1, "tools/call", {"name": "nope"})
    disabled = await call(session, sink, 2, "tools/call", {"name": "bonus_tool"})

    assert unknown["error"]["code"] == -32002
    assert unknown["error"]["data"]["reason"] == "unknown"
    assert disabled["error"]["code"] == -32002
    assert disabled["error"]["data"]["reason"] == "disabled"


@pytest.mark.asyncio
async def test_unknown_tool_leaves_session_ready(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    missing = await call(session, sink, 1, "tools/call", {"name": "ghost_tool", "arguments": {}})
    pong = await call(session, sink, 2, "ping")

    assert missing["error"]["code"] == -32002
    assert session.state is SessionState.READY
    assert pong["result"] == {}


@pytest.mark.asyncio
async def test_invalid_tool_arguments_name_the_field(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    response = await call(session, sink, 1, "tools/call", {"name": "long_task", "arguments": {"taskName": "x", "steps": "many"}})

    assert response["error"]["code"] == -32602
    assert response["error"]["data"]["field"] == "steps"


# ── 동시성과 취소 ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_slow_tool_does_not_block_ping(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    slow = await session.receive(_long_task(1, steps=20), sink)
    await call(session, sink, 2, "ping")

    assert sink.response_for(2) is not None
    assert sink.response_for(1) is None
    await settle(slow)
    assert sink.responses()[-1]["id"] == 1


@pytest.mark.asyncio
async def test_cancelled_request_is_answered_once(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    tasks = await session.receive(_long_task(1), sink)
    await asyncio.sleep(0.03)
    await session.receive(notification("notifications/cancelled", {"requestId": 1, "reason": "user"}), sink)
    await settle(tasks)

    responses = [message for message in sink.responses() if message["id"] == 1]
    assert len(responses) == 1
    assert responses[0]["error"]["code"] == -32800
    assert session.in_flight_ids == frozenset()


@pytest.mark.asyncio
async def test_cancel_is_idempotent(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    tasks = await session.receive(_long_task(1), sink)
    await asyncio.sleep(0.02)
    assert session.cancel(1) is True
    assert session.cancel(1) is False
    await settle(tasks)

    assert session.cancel(1) is False
    await session.receive(notification("$/cancelRequest", {"id": 1}), sink)
    assert len([message for message in sink.responses() if message["id"] == 1]) == 1


@pytest.mark.asyncio
async def test_cancel_before_handler_starts_still_answers(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    tasks = await session.receive([_long_task(1), notification("notifications/cancelled", {"requestId": 1})], sink)
    await settle(tasks)

    responses = [message for message in sink.responses() if message["id"] == 1]
    assert len(responses) == 1
    assert responses[0]["error"]["code"] == -32800


@pytest.mark.asyncio
async def test_cancelling_completed_request_is_noop(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    await call(session, sink, 1, "tools/call", {"name": "hello", "arguments": {"name": "Ada"}})
    before = list(sink.messages)
    await session.receive(notification("notifications/cancelled", {"requestId": 1}), sink)

    assert sink.messages == before


@pytest.mark.asyncio
async def test_duplicate_in_flight_id_is_rejected(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    first = await session.receive(_long_task(1, steps=5), sink)
    await session.receive(_long_task(1, steps=5), sink)

    assert sink.response_for(1)["error"]["code"] == -32600
    await settle(first)


@pytest.mark.asyncio
async def test_close_abandons_in_flight_requests(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    await session.receive(_long_task(1), sink)
    await asyncio.sleep(0.02)
    await session.close()

    assert session.state is SessionState.CLOSED
    assert sink.response_for(1) is None
    assert session.in_flight_ids == frozenset()

    await session.receive(request(2, "ping"), sink)
    assert sink.response_for(2) is None


# ── 진행 알림 ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_progress_is_ordered_and_precedes_result(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    await call(session, sink, 1, "tools/call", _long_task(1, steps=4, meta={"progressToken": "tok"})["params"])

    progress = sink.with_method("notifications/progress")
    assert [message["params"]["progress"] for message in progress] == [1, 2, 3, 4]
    assert all(message["params"]["progressToken"] == "tok" for message in progress)
    assert progress[0]["params"]["total"] == 4
    assert sink.messages[-1]["id"] == 1


@pytest.mark.asyncio
async def test_progress_token_defaults_to_request_id(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink, {"progress": {}})

    await call(session, sink, 5, "tools/call", _long_task(5, steps=2)["params"])

    tokens = {message["params"]["progressToken"] for message in sink.with_method("notifications/progress")}
    assert tokens == {5}


@pytest.mark.asyncio
async def test_progress_is_dropped_without_support(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    result = await call(session, sink, 1, "tools/call", _long_task(1, steps=3)["params"])

    assert sink.with_method("notifications/progress") == []
    assert "completed successfully after 3 steps" in result["result"]["content"][0]["text"]


# ── 샘플링과 입력 요청 ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_sampling_without_capability_never_reaches_client(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    response = await call(session, sink, 1, "tools/call", {"name": "ask_llm", "arguments": {"prompt": "hi"}})

    assert sink.with_method("sampling/createMessage") == []
    assert "simulated response" in response["result"]["content"][0]["text"]
    assert response["result"]["isError"] is False


@pytest.mark.asyncio
async def test_request_sampling_without_capability_raises(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)
    context = RequestContext(session=session, request_id=1, sink=sink)

    with pytest.raises(CapabilityNotSupportedError):
        await context.request_sampling("hi")
    with pytest.raises(CapabilityNotSupportedError):
        await context.request_elicitation("ok?", {"type": "object", "properties": {}})

    assert sink.with_method("sampling/createMessage") == []
    assert sink.with_method("elicitation/create") == []


@pytest.mark.asyncio
async def test_sampling_round_trip(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink, {"sampling": {}})

    tasks = await session.receive(
        request(1, "tools/call", {"name": "ask_llm", "arguments": {"prompt": "2+2?", "maxTokens": 10}}),
        sink,
    )
    await wait_until(lambda: bool(sink.with_method("sampling/createMessage")))
    outbound = sink.with_method("sampling/createMessage")[0]
    assert outbound["params"]["maxTokens"] == 10
    assert outbound["params"]["messages"][0]["content"]["text"] == "2+2?"

    await session.receive(
        {
            "jsonrpc": "2.0",
            "id": outbound["id"],
            "result": {"role": "assistant", "content": {"type": "text", "text": "4"}, "model": "test"},
        },
        sink,
    )
    await settle(tasks)

    assert sink.response_for(1)["result"]["content"] == [{"type": "text", "text": "4"}]


@pytest.mark.asyncio
async def test_server_request_ids_are_monotonic(registry: CapabilityRegistry) -> None:
    session = make_session(registry, client_request_timeout_seconds=0.05)
    sink = RecordingSink()
    await initialize(session, sink, {"sampling": {}})

    await call(session, sink, 1, "tools/call", {"name": "ask_llm", "arguments": {"prompt": "a"}})
    await call(session, sink, 2, "tools/call", {"name": "ask_llm", "arguments": {"prompt": "b"}})

    ids = [message["id"] for message in sink.with_method("sampling/createMessage")]
    assert ids == [1, 2]


@pytest.mark.asyncio
async def test_sampling_timeout_fails_closed(registry: CapabilityRegistry) -> None:
    session = make_session(registry, client_request_timeout_seconds=0.05)
    sink = RecordingSink()
    await initialize(session, sink, {"sampling": {}})

    response = await call(session, sink, 1, "tools/call", {"name": "ask_llm", "arguments": {"prompt": "hi"}})

    assert response["result"]["isError"] is True
    assert "sampling failed" in response["result"]["content"][0]["text"]
    cancelled = sink.with_method("notifications/cancelled")
    assert cancelled[0]["params"]["requestId"] == sink.with_method("sampling/createMessage")[0]["id"]


@pytest.mark.asyncio
async def test_sampling_error_response_becomes_tool_error(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink, {"sampling": {}})

    tasks = await session.receive(request(1, "tools/call", {"name": "ask_llm", "arguments": {"prompt": "hi"}}), sink)
    await wait_until(lambda: bool(sink.with_method("sampling/createMessage")))
    outbound = sink.with_method("sampling/createMessage")[0]
    await session.receive({"jsonrpc": "2.0", "id": outbound["id"], "error": {"code": -1, "message": "User rejected"}}, sink)
    await settle(tasks)

    result = sink.response_for(1)["result"]
    assert result["isError"] is True
    assert "User rejected" in result["content"][0]["text"]


@pytest.mark.asyncio
async def test_sampling_fails_when_sink_cannot_carry_requests(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink(accepts_requests=False)
    await initialize(session, sink, {"sampling": {}})

    response = await call(session, sink, 1, "tools/call", {"name": "ask_llm", "arguments": {"prompt": "hi"}})

    assert response["result"]["isError"] is True
    assert sink.with_method("sampling/createMessage") == []


@pytest.mark.asyncio
async def test_elicitation_accept(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink, {"elicitation": {}})

    tasks = await session.receive(
        request(1, "tools/call", {"name": "get_feedback", "arguments": {"question": "How was it?"}}),
        sink,
    )
    await wait_until(lambda: bool(sink.with_method("elicitation/create")))
    outbound = sink.with_method("elicitation/create")[0]
    assert outbound["params"]["message"] == "How was it?"
    await session.receive(
        {"jsonrpc": "2.0", "id": outbound["id"], "result": {"action": "accept", "content": {"feedback": "great"}}},
        sink,
    )
    await settle(tasks)

    structured = sink.response_for(1)["result"]["structuredContent"]
    assert structured["feedback"] == "great"
    assert structured["question"] == "How was it?"


@pytest.mark.asyncio
async def test_elicitation_decline(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink, {"elicitation": {}})

    tasks = await session.receive(
        request(1, "tools/call", {"name": "confirm_action", "arguments": {"action": "drop table", "destructive": True}}),
        sink,
    )
    await wait_until(lambda: bool(sink.with_method("elicitation/create")))
    outbound = sink.with_method("elicitation/create")[0]
    assert "destructive" in outbound["params"]["message"]
    await session.receive({"jsonrpc": "2.0", "id": outbound["id"], "result": {"action": "decline"}}, sink)
    await settle(tasks)

    structured = sink.response_for(1)["result"]["structuredContent"]
    assert structured["confirmed"] is False


# ── 목록과 변경 알림 ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_pagination(registry: CapabilityRegistry) -> None:
    session = make_session(registry, page_size=4)
    sink = RecordingSink()
    await initialize(session, sink)

    names: list[str] = []
    cursor = None
    for request_id in range(1, 10):
        params = {"cursor": cursor} if cursor else {}
        result = (await call(session, sink, request_id, "tools/list", params))["result"]
        names.extend(tool["name"] for tool in result["tools"])
        cursor = result.get("nextCursor")
        if cursor is None:
            break

    assert names == [tool.name for tool in registry.list_tools()]


@pytest.mark.asyncio
async def test_unknown_cursor_is_invalid_params(registry: CapabilityRegistry) -> None:
    session = make_session(registry)
    sink = RecordingSink()
    await initialize(session, sink)

    response = await call(session, sink, 1, "tools/list", {"cursor": "garbage!"})
    assert response["error"]["code"] == -32602


def test_cursor_round_trip() -> None:
    assert decode_cursor(encode_cursor(12)) == 12


@pytest.mark.asyncio
async def test_load_bonus_tool_broadcasts_list_changed(server: McpServer) -> None:
    ready_sink = RecordingSink()
    pending_sink = RecordingSink()
    ready = await server.create_session(default_sink=ready_sink)
    pending = await server.create_session(default_sink=pending_sink)
    await initialize(ready, ready_sink)
    await pending.receive(request(1, "initialize", {"protocolVersion": PROTOCOL_VERSION}), pending_sink)

    before = (await call(ready, ready_sink, 1, "tools/list"))["result"]["tools"]
    assert "bonus_tool" not in [tool["name"] for tool in before]

    await call(ready, ready_sink, 2, "tools/call", {"name": "load_bonus_tool"})

    assert len(ready_sink.with_method("notifications/tools/list_changed")) == 1
    assert pending_sink.with_method("notifications/tools/list_changed") == []
    after = (await call(ready, ready_sink, 3, "tools/list"))["result"]["tools"]
    assert [tool["name"] for tool in after][-1] != "bonus_tool"
    assert "bonus_tool" in [tool["name"] for tool in after]

    await call(ready, ready_sink, 4, "tools/call", {"name": "load_bonus_tool"})
    assert len(ready_sink.with_method("notifications/tools/list_changed")) == 1


@pytest.mark.asyncio
async def test_drain_propagates_waiter_cancellation() -> None:
    release = asyncio.Event()

    async def slow_request() -> None:
        await release.wait()

    task = asyncio.create_task(slow_request())
    waiter = asyncio.create_task(drain([task]))
    await asyncio.sleep(0)
    waiter.cancel()

    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert not task.done()

    release.set()
    await task
