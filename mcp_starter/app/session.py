"""연결 하나에 대응하는 MCP 프로토콜 세션이에요.

상태는 `uninitialized → initializing → ready → closed` 순서로만 움직여요.
들어온 메시지는 받은 순서대로 처리하지만, 요청 처리 자체는 요청마다 별도 태스크로
돌려서 느린 도구 호출이 ping이나 취소 알림을 막지 않게 해요.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import itertools
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from libs.common.errors import DomainError
from libs.common.logging import get_logger
from mcp_starter.app.context import RequestContext
from mcp_starter.app.engine import InvocationEngine
from mcp_starter.app.errors import (
    CapabilityNotSupportedError,
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
    NotInitializedError,
    ParseError,
    RequestCancelledError,
    UnsupportedVersionError,
)
from mcp_starter.app.models import (
    CallToolParams,
    CancelledParams,
    GetPromptParams,
    InitializeParams,
    ListParams,
    ReadResourceParams,
    parse_params,
    progress_token_of,
)
from mcp_starter.app.protocol import (
    SUPPORTED_PROTOCOL_VERSIONS,
    InboundNotification,
    InboundRequest,
    InboundResponse,
    RequestId,
    build_error,
    build_notification,
    build_request,
    build_result,
    decode_frame,
    parse_message,
    recover_request_id,
    request_id_of,
)
from mcp_starter.app.registry import CapabilityKind

logger = get_logger("mcp_starter.session")

CANCEL_METHODS = frozenset({"notifications/cancelled", "$/cancelRequest"})
INITIALIZED_METHODS = frozenset({"notifications/initialized", "initialized"})

_LIST_CHANGED_METHODS = {
    CapabilityKind.TOOL: "notifications/tools/list_changed",
    CapabilityKind.RESOURCE: "notifications/resources/list_changed",
    CapabilityKind.RESOURCE_TEMPLATE: "notifications/resources/list_changed",
    CapabilityKind.PROMPT: "notifications/prompts/list_changed",
}


class MessageSink(Protocol):
    """세션이 내보내는 메시지를 받는 전송 계층 쪽 출구예요.

    `send`는 막히지 않아야 하고, 보낸 순서를 지켜야 해요.
    """

    @property
    def accepts_requests(self) -> bool: ...

    def send(self, message: dict[str, Any]) -> None: ...


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


@dataclass(slots=True)
class ClientCapabilities:
    sampling: bool = False
    progress: bool = False
    elicitation: bool = False
    roots: bool = False

    @classmethod
    def from_dict(cls, value: dict[str, Any]) -> "ClientCapabilities":
        return cls(
            sampling=value.get("sampling") is not None,
            progress=value.get("progress") is not None,
            elicitation=value.get("elicitation") is not None,
            roots=value.get("roots") is not None,
        )


@dataclass(slots=True, frozen=True)
class ServerInfo:
    name: str
    version: str
    instructions: str | None = None


@dataclass(slots=True)
class _InFlightRequest:
    task: asyncio.Task[None]
    method: str
    sink: MessageSink | None
    cancel_requested: bool = False
    responded: bool = False


@dataclass(slots=True)
class _PendingClientRequest:
    future: asyncio.Future[dict[str, Any]]
    method: str
    failure: type[DomainError]


RequestHandler = Callable[[InboundRequest, RequestContext], Awaitable[dict[str, Any]]]


class McpSession:
    def __init__(
        self,
        *,
        engine: InvocationEngine,
        server_info: ServerInfo,
        session_id: str | None = None,
        default_sink: MessageSink | None = None,
        client_request_timeout_seconds: float = 60.0,
        page_size: int = 50,
    ) -> None:
        self._engine = engine
        self._server_info = server_info
        self._session_id = session_id or uuid.uuid4().hex
        self._default_sink = default_sink
        self._client_request_timeout_seconds = client_request_timeout_seconds
        self._page_size = page_size

        self._state = SessionState.UNINITIALIZED
        self._protocol_version: str | None = None
        self._client_capabilities = ClientCapabilities()
        self._client_info: dict[str, Any] = {}

        self._in_flight: dict[RequestId, _InFlightRequest] = {}
        self._pending: dict[RequestId, _PendingClientRequest] = {}
        # 서버가 클라이언트에게 보내는 요청의 id예요. 세션마다 1부터 단조 증가해요.
        self._outbound_ids = itertools.count(1)
        self._last_activity = time.monotonic()

        self._handlers: dict[str, RequestHandler] = {
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
            "resources/list": self._handle_resources_list,
            "resources/read": self._handle_resources_read,
            "resources/templates/list": self._handle_resource_templates_list,
            "prompts/list": self._handle_prompts_list,
            "prompts/get": self._handle_prompts_get,
        }

    # ── 상태 ────────────────────────────────────────────────────────────────

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def protocol_version(self) -> str | None:
        return self._protocol_version

    @property
    def client_capabilities(self) -> ClientCapabilities:
        return self._client_capabilities

    @property
    def client_info(self) -> dict[str, Any]:
        return self._client_info

    @property
    def in_flight_ids(self) -> frozenset[RequestId]:
        return frozenset(self._in_flight)

    @property
    def default_sink(self) -> MessageSink | None:
        return self._default_sink

    def attach_sink(self, sink: MessageSink | None) -> None:
        """요청과 무관한 알림(목록 변경 등)을 보낼 기본 출구를 바꿔요."""
        self._default_sink = sink

    def idle_seconds(self, now: float | None = None) -> float:
        """마지막 수신이나 요청 완료 뒤로 흐른 시간이에요. 진행 중인 요청이 있으면 0이에요."""
        if self._in_flight:
            return 0.0
        current = now if now is not None else time.monotonic()
        return max(0.0, current - self._last_activity)

    # ── 수신 ────────────────────────────────────────────────────────────────

    async def receive_frame(self, frame: str | bytes, sink: MessageSink | None = None) -> list[asyncio.Task[None]]:
        """원시 프레임 하나를 처리해요. 해석할 수 없는 프레임은 id를 건질 수 있을 때만 오류로 답해요."""
        self._last_activity = time.monotonic()
        try:
            payload = decode_frame(frame)
        except ParseError as exc:
            request_id = recover_request_id(frame)
            if request_id is None:
                logger.warning("frame_dropped", session_id=self._session_id, reason=exc.message)
                return []
            self._send(build_error(request_id, exc.to_envelope().to_dict()), sink)
            return []
        return await self.receive(payload, sink)

    async def receive(self, payload: Any, sink: MessageSink | None = None) -> list[asyncio.Task[None]]:
        """해석된 JSON 값(단건 또는 배치)을 처리하고, 새로 시작된 요청 태스크를 돌려줘요."""
        self._last_activity = time.monotonic()
        if isinstance(payload, list):
            if not payload:
                self._send(build_error(None, InvalidRequestError("빈 배치예요.").to_envelope().to_dict()), sink)
                return []
            tasks: list[asyncio.Task[None]] = []
            for item in payload:
                tasks.extend(self._receive_one(item, sink))
            return tasks
        return self._receive_one(payload, sink)

    def _receive_one(self, payload: Any, sink: MessageSink | None) -> list[asyncio.Task[None]]:
        try:
            message = parse_message(payload)
        except InvalidRequestError as exc:
            self._send(build_error(request_id_of(payload), exc.to_envelope().to_dict()), sink)
            return []

        if isinstance(message, InboundResponse):
            self._resolve_client_response(message)
            return []
        if isinstance(message, InboundNotification):
            self._handle_notification(message)
            return []
        return self._accept_request(message, sink)

    def _accept_request(self, request: InboundRequest, sink: MessageSink | None) -> list[asyncio.Task[None]]:
        if self._state is SessionState.CLOSED:
            logger.info("request_after_close_dropped", session_id=self._session_id, method=request.method)
            return []

        if request.method == "initialize":
            try:
                self._send(build_result(request.id, self._initialize(request.params)), sink)
            except DomainError as exc:
                logger.info("initialize_rejected", session_id=self._session_id, error=exc.message)
                self._send(build_error(request.id, exc.to_envelope().to_dict()), sink)
            return []

        if self._state is SessionState.UNINITIALIZED:
            self._reject(request.id, NotInitializedError(request.method), sink)
            return []

        # ping과 취소는 initialized 알림 전에도, 다른 요청이 도는 중에도 바로 처리해요.
        if request.method == "ping":
            self._send(build_result(request.id, {}), sink)
            return []
        if request.method in CANCEL_METHODS:
            self._cancel_from_params(request.params)
            self._send(build_result(request.id, {}), sink)
            return []

        if self._state is not SessionState.READY:
            self._reject(request.id, NotInitializedError(request.method), sink)
            return []
        handler = self._handlers.get(request.method)
        if handler is None:
            self._reject(request.id, MethodNotFoundError(request.method), sink)
            return []
        if request.id in self._in_flight:
            self._reject(request.id, InvalidRequestError(f"이미 처리 중인 요청 id예요: {request.id}"), sink)
            return []

        context = RequestContext(
            session=self,
            request_id=request.id,
            sink=sink,
            progress_token=progress_token_of(request.params),
        )
        task = asyncio.create_task(self._run_request(request, handler, context, sink))
        entry = _InFlightRequest(task=task, method=request.method, sink=sink)
        self._in_flight[request.id] = entry
        task.add_done_callback(lambda done: self._on_request_done(request.id, entry, done))
        return [task]

    def _on_request_done(self, request_id: RequestId, entry: _InFlightRequest, task: asyncio.Task[None]) -> None:
        if self._in_flight.get(request_id) is entry:
            self._in_flight.pop(request_id, None)
        self._last_activity = time.monotonic()
        # 시작하기도 전에 취소된 태스크는 핸들러 본문이 돌지 않아서 여기서 취소 응답을 보내요.
        if task.cancelled() and entry.cancel_requested and not entry.responded and self._state is not SessionState.CLOSED:
            entry.responded = True
            self._send(build_error(request_id, RequestCancelledError(request_id).to_envelope().to_dict()), entry.sink)

    def _reject(self, request_id: RequestId, error: DomainError, sink: MessageSink | None) -> None:
        self._send(build_error(request_id, error.to_envelope().to_dict()), sink)

    async def _run_request(
        self,
        request: InboundRequest,
        handler: RequestHandler,
        context: RequestContext,
        sink: MessageSink | None,
    ) -> None:
        entry = self._in_flight.get(request.id)
        try:
            result = await handler(request, context)
        except asyncio.CancelledError:
            if entry is None or not entry.cancel_requested or self._state is SessionState.CLOSED:
                # 세션이 닫혀서 버려진 요청이에요. 응답을 보내지 않아요.
                raise
            logger.info("request_cancelled", session_id=self._session_id, request_id=request.id)
            entry.responded = True
            self._send(build_error(request.id, RequestCancelledError(request.id).to_envelope().to_dict()), sink)
        except DomainError as exc:
            logger.info(
                "request_failed",
                session_id=self._session_id,
                request_id=request.id,
                method=request.method,
                error_code=exc.error_code,
                error=exc.message,
            )
            self._send(build_error(request.id, exc.to_envelope().to_dict()), sink)
        except Exception as exc:
            logger.exception(
                "request_unexpected_error",
                session_id=self._session_id,
                request_id=request.id,
                method=request.method,
                error=str(exc),
            )
            self._send(build_error(request.id, InternalError().to_envelope().to_dict()), sink)
        else:
            self._send(build_result(request.id, result), sink)

    # ── 수명 주기 ────────────────────────────────────────────────────────────

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        if self._state is not SessionState.UNINITIALIZED:
            raise InvalidRequestError("이미 initialize가 끝난 세션이에요.")

        initialize = parse_params(InitializeParams, params)
        if initialize.protocol_version not in SUPPORTED_PROTOCOL_VERSIONS:
            raise UnsupportedVersionError(initialize.protocol_version, SUPPORTED_PROTOCOL_VERSIONS)

        self._protocol_version = initialize.protocol_version
        self._client_capabilities = ClientCapabilities.from_dict(initialize.capabilities)
        self._client_info = initialize.client_info
        self._state = SessionState.INITIALIZING
        logger.info(
            "session_initializing",
            session_id=self._session_id,
            protocol_version=self._protocol_version,
            client=self._client_info.get("name"),
            sampling=self._client_capabilities.sampling,
            elicitation=self._client_capabilities.elicitation,
        )

        result: dict[str, Any] = {
            "protocolVersion": self._protocol_version,
            "capabilities": {
                "tools": {"listChanged": True},
                "resources": {"listChanged": True, "subscribe": False},
                "prompts": {"listChanged": True},
            },
            "serverInfo": {"name": self._server_info.name, "version": self._server_info.version},
        }
        if self._server_info.instructions:
            result["instructions"] = self._server_info.instructions
        return result

    def _handle_notification(self, notification: InboundNotification) -> None:
        if notification.method in INITIALIZED_METHODS:
            if self._state is SessionState.INITIALIZING:
                self._state = SessionState.READY
                logger.info("session_ready", session_id=self._session_id)
            else:
                logger.info("initialized_ignored", session_id=self._session_id, state=self._state.value)
            return
        if notification.method in CANCEL_METHODS:
            self._cancel_from_params(notification.params)
            return
        logger.debug("notification_ignored", session_id=self._session_id, method=notification.method)

    def _cancel_from_params(self, params: dict[str, Any]) -> None:
        try:
            target = parse_params(CancelledParams, params).target
        except InvalidParamsError:
            logger.info("cancel_params_invalid", session_id=self._session_id)
            return
        if target is not None:
            self.cancel(target)

    def cancel(self, request_id: RequestId) -> bool:
        """진행 중인 요청을 취소해요. 이미 끝났거나 이미 취소한 요청이면 아무 일도 하지 않아요."""
        entry = self._in_flight.get(request_id)
        if entry is None or entry.cancel_requested:
            return False
        entry.cancel_requested = True
        entry.task.cancel()
        logger.info("cancel_requested", session_id=self._session_id, request_id=request_id, method=entry.method)
        return True

    async def close(self) -> None:
        """세션을 닫아요. 진행 중인 요청은 응답 없이 버리고, 대기 중인 클라이언트 요청은 실패로 끝내요."""
        if self._state is SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED

        for request_id, pending in list(self._pending.items()):
            if not pending.future.done():
                pending.future.set_exception(pending.failure("세션이 닫혀서 클라이언트 응답을 받을 수 없어요."))
            self._pending.pop(request_id, None)

        tasks = [entry.task for entry in self._in_flight.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=5.0)
        self._in_flight.clear()
        logger.info("session_closed", session_id=self._session_id, abandoned=len(tasks))

    # ── 서버 → 클라이언트 ─────────────────────────────────────────────────────

    def require_client_capability(self, capability: str) -> None:
        if self._state is not SessionState.READY or not getattr(self._client_capabilities, capability, False):
            raise CapabilityNotSupportedError(capability)

    async def send_request(
        self,
        method: str,
        params: dict[str, Any],
        *,
        sink: MessageSink | None,
        failure: type[DomainError],
        timeout_seconds: float | None = None,
    ) -> dict[str, Any]:
        """클라이언트에게 요청을 보내고 응답을 기다려요. 대기 시간은 항상 유한해요."""
        target = sink if sink is not None else self._default_sink
        if target is None or not target.accepts_requests:
            raise failure("현재 전송 채널로는 클라이언트에게 요청을 보낼 수 없어요.")
        if self._state is not SessionState.READY:
            raise failure("세션이 준비 상태가 아니에요.")

        request_id = next(self._outbound_ids)
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = _PendingClientRequest(future=future, method=method, failure=failure)
        timeout = timeout_seconds if timeout_seconds is not None else self._client_request_timeout_seconds

        logger.info("client_request_sent", session_id=self._session_id, request_id=request_id, method=method)
        target.send(build_request(request_id, method, params))
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("client_request_timeout", session_id=self._session_id, request_id=request_id, method=method)
            self._notify_client_cancel(request_id, "timeout", target)
            raise failure(f"클라이언트가 {timeout:g}초 안에 응답하지 않았어요: {method}") from None
        except asyncio.CancelledError:
            self._notify_client_cancel(request_id, "cancelled", target)
            raise
        finally:
            self._pending.pop(request_id, None)

    def send_notification(self, method: str, params: dict[str, Any] | None = None, *, sink: MessageSink | None = None) -> None:
        if self._state is SessionState.CLOSED:
            return
        target = sink if sink is not None else self._default_sink
        if target is None:
            logger.debug("notification_dropped", session_id=self._session_id, method=method)
            return
        target.send(build_notification(method, params))

    def notify_list_changed(self, kind: CapabilityKind) -> None:
        if self._state is not SessionState.READY:
            return
        self.send_notification(_LIST_CHANGED_METHODS[kind])

    def _notify_client_cancel(self, request_id: RequestId, reason: str, sink: MessageSink) -> None:
        if self._state is SessionState.CLOSED:
            return
        sink.send(build_notification("notifications/cancelled", {"requestId": request_id, "reason": reason}))

    def _resolve_client_response(self, response: InboundResponse) -> None:
        pending = self._pending.get(response.id) if response.id is not None else None
        if pending is None or pending.future.done():
            logger.info("client_response_unmatched", session_id=self._session_id, request_id=response.id)
            return
        if response.error is not None:
            message = response.error.get("message")
            text = message if isinstance(message, str) and message else "클라이언트가 오류로 응답했어요."
            pending.future.set_exception(pending.failure(text))
            return
        pending.future.set_result(response.result or {})

    def _send(self, message: dict[str, Any], sink: MessageSink | None) -> None:
        target = sink if sink is not None else self._default_sink
        if target is None:
            logger.warning("response_dropped", session_id=self._session_id, request_id=message.get("id"))
            return
        target.send(message)

    # ── 메서드 핸들러 ─────────────────────────────────────────────────────────

    async def _handle_tools_list(self, request: InboundRequest, context: RequestContext) -> dict[str, Any]:
        del context
        tools = [tool.to_dict() for tool in self._engine.registry.list_tools()]
        return self._paginate("tools", tools, request.params)

    async def _handle_tools_call(self, request: InboundRequest, context: RequestContext) -> dict[str, Any]:
        params = parse_params(CallToolParams, request.params)
        return await self._engine.call_tool(params.name, params.arguments, context)

    async def _handle_resources_list(self, request: InboundRequest, context: RequestContext) -> dict[str, Any]:
        del context
        resources = [resource.to_dict() for resource in self._engine.registry.list_resources()]
        return self._paginate("resources", resources, request.params)

    async def _handle_resources_read(self, request: InboundRequest, context: RequestContext) -> dict[str, Any]:
        params = parse_params(ReadResourceParams, request.params)
        return await self._engine.read_resource(params.uri, context)

    async def _handle_resource_templates_list(self, request: InboundRequest, context: RequestContext) -> dict[str, Any]:
        del context
        templates = [template.to_dict() for template in self._engine.registry.list_resource_templates()]
        return self._paginate("resourceTemplates", templates, request.params)

    async def _handle_prompts_list(self, request: InboundRequest, context: RequestContext) -> dict[str, Any]:
        del context
        prompts = [prompt.to_dict() for prompt in self._engine.registry.list_prompts()]
        return self._paginate("prompts", prompts, request.params)

    async def _handle_prompts_get(self, request: InboundRequest, context: RequestContext) -> dict[str, Any]:
        params = parse_params(GetPromptParams, request.params)
        return await self._engine.get_prompt(params.name, params.arguments, context)

    def _paginate(self, list_key: str, items: list[dict[str, Any]], params: dict[str, Any]) -> dict[str, Any]:
        cursor = parse_params(ListParams, params).cursor
        offset = decode_cursor(cursor) if cursor else 0
        if offset > len(items):
            raise InvalidParamsError("cursor가 목록 범위를 벗어났어요.", field="cursor")

        end = offset + self._page_size
        result: dict[str, Any] = {list_key: items[offset:end]}
        if end < len(items):
            result["nextCursor"] = encode_cursor(end)
        return result


def encode_cursor(offset: int) -> str:
    return base64.urlsafe_b64encode(f"offset:{offset}".encode()).decode("ascii")


def decode_cursor(cursor: str) -> int:
    try:
        decoded = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise InvalidParamsError("알 수 없는 cursor예요.", field="cursor") from exc
    prefix, _, value = decoded.partition(":")
    if prefix != "offset" or not value.isdigit():
        raise InvalidParamsError("알 수 없는 cursor예요.", field="cursor")
    return int(value)


async def drain(tasks: list[asyncio.Task[None]]) -> None:
    """요청 태스크가 모두 끝날 때까지 기다려요.

    기다리는 쪽이 취소되면 `CancelledError`를 그대로 올려요. 요청 태스크는 계속 돌아요.
    """
    if not tasks:
        return
    await asyncio.wait(tasks)
