"""핸들러에 `ctx` 인자로 전달되는 요청 컨텍스트예요.

핸들러는 이 객체로 진행 상황을 알리거나, 클라이언트에게 샘플링/입력 요청을 보낼 수 있어요.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from libs.common.logging import get_logger
from mcp_starter.app.errors import ElicitationFailedError, SamplingFailedError

if TYPE_CHECKING:
    from mcp_starter.app.session import McpSession, MessageSink

logger = get_logger("mcp_starter.context")


@dataclass(slots=True)
class ElicitationResult:
    action: str
    content: dict[str, Any] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.action == "accept"


class RequestContext:
    def __init__(
        self,
        *,
        session: "McpSession",
        request_id: str | int,
        sink: "MessageSink | None",
        progress_token: str | int | None = None,
    ) -> None:
        self._session = session
        self._request_id = request_id
        self._sink = sink
        self._progress_token = progress_token
        self._last_progress: float | None = None

    @property
    def request_id(self) -> str | int:
        return self._request_id

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def client_info(self) -> dict[str, Any]:
        return dict(self._session.client_info)

    def emit_progress(self, progress: float, total: float | None = None, message: str | None = None) -> None:
        """진행 알림을 보내요. 기다리지 않고, 클라이언트가 진행 알림을 받지 않으면 조용히 버려요."""
        token = self._progress_token
        if token is None:
            if not self._session.client_capabilities.progress:
                return
            token = self._request_id
        if not self._session.is_ready:
            return
        if self._last_progress is not None and progress < self._last_progress:
            logger.warning(
                "progress_regression_dropped",
                request_id=self._request_id,
                progress=progress,
                last_progress=self._last_progress,
            )
            return
        self._last_progress = progress

        params: dict[str, Any] = {"progressToken": token, "progress": progress}
        if total is not None:
            params["total"] = total
        if message is not None:
            params["message"] = message
        self._session.send_notification("notifications/progress", params, sink=self._sink)

    async def request_sampling(
        self,
        prompt: str,
        max_tokens: int = 100,
        *,
        system_prompt: str | None = None,
        temperature: float | None = None,
    ) -> str:
        """클라이언트 LLM에게 응답 생성을 요청하고 텍스트를 돌려받아요.

        Raises:
            CapabilityNotSupportedError: 클라이언트가 sampling을 선언하지 않았을 때예요.
                이 경우 전송 채널에는 아무것도 나가지 않아요.
            SamplingFailedError: 시간 초과, 취소, 클라이언트 오류 응답일 때예요.
        """
        self._session.require_client_capability("sampling")
        params: dict[str, Any] = {
            "messages": [{"role": "user", "content": {"type": "text", "text": prompt}}],
            "maxTokens": max_tokens,
        }
        if system_prompt is not None:
            params["systemPrompt"] = system_prompt
        if temperature is not None:
            params["temperature"] = temperature

        result = await self._session.send_request(
            "sampling/createMessage",
            params,
            sink=self._sink,
            failure=SamplingFailedError,
        )
        content = result.get("content")
        if isinstance(content, dict) and content.get("type") == "text" and isinstance(content.get("text"), str):
            return content["text"]
        raise SamplingFailedError("샘플링 응답에 텍스트 콘텐츠가 없어요.")

    async def request_elicitation(self, message: str, requested_schema: dict[str, Any]) -> ElicitationResult:
        """사용자에게 구조화된 입력을 요청해요. 실패 규칙은 `request_sampling`과 같아요."""
        self._session.require_client_capability("elicitation")
        result = await self._session.send_request(
            "elicitation/create",
            {"message": message, "requestedSchema": requested_schema},
            sink=self._sink,
            failure=ElicitationFailedError,
        )
        action = result.get("action")
        if action not in {"accept", "decline", "cancel"}:
            raise ElicitationFailedError("입력 요청 응답의 action이 올바르지 않아요.")
        content = result.get("content")
        return ElicitationResult(action=action, content=content if isinstance(content, dict) else {})

    async def checkpoint(self) -> None:
        """협조적 취소 지점이에요. 취소됐다면 여기서 `CancelledError`가 나요."""
        await asyncio.sleep(0)
