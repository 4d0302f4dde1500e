"""도구/리소스/프롬프트 호출을 담당하는 실행 엔진이에요.

엔진이 만든 오류(조회 실패, 인자 검증 실패)는 JSON-RPC 오류로 올라가고,
핸들러 안에서 난 실패는 엔진 경계에서 잡아 `isError` 결과로 바꿔요.
"""

from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import dataclass, field
from typing import Any

from libs.common.errors import DomainError, NotFoundError
from libs.common.logging import get_logger
from mcp_starter.app.context import RequestContext
from mcp_starter.app.descriptors import (
    PromptDescriptor,
    PromptMessage,
    ResourceDescriptor,
    ResourceTemplateDescriptor,
)
from mcp_starter.app.errors import InternalError, InvalidParamsError, ToolError
from mcp_starter.app.registry import CapabilityRegistry
from mcp_starter.app.schema import validate_arguments
from mcp_starter.app.signature import call_handler

logger = get_logger("mcp_starter.engine")


@dataclass(slots=True)
class ToolResult:
    """도구 실행 결과를 담는 컨테이너예요."""

    content: list[dict[str, Any]] = field(default_factory=list)
    """클라이언트에 보낼 콘텐츠 블록 목록이에요."""

    structured_content: dict[str, Any] | None = None
    """구조화된 결과예요. 없으면 생략돼요."""

    is_error: bool = False
    """업무 수준 실패 여부예요. 프로토콜 오류와는 달라요."""

    @classmethod
    def text(cls, text: str, *, is_error: bool = False) -> "ToolResult":
        return cls(content=[{"type": "text", "text": text}], is_error=is_error)

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls.text(message, is_error=True)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"content": self.content, "isError": self.is_error}
        if self.structured_content is not None:
            payload["structuredContent"] = self.structured_content
        return payload


def to_tool_result(value: Any) -> ToolResult:
    if isinstance(value, ToolResult):
        return value
    if value is None:
        return ToolResult(content=[])
    if isinstance(value, str):
        return ToolResult.text(value)
    structured = value if isinstance(value, dict) else {"result": value}
    return ToolResult(
        content=[{"type": "text", "text": json.dumps(value, ensure_ascii=False, default=str)}],
        structured_content=structured,
    )


class InvocationEngine:
    def __init__(self, registry: CapabilityRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    async def call_tool(self, name: str, arguments: Any, context: RequestContext) -> dict[str, Any]:
        descriptor = self._registry.lookup_tool(name)
        validated = validate_arguments(descriptor.input_schema, arguments)

        logger.info("tool_call_started", tool=name, request_id=context.request_id)
        try:
            value = await call_handler(descriptor.handler, validated, context, descriptor.handler_signature)
        except asyncio.CancelledError:
            logger.info("tool_call_cancelled", tool=name, request_id=context.request_id)
            raise
        except ToolError as exc:
            logger.info("tool_call_business_error", tool=name, request_id=context.request_id, error=str(exc))
            return ToolResult.error(f"Error: {exc}").to_dict()
        except DomainError as exc:
            logger.warning(
                "tool_call_domain_error",
                tool=name,
                request_id=context.request_id,
                error_code=exc.error_code,
                error=exc.message,
            )
            return ToolResult.error(f"Error: {exc.message}").to_dict()
        except Exception as exc:
            logger.exception("tool_call_unexpected_error", tool=name, request_id=context.request_id, error=str(exc))
            return ToolResult.error(f"Error: {exc}").to_dict()

        logger.info("tool_call_finished", tool=name, request_id=context.request_id)
        return to_tool_result(value).to_dict()

    async def read_resource(self, uri: str, context: RequestContext) -> dict[str, Any]:
        """정적 리소스를 먼저 찾고, 없으면 템플릿으로 넘어가요."""
        try:
            descriptor = self._registry.lookup_resource(uri)
        except NotFoundError as exc:
            if exc.data and exc.data.get("reason") == "disabled":
                raise
            return await self.read_resource_template(uri, context)

        value = await self._run_handler(descriptor, {}, context, label=uri)
        return {"contents": [_resource_contents(uri, descriptor.mime_type, value)]}

    async def read_resource_template(self, uri: str, context: RequestContext) -> dict[str, Any]:
        descriptor, bindings = self._registry.lookup_resource_template(uri)
        value = await self._run_handler(descriptor, bindings, context, label=uri)
        return {"contents": [_resource_contents(uri, descriptor.mime_type, value)]}

    async def get_prompt(self, name: str, arguments: Any, context: RequestContext) -> dict[str, Any]:
        descriptor = self._registry.lookup_prompt(name)
        resolved = resolve_prompt_arguments(descriptor, arguments)
        value = await self._run_handler(descriptor, resolved, context, label=name)

        payload: dict[str, Any] = {"messages": _prompt_messages(value)}
        if descriptor.description:
            payload["description"] = descriptor.description
        return payload

    async def _run_handler(
        self,
        descriptor: ResourceDescriptor | ResourceTemplateDescriptor | PromptDescriptor,
        arguments: dict[str, Any],
        context: RequestContext,
        *,
        label: str,
    ) -> Any:
        try:
            return await call_handler(descriptor.handler, arguments, context, descriptor.handler_signature)
        except (asyncio.CancelledError, DomainError):
            raise
        except Exception as exc:
            logger.exception("handler_unexpected_error", target=label, request_id=context.request_id, error=str(exc))
            raise InternalError(f"핸들러 실행 중 오류가 발생했어요: {exc}") from exc


def resolve_prompt_arguments(descriptor: PromptDescriptor, arguments: Any) -> dict[str, Any]:
    """필수 인자를 확인하고 빠진 선택 인자에 기본값을 채워요. 선언되지 않은 인자는 버려요."""
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise InvalidParamsError("arguments는 객체여야 해요.", field="arguments")

    resolved: dict[str, Any] = {}
    for argument in descriptor.arguments:
        value = arguments.get(argument.name)
        if value is None:
            if argument.required:
                raise InvalidParamsError(f"필수 인자가 빠졌어요: {argument.name}", field=argument.name)
            if argument.default is None:
                continue
            value = argument.default
        resolved[argument.name] = value
    return resolved


def _resource_contents(uri: str, mime_type: str | None, value: Any) -> dict[str, Any]:
    contents: dict[str, Any] = {"uri": uri}
    if isinstance(value, bytes):
        contents["mimeType"] = mime_type or "application/octet-stream"
        contents["blob"] = base64.b64encode(value).decode("ascii")
        return contents
    if isinstance(value, str):
        contents["mimeType"] = mime_type or "text/plain"
        contents["text"] = value
        return contents
    contents["mimeType"] = mime_type or "application/json"
    contents["text"] = json.dumps(value, ensure_ascii=False, default=str)
    return contents


def _prompt_messages(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, str):
        return [PromptMessage(role="user", text=value).to_dict()]
    if isinstance(value, PromptMessage):
        return [value.to_dict()]
    if isinstance(value, list):
        messages: list[dict[str, Any]] = []
        for item in value:
            if isinstance(item, PromptMessage):
                messages.append(item.to_dict())
            elif isinstance(item, dict):
                messages.append(item)
            else:
                messages.append(PromptMessage(role="user", text=str(item)).to_dict())
        return messages
    raise InternalError(f"프롬프트 핸들러가 지원하지 않는 값을 반환했어요: {type(value).__name__}")
