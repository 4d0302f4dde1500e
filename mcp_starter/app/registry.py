"""도구/리소스/리소스 템플릿/프롬프트를 보관하는 중앙 레지스트리예요.

모든 세션이 공유하는 유일한 가변 상태라서 읽기/쓰기 락으로 보호해요.
조회는 동시에 여러 개가 가능하고, 등록과 활성화 토글은 잠깐 단독으로 잡아요.

사용법::

    registry = CapabilityRegistry()
    registry.register(ToolDescriptor(name="hello", ...))

    tool = registry.lookup_tool("hello")
    changed = registry.set_enabled("hello", False)
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from libs.common.errors import ConfigurationError, NotFoundError
from libs.common.logging import get_logger
from mcp_starter.app.descriptors import (
    Descriptor,
    PromptDescriptor,
    ResourceDescriptor,
    ResourceTemplateDescriptor,
    ToolDescriptor,
)
from mcp_starter.app.errors import DuplicateNameError
from mcp_starter.app.rwlock import ReadWriteLock
from mcp_starter.app.schema import check_input_schema
from mcp_starter.app.signature import inspect_handler
from mcp_starter.app.uri_template import UriTemplate

logger = get_logger("mcp_starter.registry")


class CapabilityKind(str, Enum):
    TOOL = "tool"
    RESOURCE = "resource"
    RESOURCE_TEMPLATE = "resource_template"
    PROMPT = "prompt"

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]


_KIND_LABELS = {
    CapabilityKind.TOOL: "도구",
    CapabilityKind.RESOURCE: "리소스",
    CapabilityKind.RESOURCE_TEMPLATE: "리소스 템플릿",
    CapabilityKind.PROMPT: "프롬프트",
}

RegistryListener = Callable[[CapabilityKind], None]


def kind_of(descriptor: Descriptor) -> CapabilityKind:
    if isinstance(descriptor, ToolDescriptor):
        return CapabilityKind.TOOL
    if isinstance(descriptor, ResourceDescriptor):
        return CapabilityKind.RESOURCE
    if isinstance(descriptor, ResourceTemplateDescriptor):
        return CapabilityKind.RESOURCE_TEMPLATE
    if isinstance(descriptor, PromptDescriptor):
        return CapabilityKind.PROMPT
    raise ConfigurationError(f"알 수 없는 서술자 타입이에요: {type(descriptor).__name__}")


class CapabilityRegistry:
    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        # dict는 삽입 순서를 보존해요. 목록 순서가 곧 등록 순서예요.
        self._entries: dict[CapabilityKind, dict[str, Descriptor]] = {kind: {} for kind in CapabilityKind}
        self._templates: dict[str, UriTemplate] = {}
        self._listeners: list[RegistryListener] = []

    def add_listener(self, listener: RegistryListener) -> None:
        """목록이 바뀔 때 호출될 콜백을 등록해요. 콜백은 락 밖에서 호출돼요."""
        self._listeners.append(listener)

    def register(self, descriptor: Descriptor) -> None:
        """서술자를 등록해요. 같은 이름/URI가 있으면 `DuplicateNameError`를 던지고 아무것도 바꾸지 않아요."""
        kind = kind_of(descriptor)
        compiled = self._validate(descriptor)

        with self._lock.write():
            entries = self._entries[kind]
            if descriptor.key in entries:
                raise DuplicateNameError(kind.label, descriptor.key)
            entries[descriptor.key] = descriptor
            if compiled is not None:
                self._templates[descriptor.key] = compiled

        logger.info("capability_registered", kind=kind.value, key=descriptor.key, enabled=descriptor.enabled)
        if descriptor.enabled:
            self._notify(kind)

    def set_enabled(self, name: str, enabled: bool, *, kind: CapabilityKind = CapabilityKind.TOOL) -> bool:
        """활성화 상태를 바꿔요. 실제로 상태가 바뀐 경우에만 True를 반환해요."""
        with self._lock.write():
            descriptor = self._entries[kind].get(name)
            if descriptor is None:
                raise NotFoundError(f"등록되지 않은 {kind.label}예요: {name}", data={"reason": "unknown", "key": name})
            if descriptor.enabled == enabled:
                return False
            descriptor.enabled = enabled

        logger.info("capability_toggled", kind=kind.value, key=name, enabled=enabled)
        self._notify(kind)
        return True

    def is_enabled(self, name: str, *, kind: CapabilityKind = CapabilityKind.TOOL) -> bool:
        with self._lock.read():
            descriptor = self._entries[kind].get(name)
            return descriptor is not None and descriptor.enabled

    def lookup_tool(self, name: str) -> ToolDescriptor:
        return self._lookup(CapabilityKind.TOOL, name)  # type: ignore[return-value]

    def lookup_resource(self, uri: str) -> ResourceDescriptor:
        return self._lookup(CapabilityKind.RESOURCE, uri)  # type: ignore[return-value]

    def lookup_prompt(self, name: str) -> PromptDescriptor:
        return self._lookup(CapabilityKind.PROMPT, name)  # type: ignore[return-value]

    def lookup_resource_template(self, uri: str) -> tuple[ResourceTemplateDescriptor, dict[str, str]]:
        """URI에 매칭되는 가장 구체적인 템플릿과 바인딩을 찾아요.

        구체성이 같으면 먼저 등록된 템플릿이 이겨요.
        """
        best: tuple[ResourceTemplateDescriptor, dict[str, str]] | None = None
        best_specificity: tuple[int, int, int] | None = None
        with self._lock.read():
            for key, descriptor in self._entries[CapabilityKind.RESOURCE_TEMPLATE].items():
                if not descriptor.enabled:
                    continue
                template = self._templates[key]
                bindings = template.match(uri)
                if bindings is None:
                    continue
                if best_specificity is None or template.specificity > best_specificity:
                    best = (descriptor, bindings)  # type: ignore[assignment]
                    best_specificity = template.specificity
        if best is None:
            raise NotFoundError(f"URI에 맞는 리소스 템플릿이 없어요: {uri}", data={"reason": "unknown", "key": uri})
        return best

    def list(self, kind: CapabilityKind) -> list[Descriptor]:
        with self._lock.read():
            return [descriptor for descriptor in self._entries[kind].values() if descriptor.enabled]

    def list_tools(self) -> list[ToolDescriptor]:
        return self.list(CapabilityKind.TOOL)  # type: ignore[return-value]

    def list_resources(self) -> list[ResourceDescriptor]:
        return self.list(CapabilityKind.RESOURCE)  # type: ignore[return-value]

    def list_resource_templates(self) -> list[ResourceTemplateDescriptor]:
        return self.list(CapabilityKind.RESOURCE_TEMPLATE)  # type: ignore[return-value]

    def list_prompts(self) -> list[PromptDescriptor]:
        return self.list(CapabilityKind.PROMPT)  # type: ignore[return-value]

    def __len__(self) -> int:
        with self._lock.read():
            return sum(len(entries) for entries in self._entries.values())

    def __contains__(self, name: str) -> bool:
        with self._lock.read():
            return any(name in entries for entries in self._entries.values())

    def _lookup(self, kind: CapabilityKind, key: str) -> Descriptor:
        with self._lock.read():
            descriptor = self._entries[kind].get(key)
        if descriptor is None:
            raise NotFoundError(f"등록되지 않은 {kind.label}예요: {key}", data={"reason": "unknown", "key": key})
        if not descriptor.enabled:
            raise NotFoundError(f"비활성화된 {kind.label}예요: {key}", data={"reason": "disabled", "key": key})
        return descriptor

    def _validate(self, descriptor: Descriptor) -> UriTemplate | None:
        if not descriptor.key:
            raise ConfigurationError("이름이나 URI가 비어 있는 서술자는 등록할 수 없어요.")
        if not callable(descriptor.handler):
            raise ConfigurationError(f"핸들러는 호출 가능해야 해요: {descriptor.key}")
        try:
            signature = inspect_handler(descriptor.handler)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"핸들러 시그니처를 읽을 수 없어요: {descriptor.key}") from exc
        descriptor.handler_signature = signature

        if isinstance(descriptor, ToolDescriptor):
            check_input_schema(descriptor.name, descriptor.input_schema)
            return None

        if isinstance(descriptor, ResourceTemplateDescriptor):
            template = UriTemplate.compile(descriptor.uri_template)
            declared = set(signature.parameters)
            placeholders = set(template.placeholders)
            if declared != placeholders and not (signature.accepts_var_kwargs and declared <= placeholders):
                raise ConfigurationError(
                    f"템플릿 자리표시자와 핸들러 인자가 달라요: {descriptor.uri_template} "
                    f"(자리표시자 {sorted(placeholders)}, 인자 {sorted(declared)})"
                )
            return template

        return None

    def _notify(self, kind: CapabilityKind) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind)
            except Exception:
                logger.exception("registry_listener_failed", kind=kind.value)
