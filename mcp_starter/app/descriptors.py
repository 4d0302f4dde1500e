"""레지스트리에 올라가는 도구/리소스/프롬프트 서술자예요.

서술자는 서버 빌드 시점에 만들어지고, `enabled` 플래그를 제외하면 바뀌지 않아요.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mcp_starter.app.signature import Handler, HandlerSignature


@dataclass(slots=True, frozen=True)
class Icon:
    src: str
    mime_type: str | None = None
    sizes: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"src": self.src}
        if self.mime_type:
            payload["mimeType"] = self.mime_type
        if self.sizes:
            payload["sizes"] = list(self.sizes)
        return payload


@dataclass(slots=True, frozen=True)
class ToolAnnotations:
    read_only: bool | None = None
    destructive: bool | None = None
    idempotent: bool | None = None
    opens_external_world: bool | None = None

    def to_dict(self, title: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if title:
            payload["title"] = title
        if self.read_only is not None:
            payload["readOnlyHint"] = self.read_only
        if self.destructive is not None:
            payload["destructiveHint"] = self.destructive
        if self.idempotent is not None:
            payload["idempotentHint"] = self.idempotent
        if self.opens_external_world is not None:
            payload["openWorldHint"] = self.opens_external_world
        return payload


@dataclass(slots=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Handler
    title: str | None = None
    annotations: ToolAnnotations = field(default_factory=ToolAnnotations)
    output_schema: dict[str, Any] | None = None
    icons: list[Icon] = field(default_factory=list)
    enabled: bool = True
    handler_signature: HandlerSignature | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def key(self) -> str:
        return self.name

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }
        if self.title:
            payload["title"] = self.title
        if self.output_schema is not None:
            payload["outputSchema"] = self.output_schema
        annotations = self.annotations.to_dict(self.title)
        if annotations:
            payload["annotations"] = annotations
        if self.icons:
            payload["icons"] = [icon.to_dict() for icon in self.icons]
        return payload


@dataclass(slots=True)
class ResourceDescriptor:
    uri: str
    name: str
    handler: Handler
    description: str | None = None
    mime_type: str | None = None
    title: str | None = None
    enabled: bool = True
    handler_signature: HandlerSignature | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def key(self) -> str:
        return self.uri

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"uri": self.uri, "name": self.name}
        if self.title:
            payload["title"] = self.title
        if self.description:
            payload["description"] = self.description
        if self.mime_type:
            payload["mimeType"] = self.mime_type
        return payload


@dataclass(slots=True)
class ResourceTemplateDescriptor:
    uri_template: str
    name: str
    handler: Handler
    description: str | None = None
    mime_type: str | None = None
    title: str | None = None
    enabled: bool = True
    handler_signature: HandlerSignature | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def key(self) -> str:
        return self.uri_template

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"uriTemplate": self.uri_template, "name": self.name}
        if self.title:
            payload["title"] = self.title
        if self.description:
            payload["description"] = self.description
        if self.mime_type:
            payload["mimeType"] = self.mime_type
        return payload


@dataclass(slots=True, frozen=True)
class PromptArgument:
    name: str
    description: str | None = None
    required: bool = False
    default: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "required": self.required}
        if self.description:
            payload["description"] = self.description
        return payload


@dataclass(slots=True)
class PromptDescriptor:
    name: str
    handler: Handler
    description: str | None = None
    title: str | None = None
    arguments: list[PromptArgument] = field(default_factory=list)
    enabled: bool = True
    handler_signature: HandlerSignature | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def key(self) -> str:
        return self.name

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "arguments": [argument.to_dict() for argument in self.arguments],
        }
        if self.title:
            payload["title"] = self.title
        if self.description:
            payload["description"] = self.description
        return payload


@dataclass(slots=True, frozen=True)
class PromptMessage:
    role: str
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": {"type": "text", "text": self.text}}


Descriptor = ToolDescriptor | ResourceDescriptor | ResourceTemplateDescriptor | PromptDescriptor
