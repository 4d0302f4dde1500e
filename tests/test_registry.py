from __future__ import annotations

import gc
import threading
import weakref
from typing import Any

import pytest

from libs.common.errors import ConfigurationError, NotFoundError
from mcp_starter.app.descriptors import (
    PromptDescriptor,
    ResourceDescriptor,
    ResourceTemplateDescriptor,
    ToolDescriptor,
)
from mcp_starter.app.errors import DuplicateNameError
from mcp_starter.app.registry import CapabilityKind, CapabilityRegistry


def _tool(name: str, *, enabled: bool = True, schema: dict[str, Any] | None = None) -> ToolDescriptor:
    return ToolDescriptor(
        name=name,
        description=f"{name} 도구",
        input_schema=schema or {"type": "object", "properties": {}},
        handler=lambda: name,
        enabled=enabled,
    )


def _template(uri_template: str, handler: Any) -> ResourceTemplateDescriptor:
    return ResourceTemplateDescriptor(uri_template=uri_template, name=uri_template, handler=handler)


def test_list_preserves_registration_order() -> None:
    registry = CapabilityRegistry()
    for name in ["zeta", "alpha", "mid"]:
        registry.register(_tool(name))

    assert [tool.name for tool in registry.list_tools()] == ["zeta", "alpha", "mid"]


def test_duplicate_registration_fails_without_mutation() -> None:
    registry = CapabilityRegistry()
    original = _tool("hello")
    registry.register(original)

    with pytest.raises(DuplicateNameError):
        registry.register(_tool("hello", schema={"type": "object", "properties": {"x": {"type": "string"}}}))

    assert registry.lookup_tool("hello") is original
    assert len(registry) == 1


def test_same_key_in_different_kinds_is_allowed() -> None:
    registry = CapabilityRegistry()
    registry.register(_tool("greet"))
    registry.register(PromptDescriptor(name="greet", handler=lambda: "hi"))

    assert "greet" in registry
    assert len(registry) == 2


def test_lookup_distinguishes_unknown_and_disabled() -> None:
    registry = CapabilityRegistry()
    registry.register(_tool("hidden", enabled=False))

    with pytest.raises(NotFoundError) as unknown:
        registry.lookup_tool("missing")
    with pytest.raises(NotFoundError) as disabled:
        registry.lookup_tool("hidden")

    assert unknown.value.data == {"reason": "unknown", "key": "missing"}
    assert disabled.value.data == {"reason": "disabled", "key": "hidden"}


def test_set_enabled_reports_only_real_transitions() -> None:
    registry = CapabilityRegistry()
    registry.register(_tool("bonus", enabled=False))
    changes: list[CapabilityKind] = []
    registry.add_listener(changes.append)

    assert registry.set_enabled("bonus", True) is True
    assert registry.set_enabled("bonus", True) is False
    assert registry.is_enabled("bonus") is True
    assert registry.set_enabled("bonus", False) is True
    assert registry.is_enabled("bonus") is False
    assert changes == [CapabilityKind.TOOL, CapabilityKind.TOOL]


def test_set_enabled_unknown_name_raises() -> None:
    registry = CapabilityRegistry()
    with pytest.raises(NotFoundError):
        registry.set_enabled("ghost", True)


def test_disabled_descriptors_are_hidden_from_list() -> None:
    registry = CapabilityRegistry()
    registry.register(_tool("a"))
    registry.register(_tool("b", enabled=False))

    assert [tool.name for tool in registry.list_tools()] == ["a"]
    registry.set_enabled("b", True)
    assert [tool.name for tool in registry.list_tools()] == ["a", "b"]


def test_registering_disabled_descriptor_does_not_notify() -> None:
    registry = CapabilityRegistry()
    changes: list[CapabilityKind] = []
    registry.add_listener(changes.append)

    registry.register(_tool("quiet", enabled=False))
    registry.register(ResourceDescriptor(uri="doc://a", name="a", handler=lambda: "a"))

    assert changes == [CapabilityKind.RESOURCE]


def test_failing_listener_does_not_break_registration() -> None:
    registry = CapabilityRegistry()

    def broken(kind: CapabilityKind) -> None:
        raise RuntimeError("listener failed")

    registry.add_listener(broken)
    registry.register(_tool("still-works"))
    assert registry.lookup_tool("still-works").name == "still-works"


def test_tool_schema_must_be_object() -> None:
    registry = CapabilityRegistry()
    with pytest.raises(ConfigurationError):
        registry.register(_tool("bad", schema={"type": "string"}))


def test_tool_schema_must_be_valid_json_schema() -> None:
    registry = CapabilityRegistry()
    with pytest.raises(ConfigurationError):
        registry.register(_tool("bad", schema={"type": "object", "properties": {"x": {"type": 12}}}))


def test_template_placeholders_must_match_handler_parameters() -> None:
    registry = CapabilityRegistry()

    def wrong(name: str) -> str:
        return name

    with pytest.raises(ConfigurationError):
        registry.register(_template("item://{id}", wrong))


def test_template_handler_may_take_context() -> None:
    registry = CapabilityRegistry()

    def with_ctx(id: str, ctx: Any = None) -> str:
        return id

    registry.register(_template("item://{id}", with_ctx))
    descriptor, bindings = registry.lookup_resource_template("item://7")
    assert descriptor.uri_template == "item://{id}"
    assert bindings == {"id": "7"}


def test_most_specific_template_wins() -> None:
    registry = CapabilityRegistry()

    def generic(path: str) -> str:
        return path

    def docs(path: str) -> str:
        return path

    registry.register(_template("file://{path}", generic))
    registry.register(_template("file://docs-{path}", docs))

    descriptor, bindings = registry.lookup_resource_template("file://docs-intro")
    assert descriptor.uri_template == "file://docs-{path}"
    assert bindings == {"path": "intro"}


def test_longer_literal_prefix_wins_over_longer_suffix() -> None:
    registry = CapabilityRegistry()

    def details(x: str) -> str:
        return x

    def items(y: str) -> str:
        return y

    registry.register(_template("a://{x}/details", details))
    registry.register(_template("a://items/{y}", items))

    descriptor, bindings = registry.lookup_resource_template("a://items/details")
    assert descriptor.uri_template == "a://items/{y}"
    assert bindings == {"y": "details"}


def test_literal_template_beats_placeholder() -> None:
    registry = CapabilityRegistry()

    def item(id: str) -> str:
        return id

    def special() -> str:
        return "special"

    registry.register(_template("item://{id}", item))
    registry.register(_template("item://special", special))

    special_descriptor, special_bindings = registry.lookup_resource_template("item://special")
    item_descriptor, item_bindings = registry.lookup_resource_template("item://other")
    assert special_descriptor.uri_template == "item://special"
    assert special_bindings == {}
    assert item_descriptor.uri_template == "item://{id}"
    assert item_bindings == {"id": "other"}


def test_template_ties_go_to_first_registered() -> None:
    registry = CapabilityRegistry()

    def first(a: str) -> str:
        return a

    def second(b: str) -> str:
        return b

    registry.register(_template("x://{a}", first))
    registry.register(_template("x://{b}", second))

    descriptor, bindings = registry.lookup_resource_template("x://value")
    assert descriptor.uri_template == "x://{a}"
    assert bindings == {"a": "value"}


def test_template_lookup_without_match_raises() -> None:
    registry = CapabilityRegistry()
    with pytest.raises(NotFoundError):
        registry.lookup_resource_template("nothing://here")


def test_concurrent_lookups_tolerate_toggling() -> None:
    registry = CapabilityRegistry()
    registry.register(_tool("stable"))
    registry.register(_tool("flapping"))
    errors: list[Exception] = []
    stop = threading.Event()

    def reader() -> None:
        try:
            while not stop.is_set():
                assert registry.lookup_tool("stable").name == "stable"
                names = [tool.name for tool in registry.list_tools()]
                assert names[0] == "stable"
        except Exception as exc:
            errors.append(exc)

    def writer() -> None:
        for index in range(200):
            registry.set_enabled("flapping", index % 2 == 0)
        stop.set()

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for thread in readers:
        thread.start()
    writer()
    for thread in readers:
        thread.join(timeout=5)

    assert errors == []


def test_registration_records_handler_signature() -> None:
    class EchoHandler:
        __hash__ = None  # type: ignore[assignment]

        def __call__(self, text: str, ctx: Any = None) -> str:
            return text

    registry = CapabilityRegistry()
    descriptor = ToolDescriptor(
        name="echo",
        description="echo",
        input_schema={"type": "object", "properties": {"text": {"type": "string"}}},
        handler=EchoHandler(),
    )
    registry.register(descriptor)

    assert descriptor.handler_signature is not None
    assert descriptor.handler_signature.parameters == ("text",)
    assert descriptor.handler_signature.accepts_context is True


def test_dropped_registry_releases_its_handlers() -> None:
    def build() -> weakref.ref[Any]:
        registry = CapabilityRegistry()

        def about() -> str:
            return "about"

        registry.register(ResourceDescriptor(uri="about://x", name="about", handler=about))
        return weakref.ref(about)

    handler_ref = build()
    gc.collect()

    assert handler_ref() is None
