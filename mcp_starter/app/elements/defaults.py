"""데모 도구/리소스/프롬프트를 모두 등록한 레지스트리를 만드는 팩토리예요."""

from __future__ import annotations

from mcp_starter.app.elements.prompts import build_prompt_descriptors
from mcp_starter.app.elements.resources import build_resource_descriptors, build_resource_template_descriptors
from mcp_starter.app.elements.tools import build_tool_descriptors
from mcp_starter.app.registry import CapabilityRegistry
from mcp_starter.app.settings import Settings, settings

INSTRUCTIONS = """# MCP Starter Server

A demonstration MCP server showcasing tools, resources and prompts over stdio and HTTP.

## Available Tools

- **hello**: Say hello to a person
- **get_weather**: Get the current weather for a city
- **long_task**: Simulate a long-running task with progress updates
- **load_bonus_tool**: Dynamically register a new bonus tool
- **ask_llm**: Ask the connected LLM a question using sampling
- **confirm_action**: Request user confirmation before proceeding
- **get_feedback**: Request feedback from the user
- **calculate**: Perform arithmetic operations (add, subtract, multiply, divide)
- **echo**: Echo back the provided message

## Available Resources

- **about://server**: Information about this MCP server
- **doc://example**: An example document resource
- **config://settings**: Server configuration

## Available Resource Templates

- **greeting://{name}**: A personalized greeting for a specific person
- **item://{id}**: Data for a specific item by ID

## Available Prompts

- **greet**: Generate a greeting message
- **code_review**: Review code for potential improvements

## Recommended Workflows

1. **Testing Connection**: Call `hello` with your name to verify the server is responding
2. **Weather Demo**: Call `get_weather` with a location to see structured output
3. **Long Task**: Call `long_task` to see progress reporting
4. **Dynamic Tools**: Call `load_bonus_tool`, then list tools again to find `bonus_tool`
"""


def build_default_registry(app_settings: Settings = settings) -> CapabilityRegistry:
    """기본 데모 요소가 모두 등록된 `CapabilityRegistry`를 만들어요.

    `bonus_tool`은 비활성 상태로 등록돼요. `load_bonus_tool`을 호출해야 목록에 나타나요.
    """
    registry = CapabilityRegistry()
    for descriptor in build_tool_descriptors(registry):
        registry.register(descriptor)
    for resource in build_resource_descriptors(app_settings):
        registry.register(resource)
    for template in build_resource_template_descriptors():
        registry.register(template)
    for prompt in build_prompt_descriptors():
        registry.register(prompt)
    return registry
