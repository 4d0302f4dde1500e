"""기본으로 등록되는 데모 도구들이에요.

도구마다 핸들러 함수와 서술자를 만드는 함수가 짝을 이뤄요. 인자 이름이 camelCase인
도구(`long_task`, `ask_llm`)는 `**arguments`로 받아서 와이어 이름 그대로 꺼내 써요.
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timezone
from typing import Any

from mcp_starter.app.context import RequestContext
from mcp_starter.app.descriptors import ToolAnnotations, ToolDescriptor
from mcp_starter.app.errors import (
    CapabilityNotSupportedError,
    ElicitationFailedError,
    SamplingFailedError,
    ToolError,
)
from mcp_starter.app.registry import CapabilityRegistry

BONUS_TOOL_NAME = "bonus_tool"
LONG_TASK_STEP_SECONDS = 0.2
WEATHER_CONDITIONS = ("sunny", "cloudy", "rainy", "windy")


def _string_property(title: str, description: str) -> dict[str, Any]:
    return {"type": "string", "title": title, "description": description}


def hello(name: str) -> str:
    return f"Hello, {name}! Welcome to MCP."


def get_weather(city: str) -> dict[str, Any]:
    return {
        "location": city,
        "temperature": random.randint(15, 35),
        "unit": "celsius",
        "conditions": random.choice(WEATHER_CONDITIONS),
        "humidity": random.randint(40, 80),
    }


async def long_task(ctx: RequestContext, **arguments: Any) -> str:
    """단계마다 잠깐 쉬면서 진행 알림을 보내요. 쉬는 지점에서 취소가 반영돼요."""
    task_name = arguments["taskName"]
    steps = arguments["steps"]
    for step in range(1, steps + 1):
        await asyncio.sleep(LONG_TASK_STEP_SECONDS)
        ctx.emit_progress(step, steps, f"{task_name}: step {step}/{steps}")
    return f'Task "{task_name}" completed successfully after {steps} steps!'


def make_load_bonus_tool(registry: CapabilityRegistry):
    def load_bonus_tool() -> str:
        if not registry.set_enabled(BONUS_TOOL_NAME, True):
            return "Bonus tool is already loaded."
        return "Bonus tool has been successfully loaded and registered!"

    return load_bonus_tool


def bonus_tool(message: str | None = None) -> str:
    if message:
        return f"Bonus tool says: {message}"
    return "Bonus tool is working! It was loaded at runtime."


async def ask_llm(ctx: RequestContext, **arguments: Any) -> str:
    prompt = arguments["prompt"]
    max_tokens = arguments["maxTokens"]
    try:
        return await ctx.request_sampling(prompt, max_tokens)
    except CapabilityNotSupportedError:
        return (
            f'This is a simulated response to: "{prompt}". In a real implementation, this would use the '
            f"MCP sampling feature to query the connected LLM. (Max tokens: {max_tokens})"
        )
    except SamplingFailedError as exc:
        raise ToolError(f"LLM sampling failed: {exc.message}") from exc


async def confirm_action(ctx: RequestContext, action: str, destructive: bool = False) -> dict[str, Any]:
    schema = {
        "type": "object",
        "properties": {"confirm": {"type": "boolean", "title": "Confirm", "description": "Proceed with the action"}},
        "required": ["confirm"],
    }
    warning = " This action is destructive." if destructive else ""
    try:
        answer = await ctx.request_elicitation(f"Do you want to proceed with: {action}?{warning}", schema)
    except CapabilityNotSupportedError:
        return {
            "action": action,
            "destructive": destructive,
            "confirmed": True,
            "message": f"User confirmed: {action}",
        }
    except ElicitationFailedError as exc:
        raise ToolError(f"Confirmation request failed: {exc.message}") from exc

    confirmed = answer.accepted and bool(answer.content.get("confirm"))
    return {
        "action": action,
        "destructive": destructive,
        "confirmed": confirmed,
        "message": f"User {'confirmed' if confirmed else 'declined'}: {action}",
    }


async def get_feedback(ctx: RequestContext, question: str) -> dict[str, Any]:
    schema = {
        "type": "object",
        "properties": {"feedback": _string_property("Feedback", "Your answer")},
        "required": ["feedback"],
    }
    try:
        answer = await ctx.request_elicitation(question, schema)
    except CapabilityNotSupportedError:
        feedback = f"This is simulated user feedback for: {question}"
    except ElicitationFailedError as exc:
        raise ToolError(f"Feedback request failed: {exc.message}") from exc
    else:
        if not answer.accepted:
            raise ToolError(f"User did not provide feedback ({answer.action}).")
        feedback = str(answer.content.get("feedback", ""))
    return {
        "question": question,
        "feedback": feedback,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def calculate(a: float, b: float, operation: str) -> str:
    if operation == "add":
        result = a + b
    elif operation == "subtract":
        result = a - b
    elif operation == "multiply":
        result = a * b
    else:
        if b == 0:
            raise ToolError("Division by zero")
        result = a / b
    return f"{a:g} {_OPERATION_SYMBOLS[operation]} {b:g} = {result:g}"


_OPERATION_SYMBOLS = {"add": "+", "subtract": "-", "multiply": "*", "divide": "/"}


def echo(message: str) -> str:
    return f"Echo: {message}"


def build_tool_descriptors(registry: CapabilityRegistry) -> list[ToolDescriptor]:
    """등록 순서가 곧 `tools/list` 순서예요."""
    read_only = ToolAnnotations(read_only=True, destructive=False, idempotent=True, opens_external_world=False)
    interactive = ToolAnnotations(read_only=True, destructive=False, idempotent=False, opens_external_world=True)
    return [
        ToolDescriptor(
            name="hello",
            title="Say Hello",
            description="Say hello to a person",
            input_schema={
                "type": "object",
                "properties": {"name": _string_property("Name", "Name of the person to greet")},
                "required": ["name"],
            },
            handler=hello,
            annotations=read_only,
        ),
        ToolDescriptor(
            name="get_weather",
            title="Get Weather",
            description="Get the current weather for a city",
            input_schema={
                "type": "object",
                "properties": {"city": _string_property("City", "City name to get weather for")},
                "required": ["city"],
            },
            output_schema={
                "type": "object",
                "properties": {
                    "location": {"type": "string"},
                    "temperature": {"type": "integer"},
                    "unit": {"type": "string"},
                    "conditions": {"type": "string"},
                    "humidity": {"type": "integer"},
                },
                "required": ["location", "temperature", "unit", "conditions", "humidity"],
            },
            handler=get_weather,
            annotations=ToolAnnotations(read_only=True, destructive=False, idempotent=False, opens_external_world=False),
        ),
        ToolDescriptor(
            name="long_task",
            title="Long Running Task",
            description="Simulate a long-running task with progress updates",
            input_schema={
                "type": "object",
                "properties": {
                    "taskName": _string_property("Task Name", "Name for this task"),
                    "steps": {
                        "type": "integer",
                        "title": "Steps",
                        "description": "Number of steps to simulate",
                        "minimum": 1,
                        "default": 5,
                    },
                },
                "required": ["taskName"],
            },
            handler=long_task,
            annotations=read_only,
        ),
        ToolDescriptor(
            name="load_bonus_tool",
            title="Load Bonus Tool",
            description="Dynamically register a new bonus tool",
            input_schema={"type": "object", "properties": {}},
            handler=make_load_bonus_tool(registry),
            annotations=ToolAnnotations(read_only=False, destructive=False, idempotent=True, opens_external_world=False),
        ),
        ToolDescriptor(
            name=BONUS_TOOL_NAME,
            title="Bonus Tool",
            description="A bonus tool that appears after calling load_bonus_tool",
            input_schema={
                "type": "object",
                "properties": {"message": _string_property("Message", "Optional message for the bonus tool")},
            },
            handler=bonus_tool,
            annotations=read_only,
            enabled=False,
        ),
        ToolDescriptor(
            name="ask_llm",
            title="Ask LLM",
            description="Ask the connected LLM a question using sampling",
            input_schema={
                "type": "object",
                "properties": {
                    "prompt": _string_property("Prompt", "The question or prompt to send to the LLM"),
                    "maxTokens": {
                        "type": "integer",
                        "title": "Max Tokens",
                        "description": "Maximum tokens in response",
                        "minimum": 1,
                        "default": 100,
                    },
                },
                "required": ["prompt"],
            },
            handler=ask_llm,
            annotations=interactive,
        ),
        ToolDescriptor(
            name="confirm_action",
            title="Confirm Action",
            description="Request user confirmation before proceeding",
            input_schema={
                "type": "object",
                "properties": {
                    "action": _string_property("Action", "Description of the action to confirm"),
                    "destructive": {
                        "type": "boolean",
                        "title": "Destructive",
                        "description": "Whether the action is destructive",
                        "default": False,
                    },
                },
                "required": ["action"],
            },
            handler=confirm_action,
            annotations=interactive,
        ),
        ToolDescriptor(
            name="get_feedback",
            title="Get Feedback",
            description="Request feedback from the user",
            input_schema={
                "type": "object",
                "properties": {"question": _string_property("Question", "The question to ask the user")},
                "required": ["question"],
            },
            handler=get_feedback,
            annotations=interactive,
        ),
        ToolDescriptor(
            name="calculate",
            title="Calculator",
            description="Perform arithmetic operations (add, subtract, multiply, divide)",
            input_schema={
                "type": "object",
                "properties": {
                    "a": {"type": "number", "title": "A", "description": "First operand"},
                    "b": {"type": "number", "title": "B", "description": "Second operand"},
                    "operation": {
                        "type": "string",
                        "title": "Operation",
                        "description": "Arithmetic operation to perform",
                        "enum": list(_OPERATION_SYMBOLS),
                    },
                },
                "required": ["a", "b", "operation"],
            },
            handler=calculate,
            annotations=read_only,
        ),
        ToolDescriptor(
            name="echo",
            title="Echo",
            description="Echo back the provided message",
            input_schema={
                "type": "object",
                "properties": {"message": _string_property("Message", "Message to echo back")},
                "required": ["message"],
            },
            handler=echo,
            annotations=read_only,
        ),
    ]
