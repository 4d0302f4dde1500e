from __future__ import annotations

import random
from datetime import datetime, timezone
from typing import Any

from mcp_starter.app.descriptors import ResourceDescriptor, ResourceTemplateDescriptor
from mcp_starter.app.settings import Settings

EXAMPLE_DOCUMENT = """# Example Document

This is an example document served as an MCP resource.

## Features

- Demonstrates resource capabilities
- Shows structured content delivery
- Provides example data

## More Information

Visit https://modelcontextprotocol.io for documentation.
"""


def make_about(settings: Settings):
    def about() -> str:
        return (
            f"{settings.server_name} v{settings.server_version}\n\n"
            "This is a feature-complete MCP server demonstrating:\n"
            "- Tools with structured output\n"
            "- Resources (static and dynamic)\n"
            "- Prompts with arguments\n"
            "- Multiple transport options (stdio, HTTP)\n\n"
            "For more information, visit: https://modelcontextprotocol.io"
        )

    return about


def example_document() -> str:
    return EXAMPLE_DOCUMENT


def make_config_snapshot(settings: Settings):
    def config_snapshot() -> dict[str, Any]:
        return {
            "serverName": settings.server_name,
            "serverVersion": settings.server_version,
            "endpointPath": settings.endpoint_path,
            "pageSize": settings.page_size,
            "clientRequestTimeoutSeconds": settings.client_request_timeout_seconds,
        }

    return config_snapshot


def personalized_greeting(name: str) -> str:
    return f"Hello, {name}! This is your personalized greeting from the MCP server. Have a wonderful day!"


def item_data(id: str) -> dict[str, Any]:
    return {
        "id": id,
        "name": f"Item {id}",
        "description": f"This is a dynamically generated item with ID: {id}",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "properties": {
            "color": "blue",
            "size": "medium",
            "quantity": random.randint(1, 100),
        },
    }


def build_resource_descriptors(settings: Settings) -> list[ResourceDescriptor]:
    return [
        ResourceDescriptor(
            uri="about://server",
            name="About",
            title="About This Server",
            description="Information about this MCP server",
            mime_type="text/plain",
            handler=make_about(settings),
        ),
        ResourceDescriptor(
            uri="doc://example",
            name="Example Document",
            description="An example document resource",
            mime_type="text/markdown",
            handler=example_document,
        ),
        ResourceDescriptor(
            uri="config://settings",
            name="Server Settings",
            description="Server configuration",
            mime_type="application/json",
            handler=make_config_snapshot(settings),
        ),
    ]


def build_resource_template_descriptors() -> list[ResourceTemplateDescriptor]:
    return [
        ResourceTemplateDescriptor(
            uri_template="greeting://{name}",
            name="Personalized Greeting",
            description="A personalized greeting for a specific person",
            mime_type="text/plain",
            handler=personalized_greeting,
        ),
        ResourceTemplateDescriptor(
            uri_template="item://{id}",
            name="Item Data",
            description="Data for a specific item by ID",
            mime_type="application/json",
            handler=item_data,
        ),
    ]
