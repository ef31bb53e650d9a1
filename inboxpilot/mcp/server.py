"""
Minimal MCP-style tool server: exposes the agent's tool catalog through a
standardized interface so external agents can discover and call the same
tools the assistant uses, scoped to the calling owner.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends

from inboxpilot.api.dependencies import get_owner_id, get_services
from inboxpilot.api.handlers import handle_tool_call
from inboxpilot.bootstrap import Services
from inboxpilot.schemas.task import ToolCallRequest

logger = logging.getLogger(__name__)

mcp_router = APIRouter(tags=["mcp"])


@mcp_router.get(
    "/tools",
    summary="MCP tool discovery",
    description="List every tool with its description and JSON-schema input.",
)
def mcp_list_tools(services: Services = Depends(get_services)) -> dict[str, list[dict[str, Any]]]:
    tools = [
        {
            "name": s["function"]["name"],
            "description": s["function"]["description"],
            "input_schema": s["function"]["parameters"],
        }
        for s in services.registry.schemas()
    ]
    return {"tools": tools}


@mcp_router.post(
    "/tools/{name}",
    summary="MCP tool call",
    description=(
        "This endpoint acts as an MCP tool server, allowing external agents to call any "
        "assistant tool through a standardized interface. The result always carries success."
    ),
)
def mcp_call_tool(
    name: str,
    body: ToolCallRequest,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return handle_tool_call(services, owner_id, name, body.arguments, body.conversation_id)
