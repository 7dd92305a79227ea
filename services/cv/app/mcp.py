from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from libs.core import logging as core_logging
from libs.core.models import utc_timestamp

from ..cv_core import DispatcherHandle, load_settings

LOGGER = core_logging.get_logger("cv")

SERVER_NAME = "mcp-cv-server"
SERVER_VERSION = "1.0.0"


def _text_content(payload: Dict[str, Any]) -> List[types.TextContent]:
    return [types.TextContent(type="text", text=json.dumps(payload, indent=2))]


async def list_tool_payloads(handle: DispatcherHandle) -> List[types.Tool]:
    dispatcher = handle.dispatcher
    if dispatcher is None:
        return []
    return [
        types.Tool(
            name=definition.name,
            description=definition.description,
            inputSchema=definition.parameters,
        )
        for definition in dispatcher.get_tool_definitions()
    ]


async def call_tool_payload(
    handle: DispatcherHandle, name: str, arguments: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    dispatcher = handle.dispatcher
    if dispatcher is None:
        return {
            "success": False,
            "error": "Server not properly initialized",
            "tool": name,
            "timestamp": utc_timestamp(),
        }
    result = await dispatcher.execute(name, arguments or {})
    return result.to_envelope()


def create_mcp_server(handle: DispatcherHandle) -> Server:
    server: Server = Server(SERVER_NAME, version=SERVER_VERSION)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return await list_tool_payloads(handle)

    # Arguments are validated by the dispatcher so both transports report the same errors.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
        return _text_content(await call_tool_payload(handle, name, arguments))

    return server


async def serve_stdio(handle: DispatcherHandle) -> None:
    await handle.ensure_initialized()
    server = create_mcp_server(handle)
    tools = await list_tool_payloads(handle)
    for tool in tools:
        LOGGER.info("mcp_tool_available", tool=tool.name, description=tool.description)
    status = handle.status()
    LOGGER.info(
        "mcp_server_status",
        state=status["state"],
        cv_loaded=status["cv_loaded"],
        email_configured=status["email_configured"],
        tools_ready=status["tools_ready"],
    )
    if status["state"] != "ready":
        LOGGER.warning("mcp_server_limited_functionality", errors=status.get("errors", []))
    async with stdio_server() as (read_stream, write_stream):
        LOGGER.info("mcp_server_listening", transport="stdio")
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    core_logging.configure_logging("cv-mcp")
    handle = DispatcherHandle.from_settings(load_settings())
    try:
        asyncio.run(serve_stdio(handle))
    except KeyboardInterrupt:
        LOGGER.info("mcp_server_shutdown")
