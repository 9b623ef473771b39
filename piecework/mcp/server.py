"""
Piecework MCP Server - job ledger operations for MCP clients.

Usage:
    piecework mcp --as AGENT_ID  # Start MCP server (stdio transport)
"""

import asyncio
import logging
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from piecework.jobs.service import JobLedger
from piecework.mcp.tools import (
    call_ledger_tool,
    configure_ledger,
    get_ledger_tools,
    set_agent_id,
)

logger = logging.getLogger(__name__)

mcp = Server("piecework")


@mcp.list_tools()
async def list_tools() -> list[Tool]:
    """List available ledger tools."""
    return get_ledger_tools()


@mcp.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    return await call_ledger_tool(name, arguments)


async def run_server():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await mcp.run(
            read_stream,
            write_stream,
            mcp.create_initialization_options(),
        )


def main(agent_id: str, ledger: Optional[JobLedger] = None):
    """Entry point for MCP server."""
    if ledger is not None:
        configure_ledger(ledger)
    set_agent_id(agent_id)
    logger.info(f"Starting piecework MCP server as {agent_id}")
    asyncio.run(run_server())
