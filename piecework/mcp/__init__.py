"""MCP tool layer for the piecework ledger."""

from piecework.mcp.tools import (
    LEDGER_TOOLS,
    TOOL_HANDLERS,
    call_ledger_tool,
    configure_ledger,
    get_agent_id,
    get_ledger,
    get_ledger_tools,
    reset_ledger,
    set_agent_id,
    validate_tool_input,
)

__all__ = [
    "LEDGER_TOOLS",
    "TOOL_HANDLERS",
    "call_ledger_tool",
    "configure_ledger",
    "get_agent_id",
    "get_ledger",
    "get_ledger_tools",
    "reset_ledger",
    "set_agent_id",
    "validate_tool_input",
]
