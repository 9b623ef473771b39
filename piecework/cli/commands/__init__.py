"""CLI command modules for piecework."""

from piecework.cli.commands.jobs import (
    cmd_accept,
    cmd_approve,
    cmd_balance,
    cmd_browse,
    cmd_history,
    cmd_publish,
    cmd_reject,
    cmd_show,
    cmd_submit,
)

__all__ = [
    "cmd_accept",
    "cmd_approve",
    "cmd_balance",
    "cmd_browse",
    "cmd_history",
    "cmd_publish",
    "cmd_reject",
    "cmd_show",
    "cmd_submit",
]
