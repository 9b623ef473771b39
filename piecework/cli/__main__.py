"""
Piecework CLI - command-line interface for the job ledger.

Usage:
    piecework --as ALICE publish DESCRIPTION --price N --parts N [--deposit N]
    piecework browse [--json]
    piecework show JOB_ID
    piecework history JOB_ID
    piecework --as BOB accept JOB_ID
    piecework --as BOB submit JOB_ID LINK
    piecework --as ALICE approve JOB_ID
    piecework --as ALICE reject JOB_ID
    piecework balance [WHO]
    piecework --as AGENT mcp
"""

import argparse
import logging
import os
import sys

from piecework.cli.commands import (
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
from piecework.config import LedgerConfig, is_null_identity
from piecework.escrow.transfer import SQLiteValueTransfer
from piecework.jobs.errors import JobLedgerError, UnauthorizedCallerError
from piecework.jobs.registry import JobRegistry
from piecework.jobs.service import JobLedger
from piecework.jobs.storage import SQLiteJobStorage

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def build_ledger(config: LedgerConfig) -> JobLedger:
    """Create a ledger backed by the configured SQLite database."""
    return JobLedger(
        registry=JobRegistry(SQLiteJobStorage(config.db_path)),
        transfer=SQLiteValueTransfer(config.db_path),
        config=config,
    )


def cmd_mcp(args, ledger: JobLedger):
    """Start the MCP server on stdio as the --as identity."""
    if is_null_identity(args.identity):
        raise UnauthorizedCallerError(
            "mcp needs a caller identity: pass --as or set PIECEWORK_AGENT_ID"
        )

    from piecework.mcp.server import main as mcp_main

    mcp_main(agent_id=args.identity, ledger=ledger)


COMMANDS = {
    "publish": cmd_publish,
    "browse": cmd_browse,
    "show": cmd_show,
    "history": cmd_history,
    "accept": cmd_accept,
    "submit": cmd_submit,
    "approve": cmd_approve,
    "reject": cmd_reject,
    "balance": cmd_balance,
    "mcp": cmd_mcp,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="piecework", description="Milestone escrow ledger for piecework jobs"
    )
    parser.add_argument(
        "--as",
        dest="identity",
        default=os.environ.get("PIECEWORK_AGENT_ID"),
        help="Caller identity (default: $PIECEWORK_AGENT_ID)",
    )
    parser.add_argument("--db", dest="db_path", help="SQLite database path")
    parser.add_argument(
        "--reassignment",
        choices=["strict", "permissive"],
        help="Whether an accepted job can be taken over by another freelancer",
    )
    parser.add_argument(
        "--link-policy",
        choices=["first_only", "always_latest"],
        help="Which submission's link the job keeps",
    )
    parser.add_argument("--json", action="store_true", help="Output JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_publish = subparsers.add_parser("publish", help="Publish a job")
    p_publish.add_argument("description", help="What needs to be done")
    p_publish.add_argument("--price", type=int, required=True, help="Total price")
    p_publish.add_argument("--parts", type=int, required=True, help="Number of payable parts")
    p_publish.add_argument("--deposit", type=int, help="Value to deposit (default: price)")

    subparsers.add_parser("browse", help="List open jobs")

    for name, help_text in (
        ("show", "Show a job"),
        ("history", "Show a job's audit log"),
        ("accept", "Take a job as freelancer"),
        ("approve", "Accept the pending part and pay for it"),
        ("reject", "Reject the pending part"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("job_id", type=int, help="Job ID")

    p_submit = subparsers.add_parser("submit", help="Submit the next part of a job")
    p_submit.add_argument("job_id", type=int, help="Job ID")
    p_submit.add_argument("link", help="Reference to the submitted work")

    p_balance = subparsers.add_parser("balance", help="Show total paid to an identity")
    p_balance.add_argument("who", nargs="?", help="Identity (default: --as)")

    subparsers.add_parser("mcp", help="Start MCP server (stdio)")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger("piecework").setLevel(logging.DEBUG)

    try:
        config = LedgerConfig.from_env(
            db_path=args.db_path,
            reassignment_policy=args.reassignment,
            link_policy=args.link_policy,
        )
        ledger = build_ledger(config)
        COMMANDS[args.command](args, ledger)
    except JobLedgerError as e:
        print(f"✗ {e.code}: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
