"""
MCP tools for the piecework ledger.

Exposes the job ledger to MCP clients. The session's agent id is the caller
identity for every operation; tools never take an identity argument.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from jsonschema import Draft7Validator
from mcp.types import TextContent, Tool

from piecework.jobs.errors import JobLedgerError
from piecework.jobs.models import Job, JobStateTransition
from piecework.jobs.service import JobLedger

logger = logging.getLogger(__name__)

# Module state, configured by the server or tests
_ledger: Optional[JobLedger] = None
_agent_id: str = "default"

_JOB_ID_SCHEMA = {
    "type": "object",
    "properties": {
        "job_id": {"type": "integer", "description": "Job ID"},
    },
    "required": ["job_id"],
    "additionalProperties": False,
}

LEDGER_TOOLS = [
    Tool(
        name="job_publish",
        description="Publish a job split into payable parts. The deposit (default: the price) is held in escrow and released per accepted part.",
        inputSchema={
            "type": "object",
            "properties": {
                "description": {"type": "string", "description": "What needs to be done"},
                "price": {
                    "type": "integer",
                    "description": "Total price in minor currency units",
                },
                "total_parts": {
                    "type": "integer",
                    "description": "Number of independently payable parts",
                },
                "deposit": {
                    "type": "integer",
                    "description": "Value to deposit (default: price). Excess is not refunded.",
                },
            },
            "required": ["description", "price", "total_parts"],
            "additionalProperties": False,
        },
    ),
    Tool(
        name="job_browse",
        description="List jobs that are still waiting for a freelancer, oldest first.",
        inputSchema={"type": "object", "properties": {}, "additionalProperties": False},
    ),
    Tool(
        name="job_show",
        description="Show a job's state, part counters and escrow statement.",
        inputSchema=_JOB_ID_SCHEMA,
    ),
    Tool(
        name="job_history",
        description="Show the audit log of operations on a job.",
        inputSchema=_JOB_ID_SCHEMA,
    ),
    Tool(
        name="job_accept",
        description="Take an open job as its freelancer.",
        inputSchema=_JOB_ID_SCHEMA,
    ),
    Tool(
        name="job_submit_part",
        description="Submit the next part of a job you are working on. Only one part can await review at a time.",
        inputSchema={
            "type": "object",
            "properties": {
                "job_id": {"type": "integer", "description": "Job ID"},
                "link": {"type": "string", "description": "Reference to the submitted work"},
            },
            "required": ["job_id", "link"],
            "additionalProperties": False,
        },
    ),
    Tool(
        name="job_accept_part",
        description="Accept the pending part of your job and release its payment.",
        inputSchema=_JOB_ID_SCHEMA,
    ),
    Tool(
        name="job_reject_part",
        description="Reject the pending part of your job. No payment is made.",
        inputSchema=_JOB_ID_SCHEMA,
    ),
]

_VALIDATORS = {tool.name: Draft7Validator(tool.inputSchema) for tool in LEDGER_TOOLS}


# =============================================================================
# Service configuration
# =============================================================================


def configure_ledger(ledger: JobLedger) -> None:
    """Use the given ledger for tool calls."""
    global _ledger
    _ledger = ledger


def reset_ledger() -> None:
    """Drop the configured ledger and agent id."""
    global _ledger, _agent_id
    _ledger = None
    _agent_id = "default"


def get_ledger() -> JobLedger:
    """Get the configured ledger, creating an in-memory one if needed."""
    global _ledger
    if _ledger is None:
        _ledger = JobLedger()
    return _ledger


def set_agent_id(agent_id: str) -> None:
    """Set the caller identity for this MCP session."""
    global _agent_id
    _agent_id = agent_id


def get_agent_id() -> str:
    return _agent_id


def get_ledger_tools() -> List[Tool]:
    return list(LEDGER_TOOLS)


# =============================================================================
# Formatting
# =============================================================================


def _format_job(job: Job) -> str:
    lines = [
        f"Job #{job.id}: {job.description}",
        f"  State: {job.state}",
        f"  Owner: {job.owner}",
        f"  Freelancer: {job.freelancer or '-'}",
        f"  Price: {job.price} ({job.total_parts} parts)",
        f"  Parts: {job.parts_accepted} accepted / {job.parts_solved} submitted",
    ]
    if job.solution_link:
        lines.append(f"  Solution: {job.solution_link}")
    return "\n".join(lines)


def _format_transition(t: JobStateTransition) -> str:
    states = f"{t.from_state or '-'} -> {t.to_state}"
    amount = f" amount={t.amount}" if t.amount else ""
    return f"{t.created_at.isoformat()} {t.action} by {t.actor_id} ({states}){amount}"


# =============================================================================
# Handlers
# =============================================================================


def handle_job_publish(args: Dict[str, Any], ledger: JobLedger, agent_id: str) -> str:
    price = args["price"]
    job_id = ledger.publish_job(
        description=args["description"],
        price=price,
        total_parts=args["total_parts"],
        deposited_value=args.get("deposit", price),
        creator=agent_id,
    )
    job = ledger.get_job(job_id)
    return f"Job published!\n{_format_job(job)}"


def handle_job_browse(args: Dict[str, Any], ledger: JobLedger, agent_id: str) -> str:
    jobs = ledger.browse_jobs()
    if not jobs:
        return "No open jobs found."
    lines = [f"Open jobs ({len(jobs)}):"]
    for job in jobs:
        lines.append(
            f"  #{job.id} {job.description} - price {job.price}, {job.total_parts} parts"
        )
    return "\n".join(lines)


def handle_job_show(args: Dict[str, Any], ledger: JobLedger, agent_id: str) -> str:
    job = ledger.get_job(args["job_id"])
    statement = ledger.get_statement(job.id)
    return (
        f"{_format_job(job)}\n"
        f"  Escrow: {statement.held} held, {statement.released} released, "
        f"{statement.per_part} per part"
    )


def handle_job_history(args: Dict[str, Any], ledger: JobLedger, agent_id: str) -> str:
    history = ledger.get_job_history(args["job_id"])
    return "\n".join(_format_transition(t) for t in history)


def handle_job_accept(args: Dict[str, Any], ledger: JobLedger, agent_id: str) -> str:
    ledger.accept_job(args["job_id"], caller=agent_id)
    return f"Job #{args['job_id']} accepted. You are the freelancer."


def handle_job_submit_part(args: Dict[str, Any], ledger: JobLedger, agent_id: str) -> str:
    ledger.submit_solved_part(args["job_id"], caller=agent_id, link=args["link"])
    job = ledger.get_job(args["job_id"])
    return f"Part {job.parts_solved}/{job.total_parts} submitted for job #{job.id}."


def handle_job_accept_part(args: Dict[str, Any], ledger: JobLedger, agent_id: str) -> str:
    amount = ledger.accept_solved_part(args["job_id"], caller=agent_id)
    job = ledger.get_job(args["job_id"])
    return (
        f"Part accepted for job #{job.id}. Paid {amount} to {job.freelancer}.\n"
        f"  Parts: {job.parts_accepted}/{job.total_parts} accepted"
    )


def handle_job_reject_part(args: Dict[str, Any], ledger: JobLedger, agent_id: str) -> str:
    ledger.reject_solved_part(args["job_id"], caller=agent_id)
    return f"Pending part rejected for job #{args['job_id']}. No payment made."


TOOL_HANDLERS: Dict[str, Callable[[Dict[str, Any], JobLedger, str], str]] = {
    "job_publish": handle_job_publish,
    "job_browse": handle_job_browse,
    "job_show": handle_job_show,
    "job_history": handle_job_history,
    "job_accept": handle_job_accept,
    "job_submit_part": handle_job_submit_part,
    "job_accept_part": handle_job_accept_part,
    "job_reject_part": handle_job_reject_part,
}


def validate_tool_input(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Validate tool arguments against the tool's JSON Schema."""
    validator = _VALIDATORS.get(name)
    if validator is None:
        raise ValueError(f"Unknown tool: {name}")
    if not isinstance(arguments, dict):
        raise ValueError(f"arguments must be an object, got {type(arguments).__name__}")

    errors = sorted(validator.iter_errors(arguments), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        path = ".".join(str(part) for part in first.path) or "(root)"
        raise ValueError(f"Schema validation failed at {path}: {first.message}")
    return dict(arguments)


async def call_ledger_tool(name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
    """Run a ledger tool and render its result as MCP text content."""
    arguments = arguments if arguments is not None else {}
    try:
        args = validate_tool_input(name, arguments)
        result = TOOL_HANDLERS[name](args, get_ledger(), get_agent_id())
    except JobLedgerError as e:
        logger.warning(f"Tool {name} rejected: {e.code}: {e}")
        result = f"✗ {e.code}: {e}"
    except ValueError as e:
        logger.warning(f"Invalid input for tool {name}: {e}")
        result = f"Invalid input: {e}"
    except Exception as e:
        logger.error(
            f"Internal error in tool {name}",
            extra={
                "tool_name": name,
                "arguments_keys": list(arguments.keys()) if isinstance(arguments, dict) else [],
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        result = "Internal server error"
    return [TextContent(type="text", text=result)]
