"""
Piecework - milestone escrow ledger for outsourced jobs.

A job owner deposits the full price up front, one freelancer takes the job,
and the escrow is released part by part as submitted work is accepted.

Usage:
    from piecework import JobLedger

    ledger = JobLedger()
    job_id = ledger.publish_job("Translate docs", price=100, total_parts=2,
                                deposited_value=100, creator="alice")
    ledger.accept_job(job_id, caller="bob")
"""

from piecework.config import LedgerConfig, LinkPolicy, ReassignmentPolicy
from piecework.events import EventBus, LedgerEvent, LedgerEventType
from piecework.jobs import Job, JobLedger, JobLedgerError, JobState

__version__ = "0.3.0"
__all__ = [
    "JobLedger",
    "JobLedgerError",
    "Job",
    "JobState",
    "LedgerConfig",
    "LinkPolicy",
    "ReassignmentPolicy",
    "EventBus",
    "LedgerEvent",
    "LedgerEventType",
]
