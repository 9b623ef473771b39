"""Jobs subsystem for the piecework ledger.

Models:
- Job: A priced job split into payable parts
- JobState: Job lifecycle state
- JobStateTransition: Audit log entry for ledger operations

Registry:
- JobRegistry: Id allocation, open-job count and atomic job transactions

Service:
- JobLedger: Job operations (publish, accept, submit, accept/reject parts)
"""

from piecework.jobs.errors import (
    AlreadyAcceptedError,
    AlreadySolvedError,
    InsufficientDepositError,
    InvalidPartCountError,
    InvalidPriceError,
    JobLedgerError,
    JobNotFoundError,
    NoPendingSubmissionError,
    NotAssignedFreelancerError,
    NotOwnerError,
    PendingPartExistsError,
    SelfAssignmentError,
    TransferFailedError,
    UnauthorizedCallerError,
)
from piecework.jobs.models import (
    REASSIGNMENT_TRANSITIONS,
    VALID_JOB_TRANSITIONS,
    Job,
    JobAction,
    JobState,
    JobStateTransition,
)
from piecework.jobs.registry import JobRegistry, JobTransaction
from piecework.jobs.service import JobLedger
from piecework.jobs.storage import InMemoryJobStorage, JobStorage, SQLiteJobStorage

__all__ = [
    # Models
    "Job",
    "JobState",
    "JobAction",
    "JobStateTransition",
    "REASSIGNMENT_TRANSITIONS",
    "VALID_JOB_TRANSITIONS",
    # Storage / registry
    "JobStorage",
    "InMemoryJobStorage",
    "SQLiteJobStorage",
    "JobRegistry",
    "JobTransaction",
    # Service
    "JobLedger",
    # Errors
    "JobLedgerError",
    "JobNotFoundError",
    "InvalidPriceError",
    "InvalidPartCountError",
    "UnauthorizedCallerError",
    "InsufficientDepositError",
    "AlreadySolvedError",
    "AlreadyAcceptedError",
    "SelfAssignmentError",
    "NotAssignedFreelancerError",
    "PendingPartExistsError",
    "NotOwnerError",
    "NoPendingSubmissionError",
    "TransferFailedError",
]
