"""Exceptions raised by the job ledger.

Each failure kind has its own class and a stable ``code`` so callers can tell
exactly which precondition was violated.
"""

from typing import Optional


class JobLedgerError(Exception):
    """Base exception for job ledger operations."""

    code = "ledger_error"

    def __init__(self, message: str, job_id: Optional[int] = None):
        super().__init__(message)
        self.job_id = job_id


class JobNotFoundError(JobLedgerError):
    """Raised when a job id does not exist."""

    code = "not_found"

    def __init__(self, job_id: int):
        super().__init__(f"Job not found: {job_id}", job_id=job_id)


class InvalidPriceError(JobLedgerError):
    """Raised when a job is published with a non-positive price."""

    code = "invalid_price"


class InvalidPartCountError(JobLedgerError):
    """Raised when a job is published with a non-positive number of parts."""

    code = "invalid_part_count"


class UnauthorizedCallerError(JobLedgerError):
    """Raised when the caller identity is missing or the null identity."""

    code = "unauthorized_caller"


class InsufficientDepositError(JobLedgerError):
    """Raised when the deposit does not cover the job price."""

    code = "insufficient_deposit"


class AlreadySolvedError(JobLedgerError):
    """Raised when operating on a job that is already solved."""

    code = "already_solved"


class AlreadyAcceptedError(JobLedgerError):
    """Raised when a job already has a freelancer and reassignment is off."""

    code = "already_accepted"


class SelfAssignmentError(JobLedgerError):
    """Raised when the owner tries to take their own job."""

    code = "self_assignment"


class NotAssignedFreelancerError(JobLedgerError):
    """Raised when someone other than the freelancer submits work."""

    code = "not_assigned_freelancer"


class PendingPartExistsError(JobLedgerError):
    """Raised when a part is submitted while another awaits review."""

    code = "pending_part_exists"


class NotOwnerError(JobLedgerError):
    """Raised when someone other than the owner reviews a part."""

    code = "not_owner"


class NoPendingSubmissionError(JobLedgerError):
    """Raised when there is no submitted part to review."""

    code = "no_pending_submission"


class TransferFailedError(JobLedgerError):
    """Raised when the value transfer capability fails. Nothing is committed."""

    code = "transfer_failed"
