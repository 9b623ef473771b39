"""
Job ledger service.

Enforces the job lifecycle and releases escrow per accepted part.

Job lifecycle:
1. Owner publishes a job and deposits at least its price (state: new)
2. A freelancer accepts the job (state: accepted)
3. Freelancer submits parts one at a time; the owner accepts (paying
   price // total_parts per part) or rejects each one
4. The job is solved once every part is submitted, or every part is paid
"""

import logging
from typing import List, Optional

from piecework.config import LedgerConfig, LinkPolicy, is_null_identity
from piecework.escrow.accounting import EscrowStatement, payment_due
from piecework.escrow.transfer import InMemoryValueTransfer, TransferError, ValueTransfer
from piecework.events import (
    EventBus,
    JobAcceptedEvent,
    JobPublishedEvent,
    LedgerEventType,
    PartAcceptedEvent,
    PartRejectedEvent,
    PartSubmittedEvent,
)
from piecework.jobs.errors import (
    AlreadyAcceptedError,
    AlreadySolvedError,
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
from piecework.jobs.models import Job, JobAction, JobState, JobStateTransition
from piecework.jobs.registry import JobRegistry, JobTransaction

logger = logging.getLogger(__name__)

__all__ = [
    "JobLedger",
    "JobLedgerError",
    "JobNotFoundError",
]


class JobLedger:
    """Owns all job state and enforces every transition.

    Each mutating call runs inside a registry transaction: validation, the
    value transfer (if any) and the commit happen while the job is locked,
    and notifications go out only after the commit.
    """

    def __init__(
        self,
        registry: Optional[JobRegistry] = None,
        transfer: Optional[ValueTransfer] = None,
        config: Optional[LedgerConfig] = None,
        events: Optional[EventBus] = None,
    ):
        self.registry = registry if registry is not None else JobRegistry()
        self.transfer = transfer if transfer is not None else InMemoryValueTransfer()
        self.config = config if config is not None else LedgerConfig()
        self.events = events if events is not None else EventBus()

    # =========================================================================
    # Publishing
    # =========================================================================

    def publish_job(
        self,
        description: str,
        price: int,
        total_parts: int,
        deposited_value: int,
        creator: str,
    ) -> int:
        """Publish a job and hold the whole deposit in escrow.

        A deposit larger than the price is held in full; no change is
        returned to the creator.

        Returns:
            The new job id

        Raises:
            InvalidPriceError, InvalidPartCountError, UnauthorizedCallerError,
            InsufficientDepositError: On invalid input
            TransferFailedError: If the deposit could not be held
        """

        def hold_deposit(tx: JobTransaction):
            job = tx.job
            try:
                result = self.transfer.hold(creator, deposited_value, job.id)
            except TransferError as e:
                raise TransferFailedError(
                    f"Could not hold deposit for job {job.id}: {e}", job_id=job.id
                ) from e
            if not result.success:
                raise TransferFailedError(
                    f"Could not hold deposit for job {job.id}: {result.error}", job_id=job.id
                )
            tx.on_abort(lambda: self.transfer.reverse(result))

        job_id = self.registry.create(
            description=description,
            price=price,
            total_parts=total_parts,
            deposited_value=deposited_value,
            creator=creator,
            before_commit=hold_deposit,
        )

        self.events.publish(
            JobPublishedEvent(
                event_type=LedgerEventType.JOB_PUBLISHED,
                actor=creator,
                job_id=job_id,
                price=price,
                total_parts=total_parts,
            )
        )
        return job_id

    # =========================================================================
    # Assignment
    # =========================================================================

    def accept_job(self, job_id: int, caller: str) -> None:
        """Assign the caller as the job's freelancer.

        Raises:
            JobNotFoundError: If job doesn't exist
            AlreadySolvedError: If the job is solved
            SelfAssignmentError: If the caller owns the job
            UnauthorizedCallerError: If the caller is the null identity
            AlreadyAcceptedError: If the job has a freelancer and
                reassignment is not allowed
        """
        with self.registry.transaction(job_id) as tx:
            job = tx.job
            if job.is_solved:
                raise AlreadySolvedError(f"Job {job_id} is already solved", job_id=job_id)
            if caller == job.owner:
                raise SelfAssignmentError(
                    f"Owner cannot accept their own job {job_id}", job_id=job_id
                )
            if is_null_identity(caller):
                raise UnauthorizedCallerError("Freelancer identity is required", job_id=job_id)

            previous = job.freelancer
            reassign = self.config.allows_reassignment
            if not job.can_transition_to(JobState.ACCEPTED, allow_reassignment=reassign):
                raise AlreadyAcceptedError(
                    f"Job {job_id} was already accepted by {previous}", job_id=job_id
                )

            job.freelancer = caller
            job.transition_to(JobState.ACCEPTED, allow_reassignment=reassign)
            metadata = {"previous_freelancer": previous} if previous else {}
            tx.record(JobAction.ACCEPT_JOB, caller, metadata=metadata)

        if previous is not None:
            logger.warning(f"Job {job_id} reassigned from {previous} to {caller}")
        else:
            logger.info(f"Job {job_id} accepted by {caller}")

        self.events.publish(
            JobAcceptedEvent(event_type=LedgerEventType.JOB_ACCEPTED, actor=caller, job_id=job_id)
        )

    # =========================================================================
    # Work submission
    # =========================================================================

    def submit_solved_part(self, job_id: int, caller: str, link: str) -> None:
        """Submit the next part of the job for review.

        Only one part may await review at a time. Submitting the last part
        marks the job solved even though it may not be fully paid yet.

        Raises:
            JobNotFoundError: If job doesn't exist
            AlreadySolvedError: If the job is solved
            NotAssignedFreelancerError: If the caller is not the freelancer
            PendingPartExistsError: If a previous part is still under review
        """
        link = link or ""
        with self.registry.transaction(job_id) as tx:
            job = tx.job
            if job.is_solved:
                raise AlreadySolvedError(f"Job {job_id} is already solved", job_id=job_id)
            if job.freelancer is None or caller != job.freelancer:
                raise NotAssignedFreelancerError(
                    f"Only the assigned freelancer can submit work for job {job_id}",
                    job_id=job_id,
                )
            if job.parts_solved != job.parts_accepted:
                raise PendingPartExistsError(
                    f"Job {job_id} already has a part awaiting review", job_id=job_id
                )

            if job.parts_solved == 0 or self.config.link_policy == LinkPolicy.ALWAYS_LATEST:
                job.solution_link = link
            job.parts_solved += 1
            if job.parts_solved == job.total_parts:
                job.transition_to(JobState.SOLVED)
            tx.record(
                JobAction.SUBMIT_PART,
                caller,
                metadata={"part": job.parts_solved, "link": link},
            )
            parts_solved = job.parts_solved

        logger.info(f"Part {parts_solved} of job {job_id} submitted by {caller}")
        self.events.publish(
            PartSubmittedEvent(
                event_type=LedgerEventType.PART_SUBMITTED,
                actor=caller,
                job_id=job_id,
                parts_solved=parts_solved,
            )
        )

    # =========================================================================
    # Review
    # =========================================================================

    def _check_review(self, job: Job, caller: str):
        if caller != job.owner:
            raise NotOwnerError(f"Only the owner can review job {job.id}", job_id=job.id)
        if job.parts_solved <= job.parts_accepted:
            raise NoPendingSubmissionError(
                f"Job {job.id} has no submitted part to review", job_id=job.id
            )

    def accept_solved_part(self, job_id: int, caller: str) -> int:
        """Accept the pending part and pay the freelancer for it.

        The payout happens before the commit. If it fails nothing changes; if
        the commit fails the payout is reversed.

        Returns:
            The amount paid

        Raises:
            JobNotFoundError: If job doesn't exist
            NotOwnerError: If the caller does not own the job
            NoPendingSubmissionError: If nothing awaits review
            TransferFailedError: If the payout failed
        """
        with self.registry.transaction(job_id) as tx:
            job = tx.job
            self._check_review(job, caller)

            payment = payment_due(job)
            if payment > 0:
                self._pay(tx, payment)
            else:
                logger.debug(f"Nothing to pay for job {job_id}: price below part count")

            job.parts_accepted = job.parts_solved
            # Already solved when the last part was submitted
            if job.is_fully_paid and not job.is_solved:
                job.transition_to(JobState.SOLVED)
            tx.record(
                JobAction.ACCEPT_PART,
                caller,
                amount=payment,
                metadata={"parts_accepted": job.parts_accepted},
            )
            freelancer = job.freelancer

        logger.info(f"Job {job_id}: part accepted by {caller}, paid {payment} to {freelancer}")
        self.events.publish(
            PartAcceptedEvent(
                event_type=LedgerEventType.PART_ACCEPTED,
                actor=caller,
                job_id=job_id,
                amount=payment,
                freelancer=freelancer,
            )
        )
        return payment

    def _pay(self, tx: JobTransaction, amount: int):
        job = tx.job
        try:
            result = self.transfer.pay(job.freelancer, amount, job.id)
        except TransferError as e:
            logger.error(f"Payout of {amount} for job {job.id} failed: {e}")
            raise TransferFailedError(f"Payout for job {job.id} failed: {e}", job_id=job.id) from e
        if not result.success:
            logger.error(f"Payout of {amount} for job {job.id} failed: {result.error}")
            raise TransferFailedError(
                f"Payout for job {job.id} failed: {result.error}", job_id=job.id
            )
        tx.on_abort(lambda: self.transfer.reverse(result))

    def reject_solved_part(self, job_id: int, caller: str) -> None:
        """Reject the pending part. No payment is made.

        Raises:
            JobNotFoundError: If job doesn't exist
            NotOwnerError: If the caller does not own the job
            NoPendingSubmissionError: If nothing awaits review
        """
        with self.registry.transaction(job_id) as tx:
            job = tx.job
            self._check_review(job, caller)

            discarded = job.parts_solved - job.parts_accepted
            job.parts_solved = job.parts_accepted
            if job.parts_solved == 0:
                job.solution_link = ""
            tx.record(JobAction.REJECT_PART, caller, metadata={"discarded_parts": discarded})

        logger.info(f"Job {job_id}: pending part rejected by {caller}")
        self.events.publish(
            PartRejectedEvent(event_type=LedgerEventType.PART_REJECTED, actor=caller, job_id=job_id)
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def browse_jobs(self) -> List[Job]:
        """Jobs waiting for a freelancer, in ascending id order."""
        return self.registry.list_open()

    def get_job(self, job_id: int) -> Job:
        """Get a job snapshot.

        Raises:
            JobNotFoundError: If job doesn't exist
        """
        return self.registry.get(job_id)

    def list_jobs(
        self,
        owner: Optional[str] = None,
        freelancer: Optional[str] = None,
        state: Optional[JobState] = None,
    ) -> List[Job]:
        return self.registry.list_jobs(owner=owner, freelancer=freelancer, state=state)

    def get_job_history(self, job_id: int) -> List[JobStateTransition]:
        """Audit log of committed operations on a job, oldest first."""
        return self.registry.history(job_id)

    def get_statement(self, job_id: int) -> EscrowStatement:
        """Escrow statement for a job."""
        job = self.registry.get(job_id)
        return EscrowStatement.for_job(job, self.transfer.deposited(job_id))

    @property
    def open_count(self) -> int:
        return self.registry.open_count
