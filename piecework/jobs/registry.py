"""
Job registry: the id allocator, open-job count and job records.

The registry is the only writer to job storage. Mutations go through
``transaction()``, which holds the job's lock and the storage transaction,
hands out a working copy and commits it together with its audit entry only
if the block exits cleanly. Side effects outside storage register an undo
action with ``on_abort()``; those run when the commit does not happen.
"""

import contextlib
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from piecework.config import is_null_identity
from piecework.jobs.errors import (
    InsufficientDepositError,
    InvalidPartCountError,
    InvalidPriceError,
    JobNotFoundError,
    UnauthorizedCallerError,
)
from piecework.jobs.models import Job, JobAction, JobState, JobStateTransition, is_int
from piecework.jobs.storage import InMemoryJobStorage, JobStorage

logger = logging.getLogger(__name__)


@dataclass
class JobTransaction:
    """Working state for one atomic operation on a job."""

    job: Job
    original: Job
    transition: Optional[JobStateTransition] = None
    undo: List[Callable[[], Any]] = field(default_factory=list)

    def record(
        self,
        action: JobAction,
        actor_id: str,
        amount: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> JobStateTransition:
        """Record the audit entry that will be committed with the job."""
        self.transition = JobStateTransition(
            job_id=self.job.id,
            action=action,
            from_state=self.original.state,
            to_state=self.job.state,
            actor_id=actor_id,
            amount=amount,
            metadata=metadata or {},
        )
        return self.transition

    def on_abort(self, action: Callable[[], Any]):
        """Register an action that undoes a side effect if the commit fails."""
        self.undo.append(action)

    def abort(self):
        """Run the undo actions, newest first."""
        while self.undo:
            action = self.undo.pop()
            try:
                action()
            except Exception:
                logger.error(
                    f"Could not undo side effect for job {self.job.id}; "
                    "manual reconciliation needed",
                    exc_info=True,
                )


class JobRegistry:
    """Durable mapping from job id to Job plus the registry counters."""

    def __init__(self, storage: Optional[JobStorage] = None):
        self.storage = storage if storage is not None else InMemoryJobStorage()
        # Guards the id allocator, the open count and the lock table
        self._lock = threading.Lock()
        self._job_locks: Dict[int, threading.Lock] = {}

    def _job_lock(self, job_id: int) -> threading.Lock:
        with self._lock:
            lock = self._job_locks.get(job_id)
            if lock is None:
                lock = threading.Lock()
                self._job_locks[job_id] = lock
            return lock

    def create(
        self,
        description: str,
        price: int,
        total_parts: int,
        deposited_value: int,
        creator: str,
        before_commit: Optional[Callable[[JobTransaction], None]] = None,
    ) -> int:
        """Allocate an id and store a new open job.

        ``before_commit`` runs with a transaction holding the fully built job
        while the allocator is held. If it raises, or the job cannot be
        stored, nothing is stored, the id is not consumed and the actions it
        registered with ``on_abort()`` run.

        Raises:
            InvalidPriceError: If price is not a positive integer
            InvalidPartCountError: If total_parts is not a positive integer
            UnauthorizedCallerError: If creator is the null identity
            InsufficientDepositError: If deposited_value < price
        """
        if not is_int(price) or price <= 0:
            raise InvalidPriceError(f"Price must be a positive integer, got {price!r}")
        if not is_int(total_parts) or total_parts <= 0:
            raise InvalidPartCountError(
                f"Total parts must be a positive integer, got {total_parts!r}"
            )
        if is_null_identity(creator):
            raise UnauthorizedCallerError("Creator identity is required")
        if not is_int(deposited_value) or deposited_value < price:
            raise InsufficientDepositError(
                f"Deposit {deposited_value!r} does not cover price {price}"
            )

        tx = None
        try:
            # Storage first, then the allocator: the same order as transaction()
            with self.storage.transaction(), self._lock:
                job_id = self.storage.next_id()
                job = Job(
                    id=job_id,
                    owner=creator,
                    description=description or "",
                    price=price,
                    total_parts=total_parts,
                    timestamp=datetime.now(timezone.utc),
                )
                tx = JobTransaction(job=job, original=job)
                if before_commit is not None:
                    before_commit(tx)
                transition = JobStateTransition(
                    job_id=job_id,
                    action=JobAction.PUBLISH,
                    to_state=JobState.NEW,
                    actor_id=creator,
                    amount=deposited_value,
                )
                self.storage.save_job(job, transition, open_delta=1)
        except Exception:
            if tx is not None:
                tx.abort()
            raise

        logger.info(f"Published job {job_id} by {creator}: price={price}, parts={total_parts}")
        return job_id

    def get(self, job_id: int) -> Job:
        """Get a snapshot of a job.

        Raises:
            JobNotFoundError: If no job has this id
        """
        job = self.storage.get_job(job_id) if is_int(job_id) else None
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_open(self) -> List[Job]:
        """Snapshot of jobs still waiting for a freelancer, ascending id."""
        return self.storage.list_jobs(state=JobState.NEW)

    def list_jobs(self, **filters) -> List[Job]:
        return self.storage.list_jobs(**filters)

    @property
    def open_count(self) -> int:
        """Published jobs that have not reached the solved state."""
        return self.storage.open_count()

    def history(self, job_id: int) -> List[JobStateTransition]:
        self.get(job_id)
        return self.storage.get_transitions(job_id)

    @contextlib.contextmanager
    def transaction(self, job_id: int) -> Iterator[JobTransaction]:
        """Exclusive, all-or-nothing access to one job.

        The job is read inside the storage transaction, so ledgers in other
        processes sharing the same database see either none or all of the
        operation. If the block raises or the commit fails, the undo actions
        registered on the transaction run before the error propagates.

        Raises:
            JobNotFoundError: If no job has this id
        """
        if not is_int(job_id):
            raise JobNotFoundError(job_id)

        with self._job_lock(job_id):
            tx = None
            try:
                with self.storage.transaction():
                    original = self.get(job_id)
                    tx = JobTransaction(job=replace(original), original=original)
                    yield tx

                    if tx.transition is None:
                        return
                    tx.job.updated_at = datetime.now(timezone.utc)
                    # Re-run model validation on the working copy before it lands
                    committed = replace(tx.job)
                    entered_solved = not original.is_solved and committed.is_solved
                    with self._lock:
                        if not self.storage.update_job(
                            committed, tx.transition, open_delta=-1 if entered_solved else 0
                        ):
                            raise JobNotFoundError(job_id)
            except Exception:
                if tx is not None:
                    tx.abort()
                raise
            logger.debug(
                f"Committed {tx.transition.action} on job {job_id}: "
                f"{original.state} -> {committed.state}"
            )
