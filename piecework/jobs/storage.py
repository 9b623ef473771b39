"""
Jobs storage layer.

Provides persistence for jobs, the job id counter, the open-job count and
the per-job audit log. Every write takes the job together with its audit
entry and counter change so backends can apply them as one unit.
"""

import contextlib
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import ContextManager, List, Optional, Protocol, Union

from piecework.db import connect, resolve_db_path
from piecework.db import transaction as db_transaction
from piecework.jobs.models import Job, JobState, JobStateTransition

logger = logging.getLogger(__name__)


class JobStorage(Protocol):
    """Protocol for job persistence backends."""

    def next_id(self) -> int:
        """Id the next saved job will receive."""
        ...

    def open_count(self) -> int:
        """Number of published jobs not yet solved."""
        ...

    def transaction(self) -> ContextManager:
        """Group the reads and writes of one ledger operation.

        Nothing written inside the block is visible to other ledgers until
        it exits cleanly, and concurrent blocks do not interleave.
        """
        ...

    def save_job(self, job: Job, transition: JobStateTransition, open_delta: int = 0) -> int:
        """Store a new job and advance the id counter. Returns the job id."""
        ...

    def update_job(self, job: Job, transition: JobStateTransition, open_delta: int = 0) -> bool:
        """Replace an existing job. Returns True if successful."""
        ...

    def get_job(self, job_id: int) -> Optional[Job]:
        """Get a copy of a job by ID."""
        ...

    def list_jobs(
        self,
        state: Optional[JobState] = None,
        owner: Optional[str] = None,
        freelancer: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Job]:
        """List jobs in ascending id order with optional filters."""
        ...

    def get_transitions(self, job_id: int) -> List[JobStateTransition]:
        """Get the audit log for a job, oldest first."""
        ...


def _state_value(state: Optional[Union[JobState, str]]) -> Optional[str]:
    return state.value if isinstance(state, JobState) else state


class InMemoryJobStorage:
    """In-memory job storage for testing and local development."""

    def __init__(self):
        """Initialize empty storage."""
        self._jobs: dict[int, Job] = {}
        self._transitions: dict[int, list[JobStateTransition]] = {}
        self._next_id = 0
        self._open_count = 0

    def next_id(self) -> int:
        return self._next_id

    def open_count(self) -> int:
        return self._open_count

    def transaction(self) -> ContextManager:
        # The registry locks already serialize in-process writers
        return contextlib.nullcontext()

    def save_job(self, job: Job, transition: JobStateTransition, open_delta: int = 0) -> int:
        if job.id in self._jobs:
            raise ValueError(f"Job {job.id} already exists")
        if job.id < self._next_id:
            raise ValueError(f"Job id {job.id} was already allocated")
        self._jobs[job.id] = replace(job)
        self._transitions[job.id] = [transition]
        self._next_id = job.id + 1
        self._open_count += open_delta
        return job.id

    def update_job(self, job: Job, transition: JobStateTransition, open_delta: int = 0) -> bool:
        if job.id not in self._jobs:
            return False
        self._jobs[job.id] = replace(job)
        self._transitions[job.id].append(transition)
        self._open_count += open_delta
        return True

    def get_job(self, job_id: int) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return replace(job) if job is not None else None

    def list_jobs(
        self,
        state: Optional[JobState] = None,
        owner: Optional[str] = None,
        freelancer: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Job]:
        jobs = [self._jobs[job_id] for job_id in sorted(self._jobs)]

        state_val = _state_value(state)
        if state_val is not None:
            jobs = [j for j in jobs if j.state == state_val]
        if owner is not None:
            jobs = [j for j in jobs if j.owner == owner]
        if freelancer is not None:
            jobs = [j for j in jobs if j.freelancer == freelancer]

        end = None if limit is None else offset + limit
        return [replace(j) for j in jobs[offset:end]]

    def get_transitions(self, job_id: int) -> List[JobStateTransition]:
        return list(self._transitions.get(job_id, []))


class SQLiteJobStorage:
    """SQLite-backed job storage used by the CLI.

    Each write runs in a single SQLite transaction covering the job row,
    its audit entry and the counters. Inside ``transaction()`` the reads and
    writes of a whole ledger operation share one write-locked connection,
    together with a ``SQLiteValueTransfer`` on the same file.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = resolve_db_path(db_path)
        self._init_db()

    def _init_db(self):
        with connect(self.db_path) as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY,
                    owner TEXT NOT NULL,
                    description TEXT NOT NULL,
                    price INTEGER NOT NULL,
                    total_parts INTEGER NOT NULL,
                    freelancer TEXT,
                    solution_link TEXT NOT NULL DEFAULT '',
                    parts_solved INTEGER NOT NULL DEFAULT 0,
                    parts_accepted INTEGER NOT NULL DEFAULT 0,
                    state TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    updated_at TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_jobs_state ON jobs(state);
                CREATE TABLE IF NOT EXISTS job_transitions (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id INTEGER NOT NULL REFERENCES jobs(id),
                    action TEXT NOT NULL,
                    from_state TEXT,
                    to_state TEXT NOT NULL,
                    actor_id TEXT NOT NULL,
                    amount INTEGER NOT NULL DEFAULT 0,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_transitions_job ON job_transitions(job_id);
                CREATE TABLE IF NOT EXISTS registry_counters (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                );
                INSERT OR IGNORE INTO registry_counters (name, value) VALUES ('next_id', 0);
                INSERT OR IGNORE INTO registry_counters (name, value) VALUES ('open_count', 0);
                """
            )

    def _counter(self, name: str) -> int:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM registry_counters WHERE name = ?", (name,)
            ).fetchone()
        return int(row["value"])

    def next_id(self) -> int:
        return self._counter("next_id")

    def open_count(self) -> int:
        return self._counter("open_count")

    def transaction(self) -> ContextManager:
        return db_transaction(self.db_path)

    def _insert_transition(self, conn, transition: JobStateTransition):
        conn.execute(
            """
            INSERT INTO job_transitions
                (job_id, action, from_state, to_state, actor_id, amount, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                transition.job_id,
                transition.action,
                transition.from_state,
                transition.to_state,
                transition.actor_id,
                transition.amount,
                json.dumps(transition.metadata, default=str),
                transition.created_at.isoformat(),
            ),
        )

    def save_job(self, job: Job, transition: JobStateTransition, open_delta: int = 0) -> int:
        data = job.to_dict()
        with connect(self.db_path) as conn:
            next_id = conn.execute(
                "SELECT value FROM registry_counters WHERE name = 'next_id'"
            ).fetchone()["value"]
            if job.id < next_id:
                raise ValueError(f"Job id {job.id} was already allocated")
            conn.execute(
                """
                INSERT INTO jobs
                    (id, owner, description, price, total_parts, freelancer, solution_link,
                     parts_solved, parts_accepted, state, timestamp, updated_at)
                VALUES (:id, :owner, :description, :price, :total_parts, :freelancer,
                        :solution_link, :parts_solved, :parts_accepted, :state,
                        :timestamp, :updated_at)
                """,
                data,
            )
            self._insert_transition(conn, transition)
            conn.execute(
                "UPDATE registry_counters SET value = ? WHERE name = 'next_id'", (job.id + 1,)
            )
            conn.execute(
                "UPDATE registry_counters SET value = value + ? WHERE name = 'open_count'",
                (open_delta,),
            )
        return job.id

    def update_job(self, job: Job, transition: JobStateTransition, open_delta: int = 0) -> bool:
        data = job.to_dict()
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE jobs SET
                    freelancer = :freelancer,
                    solution_link = :solution_link,
                    parts_solved = :parts_solved,
                    parts_accepted = :parts_accepted,
                    state = :state,
                    updated_at = :updated_at
                WHERE id = :id
                """,
                data,
            )
            if cursor.rowcount == 0:
                return False
            self._insert_transition(conn, transition)
            if open_delta:
                conn.execute(
                    "UPDATE registry_counters SET value = value + ? WHERE name = 'open_count'",
                    (open_delta,),
                )
        return True

    def get_job(self, job_id: int) -> Optional[Job]:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return Job.from_dict(dict(row)) if row else None

    def list_jobs(
        self,
        state: Optional[JobState] = None,
        owner: Optional[str] = None,
        freelancer: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Job]:
        query = "SELECT * FROM jobs WHERE 1=1"
        params: list = []
        state_val = _state_value(state)
        if state_val is not None:
            query += " AND state = ?"
            params.append(state_val)
        if owner is not None:
            query += " AND owner = ?"
            params.append(owner)
        if freelancer is not None:
            query += " AND freelancer = ?"
            params.append(freelancer)
        query += " ORDER BY id ASC LIMIT ? OFFSET ?"
        params.extend([-1 if limit is None else limit, offset])

        with connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [Job.from_dict(dict(row)) for row in rows]

    def get_transitions(self, job_id: int) -> List[JobStateTransition]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM job_transitions WHERE job_id = ? ORDER BY seq ASC", (job_id,)
            ).fetchall()
        transitions = []
        for row in rows:
            data = dict(row)
            data["metadata"] = json.loads(data.get("metadata") or "{}")
            transitions.append(JobStateTransition.from_dict(data))
        return transitions
