"""
Job models for the piecework ledger.

A Job is priced as a whole and paid out per part. Its lifecycle:
NEW -> ACCEPTED -> SOLVED
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class JobState(str, Enum):
    """Job lifecycle state."""

    NEW = "new"  # Published, no freelancer yet
    ACCEPTED = "accepted"  # Freelancer assigned, parts in progress
    SOLVED = "solved"  # All parts submitted or all parts paid


# Valid state transitions
VALID_JOB_TRANSITIONS = {
    JobState.NEW: {JobState.ACCEPTED},
    JobState.ACCEPTED: {JobState.SOLVED},
    JobState.SOLVED: set(),
}

# Handing an accepted job to another freelancer, allowed only by configuration
REASSIGNMENT_TRANSITIONS = {
    JobState.ACCEPTED: {JobState.ACCEPTED},
}


class JobAction(str, Enum):
    """Ledger operations recorded in the job history."""

    PUBLISH = "publish"
    ACCEPT_JOB = "accept_job"
    SUBMIT_PART = "submit_part"
    ACCEPT_PART = "accept_part"
    REJECT_PART = "reject_part"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class Job:
    """A priced unit of outsourced work split into payable parts.

    Amounts are integers in the minor unit of the escrowed currency.
    """

    id: int
    owner: str
    description: str
    price: int
    total_parts: int
    freelancer: Optional[str] = None
    solution_link: str = ""
    parts_solved: int = 0
    parts_accepted: int = 0
    state: str = JobState.NEW.value
    timestamp: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate job fields."""
        if isinstance(self.state, JobState):
            self.state = self.state.value
        valid_states = {s.value for s in JobState}
        if self.state not in valid_states:
            raise ValueError(f"Invalid state: {self.state}. Must be one of {valid_states}")

        if not is_int(self.id) or self.id < 0:
            raise ValueError("Job id must be a non-negative integer")
        if not is_int(self.price) or self.price <= 0:
            raise ValueError("Price must be a positive integer")
        if not is_int(self.total_parts) or self.total_parts <= 0:
            raise ValueError("Total parts must be a positive integer")
        if not (0 <= self.parts_accepted <= self.parts_solved <= self.total_parts):
            raise ValueError(
                "Part counters must satisfy 0 <= parts_accepted <= parts_solved <= total_parts"
            )
        if (self.state == JobState.NEW.value) != (self.freelancer is None):
            raise ValueError("A job has a freelancer exactly when it is no longer new")

        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

    @property
    def is_open(self) -> bool:
        """Whether the job is still waiting for a freelancer."""
        return self.state == JobState.NEW.value

    @property
    def is_solved(self) -> bool:
        return self.state == JobState.SOLVED.value

    @property
    def has_pending_part(self) -> bool:
        """Whether a submitted part is waiting for the owner's review."""
        return self.parts_solved > self.parts_accepted

    @property
    def is_fully_paid(self) -> bool:
        return self.parts_accepted == self.total_parts

    def can_transition_to(self, new_state: JobState, allow_reassignment: bool = False) -> bool:
        """Check if transition to new state is valid."""
        current = JobState(self.state)
        if new_state in VALID_JOB_TRANSITIONS.get(current, set()):
            return True
        return allow_reassignment and new_state in REASSIGNMENT_TRANSITIONS.get(current, set())

    def transition_to(self, new_state: JobState, allow_reassignment: bool = False):
        """Move to ``new_state``.

        Raises:
            ValueError: If the state machine does not allow the move
        """
        if not self.can_transition_to(new_state, allow_reassignment):
            raise ValueError(f"Invalid transition: {self.state} -> {new_state.value}")
        self.state = new_state.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "owner": self.owner,
            "description": self.description,
            "price": self.price,
            "total_parts": self.total_parts,
            "freelancer": self.freelancer,
            "solution_link": self.solution_link,
            "parts_solved": self.parts_solved,
            "parts_accepted": self.parts_accepted,
            "state": self.state,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create from dictionary."""
        return cls(
            id=int(data["id"]),
            owner=data["owner"],
            description=data["description"],
            price=int(data["price"]),
            total_parts=int(data["total_parts"]),
            freelancer=data.get("freelancer"),
            solution_link=data.get("solution_link") or "",
            parts_solved=int(data.get("parts_solved", 0)),
            parts_accepted=int(data.get("parts_accepted", 0)),
            state=data.get("state", JobState.NEW.value),
            timestamp=_parse_timestamp(data.get("timestamp")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )


@dataclass
class JobStateTransition:
    """Audit log entry for one committed ledger operation on a job.

    ``from_state`` is None for the publish entry. ``amount`` is the value
    moved by the operation (deposit on publish, payment on part acceptance).
    """

    job_id: int
    action: str
    to_state: str
    actor_id: str
    from_state: Optional[str] = None
    amount: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.action, JobAction):
            self.action = self.action.value
        if isinstance(self.from_state, JobState):
            self.from_state = self.from_state.value
        if isinstance(self.to_state, JobState):
            self.to_state = self.to_state.value
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "action": self.action,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "actor_id": self.actor_id,
            "amount": self.amount,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobStateTransition":
        """Create from dictionary."""
        return cls(
            job_id=int(data["job_id"]),
            action=data["action"],
            from_state=data.get("from_state"),
            to_state=data["to_state"],
            actor_id=data["actor_id"],
            amount=int(data.get("amount") or 0),
            metadata=data.get("metadata") or {},
            created_at=_parse_timestamp(data.get("created_at")),
        )
