"""
Ledger notifications.

Events are published after a ledger operation commits. Delivery is
fire-and-forget: a failing subscriber is logged and skipped, and never
affects the operation that produced the event.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class LedgerEventType(Enum):
    """Types of ledger notifications."""

    JOB_PUBLISHED = "JobPublished"
    JOB_ACCEPTED = "JobAccepted"
    PART_SUBMITTED = "PartSubmitted"
    PART_ACCEPTED = "PartAccepted"
    PART_REJECTED = "PartRejected"


@dataclass
class LedgerEvent:
    """Base notification: who acted on which job."""

    event_type: LedgerEventType
    actor: str
    job_id: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "actor": self.actor,
            "job_id": self.job_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class JobPublishedEvent(LedgerEvent):
    """A job was published and its deposit is held."""

    price: int = 0
    total_parts: int = 0


@dataclass
class JobAcceptedEvent(LedgerEvent):
    """A freelancer took the job. ``actor`` is the freelancer."""

    pass


@dataclass
class PartSubmittedEvent(LedgerEvent):
    """The freelancer submitted a part for review."""

    parts_solved: int = 0


@dataclass
class PartAcceptedEvent(LedgerEvent):
    """The owner accepted the pending part and payment was released."""

    amount: int = 0
    freelancer: Optional[str] = None


@dataclass
class PartRejectedEvent(LedgerEvent):
    """The owner rejected the pending part."""

    pass


EventHandler = Callable[[LedgerEvent], None]


class EventBus:
    """Synchronous in-process publisher for ledger notifications.

    Subscribers register for one event type or, with ``event_type=None``,
    for all of them.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: Dict[Optional[LedgerEventType], List[EventHandler]] = {}

    def subscribe(
        self, handler: EventHandler, event_type: Optional[LedgerEventType] = None
    ) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(
        self, handler: EventHandler, event_type: Optional[LedgerEventType] = None
    ) -> bool:
        """Remove a handler. Returns False if it was not registered."""
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler not in handlers:
                return False
            handlers.remove(handler)
            return True

    def publish(self, event: LedgerEvent) -> int:
        """Deliver an event. Returns the number of handlers that succeeded."""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, []))
            handlers += self._handlers.get(None, [])

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Subscriber failed on {event.event_type.value} for job {event.job_id}: "
                    f"{type(e).__name__}: {e}",
                    exc_info=True,
                )
        return delivered
