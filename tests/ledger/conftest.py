"""Shared fixtures for ledger tests."""

import pytest

from piecework.config import LedgerConfig
from piecework.escrow.transfer import InMemoryValueTransfer
from piecework.events import EventBus
from piecework.jobs.registry import JobRegistry
from piecework.jobs.service import JobLedger
from piecework.jobs.storage import InMemoryJobStorage

OWNER = "owner-alice"
FREELANCER = "freelancer-bob"
OTHER = "agent-carol"


class EventRecorder:
    """Collects every published event."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def types(self):
        return [e.event_type.value for e in self.events]


@pytest.fixture
def storage():
    """Create in-memory storage for testing."""
    return InMemoryJobStorage()


@pytest.fixture
def registry(storage):
    return JobRegistry(storage)


@pytest.fixture
def transfer():
    return InMemoryValueTransfer()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def events(recorder):
    bus = EventBus()
    bus.subscribe(recorder)
    return bus


@pytest.fixture
def config():
    """Create test configuration."""
    return LedgerConfig()


@pytest.fixture
def ledger(registry, transfer, config, events):
    """Create a job ledger wired to in-memory backends."""
    return JobLedger(registry=registry, transfer=transfer, config=config, events=events)


@pytest.fixture
def published_job(ledger):
    """A two-part job priced at 100, waiting for a freelancer."""
    return ledger.publish_job("Translate the manual", 100, 2, 100, OWNER)


@pytest.fixture
def accepted_job(ledger, published_job):
    """The two-part job, taken by the freelancer."""
    ledger.accept_job(published_job, FREELANCER)
    return published_job
