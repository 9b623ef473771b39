"""Tests for the job ledger service."""

import sqlite3

import pytest

from piecework.config import NULL_IDENTITY, LedgerConfig, LinkPolicy, ReassignmentPolicy
from piecework.escrow.transfer import SQLiteValueTransfer, TransferError
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
from piecework.jobs.registry import JobRegistry
from piecework.jobs.service import JobLedger
from piecework.jobs.storage import InMemoryJobStorage, SQLiteJobStorage

OWNER = "owner-alice"
FREELANCER = "freelancer-bob"
OTHER = "agent-carol"


def assert_invariants(job):
    assert 0 <= job.parts_accepted <= job.parts_solved <= job.total_parts
    assert (job.state == "new") == (job.freelancer is None)


class TestPublishJob:
    """Tests for job publication."""

    def test_publish_assigns_sequential_ids(self, ledger):
        first = ledger.publish_job("First", 100, 2, 100, OWNER)
        second = ledger.publish_job("Second", 50, 1, 50, OWNER)

        assert first == 0
        assert second == 1

    def test_publish_stores_new_job(self, ledger, transfer):
        job_id = ledger.publish_job("Research task", 100, 4, 100, OWNER)

        job = ledger.get_job(job_id)
        assert job.state == "new"
        assert job.owner == OWNER
        assert job.price == 100
        assert job.total_parts == 4
        assert job.parts_solved == 0
        assert job.parts_accepted == 0
        assert job.freelancer is None
        assert transfer.held(job_id) == 100
        assert ledger.open_count == 1

    def test_excess_deposit_is_held_in_full(self, ledger, transfer):
        job_id = ledger.publish_job("Overfunded", 100, 2, 150, OWNER)

        assert transfer.held(job_id) == 150
        assert transfer.deposited(job_id) == 150

    @pytest.mark.parametrize("price", [0, -1])
    def test_invalid_price(self, ledger, price):
        with pytest.raises(InvalidPriceError):
            ledger.publish_job("Bad", price, 1, 100, OWNER)

    @pytest.mark.parametrize("parts", [0, -3])
    def test_invalid_part_count(self, ledger, parts):
        with pytest.raises(InvalidPartCountError):
            ledger.publish_job("Bad", 100, parts, 100, OWNER)

    @pytest.mark.parametrize("creator", [None, "", "   ", NULL_IDENTITY])
    def test_null_creator_rejected(self, ledger, creator):
        with pytest.raises(UnauthorizedCallerError):
            ledger.publish_job("Bad", 100, 1, 100, creator)

    def test_insufficient_deposit(self, ledger, transfer):
        with pytest.raises(InsufficientDepositError):
            ledger.publish_job("Underfunded", 100, 1, 99, OWNER)

        assert transfer.transfers == []

    def test_failed_publish_does_not_consume_id(self, ledger):
        with pytest.raises(InvalidPriceError):
            ledger.publish_job("Bad", 0, 1, 100, OWNER)

        assert ledger.publish_job("Good", 10, 1, 10, OWNER) == 0
        assert ledger.open_count == 1

    def test_deposit_failure_stores_nothing(self, ledger, transfer, monkeypatch):
        def refuse(payer, amount, job_id):
            raise TransferError("custody offline")

        monkeypatch.setattr(transfer, "hold", refuse)

        with pytest.raises(TransferFailedError, match="custody offline"):
            ledger.publish_job("Job", 100, 1, 100, OWNER)

        assert ledger.browse_jobs() == []
        assert ledger.open_count == 0

    def test_publish_emits_event(self, ledger, recorder):
        job_id = ledger.publish_job("Job", 100, 1, 100, OWNER)

        assert recorder.types == ["JobPublished"]
        assert recorder.events[0].job_id == job_id
        assert recorder.events[0].actor == OWNER


class TestGetJob:
    def test_get_job_not_found(self, ledger):
        with pytest.raises(JobNotFoundError):
            ledger.get_job(42)

    @pytest.mark.parametrize(
        "operation",
        ["accept_job", "accept_solved_part", "reject_solved_part"],
    )
    def test_operations_check_existence(self, ledger, operation):
        with pytest.raises(JobNotFoundError):
            getattr(ledger, operation)(42, OWNER)

    def test_submit_checks_existence(self, ledger):
        with pytest.raises(JobNotFoundError):
            ledger.submit_solved_part(42, FREELANCER, "link")

    def test_errors_share_base_and_codes(self, ledger):
        with pytest.raises(JobLedgerError) as exc_info:
            ledger.get_job(5)
        assert exc_info.value.code == "not_found"
        assert exc_info.value.job_id == 5


class TestAcceptJob:
    """Tests for job assignment."""

    def test_accept_job_success(self, ledger, published_job, recorder):
        ledger.accept_job(published_job, FREELANCER)

        job = ledger.get_job(published_job)
        assert job.state == "accepted"
        assert job.freelancer == FREELANCER
        assert recorder.types[-1] == "JobAccepted"
        assert recorder.events[-1].actor == FREELANCER

    def test_owner_cannot_accept_own_job(self, ledger, published_job):
        with pytest.raises(SelfAssignmentError):
            ledger.accept_job(published_job, OWNER)

        assert ledger.get_job(published_job).state == "new"

    def test_null_freelancer_rejected(self, ledger, published_job):
        with pytest.raises(UnauthorizedCallerError):
            ledger.accept_job(published_job, None)

    def test_solved_job_rejects_acceptance(self, ledger):
        job_id = ledger.publish_job("Single", 10, 1, 10, OWNER)
        ledger.accept_job(job_id, FREELANCER)
        ledger.submit_solved_part(job_id, FREELANCER, "done")

        with pytest.raises(AlreadySolvedError):
            ledger.accept_job(job_id, OTHER)

    def test_already_solved_takes_precedence_over_self_assignment(self, ledger):
        job_id = ledger.publish_job("Single", 10, 1, 10, OWNER)
        ledger.accept_job(job_id, FREELANCER)
        ledger.submit_solved_part(job_id, FREELANCER, "done")

        with pytest.raises(AlreadySolvedError):
            ledger.accept_job(job_id, OWNER)

    def test_owner_rejected_while_accepted(self, ledger, accepted_job):
        with pytest.raises(SelfAssignmentError):
            ledger.accept_job(accepted_job, OWNER)

    def test_reacceptance_rejected_by_default(self, ledger, accepted_job):
        with pytest.raises(AlreadyAcceptedError):
            ledger.accept_job(accepted_job, OTHER)

        assert ledger.get_job(accepted_job).freelancer == FREELANCER

    def test_same_freelancer_cannot_reaccept(self, ledger, accepted_job):
        with pytest.raises(AlreadyAcceptedError):
            ledger.accept_job(accepted_job, FREELANCER)

    def test_permissive_policy_reassigns(self, registry, transfer, events):
        ledger = JobLedger(
            registry=registry,
            transfer=transfer,
            config=LedgerConfig(reassignment_policy=ReassignmentPolicy.PERMISSIVE),
            events=events,
        )
        job_id = ledger.publish_job("Job", 100, 2, 100, OWNER)
        ledger.accept_job(job_id, FREELANCER)

        ledger.accept_job(job_id, OTHER)

        job = ledger.get_job(job_id)
        assert job.freelancer == OTHER
        assert job.state == "accepted"
        history = ledger.get_job_history(job_id)
        assert history[-1].metadata == {"previous_freelancer": FREELANCER}
        assert history[-1].from_state == history[-1].to_state == "accepted"

    def test_permissive_policy_cannot_reopen_solved_job(self, registry, transfer, events):
        ledger = JobLedger(
            registry=registry,
            transfer=transfer,
            config=LedgerConfig(reassignment_policy=ReassignmentPolicy.PERMISSIVE),
            events=events,
        )
        job_id = ledger.publish_job("Job", 100, 1, 100, OWNER)
        ledger.accept_job(job_id, FREELANCER)
        ledger.submit_solved_part(job_id, FREELANCER, "done")

        with pytest.raises(AlreadySolvedError):
            ledger.accept_job(job_id, OTHER)
        assert ledger.get_job(job_id).freelancer == FREELANCER

    def test_accepted_job_leaves_browse_list(self, ledger, published_job):
        assert [j.id for j in ledger.browse_jobs()] == [published_job]

        ledger.accept_job(published_job, FREELANCER)

        assert ledger.browse_jobs() == []


class TestSubmitSolvedPart:
    """Tests for work submission."""

    def test_submit_first_part(self, ledger, accepted_job, recorder):
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")

        job = ledger.get_job(accepted_job)
        assert job.parts_solved == 1
        assert job.solution_link == "link1"
        assert job.state == "accepted"
        assert recorder.types[-1] == "PartSubmitted"

    def test_submit_by_non_freelancer_fails(self, ledger, accepted_job):
        with pytest.raises(NotAssignedFreelancerError):
            ledger.submit_solved_part(accepted_job, OTHER, "link")
        with pytest.raises(NotAssignedFreelancerError):
            ledger.submit_solved_part(accepted_job, OWNER, "link")

    def test_submit_on_unassigned_job_fails(self, ledger, published_job):
        with pytest.raises(NotAssignedFreelancerError):
            ledger.submit_solved_part(published_job, FREELANCER, "link")
        with pytest.raises(NotAssignedFreelancerError):
            ledger.submit_solved_part(published_job, None, "link")

    def test_backpressure_on_pending_part(self, ledger, accepted_job):
        """A second submission waits until the first is reviewed."""
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")

        with pytest.raises(PendingPartExistsError):
            ledger.submit_solved_part(accepted_job, FREELANCER, "link2")

        ledger.reject_solved_part(accepted_job, OWNER)
        ledger.submit_solved_part(accepted_job, FREELANCER, "link2")

        with pytest.raises(PendingPartExistsError):
            ledger.submit_solved_part(accepted_job, FREELANCER, "link3")

        ledger.accept_solved_part(accepted_job, OWNER)
        ledger.submit_solved_part(accepted_job, FREELANCER, "link3")
        assert ledger.get_job(accepted_job).parts_solved == 2

    def test_link_kept_from_first_submission(self, ledger, accepted_job):
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")
        ledger.accept_solved_part(accepted_job, OWNER)
        ledger.submit_solved_part(accepted_job, FREELANCER, "link2")

        assert ledger.get_job(accepted_job).solution_link == "link1"

    def test_always_latest_link_policy(self, registry, transfer, events):
        ledger = JobLedger(
            registry=registry,
            transfer=transfer,
            config=LedgerConfig(link_policy=LinkPolicy.ALWAYS_LATEST),
            events=events,
        )
        job_id = ledger.publish_job("Job", 90, 3, 90, OWNER)
        ledger.accept_job(job_id, FREELANCER)
        ledger.submit_solved_part(job_id, FREELANCER, "link1")
        ledger.accept_solved_part(job_id, OWNER)
        ledger.submit_solved_part(job_id, FREELANCER, "link2")

        assert ledger.get_job(job_id).solution_link == "link2"

    def test_final_submission_solves_job(self, ledger, accepted_job):
        open_before = ledger.open_count
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")
        ledger.accept_solved_part(accepted_job, OWNER)
        ledger.submit_solved_part(accepted_job, FREELANCER, "link2")

        job = ledger.get_job(accepted_job)
        assert job.state == "solved"
        assert job.parts_accepted == 1
        assert ledger.open_count == open_before - 1

    def test_submit_after_solved_fails(self, ledger):
        job_id = ledger.publish_job("Single", 10, 1, 10, OWNER)
        ledger.accept_job(job_id, FREELANCER)
        ledger.submit_solved_part(job_id, FREELANCER, "done")
        ledger.accept_solved_part(job_id, OWNER)

        with pytest.raises(AlreadySolvedError):
            ledger.submit_solved_part(job_id, FREELANCER, "again")


class TestAcceptSolvedPart:
    """Tests for payment release."""

    def test_accept_pays_per_part(self, ledger, accepted_job, transfer, recorder):
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")

        paid = ledger.accept_solved_part(accepted_job, OWNER)

        assert paid == 50
        assert transfer.balance_of(FREELANCER) == 50
        assert transfer.held(accepted_job) == 50
        job = ledger.get_job(accepted_job)
        assert job.parts_accepted == 1
        assert recorder.types[-1] == "PartAccepted"
        assert recorder.events[-1].actor == OWNER
        assert recorder.events[-1].amount == 50
        assert recorder.events[-1].freelancer == FREELANCER

    def test_accept_by_non_owner_fails(self, ledger, accepted_job):
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")

        with pytest.raises(NotOwnerError):
            ledger.accept_solved_part(accepted_job, FREELANCER)

    def test_accept_without_submission_fails(self, ledger, accepted_job, transfer):
        with pytest.raises(NoPendingSubmissionError):
            ledger.accept_solved_part(accepted_job, OWNER)

        assert transfer.balance_of(FREELANCER) == 0

    def test_not_owner_checked_before_pending(self, ledger, accepted_job):
        with pytest.raises(NotOwnerError):
            ledger.accept_solved_part(accepted_job, OTHER)

    def test_failed_transfer_rolls_back(self, ledger, accepted_job, transfer, recorder):
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")
        events_before = list(recorder.types)
        history_before = len(ledger.get_job_history(accepted_job))
        transfer.fail_payouts = "custody offline"

        with pytest.raises(TransferFailedError, match="custody offline"):
            ledger.accept_solved_part(accepted_job, OWNER)

        job = ledger.get_job(accepted_job)
        assert job.parts_accepted == 0
        assert job.parts_solved == 1
        assert transfer.balance_of(FREELANCER) == 0
        assert recorder.types == events_before
        assert len(ledger.get_job_history(accepted_job)) == history_before

        transfer.fail_payouts = None
        assert ledger.accept_solved_part(accepted_job, OWNER) == 50

    def test_transfer_exception_is_wrapped(self, ledger, accepted_job, transfer, monkeypatch):
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")

        def explode(payee, amount, job_id):
            raise TransferError("insufficient custody")

        monkeypatch.setattr(transfer, "pay", explode)

        with pytest.raises(TransferFailedError) as exc_info:
            ledger.accept_solved_part(accepted_job, OWNER)

        assert isinstance(exc_info.value.__cause__, TransferError)
        assert ledger.get_job(accepted_job).parts_accepted == 0

    def test_price_below_parts_pays_nothing(self, ledger, transfer):
        job_id = ledger.publish_job("Tiny", 2, 3, 2, OWNER)
        ledger.accept_job(job_id, FREELANCER)
        ledger.submit_solved_part(job_id, FREELANCER, "x")

        assert ledger.accept_solved_part(job_id, OWNER) == 0
        assert ledger.get_job(job_id).parts_accepted == 1
        assert transfer.held(job_id) == 2

    def test_full_acceptance_pays_price_minus_dust(self, ledger, transfer):
        job_id = ledger.publish_job("Thirds", 100, 3, 100, OWNER)
        ledger.accept_job(job_id, FREELANCER)
        for part in range(3):
            ledger.submit_solved_part(job_id, FREELANCER, f"part-{part}")
            ledger.accept_solved_part(job_id, OWNER)

        job = ledger.get_job(job_id)
        assert job.state == "solved"
        assert job.is_fully_paid
        assert transfer.balance_of(FREELANCER) == 99
        assert transfer.held(job_id) == 1


class TestRejectSolvedPart:
    """Tests for part rejection."""

    def test_reject_rolls_back_pending_part(self, ledger, accepted_job, transfer, recorder):
        ledger.submit_solved_part(accepted_job, FREELANCER, "x")

        ledger.reject_solved_part(accepted_job, OWNER)

        job = ledger.get_job(accepted_job)
        assert job.parts_solved == 0
        assert job.solution_link == ""
        assert transfer.balance_of(FREELANCER) == 0
        assert recorder.types[-1] == "PartRejected"

    def test_reject_keeps_link_when_parts_remain(self, ledger, accepted_job):
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")
        ledger.accept_solved_part(accepted_job, OWNER)
        ledger.submit_solved_part(accepted_job, FREELANCER, "link2")
        # Job is solved by full submission, but review still works
        ledger.reject_solved_part(accepted_job, OWNER)

        job = ledger.get_job(accepted_job)
        assert job.parts_solved == 1
        assert job.parts_accepted == 1
        assert job.solution_link == "link1"

    def test_reject_by_non_owner_fails(self, ledger, accepted_job):
        ledger.submit_solved_part(accepted_job, FREELANCER, "x")

        with pytest.raises(NotOwnerError):
            ledger.reject_solved_part(accepted_job, FREELANCER)

    def test_reject_without_pending_never_mutates(self, ledger, accepted_job, recorder):
        before = ledger.get_job(accepted_job)
        history_before = len(ledger.get_job_history(accepted_job))
        events_before = list(recorder.types)

        for _ in range(3):
            with pytest.raises(NoPendingSubmissionError):
                ledger.reject_solved_part(accepted_job, OWNER)

        assert ledger.get_job(accepted_job) == before
        assert len(ledger.get_job_history(accepted_job)) == history_before
        assert recorder.types == events_before

    def test_reject_after_accept_fails(self, ledger, accepted_job):
        ledger.submit_solved_part(accepted_job, FREELANCER, "x")
        ledger.accept_solved_part(accepted_job, OWNER)

        with pytest.raises(NoPendingSubmissionError):
            ledger.reject_solved_part(accepted_job, OWNER)


class TestScenarios:
    """End-to-end flows."""

    def test_two_part_job(self, ledger, transfer, recorder):
        job_id = ledger.publish_job("Two parts", 100, 2, 100, OWNER)
        assert job_id == 0

        ledger.accept_job(0, FREELANCER)
        assert ledger.get_job(0).state == "accepted"

        ledger.submit_solved_part(0, FREELANCER, "link1")
        job = ledger.get_job(0)
        assert job.parts_solved == 1
        assert job.solution_link == "link1"

        assert ledger.accept_solved_part(0, OWNER) == 50
        assert ledger.get_job(0).parts_accepted == 1

        ledger.submit_solved_part(0, FREELANCER, "link2")
        job = ledger.get_job(0)
        assert job.parts_solved == 2
        assert job.state == "solved"
        assert job.solution_link == "link1"

        assert ledger.accept_solved_part(0, OWNER) == 50
        job = ledger.get_job(0)
        assert job.parts_accepted == 2
        assert job.state == "solved"
        assert transfer.balance_of(FREELANCER) == 100

        assert recorder.types == [
            "JobPublished",
            "JobAccepted",
            "PartSubmitted",
            "PartAccepted",
            "PartSubmitted",
            "PartAccepted",
        ]

    def test_single_part_rejection(self, ledger, transfer):
        job_id = ledger.publish_job("One part", 100, 1, 100, OWNER)
        ledger.accept_job(job_id, FREELANCER)

        ledger.submit_solved_part(job_id, FREELANCER, "x")
        job = ledger.get_job(job_id)
        assert job.parts_solved == 1
        assert job.solution_link == "x"
        # The only part is submitted, so the job is closed by submission
        assert job.state == "solved"

        ledger.reject_solved_part(job_id, OWNER)

        job = ledger.get_job(job_id)
        assert job.parts_solved == 0
        assert job.solution_link == ""
        assert job.state == "solved"
        assert transfer.balance_of(FREELANCER) == 0
        assert transfer.held(job_id) == 100

    def test_rejection_keeps_unsolved_job_counted(self, ledger):
        job_id = ledger.publish_job("Three parts", 90, 3, 90, OWNER)
        ledger.accept_job(job_id, FREELANCER)
        ledger.submit_solved_part(job_id, FREELANCER, "x")

        ledger.reject_solved_part(job_id, OWNER)

        job = ledger.get_job(job_id)
        assert job.state == "accepted"
        assert job.parts_solved == 0
        assert ledger.open_count == 1

    def test_browse_lists_new_jobs_in_id_order(self, ledger):
        ids = [ledger.publish_job(f"Job {i}", 10, 1, 10, OWNER) for i in range(4)]
        ledger.accept_job(ids[1], FREELANCER)

        assert [j.id for j in ledger.browse_jobs()] == [ids[0], ids[2], ids[3]]

        ledger.accept_job(ids[3], OTHER)
        ledger.submit_solved_part(ids[3], OTHER, "done")

        assert [j.id for j in ledger.browse_jobs()] == [ids[0], ids[2]]

    def test_browse_is_a_snapshot(self, ledger, published_job):
        snapshot = ledger.browse_jobs()
        ledger.accept_job(published_job, FREELANCER)

        assert snapshot[0].state == "new"
        snapshot[0].description = "changed"
        assert ledger.get_job(published_job).description == "Translate the manual"

    def test_invariants_hold_through_mixed_reviews(self, ledger, transfer):
        job_id = ledger.publish_job("Five parts", 103, 5, 110, OWNER)
        ledger.accept_job(job_id, FREELANCER)
        decisions = [True, False, True, False, False, True, True, True]

        for accept in decisions:
            job = ledger.get_job(job_id)
            if job.is_solved and not job.has_pending_part:
                break
            if not job.has_pending_part:
                ledger.submit_solved_part(job_id, FREELANCER, "work")
            if accept:
                ledger.accept_solved_part(job_id, OWNER)
            else:
                ledger.reject_solved_part(job_id, OWNER)
            job = ledger.get_job(job_id)
            assert_invariants(job)
            assert transfer.balance_of(FREELANCER) <= job.price

        job = ledger.get_job(job_id)
        assert job.parts_accepted == 5
        assert transfer.balance_of(FREELANCER) == 100
        assert transfer.held(job_id) == 10


class TestJobHistory:
    def test_history_records_each_operation(self, ledger, accepted_job):
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")
        ledger.accept_solved_part(accepted_job, OWNER)

        history = ledger.get_job_history(accepted_job)

        assert [t.action for t in history] == [
            "publish",
            "accept_job",
            "submit_part",
            "accept_part",
        ]
        assert history[0].from_state is None
        assert history[0].amount == 100
        assert history[1].from_state == "new"
        assert history[1].to_state == "accepted"
        assert history[3].amount == 50

    def test_statement(self, ledger, accepted_job):
        ledger.submit_solved_part(accepted_job, FREELANCER, "link1")

        statement = ledger.get_statement(accepted_job)

        assert statement.pending_payment == 50
        assert statement.held == 100
        assert statement.released == 0


class FlakyStorage(InMemoryJobStorage):
    """In-memory storage whose next writes fail like a locked database."""

    def __init__(self):
        super().__init__()
        self.failing_saves = 0
        self.failing_updates = 0

    def save_job(self, job, transition, open_delta=0):
        if self.failing_saves:
            self.failing_saves -= 1
            raise sqlite3.OperationalError("database is locked")
        return super().save_job(job, transition, open_delta)

    def update_job(self, job, transition, open_delta=0):
        if self.failing_updates:
            self.failing_updates -= 1
            raise sqlite3.OperationalError("database is locked")
        return super().update_job(job, transition, open_delta)


class FlakySQLiteStorage(SQLiteJobStorage):
    def __init__(self, db_path):
        super().__init__(db_path)
        self.failing_updates = 0

    def update_job(self, job, transition, open_delta=0):
        if self.failing_updates:
            self.failing_updates -= 1
            raise sqlite3.OperationalError("disk I/O error")
        return super().update_job(job, transition, open_delta)


class TestCommitFailure:
    """A job write that fails after value moved leaves no value moved."""

    @pytest.fixture
    def flaky(self):
        return FlakyStorage()

    @pytest.fixture
    def flaky_ledger(self, flaky, transfer):
        return JobLedger(registry=JobRegistry(flaky), transfer=transfer)

    def test_failed_commit_reverses_payout(self, flaky, flaky_ledger, transfer):
        job_id = flaky_ledger.publish_job("Job", 100, 2, 100, OWNER)
        flaky_ledger.accept_job(job_id, FREELANCER)
        flaky_ledger.submit_solved_part(job_id, FREELANCER, "part-1")
        flaky.failing_updates = 1

        with pytest.raises(sqlite3.OperationalError):
            flaky_ledger.accept_solved_part(job_id, OWNER)

        assert flaky_ledger.get_job(job_id).parts_accepted == 0
        assert transfer.balance_of(FREELANCER) == 0
        assert transfer.held(job_id) == 100

        assert flaky_ledger.accept_solved_part(job_id, OWNER) == 50
        assert transfer.balance_of(FREELANCER) == 50
        assert transfer.held(job_id) == 50

    def test_failed_save_reverses_deposit(self, flaky, flaky_ledger, transfer):
        flaky.failing_saves = 1

        with pytest.raises(sqlite3.OperationalError):
            flaky_ledger.publish_job("Job", 100, 2, 100, OWNER)

        assert transfer.deposited(0) == 0
        assert flaky_ledger.publish_job("Job", 80, 2, 80, OWNER) == 0
        assert transfer.held(0) == 80

    def test_sqlite_commit_failure_moves_nothing(self, tmp_path):
        path = tmp_path / "ledger.db"
        storage = FlakySQLiteStorage(path)
        transfer = SQLiteValueTransfer(path)
        ledger = JobLedger(registry=JobRegistry(storage), transfer=transfer)
        job_id = ledger.publish_job("Job", 100, 2, 100, OWNER)
        ledger.accept_job(job_id, FREELANCER)
        ledger.submit_solved_part(job_id, FREELANCER, "part-1")
        storage.failing_updates = 1

        with pytest.raises(sqlite3.OperationalError):
            ledger.accept_solved_part(job_id, OWNER)

        assert ledger.get_job(job_id).parts_accepted == 0
        assert transfer.balance_of(FREELANCER) == 0
        assert transfer.held(job_id) == 100

        assert ledger.accept_solved_part(job_id, OWNER) == 50
        assert transfer.balance_of(FREELANCER) == 50
