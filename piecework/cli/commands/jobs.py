"""Job ledger CLI commands."""

import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from piecework.jobs.service import JobLedger


def _print_job(job, as_json: bool = False):
    if as_json:
        print(json.dumps(job.to_dict(), indent=2, default=str))
        return
    print(f"Job #{job.id}: {job.description}")
    print(f"  State: {job.state}")
    print(f"  Owner: {job.owner}")
    print(f"  Freelancer: {job.freelancer or '-'}")
    print(f"  Price: {job.price} ({job.total_parts} parts)")
    print(f"  Parts: {job.parts_accepted} accepted / {job.parts_solved} submitted")
    if job.solution_link:
        print(f"  Solution: {job.solution_link}")


def cmd_publish(args, ledger: "JobLedger"):
    """Publish a job and deposit its escrow."""
    deposit = args.deposit if args.deposit is not None else args.price
    job_id = ledger.publish_job(
        description=args.description,
        price=args.price,
        total_parts=args.parts,
        deposited_value=deposit,
        creator=args.identity,
    )
    if args.json:
        print(json.dumps({"job_id": job_id}))
    else:
        print(f"✓ Job published: #{job_id} (deposit {deposit} held)")


def cmd_browse(args, ledger: "JobLedger"):
    """List jobs still waiting for a freelancer."""
    jobs = ledger.browse_jobs()
    if args.json:
        print(json.dumps([j.to_dict() for j in jobs], indent=2, default=str))
        return
    if not jobs:
        print("No open jobs.")
        return
    print(f"Open jobs ({len(jobs)}):")
    for job in jobs:
        print(f"  #{job.id} {job.description} - price {job.price}, {job.total_parts} parts")


def cmd_show(args, ledger: "JobLedger"):
    """Show a job with its escrow statement."""
    job = ledger.get_job(args.job_id)
    statement = ledger.get_statement(args.job_id)
    if args.json:
        print(
            json.dumps(
                {"job": job.to_dict(), "escrow": statement.to_dict()}, indent=2, default=str
            )
        )
        return
    _print_job(job)
    print(
        f"  Escrow: {statement.held} held, {statement.released} released, "
        f"{statement.per_part} per part, {statement.dust} unpayable"
    )


def cmd_history(args, ledger: "JobLedger"):
    """Show the audit log for a job."""
    history = ledger.get_job_history(args.job_id)
    if args.json:
        print(json.dumps([t.to_dict() for t in history], indent=2, default=str))
        return
    for t in history:
        amount = f" amount={t.amount}" if t.amount else ""
        print(
            f"{t.created_at.isoformat()}  {t.action:<12} {t.actor_id} "
            f"({t.from_state or '-'} -> {t.to_state}){amount}"
        )


def cmd_accept(args, ledger: "JobLedger"):
    """Take a job as its freelancer."""
    ledger.accept_job(args.job_id, caller=args.identity)
    print(f"✓ Job #{args.job_id} accepted by {args.identity}")


def cmd_submit(args, ledger: "JobLedger"):
    """Submit the next part of a job."""
    ledger.submit_solved_part(args.job_id, caller=args.identity, link=args.link)
    job = ledger.get_job(args.job_id)
    print(f"✓ Part {job.parts_solved}/{job.total_parts} submitted for job #{job.id}")
    if job.is_solved:
        print("  All parts submitted; job is now solved")


def cmd_approve(args, ledger: "JobLedger"):
    """Accept the pending part and release its payment."""
    amount = ledger.accept_solved_part(args.job_id, caller=args.identity)
    job = ledger.get_job(args.job_id)
    print(f"✓ Part accepted for job #{job.id}: paid {amount} to {job.freelancer}")
    print(f"  Parts: {job.parts_accepted}/{job.total_parts} accepted")


def cmd_reject(args, ledger: "JobLedger"):
    """Reject the pending part."""
    ledger.reject_solved_part(args.job_id, caller=args.identity)
    print(f"✓ Pending part rejected for job #{args.job_id}")


def cmd_balance(args, ledger: "JobLedger"):
    """Show the total paid out to an identity."""
    identity = args.who or args.identity
    balance = ledger.transfer.balance_of(identity)
    if args.json:
        print(json.dumps({"identity": identity, "balance": balance}))
    else:
        print(f"{identity}: {balance}")
