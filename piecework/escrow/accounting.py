"""
Escrow arithmetic for part-based payment.

The job price is split evenly across parts with integer division. Whatever
does not divide evenly is never paid out; that dust stays in escrow for the
life of the job and is at most ``total_parts - 1`` minor units.
"""

from dataclasses import dataclass
from typing import Any, Dict

from piecework.jobs.models import Job


def per_part_payment(price: int, total_parts: int) -> int:
    """Amount released for each accepted part."""
    if total_parts <= 0:
        raise ValueError("total_parts must be positive")
    return price // total_parts


def rounding_loss(price: int, total_parts: int) -> int:
    """Amount that is never released once every part is paid."""
    return price - per_part_payment(price, total_parts) * total_parts


def payment_due(job: Job) -> int:
    """Payment owed for the parts currently awaiting acceptance."""
    pending = job.parts_solved - job.parts_accepted
    if pending <= 0:
        return 0
    return pending * per_part_payment(job.price, job.total_parts)


def amount_released(job: Job) -> int:
    """Total paid to the freelancer so far."""
    return job.parts_accepted * per_part_payment(job.price, job.total_parts)


def escrow_remaining(job: Job, deposited: int) -> int:
    """Value still held for the job, including excess deposit and dust."""
    return deposited - amount_released(job)


@dataclass
class EscrowStatement:
    """Point-in-time view of a job's escrow."""

    job_id: int
    price: int
    deposited: int
    per_part: int
    released: int
    pending_payment: int
    held: int
    dust: int

    @classmethod
    def for_job(cls, job: Job, deposited: int) -> "EscrowStatement":
        return cls(
            job_id=job.id,
            price=job.price,
            deposited=deposited,
            per_part=per_part_payment(job.price, job.total_parts),
            released=amount_released(job),
            pending_payment=payment_due(job),
            held=escrow_remaining(job, deposited),
            dust=rounding_loss(job.price, job.total_parts),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "price": self.price,
            "deposited": self.deposited,
            "per_part": self.per_part,
            "released": self.released,
            "pending_payment": self.pending_payment,
            "held": self.held,
            "dust": self.dust,
        }
