"""Escrow subsystem for the piecework ledger.

Holds each job's deposit and releases it per accepted part.

Modules:
- accounting.py: Per-part payment arithmetic and escrow statements
- transfer.py: Value transfer capability (custody backends)
"""

from piecework.escrow.accounting import (
    EscrowStatement,
    amount_released,
    escrow_remaining,
    payment_due,
    per_part_payment,
    rounding_loss,
)
from piecework.escrow.transfer import (
    InMemoryValueTransfer,
    SQLiteValueTransfer,
    TransferError,
    TransferResult,
    ValueTransfer,
)

__all__ = [
    # Accounting
    "EscrowStatement",
    "per_part_payment",
    "payment_due",
    "rounding_loss",
    "amount_released",
    "escrow_remaining",
    # Transfer
    "ValueTransfer",
    "InMemoryValueTransfer",
    "SQLiteValueTransfer",
    "TransferError",
    "TransferResult",
]
