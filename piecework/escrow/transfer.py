"""
Value transfer capability.

The ledger never moves value itself. It asks a ``ValueTransfer`` to hold a
job's deposit and to pay freelancers out of that deposit. Implementations
either return a ``TransferResult`` or raise ``TransferError``; the ledger
treats an unsuccessful result and an exception the same way.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple, Union

from piecework.db import connect, resolve_db_path

logger = logging.getLogger(__name__)


class TransferError(Exception):
    """Raised when value cannot be held or paid out."""

    pass


@dataclass
class TransferResult:
    """Outcome of a hold or payout."""

    success: bool
    job_id: int
    amount: int
    counterparty: str
    transfer_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ValueTransfer(Protocol):
    """Protocol for the escrow custody backend."""

    def hold(self, payer: str, amount: int, job_id: int) -> TransferResult:
        """Take custody of a job deposit."""
        ...

    def pay(self, payee: str, amount: int, job_id: int) -> TransferResult:
        """Release ``amount`` of a job's held escrow to ``payee``."""
        ...

    def held(self, job_id: int) -> int:
        """Value still held for a job."""
        ...

    def deposited(self, job_id: int) -> int:
        """Value originally deposited for a job."""
        ...

    def reverse(self, result: TransferResult) -> bool:
        """Undo a completed hold or payout.

        Returns False if the transfer is not on record, for example because
        it was rolled back with the job write it belonged to.
        """
        ...

    def balance_of(self, identity: str) -> int:
        """Total value paid out to an identity."""
        ...


def _validate_amount(amount: int):
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
        raise TransferError(f"Amount must be a non-negative integer, got {amount!r}")


class InMemoryValueTransfer:
    """In-process custody for tests and the MCP server.

    Set ``fail_payouts`` to an error message to make every payout fail,
    which simulates an unavailable custody backend.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._deposited: Dict[int, int] = {}
        self._held: Dict[int, int] = {}
        self._balances: Dict[str, int] = {}
        self.transfers: List[TransferResult] = []
        self._completed: Dict[str, Tuple[str, TransferResult]] = {}
        self.fail_payouts: Optional[str] = None

    def hold(self, payer: str, amount: int, job_id: int) -> TransferResult:
        _validate_amount(amount)
        with self._lock:
            if job_id in self._deposited:
                raise TransferError(f"Escrow for job {job_id} already funded")
            self._deposited[job_id] = amount
            self._held[job_id] = amount
            result = TransferResult(
                success=True,
                job_id=job_id,
                amount=amount,
                counterparty=payer,
                transfer_id=uuid.uuid4().hex,
            )
            self.transfers.append(result)
            self._completed[result.transfer_id] = ("hold", result)
        logger.debug(f"Holding {amount} for job {job_id} from {payer}")
        return result

    def pay(self, payee: str, amount: int, job_id: int) -> TransferResult:
        _validate_amount(amount)
        if self.fail_payouts:
            return TransferResult(
                success=False,
                job_id=job_id,
                amount=amount,
                counterparty=payee,
                error=self.fail_payouts,
            )
        with self._lock:
            held = self._held.get(job_id)
            if held is None:
                raise TransferError(f"No escrow held for job {job_id}")
            if amount > held:
                raise TransferError(
                    f"Payout {amount} exceeds escrow held for job {job_id} ({held})"
                )
            self._held[job_id] = held - amount
            self._balances[payee] = self._balances.get(payee, 0) + amount
            result = TransferResult(
                success=True,
                job_id=job_id,
                amount=amount,
                counterparty=payee,
                transfer_id=uuid.uuid4().hex,
            )
            self.transfers.append(result)
            self._completed[result.transfer_id] = ("pay", result)
        logger.debug(f"Paid {amount} to {payee} from job {job_id}")
        return result

    def reverse(self, result: TransferResult) -> bool:
        with self._lock:
            entry = self._completed.pop(result.transfer_id or "", None)
            if entry is None:
                return False
            kind, original = entry
            if kind == "hold":
                del self._deposited[original.job_id]
                del self._held[original.job_id]
            else:
                self._held[original.job_id] += original.amount
                self._balances[original.counterparty] -= original.amount
        logger.warning(
            f"Reversed {kind} of {original.amount} for job {original.job_id} "
            f"({original.counterparty})"
        )
        return True

    def held(self, job_id: int) -> int:
        return self._held.get(job_id, 0)

    def deposited(self, job_id: int) -> int:
        return self._deposited.get(job_id, 0)

    def balance_of(self, identity: str) -> int:
        return self._balances.get(identity, 0)


class SQLiteValueTransfer:
    """SQLite-backed custody used by the CLI.

    Balances only record what the ledger released; funding an owner's
    account is outside this backend. Calls made inside a
    ``piecework.db.transaction()`` on the same file commit or roll back
    with it.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = resolve_db_path(db_path)
        with connect(self.db_path) as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS escrow_accounts (
                    job_id INTEGER PRIMARY KEY,
                    payer TEXT NOT NULL,
                    deposited INTEGER NOT NULL,
                    held INTEGER NOT NULL
                );
                CREATE TABLE IF NOT EXISTS balances (
                    identity TEXT PRIMARY KEY,
                    amount INTEGER NOT NULL DEFAULT 0
                );
                CREATE TABLE IF NOT EXISTS transfers (
                    transfer_id TEXT PRIMARY KEY,
                    job_id INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    counterparty TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )

    def _log(self, conn, result: TransferResult, kind: str):
        conn.execute(
            """
            INSERT INTO transfers (transfer_id, job_id, kind, counterparty, amount, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                result.transfer_id,
                result.job_id,
                kind,
                result.counterparty,
                result.amount,
                result.created_at.isoformat(),
            ),
        )

    def hold(self, payer: str, amount: int, job_id: int) -> TransferResult:
        _validate_amount(amount)
        result = TransferResult(
            success=True,
            job_id=job_id,
            amount=amount,
            counterparty=payer,
            transfer_id=uuid.uuid4().hex,
        )
        with connect(self.db_path) as conn:
            existing = conn.execute(
                "SELECT 1 FROM escrow_accounts WHERE job_id = ?", (job_id,)
            ).fetchone()
            if existing:
                raise TransferError(f"Escrow for job {job_id} already funded")
            conn.execute(
                "INSERT INTO escrow_accounts (job_id, payer, deposited, held) VALUES (?, ?, ?, ?)",
                (job_id, payer, amount, amount),
            )
            self._log(conn, result, "hold")
        return result

    def pay(self, payee: str, amount: int, job_id: int) -> TransferResult:
        _validate_amount(amount)
        result = TransferResult(
            success=True,
            job_id=job_id,
            amount=amount,
            counterparty=payee,
            transfer_id=uuid.uuid4().hex,
        )
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT held FROM escrow_accounts WHERE job_id = ?", (job_id,)
            ).fetchone()
            if row is None:
                raise TransferError(f"No escrow held for job {job_id}")
            if amount > row["held"]:
                raise TransferError(
                    f"Payout {amount} exceeds escrow held for job {job_id} ({row['held']})"
                )
            conn.execute(
                "UPDATE escrow_accounts SET held = held - ? WHERE job_id = ?", (amount, job_id)
            )
            conn.execute(
                """
                INSERT INTO balances (identity, amount) VALUES (?, ?)
                ON CONFLICT(identity) DO UPDATE SET amount = amount + excluded.amount
                """,
                (payee, amount),
            )
            self._log(conn, result, "pay")
        return result

    def reverse(self, result: TransferResult) -> bool:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM transfers WHERE transfer_id = ? AND kind IN ('hold', 'pay')",
                (result.transfer_id,),
            ).fetchone()
            if row is None:
                return False
            if row["kind"] == "hold":
                conn.execute("DELETE FROM escrow_accounts WHERE job_id = ?", (row["job_id"],))
            else:
                conn.execute(
                    "UPDATE escrow_accounts SET held = held + ? WHERE job_id = ?",
                    (row["amount"], row["job_id"]),
                )
                conn.execute(
                    "UPDATE balances SET amount = amount - ? WHERE identity = ?",
                    (row["amount"], row["counterparty"]),
                )
            conn.execute(
                "UPDATE transfers SET kind = 'reversed_' || kind WHERE transfer_id = ?",
                (result.transfer_id,),
            )
        logger.warning(
            f"Reversed {row['kind']} of {row['amount']} for job {row['job_id']} "
            f"({row['counterparty']})"
        )
        return True

    def _account_value(self, column: str, job_id: int) -> int:
        with connect(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {column} FROM escrow_accounts WHERE job_id = ?", (job_id,)
            ).fetchone()
        return int(row[column]) if row else 0

    def held(self, job_id: int) -> int:
        return self._account_value("held", job_id)

    def deposited(self, job_id: int) -> int:
        return self._account_value("deposited", job_id)

    def balance_of(self, identity: str) -> int:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT amount FROM balances WHERE identity = ?", (identity,)
            ).fetchone()
        return int(row["amount"]) if row else 0
