"""Internal record types for state persistence and operation results."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from dogenode_payout.models.amounts import ZERO
from dogenode_payout.models.config import WithdrawalMethod


def new_transaction_id(prefix: str) -> str:
    """Unique, time-ordered id such as ``wd_1718000000000_9f2c1ab4``."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def withdrawal_memo(transaction_id: str) -> str:
    """Memo attached to the on-chain transfer, used to find it again."""
    return f"DogeNode withdrawal {transaction_id}"


class TransactionType(str, Enum):
    EARNING = "earning"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TransactionStatus.COMPLETED, TransactionStatus.FAILED)


class ReservationState(str, Enum):
    OPEN = "open"
    RELEASED = "released"
    COMMITTED = "committed"


class TransferState(str, Enum):
    """Backend view of a submitted transfer."""

    UNKNOWN = "unknown"  # backend has no record of the reference
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"  # dropped, double-spent or reverted


@dataclass
class Account:
    """Per-address balance state."""

    address: str
    available: Decimal = ZERO
    pending: Decimal = ZERO  # earmarked for in-flight withdrawals
    lifetime_earned: Decimal = ZERO
    lifetime_withdrawn: Decimal = ZERO
    created_at: str = ""
    last_activity: str = ""


@dataclass
class Reservation:
    """Funds moved from available to pending for one withdrawal.

    The id is the withdrawal transaction id. A reservation is settled
    exactly once, either released or committed.
    """

    id: str
    account: str
    total: Decimal  # amount + fee
    state: ReservationState = ReservationState.OPEN
    created_at: str = ""
    settled_at: str | None = None


@dataclass
class Transaction:
    """An earning or withdrawal as persisted in the ledger store."""

    id: str
    account: str
    type: TransactionType
    amount: Decimal
    fee: Decimal = ZERO
    net_amount: Decimal = ZERO  # what the recipient receives
    method: WithdrawalMethod | None = None
    to_address: str | None = None
    status: TransactionStatus = TransactionStatus.PENDING
    backend_reference: str | None = None  # txid / hash once dispatched
    explorer_url: str | None = None
    confirmations: int = 0
    failure_reason: str | None = None
    created_at: str = ""
    updated_at: str = ""
    dispatched_at: str | None = None
    unknown_since: str | None = None  # first time the backend did not know the reference


@dataclass
class TransferReceipt:
    """Result of a successful backend submit (or a re-query hit)."""

    reference: str
    explorer_url: str | None = None
    confirmations: int = 0


@dataclass
class TransferStatus:
    """Result of a backend status query."""

    reference: str
    state: TransferState
    confirmations: int = 0
    detail: str | None = None


@dataclass
class FeeQuote:
    """Result of evaluating a requested amount against the withdrawal policy."""

    amount: Decimal
    fee: Decimal
    net_amount: Decimal  # sent to the recipient
    total: Decimal  # reserved from the account: amount + fee


@dataclass
class WithdrawalReceipt:
    """Returned to the caller as soon as funds are reserved."""

    transaction_id: str
    account: str
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    total: Decimal  # reserved: amount + fee
    to_address: str
    method: WithdrawalMethod
    status: TransactionStatus
    estimated_time: str = "5-15 minutes"


@dataclass
class WithdrawalStatus:
    transaction_id: str
    status: TransactionStatus
    confirmations: int
    backend_reference: str | None = None
    explorer_url: str | None = None
    failure_reason: str | None = None


@dataclass
class ActivityRecord:
    """A single audit log entry."""

    id: int
    event_type: str
    message: str
    transaction_id: str | None
    account: str | None
    amount: Decimal | None
    created_at: str


@dataclass
class LedgerTotals:
    """Store-wide aggregates."""

    total_accounts: int = 0
    total_transactions: int = 0
    total_volume: Decimal = ZERO
    active_accounts_24h: int = 0


@dataclass
class PollReport:
    """Summary of one confirmation poller cycle."""

    started_at: str
    completed_at: str
    checked: int
    completed: int
    failed: int
    still_pending: int
    errors: int
    duration_ms: int
