"""Exception taxonomy for the payout pipeline.

Rejections (``WithdrawalRejected``) are raised synchronously to the caller
before any state is touched. Settlement errors are raised by backends and
consumed by the orchestrator and poller. Invariant errors mean the ledger
is at risk and are never swallowed.
"""

from __future__ import annotations


class PayoutError(Exception):
    """Base class for all dogenode_payout errors."""


# ── Synchronous rejections ─────────────────────────────────


class WithdrawalRejected(PayoutError):
    """A withdrawal request refused before any funds were reserved."""

    code = "rejected"


class InvalidAmount(WithdrawalRejected):
    code = "invalid_amount"


class InvalidDestination(WithdrawalRejected):
    code = "invalid_destination"


class InsufficientFunds(WithdrawalRejected):
    code = "insufficient_funds"

    def __init__(self, account: str, required: object, available: object) -> None:
        super().__init__(
            f"Insufficient balance for {account}: need {required} DOGE "
            f"(fee included), available {available} DOGE"
        )
        self.account = account
        self.required = required
        self.available = available


class BackendUnavailable(WithdrawalRejected):
    code = "backend_unavailable"


class TransactionNotFound(PayoutError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Transaction not found: {transaction_id}")
        self.transaction_id = transaction_id


# ── Settlement (backend) errors ────────────────────────────


class SettlementError(PayoutError):
    """A settlement backend could not carry out a call."""


class SettlementRejected(SettlementError):
    """The backend explicitly refused the transfer. Nothing was sent."""


class SettlementUnavailable(SettlementError):
    """The backend could not be reached. Nothing was sent."""


class AmbiguousSettlement(SettlementError):
    """The outcome is unknown: the transfer may or may not have been sent."""


# ── Programming errors ─────────────────────────────────────


class LedgerInvariantError(PayoutError):
    """A ledger operation would fabricate or destroy balance."""


class InvalidStateTransition(PayoutError):
    def __init__(self, transaction_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Illegal transition for {transaction_id}: {current} -> {target}"
        )
        self.transaction_id = transaction_id
        self.current = current
        self.target = target
