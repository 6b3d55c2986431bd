"""Data models for the dogenode_payout daemon."""

from dogenode_payout.models.amounts import KOINU, ZERO, quantize
from dogenode_payout.models.config import (
    ConfirmationConfig,
    ExplorerBackendConfig,
    NodeBackendConfig,
    PayoutConfig,
    WithdrawalMethod,
    WithdrawalPolicyConfig,
    WrappedBackendConfig,
)
from dogenode_payout.models.records import (
    Account,
    ActivityRecord,
    FeeQuote,
    LedgerTotals,
    PollReport,
    Reservation,
    ReservationState,
    Transaction,
    TransactionStatus,
    TransactionType,
    TransferReceipt,
    TransferState,
    TransferStatus,
    WithdrawalReceipt,
    WithdrawalStatus,
)
from dogenode_payout.models.snapshots import (
    ActivityEntry,
    BackendSnapshot,
    BalanceSnapshot,
    EarningsEntry,
    EarningsHistory,
    StatsSnapshot,
    TransactionPage,
    TransactionSnapshot,
)

__all__ = [
    "KOINU", "ZERO", "quantize",
    "ConfirmationConfig", "ExplorerBackendConfig", "NodeBackendConfig",
    "PayoutConfig", "WithdrawalMethod", "WithdrawalPolicyConfig",
    "WrappedBackendConfig",
    "Account", "ActivityRecord", "FeeQuote", "LedgerTotals", "PollReport", "Reservation",
    "ReservationState", "Transaction", "TransactionStatus", "TransactionType",
    "TransferReceipt", "TransferState", "TransferStatus",
    "WithdrawalReceipt", "WithdrawalStatus",
    "ActivityEntry", "BackendSnapshot", "BalanceSnapshot", "EarningsEntry",
    "EarningsHistory", "StatsSnapshot", "TransactionPage", "TransactionSnapshot",
]
