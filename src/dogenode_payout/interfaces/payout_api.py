"""PayoutAPI protocol - the surface exposed to HTTP / CLI collaborators."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from dogenode_payout.models.records import WithdrawalReceipt, WithdrawalStatus
from dogenode_payout.models.snapshots import (
    ActivityEntry,
    BackendSnapshot,
    BalanceSnapshot,
    EarningsHistory,
    StatsSnapshot,
    TransactionPage,
    TransactionSnapshot,
)


class PayoutAPI(Protocol):
    """Earnings, balances and withdrawals for frontend clients.

    Write operations raise WithdrawalRejected subclasses on bad input.
    Snapshots are JSON-serializable via models.snapshots.to_dict().
    """

    # ── Withdrawals ────────────────────────────────────────

    async def request_withdrawal(
        self,
        account: str,
        to_address: str,
        amount: Decimal | str | int,
        method: str = "auto",
    ) -> WithdrawalReceipt:
        """Reserve funds and queue a payout. Returns without waiting for settlement."""
        ...

    async def get_withdrawal_status(self, transaction_id: str) -> WithdrawalStatus:
        ...

    # ── Earnings & balances ────────────────────────────────

    async def add_earnings(self, address: str, amount: Decimal | str | int) -> BalanceSnapshot:
        ...

    async def get_balance(self, address: str) -> BalanceSnapshot:
        ...

    async def get_earnings_history(self, address: str) -> EarningsHistory:
        ...

    # ── Transactions ───────────────────────────────────────

    async def get_transactions(
        self, address: str, limit: int = 50, offset: int = 0
    ) -> TransactionPage:
        """Newest first."""
        ...

    async def get_transaction_by_reference(self, reference: str) -> TransactionSnapshot:
        ...

    # ── Operations ─────────────────────────────────────────

    async def get_stats(self) -> StatsSnapshot:
        ...

    async def get_backends(self) -> list[BackendSnapshot]:
        ...

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityEntry]:
        ...
