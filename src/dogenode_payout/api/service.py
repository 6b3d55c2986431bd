"""Payout service - the surface frontends and the CLI talk to."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from dogenode_payout.errors import InvalidDestination, TransactionNotFound
from dogenode_payout.interfaces.store import LedgerStore
from dogenode_payout.ledger.ledger import Ledger
from dogenode_payout.models.amounts import ZERO, quantize
from dogenode_payout.models.config import WithdrawalMethod
from dogenode_payout.models.records import (
    Account,
    Transaction,
    TransactionStatus,
    TransactionType,
    WithdrawalReceipt,
    WithdrawalStatus,
    new_transaction_id,
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
from dogenode_payout.policy.limits import check_earning_amount
from dogenode_payout.routing.addresses import is_doge_address
from dogenode_payout.routing.registry import BackendRegistry
from dogenode_payout.withdrawal.orchestrator import WithdrawalOrchestrator

log = logging.getLogger(__name__)

# Earnings history is bounded to the most recent entries
EARNINGS_HISTORY_LIMIT = 1000


def _doge_str(amount: Decimal) -> str:
    return f"{quantize(amount):f}"


def _balance_snapshot(account: Account) -> BalanceSnapshot:
    return BalanceSnapshot(
        address=account.address,
        available=_doge_str(account.available),
        pending=_doge_str(account.pending),
        lifetime_earned=_doge_str(account.lifetime_earned),
        lifetime_withdrawn=_doge_str(account.lifetime_withdrawn),
        last_activity=account.last_activity,
    )


def _tx_to_snapshot(tx: Transaction) -> TransactionSnapshot:
    return TransactionSnapshot(
        id=tx.id,
        account=tx.account,
        type=tx.type.value,
        amount=_doge_str(tx.amount),
        fee=_doge_str(tx.fee),
        net_amount=_doge_str(tx.net_amount),
        status=tx.status.value,
        method=tx.method.value if tx.method else None,
        to_address=tx.to_address,
        backend_reference=tx.backend_reference,
        explorer_url=tx.explorer_url,
        confirmations=tx.confirmations,
        failure_reason=tx.failure_reason,
        created_at=tx.created_at,
        updated_at=tx.updated_at,
    )


class PayoutService:
    """Builds JSON-serializable snapshots and forwards writes to the pipeline.

    This is the sole interface between the payout core and any client.
    """

    def __init__(
        self,
        store: LedgerStore,
        ledger: Ledger,
        orchestrator: WithdrawalOrchestrator,
        registry: BackendRegistry,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._orchestrator = orchestrator
        self._registry = registry

    # ── Withdrawals ────────────────────────────────────────

    async def request_withdrawal(
        self,
        account: str,
        to_address: str,
        amount: Decimal | str | int,
        method: str = "auto",
    ) -> WithdrawalReceipt:
        return await self._orchestrator.request_withdrawal(
            account, to_address, amount, method or WithdrawalMethod.AUTO,
        )

    async def get_withdrawal_status(self, transaction_id: str) -> WithdrawalStatus:
        return await self._orchestrator.get_withdrawal_status(transaction_id)

    # ── Earnings & balances ────────────────────────────────

    async def add_earnings(self, address: str, amount: Decimal | str | int) -> BalanceSnapshot:
        """Credit node earnings to a Dogecoin address."""
        address = (address or "").strip()
        if not is_doge_address(address):
            raise InvalidDestination(f"Invalid Dogecoin address: {address}")
        value = check_earning_amount(amount)

        now = datetime.now(timezone.utc).isoformat()
        record = Transaction(
            id=new_transaction_id("earn"),
            account=address,
            type=TransactionType.EARNING,
            amount=value,
            net_amount=value,
            status=TransactionStatus.COMPLETED,
            created_at=now,
            updated_at=now,
        )
        account = await self._ledger.credit(address, value, record=record)
        await self._store.log_activity(
            "earning_credited",
            f"Credited {value} DOGE to {address}",
            transaction_id=record.id,
            account=address,
            amount=value,
        )
        return _balance_snapshot(account)

    async def get_balance(self, address: str) -> BalanceSnapshot:
        return _balance_snapshot(await self._ledger.get_account(address))

    async def get_earnings_history(self, address: str) -> EarningsHistory:
        earnings = await self._store.get_transactions_for_account(
            address, type=TransactionType.EARNING, limit=EARNINGS_HISTORY_LIMIT,
        )
        total = sum((tx.amount for tx in earnings), ZERO)
        return EarningsHistory(
            address=address,
            entries=[
                EarningsEntry(amount=_doge_str(tx.amount), timestamp=tx.created_at)
                for tx in earnings
            ],
            total=_doge_str(total),
        )

    # ── Transactions ───────────────────────────────────────

    async def get_transactions(
        self, address: str, limit: int = 50, offset: int = 0
    ) -> TransactionPage:
        limit = max(1, min(limit, 500))
        offset = max(offset, 0)
        txs = await self._store.get_transactions_for_account(address, limit=limit, offset=offset)
        total = await self._store.count_transactions_for_account(address)
        return TransactionPage(
            address=address,
            transactions=[_tx_to_snapshot(tx) for tx in txs],
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(txs) < total,
        )

    async def get_transaction_by_reference(self, reference: str) -> TransactionSnapshot:
        tx = await self._store.get_transaction_by_reference(reference)
        if tx is None:
            raise TransactionNotFound(reference)
        return _tx_to_snapshot(tx)

    # ── Operations ─────────────────────────────────────────

    async def get_stats(self) -> StatsSnapshot:
        totals = await self._store.get_totals()
        return StatsSnapshot(
            total_accounts=totals.total_accounts,
            total_transactions=totals.total_transactions,
            total_volume=_doge_str(totals.total_volume),
            active_accounts_24h=totals.active_accounts_24h,
        )

    async def get_backends(self) -> list[BackendSnapshot]:
        return [
            BackendSnapshot(
                method=backend.method.value,
                available=backend.is_available(),
                required_confirmations=backend.required_confirmations,
            )
            for backend in self._registry
        ]

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityEntry]:
        activity = await self._store.get_recent_activity(limit)
        return [
            ActivityEntry(
                timestamp=a.created_at,
                event_type=a.event_type,
                message=a.message,
                transaction_id=a.transaction_id,
                account=a.account,
                amount=_doge_str(a.amount) if a.amount is not None else None,
            )
            for a in activity
        ]
