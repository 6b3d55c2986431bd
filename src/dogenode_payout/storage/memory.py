"""In-memory implementation of the LedgerStore protocol.

Records are copied on the way in and on the way out, so callers can never
mutate stored state without going through a write.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncIterator

from dogenode_payout.models.amounts import ZERO
from dogenode_payout.models.records import (
    Account,
    ActivityRecord,
    LedgerTotals,
    Reservation,
    Transaction,
    TransactionStatus,
    TransactionType,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoryLedgerStore:
    """Dict-backed LedgerStore for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._reservations: dict[str, Reservation] = {}
        self._transactions: dict[str, Transaction] = {}
        self._activity: list[ActivityRecord] = []

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    # ── Accounts ───────────────────────────────────────────

    async def get_account(self, address: str) -> Account | None:
        account = self._accounts.get(address)
        return replace(account) if account else None

    async def list_accounts(self) -> list[Account]:
        return [replace(a) for a in self._accounts.values()]

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        reservation = self._reservations.get(reservation_id)
        return replace(reservation) if reservation else None

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        # One process, one event loop: the ledger's account locks suffice
        yield

    async def write_ledger(
        self,
        account: Account,
        reservation: Reservation | None = None,
        transaction: Transaction | None = None,
    ) -> None:
        # No await between the three assignments: atomic on the event loop
        self._accounts[account.address] = replace(account)
        if reservation is not None:
            self._reservations[reservation.id] = replace(reservation)
        if transaction is not None:
            self._transactions[transaction.id] = replace(transaction)

    # ── Transactions ───────────────────────────────────────

    async def save_transaction(self, transaction: Transaction) -> None:
        self._transactions[transaction.id] = replace(transaction)

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        tx = self._transactions.get(transaction_id)
        return replace(tx) if tx else None

    async def get_transaction_by_reference(self, reference: str) -> Transaction | None:
        for tx in self._transactions.values():
            if tx.backend_reference == reference:
                return replace(tx)
        return None

    async def get_transactions_by_status(
        self,
        status: TransactionStatus,
        type: TransactionType = TransactionType.WITHDRAWAL,
    ) -> list[Transaction]:
        matches = [
            tx for tx in self._transactions.values()
            if tx.status == status and tx.type == type
        ]
        matches.sort(key=lambda tx: (tx.created_at, tx.id))
        return [replace(tx) for tx in matches]

    async def get_transactions_for_account(
        self,
        address: str,
        type: TransactionType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        matches = [
            tx for tx in self._transactions.values()
            if tx.account == address and (type is None or tx.type == type)
        ]
        matches.sort(key=lambda tx: (tx.created_at, tx.id), reverse=True)
        return [replace(tx) for tx in matches[offset:offset + limit]]

    async def count_transactions_for_account(
        self, address: str, type: TransactionType | None = None
    ) -> int:
        return sum(
            1 for tx in self._transactions.values()
            if tx.account == address and (type is None or tx.type == type)
        )

    # ── Aggregates ─────────────────────────────────────────

    async def get_totals(self) -> LedgerTotals:
        since = (datetime.now(timezone.utc) - timedelta(hours=24)).isoformat()
        volume = sum(
            (tx.amount for tx in self._transactions.values()
             if tx.status == TransactionStatus.COMPLETED),
            ZERO,
        )
        return LedgerTotals(
            total_accounts=len(self._accounts),
            total_transactions=len(self._transactions),
            total_volume=volume,
            active_accounts_24h=sum(
                1 for a in self._accounts.values() if a.last_activity >= since
            ),
        )

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        transaction_id: str | None = None,
        account: str | None = None,
        amount: Decimal | None = None,
    ) -> None:
        self._activity.append(
            ActivityRecord(
                id=len(self._activity) + 1,
                event_type=event_type,
                message=message,
                transaction_id=transaction_id,
                account=account,
                amount=amount,
                created_at=_now(),
            )
        )

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        return list(reversed(self._activity))[:limit]
