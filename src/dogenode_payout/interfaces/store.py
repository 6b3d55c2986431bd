"""LedgerStore protocol - persists accounts, reservations and transactions."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from typing import Protocol

from dogenode_payout.models.records import (
    Account,
    ActivityRecord,
    LedgerTotals,
    Reservation,
    Transaction,
    TransactionStatus,
    TransactionType,
)


class AccountStore(Protocol):
    """Account and reservation persistence."""

    async def get_account(self, address: str) -> Account | None:
        ...

    async def list_accounts(self) -> list[Account]:
        ...

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        ...

    def atomic(self) -> AbstractAsyncContextManager[None]:
        """Read-modify-write block: reads inside see every committed write,
        and no other writer, in this process or another, commits until it exits."""
        ...

    async def write_ledger(
        self,
        account: Account,
        reservation: Reservation | None = None,
        transaction: Transaction | None = None,
    ) -> None:
        """Persist an account together with its reservation and record, atomically."""
        ...


class TransactionStore(Protocol):
    """Transaction log persistence. Records are never deleted."""

    async def save_transaction(self, transaction: Transaction) -> None:
        ...

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        ...

    async def get_transaction_by_reference(self, reference: str) -> Transaction | None:
        ...

    async def get_transactions_by_status(
        self,
        status: TransactionStatus,
        type: TransactionType = TransactionType.WITHDRAWAL,
    ) -> list[Transaction]:
        """Oldest first."""
        ...

    async def get_transactions_for_account(
        self,
        address: str,
        type: TransactionType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """Newest first."""
        ...

    async def count_transactions_for_account(
        self, address: str, type: TransactionType | None = None
    ) -> int:
        ...


class LedgerStore(AccountStore, TransactionStore, Protocol):
    """Everything the payout pipeline persists."""

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    # ── Aggregates ─────────────────────────────────────────

    async def get_totals(self) -> LedgerTotals:
        ...

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        transaction_id: str | None = None,
        account: str | None = None,
        amount: Decimal | None = None,
    ) -> None:
        ...

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        ...
