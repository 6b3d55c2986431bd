"""SQLite implementation of the LedgerStore protocol."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from dogenode_payout.models.amounts import ZERO
from dogenode_payout.models.config import WithdrawalMethod
from dogenode_payout.models.records import (
    Account,
    ActivityRecord,
    LedgerTotals,
    Reservation,
    ReservationState,
    Transaction,
    TransactionStatus,
    TransactionType,
)

SCHEMA = """
-- Per-address balances. Amounts are fixed-point decimal strings.
CREATE TABLE IF NOT EXISTS accounts (
    address TEXT PRIMARY KEY,
    available TEXT NOT NULL DEFAULT '0',
    pending TEXT NOT NULL DEFAULT '0',
    lifetime_earned TEXT NOT NULL DEFAULT '0',
    lifetime_withdrawn TEXT NOT NULL DEFAULT '0',
    created_at TEXT NOT NULL,
    last_activity TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_accounts_activity ON accounts(last_activity);

-- One row per withdrawal reservation, settled exactly once
CREATE TABLE IF NOT EXISTS reservations (
    id TEXT PRIMARY KEY,
    account TEXT NOT NULL,
    total TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'open',
    created_at TEXT NOT NULL,
    settled_at TEXT
);

-- Append-only transaction log (earnings and withdrawals)
CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    account TEXT NOT NULL,
    type TEXT NOT NULL,
    amount TEXT NOT NULL,
    fee TEXT NOT NULL DEFAULT '0',
    net_amount TEXT NOT NULL DEFAULT '0',
    method TEXT,
    to_address TEXT,
    status TEXT NOT NULL,
    backend_reference TEXT,
    explorer_url TEXT,
    confirmations INTEGER NOT NULL DEFAULT 0,
    failure_reason TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    dispatched_at TEXT,
    unknown_since TEXT
);
CREATE INDEX IF NOT EXISTS idx_tx_status ON transactions(status, type);
CREATE INDEX IF NOT EXISTS idx_tx_account ON transactions(account, created_at);
CREATE INDEX IF NOT EXISTS idx_tx_reference ON transactions(backend_reference);

-- Activity log
CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    transaction_id TEXT,
    account TEXT,
    amount TEXT,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_log(created_at);
"""

_TX_COLUMNS = (
    "id, account, type, amount, fee, net_amount, method, to_address, status,"
    " backend_reference, explorer_url, confirmations, failure_reason,"
    " created_at, updated_at, dispatched_at, unknown_since"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# Store whose atomic() block the current task is inside, if any
_in_atomic: ContextVar[object | None] = ContextVar("_in_atomic", default=None)


class SQLiteLedgerStore:
    """SQLite-backed implementation of the LedgerStore protocol.

    All writes go through one connection and are serialized by a store-level
    lock, so a multi-row write_ledger() is never interleaved with another
    coroutine's commit.

    Balance changes run inside atomic(), which opens the transaction with
    BEGIN IMMEDIATE. SQLite grants that write lock to one connection at a
    time, so a second process sharing the database file (the CLI next to a
    running daemon) waits until the first commits, then reads its result.
    """

    def __init__(self, db_path: str, busy_timeout: float = 30.0) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path, timeout=self._busy_timeout)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    # ── Accounts ───────────────────────────────────────────

    async def get_account(self, address: str) -> Account | None:
        async with self.db.execute(
            "SELECT * FROM accounts WHERE address=?", (address,)
        ) as cur:
            row = await cur.fetchone()
            return _row_to_account(row) if row else None

    async def list_accounts(self) -> list[Account]:
        async with self.db.execute("SELECT * FROM accounts ORDER BY created_at") as cur:
            return [_row_to_account(row) async for row in cur]

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        async with self.db.execute(
            "SELECT * FROM reservations WHERE id=?", (reservation_id,)
        ) as cur:
            row = await cur.fetchone()
            if row is None:
                return None
            return Reservation(
                id=row["id"],
                account=row["account"],
                total=Decimal(row["total"]),
                state=ReservationState(row["state"]),
                created_at=row["created_at"],
                settled_at=row["settled_at"],
            )

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """Hold the database write lock; reads inside see committed state.

        Commits when the block exits, rolls back if it raises. write_ledger()
        calls inside the block join this transaction.
        """
        if _in_atomic.get() is self:
            yield
            return
        async with self._write_lock:
            await self.db.execute("BEGIN IMMEDIATE")
            token = _in_atomic.set(self)
            try:
                yield
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise
            finally:
                _in_atomic.reset(token)

    async def write_ledger(
        self,
        account: Account,
        reservation: Reservation | None = None,
        transaction: Transaction | None = None,
    ) -> None:
        async with self.atomic():
            await self.db.execute(
                "INSERT INTO accounts"
                " (address, available, pending, lifetime_earned, lifetime_withdrawn,"
                "  created_at, last_activity)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)"
                " ON CONFLICT(address) DO UPDATE SET"
                " available=excluded.available, pending=excluded.pending,"
                " lifetime_earned=excluded.lifetime_earned,"
                " lifetime_withdrawn=excluded.lifetime_withdrawn,"
                " last_activity=excluded.last_activity",
                (
                    account.address, str(account.available), str(account.pending),
                    str(account.lifetime_earned), str(account.lifetime_withdrawn),
                    account.created_at or _now(), account.last_activity or _now(),
                ),
            )
            if reservation is not None:
                await self.db.execute(
                    "INSERT INTO reservations (id, account, total, state, created_at, settled_at)"
                    " VALUES (?, ?, ?, ?, ?, ?)"
                    " ON CONFLICT(id) DO UPDATE SET"
                    " state=excluded.state, settled_at=excluded.settled_at",
                    (
                        reservation.id, reservation.account, str(reservation.total),
                        reservation.state.value, reservation.created_at or _now(),
                        reservation.settled_at,
                    ),
                )
            if transaction is not None:
                await self._upsert_transaction(transaction)

    # ── Transactions ───────────────────────────────────────

    async def save_transaction(self, transaction: Transaction) -> None:
        async with self._write_lock:
            await self._upsert_transaction(transaction)
            await self.db.commit()

    async def _upsert_transaction(self, tx: Transaction) -> None:
        await self.db.execute(
            f"INSERT OR REPLACE INTO transactions ({_TX_COLUMNS})"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                tx.id, tx.account, tx.type.value, str(tx.amount), str(tx.fee),
                str(tx.net_amount), tx.method.value if tx.method else None,
                tx.to_address, tx.status.value, tx.backend_reference,
                tx.explorer_url, tx.confirmations, tx.failure_reason,
                tx.created_at or _now(), tx.updated_at or _now(),
                tx.dispatched_at, tx.unknown_since,
            ),
        )

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        async with self.db.execute(
            f"SELECT {_TX_COLUMNS} FROM transactions WHERE id=?", (transaction_id,)
        ) as cur:
            row = await cur.fetchone()
            return _row_to_transaction(row) if row else None

    async def get_transaction_by_reference(self, reference: str) -> Transaction | None:
        async with self.db.execute(
            f"SELECT {_TX_COLUMNS} FROM transactions WHERE backend_reference=?",
            (reference,),
        ) as cur:
            row = await cur.fetchone()
            return _row_to_transaction(row) if row else None

    async def get_transactions_by_status(
        self,
        status: TransactionStatus,
        type: TransactionType = TransactionType.WITHDRAWAL,
    ) -> list[Transaction]:
        async with self.db.execute(
            f"SELECT {_TX_COLUMNS} FROM transactions WHERE status=? AND type=?"
            " ORDER BY created_at, id",
            (status.value, type.value),
        ) as cur:
            return [_row_to_transaction(row) async for row in cur]

    async def get_transactions_for_account(
        self,
        address: str,
        type: TransactionType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        sql = f"SELECT {_TX_COLUMNS} FROM transactions WHERE account=?"
        params: list = [address]
        if type is not None:
            sql += " AND type=?"
            params.append(type.value)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        async with self.db.execute(sql, params) as cur:
            return [_row_to_transaction(row) async for row in cur]

    async def count_transactions_for_account(
        self, address: str, type: TransactionType | None = None
    ) -> int:
        if type is not None:
            sql, params = (
                "SELECT COUNT(*) AS c FROM transactions WHERE account=? AND type=?",
                (address, type.value),
            )
        else:
            sql, params = "SELECT COUNT(*) AS c FROM transactions WHERE account=?", (address,)
        async with self.db.execute(sql, params) as cur:
            row = await cur.fetchone()
            return row["c"] if row else 0

    # ── Aggregates ─────────────────────────────────────────

    async def get_totals(self) -> LedgerTotals:
        since = (datetime.now(timezone.utc) - timedelta(hours=24)).isoformat()

        async with self.db.execute("SELECT COUNT(*) AS c FROM accounts") as cur:
            accounts = (await cur.fetchone())["c"]
        async with self.db.execute(
            "SELECT COUNT(*) AS c FROM accounts WHERE last_activity >= ?", (since,)
        ) as cur:
            active = (await cur.fetchone())["c"]
        async with self.db.execute("SELECT COUNT(*) AS c FROM transactions") as cur:
            count = (await cur.fetchone())["c"]

        # Summed in Python: SQLite SUM() over TEXT would go through floats
        volume = ZERO
        async with self.db.execute(
            "SELECT amount FROM transactions WHERE status=?",
            (TransactionStatus.COMPLETED.value,),
        ) as cur:
            async for row in cur:
                volume += Decimal(row["amount"])

        return LedgerTotals(
            total_accounts=accounts,
            total_transactions=count,
            total_volume=volume,
            active_accounts_24h=active,
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
        async with self._write_lock:
            await self.db.execute(
                "INSERT INTO activity_log"
                " (event_type, transaction_id, account, amount, message, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (
                    event_type, transaction_id, account,
                    str(amount) if amount is not None else None, message, _now(),
                ),
            )
            await self.db.commit()

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        async with self.db.execute(
            "SELECT * FROM activity_log ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
        ) as cur:
            return [
                ActivityRecord(
                    id=row["id"],
                    event_type=row["event_type"],
                    message=row["message"],
                    transaction_id=row["transaction_id"],
                    account=row["account"],
                    amount=Decimal(row["amount"]) if row["amount"] is not None else None,
                    created_at=row["created_at"],
                )
                async for row in cur
            ]


def _row_to_account(row: aiosqlite.Row) -> Account:
    return Account(
        address=row["address"],
        available=Decimal(row["available"]),
        pending=Decimal(row["pending"]),
        lifetime_earned=Decimal(row["lifetime_earned"]),
        lifetime_withdrawn=Decimal(row["lifetime_withdrawn"]),
        created_at=row["created_at"],
        last_activity=row["last_activity"],
    )


def _row_to_transaction(row: aiosqlite.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        account=row["account"],
        type=TransactionType(row["type"]),
        amount=Decimal(row["amount"]),
        fee=Decimal(row["fee"]),
        net_amount=Decimal(row["net_amount"]),
        method=WithdrawalMethod(row["method"]) if row["method"] else None,
        to_address=row["to_address"],
        status=TransactionStatus(row["status"]),
        backend_reference=row["backend_reference"],
        explorer_url=row["explorer_url"],
        confirmations=row["confirmations"],
        failure_reason=row["failure_reason"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        dispatched_at=row["dispatched_at"],
        unknown_since=row["unknown_since"],
    )
