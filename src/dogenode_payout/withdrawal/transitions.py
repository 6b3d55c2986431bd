"""Withdrawal state machine: pending -> processing -> completed | failed.

Every transition runs under the transaction's lock, re-reads the record, and
writes the new state. The terminal transitions also settle the reservation
through the Ledger, in the same store write as the record itself.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone

from dogenode_payout.errors import InvalidStateTransition, TransactionNotFound
from dogenode_payout.interfaces.store import LedgerStore
from dogenode_payout.ledger.ledger import Ledger
from dogenode_payout.locks import KeyedLocks
from dogenode_payout.models.records import (
    Transaction,
    TransactionStatus,
    TransferReceipt,
)

log = logging.getLogger(__name__)

_ALLOWED: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.PROCESSING}),
    TransactionStatus.PROCESSING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.FAILED}
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in _ALLOWED[current]


class WithdrawalStateMachine:
    """Owns every status change of a withdrawal record after creation."""

    def __init__(self, store: LedgerStore, ledger: Ledger) -> None:
        self._store = store
        self._ledger = ledger
        self._locks = KeyedLocks()

    async def _load(self, transaction_id: str) -> Transaction:
        tx = await self._store.get_transaction(transaction_id)
        if tx is None:
            raise TransactionNotFound(transaction_id)
        return tx

    @staticmethod
    def _check(tx: Transaction, target: TransactionStatus) -> None:
        if not can_transition(tx.status, target):
            raise InvalidStateTransition(tx.id, tx.status.value, target.value)

    # ── Dispatch ───────────────────────────────────────────

    async def begin_dispatch(self, transaction_id: str) -> Transaction | None:
        """Claim a Pending withdrawal for dispatch.

        Returns the Processing record, or None if the record is no longer
        Pending (already claimed by another worker or finished).
        """
        async with self._locks.hold(transaction_id):
            tx = await self._load(transaction_id)
            if tx.status != TransactionStatus.PENDING:
                log.debug("Skipping dispatch of %s: already %s", tx.id, tx.status.value)
                return None
            now = _now()
            tx = replace(
                tx,
                status=TransactionStatus.PROCESSING,
                dispatched_at=now,
                updated_at=now,
            )
            await self._store.save_transaction(tx)
        return tx

    async def record_dispatch(
        self,
        transaction_id: str,
        receipt: TransferReceipt,
        required_confirmations: int,
    ) -> Transaction:
        """Attach the backend reference; complete at once if already final."""
        async with self._locks.hold(transaction_id):
            tx = await self._load(transaction_id)
            if tx.status != TransactionStatus.PROCESSING:
                raise InvalidStateTransition(
                    tx.id, tx.status.value, TransactionStatus.PROCESSING.value,
                )
            tx = replace(
                tx,
                backend_reference=receipt.reference,
                explorer_url=receipt.explorer_url,
                confirmations=receipt.confirmations,
                updated_at=_now(),
            )
            await self._store.save_transaction(tx)
            await self._store.log_activity(
                "withdrawal_dispatched",
                f"Sent {tx.net_amount} DOGE to {tx.to_address} via "
                f"{tx.method.value if tx.method else '?'}: {receipt.reference}",
                transaction_id=tx.id,
                account=tx.account,
                amount=tx.net_amount,
            )
            log.info("Withdrawal %s dispatched: %s", tx.id, receipt.reference)

            if receipt.confirmations >= required_confirmations:
                tx = await self._complete_locked(tx, receipt.confirmations)
        return tx

    # ── Progress ───────────────────────────────────────────

    async def update_progress(
        self, transaction_id: str, confirmations: int, unknown: bool = False
    ) -> Transaction:
        """Record a non-final status check. Terminal records are returned untouched."""
        async with self._locks.hold(transaction_id):
            tx = await self._load(transaction_id)
            if tx.status.terminal:
                return tx

            if unknown:
                if tx.unknown_since is not None:
                    return tx
                updated = replace(tx, unknown_since=_now(), updated_at=_now())
            else:
                if tx.confirmations == confirmations and tx.unknown_since is None:
                    return tx
                updated = replace(
                    tx, confirmations=confirmations, unknown_since=None, updated_at=_now(),
                )
            await self._store.save_transaction(updated)
        return updated

    # ── Terminal transitions ───────────────────────────────

    async def complete(self, transaction_id: str, confirmations: int) -> Transaction:
        """Processing -> Completed; commits the reservation."""
        async with self._locks.hold(transaction_id):
            tx = await self._load(transaction_id)
            return await self._complete_locked(tx, confirmations)

    async def fail(self, transaction_id: str, reason: str) -> Transaction:
        """Processing -> Failed; releases the reservation back to available."""
        async with self._locks.hold(transaction_id):
            tx = await self._load(transaction_id)
            self._check(tx, TransactionStatus.FAILED)
            tx = replace(
                tx,
                status=TransactionStatus.FAILED,
                failure_reason=reason,
                unknown_since=None,
                updated_at=_now(),
            )
            await self._ledger.release(tx.id, record=tx)
            await self._store.log_activity(
                "withdrawal_failed",
                f"Withdrawal failed, {tx.amount + tx.fee} DOGE returned: {reason}",
                transaction_id=tx.id,
                account=tx.account,
                amount=tx.amount + tx.fee,
            )
        log.warning("Withdrawal %s failed: %s", tx.id, reason)
        return tx

    async def _complete_locked(self, tx: Transaction, confirmations: int) -> Transaction:
        self._check(tx, TransactionStatus.COMPLETED)
        tx = replace(
            tx,
            status=TransactionStatus.COMPLETED,
            confirmations=confirmations,
            unknown_since=None,
            updated_at=_now(),
        )
        await self._ledger.commit_withdrawal(tx.id, tx.net_amount, record=tx)
        await self._store.log_activity(
            "withdrawal_completed",
            f"Withdrawal of {tx.net_amount} DOGE confirmed "
            f"({confirmations} confirmations)",
            transaction_id=tx.id,
            account=tx.account,
            amount=tx.net_amount,
        )
        log.info("Withdrawal %s completed with %d confirmations", tx.id, confirmations)
        return tx
