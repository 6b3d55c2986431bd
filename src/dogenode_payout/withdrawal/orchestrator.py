"""Withdrawal orchestrator - request intake, dispatch workers and recovery."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal

from dogenode_payout.errors import (
    AmbiguousSettlement,
    InvalidDestination,
    LedgerInvariantError,
    SettlementRejected,
    SettlementUnavailable,
    TransactionNotFound,
)
from dogenode_payout.interfaces.backend import SettlementBackend
from dogenode_payout.interfaces.store import LedgerStore
from dogenode_payout.ledger.ledger import Ledger
from dogenode_payout.models.config import WithdrawalMethod
from dogenode_payout.models.records import (
    Transaction,
    TransactionStatus,
    TransactionType,
    TransferReceipt,
    WithdrawalReceipt,
    WithdrawalStatus,
    new_transaction_id,
    withdrawal_memo,
)
from dogenode_payout.policy.limits import WithdrawalPolicy
from dogenode_payout.routing.registry import BackendRegistry
from dogenode_payout.withdrawal.transitions import WithdrawalStateMachine

log = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class WithdrawalOrchestrator:
    """Accepts withdrawal requests and drives them to a backend.

    request_withdrawal() validates, reserves funds and returns at once; the
    transaction id goes onto a queue drained by dispatch workers. Each
    transaction gets exactly one submit attempt. When the outcome of that
    attempt is unknown (timeout, dropped connection) the backend is asked
    whether a transfer with the withdrawal's memo exists before the funds
    are released.
    """

    def __init__(
        self,
        store: LedgerStore,
        ledger: Ledger,
        registry: BackendRegistry,
        policy: WithdrawalPolicy,
        machine: WithdrawalStateMachine,
        dispatch_timeout: float = 30,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._registry = registry
        self._policy = policy
        self._machine = machine
        self._dispatch_timeout = dispatch_timeout
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []

    # ── Intake ────────────────────────────────────────────

    async def request_withdrawal(
        self,
        account: str,
        to_address: str,
        amount: Decimal | str | int | float,
        method: WithdrawalMethod | str = WithdrawalMethod.AUTO,
    ) -> WithdrawalReceipt:
        """Validate, reserve and enqueue a withdrawal.

        Raises InvalidAmount, InvalidDestination, BackendUnavailable or
        InsufficientFunds; in all those cases nothing has been written.
        """
        if not account:
            raise InvalidDestination("Account identifier is required")
        to_address = (to_address or "").strip()

        quote = self._policy.evaluate(amount)
        backend = self._registry.resolve(to_address, method)

        now = _now()
        record = Transaction(
            id=new_transaction_id("wd"),
            account=account,
            type=TransactionType.WITHDRAWAL,
            amount=quote.amount,
            fee=quote.fee,
            net_amount=quote.net_amount,
            method=backend.method,
            to_address=to_address,
            status=TransactionStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        await self._ledger.reserve(account, quote.total, record.id, record=record)
        await self._store.log_activity(
            "withdrawal_requested",
            f"Withdrawal of {quote.amount} DOGE (+{quote.fee} fee) to {to_address} "
            f"via {backend.method.value}",
            transaction_id=record.id,
            account=account,
            amount=quote.total,
        )
        log.info(
            "Withdrawal %s requested: %s DOGE + %s fee from %s to %s via %s",
            record.id, quote.amount, quote.fee, account, to_address, backend.method.value,
        )

        self._queue.put_nowait(record.id)
        return WithdrawalReceipt(
            transaction_id=record.id,
            account=account,
            amount=quote.amount,
            fee=quote.fee,
            net_amount=quote.net_amount,
            total=quote.total,
            to_address=to_address,
            method=backend.method,
            status=record.status,
        )

    async def get_withdrawal_status(self, transaction_id: str) -> WithdrawalStatus:
        tx = await self._store.get_transaction(transaction_id)
        if tx is None or tx.type != TransactionType.WITHDRAWAL:
            raise TransactionNotFound(transaction_id)
        return WithdrawalStatus(
            transaction_id=tx.id,
            status=tx.status,
            confirmations=tx.confirmations,
            backend_reference=tx.backend_reference,
            explorer_url=tx.explorer_url,
            failure_reason=tx.failure_reason,
        )

    # ── Dispatch ──────────────────────────────────────────

    async def dispatch(self, transaction_id: str) -> Transaction | None:
        """Make the single submit attempt for a Pending withdrawal.

        Returns the updated record, or None if the withdrawal was not
        Pending (someone else dispatched it).
        """
        tx = await self._machine.begin_dispatch(transaction_id)
        if tx is None:
            return None

        backend = self._registry.get(tx.method) if tx.method else None
        if backend is None:
            method = tx.method.value if tx.method else "none"
            return await self._machine.fail(tx.id, f"No backend registered for {method}")

        memo = withdrawal_memo(tx.id)
        try:
            receipt = await asyncio.wait_for(
                backend.submit(tx.to_address, tx.net_amount, memo),
                timeout=self._dispatch_timeout,
            )
        except (SettlementRejected, SettlementUnavailable) as exc:
            return await self._machine.fail(
                tx.id, f"{backend.method.value} refused transfer: {exc}",
            )
        except asyncio.TimeoutError:
            return await self._requery(
                tx, backend, f"submit timed out after {self._dispatch_timeout}s",
            )
        except AmbiguousSettlement as exc:
            return await self._requery(tx, backend, f"submit outcome unknown: {exc}")
        except Exception as exc:
            log.error("Unexpected error submitting %s: %s", tx.id, exc, exc_info=True)
            return await self._requery(tx, backend, f"submit raised {exc!r}")

        return await self._machine.record_dispatch(
            tx.id, receipt, backend.required_confirmations,
        )

    async def _requery(
        self, tx: Transaction, backend: SettlementBackend, cause: str
    ) -> Transaction:
        """Resolve an ambiguous submit by looking the transfer up by memo."""
        log.warning("Withdrawal %s: %s; re-querying %s", tx.id, cause, backend.method.value)
        try:
            receipt: TransferReceipt | None = await asyncio.wait_for(
                backend.find_transfer(withdrawal_memo(tx.id)),
                timeout=self._dispatch_timeout,
            )
        except Exception as exc:
            log.error(
                "Re-query for %s failed (%s); releasing funds: %r", tx.id, cause, exc,
            )
            return await self._machine.fail(tx.id, f"{cause}; re-query failed: {exc!r}")

        if receipt is None:
            return await self._machine.fail(
                tx.id, f"{cause}; no transfer found on {backend.method.value}",
            )

        log.info("Re-query found transfer %s for %s", receipt.reference, tx.id)
        return await self._machine.record_dispatch(
            tx.id, receipt, backend.required_confirmations,
        )

    # ── Recovery ──────────────────────────────────────────

    async def recover(self) -> int:
        """Pick up withdrawals left in flight by a previous run.

        Pending records are queued again. Processing records without a
        backend reference were interrupted mid-submit and go through the
        re-query. Returns the number of records touched.
        """
        touched = await self.requeue_pending()

        processing = await self._store.get_transactions_by_status(TransactionStatus.PROCESSING)
        for tx in processing:
            if tx.backend_reference:
                continue
            touched += 1
            backend = self._registry.get(tx.method) if tx.method else None
            if backend is None:
                await self._machine.fail(
                    tx.id, "interrupted during dispatch; backend no longer configured",
                )
                continue
            await self._requery(tx, backend, "interrupted during dispatch")

        if touched:
            log.info("Recovered %d in-flight withdrawals", touched)
        return touched

    async def requeue_pending(self) -> int:
        """Queue every Pending withdrawal in the store.

        Picks up requests written by other processes (the CLI). Queuing an id
        twice is harmless: dispatch skips records that are no longer Pending.
        """
        pending = await self._store.get_transactions_by_status(TransactionStatus.PENDING)
        for tx in pending:
            self._queue.put_nowait(tx.id)
        return len(pending)

    # ── Workers ───────────────────────────────────────────

    async def start(self, workers: int = 1) -> None:
        """Recover, then start dispatch workers."""
        if self._workers:
            return
        await self.recover()
        self._workers = [
            asyncio.create_task(self._worker_loop(), name=f"dispatch-{i}")
            for i in range(max(workers, 1))
        ]
        log.info("Withdrawal dispatch started (%d workers)", len(self._workers))

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        log.info("Withdrawal dispatch stopped")

    async def join(self) -> None:
        """Wait until every queued withdrawal has been dispatched."""
        await self._queue.join()

    def check_workers(self) -> None:
        """Re-raise the error of a worker that died on a ledger invariant."""
        for task in self._workers:
            if task.done() and not task.cancelled() and task.exception():
                raise task.exception()

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    async def _worker_loop(self) -> None:
        while True:
            transaction_id = await self._queue.get()
            try:
                await self.dispatch(transaction_id)
            except LedgerInvariantError:
                raise
            except Exception as exc:
                log.error("Dispatch of %s failed: %s", transaction_id, exc, exc_info=True)
                await self._store.log_activity(
                    "error", f"Dispatch failed: {exc}", transaction_id=transaction_id,
                )
            finally:
                self._queue.task_done()
