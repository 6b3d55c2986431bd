"""Confirmation poller - periodic status checks of in-flight withdrawals."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone

from dogenode_payout.errors import LedgerInvariantError
from dogenode_payout.interfaces.store import LedgerStore
from dogenode_payout.models.config import ConfirmationConfig
from dogenode_payout.models.records import (
    PollReport,
    Transaction,
    TransactionStatus,
    TransferState,
)
from dogenode_payout.routing.registry import BackendRegistry
from dogenode_payout.withdrawal.transitions import WithdrawalStateMachine

log = logging.getLogger(__name__)


def _seconds_since(timestamp: str, now: datetime) -> float:
    return (now - datetime.fromisoformat(timestamp)).total_seconds()


class ConfirmationPoller:
    """Advances Processing withdrawals to Completed or Failed.

    Each cycle:
    1. Loads every Processing withdrawal that has a backend reference
    2. Queries its backend (with concurrency limit and per-check timeout)
    3. Rejected -> fail and release; enough confirmations -> complete
    4. Unknown for longer than the grace period -> fail and release
    5. Optionally gives up on transfers older than max_wait
    """

    def __init__(
        self,
        store: LedgerStore,
        registry: BackendRegistry,
        machine: WithdrawalStateMachine,
        config: ConfirmationConfig,
        error_backoff: float = 30,
    ) -> None:
        self._store = store
        self._registry = registry
        self._machine = machine
        self._config = config
        self._error_backoff = error_backoff
        self._running = False
        self._task: asyncio.Task | None = None
        self._last_report: PollReport | None = None

    @property
    def last_report(self) -> PollReport | None:
        return self._last_report

    # ── Lifecycle ─────────────────────────────────────────

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        log.info("Confirmation poller started (interval=%ds)", self._config.poll_interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        log.info("Confirmation poller stopped")

    def check_loop(self) -> None:
        """Re-raise the error the poll loop died on (a ledger invariant)."""
        task = self._task
        if task and task.done() and not task.cancelled() and task.exception():
            raise task.exception()

    async def _poll_loop(self) -> None:
        while self._running:
            delay = self._config.poll_interval
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except LedgerInvariantError:
                raise
            except Exception as exc:
                log.error("Confirmation cycle error: %s", exc, exc_info=True)
                await self._store.log_activity("error", f"Confirmation cycle failed: {exc}")
                delay = max(delay, self._error_backoff)

            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                break

    # ── Cycle ─────────────────────────────────────────────

    async def run_cycle(self) -> PollReport:
        """Check every in-flight withdrawal once.

        A LedgerInvariantError from any check is re-raised after the other
        checks have finished and the report is recorded.
        """
        started = datetime.now(timezone.utc).isoformat()
        start_time = time.monotonic()

        processing = await self._store.get_transactions_by_status(TransactionStatus.PROCESSING)
        # Records without a reference are still owned by a dispatch worker
        in_flight = [tx for tx in processing if tx.backend_reference]

        semaphore = asyncio.Semaphore(max(self._config.max_concurrent_checks, 1))

        async def _check_one(tx: Transaction) -> str:
            async with semaphore:
                return await self._check(tx)

        results = await asyncio.gather(
            *(_check_one(tx) for tx in in_flight), return_exceptions=True,
        )

        completed = failed = still_pending = errors = 0
        violations: list[LedgerInvariantError] = []
        for tx, result in zip(in_flight, results):
            if isinstance(result, LedgerInvariantError):
                violations.append(result)
                errors += 1
            elif isinstance(result, BaseException):
                log.error("Confirmation check for %s raised: %r", tx.id, result)
                errors += 1
            elif result == "completed":
                completed += 1
            elif result == "failed":
                failed += 1
            elif result == "pending":
                still_pending += 1
            else:
                errors += 1

        report = PollReport(
            started_at=started,
            completed_at=datetime.now(timezone.utc).isoformat(),
            checked=len(in_flight),
            completed=completed,
            failed=failed,
            still_pending=still_pending,
            errors=errors,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        self._last_report = report
        if in_flight:
            log.info(
                "Confirmation cycle: %d checked, %d completed, %d failed, %d pending, "
                "%d errors in %dms",
                report.checked, completed, failed, still_pending, errors, report.duration_ms,
            )
        if violations:
            raise violations[0]
        return report

    async def _check(self, tx: Transaction) -> str:
        backend = self._registry.get(tx.method) if tx.method else None
        if backend is None:
            log.warning("No backend for %s (%s); cannot check", tx.id, tx.method)
            return "error"

        now = datetime.now(timezone.utc)
        outcome = "pending"
        try:
            status = await asyncio.wait_for(
                backend.get_status(tx.backend_reference),
                timeout=self._config.check_timeout,
            )
        except Exception as exc:
            log.warning("Status check for %s (%s) failed: %r", tx.id, tx.backend_reference, exc)
            status = None
            outcome = "error"

        if status is not None:
            if status.state == TransferState.REJECTED:
                await self._machine.fail(
                    tx.id,
                    f"transfer {tx.backend_reference} rejected by {backend.method.value}"
                    + (f": {status.detail}" if status.detail else ""),
                )
                return "failed"

            if (
                status.state == TransferState.CONFIRMED
                or status.confirmations >= backend.required_confirmations
            ):
                await self._machine.complete(tx.id, status.confirmations)
                return "completed"

            if status.state == TransferState.UNKNOWN:
                tx = await self._machine.update_progress(tx.id, tx.confirmations, unknown=True)
                if (
                    tx.unknown_since
                    and _seconds_since(tx.unknown_since, datetime.now(timezone.utc))
                    >= self._config.unknown_grace_period
                ):
                    await self._machine.fail(
                        tx.id,
                        f"transfer {tx.backend_reference} unknown to "
                        f"{backend.method.value} for {self._config.unknown_grace_period}s",
                    )
                    return "failed"
            else:
                tx = await self._machine.update_progress(tx.id, status.confirmations)

        if (
            self._config.max_wait > 0
            and tx.dispatched_at
            and _seconds_since(tx.dispatched_at, now) > self._config.max_wait
        ):
            await self._machine.fail(
                tx.id,
                f"not confirmed within {self._config.max_wait}s "
                f"({tx.confirmations} confirmations)",
            )
            return "failed"

        return outcome
