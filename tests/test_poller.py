"""Confirmation poller cycles."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from dogenode_payout.errors import LedgerInvariantError
from dogenode_payout.models.config import ConfirmationConfig
from dogenode_payout.models.records import TransactionStatus, TransferState
from dogenode_payout.withdrawal.poller import ConfirmationPoller

from tests.factories import DOGE_ADDR_2, EVM_ADDR, NODE_ACCOUNT

D = Decimal


async def _dispatched(daemon, to_address=DOGE_ADDR_2, amount="50"):
    receipt = await daemon.orchestrator.request_withdrawal(NODE_ACCOUNT, to_address, amount)
    return await daemon.orchestrator.dispatch(receipt.transaction_id)


def _ago(seconds: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(seconds=seconds)).isoformat()


async def test_empty_cycle(daemon):
    report = await daemon.poller.run_cycle()
    assert report.checked == 0
    assert report.errors == 0
    assert daemon.poller.last_report is report


async def test_below_threshold_updates_confirmations(funded, store, node_backend):
    tx = await _dispatched(funded)
    node_backend.set_status(tx.backend_reference, TransferState.PENDING, 3)

    report = await funded.poller.run_cycle()
    assert report.still_pending == 1

    stored = await store.get_transaction(tx.id)
    assert stored.status == TransactionStatus.PROCESSING
    assert stored.confirmations == 3


async def test_threshold_reached_completes(funded, node_backend):
    tx = await _dispatched(funded)
    node_backend.set_status(tx.backend_reference, TransferState.PENDING, 6)

    report = await funded.poller.run_cycle()
    assert report.completed == 1
    status = await funded.orchestrator.get_withdrawal_status(tx.id)
    assert status.status == TransactionStatus.COMPLETED
    assert status.confirmations == 6


async def test_wrapped_needs_its_own_threshold(funded, wrapped_backend):
    tx = await _dispatched(funded, to_address=EVM_ADDR)
    wrapped_backend.set_status(tx.backend_reference, TransferState.PENDING, 6)

    report = await funded.poller.run_cycle()
    assert report.still_pending == 1

    wrapped_backend.set_status(tx.backend_reference, TransferState.PENDING, 12)
    report = await funded.poller.run_cycle()
    assert report.completed == 1


async def test_rejected_transfer_fails_and_releases(funded, store, node_backend):
    tx = await _dispatched(funded)
    node_backend.set_status(tx.backend_reference, TransferState.REJECTED)

    report = await funded.poller.run_cycle()
    assert report.failed == 1

    stored = await store.get_transaction(tx.id)
    assert stored.status == TransactionStatus.FAILED
    assert "rejected" in stored.failure_reason
    account = await funded.ledger.get_account(NODE_ACCOUNT)
    assert account.available == D("100")
    assert account.pending == 0


async def test_unknown_within_grace_stays_processing(funded, store, node_backend):
    tx = await _dispatched(funded)
    node_backend.forget(tx.backend_reference)

    report = await funded.poller.run_cycle()
    assert report.still_pending == 1
    stored = await store.get_transaction(tx.id)
    assert stored.status == TransactionStatus.PROCESSING
    assert stored.unknown_since is not None


async def test_unknown_past_grace_fails(funded, store, node_backend):
    tx = await _dispatched(funded)
    node_backend.forget(tx.backend_reference)
    await store.save_transaction(replace(
        await store.get_transaction(tx.id), unknown_since=_ago(601),
    ))

    report = await funded.poller.run_cycle()
    assert report.failed == 1
    stored = await store.get_transaction(tx.id)
    assert stored.status == TransactionStatus.FAILED
    assert "unknown" in stored.failure_reason


async def test_known_again_clears_unknown(funded, store, node_backend):
    tx = await _dispatched(funded)
    node_backend.forget(tx.backend_reference)
    await funded.poller.run_cycle()

    node_backend.set_status(tx.backend_reference, TransferState.PENDING, 1)
    await funded.poller.run_cycle()
    stored = await store.get_transaction(tx.id)
    assert stored.unknown_since is None
    assert stored.confirmations == 1


async def test_status_error_counts_and_keeps_state(funded, store, node_backend):
    tx = await _dispatched(funded)
    node_backend.status_error = ConnectionError("explorer down")

    report = await funded.poller.run_cycle()
    assert report.errors == 1
    stored = await store.get_transaction(tx.id)
    assert stored.status == TransactionStatus.PROCESSING


async def test_max_wait_gives_up(store, funded, node_backend):
    tx = await _dispatched(funded)
    await store.save_transaction(replace(
        await store.get_transaction(tx.id), dispatched_at=_ago(7200),
    ))
    poller = ConfirmationPoller(
        store, funded.registry, funded.machine, ConfirmationConfig(max_wait=3600),
    )

    report = await poller.run_cycle()
    assert report.failed == 1
    stored = await store.get_transaction(tx.id)
    assert stored.status == TransactionStatus.FAILED
    assert "3600s" in stored.failure_reason


async def test_max_wait_disabled_by_default(store, funded, node_backend):
    tx = await _dispatched(funded)
    await store.save_transaction(replace(
        await store.get_transaction(tx.id), dispatched_at=_ago(10 * 86400),
    ))
    report = await funded.poller.run_cycle()
    assert report.still_pending == 1


async def test_terminal_records_never_checked(funded, node_backend):
    node_backend.submit_mode = "reject"
    tx = await _dispatched(funded)
    assert tx.status == TransactionStatus.FAILED

    report = await funded.poller.run_cycle()
    assert report.checked == 0
    assert node_backend.status_calls == []


async def test_records_without_reference_are_skipped(funded, store, node_backend):
    receipt = await funded.orchestrator.request_withdrawal(NODE_ACCOUNT, DOGE_ADDR_2, "50")
    await funded.machine.begin_dispatch(receipt.transaction_id)

    report = await funded.poller.run_cycle()
    assert report.checked == 0


async def test_concurrency_limit(funded, store, node_backend):
    await funded.ledger.credit(NODE_ACCOUNT, D("500"))
    for _ in range(6):
        await _dispatched(funded, amount="20")

    in_flight = 0
    peak = 0
    original = node_backend.get_status

    async def slow_status(reference):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return await original(reference)

    node_backend.get_status = slow_status
    poller = ConfirmationPoller(
        store, funded.registry, funded.machine, ConfirmationConfig(max_concurrent_checks=2),
    )
    report = await poller.run_cycle()
    assert report.checked == 6
    assert peak <= 2


async def test_start_stop(funded, node_backend):
    tx = await _dispatched(funded)
    node_backend.set_status(tx.backend_reference, TransferState.CONFIRMED, 6)

    await funded.poller.start()
    try:
        for _ in range(50):
            status = await funded.orchestrator.get_withdrawal_status(tx.id)
            if status.status.terminal:
                break
            await asyncio.sleep(0.02)
    finally:
        await funded.poller.stop()
    assert status.status == TransactionStatus.COMPLETED


# ── Ledger violations and loop errors ─────────────────────────────


async def test_invariant_violation_propagates_after_cycle(funded, store, node_backend):
    broken = await _dispatched(funded, amount="40")
    healthy = await _dispatched(funded, amount="40")
    # Reservation settled behind the state machine's back
    await funded.ledger.release(broken.id)
    node_backend.set_status(broken.backend_reference, TransferState.PENDING, 6)
    node_backend.set_status(healthy.backend_reference, TransferState.PENDING, 6)

    with pytest.raises(LedgerInvariantError, match=broken.id):
        await funded.poller.run_cycle()

    # The other check still ran and the report was kept
    report = funded.poller.last_report
    assert report.checked == 2
    assert report.completed == 1
    assert report.errors == 1
    assert (await store.get_transaction(healthy.id)).status == TransactionStatus.COMPLETED
    assert (await store.get_transaction(broken.id)).status == TransactionStatus.PROCESSING


async def _until(predicate, attempts: int = 100):
    for _ in range(attempts):
        if await predicate():
            return True
        await asyncio.sleep(0.02)
    return False


async def test_poll_loop_dies_on_invariant_violation(funded, node_backend):
    tx = await _dispatched(funded)
    await funded.ledger.release(tx.id)
    node_backend.set_status(tx.backend_reference, TransferState.PENDING, 6)

    poller = funded.poller
    await poller.start()

    async def loop_finished():
        return poller._task.done()

    try:
        assert await _until(loop_finished)
        with pytest.raises(LedgerInvariantError):
            poller.check_loop()
    finally:
        # Does not re-raise the loop's error
        await poller.stop()


async def test_poll_loop_records_cycle_errors_and_continues(daemon, store, monkeypatch):
    calls = 0
    original = store.get_transactions_by_status

    async def flaky(*args, **kwargs):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("database is locked")
        return await original(*args, **kwargs)

    monkeypatch.setattr(store, "get_transactions_by_status", flaky)
    poller = ConfirmationPoller(
        store, daemon.registry, daemon.machine,
        ConfirmationConfig(poll_interval=0), error_backoff=0,
    )
    await poller.start()

    async def recovered():
        return poller.last_report is not None

    try:
        assert await _until(recovered)
        poller.check_loop()
    finally:
        await poller.stop()

    errors = [a for a in await store.get_recent_activity(20) if a.event_type == "error"]
    assert len(errors) == 1
    assert "database is locked" in errors[0].message
