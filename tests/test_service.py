"""PayoutService: earnings intake and read-side snapshots."""

from __future__ import annotations

import json

import pytest

from dogenode_payout.errors import InvalidAmount, InvalidDestination, TransactionNotFound
from dogenode_payout.models.records import TransactionStatus, TransferState
from dogenode_payout.models.snapshots import to_dict

from tests.factories import DOGE_ADDR, DOGE_ADDR_2, EVM_ADDR, NODE_ACCOUNT


@pytest.fixture
def service(daemon):
    return daemon.service


# ── Earnings ──────────────────────────────────────────────────────


async def test_add_earnings_credits_and_logs(service, store):
    snapshot = await service.add_earnings(DOGE_ADDR, "100")

    assert snapshot.available == "100.00000000"
    assert snapshot.lifetime_earned == "100.00000000"
    assert snapshot.pending == "0.00000000"

    history = await store.get_transactions_for_account(DOGE_ADDR)
    assert len(history) == 1
    assert history[0].status == TransactionStatus.COMPLETED
    activity = await service.get_recent_activity(5)
    assert activity[0].event_type == "earning_credited"
    assert activity[0].amount == "100.00000000"


@pytest.mark.parametrize("address", [EVM_ADDR, "not-an-address", ""])
async def test_add_earnings_rejects_bad_address(service, store, address):
    with pytest.raises(InvalidDestination):
        await service.add_earnings(address, "5")
    assert await store.list_accounts() == []


@pytest.mark.parametrize("amount", ["0", "-1", "1000000", "1e7", "nope"])
async def test_add_earnings_rejects_bad_amount(service, store, amount):
    with pytest.raises(InvalidAmount):
        await service.add_earnings(DOGE_ADDR, amount)
    assert await store.list_accounts() == []


async def test_add_earnings_just_below_cap(service):
    snapshot = await service.add_earnings(DOGE_ADDR, "999999.99999999")
    assert snapshot.available == "999999.99999999"


async def test_balance_of_unknown_account_is_zero(service):
    snapshot = await service.get_balance(DOGE_ADDR_2)
    assert snapshot.available == "0.00000000"
    assert snapshot.lifetime_withdrawn == "0.00000000"


async def test_earnings_history_totals(service):
    for amount in ("1.5", "2.25", "0.00000001"):
        await service.add_earnings(DOGE_ADDR, amount)
    await service.add_earnings(DOGE_ADDR_2, "50")

    history = await service.get_earnings_history(DOGE_ADDR)
    assert len(history.entries) == 3
    assert history.total == "3.75000001"


# ── Transactions ──────────────────────────────────────────────────


async def test_transaction_page(service):
    for _ in range(5):
        await service.add_earnings(DOGE_ADDR, "20")

    page = await service.get_transactions(DOGE_ADDR, limit=2, offset=0)
    assert page.total == 5
    assert len(page.transactions) == 2
    assert page.has_more

    last = await service.get_transactions(DOGE_ADDR, limit=2, offset=4)
    assert len(last.transactions) == 1
    assert not last.has_more


async def test_transaction_page_clamps_limit(service):
    page = await service.get_transactions(DOGE_ADDR, limit=10_000, offset=-3)
    assert page.limit == 500
    assert page.offset == 0
    assert not page.has_more


async def test_lookup_by_reference(daemon, service):
    await service.add_earnings(NODE_ACCOUNT, "100")
    receipt = await service.request_withdrawal(NODE_ACCOUNT, DOGE_ADDR_2, "50")
    tx = await daemon.orchestrator.dispatch(receipt.transaction_id)

    snapshot = await service.get_transaction_by_reference(tx.backend_reference)
    assert snapshot.id == receipt.transaction_id
    assert snapshot.status == "processing"
    assert snapshot.method == "node_direct"
    assert snapshot.fee == "1.00000000"

    with pytest.raises(TransactionNotFound):
        await service.get_transaction_by_reference("no-such-hash")


async def test_withdrawal_status_after_confirmation(daemon, service, node_backend):
    await service.add_earnings(NODE_ACCOUNT, "100")
    receipt = await service.request_withdrawal(NODE_ACCOUNT, DOGE_ADDR_2, "50", method="")
    tx = await daemon.orchestrator.dispatch(receipt.transaction_id)
    node_backend.set_status(tx.backend_reference, TransferState.CONFIRMED, 6)
    await daemon.poller.run_cycle()

    status = await service.get_withdrawal_status(receipt.transaction_id)
    assert status.status == TransactionStatus.COMPLETED
    assert status.backend_reference == tx.backend_reference

    balance = await service.get_balance(NODE_ACCOUNT)
    assert balance.available == "49.00000000"
    assert balance.pending == "0.00000000"
    assert balance.lifetime_withdrawn == "50.00000000"


# ── Operations ────────────────────────────────────────────────────


async def test_stats(service):
    await service.add_earnings(DOGE_ADDR, "0.1")
    await service.add_earnings(DOGE_ADDR_2, "0.2")

    stats = await service.get_stats()
    assert stats.total_accounts == 2
    assert stats.active_accounts_24h == 2
    assert stats.total_transactions == 2
    assert stats.total_volume == "0.30000000"


async def test_backends_snapshot(service, explorer_backend):
    explorer_backend.available = False
    backends = {b.method: b for b in await service.get_backends()}

    assert set(backends) == {"node_direct", "explorer_api", "wrapped_token"}
    assert backends["node_direct"].available
    assert not backends["explorer_api"].available
    assert backends["wrapped_token"].required_confirmations == 12


async def test_snapshots_are_json_serializable(service):
    await service.add_earnings(DOGE_ADDR, "3")
    page = await service.get_transactions(DOGE_ADDR)

    payload = json.loads(json.dumps(to_dict(page)))
    assert payload["transactions"][0]["amount"] == "3.00000000"
    assert payload["transactions"][0]["type"] == "earning"
