"""Shared fixtures for dogenode_payout tests."""

from __future__ import annotations

from decimal import Decimal

import pytest
from pytest_metadata.plugin import metadata_key

from dogenode_payout.daemon import PayoutDaemon
from dogenode_payout.models.config import WithdrawalMethod
from dogenode_payout.storage.memory import MemoryLedgerStore
from dogenode_payout.storage.sqlite import SQLiteLedgerStore

from tests.factories import NODE_ACCOUNT, make_test_config
from tests.mocks import MockBackend


# ── Report metadata ──────────────────────────────────────────────


def pytest_configure(config):
    """Add payout settings to the HTML report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Chain"] = "Dogecoin (mocked backends)"
    meta["Withdrawal bounds"] = "10 - 100000 DOGE, fee 1 DOGE"
    meta["Node account"] = NODE_ACCOUNT


@pytest.fixture
def test_config():
    """Default PayoutConfig for tests."""
    return make_test_config()


@pytest.fixture
def store():
    """Fresh in-memory LedgerStore."""
    return MemoryLedgerStore()


@pytest.fixture
async def sqlite_store():
    """Initialized in-memory SQLiteLedgerStore."""
    s = SQLiteLedgerStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def node_backend():
    return MockBackend(WithdrawalMethod.NODE_DIRECT, required_confirmations=6)


@pytest.fixture
def explorer_backend():
    return MockBackend(WithdrawalMethod.EXPLORER_API, required_confirmations=6)


@pytest.fixture
def wrapped_backend():
    return MockBackend(WithdrawalMethod.WRAPPED_TOKEN, required_confirmations=12)


@pytest.fixture
def daemon(test_config, store, node_backend, explorer_backend, wrapped_backend):
    """Fully wired PayoutDaemon over the memory store and mock backends."""
    return PayoutDaemon(
        test_config,
        store=store,
        backends=[node_backend, explorer_backend, wrapped_backend],
    )


@pytest.fixture
async def funded(daemon):
    """Daemon whose node account holds 100 DOGE of earnings."""
    await daemon.ledger.credit(NODE_ACCOUNT, Decimal("100"))
    return daemon
