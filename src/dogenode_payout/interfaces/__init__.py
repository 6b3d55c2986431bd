"""Protocol interfaces for all dogenode_payout components."""

from dogenode_payout.interfaces.backend import SettlementBackend
from dogenode_payout.interfaces.payout_api import PayoutAPI
from dogenode_payout.interfaces.store import AccountStore, LedgerStore, TransactionStore

__all__ = [
    "SettlementBackend",
    "AccountStore", "TransactionStore", "LedgerStore",
    "PayoutAPI",
]
