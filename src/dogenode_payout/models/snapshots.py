"""JSON-serializable snapshot models for the payout service surface.

Amounts are rendered as fixed-point strings ("49.00000000") so that no
float ever leaves the service.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


def to_dict(obj: Any) -> dict:
    """Recursively convert a snapshot dataclass to a plain dict."""
    return asdict(obj)


@dataclass
class BalanceSnapshot:
    address: str
    available: str
    pending: str
    lifetime_earned: str
    lifetime_withdrawn: str
    last_activity: str


@dataclass
class TransactionSnapshot:
    id: str
    account: str
    type: str
    amount: str
    fee: str
    net_amount: str
    status: str
    method: str | None = None
    to_address: str | None = None
    backend_reference: str | None = None
    explorer_url: str | None = None
    confirmations: int = 0
    failure_reason: str | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class TransactionPage:
    address: str
    transactions: list[TransactionSnapshot] = field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0
    has_more: bool = False


@dataclass
class EarningsEntry:
    amount: str
    timestamp: str


@dataclass
class EarningsHistory:
    address: str
    entries: list[EarningsEntry] = field(default_factory=list)
    total: str = "0.00000000"


@dataclass
class StatsSnapshot:
    total_accounts: int
    total_transactions: int
    total_volume: str
    active_accounts_24h: int


@dataclass
class BackendSnapshot:
    method: str
    available: bool
    required_confirmations: int


@dataclass
class ActivityEntry:
    timestamp: str
    event_type: str
    message: str
    transaction_id: str | None = None
    account: str | None = None
    amount: str | None = None
