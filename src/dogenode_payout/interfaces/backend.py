"""SettlementBackend protocol - a pluggable payout provider."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from dogenode_payout.models.config import WithdrawalMethod
from dogenode_payout.models.records import TransferReceipt, TransferStatus


class SettlementBackend(Protocol):
    """Sends DOGE (or a wrapped equivalent) and reports on transfers.

    submit() raises SettlementRejected / SettlementUnavailable when nothing
    was sent and AmbiguousSettlement when the outcome is unknown.
    """

    method: WithdrawalMethod
    required_confirmations: int  # finality threshold

    def is_available(self) -> bool:
        """Cached health flag, refreshed by refresh()."""
        ...

    def validate_address(self, address: str) -> bool:
        """True if the address matches this backend's destination grammar."""
        ...

    async def refresh(self) -> bool:
        """Probe the backend and update the availability flag."""
        ...

    async def submit(self, to_address: str, amount: Decimal, memo: str) -> TransferReceipt:
        """Send amount to to_address. The memo identifies the withdrawal."""
        ...

    async def get_status(self, reference: str) -> TransferStatus:
        """Current confirmation state of a submitted transfer."""
        ...

    async def find_transfer(self, memo: str) -> TransferReceipt | None:
        """Look up an already-sent transfer by memo (ambiguous-failure re-query)."""
        ...
