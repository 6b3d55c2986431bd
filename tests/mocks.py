"""Mock implementations of the settlement backend protocol."""

from __future__ import annotations

import asyncio
from decimal import Decimal

from dogenode_payout.errors import (
    AmbiguousSettlement,
    SettlementRejected,
    SettlementUnavailable,
)
from dogenode_payout.models.config import WithdrawalMethod
from dogenode_payout.models.records import TransferReceipt, TransferState, TransferStatus
from dogenode_payout.routing.addresses import is_doge_address, is_evm_address


class MockBackend:
    """Implements SettlementBackend. Behaviour is set per test.

    submit_mode:
        "ok"         - returns a receipt
        "reject"     - raises SettlementRejected
        "down"       - raises SettlementUnavailable
        "ambiguous"  - raises AmbiguousSettlement, nothing was sent
        "landed"     - raises AmbiguousSettlement, but the transfer went out
        "hang"       - never returns (exercises the dispatch timeout)
    """

    def __init__(
        self,
        method: WithdrawalMethod = WithdrawalMethod.NODE_DIRECT,
        available: bool = True,
        submit_mode: str = "ok",
        required_confirmations: int = 6,
        initial_confirmations: int = 0,
    ) -> None:
        self.method = method
        self.required_confirmations = required_confirmations
        self.available = available
        self.submit_mode = submit_mode
        self.initial_confirmations = initial_confirmations
        self.requery_error: Exception | None = None
        self.status_error: Exception | None = None

        # reference -> TransferStatus served by get_status()
        self.statuses: dict[str, TransferStatus] = {}
        # memo -> receipt of transfers that actually went out
        self.sent: dict[str, TransferReceipt] = {}

        self.submit_calls: list[tuple[str, Decimal, str]] = []
        self.status_calls: list[str] = []
        self.requery_calls: list[str] = []
        self.refresh_calls = 0
        self._counter = 0

    def is_available(self) -> bool:
        return self.available

    def validate_address(self, address: str) -> bool:
        if self.method == WithdrawalMethod.WRAPPED_TOKEN:
            return is_evm_address(address)
        return is_doge_address(address)

    async def refresh(self) -> bool:
        self.refresh_calls += 1
        return self.available

    async def submit(self, to_address: str, amount: Decimal, memo: str) -> TransferReceipt:
        self.submit_calls.append((to_address, amount, memo))
        if self.submit_mode == "reject":
            raise SettlementRejected("insufficient hot wallet funds")
        if self.submit_mode == "down":
            raise SettlementUnavailable("connection refused")
        if self.submit_mode == "ambiguous":
            raise AmbiguousSettlement("connection reset")
        if self.submit_mode == "hang":
            await asyncio.Event().wait()

        receipt = self._send(memo)
        if self.submit_mode == "landed":
            raise AmbiguousSettlement("read timeout")
        return receipt

    async def get_status(self, reference: str) -> TransferStatus:
        self.status_calls.append(reference)
        if self.status_error is not None:
            raise self.status_error
        return self.statuses.get(reference, TransferStatus(reference, TransferState.UNKNOWN))

    async def find_transfer(self, memo: str) -> TransferReceipt | None:
        self.requery_calls.append(memo)
        if self.requery_error is not None:
            raise self.requery_error
        return self.sent.get(memo)

    # ── Test helpers ──────────────────────────────────────

    def _send(self, memo: str) -> TransferReceipt:
        self._counter += 1
        reference = f"{self.method.value}-tx-{self._counter:04d}"
        receipt = TransferReceipt(
            reference=reference,
            explorer_url=f"https://explorer.example/tx/{reference}",
            confirmations=self.initial_confirmations,
        )
        self.sent[memo] = receipt
        self.statuses[reference] = TransferStatus(
            reference, TransferState.PENDING, self.initial_confirmations,
        )
        return receipt

    def set_status(self, reference: str, state: TransferState, confirmations: int = 0) -> None:
        self.statuses[reference] = TransferStatus(reference, state, confirmations)

    def forget(self, reference: str) -> None:
        """Make the backend report the reference as unknown."""
        self.statuses.pop(reference, None)
