"""Wrapped DOGE settlement backend - ERC-20 wDOGE via a transfer service."""

from __future__ import annotations

import logging
from decimal import Decimal

import httpx

from dogenode_payout.backends.http import NotFound, request_json
from dogenode_payout.errors import AmbiguousSettlement
from dogenode_payout.models.config import WithdrawalMethod, WrappedBackendConfig
from dogenode_payout.models.records import TransferReceipt, TransferState, TransferStatus
from dogenode_payout.routing.addresses import is_evm_address

log = logging.getLogger(__name__)

# Transfer service status -> our view
_STATE_MAP = {
    "pending": TransferState.PENDING,
    "submitted": TransferState.PENDING,
    "confirmed": TransferState.CONFIRMED,
    "failed": TransferState.REJECTED,
    "reverted": TransferState.REJECTED,
    "dropped": TransferState.REJECTED,
}


class WrappedTokenBackend:
    """Mints/transfers wDOGE to an EVM address through the transfer service API.

    Endpoints: GET /health, POST /transfers, GET /transfers/{hash},
    GET /transfers?memo=...
    """

    method = WithdrawalMethod.WRAPPED_TOKEN

    def __init__(
        self,
        config: WrappedBackendConfig,
        request_timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = config.api_url.rstrip("/")
        self._api_key = config.api_key
        self._explorer_tx_url = config.explorer_tx_url
        self._timeout = request_timeout
        self._transport = transport
        self._available = False
        self.required_confirmations = config.required_confirmations

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    def is_available(self) -> bool:
        return self._available

    def validate_address(self, address: str) -> bool:
        return is_evm_address(address)

    async def refresh(self) -> bool:
        if not self._base_url:
            self._available = False
            return False
        try:
            health = await request_json(
                "GET", self._url("health"),
                timeout=self._timeout, transport=self._transport, headers=self._headers(),
            )
        except Exception as exc:
            log.warning("wDOGE service %s unreachable: %s", self._base_url, exc)
            self._available = False
            return False
        self._available = health.get("status") == "ok"
        return self._available

    async def submit(self, to_address: str, amount: Decimal, memo: str) -> TransferReceipt:
        log.info("wDOGE transfer %s -> %s (%s)", amount, to_address, memo)
        body = await request_json(
            "POST",
            self._url("transfers"),
            timeout=self._timeout,
            transport=self._transport,
            headers=self._headers(),
            json={"to": to_address, "amount": str(amount), "memo": memo},
        )
        tx_hash = body.get("txHash")
        if not tx_hash:
            raise AmbiguousSettlement(f"transfer accepted without txHash: {body}")
        return TransferReceipt(
            reference=tx_hash,
            explorer_url=body.get("explorerUrl") or self._explorer_url(tx_hash),
            confirmations=int(body.get("confirmations", 0)),
        )

    async def get_status(self, reference: str) -> TransferStatus:
        try:
            body = await request_json(
                "GET", self._url(f"transfers/{reference}"),
                timeout=self._timeout, transport=self._transport, headers=self._headers(),
            )
        except NotFound:
            return TransferStatus(reference, TransferState.UNKNOWN, detail="unknown transfer")

        raw = str(body.get("status", "")).lower()
        state = _STATE_MAP.get(raw, TransferState.UNKNOWN)
        return TransferStatus(
            reference, state, int(body.get("confirmations", 0)), detail=raw or None,
        )

    async def find_transfer(self, memo: str) -> TransferReceipt | None:
        body = await request_json(
            "GET", self._url("transfers"),
            timeout=self._timeout, transport=self._transport,
            headers=self._headers(), params={"memo": memo},
        )
        for transfer in body.get("transfers", []):
            if transfer.get("memo") == memo and transfer.get("txHash"):
                tx_hash = transfer["txHash"]
                return TransferReceipt(
                    reference=tx_hash,
                    explorer_url=transfer.get("explorerUrl") or self._explorer_url(tx_hash),
                    confirmations=int(transfer.get("confirmations", 0)),
                )
        return None

    def _explorer_url(self, tx_hash: str) -> str | None:
        if not self._explorer_tx_url:
            return None
        return self._explorer_tx_url.format(reference=tx_hash)
