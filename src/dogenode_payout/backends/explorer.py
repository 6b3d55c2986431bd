"""Explorer API settlement backend - public chain-query API plus hosted-wallet payments.

Chain reads follow the BlockCypher REST layout (``GET /`` for chain info,
``GET /txs/{hash}`` for a transaction). Payments go through the provider's
hosted-wallet endpoint, authenticated with an API token, since this service
never signs transactions itself.
"""

from __future__ import annotations

import logging
from decimal import Decimal

import httpx

from dogenode_payout.backends.http import NotFound, request_json
from dogenode_payout.errors import AmbiguousSettlement
from dogenode_payout.models.config import ExplorerBackendConfig, WithdrawalMethod
from dogenode_payout.models.records import TransferReceipt, TransferState, TransferStatus
from dogenode_payout.routing.addresses import is_doge_address

log = logging.getLogger(__name__)


class ExplorerAPIBackend:
    """Pays out through a hosted wallet and tracks confirmations on the explorer."""

    method = WithdrawalMethod.EXPLORER_API

    def __init__(
        self,
        config: ExplorerBackendConfig,
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

    def _url(self, path: str = "") -> str:
        return f"{self._base_url}/{path}" if path else self._base_url

    def _token(self) -> dict[str, str]:
        return {"token": self._api_key} if self._api_key else {}

    def is_available(self) -> bool:
        return self._available

    def validate_address(self, address: str) -> bool:
        return is_doge_address(address)

    async def refresh(self) -> bool:
        if not self._api_key:
            # Reads work anonymously, payments do not
            self._available = False
            return False
        try:
            chain = await request_json(
                "GET", self._url(), timeout=self._timeout, transport=self._transport,
            )
        except Exception as exc:
            log.warning("Explorer API %s unreachable: %s", self._base_url, exc)
            self._available = False
            return False
        self._available = "height" in chain
        return self._available

    async def submit(self, to_address: str, amount: Decimal, memo: str) -> TransferReceipt:
        log.info("Explorer payment %s DOGE -> %s (%s)", amount, to_address, memo)
        body = await request_json(
            "POST",
            self._url("payments"),
            timeout=self._timeout,
            transport=self._transport,
            params=self._token(),
            json={"to_address": to_address, "amount": str(amount), "memo": memo},
        )
        tx_hash = body.get("tx_hash")
        if not tx_hash:
            raise AmbiguousSettlement(f"payment accepted without tx_hash: {body}")
        return TransferReceipt(reference=tx_hash, explorer_url=self._explorer_url(tx_hash))

    async def get_status(self, reference: str) -> TransferStatus:
        try:
            tx = await request_json(
                "GET",
                self._url(f"txs/{reference}"),
                timeout=self._timeout,
                transport=self._transport,
                params=self._token(),
            )
        except NotFound:
            return TransferStatus(reference, TransferState.UNKNOWN, detail="not on explorer")

        confirmations = int(tx.get("confirmations", 0))
        if tx.get("double_spend"):
            return TransferStatus(
                reference, TransferState.REJECTED, confirmations, detail="double spend",
            )
        state = (
            TransferState.CONFIRMED
            if confirmations >= self.required_confirmations
            else TransferState.PENDING
        )
        return TransferStatus(reference, state, confirmations)

    async def find_transfer(self, memo: str) -> TransferReceipt | None:
        body = await request_json(
            "GET",
            self._url("payments"),
            timeout=self._timeout,
            transport=self._transport,
            params={**self._token(), "memo": memo},
        )
        for payment in body.get("payments", []):
            if payment.get("memo") == memo and payment.get("tx_hash"):
                tx_hash = payment["tx_hash"]
                return TransferReceipt(reference=tx_hash, explorer_url=self._explorer_url(tx_hash))
        return None

    def _explorer_url(self, tx_hash: str) -> str | None:
        if not self._explorer_tx_url:
            return None
        return self._explorer_tx_url.format(reference=tx_hash)
