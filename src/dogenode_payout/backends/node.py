"""dogecoind settlement backend - pays out from the node's own wallet over JSON-RPC."""

from __future__ import annotations

import itertools
import logging
from decimal import Decimal
from typing import Any

import httpx

from dogenode_payout.backends.http import request_json
from dogenode_payout.errors import AmbiguousSettlement, SettlementRejected
from dogenode_payout.models.amounts import quantize
from dogenode_payout.models.config import NodeBackendConfig, WithdrawalMethod
from dogenode_payout.models.records import TransferReceipt, TransferState, TransferStatus
from dogenode_payout.routing.addresses import is_doge_address

log = logging.getLogger(__name__)

# bitcoind-family RPC error codes
RPC_INVALID_ADDRESS_OR_KEY = -5  # also "Invalid or non-wallet transaction id"
RPC_WALLET_INSUFFICIENT_FUNDS = -6

# Wallet entries fetched per listtransactions call when re-querying by memo
_REQUERY_PAGE = 100


class RPCError(SettlementRejected):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int, message: str) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.code = code


class DogecoinNodeBackend:
    """Sends DOGE with sendtoaddress on a local dogecoind.

    The withdrawal memo goes into the wallet transaction's comment field,
    which lets find_transfer() recover a transfer whose submit timed out.
    """

    method = WithdrawalMethod.NODE_DIRECT

    def __init__(
        self,
        config: NodeBackendConfig,
        request_timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._rpc_url = config.rpc_url
        self._auth = (config.rpc_user, config.rpc_password) if config.rpc_user else None
        self._explorer_tx_url = config.explorer_tx_url
        self._timeout = request_timeout
        self._transport = transport
        self._ids = itertools.count(1)
        self._available = False
        self.required_confirmations = config.required_confirmations

    def is_available(self) -> bool:
        return self._available

    def validate_address(self, address: str) -> bool:
        return is_doge_address(address)

    async def refresh(self) -> bool:
        try:
            info = await self._call("getblockchaininfo")
        except Exception as exc:
            log.warning("dogecoind at %s unreachable: %s", self._rpc_url, exc)
            self._available = False
            return False

        # A syncing node would report stale confirmations
        self._available = not info.get("initialblockdownload", False)
        log.debug(
            "dogecoind %s: blocks=%s available=%s",
            info.get("chain"), info.get("blocks"), self._available,
        )
        return self._available

    async def submit(self, to_address: str, amount: Decimal, memo: str) -> TransferReceipt:
        log.info("sendtoaddress %s DOGE -> %s (%s)", amount, to_address, memo)
        # Exact decimal string; dogecoind parses amounts given as strings
        txid = await self._call("sendtoaddress", [to_address, f"{quantize(amount):f}", memo])
        if not isinstance(txid, str) or not txid:
            raise AmbiguousSettlement(f"sendtoaddress returned no txid: {txid!r}")
        log.info("sendtoaddress accepted: %s", txid)
        return TransferReceipt(reference=txid, explorer_url=self._explorer_url(txid))

    async def get_status(self, reference: str) -> TransferStatus:
        try:
            tx = await self._call("gettransaction", [reference])
        except RPCError as exc:
            if exc.code == RPC_INVALID_ADDRESS_OR_KEY:
                return TransferStatus(reference, TransferState.UNKNOWN, detail=str(exc))
            raise

        confirmations = int(tx.get("confirmations", 0))
        if confirmations < 0:
            # Negative confirmations: the wallet tx conflicts with a mined one
            return TransferStatus(
                reference, TransferState.REJECTED, 0, detail="conflicted in chain",
            )
        state = (
            TransferState.CONFIRMED
            if confirmations >= self.required_confirmations
            else TransferState.PENDING
        )
        return TransferStatus(reference, state, confirmations)

    async def find_transfer(self, memo: str) -> TransferReceipt | None:
        """Search the whole wallet history, newest page first, for a send
        carrying this memo as its comment."""
        skip = 0
        while True:
            entries = await self._call("listtransactions", ["*", _REQUERY_PAGE, skip]) or []
            for entry in entries:
                if entry.get("category") == "send" and entry.get("comment") == memo:
                    txid = entry["txid"]
                    log.info("Found existing wallet send %s for %s", txid, memo)
                    return TransferReceipt(
                        reference=txid,
                        explorer_url=self._explorer_url(txid),
                        confirmations=max(int(entry.get("confirmations", 0)), 0),
                    )
            if len(entries) < _REQUERY_PAGE:
                return None
            skip += _REQUERY_PAGE

    async def _call(self, method: str, params: list | None = None) -> Any:
        body = await request_json(
            "POST",
            self._rpc_url,
            timeout=self._timeout,
            transport=self._transport,
            auth=self._auth,
            json={
                "jsonrpc": "1.0",
                "id": next(self._ids),
                "method": method,
                "params": params or [],
            },
            accept_error_body=True,
        )
        error = body.get("error")
        if error:
            raise RPCError(method, int(error.get("code", 0)), str(error.get("message", "")))
        return body.get("result")

    def _explorer_url(self, txid: str) -> str | None:
        if not self._explorer_tx_url:
            return None
        return self._explorer_tx_url.format(reference=txid)
