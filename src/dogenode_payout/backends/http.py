"""Shared JSON-over-HTTP call used by all settlement backends.

Maps httpx failures onto the settlement error taxonomy:

- connection refused / DNS failure   -> SettlementUnavailable (nothing sent)
- timeouts, dropped connections, 5xx -> AmbiguousSettlement (maybe sent)
- other 4xx                          -> SettlementRejected (refused)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dogenode_payout.errors import (
    AmbiguousSettlement,
    SettlementRejected,
    SettlementUnavailable,
)

log = logging.getLogger(__name__)


class NotFound(SettlementRejected):
    """HTTP 404 - the requested resource does not exist."""


async def request_json(
    method: str,
    url: str,
    *,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
    auth: tuple[str, str] | None = None,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json: Any = None,
    accept_error_body: bool = False,
) -> Any:
    """Perform one HTTP call and return the decoded JSON body.

    With accept_error_body=True a 4xx/5xx response carrying a JSON body is
    returned instead of raised (JSON-RPC servers report errors that way).
    """
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10)),
            transport=transport,
            auth=auth,
        ) as client:
            resp = await client.request(
                method, url, headers=headers, params=params, json=json,
            )
    except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
        raise SettlementUnavailable(f"cannot reach {url}: {exc}") from exc
    except httpx.TimeoutException as exc:
        raise AmbiguousSettlement(f"timeout calling {url}") from exc
    except httpx.TransportError as exc:
        raise AmbiguousSettlement(f"transport error calling {url}: {exc}") from exc

    if resp.status_code >= 400:
        body = _json_or_none(resp)
        if accept_error_body and isinstance(body, dict):
            return body
        detail = _error_detail(body) or resp.text[:200]
        if resp.status_code == 404:
            raise NotFound(f"{url}: not found")
        if resp.status_code >= 500:
            raise AmbiguousSettlement(f"{url} returned {resp.status_code}: {detail}")
        raise SettlementRejected(f"{url} returned {resp.status_code}: {detail}")

    body = _json_or_none(resp)
    if body is None:
        raise AmbiguousSettlement(f"{url} returned a non-JSON body")
    return body


def _json_or_none(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


def _error_detail(body: Any) -> str | None:
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            value = body.get(key)
            if isinstance(value, dict):
                value = value.get("message")
            if value:
                return str(value)
    return None
