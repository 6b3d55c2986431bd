"""Settlement backend registry - runtime lookup and health of payout providers."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from dogenode_payout.interfaces.backend import SettlementBackend
from dogenode_payout.models.config import WithdrawalMethod
from dogenode_payout.routing.selector import DEFAULT_VALIDATORS, select_method

log = logging.getLogger(__name__)


class BackendRegistry:
    """Holds at most one SettlementBackend per withdrawal method."""

    def __init__(self, backends: Iterable[SettlementBackend] = ()) -> None:
        self._backends: dict[WithdrawalMethod, SettlementBackend] = {}
        for backend in backends:
            self.register(backend)

    def register(self, backend: SettlementBackend) -> None:
        if backend.method == WithdrawalMethod.AUTO:
            raise ValueError("A backend cannot register for the 'auto' method")
        self._backends[backend.method] = backend
        log.debug("Registered %s backend", backend.method.value)

    def get(self, method: WithdrawalMethod) -> SettlementBackend | None:
        return self._backends.get(method)

    def __iter__(self):
        return iter(self._backends.values())

    def __len__(self) -> int:
        return len(self._backends)

    def availability(self) -> dict[WithdrawalMethod, bool]:
        return {
            method: backend.is_available() for method, backend in self._backends.items()
        }

    def resolve(
        self, address: str, requested: WithdrawalMethod | str = WithdrawalMethod.AUTO
    ) -> SettlementBackend:
        """Select the backend for a destination. Raises InvalidDestination / BackendUnavailable."""
        validators = dict(DEFAULT_VALIDATORS)
        validators.update(
            {method: backend.validate_address for method, backend in self._backends.items()}
        )
        method = select_method(address, requested, self.availability(), validators)
        return self._backends[method]

    async def refresh_all(self) -> dict[WithdrawalMethod, bool]:
        """Probe every backend concurrently and return the availability map."""
        backends = list(self._backends.values())
        results = await asyncio.gather(
            *(b.refresh() for b in backends), return_exceptions=True,
        )
        for backend, result in zip(backends, results):
            if isinstance(result, Exception):
                log.warning("Health probe for %s failed: %s", backend.method.value, result)
        return self.availability()
