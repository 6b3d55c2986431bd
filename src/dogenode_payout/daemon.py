"""Main daemon loop - wires all components together."""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from typing import Iterable

from dogenode_payout.api.service import PayoutService
from dogenode_payout.backends import (
    DogecoinNodeBackend,
    ExplorerAPIBackend,
    WrappedTokenBackend,
)
from dogenode_payout.errors import LedgerInvariantError
from dogenode_payout.interfaces.backend import SettlementBackend
from dogenode_payout.interfaces.store import LedgerStore
from dogenode_payout.ledger.ledger import Ledger
from dogenode_payout.models.config import PayoutConfig
from dogenode_payout.policy.limits import WithdrawalPolicy
from dogenode_payout.routing.registry import BackendRegistry
from dogenode_payout.storage.sqlite import SQLiteLedgerStore
from dogenode_payout.withdrawal.orchestrator import WithdrawalOrchestrator
from dogenode_payout.withdrawal.poller import ConfirmationPoller
from dogenode_payout.withdrawal.transitions import WithdrawalStateMachine

log = logging.getLogger(__name__)


def build_backends(cfg: PayoutConfig) -> list[SettlementBackend]:
    """Instantiate the backends enabled in the configuration."""
    backends: list[SettlementBackend] = []
    if cfg.node.enabled:
        backends.append(DogecoinNodeBackend(cfg.node, request_timeout=cfg.dispatch_timeout))
    if cfg.explorer.enabled:
        backends.append(ExplorerAPIBackend(cfg.explorer, request_timeout=cfg.dispatch_timeout))
    if cfg.wrapped.enabled:
        backends.append(WrappedTokenBackend(cfg.wrapped, request_timeout=cfg.dispatch_timeout))
    return backends


class PayoutDaemon:
    """DOGE payout daemon.

    Runs the withdrawal dispatch workers and the confirmation poller, and
    periodically re-probes backend health so that method selection sees
    current availability.
    """

    def __init__(
        self,
        cfg: PayoutConfig,
        store: LedgerStore | None = None,
        backends: Iterable[SettlementBackend] | None = None,
    ) -> None:
        self._cfg = cfg
        self._running = False
        self._stopped = asyncio.Event()
        self._start_time = time.monotonic()

        # Core components
        self.store: LedgerStore = store if store is not None else SQLiteLedgerStore(cfg.db_path)
        self.ledger = Ledger(self.store)
        self.registry = BackendRegistry(
            backends if backends is not None else build_backends(cfg)
        )
        self.policy = WithdrawalPolicy(cfg.withdrawal)
        self.machine = WithdrawalStateMachine(self.store, self.ledger)
        self.orchestrator = WithdrawalOrchestrator(
            self.store,
            self.ledger,
            self.registry,
            self.policy,
            self.machine,
            dispatch_timeout=cfg.dispatch_timeout,
        )
        self.poller = ConfirmationPoller(
            self.store, self.registry, self.machine, cfg.confirmation,
            error_backoff=cfg.error_backoff,
        )
        self.service = PayoutService(self.store, self.ledger, self.orchestrator, self.registry)

    @property
    def uptime_seconds(self) -> int:
        return int(time.monotonic() - self._start_time)

    async def start(self) -> None:
        """Initialize components and run the main loop."""
        log.info("Starting dogenode_payout daemon")
        log.info("  Backends: %s", ", ".join(b.method.value for b in self.registry) or "none")
        log.info("  Withdrawal: %s-%s DOGE, fee %s + %s",
                 self._cfg.withdrawal.min_amount, self._cfg.withdrawal.max_amount,
                 self._cfg.withdrawal.fee_fixed, self._cfg.withdrawal.fee_rate)
        log.info("  DB: %s", self._cfg.db_path)

        await self.store.initialize()

        self._running = True
        self._stopped.clear()
        await self.store.log_activity("daemon_started", "Daemon started")

        availability = await self.registry.refresh_all()
        for method, available in availability.items():
            log.info("  %s: %s", method.value, "available" if available else "unavailable")

        await self.orchestrator.start(self._cfg.dispatch_workers)
        await self.poller.start()

        try:
            await self._main_loop()
        finally:
            await self.poller.stop()
            await self.orchestrator.stop()
            await self.store.log_activity("daemon_stopped", "Daemon stopped")
            await self.store.close()
            log.info("Daemon shut down cleanly")

    async def stop(self) -> None:
        """Signal the daemon to stop gracefully."""
        log.info("Stop requested")
        self._running = False
        self._stopped.set()

    async def _main_loop(self) -> None:
        """Backend health probes, supervision of the dispatch workers and the
        confirmation poller, and pickup of queued requests."""
        while self._running:
            try:
                self._check_loops()
                await self._wait(self._cfg.health_interval)
                if self._running:
                    self._check_loops()
                    await self.registry.refresh_all()
                    await self.orchestrator.requeue_pending()
            except asyncio.CancelledError:
                log.info("Main loop cancelled")
                break
            except LedgerInvariantError as exc:
                # Payouts stop; balances need an operator
                log.critical("Halting on ledger invariant violation: %s", exc)
                await self.store.log_activity("error", f"Ledger invariant violated: {exc}")
                break
            except Exception as exc:
                log.error("Main loop error: %s", exc, exc_info=True)
                await self.store.log_activity("error", str(exc))
                await self._wait(self._cfg.error_backoff)

    def _check_loops(self) -> None:
        self.orchestrator.check_workers()
        self.poller.check_loop()

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


async def run_daemon(cfg: PayoutConfig) -> None:
    """Entry point for running the daemon."""
    daemon = PayoutDaemon(cfg)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(daemon.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await daemon.start()
