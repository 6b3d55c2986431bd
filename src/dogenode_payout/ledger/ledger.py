"""Ledger - per-account balances and withdrawal reservations.

Every balance mutation happens under the account's lock and inside one
store.atomic() block: the account is re-read there, checked, and written in
a single write_ledger() call together with the reservation and transaction
record it belongs to. Another process writing the same database cannot
interleave between the read and the write. Reservations are settled exactly once:
either released back to ``available`` or committed as withdrawn.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from dogenode_payout.errors import InsufficientFunds, LedgerInvariantError
from dogenode_payout.interfaces.store import AccountStore
from dogenode_payout.locks import KeyedLocks
from dogenode_payout.models.amounts import ZERO
from dogenode_payout.models.records import (
    Account,
    Reservation,
    ReservationState,
    Transaction,
)

log = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _violation(message: str) -> LedgerInvariantError:
    log.critical("LEDGER INVARIANT VIOLATION: %s", message)
    return LedgerInvariantError(message)


def check_account(account: Account) -> None:
    """Raise LedgerInvariantError if the account state is impossible."""
    if account.available < ZERO:
        raise _violation(f"{account.address}: available {account.available} < 0")
    if account.pending < ZERO:
        raise _violation(f"{account.address}: pending {account.pending} < 0")
    unspent = account.lifetime_earned - account.lifetime_withdrawn
    if account.available + account.pending > unspent:
        raise _violation(
            f"{account.address}: available+pending "
            f"{account.available + account.pending} exceeds earned-withdrawn {unspent}"
        )


class Ledger:
    """Balance bookkeeping over an AccountStore."""

    def __init__(self, store: AccountStore) -> None:
        self._store = store
        self._locks = KeyedLocks()

    async def get_account(self, address: str) -> Account:
        """Current account state; a zero account if the address was never seen."""
        account = await self._store.get_account(address)
        if account is None:
            now = _now()
            account = Account(address=address, created_at=now, last_activity=now)
        return account

    async def credit(
        self, address: str, amount: Decimal, record: Transaction | None = None
    ) -> Account:
        """Add earnings to an account."""
        if amount <= ZERO:
            raise _violation(f"credit of non-positive amount {amount} to {address}")

        async with self._locks.hold(address), self._store.atomic():
            account = await self.get_account(address)
            account = replace(
                account,
                available=account.available + amount,
                lifetime_earned=account.lifetime_earned + amount,
                last_activity=_now(),
            )
            check_account(account)
            await self._store.write_ledger(account, transaction=record)

        log.info("Credited %s DOGE to %s", amount, address)
        return account

    async def reserve(
        self,
        address: str,
        total: Decimal,
        reservation_id: str,
        record: Transaction | None = None,
    ) -> Account:
        """Move total from available to pending, or raise InsufficientFunds.

        The check and the move happen under the account lock and in one store
        transaction, so concurrent reservations against one account, from
        this process or another, always see a consistent balance.
        """
        if total <= ZERO:
            raise _violation(f"reservation of non-positive amount {total} on {address}")

        async with self._locks.hold(address), self._store.atomic():
            if await self._store.get_reservation(reservation_id) is not None:
                raise _violation(f"reservation {reservation_id} already exists")

            account = await self.get_account(address)
            if account.available < total:
                raise InsufficientFunds(address, total, account.available)

            now = _now()
            account = replace(
                account,
                available=account.available - total,
                pending=account.pending + total,
                last_activity=now,
            )
            check_account(account)
            reservation = Reservation(
                id=reservation_id, account=address, total=total, created_at=now,
            )
            await self._store.write_ledger(account, reservation, record)

        log.info("Reserved %s DOGE on %s (%s)", total, address, reservation_id)
        return account

    async def release(
        self, reservation_id: str, record: Transaction | None = None
    ) -> Account:
        """Return an open reservation to the available balance."""
        return await self._settle(
            reservation_id, ReservationState.RELEASED, ZERO, record,
        )

    async def commit_withdrawal(
        self,
        reservation_id: str,
        net_amount: Decimal,
        record: Transaction | None = None,
    ) -> Account:
        """Consume an open reservation: the funds have left for good."""
        return await self._settle(
            reservation_id, ReservationState.COMMITTED, net_amount, record,
        )

    async def _settle(
        self,
        reservation_id: str,
        outcome: ReservationState,
        net_amount: Decimal,
        record: Transaction | None,
    ) -> Account:
        found = await self._store.get_reservation(reservation_id)
        if found is None:
            raise _violation(f"settling unknown reservation {reservation_id}")

        async with self._locks.hold(found.account), self._store.atomic():
            # Re-read: another settle may have won the race
            reservation = await self._store.get_reservation(reservation_id)
            if reservation is None or reservation.state != ReservationState.OPEN:
                state = reservation.state.value if reservation else "missing"
                raise _violation(
                    f"reservation {reservation_id} is {state}, cannot {outcome.value} again"
                )

            account = await self.get_account(reservation.account)
            now = _now()
            if outcome == ReservationState.RELEASED:
                account = replace(
                    account,
                    available=account.available + reservation.total,
                    pending=account.pending - reservation.total,
                    last_activity=now,
                )
            else:
                if not ZERO < net_amount <= reservation.total:
                    raise _violation(
                        f"commit of {net_amount} against reservation "
                        f"{reservation_id} of {reservation.total}"
                    )
                account = replace(
                    account,
                    pending=account.pending - reservation.total,
                    lifetime_withdrawn=account.lifetime_withdrawn + net_amount,
                    last_activity=now,
                )
            check_account(account)
            reservation = replace(reservation, state=outcome, settled_at=now)
            await self._store.write_ledger(account, reservation, record)

        log.info(
            "Reservation %s %s (%s DOGE on %s)",
            reservation_id, outcome.value, reservation.total, reservation.account,
        )
        return account
