"""Withdrawal policy - amount parsing, bounds and fee schedule."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from dogenode_payout.errors import InvalidAmount
from dogenode_payout.models.amounts import KOINU, ZERO, quantize
from dogenode_payout.models.config import WithdrawalPolicyConfig
from dogenode_payout.models.records import FeeQuote

log = logging.getLogger(__name__)

# Upper bound for a single earnings credit, exclusive
MAX_EARNING = Decimal("1000000")


def parse_amount(value: Decimal | str | int | float) -> Decimal:
    """Turn user input into a positive koinu-exact Decimal.

    Floats are converted through their shortest repr, so 0.1 stays 0.1.
    Raises InvalidAmount for anything else.
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    try:
        amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Invalid amount: {value!r}") from None

    if not amount.is_finite():
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if amount <= ZERO:
        raise InvalidAmount(f"Amount must be positive, got {amount}")
    if amount.normalize().as_tuple().exponent < KOINU.as_tuple().exponent:
        raise InvalidAmount(f"Amount {amount} has more than 8 decimal places")
    try:
        return quantize(amount)
    except InvalidOperation:
        raise InvalidAmount(f"Amount out of range: {amount}") from None


class WithdrawalPolicy:
    """Evaluates requested amounts against configured bounds.

    Checks:
    1. Amount parses to a positive koinu-exact value
    2. min_amount <= amount <= max_amount
    3. fee = fee_fixed + amount * fee_rate, charged on top of the amount
    """

    def __init__(self, config: WithdrawalPolicyConfig) -> None:
        self._config = config

    @property
    def min_amount(self) -> Decimal:
        return self._config.min_amount

    @property
    def max_amount(self) -> Decimal:
        return self._config.max_amount

    def fee_for(self, amount: Decimal) -> Decimal:
        return quantize(self._config.fee_fixed + amount * self._config.fee_rate)

    def evaluate(self, requested: Decimal | str | int | float) -> FeeQuote:
        """Validate the amount and price the withdrawal. Raises InvalidAmount."""
        amount = parse_amount(requested)

        if amount < self._config.min_amount:
            raise InvalidAmount(
                f"Minimum withdrawal is {self._config.min_amount} DOGE, got {amount}"
            )
        if amount > self._config.max_amount:
            raise InvalidAmount(
                f"Maximum withdrawal is {self._config.max_amount} DOGE, got {amount}"
            )

        fee = self.fee_for(amount)
        quote = FeeQuote(amount=amount, fee=fee, net_amount=amount, total=amount + fee)
        log.debug("Quoted withdrawal: %s + fee %s = %s", amount, fee, quote.total)
        return quote


def check_earning_amount(value: Decimal | str | int | float) -> Decimal:
    """Validate an earnings credit: 0 < amount < MAX_EARNING."""
    amount = parse_amount(value)
    if amount >= MAX_EARNING:
        raise InvalidAmount(f"Earning must be below {MAX_EARNING} DOGE, got {amount}")
    return amount
