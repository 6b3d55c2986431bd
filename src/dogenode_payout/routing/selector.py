"""Method selector - pure mapping from (address, requested method, availability) to a route."""

from __future__ import annotations

from typing import Callable, Mapping

from dogenode_payout.errors import BackendUnavailable, InvalidDestination
from dogenode_payout.models.config import WithdrawalMethod
from dogenode_payout.routing.addresses import (
    AddressKind,
    classify,
    is_doge_address,
    is_evm_address,
)

AddressValidator = Callable[[str], bool]

# Address grammar accepted by each route
DEFAULT_VALIDATORS: dict[WithdrawalMethod, AddressValidator] = {
    WithdrawalMethod.NODE_DIRECT: is_doge_address,
    WithdrawalMethod.EXPLORER_API: is_doge_address,
    WithdrawalMethod.WRAPPED_TOKEN: is_evm_address,
}

# Native-chain routes in order of preference
_NATIVE_PREFERENCE = (WithdrawalMethod.NODE_DIRECT, WithdrawalMethod.EXPLORER_API)


def select_method(
    address: str,
    requested: WithdrawalMethod | str,
    availability: Mapping[WithdrawalMethod, bool],
    validators: Mapping[WithdrawalMethod, AddressValidator] | None = None,
) -> WithdrawalMethod:
    """Choose the payout route for a destination.

    Rules, in order:
    1. An explicit method validates the address with that method's grammar
       and is used as-is if its backend is available.
    2. 'auto' classifies by prefix: native addresses prefer the node, then
       the explorer API; contract addresses always use the wrapped token.
    3. A resolved method without an available backend is BackendUnavailable.

    Raises InvalidDestination or BackendUnavailable. No I/O.
    """
    validators = validators or DEFAULT_VALIDATORS
    try:
        requested = WithdrawalMethod(requested)
    except ValueError:
        raise InvalidDestination(f"Unsupported withdrawal method: {requested}") from None

    if requested != WithdrawalMethod.AUTO:
        validate = validators.get(requested)
        if validate is None or not validate(address):
            raise InvalidDestination(
                f"Invalid destination address for {requested.value}: {address}"
            )
        if not availability.get(requested, False):
            raise BackendUnavailable(f"Withdrawal method {requested.value} is unavailable")
        return requested

    kind = classify(address)
    if kind == AddressKind.NATIVE:
        if not validators[WithdrawalMethod.NODE_DIRECT](address):
            raise InvalidDestination(f"Invalid Dogecoin address: {address}")
        for method in _NATIVE_PREFERENCE:
            if availability.get(method, False):
                return method
        raise BackendUnavailable("No Dogecoin payout backend is available")

    if kind == AddressKind.CONTRACT:
        if not validators[WithdrawalMethod.WRAPPED_TOKEN](address):
            raise InvalidDestination(f"Invalid wrapped DOGE address: {address}")
        if availability.get(WithdrawalMethod.WRAPPED_TOKEN, False):
            return WithdrawalMethod.WRAPPED_TOKEN
        raise BackendUnavailable("Wrapped DOGE transfer service is unavailable")

    raise InvalidDestination(f"Unrecognized destination address: {address}")
