"""Destination address grammar."""

from __future__ import annotations

import re
from enum import Enum

# Mainnet P2PKH: 'D', a version-range char, then 32 base58 chars
_DOGE_RE = re.compile(r"^D[5-9A-HJ-NP-U][1-9A-HJ-NP-Za-km-z]{32}$")
# EVM account holding wrapped DOGE
_EVM_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class AddressKind(str, Enum):
    NATIVE = "native"  # Dogecoin chain
    CONTRACT = "contract"  # smart-contract chain (wDOGE)
    UNKNOWN = "unknown"


def classify(address: str) -> AddressKind:
    """Classify by prefix only. Grammar is checked separately."""
    if address.startswith("D"):
        return AddressKind.NATIVE
    if address.startswith("0x"):
        return AddressKind.CONTRACT
    return AddressKind.UNKNOWN


def is_doge_address(address: str) -> bool:
    return isinstance(address, str) and _DOGE_RE.match(address) is not None


def is_evm_address(address: str) -> bool:
    return isinstance(address, str) and _EVM_RE.match(address) is not None
