"""Settlement backends - one SettlementBackend implementation per payout route."""

from dogenode_payout.backends.explorer import ExplorerAPIBackend
from dogenode_payout.backends.node import DogecoinNodeBackend
from dogenode_payout.backends.wrapped import WrappedTokenBackend

__all__ = ["DogecoinNodeBackend", "ExplorerAPIBackend", "WrappedTokenBackend"]
