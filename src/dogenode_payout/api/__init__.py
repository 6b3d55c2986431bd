"""API components - the payout service surface."""

from dogenode_payout.api.service import PayoutService

__all__ = ["PayoutService"]
