"""Withdrawal pipeline - state machine, dispatch and confirmation tracking."""

from dogenode_payout.withdrawal.orchestrator import WithdrawalOrchestrator
from dogenode_payout.withdrawal.poller import ConfirmationPoller
from dogenode_payout.withdrawal.transitions import WithdrawalStateMachine, can_transition

__all__ = [
    "ConfirmationPoller",
    "WithdrawalOrchestrator",
    "WithdrawalStateMachine",
    "can_transition",
]
