"""Test data factories: addresses, configs and records."""

from __future__ import annotations

from decimal import Decimal

from dogenode_payout.models.config import (
    ConfirmationConfig,
    PayoutConfig,
    WithdrawalMethod,
    WithdrawalPolicyConfig,
)
from dogenode_payout.models.records import (
    Transaction,
    TransactionStatus,
    TransactionType,
    new_transaction_id,
)

# Valid mainnet P2PKH addresses
DOGE_ADDR = "DH5yaieqoZN36fDVciNyRueRGvGLR3mr7L"
DOGE_ADDR_2 = "DQkwDpRYUyNNnoEZDf5Cb3QVazh4FuPRs9"
DOGE_ADDR_3 = "DTnt7VZqR5ofHhAxZuDy4m3PhSjKFXpw3e"

EVM_ADDR = "0x52908400098527886E0F7030069857D2E4169EE7"

NODE_ACCOUNT = DOGE_ADDR


def make_test_config(**overrides) -> PayoutConfig:
    """Build a PayoutConfig suitable for testing."""
    defaults = dict(
        log_level="debug",
        dispatch_workers=2,
        dispatch_timeout=1,
        health_interval=1,
        error_backoff=1,
        db_path=":memory:",
        withdrawal=WithdrawalPolicyConfig(
            min_amount=Decimal("10"),
            max_amount=Decimal("100000"),
            fee_fixed=Decimal("1"),
            fee_rate=Decimal("0"),
        ),
        confirmation=ConfirmationConfig(
            poll_interval=1,
            check_timeout=1,
            max_concurrent_checks=5,
            unknown_grace_period=600,
            max_wait=0,
        ),
    )
    defaults.update(overrides)
    return PayoutConfig(**defaults)


def make_withdrawal(
    account: str = NODE_ACCOUNT,
    amount: str = "50",
    fee: str = "1",
    to_address: str = DOGE_ADDR_2,
    method: WithdrawalMethod = WithdrawalMethod.NODE_DIRECT,
    status: TransactionStatus = TransactionStatus.PENDING,
    created_at: str = "2026-01-01T00:00:00+00:00",
    **overrides,
) -> Transaction:
    tx = Transaction(
        id=new_transaction_id("wd"),
        account=account,
        type=TransactionType.WITHDRAWAL,
        amount=Decimal(amount),
        fee=Decimal(fee),
        net_amount=Decimal(amount),
        method=method,
        to_address=to_address,
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )
    for key, value in overrides.items():
        setattr(tx, key, value)
    return tx


def make_earning(
    account: str = NODE_ACCOUNT,
    amount: str = "100",
    created_at: str = "2026-01-01T00:00:00+00:00",
) -> Transaction:
    return Transaction(
        id=new_transaction_id("earn"),
        account=account,
        type=TransactionType.EARNING,
        amount=Decimal(amount),
        net_amount=Decimal(amount),
        status=TransactionStatus.COMPLETED,
        created_at=created_at,
        updated_at=created_at,
    )
