"""Configuration models for the payout daemon."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class WithdrawalMethod(str, Enum):
    """Payout route for a withdrawal."""

    AUTO = "auto"  # Pick from the destination address shape
    NODE_DIRECT = "node_direct"  # Local dogecoind wallet
    EXPLORER_API = "explorer_api"  # Public chain-query / hosted wallet API
    WRAPPED_TOKEN = "wrapped_token"  # wDOGE transfer service


@dataclass
class WithdrawalPolicyConfig:
    """Amount bounds and fee schedule (DOGE)."""

    min_amount: Decimal = Decimal("10")
    max_amount: Decimal = Decimal("100000")
    fee_fixed: Decimal = Decimal("1")
    fee_rate: Decimal = Decimal("0")  # fraction of the requested amount


@dataclass
class ConfirmationConfig:
    """Confirmation poller settings."""

    poll_interval: int = 30  # seconds between cycles
    check_timeout: int = 15  # seconds per status query
    max_concurrent_checks: int = 5
    unknown_grace_period: int = 600  # seconds a reference may stay unknown
    max_wait: int = 0  # seconds after dispatch before giving up; 0 disables


@dataclass
class NodeBackendConfig:
    """dogecoind JSON-RPC wallet."""

    enabled: bool = False
    rpc_url: str = "http://127.0.0.1:22555"
    rpc_user: str = ""
    rpc_password: str = ""  # loaded from env var DOGENODE_PAYOUT_NODE_RPC_PASSWORD
    required_confirmations: int = 6
    explorer_tx_url: str = "https://dogechain.info/tx/{reference}"


@dataclass
class ExplorerBackendConfig:
    """Public chain-query API with a hosted-wallet payment endpoint."""

    enabled: bool = False
    api_url: str = "https://api.blockcypher.com/v1/doge/main"
    api_key: str = ""
    required_confirmations: int = 6
    explorer_tx_url: str = "https://dogechain.info/tx/{reference}"


@dataclass
class WrappedBackendConfig:
    """Wrapped-DOGE (ERC-20) transfer service."""

    enabled: bool = False
    api_url: str = ""
    api_key: str = ""
    required_confirmations: int = 12
    explorer_tx_url: str = "https://etherscan.io/tx/{reference}"


@dataclass
class PayoutConfig:
    """Complete daemon configuration."""

    # Daemon
    log_level: str = "info"
    dispatch_workers: int = 2
    dispatch_timeout: int = 30  # seconds per backend submit
    health_interval: int = 60  # seconds between backend health probes
    error_backoff: int = 30  # seconds

    # Storage
    db_path: str = "~/.dogenode_payout/state.db"

    withdrawal: WithdrawalPolicyConfig = field(default_factory=WithdrawalPolicyConfig)
    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)
    node: NodeBackendConfig = field(default_factory=NodeBackendConfig)
    explorer: ExplorerBackendConfig = field(default_factory=ExplorerBackendConfig)
    wrapped: WrappedBackendConfig = field(default_factory=WrappedBackendConfig)
