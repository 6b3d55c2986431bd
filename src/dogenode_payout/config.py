"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
import tomllib
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from dogenode_payout.models.config import (
    ConfirmationConfig,
    ExplorerBackendConfig,
    NodeBackendConfig,
    PayoutConfig,
    WithdrawalPolicyConfig,
    WrappedBackendConfig,
)


class ConfigError(ValueError):
    """A configuration value could not be parsed."""


def _decimal(section: str, key: str, value: Any) -> Decimal:
    # Through str() so a TOML float like 0.1 keeps its written value
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ConfigError(f"[{section}] {key}: not a number: {value!r}") from None
    if not result.is_finite() or result < 0:
        raise ConfigError(f"[{section}] {key}: must be a non-negative number, got {value!r}")
    return result


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "DOGENODE_PAYOUT_",
) -> PayoutConfig:
    """Load payout configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (DOGENODE_PAYOUT_NODE_RPC_PASSWORD, etc.)
        2. TOML config file
        3. Defaults from PayoutConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = PayoutConfig()

    # ── Daemon section ─────────────────────────────────────
    daemon = raw.get("daemon", {})
    if v := daemon.get("log_level"):
        cfg.log_level = str(v)
    if v := daemon.get("dispatch_workers"):
        cfg.dispatch_workers = int(v)
    if v := daemon.get("dispatch_timeout"):
        cfg.dispatch_timeout = int(v)
    if v := daemon.get("health_interval"):
        cfg.health_interval = int(v)
    if v := daemon.get("error_backoff"):
        cfg.error_backoff = int(v)

    # ── Withdrawal policy section ──────────────────────────
    withdrawal = raw.get("withdrawal", {})
    policy = WithdrawalPolicyConfig()
    for key in ("min_amount", "max_amount", "fee_fixed", "fee_rate"):
        if key in withdrawal:
            setattr(policy, key, _decimal("withdrawal", key, withdrawal[key]))
    if policy.min_amount > policy.max_amount:
        raise ConfigError(
            f"[withdrawal] min_amount {policy.min_amount} exceeds max_amount {policy.max_amount}"
        )
    cfg.withdrawal = policy

    # ── Confirmation section ───────────────────────────────
    conf = raw.get("confirmation", {})
    defaults = ConfirmationConfig()
    cfg.confirmation = ConfirmationConfig(
        poll_interval=int(conf.get("poll_interval", defaults.poll_interval)),
        check_timeout=int(conf.get("check_timeout", defaults.check_timeout)),
        max_concurrent_checks=int(
            conf.get("max_concurrent_checks", defaults.max_concurrent_checks)
        ),
        unknown_grace_period=int(
            conf.get("unknown_grace_period", defaults.unknown_grace_period)
        ),
        max_wait=int(conf.get("max_wait", defaults.max_wait)),
    )

    # ── Backend sections ───────────────────────────────────
    node = raw.get("node", {})
    node_defaults = NodeBackendConfig()
    cfg.node = NodeBackendConfig(
        enabled=bool(node.get("enabled", node_defaults.enabled)),
        rpc_url=str(node.get("rpc_url", node_defaults.rpc_url)),
        rpc_user=str(node.get("rpc_user", node_defaults.rpc_user)),
        rpc_password=str(node.get("rpc_password", node_defaults.rpc_password)),
        required_confirmations=int(
            node.get("required_confirmations", node_defaults.required_confirmations)
        ),
        explorer_tx_url=str(node.get("explorer_tx_url", node_defaults.explorer_tx_url)),
    )

    explorer = raw.get("explorer", {})
    explorer_defaults = ExplorerBackendConfig()
    cfg.explorer = ExplorerBackendConfig(
        enabled=bool(explorer.get("enabled", explorer_defaults.enabled)),
        api_url=str(explorer.get("api_url", explorer_defaults.api_url)),
        api_key=str(explorer.get("api_key", explorer_defaults.api_key)),
        required_confirmations=int(
            explorer.get("required_confirmations", explorer_defaults.required_confirmations)
        ),
        explorer_tx_url=str(
            explorer.get("explorer_tx_url", explorer_defaults.explorer_tx_url)
        ),
    )

    wrapped = raw.get("wrapped", {})
    wrapped_defaults = WrappedBackendConfig()
    cfg.wrapped = WrappedBackendConfig(
        enabled=bool(wrapped.get("enabled", wrapped_defaults.enabled)),
        api_url=str(wrapped.get("api_url", wrapped_defaults.api_url)),
        api_key=str(wrapped.get("api_key", wrapped_defaults.api_key)),
        required_confirmations=int(
            wrapped.get("required_confirmations", wrapped_defaults.required_confirmations)
        ),
        explorer_tx_url=str(wrapped.get("explorer_tx_url", wrapped_defaults.explorer_tx_url)),
    )

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)

    # ── Environment variable overrides (highest priority) ──
    if v := os.environ.get(f"{env_prefix}NODE_RPC_URL"):
        cfg.node.rpc_url = v
    if v := os.environ.get(f"{env_prefix}NODE_RPC_USER"):
        cfg.node.rpc_user = v
    if v := os.environ.get(f"{env_prefix}NODE_RPC_PASSWORD"):
        cfg.node.rpc_password = v
    if v := os.environ.get(f"{env_prefix}EXPLORER_API_KEY"):
        cfg.explorer.api_key = v
    if v := os.environ.get(f"{env_prefix}WRAPPED_API_KEY"):
        cfg.wrapped.api_key = v
    if v := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = v
    if v := os.environ.get(f"{env_prefix}LOG_LEVEL"):
        cfg.log_level = v

    # Expand ~ in paths
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg
