"""CLI entry point for the dogenode_payout daemon."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Awaitable, Callable, TypeVar

import click

from dogenode_payout.config import ConfigError, load_config
from dogenode_payout.daemon import PayoutDaemon, run_daemon
from dogenode_payout.errors import PayoutError
from dogenode_payout.interfaces.payout_api import PayoutAPI
from dogenode_payout.models.config import PayoutConfig, WithdrawalMethod

T = TypeVar("T")


def _load(ctx: click.Context) -> PayoutConfig:
    try:
        cfg = load_config(ctx.obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    if not ctx.obj["verbose"]:
        logging.getLogger().setLevel(cfg.log_level.upper())
    return cfg


def _with_service(
    cfg: PayoutConfig,
    action: Callable[[PayoutAPI], Awaitable[T]],
    refresh: bool = False,
) -> T:
    """Open the store, run one service call, close the store.

    Payout errors are reported as ``Error: ...`` with exit status 1.
    """

    async def _main() -> T:
        daemon = PayoutDaemon(cfg)
        await daemon.store.initialize()
        try:
            if refresh:
                await daemon.registry.refresh_all()
            return await action(daemon.service)
        finally:
            await daemon.store.close()

    try:
        return asyncio.run(_main())
    except PayoutError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """dogenode_payout - DOGE earnings ledger and withdrawal payouts."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Daemon ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the payout daemon."""
    cfg = _load(ctx)
    enabled = [name for name in ("node", "explorer", "wrapped") if getattr(cfg, name).enabled]
    if not enabled:
        click.echo("Error: No settlement backend enabled.", err=True)
        click.echo("Set enabled = true in [node], [explorer] or [wrapped].", err=True)
        sys.exit(1)

    click.echo(f"Starting dogenode_payout daemon (backends: {', '.join(enabled)})")
    asyncio.run(run_daemon(cfg))


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show daemon configuration."""
    cfg = _load(ctx)
    w = cfg.withdrawal
    c = cfg.confirmation
    click.echo(f"DB path:       {cfg.db_path}")
    click.echo(f"Workers:       {cfg.dispatch_workers} (timeout {cfg.dispatch_timeout}s)")
    click.echo(f"Withdrawals:   {w.min_amount} - {w.max_amount} DOGE")
    click.echo(f"Fee:           {w.fee_fixed} DOGE + {w.fee_rate * 100}%")
    click.echo(f"Poll interval: {c.poll_interval}s (unknown grace {c.unknown_grace_period}s)")
    click.echo(f"Node RPC:      {cfg.node.rpc_url if cfg.node.enabled else '(disabled)'}")
    click.echo(f"RPC password:  {'***configured***' if cfg.node.rpc_password else '(not set)'}")
    click.echo(f"Explorer API:  {cfg.explorer.api_url if cfg.explorer.enabled else '(disabled)'}")
    click.echo(f"wDOGE service: {cfg.wrapped.api_url if cfg.wrapped.enabled else '(disabled)'}")


@cli.command()
@click.pass_context
def backends(ctx: click.Context) -> None:
    """Probe every enabled settlement backend."""
    cfg = _load(ctx)
    snapshots = _with_service(cfg, lambda s: s.get_backends(), refresh=True)
    if not snapshots:
        click.echo("No settlement backend enabled.")
        return
    for b in snapshots:
        state = "available" if b.available else "UNAVAILABLE"
        click.echo(f"{b.method:<15} {state:<12} finality: {b.required_confirmations} confirmations")


# ── Ledger ─────────────────────────────────────────────


@cli.command()
@click.argument("address")
@click.argument("amount")
@click.pass_context
def earn(ctx: click.Context, address: str, amount: str) -> None:
    """Credit AMOUNT DOGE of earnings to ADDRESS."""
    cfg = _load(ctx)
    balance = _with_service(cfg, lambda s: s.add_earnings(address, amount))
    click.echo(f"Credited {amount} DOGE to {address}")
    click.echo(f"  Available: {balance.available} DOGE")


@cli.command()
@click.argument("account")
@click.argument("to_address")
@click.argument("amount")
@click.option(
    "--method",
    type=click.Choice([m.value for m in WithdrawalMethod]),
    default=WithdrawalMethod.AUTO.value,
    help="Payout route (default: pick from the address)",
)
@click.pass_context
def withdraw(ctx: click.Context, account: str, to_address: str, amount: str, method: str) -> None:
    """Queue a withdrawal of AMOUNT DOGE from ACCOUNT to TO_ADDRESS.

    Funds are reserved immediately; the running daemon dispatches the payout.
    """
    cfg = _load(ctx)
    receipt = _with_service(
        cfg, lambda s: s.request_withdrawal(account, to_address, amount, method), refresh=True,
    )
    click.echo(f"Withdrawal queued: {receipt.transaction_id}")
    click.echo(f"  Amount:   {receipt.amount} DOGE")
    click.echo(f"  Fee:      {receipt.fee} DOGE")
    click.echo(f"  Reserved: {receipt.total} DOGE")
    click.echo(f"  Method:   {receipt.method.value}")
    click.echo(f"  ETA:      {receipt.estimated_time}")


@cli.command()
@click.argument("transaction_id")
@click.pass_context
def tx(ctx: click.Context, transaction_id: str) -> None:
    """Show the status of a withdrawal."""
    cfg = _load(ctx)
    st = _with_service(cfg, lambda s: s.get_withdrawal_status(transaction_id))
    click.echo(f"Transaction:   {st.transaction_id}")
    click.echo(f"Status:        {st.status.value}")
    click.echo(f"Confirmations: {st.confirmations}")
    if st.backend_reference:
        click.echo(f"Reference:     {st.backend_reference}")
    if st.explorer_url:
        click.echo(f"Explorer:      {st.explorer_url}")
    if st.failure_reason:
        click.echo(f"Reason:        {st.failure_reason}")


@cli.command()
@click.argument("address")
@click.pass_context
def balance(ctx: click.Context, address: str) -> None:
    """Show the balance of an account."""
    cfg = _load(ctx)
    b = _with_service(cfg, lambda s: s.get_balance(address))
    click.echo(f"Address:            {b.address}")
    click.echo(f"Available:          {b.available} DOGE")
    click.echo(f"Pending:            {b.pending} DOGE")
    click.echo(f"Lifetime earned:    {b.lifetime_earned} DOGE")
    click.echo(f"Lifetime withdrawn: {b.lifetime_withdrawn} DOGE")
    click.echo(f"Last activity:      {b.last_activity or '-'}")


@cli.command()
@click.argument("address")
@click.option("--limit", type=int, default=20, help="Rows per page")
@click.option("--offset", type=int, default=0, help="Rows to skip")
@click.pass_context
def history(ctx: click.Context, address: str, limit: int, offset: int) -> None:
    """List the transactions of an account, newest first."""
    cfg = _load(ctx)
    page = _with_service(cfg, lambda s: s.get_transactions(address, limit, offset))
    if not page.transactions:
        click.echo("No transactions.")
        return
    for t in page.transactions:
        ref = t.backend_reference or ""
        click.echo(
            f"{t.created_at[:19]}  {t.type:<10} {t.amount:>18} DOGE  {t.status:<10} {ref[:16]}"
        )
    click.echo(f"\n{offset + len(page.transactions)} of {page.total}")


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show ledger-wide totals."""
    cfg = _load(ctx)
    s = _with_service(cfg, lambda svc: svc.get_stats())
    click.echo(f"Accounts:           {s.total_accounts}")
    click.echo(f"Active (24h):       {s.active_accounts_24h}")
    click.echo(f"Transactions:       {s.total_transactions}")
    click.echo(f"Completed volume:   {s.total_volume} DOGE")


@cli.command()
@click.option("--limit", type=int, default=20, help="Number of entries")
@click.pass_context
def activity(ctx: click.Context, limit: int) -> None:
    """Show the recent audit log."""
    cfg = _load(ctx)
    entries = _with_service(cfg, lambda s: s.get_recent_activity(limit))
    if not entries:
        click.echo("No activity.")
        return
    for e in entries:
        click.echo(f"{e.timestamp[:19]}  {e.event_type:<22} {e.message}")


if __name__ == "__main__":
    cli()
