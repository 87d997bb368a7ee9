"""
x402 gateway operator CLI.

Usage:
    x402-gateway [OPTIONS] COMMAND [ARGS]...

Setup and recovery tooling. ``set-policy`` is the only command that sends a
transaction and needs X402_SIGNER_PRIVATE_KEY plus X402_ALLOW_POLICY_WRITES.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.table import Table

from .chain import registry
from .config import load_settings
from .exceptions import GatewayException
from .gateway import Gateway, build_gateway
from .logging_config import setup_logging

console = Console()

T = TypeVar("T")


def _run(ctx: click.Context, action: Callable[[Gateway], Awaitable[T]]) -> T:
    """Build a gateway, run ``action`` against it and always close it."""

    async def _main() -> T:
        gateway = build_gateway(ctx.obj["settings"])
        try:
            return await action(gateway)
        finally:
            await gateway.close()

    try:
        return asyncio.run(_main())
    except GatewayException as e:
        console.print(f"[red]Error ({e.error_code}): {e.message}[/red]")
        ctx.exit(1)


def _format_ts(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


@click.group()
@click.version_option(package_name="x402-gateway", message="%(prog)s %(version)s")
@click.option("--env-file", default=None, help="Path to a .env file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, env_file: Optional[str], verbose: bool):
    """x402 gateway - setup, inspection and recovery commands."""
    ctx.ensure_object(dict)
    settings = load_settings(env_file)
    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_format=settings.log_json and not verbose,
    )
    ctx.obj["settings"] = settings


@cli.command("set-policy")
@click.option("--daily-limit", required=True, type=int, help="Daily spend limit (smallest unit)")
@click.option("--max-per-tx", required=True, type=int, help="Per-transaction cap (smallest unit)")
@click.option("--policy-hash", default=None, help="Explicit bytes32 policy hash (0x...)")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def set_policy(ctx, daily_limit: int, max_per_tx: int, policy_hash: Optional[str], yes: bool):
    """Write the signer's own spend policy on-chain (consumes gas)."""
    if not yes:
        click.confirm(
            f"Set policy daily={daily_limit} per_tx={max_per_tx} on-chain?",
            abort=True,
        )

    receipt = _run(
        ctx,
        lambda gw: gw.administrator.set_policy(daily_limit, max_per_tx, policy_hash),
    )
    status = receipt.get("status")
    tx_hash = receipt.get("transactionHash")
    tx_hex = tx_hash.hex() if hasattr(tx_hash, "hex") else str(tx_hash)
    if status == 1:
        console.print(f"[green]✓ Policy set in block {receipt.get('blockNumber')}[/green]")
    else:
        console.print(f"[red]✗ setPolicy reverted (status={status})[/red]")
    console.print(f"Transaction: [cyan]{tx_hex}[/cyan]")


@cli.command("show-policy")
@click.argument("agent")
@click.pass_context
def show_policy(ctx, agent: str):
    """Show an agent's on-chain policy and today's off-chain spend."""

    async def action(gw: Gateway):
        policy = await gw.chain.execute(
            lambda: registry.get_policy(gw.connection, agent),
            label="getPolicy",
        )
        spent = await gw.policy_gate.spent_today(agent)
        return policy, spent

    policy, spent = _run(ctx, action)

    table = Table(title=f"Policy for {agent}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Daily limit", str(policy.daily_spend_limit))
    table.add_row("Max per transaction", str(policy.max_per_transaction))
    table.add_row("Spent today (UTC)", str(spent))
    table.add_row("Policy hash", policy.policy_hash)
    table.add_row("Frozen", "[red]yes[/red]" if policy.is_frozen else "[green]no[/green]")
    table.add_row("Last updated", _format_ts(policy.last_updated) if policy.last_updated else "never")
    console.print(table)


@cli.command("verify-merchant")
@click.argument("merchant_id")
@click.pass_context
def verify_merchant(ctx, merchant_id: str):
    """Check that a merchant id resolves to an active on-chain wallet."""
    record = _run(ctx, lambda gw: gw.identity.verify(merchant_id))
    console.print(f"[green]✓ {merchant_id} is registered[/green]")
    console.print(f"Wallet: [cyan]{record.wallet}[/cyan]")
    if record.metadata_uri:
        console.print(f"Metadata: {record.metadata_uri}")


@cli.command()
@click.argument("address")
@click.pass_context
def snapshot(ctx, address: str):
    """Take a wallet snapshot and append it to the yield history."""

    async def action(gw: Gateway):
        snap = await gw.watcher.snapshot(address)
        await gw.accountant.record(snap)
        return snap

    snap = _run(ctx, action)

    table = Table(title=f"Snapshot {address}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Vault shares", str(snap.shares))
    table.add_row("Underlying value", str(snap.underlying_value))
    table.add_row("Stable balance", str(snap.stable_balance))
    table.add_row("Native balance", str(snap.native_balance))
    table.add_row("Exchange rate", str(snap.exchange_rate))
    table.add_row("Taken at", _format_ts(snap.timestamp))
    console.print(table)


@cli.command("yield-report")
@click.argument("agent")
@click.option("--vault", default=None, help="Vault address (default: X402_VAULT_ADDRESS)")
@click.pass_context
def yield_report(ctx, agent: str, vault: Optional[str]):
    """Show yield between the latest snapshots and across the kept window."""
    vault = vault or ctx.obj["settings"].vault_address

    async def action(gw: Gateway):
        history = await gw.accountant.history(agent, vault)
        latest = await gw.accountant.latest_delta(agent, vault)
        total = await gw.accountant.total_delta(agent, vault)
        return history, latest, total

    history, latest, total = _run(ctx, action)

    if latest is None or total is None:
        console.print(f"[dim]{len(history)} snapshot(s) recorded; need at least 2 for a report[/dim]")
        return

    table = Table(title=f"Yield for {agent}")
    table.add_column("Window", style="cyan")
    table.add_column("Δ underlying", justify="right")
    table.add_column("Δ shares", justify="right")
    table.add_column("Seconds", justify="right")
    for label, delta in (("latest", latest), ("kept history", total)):
        style = "red" if delta.is_loss else "green"
        table.add_row(
            label,
            f"[{style}]{delta.delta_underlying}[/{style}]",
            str(delta.delta_shares),
            str(delta.delta_time_sec),
        )
    console.print(table)
    console.print(f"[dim]{len(history)} snapshot(s) kept[/dim]")


@cli.command()
@click.option("--once", is_flag=True, help="Run a single snapshot pass and exit")
@click.pass_context
def monitor(ctx, once: bool):
    """Snapshot X402_WATCHED_ADDRESSES on the configured interval."""

    async def action(gw: Gateway):
        yield_monitor = gw.yield_monitor()
        if not yield_monitor.addresses:
            console.print("[yellow]No watched addresses configured (X402_WATCHED_ADDRESSES)[/yellow]")
            return
        if once:
            summary = await yield_monitor.run_once()
            console.print(f"Recorded {summary.recorded}/{len(yield_monitor.addresses)} snapshot(s)")
            return
        await yield_monitor.start()
        console.print(
            f"[green]Monitoring {len(yield_monitor.addresses)} wallet(s) "
            f"every {yield_monitor.interval_seconds}s (Ctrl+C to stop)[/green]"
        )
        try:
            await asyncio.Event().wait()
        finally:
            await yield_monitor.stop()

    try:
        _run(ctx, action)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")


if __name__ == "__main__":
    cli()
