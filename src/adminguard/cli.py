"""Operator CLI for admin two-factor records."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from rich.console import Console
from rich.table import Table

from adminguard.errors import AdminGuardError

console = Console()

T = TypeVar("T")


def _with_db(fn: Callable[..., Awaitable[T]]) -> T:
    """Run ``fn(manager)`` against Postgres with an open pool."""
    from adminguard.auth.identity import HostedIdentityProvider
    from adminguard.db import close_pool, init_pool
    from adminguard.service import AccessManager
    from adminguard.store import PostgresSecondFactorStore

    async def _run() -> T:
        await init_pool(min_size=1, max_size=2)
        try:
            return await fn(AccessManager(PostgresSecondFactorStore(), HostedIdentityProvider()))
        finally:
            await close_pool()

    try:
        return asyncio.run(_run())
    except AdminGuardError as e:
        console.print(f"[red]{e.message}[/red]")
        raise SystemExit(1) from e


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log at INFO level.")
def main(verbose: bool) -> None:
    """Admin Guard: TOTP second factor for the portal admin area."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


@main.command()
def status() -> None:
    """Show configuration and second-factor policy."""
    from adminguard import config
    from adminguard.config import settings

    console.print("[bold]Admin Guard Status[/bold]")
    console.print(f"  Database: {settings.database_url.split('@')[-1]}")
    console.print(f"  Identity provider: {settings.identity_url}")
    console.print(f"  Issuer: {settings.totp_issuer}")
    console.print(f"  Master key: {'configured' if settings.adminguard_master_key else '[red]missing[/red]'}")
    console.print(f"  TOTP: {config.TOTP_DIGITS} digits, {config.TOTP_PERIOD_SECONDS}s step, "
                  f"+-{config.TOTP_WINDOW} window")
    console.print(f"  Block after: {config.BLOCK_THRESHOLD} failed attempts")
    console.print(f"  Idle timeout: {config.IDLE_TIMEOUT_SECONDS // 60} min")


@main.command("init-db")
def init_db() -> None:
    """Create the database tables."""
    from adminguard.db import ensure_schema

    async def _init(_manager) -> None:
        await ensure_schema()

    _with_db(_init)
    console.print("[green]Schema ready[/green]")


@main.command()
def accounts() -> None:
    """List admin two-factor records."""
    rows = _with_db(lambda m: m.list_accounts())

    table = Table(title="Admin two-factor records")
    table.add_column("User")
    table.add_column("Status")
    table.add_column("Failed", justify="right")
    table.add_column("Last failure")
    colors = {"ready": "green", "pending": "yellow", "blocked": "red"}
    for r in rows:
        last = r.last_failed_at.strftime("%m/%d %H:%M") if r.last_failed_at else "—"
        color = colors.get(r.status, "white")
        table.add_row(r.user_id, f"[{color}]{r.status}[/{color}]", str(r.failed_attempts), last)
    console.print(table)
    console.print(f"  Total: {len(rows)}")


@main.command()
@click.argument("user_id")
def grant(user_id: str) -> None:
    """Add USER_ID to the admin list (unprovisioned)."""
    _with_db(lambda m: m.grant(user_id, actor="cli"))
    console.print(f"[green]Added {user_id}[/green]; provision it to show the QR secret.")


@main.command()
@click.argument("user_id")
@click.option("--name", "account_name", help="Account label shown in the authenticator app.")
@click.option("--force", is_flag=True, help="Replace an existing secret.")
def provision(user_id: str, account_name: str | None, force: bool) -> None:
    """Generate a TOTP secret for USER_ID and show it once."""
    result = _with_db(lambda m: m.provision(user_id, account_name=account_name, force=force, actor="cli"))
    console.print(f"[bold]Secret:[/bold] {result.secret}")
    console.print(f"[bold]URI:[/bold] {result.otpauth_uri}")
    console.print("[yellow]This secret is shown only once. Store it safely.[/yellow]")


@main.command()
@click.argument("user_id")
def unblock(user_id: str) -> None:
    """Clear the block and failure counter for USER_ID."""
    _with_db(lambda m: m.unblock(user_id, actor="cli"))
    console.print(f"[green]Unblocked {user_id}[/green]")


@main.command()
@click.argument("user_id")
@click.confirmation_option(prompt="Remove this user's admin two-factor record?")
def revoke(user_id: str) -> None:
    """Remove USER_ID from the admin list."""
    _with_db(lambda m: m.revoke(user_id, actor="cli"))
    console.print(f"[green]Removed {user_id}[/green]")


@main.command("gen-key")
def gen_key() -> None:
    """Print a new ADMINGUARD_MASTER_KEY value."""
    from adminguard.crypto import generate_key

    console.print(generate_key())


@main.command()
@click.argument("secret")
def code(secret: str) -> None:
    """Print the current code for SECRET (clock troubleshooting)."""
    from adminguard.auth.totp import get_code

    console.print(get_code(secret))


@main.command()
@click.option("--host", default=None)
@click.option("--port", type=int, default=None)
def server(host: str | None, port: int | None) -> None:
    """Start the API server."""
    import uvicorn

    from adminguard.config import settings
    from adminguard.dashboard.app import create_app

    host = host or settings.dashboard_host
    port = port or settings.dashboard_port
    console.print(f"Starting Admin Guard on http://{host}:{port}")
    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
