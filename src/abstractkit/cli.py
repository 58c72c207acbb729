"""
abstractkit CLI

Command-line interface for the abstractkit Ethereum client toolkit.

Identity = ECDSA/secp256k1 wallet stored in ~/.abstractkit/.env.

Commands:
  whoami      - Show current wallet address
  balance     - Show the native balance of an address
  send        - Send native currency
  batch-send  - Send native currency to several recipients
  sign        - Sign a message (EIP-191)
  verify      - Verify a message signature
  watch       - Stream heads, pending transactions or contract events
  info        - Show configuration
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

import click
from dotenv import load_dotenv

from .errors import AbstractKitError
from .pneuma.rpc import DEFAULT_RPC_URL, HttpClient, get_rpc_url, get_ws_url
from .pneuma.fees import get_gas_buffer_percent
from .sigil.eth import (
    ABSTRACTKIT_ENV,
    generate_eoa,
    get_address,
    load_private_key,
    save_private_key,
)


# ============ Constants ============

VERSION = "0.1.0"


# ============ Banner ============


def _print_banner() -> None:
    border = click.style("  ◆ ═══════════════════════════════════════ ◆", fg="cyan")
    click.echo()
    click.echo(border)
    click.echo()
    click.echo(
        click.style("        A B S T R A C T K I T", fg="bright_white", bold=True)
        + click.style(f"      v{VERSION}", dim=True)
    )
    click.secho("        ─── Ethereum client toolkit ───", fg="cyan")
    click.echo()
    click.echo(border)
    click.echo()


# ============ Main CLI Group ============


@click.group(invoke_without_command=True)
@click.version_option(version=VERSION, prog_name="abstractkit")
@click.option("--verbose", "-v", is_flag=True, help="Log RPC traffic and subscription events")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """abstractkit - Ethereum client toolkit for Abstract."""
    if ABSTRACTKIT_ENV.exists():
        load_dotenv(ABSTRACTKIT_ENV)
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    if ctx.invoked_subcommand is None:
        _print_banner()
        click.echo(ctx.get_help())


# ============ Top-level Commands ============

from .theurgy.send import batch_send, send
from .theurgy.sign import sign, verify
from .theurgy.watch import watch

cli.add_command(send)
cli.add_command(batch_send)
cli.add_command(sign)
cli.add_command(verify)
cli.add_command(watch)


# ============ Identity ============


@cli.command()
def whoami() -> None:
    """Show current wallet identity."""
    try:
        pk = load_private_key()
        address = get_address(pk)
        click.echo(f"Address: {address}")
    except ValueError:
        click.echo("No wallet found.")
        click.echo(f"Set PRIVATE_KEY in the environment or in {ABSTRACTKIT_ENV}.")
        sys.exit(1)


@cli.command()
@click.option("--force", is_flag=True, help="Replace an existing key")
def keygen(force: bool) -> None:
    """Create a wallet key and store it in ~/.abstractkit/.env."""
    if not force:
        try:
            address = get_address(load_private_key(ABSTRACTKIT_ENV))
        except ValueError:
            pass
        else:
            click.echo(f"Wallet already exists: {address}")
            click.echo("Use --force to replace it.")
            return

    pk, address = generate_eoa()
    env_path = save_private_key(pk, ABSTRACTKIT_ENV)
    click.secho(f"Created wallet {address}", fg="green")
    click.echo(f"Key saved to {env_path}")


@cli.command()
@click.argument("address", required=False)
@click.option(
    "--rpc-url",
    envvar="ABSTRACT_RPC_URL",
    default=DEFAULT_RPC_URL,
    help="HTTP RPC URL",
)
def balance(address: Optional[str], rpc_url: str) -> None:
    """Show the balance (wei) of ADDRESS or of the current wallet."""
    if address is None:
        try:
            address = get_address(load_private_key())
        except ValueError as exc:
            click.secho(f"ERROR: {exc}", fg="red")
            sys.exit(1)

    async def _balance() -> int:
        async with HttpClient(rpc_url) as client:
            return await client.balance_at(address)

    try:
        wei = asyncio.run(_balance())
    except AbstractKitError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(exc.exit_code)

    click.echo(f"Address: {address}")
    click.echo(f"Balance: {wei} wei ({wei / 10**18:.6f} ETH)")


# ============ Info ============


@cli.command()
def info() -> None:
    """Show configuration."""
    _print_banner()

    click.secho("  Status ─────────────────────────────────", fg="cyan")
    click.echo()

    try:
        address = get_address(load_private_key())
        address_text = click.style(address, fg="bright_white")
    except ValueError:
        address_text = click.style("not configured", fg="yellow") + click.style(
            "  (set PRIVATE_KEY)", dim=True
        )
    click.echo(click.style("  Address:     ", dim=True) + address_text)
    click.echo(click.style("  RPC:         ", dim=True) + click.style(get_rpc_url(), fg="bright_white"))
    click.echo(click.style("  WebSocket:   ", dim=True) + click.style(get_ws_url(), fg="bright_white"))
    click.echo(
        click.style("  Gas buffer:  ", dim=True)
        + click.style(f"{get_gas_buffer_percent()}%", fg="bright_white")
    )
    click.echo()


# ============ Entry Points ============


def main() -> None:
    """abstractkit CLI entry point."""
    # Ensure UTF-8 output on Windows (for Unicode box-drawing / symbols)
    if sys.platform == "win32":
        try:
            sys.stdout.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
            sys.stderr.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
        except (AttributeError, OSError):
            pass  # Fallback: non-tty
    cli()


if __name__ == "__main__":
    main()
