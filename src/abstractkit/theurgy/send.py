"""
Theurgy Send - Submit native-currency transfers from the local wallet.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Optional

import click

from ..errors import AbstractKitError, CompoundTransactionError
from ..pneuma.fees import FeeEstimator
from ..pneuma.rpc import DEFAULT_RPC_URL, HttpClient
from ..pneuma.tx import SignedTransaction, TransactionBuilder
from ..sigil.eth import Wallet, get_wallet
from ..utils import to_bytes


def _load_wallet() -> Wallet:
    try:
        return get_wallet()
    except ValueError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(1)


def _parse_recipient(spec: str) -> tuple[str, int]:
    """Parse ``ADDR:WEI``."""
    address, sep, amount = spec.partition(":")
    if not sep:
        raise click.BadParameter(f"expected ADDR:WEI, got {spec!r}")
    try:
        return address, int(amount, 0)
    except ValueError:
        raise click.BadParameter(f"invalid amount in {spec!r}")


def _echo_tx(signed: SignedTransaction) -> None:
    click.echo(f"  TX: {signed.hash}  nonce={signed.nonce}  to={signed.to}  value={signed.value}")


rpc_url_option = click.option(
    "--rpc-url",
    envvar="ABSTRACT_RPC_URL",
    default=DEFAULT_RPC_URL,
    help="HTTP RPC URL",
)
gas_buffer_option = click.option(
    "--gas-buffer",
    type=click.IntRange(min=0),
    default=None,
    help="Gas buffer percent (default: ABSTRACTKIT_GAS_BUFFER_PERCENT or 10)",
)


@click.command()
@click.option("--to", "to", required=True, help="Recipient address")
@click.option("--value", default=0, type=int, help="Value in wei")
@click.option("--data", default="", help="Hex calldata")
@click.option("--max-fee", default=None, type=int, help="Fee cap in wei (used when above base fee + tip)")
@gas_buffer_option
@rpc_url_option
def send(
    to: str,
    value: int,
    data: str,
    max_fee: Optional[int],
    gas_buffer: Optional[int],
    rpc_url: str,
) -> None:
    """Send a transaction from your wallet."""
    wallet = _load_wallet()

    click.echo(f"  Sender: {wallet.address}")
    click.echo(f"  Target: {to}")
    if value > 0:
        click.echo(f"  Value:  {value} wei")
    click.echo("")

    async def _send() -> SignedTransaction:
        async with HttpClient(rpc_url) as client:
            builder = TransactionBuilder(
                client, wallet, fees=FeeEstimator(client, gas_buffer)
            )
            request = builder.request(to, value, to_bytes(data) if data else b"")
            return await builder.send(request, fee_cap=max_fee)

    try:
        signed = asyncio.run(_send())
    except (AbstractKitError, ValueError) as exc:
        click.secho(f"Transaction failed: {exc}", fg="red")
        sys.exit(getattr(exc, "exit_code", 1))

    click.secho("SUCCESS: Transaction submitted", fg="green")
    _echo_tx(signed)


@click.command("batch-send")
@click.option(
    "--to",
    "recipients",
    multiple=True,
    required=True,
    help="Recipient as ADDR:WEI (repeatable)",
)
@gas_buffer_option
@rpc_url_option
def batch_send(recipients: tuple[str, ...], gas_buffer: Optional[int], rpc_url: str) -> None:
    """Send native currency to several recipients, one transaction each."""
    parsed = [_parse_recipient(spec) for spec in recipients]
    wallet = _load_wallet()

    async def _batch() -> list[SignedTransaction]:
        async with HttpClient(rpc_url) as client:
            builder = TransactionBuilder(
                client, wallet, fees=FeeEstimator(client, gas_buffer)
            )
            return await builder.batch_send(
                [address for address, _ in parsed], [amount for _, amount in parsed]
            )

    try:
        sent = asyncio.run(_batch())
    except CompoundTransactionError as exc:
        click.secho(f"Batch failed: {exc}", fg="red")
        if exc.completed:
            click.echo(f"  Submitted before the failure ({len(exc.completed)}):")
            for signed in exc.completed:
                _echo_tx(signed)
        sys.exit(exc.exit_code)
    except (AbstractKitError, ValueError) as exc:
        click.secho(f"Batch failed: {exc}", fg="red")
        sys.exit(getattr(exc, "exit_code", 1))

    click.secho(f"SUCCESS: {len(sent)} transaction(s) submitted", fg="green")
    for signed in sent:
        _echo_tx(signed)
