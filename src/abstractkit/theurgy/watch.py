"""
Theurgy Watch - Stream push subscriptions to the terminal.

Runs until interrupted (Ctrl-C), until ``--count`` items were printed, or
until the subscription terminates with an error.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Awaitable, Callable, Optional

import click

from ..errors import AbstractKitError
from ..pneuma.abi import MINIMAL_ERC20_ABI, MINIMAL_ERC721_ABI, load_abi
from ..pneuma.events import BlockHeader, DecodedEvent
from ..pneuma.rpc import DEFAULT_WS_URL
from ..pneuma.subscriptions import Subscription, SubscriptionManager, SubscriptionState
from ..pneuma.ws import dial_ws
from ..utils import is_address

Opener = Callable[[SubscriptionManager, Callable[[Any], None]], Awaitable[Subscription]]

BUILTIN_ABIS = {"erc20": MINIMAL_ERC20_ABI, "erc721": MINIMAL_ERC721_ABI}


def describe(item: Any) -> str:
    """One-line rendering of a subscription item."""
    if isinstance(item, BlockHeader):
        return f"block {item.number} {item.hash} ts={item.timestamp}"
    if isinstance(item, DecodedEvent):
        args = " ".join(f"{k}={v}" for k, v in item.args.items())
        where = f" block={item.log.block_number}" if item.log is not None else ""
        removed = " (removed)" if item.log is not None and item.log.removed else ""
        return f"{item.kind} {args}{where}{removed}"
    return str(item)


def parse_filter_value(value: str) -> Any:
    """Addresses stay strings, numbers become ints, anything else stays text."""
    if is_address(value):
        return value
    try:
        return int(value, 0)
    except ValueError:
        return value


async def run_watch(ws_url: str, opener: Opener, count: Optional[int]) -> None:
    received = 0
    enough = asyncio.Event()

    def handler(item: Any) -> None:
        nonlocal received
        click.echo(describe(item))
        received += 1
        if count and received >= count:
            enough.set()

    async with await dial_ws(ws_url) as client:
        async with SubscriptionManager(client) as manager:
            subscription = await opener(manager, handler)
            ended = asyncio.create_task(subscription.wait())
            stopped = asyncio.create_task(enough.wait())
            try:
                await asyncio.wait({ended, stopped}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (ended, stopped):
                    task.cancel()
            terminal = subscription.terminated

    if terminal is not None and terminal.state is SubscriptionState.ERRORED:
        raise terminal.error


def _run(ws_url: str, opener: Opener, count: Optional[int]) -> None:
    try:
        asyncio.run(run_watch(ws_url, opener, count))
    except KeyboardInterrupt:
        click.echo("")
    except AbstractKitError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(exc.exit_code)


ws_url_option = click.option(
    "--ws-url",
    envvar="ABSTRACT_WS_URL",
    default=DEFAULT_WS_URL,
    help="WebSocket RPC URL",
)
count_option = click.option(
    "--count", "-n", type=click.IntRange(min=1), default=None, help="Stop after N items"
)


@click.group()
def watch() -> None:
    """Stream new heads, pending transactions or contract events."""


@watch.command()
@ws_url_option
@count_option
def heads(ws_url: str, count: Optional[int]) -> None:
    """Print every new block header."""
    _run(ws_url, lambda manager, handler: manager.subscribe_new_heads(handler), count)


@watch.command()
@ws_url_option
@count_option
def pending(ws_url: str, count: Optional[int]) -> None:
    """Print the hash of every pending transaction."""
    _run(ws_url, lambda manager, handler: manager.subscribe_pending_transactions(handler), count)


@watch.command()
@click.option("--contract", required=True, help="Emitting contract address")
@click.option("--event", "event_name", required=True, help="Event name, e.g. Transfer")
@click.option(
    "--abi",
    "abi_source",
    default="erc20",
    help="ABI: 'erc20', 'erc721' or path to an ABI / artifact JSON file",
)
@click.option(
    "--filter",
    "filter_specs",
    multiple=True,
    help="Indexed parameter filter NAME=VALUE (repeatable; repeated names are OR-ed)",
)
@ws_url_option
@count_option
def events(
    contract: str,
    event_name: str,
    abi_source: str,
    filter_specs: tuple[str, ...],
    ws_url: str,
    count: Optional[int],
) -> None:
    """Print decoded contract events."""
    try:
        abi = BUILTIN_ABIS.get(abi_source.lower()) or load_abi(abi_source)
    except (OSError, ValueError) as exc:
        click.secho(f"ERROR: cannot load ABI: {exc}", fg="red")
        sys.exit(1)

    filters: dict[str, list[Any]] = {}
    for spec in filter_specs:
        name, sep, value = spec.partition("=")
        if not sep:
            raise click.BadParameter(f"expected NAME=VALUE, got {spec!r}", param_hint="--filter")
        filters.setdefault(name, []).append(parse_filter_value(value))

    async def opener(manager: SubscriptionManager, handler: Callable[[Any], None]) -> Subscription:
        return await manager.watch_contract_event(contract, abi, event_name, filters, handler)

    try:
        _run(ws_url, opener, count)
    except ValueError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(1)
