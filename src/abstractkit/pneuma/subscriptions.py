"""
Push subscriptions: new heads, pending transactions and contract logs.

Each ``Subscription`` runs one asyncio task that pulls payloads from its own
transport queue, decodes them and hands them to the handler in arrival
order. Payloads that fail to decode are logged and dropped, and so are
handler exceptions; neither ends the stream. A transport error moves the
subscription to ``ERRORED``. There is no automatic reconnect: the owner
receives a ``SubscriptionTerminated`` event and decides what to do.

Usage:
    async with SubscriptionManager(ws_client, on_terminated=print) as manager:
        await manager.watch_contract_event(token, abi, "Transfer", {"to": [me]}, handle)
        ...
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from ..errors import DecodeError, SubscriptionError, TransportError
from .events import (
    DecodedEvent,
    Log,
    event_decoder,
    parse_header,
    parse_log,
    parse_transaction_hash,
)
from .filters import FilterSpec, compile_filter
from .rpc import Capability, Client

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[None, Awaitable[None]]]
Decoder = Callable[[Any], Any]
TerminationCallback = Callable[["SubscriptionTerminated"], None]


class SubscriptionState(str, enum.Enum):
    CREATED = "created"
    ACTIVE = "active"
    CLOSED = "closed"
    ERRORED = "errored"


@dataclass(frozen=True)
class SubscriptionTerminated:
    """Terminal event of a subscription. ``error`` is set when ``ERRORED``."""

    name: str
    state: SubscriptionState
    error: Optional[BaseException] = None


class Subscription:
    """
    One decoded push stream feeding one handler.

    Args:
        name: Label used in logs and in the terminal event
        decoder: Turns a raw payload into the value passed to ``handler``;
            raising ``DecodeError`` drops the payload, returning ``None``
            skips it silently
        handler: Plain or ``async`` callable
        on_terminated: Called once with the terminal event
    """

    def __init__(
        self,
        name: str,
        decoder: Decoder,
        handler: Handler,
        *,
        on_terminated: Optional[TerminationCallback] = None,
    ) -> None:
        self.name = name
        self.state = SubscriptionState.CREATED
        self._decoder = decoder
        self._handler = handler
        self._on_terminated = on_terminated
        self._transport: Any = None
        self._task: Optional[asyncio.Task[None]] = None
        self._opening: Optional[asyncio.Future[Any]] = None
        self._opened = asyncio.Event()
        self._closing = False
        self._done = asyncio.Event()
        self._terminated: Optional[SubscriptionTerminated] = None

    def __repr__(self) -> str:
        return f"Subscription(name={self.name!r}, state={self.state.value!r})"

    @property
    def terminated(self) -> Optional[SubscriptionTerminated]:
        return self._terminated

    async def start(self, client: Client, kind: str, *params: Any) -> None:
        """Open the transport stream and start dispatching.

        A ``cancel()`` issued while the stream is still opening abandons the
        open; the stream is released if the node had already created it.
        """
        if self.state is not SubscriptionState.CREATED or self._opening is not None:
            raise SubscriptionError(f"already {self.state.value}", operation=self.name)
        if self._closing:
            raise SubscriptionError("closed before opening", operation=self.name)
        self._opening = asyncio.ensure_future(client.subscribe(kind, *params))
        try:
            try:
                await asyncio.wait([self._opening])
            except asyncio.CancelledError:
                self._opening.cancel()
                raise
            if self._opening.cancelled():
                raise SubscriptionError("closed while opening", operation=self.name)
            transport = self._opening.result()
            if self._closing:
                self._transport = transport
                await self._release()
                raise SubscriptionError("closed while opening", operation=self.name)
            self.attach(transport)
        finally:
            self._opened.set()

    def attach(self, transport: Any) -> None:
        """Start dispatching from an already open transport stream."""
        self._transport = transport
        self.state = SubscriptionState.ACTIVE
        self._task = asyncio.create_task(self._run(), name=f"subscription-{self.name}")
        logger.info("subscription %s active", self.name)

    async def cancel(self) -> None:
        """Stop the stream; no handler runs once this returns."""
        self._closing = True
        if self._task is None:
            if self._opening is not None:
                self._opening.cancel()
                await self._opened.wait()
            if self._terminated is None:
                self._finish(SubscriptionState.CLOSED, None)
            return
        if not self._task.done():
            self._task.cancel()
        await asyncio.wait([self._task])
        # A task cancelled before its first step never enters _run.
        if self._terminated is None:
            await self._release()
            self._finish(SubscriptionState.CLOSED, None)

    async def wait(self) -> SubscriptionTerminated:
        """Wait until the subscription ends and return its terminal event."""
        await self._done.wait()
        assert self._terminated is not None
        return self._terminated

    # ---------------------------------------------------------------------
    # Dispatch loop
    # ---------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            await self._pump()
        except asyncio.CancelledError:
            await self._release()
            self._finish(SubscriptionState.CLOSED, None)
            raise
        except (SubscriptionError, TransportError) as exc:
            logger.error("subscription %s failed: %s", self.name, exc)
            await self._release()
            self._finish(SubscriptionState.ERRORED, exc)
        except Exception as exc:
            logger.exception("subscription %s crashed", self.name)
            error = SubscriptionError(str(exc), operation=self.name)
            error.__cause__ = exc
            await self._release()
            self._finish(SubscriptionState.ERRORED, error)
        else:
            await self._release()
            self._finish(SubscriptionState.CLOSED, None)

    async def _pump(self) -> None:
        while True:
            payload = await self._transport.next()
            try:
                item = self._decoder(payload)
            except DecodeError as exc:
                logger.warning("subscription %s dropped payload: %s", self.name, exc)
                continue
            if item is None:
                continue
            if self._closing:
                return
            await self._deliver(item)

    async def _deliver(self, item: Any) -> None:
        try:
            result = self._handler(item)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("subscription %s handler failed", self.name)

    async def _release(self) -> None:
        if self._transport is None:
            return
        try:
            await self._transport.unsubscribe()
        except Exception as exc:
            logger.warning("subscription %s unsubscribe failed: %s", self.name, exc)

    def _finish(self, state: SubscriptionState, error: Optional[BaseException]) -> None:
        self.state = state
        self._terminated = SubscriptionTerminated(self.name, state, error)
        self._done.set()
        logger.info("subscription %s %s", self.name, state.value)
        if self._on_terminated is not None:
            try:
                self._on_terminated(self._terminated)
            except Exception:
                logger.exception("on_terminated callback failed for %s", self.name)


class SubscriptionManager:
    """
    Owns the subscriptions opened over one subscribe-capable client.

    Args:
        client: Client with the ``subscribe`` capability (``WsClient``)
        on_terminated: Called with each subscription's terminal event

    Raises:
        CapabilityError: ``client`` cannot serve subscriptions
    """

    def __init__(
        self, client: Client, *, on_terminated: Optional[TerminationCallback] = None
    ) -> None:
        client.require(Capability.SUBSCRIBE, "SubscriptionManager")
        self.client = client
        self.on_terminated = on_terminated
        self._subscriptions: list[Subscription] = []
        self._counter = itertools.count(1)
        self._closed = False

    async def __aenter__(self) -> "SubscriptionManager":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    async def subscribe_new_heads(self, handler: Handler) -> Subscription:
        """Deliver a ``BlockHeader`` for every new block."""
        return await self._open("newHeads", (), parse_header, handler)

    async def subscribe_pending_transactions(self, handler: Handler) -> Subscription:
        """Deliver the hash of every transaction entering the pool."""
        return await self._open("newPendingTransactions", (), parse_transaction_hash, handler)

    async def subscribe_logs(
        self,
        filter_spec: FilterSpec,
        handler: Handler,
        decoder: Optional[Callable[[Log], Any]] = None,
    ) -> Subscription:
        """
        Deliver logs matching ``filter_spec``.

        The node filters server-side; logs are matched again locally so a
        lenient node cannot leak unrelated events. With ``decoder`` the
        handler receives its result instead of the ``Log``.
        """

        def _decode(raw: Any) -> Any:
            log = parse_log(raw)
            if not filter_spec.matches(log):
                logger.debug("log from %s outside filter, skipped", log.address)
                return None
            return decoder(log) if decoder is not None else log

        return await self._open("logs", (filter_spec.to_rpc_params(),), _decode, handler)

    async def watch_contract_event(
        self,
        address: str,
        abi: list[dict[str, Any]],
        event_name: str,
        filters: Optional[Mapping[str, Iterable[Any]]],
        handler: Callable[[DecodedEvent], Union[None, Awaitable[None]]],
    ) -> Subscription:
        """Compile a filter for ``event_name`` and deliver ``DecodedEvent`` values."""
        self.client.require(Capability.SUBSCRIBE, f"watch_contract_event({event_name})")
        filter_spec = compile_filter(abi, event_name, address, filters)
        return await self.subscribe_logs(filter_spec, handler, event_decoder(abi, event_name))

    async def close(self) -> None:
        """Cancel every subscription and wait for all of them to stop."""
        self._closed = True
        subscriptions, self._subscriptions = self._subscriptions, []
        if subscriptions:
            await asyncio.gather(*(s.cancel() for s in subscriptions))
            logger.info("closed %d subscription(s)", len(subscriptions))

    async def _open(
        self, kind: str, params: tuple, decoder: Decoder, handler: Handler
    ) -> Subscription:
        name = f"{kind}#{next(self._counter)}"
        self.client.require(Capability.SUBSCRIBE, f"subscribe({kind})")
        if self._closed:
            raise SubscriptionError("manager is closed", operation=name)

        subscription = Subscription(name, decoder, handler, on_terminated=self._terminated)
        self._subscriptions.append(subscription)
        try:
            await subscription.start(self.client, kind, *params)
        except SubscriptionError as exc:
            self._discard(subscription)
            if self._closed:
                raise SubscriptionError("manager is closed", operation=name) from exc
            raise
        except BaseException:
            self._discard(subscription)
            raise
        return subscription

    def _discard(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _terminated(self, event: SubscriptionTerminated) -> None:
        self._subscriptions = [s for s in self._subscriptions if s.name != event.name]
        if self.on_terminated is not None:
            self.on_terminated(event)
