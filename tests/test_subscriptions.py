"""Tests for the subscription dispatcher and manager."""

from __future__ import annotations

import asyncio

import pytest
from eth_abi import encode

from abstractkit.errors import CapabilityError, RpcError, SubscriptionError
from abstractkit.pneuma.abi import MINIMAL_ERC20_ABI
from abstractkit.pneuma.events import BlockHeader, DecodedEvent, Log
from abstractkit.pneuma.filters import compile_filter
from abstractkit.pneuma.rpc import Capability, Client
from abstractkit.pneuma.subscriptions import (
    SubscriptionManager,
    SubscriptionState,
    SubscriptionTerminated,
)
from abstractkit.utils import keccak256

TOKEN = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
ALICE = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
BOB = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
TRANSFER_TOPIC = "0x" + keccak256(b"Transfer(address,address,uint256)").hex()


def _padded(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def transfer(amount: int, to: str = BOB) -> dict:
    return {
        "address": TOKEN,
        "topics": [TRANSFER_TOPIC, _padded(ALICE), _padded(to)],
        "data": "0x" + encode(["uint256"], [amount]).hex(),
        "blockNumber": "0x1",
    }


def header(number: int) -> dict:
    return {
        "number": hex(number),
        "hash": "0x" + f"{number:064x}",
        "parentHash": "0x" + f"{number - 1:064x}",
        "timestamp": hex(1_700_000_000 + number),
    }


class GatedClient(Client):
    """Wraps a subscribe client; ``subscribe`` waits until ``gate`` is set."""

    capabilities = frozenset({Capability.SUBSCRIBE})

    def __init__(self, inner: Client, *, finish_on_cancel: bool = False) -> None:
        super().__init__()
        self.inner = inner
        self.finish_on_cancel = finish_on_cancel
        self.gate = asyncio.Event()
        self.waiting = asyncio.Event()

    async def subscribe(self, kind: str, *params):
        self.waiting.set()
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            # node already created the subscription
            if not self.finish_on_cancel:
                raise
        return await self.inner.subscribe(kind, *params)


class TestCapability:
    def test_manager_requires_subscribe_capability(self, make_client) -> None:
        client = make_client()
        with pytest.raises(CapabilityError):
            SubscriptionManager(client)
        assert client.calls == []


class TestDispatch:
    @pytest.mark.asyncio
    async def test_new_heads_delivered_in_order(self, ws_client, wait_until) -> None:
        received: list[BlockHeader] = []
        async with SubscriptionManager(ws_client) as manager:
            subscription = await manager.subscribe_new_heads(received.append)
            stream = ws_client.streams[0]
            assert stream.kind == "newHeads"
            assert subscription.state is SubscriptionState.ACTIVE

            for number in range(1, 6):
                stream.push(header(number))
            await wait_until(lambda: len(received) == 5)

        assert [h.number for h in received] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_async_handler(self, ws_client, wait_until) -> None:
        received: list[str] = []

        async def handler(tx_hash: str) -> None:
            await asyncio.sleep(0)
            received.append(tx_hash)

        async with SubscriptionManager(ws_client) as manager:
            await manager.subscribe_pending_transactions(handler)
            ws_client.streams[0].push("0x" + "ab" * 32)
            await wait_until(lambda: len(received) == 1)

        assert received == ["0x" + "ab" * 32]

    @pytest.mark.asyncio
    async def test_malformed_log_dropped_and_stream_continues(self, ws_client, wait_until) -> None:
        received: list[DecodedEvent] = []
        async with SubscriptionManager(ws_client) as manager:
            subscription = await manager.watch_contract_event(
                TOKEN, MINIMAL_ERC20_ABI, "Transfer", {"to": [BOB]}, received.append
            )
            stream = ws_client.streams[0]

            stream.push(transfer(1))
            short = transfer(2)
            short["topics"] = short["topics"][:2]
            stream.push(short)
            stream.push({"garbage": True})
            stream.push(transfer(3))
            await wait_until(lambda: len(received) == 2)

            assert subscription.state is SubscriptionState.ACTIVE

        assert [event["value"] for event in received] == [1, 3]

    @pytest.mark.asyncio
    async def test_watch_sends_compiled_filter(self, ws_client) -> None:
        async with SubscriptionManager(ws_client) as manager:
            await manager.watch_contract_event(TOKEN, MINIMAL_ERC20_ABI, "Transfer", {"to": [BOB]}, print)

        stream = ws_client.streams[0]
        expected = compile_filter(MINIMAL_ERC20_ABI, "Transfer", TOKEN, {"to": [BOB]})
        assert stream.kind == "logs"
        assert stream.params == (expected.to_rpc_params(),)

    @pytest.mark.asyncio
    async def test_logs_outside_filter_are_skipped(self, ws_client, wait_until) -> None:
        received: list[Log] = []
        spec = compile_filter(MINIMAL_ERC20_ABI, "Transfer", TOKEN, {"to": [BOB]})
        async with SubscriptionManager(ws_client) as manager:
            await manager.subscribe_logs(spec, received.append)
            stream = ws_client.streams[0]
            stream.push(transfer(1, to=ALICE))
            stream.push(transfer(2))
            await wait_until(lambda: len(received) == 1)

        assert isinstance(received[0], Log)
        assert received[0].topics[2] == _padded(BOB)

    @pytest.mark.asyncio
    async def test_handler_exception_does_not_end_stream(self, ws_client, wait_until) -> None:
        received: list[int] = []

        def handler(item: BlockHeader) -> None:
            if item.number == 2:
                raise RuntimeError("boom")
            received.append(item.number)

        async with SubscriptionManager(ws_client) as manager:
            subscription = await manager.subscribe_new_heads(handler)
            stream = ws_client.streams[0]
            for number in (1, 2, 3):
                stream.push(header(number))
            await wait_until(lambda: received == [1, 3])
            assert subscription.state is SubscriptionState.ACTIVE


class TestTermination:
    @pytest.mark.asyncio
    async def test_close_stops_handlers(self, ws_client) -> None:
        received: list[BlockHeader] = []
        manager = SubscriptionManager(ws_client)
        subscription = await manager.subscribe_new_heads(received.append)

        await manager.close()
        ws_client.streams[0].push(header(1))
        await asyncio.sleep(0.01)

        assert received == []
        assert subscription.state is SubscriptionState.CLOSED
        assert ws_client.streams[0].unsubscribed
        terminal = await subscription.wait()
        assert terminal == SubscriptionTerminated(subscription.name, SubscriptionState.CLOSED, None)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, ws_client) -> None:
        manager = SubscriptionManager(ws_client)
        await manager.subscribe_new_heads(print)
        await manager.close()
        await manager.close()

        with pytest.raises(SubscriptionError):
            await manager.subscribe_new_heads(print)

    @pytest.mark.asyncio
    async def test_transport_error_yields_errored_event(self, ws_client) -> None:
        events: list[SubscriptionTerminated] = []
        async with SubscriptionManager(ws_client, on_terminated=events.append) as manager:
            subscription = await manager.subscribe_new_heads(print)
            ws_client.streams[0].fail("node went away")

            terminal = await asyncio.wait_for(subscription.wait(), 1.0)

        assert terminal.state is SubscriptionState.ERRORED
        assert isinstance(terminal.error, SubscriptionError)
        assert subscription.state is SubscriptionState.ERRORED
        assert events == [terminal]

    @pytest.mark.asyncio
    async def test_connection_failure_reaches_every_subscription(self, ws_client) -> None:
        events: list[SubscriptionTerminated] = []
        async with SubscriptionManager(ws_client, on_terminated=events.append) as manager:
            heads = await manager.subscribe_new_heads(print)
            pending = await manager.subscribe_pending_transactions(print)
            logs = await manager.watch_contract_event(TOKEN, MINIMAL_ERC20_ABI, "Transfer", None, print)

            ws_client.fail_all()
            await asyncio.wait_for(
                asyncio.gather(heads.wait(), pending.wait(), logs.wait()), 1.0
            )

        assert {event.name for event in events} == {heads.name, pending.name, logs.name}
        assert all(event.state is SubscriptionState.ERRORED for event in events)

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_termination(self, ws_client) -> None:
        def callback(event: SubscriptionTerminated) -> None:
            raise RuntimeError("callback failed")

        async with SubscriptionManager(ws_client, on_terminated=callback) as manager:
            subscription = await manager.subscribe_new_heads(print)
            ws_client.streams[0].fail()
            terminal = await asyncio.wait_for(subscription.wait(), 1.0)

        assert terminal.state is SubscriptionState.ERRORED

    @pytest.mark.asyncio
    async def test_close_while_subscribe_in_flight(self, ws_client) -> None:
        client = GatedClient(ws_client)
        received: list[BlockHeader] = []
        manager = SubscriptionManager(client)

        opening = asyncio.create_task(manager.subscribe_new_heads(received.append))
        await asyncio.wait_for(client.waiting.wait(), 1.0)
        await manager.close()

        with pytest.raises(SubscriptionError, match="manager is closed"):
            await opening

        client.gate.set()
        await asyncio.sleep(0.01)

        assert received == []
        assert ws_client.streams == []
        assert manager.subscriptions == []

    @pytest.mark.asyncio
    async def test_stream_opened_during_close_is_released(self, ws_client) -> None:
        client = GatedClient(ws_client, finish_on_cancel=True)
        manager = SubscriptionManager(client)

        opening = asyncio.create_task(manager.subscribe_new_heads(print))
        await asyncio.wait_for(client.waiting.wait(), 1.0)
        await manager.close()

        with pytest.raises(SubscriptionError, match="manager is closed"):
            await opening

        assert len(ws_client.streams) == 1
        assert ws_client.streams[0].unsubscribed

    @pytest.mark.asyncio
    async def test_buffered_events_not_delivered_after_close(self, ws_client) -> None:
        received: list[int] = []
        first = asyncio.Event()

        async def slow_handler(item: BlockHeader) -> None:
            received.append(item.number)
            first.set()
            await asyncio.sleep(0.05)

        manager = SubscriptionManager(ws_client)
        subscription = await manager.subscribe_new_heads(slow_handler)
        for number in range(1, 20):
            ws_client.streams[0].push(header(number))

        await asyncio.wait_for(first.wait(), 1.0)
        await manager.close()
        handled = list(received)
        await asyncio.sleep(0.1)

        assert received == handled == [1]
        assert subscription.state is SubscriptionState.CLOSED

    @pytest.mark.asyncio
    async def test_terminated_subscriptions_are_released(self, ws_client) -> None:
        async with SubscriptionManager(ws_client) as manager:
            failing = await manager.subscribe_new_heads(print)
            healthy = await manager.subscribe_pending_transactions(print)
            ws_client.streams[0].fail()
            await asyncio.wait_for(failing.wait(), 1.0)

            assert manager.subscriptions == [healthy]

    @pytest.mark.asyncio
    async def test_failed_open_is_not_kept(self, ws_client) -> None:
        ws_client.subscribe = _raise_rpc_error
        async with SubscriptionManager(ws_client) as manager:
            with pytest.raises(RpcError):
                await manager.subscribe_new_heads(print)
            assert manager.subscriptions == []


async def _raise_rpc_error(kind: str, *params) -> None:
    raise RpcError("not supported", code=-32601, operation="eth_subscribe")


class TestIsolation:
    @pytest.mark.asyncio
    async def test_stuck_handler_does_not_delay_sibling(self, ws_client, wait_until) -> None:
        stuck = asyncio.Event()
        received: list[str] = []

        async def blocked(item: BlockHeader) -> None:
            await stuck.wait()

        async with SubscriptionManager(ws_client) as manager:
            await manager.subscribe_new_heads(blocked)
            await manager.subscribe_pending_transactions(received.append)
            heads, pending = ws_client.streams

            heads.push(header(1))
            heads.push(header(2))
            for n in range(3):
                pending.push("0x" + f"{n:064x}")

            await wait_until(lambda: len(received) == 3)

        assert received == ["0x" + f"{n:064x}" for n in range(3)]
