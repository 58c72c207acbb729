"""Shared test doubles: an in-memory JSON-RPC client and a fake push transport."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import pytest

from abstractkit.errors import SubscriptionError
from abstractkit.pneuma.rpc import Capability, Client
from abstractkit.sigil.eth import Wallet

# Well-known development key (Hardhat / Anvil account #0)
DEV_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


class StubClient(Client):
    """Query client answering from a ``method -> result`` table.

    A value may be a callable taking the params; an exception instance (or a
    callable returning one) is raised instead of returned.
    """

    capabilities = frozenset({Capability.QUERY})

    def __init__(self, responses: Optional[dict[str, Any]] = None) -> None:
        super().__init__()
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, list]] = []

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    async def _request(self, method: str, params: list) -> Any:
        self.calls.append((method, params))
        await asyncio.sleep(0)
        value = self.responses[method]
        if callable(value):
            value = value(params)
        if isinstance(value, BaseException):
            raise value
        return value


class FakeStream:
    """Transport subscription fed by the test."""

    def __init__(self, kind: str, params: tuple) -> None:
        self.kind = kind
        self.params = params
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.unsubscribed = False

    def push(self, payload: Any) -> None:
        self.queue.put_nowait(("item", payload))

    def fail(self, message: str = "connection lost") -> None:
        self.queue.put_nowait(("error", SubscriptionError(message, operation=self.kind)))

    async def next(self) -> Any:
        tag, value = await self.queue.get()
        if tag == "error":
            raise value
        return value

    async def unsubscribe(self) -> None:
        self.unsubscribed = True


class FakeSubscribeClient(Client):
    """Subscribe-only client handing out ``FakeStream`` objects."""

    capabilities = frozenset({Capability.SUBSCRIBE})

    def __init__(self) -> None:
        super().__init__()
        self.streams: list[FakeStream] = []

    async def subscribe(self, kind: str, *params: Any) -> FakeStream:
        self.require(Capability.SUBSCRIBE, f"subscribe({kind})")
        stream = FakeStream(kind, params)
        self.streams.append(stream)
        return stream

    def fail_all(self, message: str = "connection lost") -> None:
        for stream in self.streams:
            stream.fail(message)


async def settle(condition: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``condition()`` holds."""
    async def _poll() -> None:
        while not condition():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture()
def wallet() -> Wallet:
    return Wallet.from_key(DEV_PRIVATE_KEY)


@pytest.fixture()
def make_client() -> Callable[..., StubClient]:
    return StubClient


@pytest.fixture()
def ws_client() -> FakeSubscribeClient:
    return FakeSubscribeClient()


@pytest.fixture()
def wait_until() -> Callable[..., Any]:
    return settle
