"""
WebSocket JSON-RPC client for push subscriptions.

One connection carries any number of ``eth_subscribe`` streams. A single
reader task demultiplexes ``eth_subscription`` notifications into one
unbounded queue per subscription, so a slow consumer only delays its own
stream. If the connection drops, every subscription on it fails; nothing is
reconnected automatically.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections import deque
from typing import Any, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import RpcError, SubscriptionError, TransportError
from .rpc import DEFAULT_TIMEOUT, Capability, Client, get_ws_url

logger = logging.getLogger(__name__)

# Notifications kept per not-yet-claimed subscription id
MAX_BACKLOG = 256


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: SubscriptionError) -> None:
        self.error = error


class TransportSubscription:
    """Queue-backed handle for one ``eth_subscribe`` stream."""

    def __init__(self, client: "WsClient", subscription_id: str, kind: str) -> None:
        self.id = subscription_id
        self.kind = kind
        self._client = client
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._unsubscribed = False

    def _push(self, payload: Any) -> None:
        self._queue.put_nowait(payload)

    def _fail(self, error: SubscriptionError) -> None:
        self._queue.put_nowait(_Failure(error))

    async def next(self) -> Any:
        """Wait for the next payload.

        Raises:
            SubscriptionError: the transport reported an error for this stream
        """
        item = await self._queue.get()
        if isinstance(item, _Failure):
            raise item.error
        return item

    async def unsubscribe(self) -> None:
        if self._unsubscribed:
            return
        self._unsubscribed = True
        await self._client._unsubscribe(self.id)


class WsClient(Client):
    """
    Subscription client over WS(S).

    Args:
        url: WebSocket endpoint (default: ``get_ws_url()``)
        timeout: Connect and request timeout in seconds
    """

    capabilities = frozenset({Capability.SUBSCRIBE})

    def __init__(self, url: Optional[str] = None, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        super().__init__()
        self.url = url or get_ws_url()
        self.timeout = timeout
        self._ws: Any = None
        self._reader: Optional[asyncio.Task[None]] = None
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._subscriptions: dict[str, TransportSubscription] = {}
        self._backlog: dict[str, tuple[float, deque[Any]]] = {}
        self._retired: set[str] = set()
        self._error: Optional[TransportError] = None

    @classmethod
    async def connect(cls, url: Optional[str] = None, **kwargs: Any) -> "WsClient":
        client = cls(url, **kwargs)
        await client.open()
        return client

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._error is None

    async def open(self) -> None:
        try:
            ws = await websockets.connect(self.url, open_timeout=self.timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise TransportError(
                f"cannot connect to {self.url}: {exc}", operation="connect"
            ) from exc
        self.attach(ws)

    def attach(self, ws: Any) -> None:
        """Start reading from an already open connection."""
        self._ws = ws
        self._error = None
        self._reader = asyncio.create_task(self._read_loop(ws), name="abstractkit-ws-reader")
        logger.info("connected to %s", self.url)

    async def aclose(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _request(self, method: str, params: list) -> Any:
        if self._ws is None:
            raise TransportError("not connected", operation=method)
        if self._error is not None:
            raise TransportError(str(self._error), operation=method) from self._error

        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        logger.debug("ws rpc %s %s", method, params)

        try:
            await self._ws.send(json.dumps(payload))
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"no response within {self.timeout}s", operation=method) from exc
        except ConnectionClosed as exc:
            raise TransportError(f"connection closed: {exc}", operation=method) from exc
        finally:
            self._pending.pop(request_id, None)

    async def subscribe(self, kind: str, *params: Any) -> TransportSubscription:
        """Open an ``eth_subscribe`` stream (``newHeads``, ``logs``, ...)."""
        self.require(Capability.SUBSCRIBE, f"subscribe({kind})")
        subscription_id = await self._request("eth_subscribe", [kind, *params])
        subscription = TransportSubscription(self, subscription_id, kind)
        self._subscriptions[subscription_id] = subscription
        # Notifications can arrive before the eth_subscribe response is processed.
        _, early = self._backlog.pop(subscription_id, (0.0, ()))
        for payload in early:
            subscription._push(payload)
        logger.debug("subscribed %s as %s", kind, subscription_id)
        return subscription

    async def _unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)
        self._backlog.pop(subscription_id, None)
        if not self.connected:
            return
        # Notifications already in flight are ignored until the node confirms.
        self._retired.add(subscription_id)
        try:
            await self._request("eth_unsubscribe", [subscription_id])
        except TransportError as exc:
            logger.warning("eth_unsubscribe %s failed: %s", subscription_id, exc)
        finally:
            self._retired.discard(subscription_id)

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for message in ws:
                self._dispatch(message)
            error = TransportError("connection closed by peer", operation="read")
        except ConnectionClosed as exc:
            error = TransportError(f"connection closed: {exc}", operation="read")
        except asyncio.CancelledError:
            self._fail_all(TransportError("client closed", operation="read"))
            raise
        except Exception as exc:
            logger.exception("websocket reader crashed")
            error = TransportError(f"reader failed: {exc}", operation="read")
        logger.warning("%s", error)
        self._fail_all(error)

    def _dispatch(self, message: Any) -> None:
        try:
            data = json.loads(message)
        except (TypeError, ValueError):
            logger.warning("invalid JSON received: %.100r", message)
            return
        if not isinstance(data, dict):
            logger.warning("unexpected message: %.100r", message)
            return

        if data.get("method") == "eth_subscription":
            params = data.get("params") or {}
            subscription_id = params.get("subscription")
            if subscription_id in self._retired:
                return
            subscription = self._subscriptions.get(subscription_id)
            if "error" in params:
                if subscription is not None:
                    subscription._fail(
                        SubscriptionError(str(params["error"]), operation=subscription.kind)
                    )
                return
            if subscription is None:
                self._hold(subscription_id, params.get("result"))
            else:
                subscription._push(params.get("result"))
            return

        future = self._pending.get(data.get("id"))
        if future is None or future.done():
            return
        if "error" in data:
            error = data["error"] or {}
            future.set_exception(
                RpcError(error.get("message", "unknown error"), code=error.get("code"), data=error.get("data"))
            )
        else:
            future.set_result(data.get("result"))

    def _hold(self, subscription_id: Any, payload: Any) -> None:
        """Keep a notification for an id whose eth_subscribe reply is pending.

        Ids not claimed within ``timeout`` seconds are dropped, e.g. when our
        eth_subscribe timed out but the node still created the stream.
        """
        now = asyncio.get_running_loop().time()
        for stale in [key for key, (seen, _) in self._backlog.items() if now - seen > self.timeout]:
            dropped = len(self._backlog.pop(stale)[1])
            logger.warning("dropped %d notification(s) for unclaimed subscription %s", dropped, stale)
        if not isinstance(subscription_id, str):
            return
        if subscription_id not in self._backlog:
            self._backlog[subscription_id] = (now, deque(maxlen=MAX_BACKLOG))
        self._backlog[subscription_id][1].append(payload)

    def _fail_all(self, error: TransportError) -> None:
        self._error = error
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        for subscription in self._subscriptions.values():
            failure = SubscriptionError(str(error), operation=subscription.kind)
            failure.__cause__ = error
            subscription._fail(failure)
        self._subscriptions.clear()
        self._backlog.clear()


async def dial_ws(url: str, **kwargs: Any) -> WsClient:
    """Create a client for WebSocket connections (subscriptions)."""
    if not url.startswith("ws"):
        raise ValueError("dial_ws requires a ws:// or wss:// URL")
    return await WsClient.connect(url, **kwargs)
