"""
JSON-RPC clients for Abstract (and any Ethereum-compatible node).

Lightweight alternative to web3.py: uses httpx for HTTP + eth-abi for encoding.
Each client is tagged with the capability its transport provides: an HTTP
connection serves queries and transaction submission, a WebSocket connection
(see ``ws.py``) serves push subscriptions. Calling an operation the connection
cannot serve raises ``CapabilityError`` before any network I/O.
"""

from __future__ import annotations

import enum
import itertools
import logging
import os
from typing import Any, Optional

import httpx

from ..errors import CapabilityError, RpcError, TransportError
from ..utils import hex_to_int, to_bytes, to_hex
from .abi import decode_function_result, encode_function_call
from .fees import apply_gas_buffer

logger = logging.getLogger(__name__)

# Default endpoints (Abstract testnet)
DEFAULT_RPC_URL = "https://api.testnet.abs.xyz"
DEFAULT_WS_URL = "wss://api.testnet.abs.xyz/ws"
DEFAULT_TIMEOUT = 30.0


def get_rpc_url() -> str:
    """Get the HTTP RPC URL from environment or default."""
    return os.environ.get("ABSTRACT_RPC_URL", DEFAULT_RPC_URL)


def get_ws_url() -> str:
    """Get the WebSocket RPC URL from environment or default."""
    return os.environ.get("ABSTRACT_WS_URL", DEFAULT_WS_URL)


class Capability(str, enum.Enum):
    QUERY = "query"
    SUBSCRIBE = "subscribe"


class Client:
    """
    Base RPC surface.

    Subclasses provide ``_request`` and declare ``capabilities``. Every public
    operation checks its capability first, so a mismatch fails synchronously
    inside the coroutine before a request is sent.
    """

    capabilities: frozenset[Capability] = frozenset()

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._chain_id: Optional[int] = None

    def require(self, capability: Capability, operation: str) -> None:
        if capability not in self.capabilities:
            raise CapabilityError(operation, capability)

    async def _request(self, method: str, params: list) -> Any:
        raise NotImplementedError

    async def _quantity(self, method: str, params: list) -> int:
        result = await self._request(method, params)
        try:
            return hex_to_int(result)
        except (TypeError, ValueError) as exc:
            raise TransportError(
                f"malformed response: expected a hex quantity, got {result!r}",
                operation=method,
            ) from exc

    async def aclose(self) -> None:
        pass

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ---------------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------------

    async def chain_id(self) -> int:
        """Return the network chain id, fetched once per connection."""
        self.require(Capability.QUERY, "chain_id")
        if self._chain_id is None:
            self._chain_id = await self._quantity("eth_chainId", [])
        return self._chain_id

    async def balance_at(self, address: str, block: str = "latest") -> int:
        """Get the balance of an address in wei."""
        self.require(Capability.QUERY, "balance_at")
        return await self._quantity("eth_getBalance", [address, block])

    async def nonce_at(self, address: str, block: str = "latest") -> int:
        """Get the transaction count (nonce) of an address."""
        self.require(Capability.QUERY, "nonce_at")
        return await self._quantity("eth_getTransactionCount", [address, block])

    async def gas_price(self) -> int:
        """Current gas price suggestion in wei."""
        self.require(Capability.QUERY, "gas_price")
        return await self._quantity("eth_gasPrice", [])

    async def suggest_gas_tip_cap(self) -> int:
        """Current priority fee (tip) suggestion in wei."""
        self.require(Capability.QUERY, "suggest_gas_tip_cap")
        return await self._quantity("eth_maxPriorityFeePerGas", [])

    async def estimate_gas(self, call: dict[str, Any]) -> int:
        """Simulate ``call`` against current state and return its gas usage."""
        self.require(Capability.QUERY, "estimate_gas")
        return await self._quantity("eth_estimateGas", [call])

    async def estimate_gas_with_buffer(
        self, call: dict[str, Any], buffer_percent: int
    ) -> int:
        """Estimate gas and add ``buffer_percent`` (e.g. 10 for +10%)."""
        return apply_gas_buffer(await self.estimate_gas(call), buffer_percent)

    async def call_contract(self, call: dict[str, Any], block: str = "latest") -> bytes:
        """Perform a read-only call (eth_call) and return the raw result."""
        self.require(Capability.QUERY, "call_contract")
        result = await self._request("eth_call", [call, block])
        try:
            return to_bytes(result or "0x")
        except (TypeError, ValueError, AttributeError) as exc:
            raise TransportError(f"malformed response: {exc}", operation="eth_call") from exc

    async def read_contract(
        self,
        contract_address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: Optional[list] = None,
        block: str = "latest",
    ) -> Any:
        """
        Read from a smart contract (eth_call).

        Args:
            contract_address: 0x-prefixed contract address
            abi: Contract ABI
            function_name: Function to call
            args: Function arguments (default: [])
            block: Block tag

        Returns:
            Decoded return value(s), or None for an empty result
        """
        calldata = encode_function_call(abi, function_name, args or [])
        raw = await self.call_contract(
            {"to": contract_address, "data": calldata}, block=block
        )
        if not raw:
            return None
        return decode_function_result(abi, function_name, raw)

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        """Send a signed raw transaction; returns the transaction hash."""
        self.require(Capability.QUERY, "send_raw_transaction")
        return await self._request("eth_sendRawTransaction", [to_hex(raw_tx)])

    # ---------------------------------------------------------------------
    # Subscriptions
    # ---------------------------------------------------------------------

    async def subscribe(self, kind: str, *params: Any) -> Any:
        """Open a push subscription (``eth_subscribe``)."""
        self.require(Capability.SUBSCRIBE, f"subscribe({kind})")
        raise NotImplementedError


class HttpClient(Client):
    """
    Query client over HTTP(S).

    Args:
        url: RPC endpoint URL (default: ``get_rpc_url()``)
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (used by tests)
    """

    capabilities = frozenset({Capability.QUERY})

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__()
        self.url = url or get_rpc_url()
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, params: list) -> Any:
        """
        Make a JSON-RPC call.

        Raises:
            TransportError: connection failure, timeout, HTTP error status or
                malformed response body
            RpcError: the node returned a JSON-RPC error object
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        logger.debug("rpc %s %s", method, params)

        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as exc:
            raise TransportError(f"timed out: {exc}", operation=method) from exc
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or type(exc).__name__, operation=method) from exc
        except ValueError as exc:
            raise TransportError(f"malformed response: {exc}", operation=method) from exc

        if not isinstance(data, dict):
            raise TransportError("malformed response: not an object", operation=method)

        if "error" in data:
            error = data["error"] or {}
            raise RpcError(
                error.get("message", "unknown error"),
                code=error.get("code"),
                data=error.get("data"),
                operation=method,
            )

        if "result" not in data:
            raise TransportError("malformed response: missing result", operation=method)

        return data["result"]


def dial_http(url: str, **kwargs: Any) -> HttpClient:
    """Create a client for HTTP connections (query & tx)."""
    if not url.startswith("http"):
        raise ValueError("dial_http requires an http:// or https:// URL")
    return HttpClient(url, **kwargs)


async def dial(url: str, **kwargs: Any) -> Client:
    """Create the client matching the URL scheme."""
    if url.startswith("http"):
        return dial_http(url, **kwargs)
    if url.startswith("ws"):
        from .ws import dial_ws

        return await dial_ws(url, **kwargs)
    raise ValueError(f"Unsupported RPC URL scheme: {url}")
