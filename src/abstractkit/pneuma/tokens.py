"""
ERC-20 / ERC-721 contract bindings.

Reads go through ``Client.read_contract``; writes are submitted with a
``TransactionBuilder`` so they share its nonce sequencer and fee policy.
Watchers compile typed event filters and deliver ``DecodedEvent`` values.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from ..utils import to_bytes, to_checksum_address
from .abi import MINIMAL_ERC20_ABI, MINIMAL_ERC721_ABI, encode_function_call
from .events import DecodedEvent
from .rpc import Client
from .subscriptions import Subscription, SubscriptionManager
from .tx import SignedTransaction, TransactionBuilder

logger = logging.getLogger(__name__)

EventHandler = Callable[[DecodedEvent], Union[None, Awaitable[None]]]


def _address_filter(**values: Optional[Iterable[str]]) -> dict[str, Any]:
    # strings pass through so compile_filter rejects them
    return {
        name: addrs if isinstance(addrs, str) else list(addrs)
        for name, addrs in values.items()
        if addrs
    }


class _Token:
    default_abi: list[dict[str, Any]] = []

    def __init__(
        self,
        client: Client,
        address: str,
        *,
        builder: Optional[TransactionBuilder] = None,
        abi: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        self.client = client
        self.address = to_checksum_address(address)
        self.builder = builder
        self.abi = abi or self.default_abi

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address!r})"

    async def _read(self, function_name: str, *args: Any) -> Any:
        return await self.client.read_contract(self.address, self.abi, function_name, list(args))

    def _call(self, function_name: str, *args: Any):
        if self.builder is None:
            raise ValueError(f"{self!r} has no TransactionBuilder; it is read-only")
        data = to_bytes(encode_function_call(self.abi, function_name, list(args)))
        return self.builder.request(self.address, 0, data)

    async def _write(self, function_name: str, *args: Any) -> SignedTransaction:
        request = self._call(function_name, *args)
        return await self.builder.send(request)


class ERC20(_Token):
    """
    Fungible token binding.

    Args:
        client: Query-capable client
        address: Token contract address
        builder: Required for ``transfer``/``approve``/``transfer_from``
        abi: ABI override (default: minimal ERC-20)
    """

    default_abi = MINIMAL_ERC20_ABI

    async def name(self) -> str:
        return await self._read("name")

    async def symbol(self) -> str:
        return await self._read("symbol")

    async def decimals(self) -> int:
        return await self._read("decimals")

    async def balance_of(self, account: str) -> int:
        return await self._read("balanceOf", to_checksum_address(account))

    async def allowance(self, owner: str, spender: str) -> int:
        return await self._read("allowance", to_checksum_address(owner), to_checksum_address(spender))

    async def transfer(self, recipient: str, amount: int) -> SignedTransaction:
        return await self._write("transfer", to_checksum_address(recipient), amount)

    async def approve(self, spender: str, amount: int) -> SignedTransaction:
        return await self._write("approve", to_checksum_address(spender), amount)

    async def transfer_from(self, owner: str, recipient: str, amount: int) -> SignedTransaction:
        return await self._write(
            "transferFrom", to_checksum_address(owner), to_checksum_address(recipient), amount
        )

    async def approve_and_transfer(
        self, spender: str, recipient: str, amount: int
    ) -> list[SignedTransaction]:
        """
        Approve ``spender`` for ``amount``, then transfer ``amount`` to
        ``recipient``.

        Raises:
            CompoundTransactionError: the transfer failed after the approval
                was submitted; ``completed`` holds the approval
        """
        requests = [
            self._call("approve", to_checksum_address(spender), amount),
            self._call("transfer", to_checksum_address(recipient), amount),
        ]
        return await self.builder.run_sequence("approve_and_transfer", requests)

    async def watch_transfers(
        self,
        manager: SubscriptionManager,
        handler: EventHandler,
        *,
        from_: Optional[Iterable[str]] = None,
        to: Optional[Iterable[str]] = None,
    ) -> Subscription:
        filters = _address_filter(**{"from": from_, "to": to})
        return await manager.watch_contract_event(self.address, self.abi, "Transfer", filters, handler)

    async def watch_approvals(
        self,
        manager: SubscriptionManager,
        handler: EventHandler,
        *,
        owner: Optional[Iterable[str]] = None,
        spender: Optional[Iterable[str]] = None,
    ) -> Subscription:
        filters = _address_filter(owner=owner, spender=spender)
        return await manager.watch_contract_event(self.address, self.abi, "Approval", filters, handler)


class ERC721(_Token):
    """Non-fungible token binding."""

    default_abi = MINIMAL_ERC721_ABI

    async def balance_of(self, owner: str) -> int:
        return await self._read("balanceOf", to_checksum_address(owner))

    async def owner_of(self, token_id: int) -> str:
        return to_checksum_address(await self._read("ownerOf", token_id))

    async def token_uri(self, token_id: int) -> str:
        return await self._read("tokenURI", token_id)

    async def transfer_from(self, owner: str, recipient: str, token_id: int) -> SignedTransaction:
        return await self._write(
            "transferFrom", to_checksum_address(owner), to_checksum_address(recipient), token_id
        )

    async def watch_transfers(
        self,
        manager: SubscriptionManager,
        handler: EventHandler,
        *,
        from_: Optional[Iterable[str]] = None,
        to: Optional[Iterable[str]] = None,
        token_ids: Optional[Iterable[int]] = None,
    ) -> Subscription:
        filters: dict[str, list[Any]] = _address_filter(**{"from": from_, "to": to})
        if token_ids:
            filters["tokenId"] = list(token_ids)
        return await manager.watch_contract_event(self.address, self.abi, "Transfer", filters, handler)
