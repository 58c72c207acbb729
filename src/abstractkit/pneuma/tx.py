"""
Transaction Builder - Build, sign, and send EIP-1559 transactions.

Uses eth-account for signing and the httpx-based JSON-RPC client for sending.
Gas is always estimated; there is no fallback gas limit.

The builder does not track a transaction after submission. If submission
fails, the nonce that was allocated for it is not reclaimed: call
``NonceSequencer.reset`` before retrying.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from eth_account import Account

from ..errors import (
    CompoundTransactionError,
    EstimationError,
    RpcError,
    SignatureError,
)
from ..sigil.eth import Wallet
from ..utils import to_bytes, to_checksum_address, to_hex
from .abi import encode_function_call
from .fees import FeeEstimator, FeeQuote
from .nonce import NonceSequencer
from .rpc import Capability, Client

logger = logging.getLogger(__name__)

DYNAMIC_FEE_TX_TYPE = 2


@dataclass(frozen=True)
class TransactionRequest:
    sender: str
    to: Optional[str]
    value: int = 0
    data: bytes = b""

    def to_call(self) -> dict[str, Any]:
        """Call object for eth_estimateGas / eth_call."""
        call: dict[str, Any] = {"from": self.sender, "value": to_hex(self.value)}
        if self.to is not None:
            call["to"] = self.to
        if self.data:
            call["data"] = to_hex(self.data)
        return call


@dataclass(frozen=True)
class SignedTransaction:
    hash: str
    raw: bytes
    chain_id: int
    nonce: int
    sender: str
    to: Optional[str]
    value: int
    data: bytes
    gas_limit: int
    fee_cap: int
    tip_cap: int
    r: int
    s: int
    y_parity: int

    @property
    def signature(self) -> bytes:
        """65-byte ``R | S | V`` with V in the 27/28 convention."""
        return (
            self.r.to_bytes(32, "big")
            + self.s.to_bytes(32, "big")
            + bytes([self.y_parity + 27])
        )


class TransactionBuilder:
    """
    Assembles, signs and submits fee-market transactions for one wallet.

    Args:
        client: Query-capable RPC client
        wallet: Signing wallet
        sequencer: Nonce sequencer shared by every sender of this wallet in
            the process (default: a new one bound to ``client``)
        fees: Fee estimator (default: ``FeeEstimator(client)``)
    """

    def __init__(
        self,
        client: Client,
        wallet: Wallet,
        *,
        sequencer: Optional[NonceSequencer] = None,
        fees: Optional[FeeEstimator] = None,
    ) -> None:
        client.require(Capability.QUERY, "TransactionBuilder")
        self.client = client
        self.wallet = wallet
        self.sequencer = sequencer or NonceSequencer(client)
        self.fees = fees or FeeEstimator(client)

    def request(self, to: Optional[str], value: int = 0, data: bytes = b"") -> TransactionRequest:
        return TransactionRequest(
            sender=self.wallet.address,
            to=to_checksum_address(to) if to is not None else None,
            value=value,
            data=data,
        )

    async def build(
        self, request: TransactionRequest, *, fee_cap: Optional[int] = None
    ) -> dict[str, Any]:
        """
        Build the unsigned transaction dict.

        Fees and gas are quoted before the nonce is allocated, so an
        estimation failure never consumes a nonce.
        """
        quote = await self.fees.quote(request, fee_cap=fee_cap)
        chain_id = await self.client.chain_id()
        nonce = await self.sequencer.next(self.wallet.address)
        return self._assemble(request, quote, chain_id, nonce)

    @staticmethod
    def _assemble(
        request: TransactionRequest, quote: FeeQuote, chain_id: int, nonce: int
    ) -> dict[str, Any]:
        tx: dict[str, Any] = {
            "type": DYNAMIC_FEE_TX_TYPE,
            "chainId": chain_id,
            "nonce": nonce,
            "value": request.value,
            "data": to_hex(request.data),
            **quote.to_tx_params(),
        }
        if request.to is not None:
            tx["to"] = to_checksum_address(request.to)
        return tx

    def sign(self, tx: dict[str, Any]) -> SignedTransaction:
        """Sign ``tx`` and verify the signature recovers the wallet address."""
        signed = self.wallet.sign_transaction(tx)
        raw = bytes(signed.raw_transaction)

        recovered = Account.recover_transaction(raw)
        if recovered.lower() != self.wallet.address.lower():
            raise SignatureError(
                f"recovered sender {recovered} does not match {self.wallet.address}",
                operation="sign",
            )

        return SignedTransaction(
            hash="0x" + bytes(signed.hash).hex(),
            raw=raw,
            chain_id=tx["chainId"],
            nonce=tx["nonce"],
            sender=self.wallet.address,
            to=tx.get("to"),
            value=tx["value"],
            data=to_bytes(tx["data"]),
            gas_limit=tx["gas"],
            fee_cap=tx["maxFeePerGas"],
            tip_cap=tx["maxPriorityFeePerGas"],
            r=signed.r,
            s=signed.s,
            y_parity=signed.v,
        )

    async def send(
        self, request: TransactionRequest, *, fee_cap: Optional[int] = None
    ) -> SignedTransaction:
        """Build, sign and submit ``request``."""
        signed = self.sign(await self.build(request, fee_cap=fee_cap))
        tx_hash = await self.client.send_raw_transaction(signed.raw)
        if tx_hash and tx_hash.lower() != signed.hash.lower():
            logger.warning("node returned hash %s for %s", tx_hash, signed.hash)
        logger.info(
            "sent %s nonce=%d to=%s value=%d", signed.hash, signed.nonce, signed.to, signed.value
        )
        return signed

    async def transfer(self, to: str, value: int) -> SignedTransaction:
        """Send native currency."""
        return await self.send(self.request(to, value))

    async def batch_send(
        self, recipients: Sequence[str], amounts: Sequence[int]
    ) -> list[SignedTransaction]:
        """
        Send native currency to several recipients, one transaction each.

        Raises:
            ValueError: recipients and amounts differ in length
            CompoundTransactionError: a send failed; ``completed`` holds the
                transactions already submitted
        """
        if len(recipients) != len(amounts):
            raise ValueError("recipients and amounts length mismatch")

        return await self.run_sequence(
            "batch_send",
            [self.request(to, amount) for to, amount in zip(recipients, amounts)],
        )

    async def run_sequence(
        self, operation: str, requests: Sequence[TransactionRequest]
    ) -> list[SignedTransaction]:
        """Submit ``requests`` in order, stopping at the first failure."""
        completed: list[SignedTransaction] = []
        for index, request in enumerate(requests):
            try:
                completed.append(await self.send(request))
            except Exception as exc:
                raise CompoundTransactionError(
                    f"step {index + 1}/{len(requests)} failed: {exc}",
                    completed,
                    operation=operation,
                ) from exc
        return completed

    async def safe_contract_call(
        self,
        contract_address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: Optional[list] = None,
        value: int = 0,
    ) -> SignedTransaction:
        """
        Simulate a contract call with eth_call, then send it.

        Raises:
            EstimationError: the simulation failed
        """
        calldata = to_bytes(encode_function_call(abi, function_name, args or []))
        request = self.request(contract_address, value, calldata)
        try:
            await self.client.call_contract(request.to_call())
        except RpcError as exc:
            raise EstimationError(
                f"simulation failed: {exc}", operation=function_name
            ) from exc
        return await self.send(request)
