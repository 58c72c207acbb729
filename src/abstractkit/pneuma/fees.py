"""Fee-market (EIP-1559) fee and gas estimation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..errors import EstimationError, RpcError

if TYPE_CHECKING:
    from .rpc import Client
    from .tx import TransactionRequest

logger = logging.getLogger(__name__)

DEFAULT_GAS_BUFFER_PERCENT = 10


def get_gas_buffer_percent() -> int:
    """Get the gas buffer percentage from environment or default."""
    return int(
        os.environ.get("ABSTRACTKIT_GAS_BUFFER_PERCENT", str(DEFAULT_GAS_BUFFER_PERCENT))
    )


def apply_gas_buffer(gas: int, buffer_percent: int) -> int:
    """Add a whole-number percentage on top of a gas estimate.

    >>> apply_gas_buffer(100_000, 10)
    110000
    """
    if buffer_percent < 0:
        raise ValueError(f"buffer_percent must be >= 0, got {buffer_percent}")
    return gas + gas * buffer_percent // 100


@dataclass(frozen=True)
class FeeQuote:
    tip_cap: int
    fee_cap: int
    gas_limit: int

    def to_tx_params(self) -> dict[str, int]:
        return {
            "gas": self.gas_limit,
            "maxPriorityFeePerGas": self.tip_cap,
            "maxFeePerGas": self.fee_cap,
        }


class FeeEstimator:
    """
    Derives a fresh ``FeeQuote`` for each transaction request.

    Args:
        client: Query-capable RPC client
        buffer_percent: Gas buffer (default: ``get_gas_buffer_percent()``)
    """

    def __init__(self, client: "Client", buffer_percent: Optional[int] = None) -> None:
        if buffer_percent is None:
            buffer_percent = get_gas_buffer_percent()
        if buffer_percent < 0:
            raise ValueError(f"buffer_percent must be >= 0, got {buffer_percent}")
        self.client = client
        self.buffer_percent = buffer_percent

    async def suggest_fees(self, fee_cap: Optional[int] = None) -> tuple[int, int]:
        """Return ``(tip_cap, fee_cap)``.

        ``fee_cap`` defaults to base fee + tip; an explicit cap is used only
        when it is higher than that.
        """
        tip_cap = await self.client.suggest_gas_tip_cap()
        base_fee = await self.client.gas_price()
        computed = base_fee + tip_cap
        if fee_cap is not None and fee_cap > computed:
            return tip_cap, fee_cap
        return tip_cap, computed

    async def estimate_gas(self, request: "TransactionRequest") -> int:
        """Simulate the request and apply the gas buffer.

        Raises:
            EstimationError: the node rejected the simulation (e.g. revert)
            TransportError: the node could not be reached
        """
        call = request.to_call()
        try:
            return await self.client.estimate_gas_with_buffer(call, self.buffer_percent)
        except RpcError as exc:
            raise EstimationError(str(exc), operation="estimate_gas") from exc

    async def quote(
        self, request: "TransactionRequest", fee_cap: Optional[int] = None
    ) -> FeeQuote:
        tip_cap, cap = await self.suggest_fees(fee_cap)
        gas_limit = await self.estimate_gas(request)
        logger.debug(
            "fee quote tip=%d cap=%d gas=%d (buffer %d%%)",
            tip_cap,
            cap,
            gas_limit,
            self.buffer_percent,
        )
        return FeeQuote(tip_cap=tip_cap, fee_cap=cap, gas_limit=gas_limit)
