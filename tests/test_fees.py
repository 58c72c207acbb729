"""Tests for gas buffering and fee quotes."""

from __future__ import annotations

import pytest

from abstractkit.errors import EstimationError, RpcError, TransportError
from abstractkit.pneuma.fees import FeeEstimator, apply_gas_buffer, get_gas_buffer_percent
from abstractkit.pneuma.tx import TransactionRequest

SENDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
RECIPIENT = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

GWEI = 10**9


def _fee_client(make_client, **overrides):
    responses = {
        "eth_maxPriorityFeePerGas": hex(2 * GWEI),
        "eth_gasPrice": hex(30 * GWEI),
        "eth_estimateGas": hex(21000),
    }
    responses.update(overrides)
    return make_client(responses)


class TestApplyGasBuffer:
    @pytest.mark.parametrize(
        ("gas", "percent", "expected"),
        [
            (100_000, 10, 110_000),
            (100_000, 0, 100_000),
            (21_000, 10, 23_100),
            (99, 10, 108),  # integer floor
        ],
    )
    def test_buffer(self, gas: int, percent: int, expected: int) -> None:
        assert apply_gas_buffer(gas, percent) == expected

    def test_negative_percent_rejected(self) -> None:
        with pytest.raises(ValueError):
            apply_gas_buffer(100_000, -1)

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ABSTRACTKIT_GAS_BUFFER_PERCENT", "25")
        assert get_gas_buffer_percent() == 25

    def test_env_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ABSTRACTKIT_GAS_BUFFER_PERCENT", raising=False)
        assert get_gas_buffer_percent() == 10


class TestFeeEstimator:
    @pytest.mark.asyncio
    async def test_quote_defaults(self, make_client) -> None:
        estimator = FeeEstimator(_fee_client(make_client), buffer_percent=10)
        quote = await estimator.quote(TransactionRequest(SENDER, RECIPIENT, 1))

        assert quote.tip_cap == 2 * GWEI
        assert quote.fee_cap == 32 * GWEI
        assert quote.gas_limit == 23_100
        assert quote.to_tx_params() == {
            "gas": 23_100,
            "maxPriorityFeePerGas": 2 * GWEI,
            "maxFeePerGas": 32 * GWEI,
        }

    @pytest.mark.asyncio
    async def test_higher_explicit_fee_cap_wins(self, make_client) -> None:
        estimator = FeeEstimator(_fee_client(make_client), buffer_percent=10)
        _, cap = await estimator.suggest_fees(fee_cap=100 * GWEI)
        assert cap == 100 * GWEI

    @pytest.mark.asyncio
    async def test_lower_explicit_fee_cap_ignored(self, make_client) -> None:
        estimator = FeeEstimator(_fee_client(make_client), buffer_percent=10)
        _, cap = await estimator.suggest_fees(fee_cap=1)
        assert cap == 32 * GWEI

    @pytest.mark.asyncio
    async def test_estimation_failure_is_not_defaulted(self, make_client) -> None:
        client = _fee_client(
            make_client,
            eth_estimateGas=RpcError("execution reverted", code=3),
        )
        estimator = FeeEstimator(client, buffer_percent=10)

        with pytest.raises(EstimationError) as exc_info:
            await estimator.estimate_gas(TransactionRequest(SENDER, RECIPIENT, 1))

        assert isinstance(exc_info.value.__cause__, RpcError)

    @pytest.mark.asyncio
    async def test_transport_failure_propagates(self, make_client) -> None:
        client = _fee_client(make_client, eth_estimateGas=TransportError("timed out"))
        estimator = FeeEstimator(client, buffer_percent=10)

        with pytest.raises(TransportError):
            await estimator.estimate_gas(TransactionRequest(SENDER, RECIPIENT, 1))

    @pytest.mark.asyncio
    async def test_estimate_call_object(self, make_client) -> None:
        client = _fee_client(make_client)
        estimator = FeeEstimator(client, buffer_percent=0)

        await estimator.estimate_gas(TransactionRequest(SENDER, RECIPIENT, 255, b"\x01\x02"))

        method, params = client.calls[-1]
        assert method == "eth_estimateGas"
        assert params == [{"from": SENDER, "to": RECIPIENT, "value": "0xff", "data": "0x0102"}]

    def test_negative_buffer_rejected(self, make_client) -> None:
        with pytest.raises(ValueError):
            FeeEstimator(make_client(), buffer_percent=-5)
