"""Tests for log / header parsing and event decoding."""

from __future__ import annotations

import pytest
from eth_abi import encode

from abstractkit.errors import DecodeError
from abstractkit.pneuma.abi import MINIMAL_ERC20_ABI, MINIMAL_ERC721_ABI, find_event
from abstractkit.pneuma.events import (
    decode_event,
    event_decoder,
    parse_header,
    parse_log,
    parse_transaction_hash,
)
from abstractkit.utils import keccak256

TOKEN = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
ALICE = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
BOB = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

TRANSFER_TOPIC = "0x" + keccak256(b"Transfer(address,address,uint256)").hex()


def _padded(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def transfer_log(amount: int = 1000, topics=None) -> dict:
    return {
        "address": TOKEN,
        "topics": topics if topics is not None else [TRANSFER_TOPIC, _padded(ALICE), _padded(BOB)],
        "data": "0x" + encode(["uint256"], [amount]).hex(),
        "blockNumber": "0x10",
        "transactionHash": "0x" + "ab" * 32,
        "logIndex": "0x2",
        "removed": False,
    }


class TestParseLog:
    def test_parses_wire_json(self) -> None:
        log = parse_log(transfer_log())
        assert log.address == TOKEN
        assert log.block_number == 16
        assert log.log_index == 2
        assert log.topics[0] == TRANSFER_TOPIC
        assert len(log.data) == 32

    def test_more_than_four_topics_rejected(self) -> None:
        with pytest.raises(DecodeError):
            parse_log(transfer_log(topics=[TRANSFER_TOPIC] * 5))

    def test_missing_address_rejected(self) -> None:
        raw = transfer_log()
        del raw["address"]
        with pytest.raises(DecodeError):
            parse_log(raw)

    def test_non_object_rejected(self) -> None:
        with pytest.raises(DecodeError):
            parse_log("not a log")


class TestDecodeEvent:
    def test_decodes_erc20_transfer(self) -> None:
        event = decode_event(find_event(MINIMAL_ERC20_ABI, "Transfer"), transfer_log(1000))

        assert event.kind == "Transfer"
        assert event["from"].lower() == ALICE.lower()
        assert event["to"].lower() == BOB.lower()
        assert event["value"] == 1000
        assert event.log is not None and event.log.block_number == 16

    def test_fewer_topics_than_indexed_params(self) -> None:
        decoder = event_decoder(MINIMAL_ERC20_ABI, "Transfer")
        with pytest.raises(DecodeError):
            decoder(transfer_log(topics=[TRANSFER_TOPIC, _padded(ALICE)]))

    def test_erc721_log_does_not_decode_as_erc20(self) -> None:
        # Same signature hash, but the token id is a fourth topic.
        raw = transfer_log(topics=[TRANSFER_TOPIC, _padded(ALICE), _padded(BOB), "0x" + "00" * 31 + "07"])
        raw["data"] = "0x"
        with pytest.raises(DecodeError):
            decode_event(find_event(MINIMAL_ERC20_ABI, "Transfer"), raw)

        decoded = decode_event(find_event(MINIMAL_ERC721_ABI, "Transfer"), raw)
        assert decoded["tokenId"] == 7

    def test_wrong_signature(self) -> None:
        raw = transfer_log(topics=["0x" + "11" * 32, _padded(ALICE), _padded(BOB)])
        with pytest.raises(DecodeError):
            decode_event(find_event(MINIMAL_ERC20_ABI, "Transfer"), raw)

    def test_truncated_data(self) -> None:
        raw = transfer_log()
        raw["data"] = "0x1234"
        with pytest.raises(DecodeError):
            decode_event(find_event(MINIMAL_ERC20_ABI, "Transfer"), raw)


class TestHeadersAndHashes:
    def test_parse_header(self) -> None:
        header = parse_header(
            {
                "number": "0x1b4",
                "hash": "0x" + "aa" * 32,
                "parentHash": "0x" + "bb" * 32,
                "timestamp": "0x6553f100",
                "baseFeePerGas": "0x3b9aca00",
            }
        )
        assert header.number == 436
        assert header.base_fee_per_gas == 10**9

    def test_parse_header_without_base_fee(self) -> None:
        header = parse_header(
            {"number": "0x1", "hash": "0x" + "aa" * 32, "parentHash": "0x" + "bb" * 32, "timestamp": "0x0"}
        )
        assert header.base_fee_per_gas is None

    def test_malformed_header(self) -> None:
        with pytest.raises(DecodeError):
            parse_header({"number": "zz"})

    def test_transaction_hash(self) -> None:
        tx_hash = "0x" + "cd" * 32
        assert parse_transaction_hash(tx_hash) == tx_hash
        with pytest.raises(DecodeError):
            parse_transaction_hash("0x1234")
        with pytest.raises(DecodeError):
            parse_transaction_hash(None)
