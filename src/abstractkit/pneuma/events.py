"""
Decoding of push-subscription payloads.

Each decoder turns one raw JSON payload into a typed value or raises
``DecodeError``. The subscription dispatcher drops payloads that fail to
decode, so a malformed log never ends a stream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from ..errors import DecodeError
from ..utils import hex_to_int, to_bytes
from .abi import canonical_type, event_topic, find_event


@dataclass(frozen=True)
class Log:
    address: str
    topics: tuple[str, ...]
    data: bytes
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None
    removed: bool = False


@dataclass(frozen=True)
class BlockHeader:
    number: int
    hash: str
    parent_hash: str
    timestamp: int
    base_fee_per_gas: Optional[int] = None


@dataclass(frozen=True)
class DecodedEvent:
    kind: str
    args: dict[str, Any] = field(default_factory=dict)
    log: Optional[Log] = None

    def __getitem__(self, name: str) -> Any:
        return self.args[name]


def _optional_int(value: Any) -> Optional[int]:
    return hex_to_int(value) if value is not None else None


def parse_log(raw: Any) -> Log:
    if isinstance(raw, Log):
        return raw
    try:
        topics = tuple(str(t).lower() for t in raw.get("topics", []))
        if len(topics) > 4:
            raise DecodeError(f"log has {len(topics)} topics, at most 4 allowed")
        return Log(
            address=raw["address"],
            topics=topics,
            data=to_bytes(raw.get("data") or "0x"),
            block_number=_optional_int(raw.get("blockNumber")),
            transaction_hash=raw.get("transactionHash"),
            log_index=_optional_int(raw.get("logIndex")),
            removed=bool(raw.get("removed", False)),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise DecodeError(f"malformed log: {exc}", operation="parse_log") from exc


def parse_header(raw: Any) -> BlockHeader:
    try:
        return BlockHeader(
            number=hex_to_int(raw["number"]),
            hash=raw["hash"],
            parent_hash=raw["parentHash"],
            timestamp=hex_to_int(raw["timestamp"]),
            base_fee_per_gas=_optional_int(raw.get("baseFeePerGas")),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise DecodeError(f"malformed header: {exc}", operation="parse_header") from exc


def parse_transaction_hash(raw: Any) -> str:
    if isinstance(raw, str) and raw.startswith("0x") and len(raw) == 66:
        try:
            int(raw, 16)
        except ValueError:
            pass
        else:
            return raw
    raise DecodeError(f"malformed transaction hash: {raw!r}", operation="parse_transaction_hash")


def decode_event(event: dict[str, Any], raw: Any) -> DecodedEvent:
    """
    Decode a log against an event ABI entry.

    Indexed values come from topics 1..n, the rest from the data payload.
    Indexed dynamic values (string, bytes, arrays) are only available as
    their 32-byte hash.

    Raises:
        DecodeError: wrong signature, topic count differing from the number of
            indexed parameters, or undecodable data
    """
    log = parse_log(raw)
    name = event["name"]
    inputs = event.get("inputs", [])
    indexed = [inp for inp in inputs if inp.get("indexed")]
    plain = [inp for inp in inputs if not inp.get("indexed")]

    if len(log.topics) != len(indexed) + 1:
        raise DecodeError(
            f"{name} declares {len(indexed)} indexed parameters, log has {len(log.topics) - 1} topics",
            operation="decode_event",
        )
    if log.topics[0] != event_topic(event):
        raise DecodeError(f"log is not a {name} event", operation="decode_event")

    args: dict[str, Any] = {}
    try:
        for param, topic in zip(indexed, log.topics[1:]):
            typ = canonical_type(param)
            if typ in ("string", "bytes") or typ.endswith("]") or typ.startswith("("):
                args[param["name"]] = topic
            else:
                args[param["name"]] = decode([typ], to_bytes(topic))[0]

        values = decode([canonical_type(p) for p in plain], log.data) if plain else ()
    except (DecodingError, ValueError, OverflowError) as exc:
        raise DecodeError(f"cannot decode {name}: {exc}", operation="decode_event") from exc

    for param, value in zip(plain, values):
        args[param["name"]] = value

    return DecodedEvent(kind=name, args=args, log=log)


def event_decoder(abi: list[dict[str, Any]], event_name: str) -> Callable[[Any], DecodedEvent]:
    event = find_event(abi, event_name)

    def _decode(raw: Any) -> DecodedEvent:
        return decode_event(event, raw)

    return _decode
