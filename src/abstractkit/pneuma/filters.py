"""
Event filter compilation.

Turns an ABI event name plus a mapping of indexed-parameter name to accepted
values into a positional topic matrix:

    [ (signature_hash,), slot_1, slot_2, slot_3 ]

Slot 0 is always the exact event signature hash. Slot *i* corresponds to the
*i*-th indexed parameter in declaration order and is either ``None`` (matches
anything) or a tuple of accepted 32-byte topics (OR-matched). Slots are
AND-matched with each other. Trailing unconstrained slots are dropped.

Compilation is pure: the same inputs always yield an equal ``FilterSpec``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional

from eth_abi import encode

from ..utils import address_to_topic, keccak256, to_bytes, to_hex
from .abi import canonical_type, event_topic, find_event

if TYPE_CHECKING:
    from .events import Log

TopicSlot = Optional[tuple[str, ...]]

_DYNAMIC_TYPES = ("string", "bytes")


@dataclass(frozen=True)
class FilterSpec:
    contract_address: str
    event_signature_hash: str
    topic_matrix: tuple[TopicSlot, ...]

    def to_rpc_params(self) -> dict[str, Any]:
        """Filter object for ``eth_subscribe("logs", ...)`` / ``eth_getLogs``."""
        return {
            "address": self.contract_address,
            "topics": [list(slot) if slot is not None else None for slot in self.topic_matrix],
        }

    def matches(self, log: "Log") -> bool:
        if log.address.lower() != self.contract_address.lower():
            return False
        if len(log.topics) < len(self.topic_matrix):
            return False
        for slot, topic in zip(self.topic_matrix, log.topics):
            if slot is not None and topic.lower() not in slot:
                return False
        return True


def encode_topic(param: dict[str, Any], value: Any) -> str:
    """Encode one indexed-parameter value as a 32-byte topic (lowercase hex)."""
    typ = canonical_type(param)
    if typ == "address":
        return address_to_topic(value)
    if typ in _DYNAMIC_TYPES:
        # Indexed dynamic values are stored as their hash.
        raw = value.encode("utf-8") if typ == "string" else to_bytes(value)
        return "0x" + keccak256(raw).hex()
    if typ.endswith("]") or typ.startswith("("):
        raise ValueError(f"Filtering on indexed {typ} values is not supported")
    return to_hex(encode([typ], [value])).lower()


def compile_filter(
    abi: list[dict[str, Any]],
    event_name: str,
    contract_address: str,
    filters: Optional[Mapping[str, Iterable[Any]]] = None,
) -> FilterSpec:
    """
    Compile an event filter.

    Args:
        abi: Contract ABI
        event_name: Event to watch
        contract_address: Emitting contract
        filters: Indexed parameter name -> accepted values. Empty value sets
            leave the slot unconstrained.

    Raises:
        ValueError: unknown or anonymous event, or a filter key that is not an
            indexed parameter of the event, or a bare string given as a
            value set
    """
    event = find_event(abi, event_name)
    if event.get("anonymous"):
        raise ValueError(f"Event {event_name} is anonymous and has no signature topic")

    signature_hash = event_topic(event)
    indexed = [inp for inp in event.get("inputs", []) if inp.get("indexed")]
    filters = dict(filters or {})

    unknown = set(filters) - {inp.get("name") for inp in indexed}
    if unknown:
        raise ValueError(
            f"Not indexed parameters of {event_name}: {', '.join(sorted(unknown))}"
        )
    for name, values in filters.items():
        if isinstance(values, (str, bytes, bytearray)):
            raise ValueError(
                f"Filter values for {name!r} must be a list of candidates, got {values!r}"
            )

    matrix: list[TopicSlot] = [(signature_hash,)]
    for position, param in enumerate(indexed, start=1):
        values = list(filters.get(param.get("name"), ()))
        if not values:
            continue
        # Topic slots are positional: pad up to this index.
        while len(matrix) <= position:
            matrix.append(None)
        matrix[position] = tuple(encode_topic(param, v) for v in values)

    return FilterSpec(
        contract_address=contract_address,
        event_signature_hash=signature_hash,
        topic_matrix=tuple(matrix),
    )
