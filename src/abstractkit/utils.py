from __future__ import annotations

from typing import Union

from eth_hash.auto import keccak

HexLike = Union[str, bytes, bytearray]


def keccak256(data: bytes) -> bytes:
    # NOTE: Keccak-256 != SHA3-256 (NIST). Never use hashlib.sha3_256 here.
    return keccak(data)


def to_bytes(value: HexLike) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    raw = value[2:] if value.startswith(("0x", "0X")) else value
    if len(raw) % 2:
        raw = "0" + raw
    return bytes.fromhex(raw)


def to_hex(value: Union[int, HexLike]) -> str:
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Cannot hex-encode negative quantity: {value}")
        return hex(value)
    return "0x" + to_bytes(value).hex()


def hex_to_int(value: Union[str, int, None]) -> int:
    if value is None:
        raise ValueError("Expected a hex quantity, got None")
    if isinstance(value, int):
        return value
    return int(value, 16)


def is_address(value: str) -> bool:
    if not isinstance(value, str) or not value.startswith("0x") or len(value) != 42:
        return False
    try:
        int(value[2:], 16)
    except ValueError:
        return False
    return True


def to_checksum_address(address: str) -> str:
    """Convert an address to EIP-55 checksummed format.

    eth-account requires checksummed addresses in transaction fields.
    """
    if not is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    addr = address.lower().replace("0x", "")
    addr_hash = keccak256(addr.encode("utf-8")).hex()
    result = "0x"
    for i, c in enumerate(addr):
        if c in "abcdef":
            result += c.upper() if int(addr_hash[i], 16) >= 8 else c
        else:
            result += c
    return result


def address_to_topic(address: str) -> str:
    """Left-pad a 20-byte address to a 32-byte topic word."""
    if not is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return "0x" + "0" * 24 + address[2:].lower()


def topic_to_address(topic: str) -> str:
    raw = to_bytes(topic)
    if len(raw) != 32:
        raise ValueError(f"Topic must be 32 bytes, got {len(raw)}")
    return to_checksum_address("0x" + raw[12:].hex())
