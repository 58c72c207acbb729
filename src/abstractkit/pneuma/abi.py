"""
ABI helpers - loading, function call encoding and event signatures.

ABIs are plain lists of dicts as produced by solc / Foundry. They can be
loaded from a JSON string, an ABI file, or a build artifact with an ``abi``
key. Minimal ERC-20 and ERC-721 ABIs ship with the package.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Union

from eth_abi import decode, encode

from ..utils import keccak256, to_bytes

AbiLike = Union[str, Path, list]

MINIMAL_ERC20_ABI: list[dict[str, Any]] = [
    {"type": "function", "name": "name", "inputs": [], "outputs": [{"name": "", "type": "string"}], "stateMutability": "view"},
    {"type": "function", "name": "symbol", "inputs": [], "outputs": [{"name": "", "type": "string"}], "stateMutability": "view"},
    {"type": "function", "name": "decimals", "inputs": [], "outputs": [{"name": "", "type": "uint8"}], "stateMutability": "view"},
    {
        "type": "function",
        "name": "balanceOf",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "allowance",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "transfer",
        "inputs": [{"name": "recipient", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "approve",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "transferFrom",
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
    },
    {
        "type": "event",
        "name": "Approval",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "owner", "type": "address"},
            {"indexed": True, "name": "spender", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
    },
]

MINIMAL_ERC721_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "balanceOf",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "ownerOf",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "tokenURI",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "transferFrom",
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "tokenId", "type": "uint256"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": True, "name": "tokenId", "type": "uint256"},
        ],
    },
    {
        "type": "event",
        "name": "Approval",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "owner", "type": "address"},
            {"indexed": True, "name": "approved", "type": "address"},
            {"indexed": True, "name": "tokenId", "type": "uint256"},
        ],
    },
]


def load_abi(source: AbiLike) -> list[dict[str, Any]]:
    """
    Load an ABI.

    Args:
        source: An ABI list, a JSON string, or a path to an ABI / build
            artifact JSON file (Foundry ``out/*.json`` artifacts carry the ABI
            under ``"abi"``).

    Returns:
        ABI as a list of dicts

    Raises:
        FileNotFoundError: If the path does not exist
        ValueError: If the JSON is not an ABI
    """
    if isinstance(source, list):
        return source

    text = str(source).strip()
    if isinstance(source, Path) or not text.startswith(("[", "{")):
        return _load_abi_file(str(Path(source).expanduser().resolve()))

    return _coerce_abi(json.loads(text))


@lru_cache(maxsize=16)
def _load_abi_file(path: str) -> list[dict[str, Any]]:
    abi_path = Path(path)
    if not abi_path.exists():
        raise FileNotFoundError(f"ABI not found: {abi_path}")

    with abi_path.open("r", encoding="utf-8") as f:
        return _coerce_abi(json.load(f))


def _coerce_abi(artifact: Any) -> list[dict[str, Any]]:
    if isinstance(artifact, dict):
        artifact = artifact.get("abi")
    if not isinstance(artifact, list):
        raise ValueError("JSON does not contain an ABI list")
    return artifact


def canonical_type(param: dict[str, Any]) -> str:
    """Canonical type string of an ABI parameter, expanding tuples."""
    typ = param["type"]
    if typ.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def find_function(abi: list[dict[str, Any]], function_name: str) -> dict[str, Any]:
    for entry in abi:
        if entry.get("type") == "function" and entry.get("name") == function_name:
            return entry
    raise ValueError(f"Function {function_name} not found in ABI")


def find_event(abi: list[dict[str, Any]], event_name: str) -> dict[str, Any]:
    for entry in abi:
        if entry.get("type") == "event" and entry.get("name") == event_name:
            return entry
    raise ValueError(f"Event {event_name} not found in ABI")


def event_signature(event: dict[str, Any]) -> str:
    types = ",".join(canonical_type(inp) for inp in event.get("inputs", []))
    return f"{event['name']}({types})"


def event_topic(event: dict[str, Any]) -> str:
    """Keccak-256 of the canonical event signature (topic 0)."""
    return "0x" + keccak256(event_signature(event).encode("utf-8")).hex()


def encode_function_call(abi: list[dict[str, Any]], function_name: str, args: list) -> str:
    """
    ABI-encode a function call.

    Args:
        abi: Contract ABI
        function_name: Function name to call
        args: Function arguments

    Returns:
        0x-prefixed hex encoded calldata
    """
    func = find_function(abi, function_name)

    input_types = [canonical_type(inp) for inp in func.get("inputs", [])]
    sig = f"{function_name}({','.join(input_types)})"
    selector = keccak256(sig.encode("utf-8"))[:4]

    if args:
        encoded_args = encode(input_types, args)
    else:
        encoded_args = b""

    return "0x" + selector.hex() + encoded_args.hex()


def decode_function_result(
    abi: list[dict[str, Any]], function_name: str, data: Union[str, bytes]
) -> Any:
    """
    ABI-decode a function call result.

    Returns:
        Decoded result (single value or tuple), None for functions without
        outputs
    """
    func = find_function(abi, function_name)

    output_types = [canonical_type(out) for out in func.get("outputs", [])]
    if not output_types:
        return None

    decoded = decode(output_types, to_bytes(data))

    if len(decoded) == 1:
        return decoded[0]
    return decoded
