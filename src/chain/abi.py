"""Call-data encoding and result decoding for the few ERC-20 / mint calls we make."""

from __future__ import annotations

from typing import Any, Sequence

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

from core.errors import InvalidInputError

BALANCE_OF = "balanceOf(address)"
DECIMALS = "decimals()"
SYMBOL = "symbol()"
ALLOWANCE = "allowance(address,address)"
APPROVE = "approve(address,uint256)"


def parse_signature(signature: str) -> tuple[str, list[str]]:
    """Split ``name(type,...)`` into its name and top-level argument types."""
    normalized = signature.replace(" ", "")
    open_idx = normalized.find("(")
    if open_idx <= 0 or not normalized.endswith(")"):
        raise InvalidInputError(f"Malformed function signature: {signature}")
    name = normalized[:open_idx]
    body = normalized[open_idx + 1 : -1]

    types: list[str] = []
    depth = 0
    current = ""
    for char in body:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise InvalidInputError(f"Unbalanced parentheses in {signature}")
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        current += char
    if depth != 0:
        raise InvalidInputError(f"Unbalanced parentheses in {signature}")
    if current:
        types.append(current)
    if any(not t for t in types):
        raise InvalidInputError(f"Empty argument type in {signature}")
    return name, types


def selector(signature: str) -> bytes:
    name, types = parse_signature(signature)
    return keccak(text=f"{name}({','.join(types)})")[:4]


def encode_call(signature: str, args: Sequence[Any]) -> bytes:
    """Four-byte selector followed by the ABI-encoded arguments."""
    _, types = parse_signature(signature)
    if len(types) != len(args):
        raise InvalidInputError(
            f"{signature} expects {len(types)} arguments, got {len(args)}"
        )
    return selector(signature) + abi_encode(types, list(args))


def decode_uint(data: bytes) -> int:
    try:
        (value,) = abi_decode(["uint256"], data)
    except DecodingError as exc:
        raise ValueError("Call returned malformed uint256") from exc
    return value


def decode_string(data: bytes) -> str:
    """Decode a string result; older tokens return bytes32 instead."""
    if len(data) == 32:
        return data.rstrip(b"\x00").decode("utf-8", errors="replace")
    try:
        (value,) = abi_decode(["string"], data)
    except DecodingError as exc:
        raise ValueError("Call returned malformed string") from exc
    return value
