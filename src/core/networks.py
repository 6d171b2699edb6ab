"""Native currency identity per chain id."""

from __future__ import annotations

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_DECIMALS = 18

_NATIVE_SYMBOLS = {
    1: "ETH",
    10: "ETH",
    137: "POL",
    360: "ETH",
    8453: "ETH",
    42161: "ETH",
    11155111: "ETH",
}


def native_symbol(chain_id: int) -> str:
    return _NATIVE_SYMBOLS.get(chain_id, "ETH")


def is_zero_address(address: str | None) -> bool:
    return address is None or address.lower() == ZERO_ADDRESS
