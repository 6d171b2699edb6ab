"""Ethereum JSON-RPC client with retries and error classification."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

import requests

from core.base_types import TransactionReceipt

from .errors import (
    ChainError,
    InsufficientFunds,
    NonceTooLow,
    ReplacementUnderpriced,
    RPCError,
)

logger = logging.getLogger(__name__)

BlockId = Union[str, int]


@dataclass(frozen=True)
class GasPrice:
    """Current EIP-1559 fee information."""

    base_fee: int
    priority_fee_low: int
    priority_fee_medium: int
    priority_fee_high: int

    def get_priority_fee(self, priority: str = "medium") -> int:
        priority_fee = {
            "low": self.priority_fee_low,
            "medium": self.priority_fee_medium,
            "high": self.priority_fee_high,
        }.get(priority)
        if priority_fee is None:
            raise ValueError("priority must be low, medium, or high")
        return priority_fee

    def get_max_fee(self, priority: str = "medium", buffer_percent: int = 20) -> int:
        """maxFeePerGas with headroom for base fee increase, rounded up."""
        if buffer_percent < 0:
            raise ValueError("buffer_percent must not be negative")
        buffered = -(-self.base_fee * (100 + buffer_percent) // 100)
        return buffered + self.get_priority_fee(priority)


class ChainClient:
    """
    Ethereum RPC client with reliability features.

    Features:
    - Automatic retry with exponential backoff
    - Multiple RPC endpoint fallback
    - Request timing/logging
    - Raw error classification (normalized later at the adapter edge)
    """

    def __init__(
        self,
        rpc_urls: list[str],
        timeout: int = 30,
        max_retries: int = 3,
    ):
        if not rpc_urls:
            raise ValueError("rpc_urls must not be empty")
        self._rpc_urls = list(rpc_urls)
        self._timeout = timeout
        self._max_retries = max_retries
        self._session = requests.Session()

    def __repr__(self) -> str:
        return f"ChainClient(urls={len(self._rpc_urls)}, timeout={self._timeout})"

    def get_chain_id(self) -> int:
        return _hex_to_int(self._rpc_call("eth_chainId", []))

    def get_block_number(self) -> int:
        return _hex_to_int(self._rpc_call("eth_blockNumber", []))

    def get_balance(self, address: str, block: BlockId = "latest") -> int:
        balance_hex = self._rpc_call("eth_getBalance", [address, _block_param(block)])
        return _hex_to_int(balance_hex)

    def get_nonce(self, address: str, block: BlockId = "pending") -> int:
        nonce_hex = self._rpc_call(
            "eth_getTransactionCount", [address, _block_param(block)]
        )
        return _hex_to_int(nonce_hex)

    def get_gas_price(self) -> GasPrice:
        block = self._rpc_call("eth_getBlockByNumber", ["latest", False])
        base_fee = _hex_to_int(block.get("baseFeePerGas", "0x0"))
        priority_fee = _hex_to_int(self._rpc_call("eth_maxPriorityFeePerGas", []))
        return GasPrice(
            base_fee=base_fee,
            priority_fee_low=priority_fee,
            priority_fee_medium=priority_fee,
            priority_fee_high=priority_fee * 3 // 2,
        )

    def get_legacy_gas_price(self) -> int:
        return _hex_to_int(self._rpc_call("eth_gasPrice", []))

    def estimate_gas(self, tx: dict) -> int:
        gas_hex = self._rpc_call("eth_estimateGas", [tx])
        return _hex_to_int(gas_hex)

    def call(self, tx: dict, block: BlockId = "latest") -> bytes:
        result = self._rpc_call("eth_call", [tx, _block_param(block)])
        return _hex_to_bytes(result)

    def send_transaction(self, signed_tx: bytes) -> str:
        tx_hash = self._rpc_call("eth_sendRawTransaction", ["0x" + bytes(signed_tx).hex()])
        return str(tx_hash)

    def get_transaction(self, tx_hash: str) -> Optional[dict]:
        return self._rpc_call("eth_getTransactionByHash", [tx_hash])

    def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        data = self._rpc_call("eth_getTransactionReceipt", [tx_hash])
        if data is None:
            return None
        return TransactionReceipt.from_web3(data)

    def get_block(self, block: BlockId, full: bool = False) -> Optional[dict]:
        return self._rpc_call("eth_getBlockByNumber", [_block_param(block), full])

    def _rpc_call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        last_error: Optional[Exception] = None
        for url in self._rpc_urls:
            for attempt in range(self._max_retries):
                start = time.perf_counter()
                try:
                    response = self._session.post(
                        url,
                        json=payload,
                        timeout=self._timeout,
                    )
                    elapsed = time.perf_counter() - start
                    logger.info("rpc %s %s in %.3fs", method, url, elapsed)
                    if response.status_code >= 400:
                        raise RPCError(f"HTTP {response.status_code} from {url}")
                    data = response.json()
                    if "error" in data:
                        self._raise_rpc_error(data["error"])
                    return data.get("result")
                except (requests.Timeout, requests.ConnectionError) as exc:
                    last_error = exc
                    logger.warning(
                        "rpc %s %s attempt %d failed: %s", method, url, attempt + 1, exc
                    )
                    self._sleep_backoff(attempt)
                except ChainError:
                    raise
                except json.JSONDecodeError as exc:
                    last_error = exc
                    self._sleep_backoff(attempt)
        raise ChainError(f"RPC request {method} failed") from last_error

    def _sleep_backoff(self, attempt: int) -> None:
        delay = 0.5 * (2**attempt)
        time.sleep(delay)

    def _raise_rpc_error(self, error: dict) -> None:
        message = str(error.get("message", "RPC error"))
        code = error.get("code")
        data = error.get("data")
        lowered = message.lower()
        if "insufficient funds" in lowered:
            raise InsufficientFunds(message, code=code, data=data)
        if "nonce too low" in lowered:
            raise NonceTooLow(message, code=code, data=data)
        if "replacement transaction underpriced" in lowered:
            raise ReplacementUnderpriced(message, code=code, data=data)
        raise RPCError(message, code=code, data=data)


def _block_param(block: BlockId) -> str:
    if isinstance(block, bool):
        raise ValueError("block must be a tag or block number")
    if isinstance(block, int):
        return hex(block)
    return block


def _hex_to_int(value: str) -> int:
    if not isinstance(value, str):
        raise RPCError("Expected hex string result")
    return int(value, 16)


def _hex_to_bytes(value: str) -> bytes:
    if not isinstance(value, str):
        raise RPCError("Expected hex string result")
    normalized = value[2:] if value.startswith("0x") else value
    if normalized == "":
        return b""
    return bytes.fromhex(normalized)
