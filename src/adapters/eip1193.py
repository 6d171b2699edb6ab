"""Adapter for a generic EIP-1193 style provider: ``request(method, params)``."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from eth_utils import to_hex

from core.base_types import TransactionReceipt, TransactionRequest, TransactionType

from .base import AccountAdapter, AdapterType

logger = logging.getLogger(__name__)


def _quantity(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(str(value), 16)


def _data(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = str(value or "0x")
    body = text[2:] if text.startswith("0x") else text
    return bytes.fromhex(body)


class EIP1193Adapter(AccountAdapter):
    """
    Talks to a wallet through its JSON-RPC ``request`` entry point.

    This is the only backend that can really switch networks
    (``wallet_switchEthereumChain``); a 4902 reply means the chain is not
    added to the wallet and surfaces as ``NETWORK_MISMATCH``.
    """

    adapter_type = AdapterType.EIP1193
    required_features = ("request",)

    def _request(self, method: str, params: Optional[list] = None) -> Any:
        return self._client.request(method, list(params or []))

    def _resolve_address(self) -> str:
        accounts = self._request("eth_requestAccounts")
        return accounts[0] if accounts else ""

    def _fetch_chain_id(self) -> int:
        return _quantity(self._request("eth_chainId"))

    def _native_balance(self, address: str) -> int:
        return _quantity(self._request("eth_getBalance", [address, "latest"]))

    def _call(self, to: str, data: bytes) -> bytes:
        return _data(self._request("eth_call", [{"to": to, "data": to_hex(data)}, "latest"]))

    def _estimate_gas(self, request: TransactionRequest, sender: str) -> int:
        return _quantity(self._request("eth_estimateGas", [request.to_rpc_dict(sender)]))

    def _submit(self, request: TransactionRequest, sender: str) -> str:
        tx = request.to_rpc_dict(sender)
        if request.gas_mode == TransactionType.LEGACY and "gasPrice" not in tx:
            tx["gasPrice"] = self._request("eth_gasPrice")
        return str(self._request("eth_sendTransaction", [tx]))

    def _switch_network(self, chain_id: int) -> None:
        logger.info("requesting wallet switch to chain %d", chain_id)
        self._request("wallet_switchEthereumChain", [{"chainId": hex(chain_id)}])

    def _sign_message(self, message: str | bytes) -> str:
        if isinstance(message, str):
            payload = to_hex(text=message)
        else:
            payload = to_hex(bytes(message))
        return str(self._request("personal_sign", [payload, self.address]))

    def _sign_typed_data(self, payload: dict) -> str:
        return str(self._request("eth_signTypedData_v4", [self.address, json.dumps(payload)]))

    def _send_calls(self, method: str, params: list) -> Any:
        return self._request(method, params)

    def _fetch_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        data = self._request("eth_getTransactionReceipt", [tx_hash])
        if data is None:
            return None
        return TransactionReceipt.from_web3(data)

    def _fetch_block_number(self) -> int:
        return _quantity(self._request("eth_blockNumber"))

    def _fetch_nonce(self, address: str, block: str) -> int:
        return _quantity(self._request("eth_getTransactionCount", [address, block]))

    def _fetch_block_transactions(self, number: int) -> list:
        block = self._request("eth_getBlockByNumber", [hex(number), True])
        if not block:
            return []
        return list(block.get("transactions", []))

    def _fetch_transaction(self, tx_hash: str) -> Optional[dict]:
        return self._request("eth_getTransactionByHash", [tx_hash])
