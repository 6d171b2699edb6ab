"""Adapter for a ``web3.Web3`` instance."""

from __future__ import annotations

import logging
from typing import Any, Optional

from eth_account.messages import encode_typed_data
from eth_utils import to_hex
from web3.exceptions import TransactionNotFound

from core.base_types import TransactionReceipt, TransactionRequest, TransactionType
from core.wallet_manager import to_signable

from .base import AccountAdapter, AdapterContext, AdapterType

logger = logging.getLogger(__name__)


class Web3Adapter(AccountAdapter):
    """
    Wraps a ``Web3`` instance.

    Transactions are sent through ``eth_sendTransaction`` on the node's
    unlocked account, or signed locally when ``context.signer`` is set and
    pushed with ``eth_sendRawTransaction``. The instance is bound to its
    provider, so ``switch_network`` is a no-op.
    """

    adapter_type = AdapterType.WEB3
    required_features = (
        "eth.send_transaction",
        "eth.get_balance",
        "eth.call",
        "eth.estimate_gas",
        "eth.get_transaction_receipt",
    )

    def __init__(self, client: Any, context: Optional[AdapterContext] = None):
        super().__init__(client, context)
        self._signer = self._context.signer

    @property
    def _eth(self) -> Any:
        return self._client.eth

    def _resolve_address(self) -> str:
        if self._signer is not None:
            return self._signer.address
        default = self._eth.default_account
        if isinstance(default, str) and default:
            return default
        accounts = self._eth.accounts
        return accounts[0] if accounts else ""

    def _fetch_chain_id(self) -> int:
        return int(self._eth.chain_id)

    def _native_balance(self, address: str) -> int:
        return int(self._eth.get_balance(address))

    def _call(self, to: str, data: bytes) -> bytes:
        return bytes(self._eth.call({"to": to, "data": to_hex(data)}))

    def _estimate_gas(self, request: TransactionRequest, sender: str) -> int:
        tx = request.to_dict()
        tx["from"] = sender
        return int(self._eth.estimate_gas(tx))

    def _submit(self, request: TransactionRequest, sender: str) -> str:
        tx = request.to_dict()
        tx["from"] = sender
        if request.gas_mode == TransactionType.LEGACY and "gasPrice" not in tx:
            tx["gasPrice"] = int(self._eth.gas_price)

        if self._signer is None:
            return to_hex(self._eth.send_transaction(tx))

        self._fill_for_signing(tx, request, sender)
        signed = self._signer.sign_transaction(tx)
        return to_hex(self._eth.send_raw_transaction(signed.raw_transaction))

    def _fill_for_signing(self, tx: dict, request: TransactionRequest, sender: str) -> None:
        tx.setdefault("chainId", int(self._eth.chain_id))
        tx.setdefault("nonce", int(self._eth.get_transaction_count(sender, "pending")))
        tx.setdefault("value", 0)
        tx.setdefault("data", "0x")
        if "gasPrice" not in tx and "maxFeePerGas" not in tx:
            priority = int(self._eth.max_priority_fee)
            base_fee = int(self._eth.get_block("latest").get("baseFeePerGas", 0))
            tx["maxPriorityFeePerGas"] = priority
            tx["maxFeePerGas"] = base_fee * 2 + priority
            tx["type"] = int(TransactionType.EIP1559)
        if "gas" not in tx:
            estimate_tx = {k: v for k, v in tx.items() if k != "nonce"}
            tx["gas"] = int(self._eth.estimate_gas(estimate_tx))
        tx.pop("from", None)
        logger.debug("web3 tx filled for local signing nonce=%s", tx["nonce"])

    def _sign_message(self, message: str | bytes) -> str:
        if self._signer is not None:
            return to_hex(self._signer.sign_message(to_signable(message)).signature)
        if isinstance(message, str):
            return to_hex(self._eth.sign(self.address, text=message))
        return to_hex(self._eth.sign(self.address, data=bytes(message)))

    def _sign_typed_data(self, payload: dict) -> str:
        if self._signer is not None:
            signable = encode_typed_data(full_message=payload)
            return to_hex(self._signer.sign_message(signable).signature)
        return to_hex(self._eth.sign_typed_data(self.address, payload))

    def _send_calls(self, method: str, params: list) -> Any:
        response = self._client.provider.make_request(method, params)
        if "error" in response:
            raise ValueError(response["error"])
        return response.get("result")

    def _fetch_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        try:
            receipt = self._eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        if receipt is None:
            return None
        return TransactionReceipt.from_web3(receipt)

    def _fetch_block_number(self) -> int:
        return int(self._eth.block_number)

    def _fetch_nonce(self, address: str, block: str) -> int:
        return int(self._eth.get_transaction_count(address, block))

    def _fetch_block_transactions(self, number: int) -> list:
        block = self._eth.get_block(number, full_transactions=True)
        return list(block.get("transactions", []))

    def _fetch_transaction(self, tx_hash: str) -> Optional[dict]:
        try:
            tx = self._eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        return dict(tx) if tx is not None else None
