"""Adapter for a private-key signer bound to one JSON-RPC endpoint."""

from __future__ import annotations

from typing import Any, Optional

from eth_account.messages import encode_typed_data
from eth_utils import to_hex

from chain.client import ChainClient
from chain.transaction_builder import TransactionBuilder
from core.base_types import TransactionReceipt, TransactionRequest
from core.errors import InvalidInputError
from core.wallet_manager import to_signable

from .base import AccountAdapter, AdapterContext, AdapterType


class LocalSignerAdapter(AccountAdapter):
    """
    Signs with a local key (``WalletManager`` or eth-account ``LocalAccount``)
    and talks to the chain through ``context.rpc_client``.

    Missing nonce, gas and fees are filled by :class:`TransactionBuilder` in
    the request's own gas mode. The signer is pinned to one RPC endpoint, so
    ``switch_network`` is a no-op.
    """

    adapter_type = AdapterType.LOCAL_SIGNER
    required_features = ("address", "sign_transaction", "sign_message")

    @classmethod
    def verify_client(cls, client: Any, context: AdapterContext) -> None:
        super().verify_client(client, context)
        if not isinstance(context.rpc_client, ChainClient):
            raise InvalidInputError(
                "invalid client for local-signer adapter: context.rpc_client "
                "must be a ChainClient",
                details={"adapter_type": cls.adapter_type.value},
            )

    @property
    def _rpc(self) -> ChainClient:
        return self._context.rpc_client  # type: ignore[return-value]

    def _resolve_address(self) -> str:
        return self._client.address

    def _fetch_chain_id(self) -> int:
        return self._rpc.get_chain_id()

    def _native_balance(self, address: str) -> int:
        return self._rpc.get_balance(address)

    def _call(self, to: str, data: bytes) -> bytes:
        return self._rpc.call({"to": to, "data": to_hex(data)})

    def _estimate_gas(self, request: TransactionRequest, sender: str) -> int:
        return self._rpc.estimate_gas(request.to_rpc_dict(sender))

    def _submit(self, request: TransactionRequest, sender: str) -> str:
        builder = TransactionBuilder.from_request(self._rpc, self._client, request)
        return builder.with_defaults().send()

    def _sign_message(self, message: str | bytes) -> str:
        return to_hex(self._client.sign_message(to_signable(message)).signature)

    def _sign_typed_data(self, payload: dict) -> str:
        signable = encode_typed_data(full_message=payload)
        return to_hex(self._client.sign_message(signable).signature)

    def _fetch_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        return self._rpc.get_receipt(tx_hash)

    def _fetch_block_number(self) -> int:
        return self._rpc.get_block_number()

    def _fetch_nonce(self, address: str, block: str) -> int:
        return self._rpc.get_nonce(address, block)

    def _fetch_block_transactions(self, number: int) -> list:
        block = self._rpc.get_block(number, full=True)
        if not block:
            return []
        return list(block.get("transactions", []))

    def _fetch_transaction(self, tx_hash: str) -> Optional[dict]:
        return self._rpc.get_transaction(tx_hash)
