"""Fluent transaction builder that fills nonce, gas and fees, then signs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from eth_account.datastructures import SignedTransaction

from core.base_types import TransactionRequest, TransactionType, checksum_address
from core.errors import InvalidInputError

from .client import ChainClient

logger = logging.getLogger(__name__)


@dataclass
class _TxState:
    to: Optional[str] = None
    value: int = 0
    data: Optional[str] = None
    nonce: Optional[int] = None
    gas_limit: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee: Optional[int] = None
    chain_id: Optional[int] = None
    tx_type: Optional[TransactionType] = None


class TransactionBuilder:
    """
    Fluent builder for transactions signed by a local key.

    The signer is anything with an ``address`` and ``sign_transaction(dict)``
    (``WalletManager`` or an eth-account ``LocalAccount``).

    Usage:
        tx = (TransactionBuilder(client, wallet)
            .to(recipient)
            .value(10**17)
            .data(calldata)
            .with_gas_estimate()
            .with_gas_price("high")
            .build())
    """

    def __init__(self, client: ChainClient, signer: Any):
        self._client = client
        self._signer = signer
        self._state = _TxState()

    @classmethod
    def from_request(
        cls, client: ChainClient, signer: Any, request: TransactionRequest
    ) -> "TransactionBuilder":
        """Seed the builder with every field the request already carries."""
        builder = cls(client, signer)
        state = builder._state
        state.to = request.to
        state.value = request.int_field("value") or 0
        state.data = request.data
        state.nonce = request.nonce
        state.gas_limit = request.int_field("gas_limit")
        state.gas_price = request.int_field("gas_price")
        state.max_fee_per_gas = request.int_field("max_fee_per_gas")
        state.max_priority_fee = request.int_field("max_priority_fee_per_gas")
        state.chain_id = request.chain_id
        state.tx_type = request.gas_mode
        return builder

    def to(self, address: str) -> "TransactionBuilder":
        self._state.to = checksum_address(address, "to address")
        return self

    def value(self, amount: int) -> "TransactionBuilder":
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidInputError("value must be a non-negative integer")
        self._state.value = amount
        return self

    def data(self, calldata: bytes | str) -> "TransactionBuilder":
        if isinstance(calldata, (bytes, bytearray)):
            calldata = "0x" + bytes(calldata).hex()
        self._state.data = calldata
        return self

    def nonce(self, nonce: int) -> "TransactionBuilder":
        """Explicit nonce (for replacement or batch)."""
        self._state.nonce = nonce
        return self

    def gas_limit(self, limit: int) -> "TransactionBuilder":
        self._state.gas_limit = limit
        return self

    def chain_id(self, chain_id: int) -> "TransactionBuilder":
        """Set EVM chain id for signing."""
        if chain_id <= 0:
            raise InvalidInputError("chain_id must be positive")
        self._state.chain_id = chain_id
        return self

    def legacy(self) -> "TransactionBuilder":
        self._state.tx_type = TransactionType.LEGACY
        return self

    def with_gas_estimate(self, buffer_percent: int = 20) -> "TransactionBuilder":
        """Estimate gas and set limit with buffer (rounded up)."""
        if buffer_percent < 0:
            raise InvalidInputError("buffer_percent must not be negative")
        estimate = self._client.estimate_gas(
            self._build_request(require_complete=False).to_rpc_dict(self._sender)
        )
        self._state.gas_limit = -(-estimate * (100 + buffer_percent) // 100)
        return self

    def with_gas_price(self, priority: str = "medium") -> "TransactionBuilder":
        """Set fees from current network conditions, in the builder's gas mode."""
        if self._state.tx_type == TransactionType.LEGACY:
            self._state.gas_price = self._client.get_legacy_gas_price()
            return self
        gas = self._client.get_gas_price()
        self._state.max_priority_fee = gas.get_priority_fee(priority)
        self._state.max_fee_per_gas = gas.get_max_fee(priority)
        self._state.tx_type = TransactionType.EIP1559
        return self

    def with_defaults(self, priority: str = "medium") -> "TransactionBuilder":
        """Fill every missing field from the node without touching set ones."""
        state = self._state
        if state.chain_id is None:
            state.chain_id = self._client.get_chain_id()
        if state.nonce is None:
            state.nonce = self._client.get_nonce(self._sender, "pending")
        if state.gas_price is None and state.max_fee_per_gas is None:
            self.with_gas_price(priority)
        if state.gas_limit is None:
            self.with_gas_estimate()
        logger.debug(
            "filled tx nonce=%s gas=%s type=%s", state.nonce, state.gas_limit, state.tx_type
        )
        return self

    def build(self) -> TransactionRequest:
        """Validate and return transaction request."""
        return self._build_request(require_complete=True)

    def build_and_sign(self) -> SignedTransaction:
        """Build, sign, and return ready-to-send transaction."""
        request = self.build()
        return self._signer.sign_transaction(request.to_dict())

    def send(self) -> str:
        """Build, sign, send, return tx hash."""
        signed = self.build_and_sign()
        return self._client.send_transaction(signed.raw_transaction)

    @property
    def _sender(self) -> str:
        return checksum_address(self._signer.address, "signer address")

    def _build_request(self, require_complete: bool) -> TransactionRequest:
        state = self._state
        if state.to is None:
            raise InvalidInputError("to address is required")

        if require_complete:
            if state.gas_limit is None:
                raise InvalidInputError("gas_limit is required (call with_gas_estimate)")
            if state.nonce is None:
                raise InvalidInputError("nonce is required")
            if state.chain_id is None:
                raise InvalidInputError("chain_id is required")
            if state.gas_price is None and state.max_fee_per_gas is None:
                raise InvalidInputError("fees are required (call with_gas_price)")

        return TransactionRequest(
            to=state.to,
            value=state.value,
            data=state.data if state.data is not None else "0x",
            nonce=state.nonce,
            gas_limit=state.gas_limit,
            gas_price=state.gas_price,
            max_fee_per_gas=state.max_fee_per_gas,
            max_priority_fee_per_gas=state.max_priority_fee,
            chain_id=state.chain_id,
            type=state.tx_type,
        )
