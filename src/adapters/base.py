"""Account Adapter contract shared by every backend."""

from __future__ import annotations

import inspect
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Iterator, Optional, TypeVar

from chain.abi import BALANCE_OF, DECIMALS, SYMBOL, decode_string, decode_uint, encode_call
from chain.client import ChainClient
from chain.confirmation import ConfirmationWaiter, Confirmed, Failed, Outcome, Replaced
from chain.errors import TransactionFailed
from config import get_float_env, get_list_env
from core.base_types import (
    Money,
    TransactionReceipt,
    TransactionRequest,
    TransactionResponse,
    checksum_address,
)
from core.errors import AdapterError, ErrorCategory, InvalidInputError, SDKError
from core.networks import NATIVE_DECIMALS, is_zero_address, native_symbol

from .normalizer import normalize_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdapterType(Enum):
    WEB3 = "web3"
    LOCAL_SIGNER = "local-signer"
    EIP1193 = "eip1193"


@dataclass
class AdapterContext:
    """
    Per-adapter collaborators and limits.

    Passed explicitly into every adapter; nothing here is shared process-wide.
    """

    rpc_client: Optional[ChainClient] = None
    read_timeout: float = 15.0
    confirmation_timeout: float = 120.0
    poll_interval: float = 1.0
    signer: Any = None

    def __post_init__(self) -> None:
        if self.read_timeout <= 0:
            raise InvalidInputError("read_timeout must be positive")
        if self.confirmation_timeout <= 0:
            raise InvalidInputError("confirmation_timeout must be positive")
        if self.poll_interval < 0:
            raise InvalidInputError("poll_interval must not be negative")

    @classmethod
    def from_env(cls, signer: Any = None) -> "AdapterContext":
        urls = get_list_env("ADAPTER_RPC_URLS")
        return cls(
            rpc_client=ChainClient(urls) if urls else None,
            read_timeout=get_float_env("ADAPTER_READ_TIMEOUT", 15.0),
            confirmation_timeout=get_float_env("ADAPTER_CONFIRMATION_TIMEOUT", 120.0),
            poll_interval=get_float_env("ADAPTER_POLL_INTERVAL", 1.0),
            signer=signer,
        )


class AccountAdapter(ABC):
    """
    One backend client handle behind the universal account operations.

    Subclasses implement the ``_``-prefixed backend primitives. Everything
    public goes through ``_translating`` so callers only ever see
    :class:`SDKError` subclasses, and every read runs under
    ``context.read_timeout``.
    """

    adapter_type: ClassVar[AdapterType]
    required_features: ClassVar[tuple[str, ...]] = ()

    def __init__(self, client: Any, context: Optional[AdapterContext] = None):
        self._context = context or AdapterContext()
        self.verify_client(client, self._context)
        self._client = client
        self._address: Optional[str] = None
        self._address_lock = threading.Lock()
        self._waiter = ConfirmationWaiter(
            timeout=self._context.confirmation_timeout,
            poll_interval=self._context.poll_interval,
        )

    @classmethod
    def verify_client(cls, client: Any, context: AdapterContext) -> None:
        """Fail fast when the handle lacks this backend's capability shape."""
        missing = [name for name in cls.required_features if not has_feature(client, name)]
        if missing:
            raise InvalidInputError(
                f"invalid client for {cls.adapter_type.value} adapter: "
                f"missing {', '.join(missing)}",
                details={"adapter_type": cls.adapter_type.value, "missing": missing},
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(address={self._address or '<unresolved>'})"

    @property
    def client(self) -> Any:
        return self._client

    @property
    def context(self) -> AdapterContext:
        return self._context

    @property
    def address(self) -> str:
        """Cached address; only valid after ``get_address()`` resolved it."""
        if self._address is None:
            raise AdapterError(
                ErrorCategory.INVALID_INPUT,
                "Address not resolved yet; call get_address() first",
                adapter_type=self.adapter_type.value,
                method="address",
            )
        return self._address

    # ── account operations ──────────────────────────────────────

    def get_address(self) -> str:
        if self._address is not None:
            return self._address
        with self._address_lock:
            if self._address is None:
                with self._translating("get_address"):
                    resolved = self._bounded(self._resolve_address)
                if not resolved:
                    raise AdapterError(
                        ErrorCategory.INVALID_INPUT,
                        "Backend returned no account address",
                        adapter_type=self.adapter_type.value,
                        method="get_address",
                    )
                self._address = checksum_address(resolved, "account address")
                logger.info("%s adapter resolved %s", self.adapter_type.value, self._address)
        return self._address

    def get_connected_network_id(self) -> int:
        with self._translating("get_connected_network_id"):
            return int(self._bounded(self._fetch_chain_id))

    def switch_network(self, chain_id: int) -> None:
        if isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id <= 0:
            raise InvalidInputError("chain_id must be a positive integer")
        with self._translating("switch_network", chain_id=chain_id):
            self._switch_network(chain_id)

    def get_balance(self, token_address: Optional[str] = None) -> Money:
        owner = self.get_address()
        if is_zero_address(token_address):
            with self._translating("get_balance"):
                raw = self._bounded(self._native_balance, owner)
                chain_id = self._bounded(self._fetch_chain_id)
            return Money(raw=int(raw), decimals=NATIVE_DECIMALS, symbol=native_symbol(chain_id))

        token = checksum_address(token_address, "token address")
        with self._translating("get_balance", token=token):
            raw = decode_uint(self._bounded(self._call, token, encode_call(BALANCE_OF, [owner])))
            decimals = decode_uint(self._bounded(self._call, token, encode_call(DECIMALS, [])))
            symbol = decode_string(self._bounded(self._call, token, encode_call(SYMBOL, [])))
        return Money(raw=raw, decimals=decimals, symbol=symbol or "ERC20", address=token)

    def call(self, to: str, data: bytes) -> bytes:
        target = checksum_address(to, "to address")
        with self._translating("call", to=target):
            return bytes(self._bounded(self._call, target, data))

    def estimate_gas(self, request: TransactionRequest) -> int:
        _require_request(request)
        sender = self.get_address()
        with self._translating("estimate_gas", to=request.to):
            return int(self._bounded(self._estimate_gas, request, sender))

    def send_transaction(self, request: TransactionRequest) -> str:
        """Submit and return the hash; nothing about confirmation is implied."""
        _require_request(request)
        sender = self.get_address()
        with self._translating("send_transaction", to=request.to):
            tx_hash = self._submit(request, sender)
        logger.info("%s sent %s to %s", self.adapter_type.value, tx_hash, request.to)
        return tx_hash

    def send_transaction_with_confirmation(
        self, request: TransactionRequest, confirmations: int = 1
    ) -> TransactionResponse:
        _require_request(request)
        if isinstance(confirmations, bool) or not isinstance(confirmations, int) or confirmations < 1:
            raise InvalidInputError("confirmations must be a positive integer")
        sender = self.get_address()

        with self._translating("send_transaction_with_confirmation", to=request.to):
            chain_id = request.chain_id or int(self._bounded(self._fetch_chain_id))
            start_block = self.fetch_block_number()
            tx_hash = self._submit(request, sender)
            # wallets may assign their own nonce; only trust the submitted tx
            nonce = request.nonce
            if nonce is None:
                nonce = self.fetch_transaction_nonce(tx_hash)
            logger.info(
                "%s sent %s (nonce %s), waiting for %d confirmation(s)",
                self.adapter_type.value,
                tx_hash,
                nonce,
                confirmations,
            )
            outcome = self._waiter.wait(
                self,
                tx_hash,
                sender=sender,
                nonce=nonce,
                confirmations=confirmations,
                start_block=start_block,
            )
            if nonce is None:
                nonce = self.fetch_transaction_nonce(outcome.receipt.tx_hash)
        return self._resolve_outcome(outcome, tx_hash, sender, chain_id, nonce)

    def sign_message(self, message: str | bytes) -> str:
        if isinstance(message, (str, bytes, bytearray)) and len(message) == 0:
            raise InvalidInputError("message must not be empty")
        if not isinstance(message, (str, bytes, bytearray)):
            raise InvalidInputError("message must be str or bytes")
        self.get_address()
        with self._translating("sign_message"):
            return self._sign_message(message)

    def sign_typed_data(self, payload: dict) -> str:
        """Sign a full EIP-712 payload (types, primaryType, domain, message)."""
        if not isinstance(payload, dict):
            raise InvalidInputError("typed data payload must be a dict")
        missing = [key for key in ("types", "primaryType", "domain", "message") if key not in payload]
        if missing:
            raise InvalidInputError(f"typed data payload missing {', '.join(missing)}")
        self.get_address()
        with self._translating("sign_typed_data"):
            return self._sign_typed_data(payload)

    def send_calls(self, method: str, params: list | None = None) -> Any:
        """Raw wallet RPC passthrough for backends that own a transport."""
        if not isinstance(method, str) or not method:
            raise InvalidInputError("method must be a non-empty string")
        with self._translating("send_calls", rpc_method=method):
            return self._send_calls(method, list(params or []))

    # ── chain source for the confirmation waiter ───────────────

    def fetch_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        return self._bounded(self._fetch_receipt, tx_hash)

    def fetch_block_number(self) -> int:
        return int(self._bounded(self._fetch_block_number))

    def fetch_nonce(self, address: str) -> int:
        return int(self._bounded(self._fetch_nonce, address, "latest"))

    def fetch_block_transactions(self, number: int) -> list:
        return list(self._bounded(self._fetch_block_transactions, number))

    def fetch_transaction_nonce(self, tx_hash: str) -> Optional[int]:
        """Nonce of a submitted transaction, or None while the node does not know it."""
        tx = self._bounded(self._fetch_transaction, tx_hash)
        if not tx or tx.get("nonce") is None:
            return None
        nonce = tx["nonce"]
        if isinstance(nonce, str):
            return int(nonce, 16) if nonce.startswith("0x") else int(nonce)
        return int(nonce)

    # ── backend primitives ─────────────────────────────────────

    @abstractmethod
    def _resolve_address(self) -> str: ...

    @abstractmethod
    def _fetch_chain_id(self) -> int: ...

    @abstractmethod
    def _native_balance(self, address: str) -> int: ...

    @abstractmethod
    def _call(self, to: str, data: bytes) -> bytes: ...

    @abstractmethod
    def _estimate_gas(self, request: TransactionRequest, sender: str) -> int: ...

    @abstractmethod
    def _submit(self, request: TransactionRequest, sender: str) -> str: ...

    @abstractmethod
    def _sign_message(self, message: str | bytes) -> str: ...

    @abstractmethod
    def _sign_typed_data(self, payload: dict) -> str: ...

    @abstractmethod
    def _fetch_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]: ...

    @abstractmethod
    def _fetch_block_number(self) -> int: ...

    @abstractmethod
    def _fetch_nonce(self, address: str, block: str) -> int: ...

    @abstractmethod
    def _fetch_block_transactions(self, number: int) -> list: ...

    @abstractmethod
    def _fetch_transaction(self, tx_hash: str) -> Optional[dict]: ...

    def _switch_network(self, chain_id: int) -> None:
        logger.debug(
            "%s adapter is bound to one endpoint; switch to %d ignored",
            self.adapter_type.value,
            chain_id,
        )

    def _send_calls(self, method: str, params: list) -> Any:
        raise AdapterError(
            ErrorCategory.INVALID_INPUT,
            f"{self.adapter_type.value} adapter has no wallet transport for {method}",
            adapter_type=self.adapter_type.value,
            method="send_calls",
        )

    # ── helpers ────────────────────────────────────────────────

    def _resolve_outcome(
        self,
        outcome: Outcome,
        tx_hash: str,
        sender: str,
        chain_id: int,
        nonce: Optional[int],
    ) -> TransactionResponse:
        if isinstance(outcome, Confirmed):
            return TransactionResponse.from_receipt(
                outcome.receipt, sender, chain_id, outcome.confirmations, nonce
            )

        if isinstance(outcome, Replaced):
            if outcome.is_cancellation:
                raise AdapterError(
                    ErrorCategory.TRANSACTION_REPLACED,
                    f"Transaction {tx_hash} was cancelled by {outcome.replacement_hash}",
                    adapter_type=self.adapter_type.value,
                    method="send_transaction_with_confirmation",
                    details={
                        "cancelled": True,
                        "original_hash": tx_hash,
                        "replacement_hash": outcome.replacement_hash,
                    },
                )
            response = TransactionResponse.from_receipt(
                outcome.receipt,
                sender,
                chain_id,
                outcome.confirmations,
                nonce,
                replaced_hash=tx_hash,
            )
            if not outcome.receipt.status:
                raise self._reverted(response, outcome.receipt)
            return response

        if isinstance(outcome, Failed):
            response = TransactionResponse.from_receipt(
                outcome.receipt, sender, chain_id, outcome.confirmations, nonce
            )
            raise self._reverted(response, outcome.receipt)

        raise TypeError(f"Unexpected confirmation outcome {outcome!r}")

    def _reverted(self, response: TransactionResponse, receipt: TransactionReceipt) -> AdapterError:
        cause = TransactionFailed(response.hash, receipt)
        error = AdapterError(
            ErrorCategory.TRANSACTION_REVERTED,
            str(cause),
            adapter_type=self.adapter_type.value,
            method="send_transaction_with_confirmation",
            details={"response": response, "tx_hash": response.hash},
            cause=cause,
        )
        error.__cause__ = cause
        return error

    @contextmanager
    def _translating(self, method: str, **params: Any) -> Iterator[None]:
        try:
            yield
        except SDKError:
            raise
        except Exception as exc:
            raise normalize_error(exc, self.adapter_type, method, params) from exc

    def _bounded(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a read on a worker thread, giving up after ``read_timeout``."""
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(fn, *args)
            return future.result(timeout=self._context.read_timeout)
        finally:
            pool.shutdown(wait=False)


def _require_request(request: Any) -> None:
    if not isinstance(request, TransactionRequest):
        raise InvalidInputError(
            f"expected TransactionRequest, got {type(request).__name__}"
        )


def has_feature(obj: Any, dotted: str) -> bool:
    """
    True when ``obj.a.b`` exists, looked up without running property getters.

    A property is accepted as the last segment (its presence is the feature)
    but never traversed, since evaluating it may hit the network.
    """
    current = obj
    parts = dotted.split(".")
    for index, part in enumerate(parts):
        try:
            value = inspect.getattr_static(current, part)
        except AttributeError:
            return False
        if index == len(parts) - 1:
            return True
        if isinstance(value, property):
            return False
        current = value
    return True
