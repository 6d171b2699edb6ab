"""Core type definitions: addresses, money, and the universal transaction model."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, Optional, Union

from eth_utils.address import is_address, to_checksum_address

from .errors import InvalidInputError
from .networks import NATIVE_DECIMALS, ZERO_ADDRESS, is_zero_address

Quantity = Union[str, int]

_DECIMAL_RE = re.compile(r"^[0-9]+$")
_HEX_DATA_RE = re.compile(r"^0x(?:[0-9a-fA-F]{2})*$")


@dataclass(frozen=True)
class Address:
    """Ethereum address with validation and checksumming."""

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str):
            raise TypeError("Address value must be a string")
        if not is_address(self.value):
            raise InvalidInputError(
                "Invalid Ethereum address", details={"address": self.value}
            )
        object.__setattr__(self, "value", to_checksum_address(self.value))

    @classmethod
    def from_string(cls, s: str) -> "Address":
        return cls(s)

    @property
    def checksum(self) -> str:
        return self.value

    @property
    def lower(self) -> str:
        return self.value.lower()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Address):
            return self.lower == other.lower
        if isinstance(other, str):
            return self.lower == other.lower()
        return False

    def __str__(self) -> str:
        return self.value


def checksum_address(value: Any, field: str = "address") -> str:
    """Validate and checksum an address, raising InvalidInputError on bad input."""
    if not isinstance(value, str):
        raise InvalidInputError(f"{field} must be a string", details={field: value})
    try:
        return Address(value).checksum
    except InvalidInputError as exc:
        raise InvalidInputError(
            f"Invalid {field}: {value}", details={field: value}
        ) from exc


# ── money ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Money:
    """
    A currency amount with a fixed identity.

    Internally stores the raw integer in base units (wei-equivalent). The
    currency identity is ``(address, decimals, symbol)``; the zero address
    denotes the chain's native currency. Arithmetic and ordering only work
    between amounts of the same identity.
    """

    raw: int
    decimals: int
    symbol: str
    address: str = ZERO_ADDRESS

    def __post_init__(self) -> None:
        if isinstance(self.raw, bool) or not isinstance(self.raw, int):
            raise TypeError("raw must be an int")
        if self.raw < 0:
            raise InvalidInputError("Money cannot be negative", details={"raw": self.raw})
        if (
            isinstance(self.decimals, bool)
            or not isinstance(self.decimals, int)
            or self.decimals < 0
        ):
            raise InvalidInputError("decimals must be a non-negative integer")
        if not isinstance(self.symbol, str) or not self.symbol:
            raise InvalidInputError("symbol must be a non-empty string")
        normalized = ZERO_ADDRESS if is_zero_address(self.address) else None
        if normalized is None:
            normalized = checksum_address(self.address, "currency address")
        object.__setattr__(self, "address", normalized)

    @classmethod
    def from_human(
        cls,
        amount: str | Decimal,
        decimals: int,
        symbol: str,
        address: str = ZERO_ADDRESS,
    ) -> "Money":
        """Create from a human-readable amount (e.g. '1.5' ETH)."""
        if isinstance(amount, float):
            raise TypeError("amount must be a string or Decimal, not float")
        if isinstance(amount, str):
            decimal_amount = Decimal(amount)
        elif isinstance(amount, Decimal):
            decimal_amount = amount
        else:
            raise TypeError("amount must be a string or Decimal")

        raw_decimal = decimal_amount.scaleb(decimals)
        if raw_decimal != raw_decimal.to_integral_value():
            raise InvalidInputError("amount has more precision than decimals allow")
        return cls(raw=int(raw_decimal), decimals=decimals, symbol=symbol, address=address)

    @classmethod
    def native(cls, raw: int, symbol: str = "ETH") -> "Money":
        return cls(raw=raw, decimals=NATIVE_DECIMALS, symbol=symbol)

    def zero(self) -> "Money":
        """Zero amount in this currency."""
        return dataclasses.replace(self, raw=0)

    @property
    def is_native(self) -> bool:
        return self.address == ZERO_ADDRESS

    @property
    def is_erc20(self) -> bool:
        return not self.is_native

    @property
    def contract_address(self) -> Optional[str]:
        return None if self.is_native else self.address

    @property
    def human(self) -> Decimal:
        """Exact human-readable decimal."""
        return Decimal(self.raw).scaleb(-self.decimals)

    @property
    def formatted(self) -> str:
        return _format_units(self.raw, self.decimals)

    def is_zero(self) -> bool:
        return self.raw == 0

    def is_positive(self) -> bool:
        return self.raw > 0

    def is_same_currency(self, other: "Money") -> bool:
        return (
            self.address == other.address
            and self.decimals == other.decimals
            and self.symbol == other.symbol
        )

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other, "add")
        return dataclasses.replace(self, raw=self.raw + other.raw)

    def __sub__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other, "subtract")
        if other.raw > self.raw:
            raise InvalidInputError(
                f"Cannot subtract {other} from {self} - would result in negative"
            )
        return dataclasses.replace(self, raw=self.raw - other.raw)

    def __mul__(self, factor: int | Decimal) -> "Money":
        if isinstance(factor, (float, bool)):
            raise TypeError("factor must be int or Decimal")
        if isinstance(factor, int):
            return dataclasses.replace(self, raw=self.raw * factor)
        if isinstance(factor, Decimal):
            raw_decimal = Decimal(self.raw) * factor
            if raw_decimal != raw_decimal.to_integral_value():
                raise InvalidInputError("factor results in fractional base units")
            return dataclasses.replace(self, raw=int(raw_decimal))
        return NotImplemented

    __rmul__ = __mul__

    def divide_int(self, divisor: int) -> "Money":
        """Divide by a positive integer, flooring to whole base units."""
        if isinstance(divisor, bool) or not isinstance(divisor, int) or divisor <= 0:
            raise InvalidInputError(
                f"Divisor must be a positive integer, received {divisor}"
            )
        return dataclasses.replace(self, raw=self.raw // divisor)

    def __lt__(self, other: "Money") -> bool:
        self._require_same_currency(other, "compare")
        return self.raw < other.raw

    def __le__(self, other: "Money") -> bool:
        self._require_same_currency(other, "compare")
        return self.raw <= other.raw

    def __gt__(self, other: "Money") -> bool:
        self._require_same_currency(other, "compare")
        return self.raw > other.raw

    def __ge__(self, other: "Money") -> bool:
        self._require_same_currency(other, "compare")
        return self.raw >= other.raw

    def __str__(self) -> str:
        return f"{self.formatted} {self.symbol}"

    def _require_same_currency(self, other: "Money", operation: str) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot {operation} Money and {type(other).__name__}")
        if not self.is_same_currency(other):
            raise InvalidInputError(
                f"Cannot {operation} different currencies: {self.symbol} and {other.symbol}",
                details={"left": self.address, "right": other.address},
            )


def _format_units(raw: int, decimals: int) -> str:
    whole, fraction = divmod(raw, 10**decimals)
    if decimals == 0 or fraction == 0:
        return str(whole)
    digits = str(fraction).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{digits}"


# ── universal transaction model ─────────────────────────────────


class TransactionType(IntEnum):
    LEGACY = 0
    EIP1559 = 2


class TransactionStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


_QUANTITY_FIELDS = (
    "value",
    "gas_limit",
    "gas_price",
    "max_fee_per_gas",
    "max_priority_fee_per_gas",
)

_DICT_KEYS = {
    "value": "value",
    "gas_limit": "gas",
    "gas_price": "gasPrice",
    "max_fee_per_gas": "maxFeePerGas",
    "max_priority_fee_per_gas": "maxPriorityFeePerGas",
}


@dataclass(frozen=True)
class TransactionRequest:
    """
    Backend-agnostic transaction request.

    Quantities are stored as decimal strings so no backend's numeric type
    leaks through; ints are accepted and normalized, floats are rejected.
    Legacy ``gas_price`` and the EIP-1559 fee pair are mutually exclusive.
    """

    to: str
    value: Optional[Quantity] = None
    data: Optional[Union[str, bytes]] = None
    gas_limit: Optional[Quantity] = None
    nonce: Optional[int] = None
    chain_id: Optional[int] = None
    type: Optional[Union[TransactionType, int]] = None
    gas_price: Optional[Quantity] = None
    max_fee_per_gas: Optional[Quantity] = None
    max_priority_fee_per_gas: Optional[Quantity] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "to", checksum_address(self.to, "to address"))
        for name in _QUANTITY_FIELDS:
            object.__setattr__(self, name, _normalize_quantity(name, getattr(self, name)))
        object.__setattr__(self, "data", _normalize_data(self.data))
        if self.nonce is not None:
            if isinstance(self.nonce, bool) or not isinstance(self.nonce, int) or self.nonce < 0:
                raise InvalidInputError("nonce must be a non-negative integer")
        if self.chain_id is not None:
            if (
                isinstance(self.chain_id, bool)
                or not isinstance(self.chain_id, int)
                or self.chain_id <= 0
            ):
                raise InvalidInputError("chain_id must be a positive integer")
        object.__setattr__(self, "type", self._resolve_type())

    def _resolve_type(self) -> Optional[TransactionType]:
        has_legacy = self.gas_price is not None
        has_dynamic = (
            self.max_fee_per_gas is not None or self.max_priority_fee_per_gas is not None
        )
        if has_legacy and has_dynamic:
            raise InvalidInputError(
                "gas_price and EIP-1559 fee fields are mutually exclusive"
            )
        if has_dynamic and (
            self.max_fee_per_gas is None or self.max_priority_fee_per_gas is None
        ):
            raise InvalidInputError(
                "max_fee_per_gas and max_priority_fee_per_gas must be set together"
            )

        if self.type is None:
            if has_legacy:
                return TransactionType.LEGACY
            if has_dynamic:
                return TransactionType.EIP1559
            return None

        try:
            tx_type = TransactionType(self.type)
        except ValueError as exc:
            raise InvalidInputError(f"Unsupported transaction type: {self.type}") from exc
        if tx_type == TransactionType.LEGACY and has_dynamic:
            raise InvalidInputError("legacy transactions cannot carry EIP-1559 fees")
        if tx_type == TransactionType.EIP1559 and has_legacy:
            raise InvalidInputError("EIP-1559 transactions cannot carry gas_price")
        return tx_type

    @property
    def gas_mode(self) -> Optional[TransactionType]:
        return self.type  # type: ignore[return-value]

    @property
    def has_fee_fields(self) -> bool:
        return self.gas_price is not None or self.max_fee_per_gas is not None

    def int_field(self, name: str) -> Optional[int]:
        """Return a quantity field as int (None when unset)."""
        if name not in _QUANTITY_FIELDS:
            raise KeyError(name)
        value = getattr(self, name)
        return None if value is None else int(value)

    def with_changes(self, **changes: Any) -> "TransactionRequest":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to a web3 / eth-account compatible dict with int quantities."""
        payload: dict[str, object] = {"to": self.to}
        for name, key in _DICT_KEYS.items():
            value = self.int_field(name)
            if value is not None:
                payload[key] = value
        if self.data is not None:
            payload["data"] = self.data
        if self.nonce is not None:
            payload["nonce"] = self.nonce
        if self.chain_id is not None:
            payload["chainId"] = self.chain_id
        # eth-account only accepts an explicit type for typed envelopes
        if self.type == TransactionType.EIP1559:
            payload["type"] = int(self.type)
        return payload

    def to_rpc_dict(self, sender: Optional[str] = None) -> dict:
        """Convert to a JSON-RPC dict with hex-encoded quantities."""
        payload: dict[str, object] = {}
        if sender is not None:
            payload["from"] = sender
        for key, value in self.to_dict().items():
            if isinstance(value, int):
                payload[key] = hex(value)
            else:
                payload[key] = value
        if self.type is not None:
            payload["type"] = hex(int(self.type))
        return payload


def _normalize_quantity(name: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bool, float)):
        raise InvalidInputError(
            f"{name} must be an integer or decimal string, not {type(value).__name__}"
        )
    if isinstance(value, int):
        if value < 0:
            raise InvalidInputError(f"{name} must not be negative")
        return str(value)
    if isinstance(value, str):
        if not _DECIMAL_RE.match(value):
            raise InvalidInputError(
                f"{name} must be a decimal integer string", details={name: value}
            )
        return str(int(value))
    raise InvalidInputError(f"{name} has unsupported type {type(value).__name__}")


def _normalize_data(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, str) and _HEX_DATA_RE.match(value):
        return value.lower()
    raise InvalidInputError("data must be 0x-prefixed hex or bytes")


@dataclass(frozen=True)
class TransactionReceipt:
    """Parsed transaction receipt."""

    tx_hash: str
    block_number: int
    status: bool
    gas_used: int
    effective_gas_price: int
    logs: list
    block_hash: Optional[str] = None
    from_address: Optional[str] = None
    to: Optional[str] = None

    @property
    def tx_fee(self) -> Money:
        """Returns transaction fee in the native currency."""
        return Money.native(self.gas_used * self.effective_gas_price)

    @classmethod
    def from_web3(cls, receipt: Any) -> "TransactionReceipt":
        """Parse from a web3 receipt (AttributeDict) or a raw JSON-RPC dict."""
        status_value = receipt.get("status")
        if isinstance(status_value, bool):
            status = status_value
        elif isinstance(status_value, int):
            status = status_value == 1
        elif isinstance(status_value, str):
            if status_value.startswith("0x"):
                status = int(status_value, 16) == 1
            else:
                status = int(status_value) == 1
        else:
            raise ValueError("Invalid status in receipt")

        return cls(
            tx_hash=to_hex_str(receipt.get("transactionHash")) or "",
            block_number=_to_int(receipt.get("blockNumber")),
            status=status,
            gas_used=_to_int(receipt.get("gasUsed")),
            effective_gas_price=_to_int(receipt.get("effectiveGasPrice", 0)),
            logs=list(receipt.get("logs", [])),
            block_hash=to_hex_str(receipt.get("blockHash")),
            from_address=receipt.get("from"),
            to=receipt.get("to"),
        )


@dataclass(frozen=True)
class TransactionResponse:
    """
    Backend-agnostic view of a submitted transaction.

    Always starts ``PENDING``; only a receipt observed by the confirmation
    waiter can move it to ``CONFIRMED`` or ``FAILED``.
    """

    hash: str
    from_address: str
    to: Optional[str]
    status: TransactionStatus
    chain_id: int
    nonce: Optional[int] = None
    block_number: Optional[int] = None
    block_hash: Optional[str] = None
    gas_used: Optional[str] = None
    effective_gas_price: Optional[str] = None
    confirmations: int = 0
    logs: tuple = ()
    replaced_hash: Optional[str] = None

    @classmethod
    def pending(
        cls,
        tx_hash: str,
        from_address: str,
        request: TransactionRequest,
        chain_id: int,
        nonce: Optional[int] = None,
    ) -> "TransactionResponse":
        return cls(
            hash=tx_hash,
            from_address=from_address,
            to=request.to,
            status=TransactionStatus.PENDING,
            chain_id=chain_id,
            nonce=nonce if nonce is not None else request.nonce,
        )

    @classmethod
    def from_receipt(
        cls,
        receipt: TransactionReceipt,
        from_address: str,
        chain_id: int,
        confirmations: int,
        nonce: Optional[int] = None,
        replaced_hash: Optional[str] = None,
    ) -> "TransactionResponse":
        return cls(
            hash=receipt.tx_hash,
            from_address=receipt.from_address or from_address,
            to=receipt.to,
            status=TransactionStatus.CONFIRMED if receipt.status else TransactionStatus.FAILED,
            chain_id=chain_id,
            nonce=nonce,
            block_number=receipt.block_number,
            block_hash=receipt.block_hash,
            gas_used=str(receipt.gas_used),
            effective_gas_price=str(receipt.effective_gas_price),
            confirmations=confirmations,
            logs=tuple(receipt.logs),
            replaced_hash=replaced_hash,
        )

    @property
    def is_confirmed(self) -> bool:
        return self.status == TransactionStatus.CONFIRMED


def to_hex_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else f"0x{text}"


def _to_int(value: object) -> int:
    if isinstance(value, bool):
        raise ValueError("Expected integer-like value")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError("Expected integer-like value")
