"""Closed error taxonomy shared by adapters and the purchase orchestrator."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorCategory(Enum):
    """Stable, machine-readable error categories."""

    INVALID_INPUT = "invalid_input"
    UNRECOGNIZED_CLIENT = "unrecognized_client"
    NETWORK_MISMATCH = "network_mismatch"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    TRANSACTION_REJECTED = "transaction_rejected"
    NONCE_TOO_LOW = "nonce_too_low"
    NONCE_PENDING = "nonce_pending"
    GAS_ESTIMATION_FAILED = "gas_estimation_failed"
    GAS_PRICE_TOO_LOW = "gas_price_too_low"
    TRANSACTION_REVERTED = "transaction_reverted"
    TRANSACTION_REPLACED = "transaction_replaced"
    TIMEOUT = "timeout"
    HARDWARE_WALLET_ERROR = "hardware_wallet_error"
    CONTRACT_ERROR = "contract_error"
    UNKNOWN = "unknown"


class SDKError(Exception):
    """Base class for every error surfaced to callers."""

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        self.category = category
        self.message = message
        self.details = dict(details or {})
        self.cause = cause
        super().__init__(message)

    @property
    def code(self) -> str:
        return self.category.value

    def __str__(self) -> str:
        return f"[{self.category.value}] {self.message}"


class InvalidInputError(SDKError, ValueError):
    """Local validation failure; never worth retrying."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(ErrorCategory.INVALID_INPUT, message, details, cause)


class UnrecognizedClientError(SDKError, TypeError):
    """No backend probe matched the supplied client handle."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(ErrorCategory.UNRECOGNIZED_CLIENT, message, details)


class AdapterError(SDKError):
    """Backend failure normalized at an adapter edge."""

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        adapter_type: Optional[str] = None,
        method: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        self.adapter_type = adapter_type
        self.method = method
        super().__init__(category, message, details, cause)

    @property
    def is_cancellation(self) -> bool:
        return bool(self.details.get("cancelled"))


class PurchaseError(SDKError):
    """Execution failure carrying the receipts of steps that already landed."""

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        step_id: Optional[str] = None,
        receipts: Optional[list] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        self.step_id = step_id
        self.receipts = list(receipts or [])
        super().__init__(category, message, details, cause)
