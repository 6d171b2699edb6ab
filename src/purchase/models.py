"""Purchase plan and result types."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from config import get_int_env
from core.base_types import (
    Money,
    TransactionRequest,
    TransactionResponse,
    TransactionStatus,
    checksum_address,
)
from core.errors import ErrorCategory, InvalidInputError, PurchaseError, SDKError
from core.networks import ZERO_ADDRESS

if TYPE_CHECKING:
    from adapters.base import AccountAdapter

logger = logging.getLogger(__name__)

DEFAULT_MINT_SIGNATURE = "mintProxy(address,uint256,uint16,uint32[],bytes32[][],address)"


class SaleStatus(Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    ENDED = "ended"
    SOLD_OUT = "sold-out"


class StepType(Enum):
    APPROVAL = "approval"
    MINT = "mint"
    BURN_REDEEM = "burn-redeem"


class OrderStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


def _require_int(name: str, value: Any, minimum: int = 0) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise InvalidInputError(f"{name} must be an integer >= {minimum}", details={name: value})


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ClaimState:
    """
    On-chain claim state supplied by the product layer (read-only here).

    ``contract_address`` is the claim extension that mints and, unless
    ``spender`` says otherwise, spends the ERC-20 allowance. Limits of
    ``None`` mean unlimited. ``allowance`` may be pre-fetched; otherwise the
    orchestrator reads it. Claims minted with ``merkle_proofs`` are allowlist
    mints.
    """

    network_id: int
    contract_address: str
    creator_contract: str
    instance_id: int
    price: Money
    platform_fee: Optional[Money] = None
    merkle_platform_fee: Optional[Money] = None
    total_max: Optional[int] = None
    total_minted: int = 0
    wallet_max: Optional[int] = None
    wallet_minted: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    spender: Optional[str] = None
    allowance: Optional[int] = None
    mint_indices: tuple = ()
    merkle_proofs: tuple = ()
    mint_signature: str = DEFAULT_MINT_SIGNATURE

    def __post_init__(self) -> None:
        _require_int("network_id", self.network_id, minimum=1)
        _require_int("instance_id", self.instance_id)
        _require_int("total_minted", self.total_minted)
        _require_int("wallet_minted", self.wallet_minted)
        for name in ("total_max", "wallet_max", "allowance"):
            if getattr(self, name) is not None:
                _require_int(name, getattr(self, name))
        if not isinstance(self.price, Money):
            raise InvalidInputError("price must be Money")
        for name in ("platform_fee", "merkle_platform_fee"):
            if getattr(self, name) is not None and not isinstance(getattr(self, name), Money):
                raise InvalidInputError(f"{name} must be Money")
        object.__setattr__(
            self, "contract_address", checksum_address(self.contract_address, "contract address")
        )
        object.__setattr__(
            self, "creator_contract", checksum_address(self.creator_contract, "creator contract")
        )
        if self.spender is not None:
            object.__setattr__(self, "spender", checksum_address(self.spender, "spender"))

    @property
    def allowance_spender(self) -> str:
        return self.spender or self.contract_address

    @property
    def is_allowlist_mint(self) -> bool:
        return bool(self.merkle_proofs)

    def applicable_platform_fee(self) -> Optional[Money]:
        """Allowlist mints pay ``merkle_platform_fee`` when the claim sets one."""
        if self.is_allowlist_mint and self.merkle_platform_fee is not None:
            return self.merkle_platform_fee
        return self.platform_fee

    def status(self, now: Optional[datetime] = None) -> SaleStatus:
        moment = _as_utc(now or datetime.now(timezone.utc))
        if self.start_time is not None and moment < _as_utc(self.start_time):
            return SaleStatus.UPCOMING
        if self.end_time is not None and moment > _as_utc(self.end_time):
            return SaleStatus.ENDED
        if self.total_max and self.total_minted >= self.total_max:
            return SaleStatus.SOLD_OUT
        return SaleStatus.ACTIVE

    def remaining_allocation(self) -> Optional[int]:
        """Units this wallet may still mint; ``None`` when unlimited."""
        limits = []
        if self.total_max:
            limits.append(max(0, self.total_max - self.total_minted))
        if self.wallet_max:
            limits.append(max(0, self.wallet_max - self.wallet_minted))
        return min(limits) if limits else None

    def mint_args(self, quantity: int, recipient: str) -> list:
        return [
            self.creator_contract,
            self.instance_id,
            quantity,
            list(self.mint_indices),
            [list(proof) for proof in self.merkle_proofs],
            recipient,
        ]


@dataclass(frozen=True)
class GasBuffer:
    """Either a percentage on top of the estimate (rounded up) or a fixed amount."""

    percent: Optional[int] = None
    fixed: Optional[int] = None

    def __post_init__(self) -> None:
        if (self.percent is None) == (self.fixed is None):
            raise InvalidInputError("GasBuffer needs exactly one of percent or fixed")
        if self.percent is not None:
            _require_int("percent", self.percent)
        if self.fixed is not None:
            _require_int("fixed", self.fixed)

    def apply(self, estimate: int) -> int:
        if self.percent is not None:
            return -(-estimate * (100 + self.percent) // 100)
        return estimate + (self.fixed or 0)


@dataclass(frozen=True)
class PurchaseParams:
    """
    Caller choices for one purchase.

    Fee fields are copied onto every step request unchanged; giving
    ``gas_price`` together with the EIP-1559 pair is rejected here, before
    any adapter is touched.
    """

    quantity: Any = 1
    recipient: Optional[str] = None
    gas_buffer: Optional[GasBuffer] = None
    check_balance: bool = True
    gas_price: Optional[int | str] = None
    max_fee_per_gas: Optional[int | str] = None
    max_priority_fee_per_gas: Optional[int | str] = None

    def __post_init__(self) -> None:
        # validates exclusivity and pairing of the fee fields
        TransactionRequest(to=ZERO_ADDRESS, **self.fee_fields())

    def fee_fields(self) -> dict:
        fields = {
            "gas_price": self.gas_price,
            "max_fee_per_gas": self.max_fee_per_gas,
            "max_priority_fee_per_gas": self.max_priority_fee_per_gas,
        }
        return {key: value for key, value in fields.items() if value is not None}


@dataclass(frozen=True)
class Eligibility:
    is_eligible: bool
    status: SaleStatus
    available_quantity: Optional[int]
    reason: Optional[str] = None


@dataclass(frozen=True)
class Cost:
    """Cost breakdown; ``totals`` is keyed by currency address (zero = native)."""

    product: Money
    platform_fee: Money
    totals: dict
    total: Money

    @property
    def native_total(self) -> int:
        native = self.totals.get(ZERO_ADDRESS)
        return native.raw if native is not None else 0

    @property
    def erc20_totals(self) -> list[Money]:
        return [money for address, money in self.totals.items() if address != ZERO_ADDRESS]


@dataclass(frozen=True)
class Receipt:
    """Per-step execution result."""

    step_id: str
    step_type: StepType
    tx_hash: str
    network_id: int
    block_number: Optional[int]
    gas_used: int
    effective_gas_price: int
    status: TransactionStatus
    replaced_hash: Optional[str] = None

    @property
    def fee_wei(self) -> int:
        return self.gas_used * self.effective_gas_price

    @classmethod
    def from_response(cls, step: "PurchaseStep", response: TransactionResponse) -> "Receipt":
        return cls(
            step_id=step.id,
            step_type=step.type,
            tx_hash=response.hash,
            network_id=response.chain_id,
            block_number=response.block_number,
            gas_used=int(response.gas_used or 0),
            effective_gas_price=int(response.effective_gas_price or 0),
            status=response.status,
            replaced_hash=response.replaced_hash,
        )


@dataclass(frozen=True)
class PurchaseStep:
    id: str
    name: str
    type: StepType
    request: TransactionRequest
    gas_estimate: int
    description: str = ""
    cost: Optional[Money] = None
    reestimate: bool = False
    gas_buffer: Optional[GasBuffer] = None

    @property
    def network_id(self) -> Optional[int]:
        return self.request.chain_id

    def execute(self, adapter: "AccountAdapter", confirmations: int = 1) -> Receipt:
        connected = adapter.get_connected_network_id()
        if self.network_id is not None and connected != self.network_id:
            raise SDKError(
                ErrorCategory.NETWORK_MISMATCH,
                f"Step {self.id} needs chain {self.network_id}, wallet is on {connected}",
                details={"expected": self.network_id, "actual": connected},
            )

        request = self.request
        if self.reestimate:
            estimate = adapter.estimate_gas(request.with_changes(gas_limit=None))
            limit = self.gas_buffer.apply(estimate) if self.gas_buffer else estimate
            logger.info("step %s re-estimated gas %d -> limit %d", self.id, estimate, limit)
            request = request.with_changes(gas_limit=limit)

        response = adapter.send_transaction_with_confirmation(request, confirmations)
        return Receipt.from_response(self, response)


@dataclass(frozen=True)
class PreparedPurchase:
    eligibility: Eligibility
    cost: Cost
    steps: tuple
    buyer: str
    recipient: str
    network_id: int
    quantity: int


@dataclass
class Order:
    """Result of executing a prepared purchase; receipts are kept in execution order."""

    buyer: str
    recipient: str
    cost: Cost
    status: OrderStatus = OrderStatus.PENDING
    receipts: list = field(default_factory=list)
    failed_step_id: Optional[str] = None
    error: Optional[SDKError] = None

    @property
    def is_completed(self) -> bool:
        return self.status == OrderStatus.COMPLETED

    def record(self, receipt: Receipt) -> None:
        self.receipts.append(receipt)

    def complete(self) -> None:
        self.status = OrderStatus.COMPLETED

    def fail(self, step_id: str, error: SDKError) -> None:
        self.failed_step_id = step_id
        self.error = error
        self.status = OrderStatus.PARTIAL if self.receipts else OrderStatus.FAILED

    def raise_for_status(self) -> None:
        if self.status == OrderStatus.COMPLETED:
            return
        if self.error is None:
            raise PurchaseError(
                ErrorCategory.UNKNOWN,
                f"Order is {self.status.value}",
                receipts=self.receipts,
            )
        raise PurchaseError(
            self.error.category,
            f"Purchase {self.status.value} at step {self.failed_step_id}: {self.error.message}",
            step_id=self.failed_step_id,
            receipts=self.receipts,
            details=self.error.details,
            cause=self.error,
        ) from self.error


@dataclass(frozen=True)
class OrchestratorConfig:
    confirmations: int = 1
    fallback_gas: int = 200_000

    def __post_init__(self) -> None:
        _require_int("confirmations", self.confirmations, minimum=1)
        _require_int("fallback_gas", self.fallback_gas, minimum=21_000)

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        return cls(
            confirmations=get_int_env("PURCHASE_CONFIRMATIONS", 1),
            fallback_gas=get_int_env("PURCHASE_FALLBACK_GAS", 200_000),
        )
