"""
Purchase Orchestrator.

Preparation builds an immutable plan before anything is sent:

1. resolve the buyer, validate the recipient
2. validate quantity against the remaining allocation and sale window
3. take the payment currency from the claim price
4. refuse a wallet on the wrong chain (never switches)
5. compute the cost per currency in exact integer math
6. prepend an ERC-20 approval only when the allowance is short
7. append the mint step with encoded call data and native value
8. apply the caller's gas buffer to every step
9. optionally check balances in every currency of the cost

Execution runs the steps strictly in order. The first ``SDKError`` stops
the run; receipts already collected stay on the order and nothing is
retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Sequence

from chain.abi import ALLOWANCE, APPROVE, decode_uint, encode_call
from core.base_types import Address, Money, TransactionRequest
from core.errors import AdapterError, ErrorCategory, InvalidInputError, SDKError
from core.networks import ZERO_ADDRESS

from .models import (
    ClaimState,
    Cost,
    Eligibility,
    OrchestratorConfig,
    Order,
    PreparedPurchase,
    PurchaseParams,
    PurchaseStep,
    SaleStatus,
    StepType,
)

logger = logging.getLogger(__name__)

Encoder = Callable[[str, Sequence[Any]], bytes]

# estimation failures that an earlier approval in the same plan can explain
_DEPENDENT_ESTIMATION_FAILURES = {
    ErrorCategory.GAS_ESTIMATION_FAILED,
    ErrorCategory.TRANSACTION_REVERTED,
    ErrorCategory.CONTRACT_ERROR,
}

_STATUS_REASONS = {
    SaleStatus.UPCOMING: "Sale has not started yet",
    SaleStatus.ENDED: "Sale has ended",
    SaleStatus.SOLD_OUT: "Sold out",
}


class PurchaseOrchestrator:
    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        encoder: Encoder = encode_call,
    ):
        self.config = config or OrchestratorConfig()
        self._encode = encoder

    # ── preparation ───────────────────────────────────────────

    def prepare_purchase(
        self,
        adapter: Any,
        claim: ClaimState,
        params: Optional[PurchaseParams] = None,
    ) -> PreparedPurchase:
        params = params or PurchaseParams()

        buyer = adapter.get_address()
        recipient = self._validate_recipient(params.recipient, buyer)
        eligibility = self._check_eligibility(claim, params.quantity)
        quantity: int = params.quantity

        connected = adapter.get_connected_network_id()
        if connected != claim.network_id:
            raise SDKError(
                ErrorCategory.NETWORK_MISMATCH,
                f"Wallet is connected to chain {connected}, product requires chain "
                f"{claim.network_id}",
                details={"expected": claim.network_id, "actual": connected},
            )

        cost = self.compute_cost(claim, quantity)

        steps: list[PurchaseStep] = []
        for total in cost.erc20_totals:
            allowance = self._current_allowance(adapter, claim, total, buyer)
            if allowance < total.raw:
                steps.append(self._approval_step(adapter, claim, total, params))
            else:
                logger.debug("allowance %d covers %s, no approval", allowance, total)

        steps.append(
            self._mint_step(
                adapter,
                claim,
                params,
                quantity,
                recipient,
                cost,
                depends_on_approval=bool(steps),
            )
        )

        if params.check_balance:
            self._check_balances(adapter, cost)

        logger.info(
            "prepared purchase of %d on chain %d: %s, steps=%s",
            quantity,
            claim.network_id,
            cost.total,
            [step.id for step in steps],
        )
        return PreparedPurchase(
            eligibility=eligibility,
            cost=cost,
            steps=tuple(steps),
            buyer=buyer,
            recipient=recipient,
            network_id=claim.network_id,
            quantity=quantity,
        )

    def compute_cost(self, claim: ClaimState, quantity: int) -> Cost:
        product = claim.price * quantity
        fee = claim.applicable_platform_fee()
        platform_fee = fee if fee is not None else product.zero()

        totals: dict[str, Money] = {}
        for amount in (product, platform_fee):
            if not amount.is_positive():
                continue
            existing = totals.get(amount.address)
            totals[amount.address] = amount if existing is None else existing + amount

        total = totals.get(claim.price.address, product.zero())
        return Cost(product=product, platform_fee=platform_fee, totals=totals, total=total)

    def _validate_recipient(self, recipient: Optional[str], buyer: str) -> str:
        if recipient is None:
            return buyer
        if not isinstance(recipient, str):
            raise InvalidInputError("Invalid recipient address", details={"recipient": recipient})
        try:
            return Address(recipient).checksum
        except InvalidInputError as exc:
            raise InvalidInputError(
                "Invalid recipient address", details={"recipient": recipient}
            ) from exc

    def _check_eligibility(self, claim: ClaimState, quantity: Any) -> Eligibility:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidInputError(
                "Quantity must be a positive integer", details={"quantity": quantity}
            )

        status = claim.status()
        if status != SaleStatus.ACTIVE:
            raise InvalidInputError(
                _STATUS_REASONS[status],
                details={"reason": status.value, "quantity": quantity},
            )

        available = claim.remaining_allocation()
        if available is not None and quantity > available:
            reason = (
                "wallet limit reached"
                if available == 0 and claim.wallet_max
                else "quantity exceeds remaining allocation"
            )
            raise InvalidInputError(
                f"Quantity {quantity} exceeds available allocation {available}",
                details={"reason": reason, "available": available, "quantity": quantity},
            )
        return Eligibility(is_eligible=True, status=status, available_quantity=available)

    def _current_allowance(self, adapter: Any, claim: ClaimState, total: Money, owner: str) -> int:
        if claim.allowance is not None and total.address == claim.price.address:
            return claim.allowance
        data = self._encode(ALLOWANCE, [owner, claim.allowance_spender])
        result = adapter.call(total.address, data)
        try:
            return decode_uint(result)
        except ValueError as exc:
            raise SDKError(
                ErrorCategory.CONTRACT_ERROR,
                f"{total.symbol} at {total.address} returned no allowance",
                details={"token": total.address},
                cause=exc,
            ) from exc

    def _approval_step(
        self,
        adapter: Any,
        claim: ClaimState,
        total: Money,
        params: PurchaseParams,
    ) -> PurchaseStep:
        data = self._encode(APPROVE, [claim.allowance_spender, total.raw])
        request = TransactionRequest(
            to=total.address,
            value=0,
            data=data,
            chain_id=claim.network_id,
            **params.fee_fields(),
        )
        estimate = adapter.estimate_gas(request)
        return PurchaseStep(
            id=f"approve-{total.symbol.lower()}",
            name=f"Approve {total.symbol} Spending",
            type=StepType.APPROVAL,
            request=request.with_changes(gas_limit=self._buffered(estimate, params)),
            gas_estimate=estimate,
            description=f"Approve {total}",
            cost=total,
            gas_buffer=params.gas_buffer,
        )

    def _mint_step(
        self,
        adapter: Any,
        claim: ClaimState,
        params: PurchaseParams,
        quantity: int,
        recipient: str,
        cost: Cost,
        depends_on_approval: bool,
    ) -> PurchaseStep:
        data = self._encode(claim.mint_signature, claim.mint_args(quantity, recipient))
        request = TransactionRequest(
            to=claim.contract_address,
            value=cost.native_total,
            data=data,
            chain_id=claim.network_id,
            **params.fee_fields(),
        )

        reestimate = False
        try:
            estimate = adapter.estimate_gas(request)
        except AdapterError as exc:
            if not depends_on_approval or exc.category not in _DEPENDENT_ESTIMATION_FAILURES:
                raise
            estimate = self.config.fallback_gas
            reestimate = True
            logger.warning(
                "mint gas estimate failed before approval (%s); using fallback %d",
                exc.category.value,
                estimate,
            )

        return PurchaseStep(
            id="mint",
            name="Mint",
            type=StepType.MINT,
            request=request.with_changes(gas_limit=self._buffered(estimate, params)),
            gas_estimate=estimate,
            description=f"Mint {quantity} token(s) to {recipient}",
            cost=cost.total,
            reestimate=reestimate,
            gas_buffer=params.gas_buffer,
        )

    def _buffered(self, estimate: int, params: PurchaseParams) -> int:
        return params.gas_buffer.apply(estimate) if params.gas_buffer else estimate

    def _check_balances(self, adapter: Any, cost: Cost) -> None:
        for address, required in cost.totals.items():
            balance = adapter.get_balance(None if address == ZERO_ADDRESS else address)
            if balance.raw < required.raw:
                raise SDKError(
                    ErrorCategory.INSUFFICIENT_BALANCE,
                    f"Insufficient {required.symbol} balance. Need {required.formatted} "
                    f"but have {balance.formatted}",
                    details={"required": required, "balance": balance},
                )

    # ── execution ─────────────────────────────────────────────

    def purchase(
        self,
        adapter: Any,
        prepared: PreparedPurchase,
        confirmations: Optional[int] = None,
    ) -> Order:
        confirmations = self._confirmations(confirmations)
        order = self._start_order(adapter, prepared)
        for step in prepared.steps:
            try:
                receipt = step.execute(adapter, confirmations)
            except Exception as exc:
                return self._stop(order, step, _as_sdk_error(exc))
            self._record(order, step, receipt)
        return self._finish(order)

    async def purchase_async(
        self,
        adapter: Any,
        prepared: PreparedPurchase,
        confirmations: Optional[int] = None,
    ) -> Order:
        confirmations = self._confirmations(confirmations)
        order = await asyncio.to_thread(self._start_order, adapter, prepared)
        for step in prepared.steps:
            try:
                receipt = await asyncio.to_thread(step.execute, adapter, confirmations)
            except Exception as exc:
                return self._stop(order, step, _as_sdk_error(exc))
            self._record(order, step, receipt)
        return self._finish(order)

    def _confirmations(self, confirmations: Optional[int]) -> int:
        if confirmations is None:
            return self.config.confirmations
        if isinstance(confirmations, bool) or not isinstance(confirmations, int) or confirmations < 1:
            raise InvalidInputError("confirmations must be a positive integer")
        return confirmations

    def _start_order(self, adapter: Any, prepared: PreparedPurchase) -> Order:
        buyer = adapter.get_address()
        if buyer.lower() != prepared.buyer.lower():
            raise InvalidInputError(
                f"Adapter account {buyer} is not the prepared buyer {prepared.buyer}"
            )
        return Order(buyer=buyer, recipient=prepared.recipient, cost=prepared.cost)

    def _record(self, order: Order, step: PurchaseStep, receipt: Any) -> None:
        order.record(receipt)
        logger.info("step %s confirmed in %s (block %s)", step.id, receipt.tx_hash, receipt.block_number)

    def _stop(self, order: Order, step: PurchaseStep, error: SDKError) -> Order:
        order.fail(step.id, error)
        logger.warning(
            "step %s failed with %s; order %s with %d receipt(s)",
            step.id,
            error.category.value,
            order.status.value,
            len(order.receipts),
        )
        return order

    def _finish(self, order: Order) -> Order:
        order.complete()
        logger.info("order completed with %d receipt(s)", len(order.receipts))
        return order


def _as_sdk_error(exc: Exception) -> SDKError:
    if isinstance(exc, SDKError):
        return exc
    error = SDKError(ErrorCategory.UNKNOWN, str(exc) or type(exc).__name__, cause=exc)
    error.__cause__ = exc
    return error
