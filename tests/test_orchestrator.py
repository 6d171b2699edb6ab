from datetime import datetime, timedelta, timezone

import pytest
from eth_abi import encode
from eth_utils import to_checksum_address

from chain.abi import APPROVE, selector
from core.base_types import Money, TransactionResponse, TransactionStatus
from core.errors import AdapterError, ErrorCategory, InvalidInputError, PurchaseError, SDKError
from core.networks import ZERO_ADDRESS
from purchase import (
    ClaimState,
    GasBuffer,
    OrchestratorConfig,
    OrderStatus,
    PurchaseOrchestrator,
    PurchaseParams,
    StepType,
)

BUYER = to_checksum_address("0x00000000000000000000000000000000000000b1")
FRIEND = to_checksum_address("0x00000000000000000000000000000000000000f2")
EXTENSION = to_checksum_address("0x00000000000000000000000000000000000000e1")
CREATOR = to_checksum_address("0x00000000000000000000000000000000000000c1")
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"


class _FakeAdapter:
    """Duck-typed account adapter recording every call."""

    def __init__(self, chain_id=1, allowance=0, balances=None):
        self.address = BUYER
        self.chain_id = chain_id
        self.allowance = allowance
        self.balances = balances or {}
        self.allowance_reads = []
        self.balance_reads = []
        self.estimates = []
        self.estimate_errors = {}
        self.sent = []
        self.send_errors = {}

    def get_address(self):
        return self.address

    def get_connected_network_id(self):
        return self.chain_id

    def call(self, to, data):
        self.allowance_reads.append((to, data))
        return encode(["uint256"], [self.allowance])

    def estimate_gas(self, request):
        self.estimates.append(request)
        error = self.estimate_errors.get(request.to)
        if error is not None:
            raise error
        return 50_000

    def get_balance(self, token_address=None):
        self.balance_reads.append(token_address)
        raw = self.balances.get(token_address, 10**30)
        if token_address is None:
            return Money.native(raw)
        return Money(raw=raw, decimals=6, symbol="USDC", address=token_address)

    def send_transaction_with_confirmation(self, request, confirmations=1):
        self.sent.append((request, confirmations))
        error = self.send_errors.get(request.to)
        if error is not None:
            raise error
        number = len(self.sent)
        return TransactionResponse(
            hash=f"0x{number:064x}",
            from_address=self.address,
            to=request.to,
            status=TransactionStatus.CONFIRMED,
            chain_id=request.chain_id,
            nonce=number - 1,
            block_number=100 + number,
            gas_used="50000",
            effective_gas_price="2",
            confirmations=confirmations,
        )


def _claim(price, **kwargs):
    kwargs.setdefault("network_id", 1)
    return ClaimState(
        contract_address=EXTENSION,
        creator_contract=CREATOR,
        instance_id=7,
        price=price,
        **kwargs,
    )


def _eth(amount):
    return Money.from_human(amount, 18, "ETH")


def _usdc(amount):
    return Money.from_human(amount, 6, "USDC", USDC)


@pytest.fixture
def orchestrator():
    return PurchaseOrchestrator()


# ── preparation ───────────────────────────────────────────────


def test_native_purchase_has_single_mint_step(orchestrator):
    adapter = _FakeAdapter()
    prepared = orchestrator.prepare_purchase(adapter, _claim(_eth("0.1")))

    assert [step.id for step in prepared.steps] == ["mint"]
    mint = prepared.steps[0]
    assert mint.type == StepType.MINT
    assert mint.request.to == EXTENSION
    assert mint.request.value == str(10**17)
    assert mint.request.chain_id == 1
    assert mint.request.gas_limit == "50000"
    assert str(prepared.cost.total) == "0.1 ETH"
    assert prepared.recipient == BUYER
    assert adapter.allowance_reads == []
    assert adapter.balance_reads == [None]


def test_erc20_purchase_prepends_approval(orchestrator):
    adapter = _FakeAdapter(allowance=0)
    prepared = orchestrator.prepare_purchase(adapter, _claim(_usdc("100")))

    assert [step.type for step in prepared.steps] == [StepType.APPROVAL, StepType.MINT]
    approval, mint = prepared.steps
    assert approval.id == "approve-usdc"
    assert approval.name == "Approve USDC Spending"
    assert approval.request.to == USDC
    assert approval.request.data == "0x" + (
        selector(APPROVE) + encode(["address", "uint256"], [EXTENSION, 100_000_000])
    ).hex()
    assert mint.request.value == "0"
    assert adapter.balance_reads == [USDC]


def test_sufficient_allowance_skips_approval(orchestrator):
    adapter = _FakeAdapter(allowance=100_000_000)
    prepared = orchestrator.prepare_purchase(adapter, _claim(_usdc("100")))
    assert [step.id for step in prepared.steps] == ["mint"]


def test_prefetched_allowance_is_used(orchestrator):
    adapter = _FakeAdapter(allowance=0)
    prepared = orchestrator.prepare_purchase(adapter, _claim(_usdc("100"), allowance=10**12))
    assert [step.id for step in prepared.steps] == ["mint"]
    assert adapter.allowance_reads == []


def test_allowance_is_read_for_spender(orchestrator):
    spender = to_checksum_address("0x00000000000000000000000000000000000000a5")
    adapter = _FakeAdapter()
    prepared = orchestrator.prepare_purchase(adapter, _claim(_usdc("1"), spender=spender))
    to, data = adapter.allowance_reads[0]
    assert to == USDC
    assert data.endswith(encode(["address", "address"], [BUYER, spender]))
    assert prepared.steps[0].request.data.endswith(
        encode(["address", "uint256"], [spender, 1_000_000]).hex()
    )


def test_network_mismatch_before_balance(orchestrator):
    adapter = _FakeAdapter(chain_id=137)
    with pytest.raises(SDKError) as exc:
        orchestrator.prepare_purchase(adapter, _claim(_eth("0.1")))
    assert exc.value.category == ErrorCategory.NETWORK_MISMATCH
    assert exc.value.details == {"expected": 1, "actual": 137}
    assert adapter.balance_reads == []
    assert adapter.estimates == []


def test_cost_is_exact(orchestrator):
    claim = _claim(_eth("1.0"), platform_fee=_eth("0.1"))
    prepared = orchestrator.prepare_purchase(
        _FakeAdapter(), claim, PurchaseParams(quantity=2)
    )
    assert prepared.cost.total.formatted == "2.1"
    assert prepared.cost.total.raw == 2_100_000_000_000_000_000
    assert prepared.steps[-1].request.value == "2100000000000000000"


def test_allowlist_mint_uses_merkle_fee(orchestrator):
    fees = {"platform_fee": _eth("0.1"), "merkle_platform_fee": _eth("0.05")}
    allowlist = _claim(_eth("1.0"), merkle_proofs=((b"\x01" * 32,),), **fees)
    public = _claim(_eth("1.0"), **fees)

    assert orchestrator.compute_cost(allowlist, 2).total.formatted == "2.05"
    assert orchestrator.compute_cost(public, 2).total.formatted == "2.1"


def test_allowlist_mint_without_merkle_fee_falls_back(orchestrator):
    claim = _claim(_eth("1.0"), platform_fee=_eth("0.1"), merkle_proofs=((b"\x01" * 32,),))
    assert orchestrator.compute_cost(claim, 1).platform_fee.formatted == "0.1"


def test_mixed_currency_fee(orchestrator):
    claim = _claim(_usdc("100"), platform_fee=_eth("0.0005"))
    adapter = _FakeAdapter()
    prepared = orchestrator.prepare_purchase(adapter, claim)

    cost = prepared.cost
    assert set(cost.totals) == {USDC, ZERO_ADDRESS}
    assert cost.native_total == 5 * 10**14
    assert [m.symbol for m in cost.erc20_totals] == ["USDC"]
    assert prepared.steps[-1].request.value == str(5 * 10**14)
    assert sorted(adapter.balance_reads, key=str) == sorted([USDC, None], key=str)


@pytest.mark.parametrize("quantity", [0, -1, "1", 1.0, True])
def test_quantity_must_be_positive_int(orchestrator, quantity):
    with pytest.raises(InvalidInputError, match="Quantity must be a positive integer"):
        orchestrator.prepare_purchase(
            _FakeAdapter(), _claim(_eth("0.1")), PurchaseParams(quantity=quantity)
        )


def test_quantity_above_allocation(orchestrator):
    claim = _claim(_eth("0.1"), total_max=10, total_minted=8)
    with pytest.raises(InvalidInputError) as exc:
        orchestrator.prepare_purchase(_FakeAdapter(), claim, PurchaseParams(quantity=3))
    assert exc.value.details["available"] == 2


def test_wallet_limit_reached(orchestrator):
    claim = _claim(_eth("0.1"), wallet_max=2, wallet_minted=2)
    with pytest.raises(InvalidInputError) as exc:
        orchestrator.prepare_purchase(_FakeAdapter(), claim)
    assert exc.value.details["reason"] == "wallet limit reached"


@pytest.mark.parametrize(
    "kwargs, reason",
    [
        ({"start_time": datetime.now(timezone.utc) + timedelta(days=1)}, "upcoming"),
        ({"end_time": datetime.now(timezone.utc) - timedelta(days=1)}, "ended"),
        ({"total_max": 5, "total_minted": 5}, "sold-out"),
    ],
)
def test_inactive_sale_is_rejected(orchestrator, kwargs, reason):
    with pytest.raises(InvalidInputError) as exc:
        orchestrator.prepare_purchase(_FakeAdapter(), _claim(_eth("0.1"), **kwargs))
    assert exc.value.details["reason"] == reason


def test_invalid_recipient(orchestrator):
    with pytest.raises(InvalidInputError, match="Invalid recipient address"):
        orchestrator.prepare_purchase(
            _FakeAdapter(), _claim(_eth("0.1")), PurchaseParams(recipient="0x123")
        )


def test_recipient_is_encoded_into_mint(orchestrator):
    prepared = orchestrator.prepare_purchase(
        _FakeAdapter(), _claim(_eth("0.1")), PurchaseParams(recipient=FRIEND.lower())
    )
    assert prepared.recipient == FRIEND
    assert FRIEND[2:].lower() in prepared.steps[0].request.data


def test_insufficient_balance(orchestrator):
    adapter = _FakeAdapter(balances={None: 10**16})
    with pytest.raises(SDKError) as exc:
        orchestrator.prepare_purchase(adapter, _claim(_eth("0.1")))
    assert exc.value.category == ErrorCategory.INSUFFICIENT_BALANCE
    assert "Need 0.1 but have 0.01" in exc.value.message


def test_balance_check_can_be_skipped(orchestrator):
    adapter = _FakeAdapter(balances={None: 0})
    orchestrator.prepare_purchase(adapter, _claim(_eth("0.1")), PurchaseParams(check_balance=False))
    assert adapter.balance_reads == []


def test_gas_buffer_applied_to_every_step(orchestrator):
    prepared = orchestrator.prepare_purchase(
        _FakeAdapter(), _claim(_usdc("5")), PurchaseParams(gas_buffer=GasBuffer(percent=15))
    )
    assert [step.request.gas_limit for step in prepared.steps] == ["57500", "57500"]
    assert [step.gas_estimate for step in prepared.steps] == [50_000, 50_000]


def test_fixed_gas_buffer():
    assert GasBuffer(fixed=10_000).apply(50_000) == 60_000
    assert GasBuffer(percent=10).apply(33) == 37
    with pytest.raises(InvalidInputError):
        GasBuffer(percent=10, fixed=1)


def test_fee_fields_copied_to_steps(orchestrator):
    params = PurchaseParams(max_fee_per_gas=30, max_priority_fee_per_gas=2)
    prepared = orchestrator.prepare_purchase(_FakeAdapter(), _claim(_usdc("5")), params)
    for step in prepared.steps:
        assert step.request.max_fee_per_gas == "30"
        assert step.request.max_priority_fee_per_gas == "2"


def test_conflicting_fee_fields_rejected():
    with pytest.raises(InvalidInputError, match="mutually exclusive"):
        PurchaseParams(gas_price=1, max_fee_per_gas=2, max_priority_fee_per_gas=1)


def test_mint_estimate_falls_back_when_approval_pending(orchestrator):
    adapter = _FakeAdapter()
    adapter.estimate_errors[EXTENSION] = AdapterError(
        ErrorCategory.GAS_ESTIMATION_FAILED, "ERC20: insufficient allowance"
    )
    prepared = orchestrator.prepare_purchase(adapter, _claim(_usdc("100")))
    mint = prepared.steps[-1]
    assert mint.reestimate
    assert mint.gas_estimate == 200_000
    assert mint.request.gas_limit == "200000"


def test_mint_estimate_failure_without_approval_propagates(orchestrator):
    adapter = _FakeAdapter()
    adapter.estimate_errors[EXTENSION] = AdapterError(
        ErrorCategory.GAS_ESTIMATION_FAILED, "execution reverted: paused"
    )
    with pytest.raises(AdapterError):
        orchestrator.prepare_purchase(adapter, _claim(_eth("0.1")))


# ── execution ─────────────────────────────────────────────────


def _prepared_erc20(orchestrator, adapter, **params):
    return orchestrator.prepare_purchase(adapter, _claim(_usdc("100")), PurchaseParams(**params))


def test_purchase_runs_steps_in_order(orchestrator):
    adapter = _FakeAdapter()
    order = orchestrator.purchase(adapter, _prepared_erc20(orchestrator, adapter))

    assert order.status == OrderStatus.COMPLETED
    assert order.is_completed
    assert [r.step_id for r in order.receipts] == ["approve-usdc", "mint"]
    assert [r.step_type for r in order.receipts] == [StepType.APPROVAL, StepType.MINT]
    assert [request.to for request, _ in adapter.sent] == [USDC, EXTENSION]
    assert order.receipts[1].fee_wei == 100_000
    order.raise_for_status()


def test_confirmations_forwarded():
    adapter = _FakeAdapter()
    orchestrator = PurchaseOrchestrator(OrchestratorConfig(confirmations=3))
    orchestrator.purchase(adapter, orchestrator.prepare_purchase(adapter, _claim(_eth("0.1"))))
    assert adapter.sent[0][1] == 3


def test_mint_revert_leaves_partial_order(orchestrator):
    adapter = _FakeAdapter()
    prepared = _prepared_erc20(orchestrator, adapter)
    adapter.send_errors[EXTENSION] = AdapterError(
        ErrorCategory.TRANSACTION_REVERTED, "Transaction reverted", details={"tx_hash": "0xdead"}
    )

    order = orchestrator.purchase(adapter, prepared)
    assert order.status == OrderStatus.PARTIAL
    assert order.failed_step_id == "mint"
    assert [r.step_id for r in order.receipts] == ["approve-usdc"]

    with pytest.raises(PurchaseError) as exc:
        order.raise_for_status()
    error = exc.value
    assert error.category == ErrorCategory.TRANSACTION_REVERTED
    assert error.step_id == "mint"
    assert [r.step_id for r in error.receipts] == ["approve-usdc"]
    assert error.details["tx_hash"] == "0xdead"


def test_backend_crash_after_approval_keeps_receipts(orchestrator):
    adapter = _FakeAdapter()
    prepared = _prepared_erc20(orchestrator, adapter)
    crash = RuntimeError("backend blew up")
    adapter.send_errors[EXTENSION] = crash

    order = orchestrator.purchase(adapter, prepared)
    assert order.status == OrderStatus.PARTIAL
    assert order.failed_step_id == "mint"
    assert [r.step_id for r in order.receipts] == ["approve-usdc"]
    assert order.error.category == ErrorCategory.UNKNOWN
    assert order.error.cause is crash

    with pytest.raises(PurchaseError) as exc:
        order.raise_for_status()
    assert "backend blew up" in str(exc.value)
    assert [r.step_id for r in exc.value.receipts] == ["approve-usdc"]


@pytest.mark.parametrize("confirmations", [0, -1, True, 1.5])
def test_purchase_rejects_bad_confirmations(orchestrator, confirmations):
    adapter = _FakeAdapter()
    prepared = orchestrator.prepare_purchase(adapter, _claim(_eth("0.1")))
    with pytest.raises(InvalidInputError, match="confirmations"):
        orchestrator.purchase(adapter, prepared, confirmations=confirmations)
    assert adapter.sent == []


def test_first_step_rejection_fails_order(orchestrator):
    adapter = _FakeAdapter()
    prepared = _prepared_erc20(orchestrator, adapter)
    adapter.send_errors[USDC] = AdapterError(ErrorCategory.TRANSACTION_REJECTED, "User rejected")

    order = orchestrator.purchase(adapter, prepared)
    assert order.status == OrderStatus.FAILED
    assert order.receipts == []
    assert len(adapter.sent) == 1


def test_network_change_after_prepare_fails_step(orchestrator):
    adapter = _FakeAdapter()
    prepared = orchestrator.prepare_purchase(adapter, _claim(_eth("0.1")))
    adapter.chain_id = 10

    order = orchestrator.purchase(adapter, prepared)
    assert order.status == OrderStatus.FAILED
    assert order.error.category == ErrorCategory.NETWORK_MISMATCH
    assert adapter.sent == []


def test_reestimated_step_uses_fresh_estimate(orchestrator):
    adapter = _FakeAdapter()
    adapter.estimate_errors[EXTENSION] = AdapterError(
        ErrorCategory.GAS_ESTIMATION_FAILED, "ERC20: insufficient allowance"
    )
    prepared = _prepared_erc20(orchestrator, adapter, gas_buffer=GasBuffer(percent=10))
    adapter.estimate_errors.clear()

    order = orchestrator.purchase(adapter, prepared)
    assert order.is_completed
    mint_request = adapter.sent[1][0]
    assert mint_request.gas_limit == "55000"


def test_buyer_must_match(orchestrator):
    adapter = _FakeAdapter()
    prepared = orchestrator.prepare_purchase(adapter, _claim(_eth("0.1")))
    adapter.address = FRIEND
    with pytest.raises(InvalidInputError):
        orchestrator.purchase(adapter, prepared)


@pytest.mark.asyncio
async def test_purchase_async(orchestrator):
    adapter = _FakeAdapter()
    prepared = _prepared_erc20(orchestrator, adapter)
    adapter.send_errors[EXTENSION] = AdapterError(ErrorCategory.TIMEOUT, "timed out")

    order = await orchestrator.purchase_async(adapter, prepared)
    assert order.status == OrderStatus.PARTIAL
    assert order.error.category == ErrorCategory.TIMEOUT


@pytest.mark.asyncio
async def test_purchase_async_wraps_backend_crash(orchestrator):
    adapter = _FakeAdapter()
    prepared = _prepared_erc20(orchestrator, adapter)
    adapter.send_errors[EXTENSION] = ConnectionResetError("socket closed")

    order = await orchestrator.purchase_async(adapter, prepared)
    assert order.status == OrderStatus.PARTIAL
    assert order.error.category == ErrorCategory.UNKNOWN
    assert len(order.receipts) == 1
