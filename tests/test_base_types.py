import pytest
from hexbytes import HexBytes

from core.base_types import (
    Address,
    TransactionReceipt,
    TransactionRequest,
    TransactionResponse,
    TransactionStatus,
    TransactionType,
)
from core.errors import ErrorCategory, InvalidInputError

DEAD = "0x000000000000000000000000000000000000dead"


def test_address_invalid_raises():
    with pytest.raises(ValueError, match="Invalid Ethereum address"):
        Address("invalid")


def test_address_invalid_is_invalid_input_category():
    with pytest.raises(InvalidInputError) as exc:
        Address("0x1234")
    assert exc.value.category == ErrorCategory.INVALID_INPUT


def test_address_case_insensitive_equality():
    lower = Address("0x000000000000000000000000000000000000dead")
    upper = Address("0x000000000000000000000000000000000000DEAD")
    assert lower == upper


def test_request_with_only_gas_price_is_legacy():
    tx = TransactionRequest(to=DEAD, gas_price=5)
    assert tx.gas_mode == TransactionType.LEGACY
    payload = tx.to_dict()
    assert payload["gasPrice"] == 5
    assert "maxFeePerGas" not in payload
    assert "type" not in payload
    assert tx.to_rpc_dict()["type"] == "0x0"


def test_request_with_only_eip1559_fields_is_dynamic():
    tx = TransactionRequest(to=DEAD, max_fee_per_gas="30", max_priority_fee_per_gas="2")
    assert tx.gas_mode == TransactionType.EIP1559
    payload = tx.to_dict()
    assert payload["type"] == 2
    assert payload["maxFeePerGas"] == 30
    assert payload["maxPriorityFeePerGas"] == 2
    assert "gasPrice" not in payload


def test_request_rejects_mixed_gas_modes():
    with pytest.raises(InvalidInputError, match="mutually exclusive"):
        TransactionRequest(
            to=DEAD,
            gas_price=1,
            max_fee_per_gas=2,
            max_priority_fee_per_gas=1,
        )


def test_request_requires_eip1559_pair():
    with pytest.raises(InvalidInputError, match="must be set together"):
        TransactionRequest(to=DEAD, max_fee_per_gas=2)


def test_request_explicit_type_must_agree_with_fees():
    with pytest.raises(InvalidInputError, match="legacy transactions"):
        TransactionRequest(
            to=DEAD,
            type=TransactionType.LEGACY,
            max_fee_per_gas=2,
            max_priority_fee_per_gas=1,
        )
    with pytest.raises(InvalidInputError, match="cannot carry gas_price"):
        TransactionRequest(to=DEAD, type=2, gas_price=1)


def test_request_without_fees_has_no_mode():
    tx = TransactionRequest(to=DEAD)
    assert tx.gas_mode is None
    assert tx.to_dict() == {"to": Address(DEAD).checksum}


def test_request_normalizes_ints_to_decimal_strings():
    big = 10**40 + 1
    tx = TransactionRequest(to=DEAD, value=big, gas_limit="000021000")
    assert tx.value == str(big)
    assert tx.gas_limit == "21000"
    assert tx.int_field("value") == big
    assert tx.to_dict()["gas"] == 21000


@pytest.mark.parametrize("bad", [1.5, True, "-1", "0x10", "1e3"])
def test_request_rejects_non_integer_quantities(bad):
    with pytest.raises(InvalidInputError):
        TransactionRequest(to=DEAD, value=bad)


def test_request_rejects_bad_to_address():
    with pytest.raises(InvalidInputError):
        TransactionRequest(to="not-an-address")


def test_request_data_bytes_become_hex():
    tx = TransactionRequest(to=DEAD, data=b"\x01\xab")
    assert tx.data == "0x01ab"


def test_request_rpc_dict_uses_hex_quantities_and_sender():
    tx = TransactionRequest(to=DEAD, value=255, gas_limit=21000, nonce=3, chain_id=1)
    payload = tx.to_rpc_dict("0x000000000000000000000000000000000000bEEF")
    assert payload["from"] == "0x000000000000000000000000000000000000bEEF"
    assert payload["value"] == "0xff"
    assert payload["gas"] == hex(21000)
    assert payload["nonce"] == "0x3"
    assert payload["chainId"] == "0x1"


def test_request_with_changes_revalidates():
    tx = TransactionRequest(to=DEAD, gas_price=1)
    updated = tx.with_changes(gas_limit=50_000)
    assert updated.gas_limit == "50000"
    assert updated.gas_mode == TransactionType.LEGACY
    with pytest.raises(InvalidInputError):
        tx.with_changes(max_fee_per_gas=3, max_priority_fee_per_gas=1)


def test_response_starts_pending():
    tx = TransactionRequest(to=DEAD, nonce=4)
    response = TransactionResponse.pending("0xabc", DEAD, tx, chain_id=1)
    assert response.status == TransactionStatus.PENDING
    assert response.nonce == 4
    assert not response.is_confirmed


def test_receipt_from_raw_rpc_dict():
    receipt = TransactionReceipt.from_web3(
        {
            "transactionHash": "0xaa",
            "blockNumber": "0x10",
            "blockHash": "0xbb",
            "status": "0x1",
            "gasUsed": "0x5208",
            "effectiveGasPrice": "0x2",
            "logs": [],
        }
    )
    assert receipt.block_number == 16
    assert receipt.status is True
    assert receipt.tx_fee.raw == 21000 * 2
    assert receipt.tx_fee.symbol == "ETH"


def test_receipt_from_web3_hexbytes_keeps_0x_prefix():
    receipt = TransactionReceipt.from_web3(
        {
            "transactionHash": HexBytes("0x" + "ab" * 32),
            "blockNumber": 7,
            "status": 0,
            "gasUsed": 50_000,
            "effectiveGasPrice": 3,
            "logs": [],
        }
    )
    assert receipt.tx_hash == "0x" + "ab" * 32
    assert receipt.status is False


def test_response_from_failed_receipt_is_failed():
    receipt = TransactionReceipt(
        tx_hash="0xaa",
        block_number=9,
        status=False,
        gas_used=30_000,
        effective_gas_price=1,
        logs=[],
    )
    response = TransactionResponse.from_receipt(receipt, DEAD, chain_id=1, confirmations=1)
    assert response.status == TransactionStatus.FAILED
    assert response.gas_used == "30000"
