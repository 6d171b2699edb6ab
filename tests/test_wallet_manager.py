import pytest
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from eth_utils.address import to_checksum_address

from core.errors import InvalidInputError
from core.wallet_manager import WalletManager, _mask_private_key, to_signable


def test_repr_and_str_do_not_expose_private_key():
    account = Account.create()
    wallet = WalletManager(account.key)
    key_hex = account.key.hex()

    assert key_hex not in repr(wallet)
    assert key_hex not in str(wallet)
    assert "WalletManager(address=" in repr(wallet)


def test_invalid_private_key_is_masked(monkeypatch):
    bad_key = "0x" + ("a" * 12)
    masked = _mask_private_key(bad_key)
    monkeypatch.setenv("PRIVATE_KEY", bad_key)

    with pytest.raises(ValueError) as exc:
        WalletManager.from_env()

    message = str(exc.value)
    assert bad_key not in message
    assert masked in message


def test_sign_message_rejects_empty_message():
    wallet = WalletManager(Account.create().key)
    with pytest.raises(ValueError, match="must not be empty"):
        wallet.sign_message("")


def test_sign_typed_data_rejects_invalid_types_before_crypto(monkeypatch):
    wallet = WalletManager(Account.create().key)

    def fail_encode(*args, **kwargs):
        raise AssertionError("encode_typed_data should not be called")

    monkeypatch.setattr("core.wallet_manager.encode_typed_data", fail_encode)

    with pytest.raises(InvalidInputError, match="types must be a non-empty dict"):
        wallet.sign_typed_data(domain={}, types=[], value={})  # type: ignore[arg-type]


def test_sign_message_recovery_matches_address():
    wallet = WalletManager(Account.create().key)
    message = "hello from tests"

    signed = wallet.sign_message(message)
    recovered = Account.recover_message(
        encode_defunct(text=message), signature=signed.signature
    )

    assert recovered.lower() == wallet.address.lower()


def test_sign_transaction_recovery_matches_address():
    wallet = WalletManager(Account.create().key)
    tx = {
        "nonce": 0,
        "to": to_checksum_address("0x" + "1" * 40),
        "value": 123,
        "gas": 21000,
        "gasPrice": 1,
        "data": b"",
        "chainId": 1,
    }

    signed = wallet.sign_transaction(tx)
    recovered = Account.recover_transaction(signed.raw_transaction)

    assert recovered.lower() == wallet.address.lower()


def test_from_env_missing_variable(monkeypatch):
    monkeypatch.delenv("PRIVATE_KEY", raising=False)
    with pytest.raises(InvalidInputError, match="PRIVATE_KEY is not set"):
        WalletManager.from_env()


def test_to_signable_accepts_text_bytes_and_encoded():
    encoded = encode_defunct(text="hi")
    assert to_signable("hi") == encoded
    assert to_signable(b"hi") == encode_defunct(primitive=b"hi")
    assert to_signable(encoded) is encoded
    with pytest.raises(InvalidInputError):
        to_signable(b"")
    with pytest.raises(TypeError):
        to_signable(42)  # type: ignore[arg-type]


def test_sign_typed_data_recovers_signer():
    wallet = WalletManager(Account.create().key)
    domain = {"name": "Drops", "version": "1", "chainId": 1}
    types = {"Claim": [{"name": "amount", "type": "uint256"}]}
    value = {"amount": 3}

    signed = wallet.sign_typed_data(domain, types, value)
    recovered = Account.recover_message(
        encode_typed_data(domain_data=domain, message_types=types, message_data=value),
        signature=signed.signature,
    )
    assert recovered == wallet.address


def test_keyfile_round_trip(tmp_path):
    wallet = WalletManager(Account.create().key)
    path = tmp_path / "key.json"
    wallet.to_keyfile(str(path), "secret")

    assert WalletManager.from_keyfile(str(path), "secret").address == wallet.address
    with pytest.raises(InvalidInputError, match="decrypt"):
        WalletManager.from_keyfile(str(path), "wrong")
