"""Private-key wallet used as the signing backend of the local signer adapter."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Union

from eth_account import Account
from eth_account.datastructures import SignedMessage, SignedTransaction
from eth_account.messages import SignableMessage, encode_defunct, encode_typed_data
from eth_utils.address import to_checksum_address

from config import get_env

from .errors import InvalidInputError

logger = logging.getLogger(__name__)

MessageInput = Union[str, bytes, SignableMessage]


def _mask_private_key(private_key: Any) -> str:
    if isinstance(private_key, (bytes, bytearray)):
        raw = private_key.hex()
    else:
        raw = str(private_key)

    if raw.startswith("0x"):
        raw = raw[2:]

    if len(raw) < 10:
        return "<redacted>"

    return f"0x{raw[:6]}...{raw[-4:]}"


def _validate_eip712_types(types: dict) -> None:
    if not isinstance(types, dict) or not types:
        raise InvalidInputError("types must be a non-empty dict")

    for type_name, fields in types.items():
        if not isinstance(type_name, str) or not type_name:
            raise InvalidInputError("types keys must be non-empty strings")
        if not isinstance(fields, list) or not fields:
            raise InvalidInputError(f"types[{type_name}] must be a non-empty list")
        for field in fields:
            if not isinstance(field, dict) or "name" not in field or "type" not in field:
                raise InvalidInputError(
                    f"types[{type_name}] fields must be dicts with name and type"
                )


def to_signable(message: MessageInput) -> SignableMessage:
    """Wrap a text or bytes message in the EIP-191 personal-sign envelope."""
    if isinstance(message, SignableMessage):
        return message
    if isinstance(message, str):
        if message == "":
            raise InvalidInputError("message must not be empty")
        return encode_defunct(text=message)
    if isinstance(message, (bytes, bytearray)):
        if not message:
            raise InvalidInputError("message must not be empty")
        return encode_defunct(primitive=bytes(message))
    raise TypeError("message must be str, bytes or SignableMessage")


class WalletManager:
    """
    Holds one private key and signs with it.

    Keys can be loaded from:
    - Environment variable (``.env`` is honoured)
    - Encrypted keyfile

    The private key never appears in logs, errors, or string representations.
    """

    def __init__(self, private_key: str | bytes) -> None:
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as exc:
            masked = _mask_private_key(private_key)
            raise InvalidInputError(f"Invalid private key: {masked}") from exc

    @classmethod
    def from_env(cls, env_var: str = "PRIVATE_KEY") -> "WalletManager":
        """Load private key from environment variable."""
        value = get_env(env_var)
        if not value:
            raise InvalidInputError(f"Environment variable {env_var} is not set")
        return cls(value)

    @classmethod
    def from_keyfile(cls, path: str, password: str) -> "WalletManager":
        """Load from encrypted keyfile."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        try:
            private_key = Account.decrypt(data, password)
        except ValueError as exc:
            raise InvalidInputError("Failed to decrypt keyfile") from exc
        logger.info("Loaded wallet from keyfile %s", path)
        return cls(private_key)

    @property
    def address(self) -> str:
        """Returns checksummed address."""
        return to_checksum_address(self._account.address)

    def sign_message(self, message: MessageInput) -> SignedMessage:
        """Sign a message with the EIP-191 prefix (already-encoded messages pass through)."""
        return self._account.sign_message(to_signable(message))

    def sign_typed_data(self, domain: dict, types: dict, value: dict) -> SignedMessage:
        """Sign EIP-712 typed data given its three parts."""
        if not isinstance(domain, dict):
            raise InvalidInputError("domain must be a dict")
        if not isinstance(value, dict):
            raise InvalidInputError("value must be a dict")
        _validate_eip712_types(types)
        signable = encode_typed_data(
            domain_data=domain, message_types=types, message_data=value
        )
        return self._account.sign_message(signable)

    def sign_transaction(self, tx: dict) -> SignedTransaction:
        """Sign a fully populated transaction dict."""
        if not isinstance(tx, dict) or not tx:
            raise InvalidInputError("tx must be a non-empty dict")
        return self._account.sign_transaction(tx)

    def to_keyfile(self, path: str, password: str) -> None:
        """Export to encrypted keyfile."""
        data = Account.encrypt(self._account.key, password)
        Path(path).write_text(json.dumps(data, indent=2), encoding="utf-8")

    def __repr__(self) -> str:
        return f"WalletManager(address={self.address})"

    def __str__(self) -> str:
        return self.__repr__()
