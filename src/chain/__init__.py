from .abi import decode_string, decode_uint, encode_call, selector
from .client import ChainClient, GasPrice
from .confirmation import Confirmed, ConfirmationWaiter, Failed, Replaced
from .errors import (
    ChainError,
    InsufficientFunds,
    NonceTooLow,
    ReplacementUnderpriced,
    RPCError,
    TransactionFailed,
)
from .transaction_builder import TransactionBuilder

__all__ = [
    "ChainClient",
    "GasPrice",
    "TransactionBuilder",
    "ConfirmationWaiter",
    "Confirmed",
    "Replaced",
    "Failed",
    "encode_call",
    "selector",
    "decode_uint",
    "decode_string",
    "ChainError",
    "RPCError",
    "TransactionFailed",
    "InsufficientFunds",
    "NonceTooLow",
    "ReplacementUnderpriced",
]
