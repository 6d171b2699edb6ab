"""
Error Normalizer.

Every backend exception crossing an adapter edge is rewritten into exactly
one :class:`ErrorCategory`. Classification is an ordered rule table, first
match wins. A rule can match on:

* exception class names (MRO of the error and of its ``__cause__`` chain),
* backend codes (``code`` attribute, JSON-RPC error dicts in ``args`` or
  ``rpc_response``),
* lower-cased message text (message, ``data`` message, cause chain).

Nothing is dropped: the original exception is kept as ``cause``, the raw
backend code goes to ``details["backend_code"]`` and never becomes the
category itself.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from core.errors import AdapterError, ErrorCategory, SDKError

logger = logging.getLogger(__name__)

_MAX_CAUSE_DEPTH = 6

_REVERT_REASON = re.compile(
    r"(?:execution reverted|reverted with reason string)[:\s]*'?([^'\n]*)'?", re.I
)


@dataclass(frozen=True)
class ErrorFacts:
    """Everything the rule table may look at, extracted once per error."""

    names: frozenset
    codes: tuple
    text: str
    method: str


@dataclass(frozen=True)
class Rule:
    category: ErrorCategory
    message: str
    names: tuple = ()
    codes: tuple = ()
    patterns: tuple = ()
    when: Optional[Callable[[ErrorFacts], bool]] = None

    def matches(self, facts: ErrorFacts) -> bool:
        if self.when is not None and self.when(facts):
            return True
        if any(name in facts.names for name in self.names):
            return True
        if any(code in facts.codes for code in self.codes):
            return True
        return any(pattern.search(facts.text) for pattern in self.patterns)


def _pending_request(facts: ErrorFacts) -> bool:
    return -32002 in facts.codes and "pending" in facts.text


def _estimation_revert(facts: ErrorFacts) -> bool:
    return facts.method == "estimate_gas" and (
        "revert" in facts.text or "ContractLogicError" in facts.names
    )


def _p(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.I)


# Ordered; first match wins.
RULES: list[Rule] = [
    Rule(
        ErrorCategory.TRANSACTION_REJECTED,
        "User rejected the request",
        names=("UserRejectedRequestError",),
        codes=(4001, "ACTION_REJECTED"),
        patterns=(
            _p(r"user (rejected|denied)"),
            _p(r"userrefusedondevice"),
            _p(r"rejected transaction"),
        ),
    ),
    Rule(
        ErrorCategory.NETWORK_MISMATCH,
        "Requested network is not added to the wallet",
        codes=(4902,),
    ),
    Rule(
        ErrorCategory.TRANSACTION_REPLACED,
        "Transaction was replaced",
        names=("TransactionReplacedError",),
        codes=("TRANSACTION_REPLACED",),
        patterns=(_p(r"transaction (was )?replaced"),),
    ),
    Rule(
        ErrorCategory.HARDWARE_WALLET_ERROR,
        "Hardware wallet error",
        patterns=(_p(r"ledger"), _p(r"trezor")),
    ),
    Rule(
        ErrorCategory.NONCE_PENDING,
        "A request is already pending in the wallet",
        when=_pending_request,
    ),
    Rule(
        ErrorCategory.INVALID_INPUT,
        "Invalid amount",
        patterns=(_p(r"invalid amount"),),
    ),
    Rule(
        ErrorCategory.INSUFFICIENT_BALANCE,
        "Insufficient balance",
        names=("InsufficientFunds", "InsufficientFundsError"),
        codes=("INSUFFICIENT_FUNDS",),
        patterns=(
            _p(r"insufficient funds"),
            _p(r"balance too low"),
            _p(r"transfer amount exceeds balance"),
        ),
    ),
    Rule(
        ErrorCategory.NONCE_TOO_LOW,
        "Nonce too low",
        names=("NonceTooLow",),
        codes=("NONCE_EXPIRED",),
        patterns=(_p(r"nonce too low"), _p(r"nonce has already been used")),
    ),
    Rule(
        ErrorCategory.GAS_PRICE_TOO_LOW,
        "Gas price too low",
        names=("ReplacementUnderpriced",),
        codes=("REPLACEMENT_UNDERPRICED",),
        patterns=(
            _p(r"max fee per gas less than block base fee"),
            _p(r"fee cap less than block base fee"),
            _p(r"underpriced"),
            _p(r"gas price too low"),
        ),
    ),
    Rule(
        ErrorCategory.TIMEOUT,
        "Request timed out or the connection was lost",
        names=(
            "TimeoutError",
            "TimeExhausted",
            "Timeout",
            "ReadTimeout",
            "ConnectTimeout",
            "ConnectionError",
        ),
        codes=("TIMEOUT", "NETWORK_ERROR"),
        patterns=(_p(r"timed? ?out"), _p(r"network disconnected")),
    ),
    Rule(
        ErrorCategory.NETWORK_MISMATCH,
        "Connected to the wrong network",
        names=("ChainMismatchError",),
        patterns=(_p(r"wrong network"), _p(r"chain ?mismatch")),
    ),
    Rule(
        ErrorCategory.GAS_ESTIMATION_FAILED,
        "Gas estimation failed",
        codes=("UNPREDICTABLE_GAS_LIMIT",),
        patterns=(
            _p(r"cannot estimate gas"),
            _p(r"unpredictable gas"),
            _p(r"gas required exceeds allowance"),
        ),
        when=_estimation_revert,
    ),
    Rule(
        ErrorCategory.CONTRACT_ERROR,
        "Contract call failed",
        names=(
            "ContractCustomError",
            "ContractPanicError",
            "BadFunctionCallOutput",
            "DecodingError",
        ),
        codes=("CALL_EXCEPTION",),
    ),
    Rule(
        ErrorCategory.TRANSACTION_REVERTED,
        "Transaction reverted",
        names=("TransactionFailed", "ContractLogicError"),
        patterns=(_p(r"revert"),),
    ),
]


def normalize_error(
    error: BaseException,
    adapter_type: Any,
    method: str,
    params: Optional[dict] = None,
) -> SDKError:
    """Translate a backend exception; SDK errors pass through unchanged."""
    if isinstance(error, SDKError):
        return error

    facts = extract_facts(error, method)
    adapter_name = getattr(adapter_type, "value", adapter_type)
    original = _first_message(error)

    details: dict[str, Any] = {"backend_message": original}
    if facts.codes:
        details["backend_code"] = facts.codes[0]
    if params:
        details["params"] = dict(params)

    for rule in RULES:
        if rule.matches(facts):
            category = rule.category
            message = f"{rule.message}: {original}" if original else rule.message
            break
    else:
        category = ErrorCategory.UNKNOWN
        message = original or type(error).__name__

    if category in (
        ErrorCategory.TRANSACTION_REVERTED,
        ErrorCategory.GAS_ESTIMATION_FAILED,
        ErrorCategory.CONTRACT_ERROR,
    ):
        reason = revert_reason(error)
        if reason:
            details["reason"] = reason

    if category == ErrorCategory.UNKNOWN:
        logger.warning(
            "unclassified %s error in %s.%s: %r", type(error).__name__, adapter_name, method, error
        )
    else:
        logger.debug("%s.%s: %s -> %s", adapter_name, method, type(error).__name__, category.value)

    return AdapterError(
        category,
        message,
        adapter_type=adapter_name,
        method=method,
        details=details,
        cause=error,
    )


def extract_facts(error: BaseException, method: str = "") -> ErrorFacts:
    names: set[str] = set()
    codes: list[Any] = []
    texts: list[str] = []

    for exc in _cause_chain(error):
        names.update(cls.__name__ for cls in type(exc).__mro__)
        for payload in _payloads(exc):
            code = payload.get("code")
            if code is not None and code not in codes:
                codes.append(code)
            message = payload.get("message")
            if message:
                texts.append(str(message))
            data = payload.get("data")
            if isinstance(data, dict) and data.get("message"):
                texts.append(str(data["message"]))
            elif isinstance(data, str):
                texts.append(data)
        code = getattr(exc, "code", None)
        if code is not None and not callable(code) and code not in codes:
            codes.append(code)
        texts.append(str(exc))

    return ErrorFacts(
        names=frozenset(names),
        codes=tuple(codes),
        text=" | ".join(texts).lower(),
        method=method,
    )


def revert_reason(error: BaseException) -> Optional[str]:
    for exc in _cause_chain(error):
        candidates = [str(p.get("message", "")) for p in _payloads(exc)]
        message = getattr(exc, "message", None)
        if isinstance(message, str):
            candidates.append(message)
        candidates.append(str(exc))
        for candidate in candidates:
            match = _REVERT_REASON.search(candidate)
            if match and match.group(1).strip():
                return match.group(1).strip()
    return None


def _cause_chain(error: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: Optional[BaseException] = error
    while current is not None and len(chain) < _MAX_CAUSE_DEPTH and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def _payloads(exc: BaseException) -> list[dict]:
    """JSON-RPC style error dicts carried by the exception."""
    found: list[dict] = []
    for arg in getattr(exc, "args", ()):
        if isinstance(arg, dict):
            found.append(arg.get("error", arg) if isinstance(arg.get("error"), dict) else arg)
    rpc_response = getattr(exc, "rpc_response", None)
    if isinstance(rpc_response, dict) and isinstance(rpc_response.get("error"), dict):
        found.append(rpc_response["error"])
    data = getattr(exc, "data", None)
    if isinstance(data, dict):
        found.append(data)
    return found


def _first_message(error: BaseException) -> str:
    for payload in _payloads(error):
        if payload.get("message"):
            return str(payload["message"])
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error)
