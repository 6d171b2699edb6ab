"""Confirmation waiting with replacement detection.

A pending transaction ends in exactly one of three outcomes:

- ``Confirmed``: our hash was mined with status 1 and reached the depth.
- ``Replaced``: another transaction from the same sender with the same
  nonce was mined instead (speed-up or cancellation).
- ``Failed``: our hash was mined with status 0.

Replacement is normal node behaviour, so it is returned as a value rather
than raised. Running out of time raises ``TimeoutError``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

from core.base_types import TransactionReceipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Confirmed:
    receipt: TransactionReceipt
    confirmations: int


@dataclass(frozen=True)
class Replaced:
    receipt: TransactionReceipt
    is_cancellation: bool
    replacement_hash: str
    original_hash: str
    confirmations: int


@dataclass(frozen=True)
class Failed:
    receipt: TransactionReceipt
    confirmations: int


Outcome = Union[Confirmed, Replaced, Failed]


@dataclass(frozen=True)
class _Replacement:
    tx_hash: str
    is_cancellation: bool


class ConfirmationWaiter:
    """
    Polls a chain source until a transaction settles.

    The source is duck-typed and must provide:
    ``fetch_receipt(hash) -> TransactionReceipt | None``,
    ``fetch_block_number() -> int``,
    ``fetch_nonce(address) -> int`` (latest, mined nonce),
    ``fetch_block_transactions(number) -> list[dict]`` and, when the nonce
    is not known up front, ``fetch_transaction_nonce(hash) -> int | None``.
    Replacement is only looked for once the sent nonce is known.
    """

    def __init__(self, timeout: float = 120.0, poll_interval: float = 1.0):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if poll_interval < 0:
            raise ValueError("poll_interval must not be negative")
        self.timeout = timeout
        self.poll_interval = poll_interval

    def wait(
        self,
        source: Any,
        tx_hash: str,
        sender: str,
        nonce: Optional[int],
        confirmations: int = 1,
        start_block: Optional[int] = None,
    ) -> Outcome:
        if confirmations < 1:
            raise ValueError("confirmations must be at least 1")

        deadline = time.monotonic() + self.timeout
        scan_from = start_block
        replacement: Optional[_Replacement] = None

        while True:
            watched = replacement.tx_hash if replacement else tx_hash
            receipt = source.fetch_receipt(watched)
            current = source.fetch_block_number()

            if receipt is not None:
                depth = max(current - receipt.block_number + 1, 0)
                if not receipt.status and replacement is None:
                    logger.warning("tx %s reverted in block %d", tx_hash, receipt.block_number)
                    return Failed(receipt=receipt, confirmations=depth)
                if depth >= confirmations:
                    if replacement is None:
                        return Confirmed(receipt=receipt, confirmations=depth)
                    logger.warning(
                        "tx %s replaced by %s (cancellation=%s)",
                        tx_hash,
                        replacement.tx_hash,
                        replacement.is_cancellation,
                    )
                    return Replaced(
                        receipt=receipt,
                        is_cancellation=replacement.is_cancellation,
                        replacement_hash=replacement.tx_hash,
                        original_hash=tx_hash,
                        confirmations=depth,
                    )
            elif replacement is None:
                if nonce is None:
                    nonce = source.fetch_transaction_nonce(tx_hash)
                if scan_from is None:
                    scan_from = current
                if nonce is not None and source.fetch_nonce(sender) > nonce:
                    replacement = self._scan_for_replacement(
                        source, tx_hash, sender, nonce, scan_from, current
                    )
                    scan_from = current + 1

            if time.monotonic() >= deadline:
                raise TimeoutError(
                    f"Timed out after {self.timeout}s waiting for {confirmations} "
                    f"confirmation(s) of {tx_hash}"
                )
            time.sleep(self.poll_interval)

    def _scan_for_replacement(
        self,
        source: Any,
        tx_hash: str,
        sender: str,
        nonce: int,
        first_block: int,
        last_block: int,
    ) -> Optional[_Replacement]:
        sender_lower = sender.lower()
        for number in range(first_block, last_block + 1):
            for tx in source.fetch_block_transactions(number):
                if str(tx.get("from", "")).lower() != sender_lower:
                    continue
                if _as_int(tx.get("nonce")) != nonce:
                    continue
                found_hash = _as_hex(tx.get("hash"))
                if found_hash.lower() == tx_hash.lower():
                    # our own tx landed between the receipt and nonce reads
                    return None
                return _Replacement(
                    tx_hash=found_hash,
                    is_cancellation=is_cancellation(tx, sender),
                )
        return None


def is_cancellation(tx: dict, sender: str) -> bool:
    """A zero-value, empty-data transfer to self at the same nonce."""
    to = tx.get("to")
    data = _as_hex(tx.get("input", tx.get("data")))
    return (
        to is not None
        and str(to).lower() == sender.lower()
        and _as_int(tx.get("value")) == 0
        and data in ("0x", "")
    )


def _as_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.startswith("0x") else int(text)


def _as_hex(value: Any) -> str:
    if value is None:
        return "0x"
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else f"0x{text}"
