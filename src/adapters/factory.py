"""
Adapter Factory & Detector.

Backends are third-party objects, so detection is structural: each probe
counts which of its backend's characteristic attributes are present and
returns a confidence in ``[0, 1]``. A probe scores zero unless every feature
its adapter requires at construction is present. Probes run in a fixed
priority order, most distinctive first, and the first one at or above
``DETECTION_THRESHOLD`` wins. Nothing is guessed below the threshold.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from core.errors import UnrecognizedClientError

from .base import AccountAdapter, AdapterContext, AdapterType, has_feature
from .eip1193 import EIP1193Adapter
from .local_signer import LocalSignerAdapter
from .web3_adapter import Web3Adapter

logger = logging.getLogger(__name__)

DETECTION_THRESHOLD = 0.6


@dataclass(frozen=True)
class ProbeResult:
    adapter_type: AdapterType
    confidence: float
    matched_features: tuple[str, ...]

    @property
    def matched(self) -> bool:
        return self.confidence >= DETECTION_THRESHOLD


def _score(
    client: Any,
    adapter_type: AdapterType,
    required: tuple[str, ...],
    optional: tuple[str, ...],
) -> ProbeResult:
    matched = tuple(name for name in required + optional if has_feature(client, name))
    if not all(name in matched for name in required):
        return ProbeResult(adapter_type, 0.0, matched)
    confidence = len(matched) / len(required + optional)
    return ProbeResult(adapter_type, round(confidence, 4), matched)


def probe_web3(client: Any) -> ProbeResult:
    return _score(
        client,
        AdapterType.WEB3,
        required=("eth",) + Web3Adapter.required_features,
        optional=(
            "eth.wait_for_transaction_receipt",
            "middleware_onion",
            "provider",
        ),
    )


def probe_local_signer(client: Any) -> ProbeResult:
    return _score(
        client,
        AdapterType.LOCAL_SIGNER,
        required=LocalSignerAdapter.required_features,
        optional=("sign_typed_data", "encrypt"),
    )


def probe_eip1193(client: Any) -> ProbeResult:
    # request alone scores exactly at the threshold
    result = _score(
        client,
        AdapterType.EIP1193,
        required=EIP1193Adapter.required_features,
        optional=("on", "remove_listener"),
    )
    if result.confidence == 0.0:
        return result
    bonus = 0.2 * (len(result.matched_features) - 1)
    return ProbeResult(result.adapter_type, min(0.6 + bonus, 1.0), result.matched_features)


PROBES: tuple[Callable[[Any], ProbeResult], ...] = (
    probe_web3,
    probe_local_signer,
    probe_eip1193,
)

ADAPTERS: dict[AdapterType, type[AccountAdapter]] = {
    AdapterType.WEB3: Web3Adapter,
    AdapterType.LOCAL_SIGNER: LocalSignerAdapter,
    AdapterType.EIP1193: EIP1193Adapter,
}


def detect_client(client: Any) -> ProbeResult:
    if client is None:
        raise UnrecognizedClientError("client must not be None")
    results = []
    for probe in PROBES:
        result = probe(client)
        logger.debug(
            "probe %s: confidence=%.2f features=%s",
            result.adapter_type.value,
            result.confidence,
            ",".join(result.matched_features),
        )
        if result.matched:
            return result
        results.append(result)
    raise UnrecognizedClientError(
        f"Unrecognized client {type(client).__name__}",
        details={"probes": results},
    )


def create_account(client: Any, context: Optional[AdapterContext] = None) -> AccountAdapter:
    """Detect the backend behind ``client`` and wrap it in its adapter."""
    result = detect_client(client)
    adapter_cls = ADAPTERS[result.adapter_type]
    logger.info(
        "detected %s client (confidence %.2f)", result.adapter_type.value, result.confidence
    )
    return adapter_cls(client, context)
