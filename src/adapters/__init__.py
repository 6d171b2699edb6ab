from .base import AccountAdapter, AdapterContext, AdapterType
from .eip1193 import EIP1193Adapter
from .factory import (
    DETECTION_THRESHOLD,
    ProbeResult,
    create_account,
    detect_client,
    probe_eip1193,
    probe_local_signer,
    probe_web3,
)
from .local_signer import LocalSignerAdapter
from .normalizer import normalize_error
from .web3_adapter import Web3Adapter

__all__ = [
    "AccountAdapter",
    "AdapterContext",
    "AdapterType",
    "Web3Adapter",
    "LocalSignerAdapter",
    "EIP1193Adapter",
    "DETECTION_THRESHOLD",
    "ProbeResult",
    "create_account",
    "detect_client",
    "probe_web3",
    "probe_local_signer",
    "probe_eip1193",
    "normalize_error",
]
