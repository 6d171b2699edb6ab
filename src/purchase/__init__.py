from .models import (
    DEFAULT_MINT_SIGNATURE,
    ClaimState,
    Cost,
    Eligibility,
    GasBuffer,
    OrchestratorConfig,
    Order,
    OrderStatus,
    PreparedPurchase,
    PurchaseParams,
    PurchaseStep,
    Receipt,
    SaleStatus,
    StepType,
)
from .orchestrator import PurchaseOrchestrator

__all__ = [
    "PurchaseOrchestrator",
    "OrchestratorConfig",
    "ClaimState",
    "PurchaseParams",
    "GasBuffer",
    "PurchaseStep",
    "PreparedPurchase",
    "Receipt",
    "Order",
    "OrderStatus",
    "Cost",
    "Eligibility",
    "SaleStatus",
    "StepType",
    "DEFAULT_MINT_SIGNATURE",
]
