"""
Discount Reconciler - discount cleanup, creation and checkout verification.

This package manages promotional discounts on an eventually-consistent
commerce store (Shopify) and checks that checkout totals match the
discount arithmetic.

Features:
- Exact discount encoding with re-derivation checks
- Best-effort conflict cleanup with propagation polling
- Automatic and code discount creation with tiered error handling
- Read-only checkout consistency analysis
- Checkout-side total reconciliation monitor
"""

from discount_reconciler.cleanup import CleanupCoordinator, cleanup
from discount_reconciler.config import ReconcilerSettings, get_settings
from discount_reconciler.conflicts import ConflictPredicate
from discount_reconciler.errors import (
    AuthenticationError,
    CleanupNotSettled,
    ConfigurationError,
    DiscountError,
    OpaqueFailure,
    PermissionDeniedError,
    PipelineTimeout,
    PrecisionError,
    StoreError,
    StoreValidationError,
    TransportError,
    UnsupportedOperation,
    ValidationError,
)
from discount_reconciler.models import (
    CheckoutSnapshot,
    CleanupReport,
    ConsistencyIssue,
    ConsistencyReport,
    DiscountAllocation,
    DiscountKind,
    DiscountRecord,
    DiscountSpec,
    DiscountStatus,
    IssueKind,
    NormalizedDiscount,
    OrderType,
    PipelineResult,
    Representation,
    ShopInfo,
    StoreInventory,
    VerificationResult,
    Verdict,
)
from discount_reconciler.monitor import MonitorState, MonitorView, ReconciliationMonitor
from discount_reconciler.normalizer import normalize
from discount_reconciler.pipeline import DiscountPipeline
from discount_reconciler.stores import DiscountStore, InMemoryDiscountStore, ShopifyDiscountStore
from discount_reconciler.validator import ConsistencyValidator, analyze
from discount_reconciler.verification import verify_snapshot, verify_totals
from discount_reconciler.writer import DiscountWriter, create

__all__ = [
    # Pipeline
    "DiscountPipeline",
    "normalize",
    "cleanup",
    "create",
    "analyze",
    "CleanupCoordinator",
    "DiscountWriter",
    "ConsistencyValidator",
    "ConflictPredicate",
    # Checkout side
    "ReconciliationMonitor",
    "MonitorState",
    "MonitorView",
    "verify_totals",
    "verify_snapshot",
    # Stores
    "DiscountStore",
    "InMemoryDiscountStore",
    "ShopifyDiscountStore",
    # Models
    "DiscountSpec",
    "NormalizedDiscount",
    "DiscountRecord",
    "DiscountKind",
    "DiscountStatus",
    "OrderType",
    "Representation",
    "CleanupReport",
    "ConsistencyIssue",
    "ConsistencyReport",
    "IssueKind",
    "StoreInventory",
    "ShopInfo",
    "CheckoutSnapshot",
    "DiscountAllocation",
    "VerificationResult",
    "Verdict",
    "PipelineResult",
    # Configuration
    "ReconcilerSettings",
    "get_settings",
    # Errors
    "DiscountError",
    "ConfigurationError",
    "ValidationError",
    "PrecisionError",
    "StoreError",
    "AuthenticationError",
    "PermissionDeniedError",
    "StoreValidationError",
    "TransportError",
    "OpaqueFailure",
    "PipelineTimeout",
    "CleanupNotSettled",
    "UnsupportedOperation",
]

__version__ = "0.1.0"
