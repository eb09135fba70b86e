"""Discount reconciliation data models."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


# Currency-unit tolerance for checkout arithmetic and value re-derivation
AMOUNT_TOLERANCE = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiscountKind(str, Enum):
    """Magnitude type of a discount."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class OrderType(str, Enum):
    """Orders a discount is intended for."""
    ALL = "all"
    COD = "cod"
    PREPAID = "prepaid"


class Representation(str, Enum):
    """How the store applies a discount."""
    AUTOMATIC = "automatic"
    CODE = "code"


class DiscountStatus(str, Enum):
    """Store-driven discount status."""
    ACTIVE = "active"
    PENDING = "pending"
    EXPIRED = "expired"
    UNKNOWN = "unknown"

    @classmethod
    def from_store(cls, value: Optional[str]) -> "DiscountStatus":
        return {
            "ACTIVE": cls.ACTIVE,
            "SCHEDULED": cls.PENDING,
            "EXPIRED": cls.EXPIRED,
        }.get((value or "").upper(), cls.UNKNOWN)


class Verdict(str, Enum):
    """Outcome of comparing a checkout total with the discount math."""
    MATCH = "match"
    SHIPPING_TAX_ADJUSTED = "shipping_tax_adjusted"
    MISMATCH = "mismatch"


class IssueKind(str, Enum):
    """Checkout consistency issue kinds."""
    STACKING_RISK = "stacking_risk"
    MIXED_MODE_RISK = "mixed_mode_risk"
    VERIFY_CALCULATION = "verify_calculation"


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """Convert user or wire input to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field_name} must be numeric")
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{field_name} must be numeric") from exc
    if not result.is_finite():
        raise ValueError(f"{field_name} must be numeric")
    return result


@dataclass
class DiscountSpec:
    """User intent for a new discount, before validation."""
    name: str
    kind: DiscountKind
    raw_value: Any
    min_order_value: Any = Decimal("0")
    max_discount: Any = None
    start_date: Optional[Any] = None
    end_date: Optional[Any] = None
    order_type: OrderType = OrderType.ALL
    auto_apply: bool = False

    @classmethod
    def from_form(cls, form: Mapping[str, Any]) -> "DiscountSpec":
        """Build a spec from the admin form field names."""
        max_discount = form.get("maxDiscount")
        auto_apply = form.get("autoApply", False)
        if isinstance(auto_apply, str):
            auto_apply = auto_apply.strip().lower() == "true"
        return cls(
            name=(form.get("name") or "").strip(),
            kind=form.get("type") or DiscountKind.PERCENTAGE,
            raw_value=form.get("value"),
            min_order_value=form.get("minOrderValue") or Decimal("0"),
            max_discount=max_discount if max_discount not in ("", None) else None,
            start_date=form.get("startDate") or None,
            end_date=form.get("endDate") or None,
            order_type=form.get("orderType") or OrderType.ALL,
            auto_apply=bool(auto_apply),
        )


@dataclass(frozen=True)
class NormalizedDiscount:
    """Validated discount with its exact store encoding."""
    name: str
    title: str
    kind: DiscountKind
    raw_value: Decimal
    encoded_value: Decimal
    min_order_value: Decimal
    max_discount: Optional[Decimal]
    start_date: date
    end_date: date
    order_type: OrderType
    auto_apply: bool
    representation: Representation

    @property
    def starts_at(self) -> str:
        return f"{self.start_date.isoformat()}T00:00:00Z"

    @property
    def ends_at(self) -> str:
        return f"{self.end_date.isoformat()}T23:59:59Z"

    @property
    def display_value(self) -> str:
        if self.kind == DiscountKind.PERCENTAGE:
            return f"{self.raw_value.normalize():f}%"
        return f"${self.raw_value:.2f}"


@dataclass
class DiscountRecord:
    """A discount as held by the external store."""
    id: str
    representation: Representation
    title: str = ""
    status: DiscountStatus = DiscountStatus.UNKNOWN
    code: Optional[str] = None
    created_at: Optional[datetime] = None
    value_kind: Optional[DiscountKind] = None
    value: Optional[Decimal] = None  # Store encoding: fraction or currency amount
    currency_code: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    minimum_subtotal: Optional[Decimal] = None

    @property
    def percentage(self) -> Optional[Decimal]:
        """Percentage in user units (0.1 -> 10), or None for fixed amounts."""
        if self.value_kind != DiscountKind.PERCENTAGE or self.value is None:
            return None
        return self.value * 100

    @property
    def is_active(self) -> bool:
        return self.status == DiscountStatus.ACTIVE

    @property
    def display_value(self) -> str:
        if self.percentage is not None:
            return f"{self.percentage:.1f}%"
        if self.value is not None:
            return f"{self.currency_code or ''} {self.value}".strip()
        return "Unknown"


@dataclass(frozen=True)
class CreateRequest:
    """Representation-specific creation request sent to the store."""
    representation: Representation
    title: str
    kind: DiscountKind
    encoded_value: Decimal
    starts_at: str
    ends_at: str
    minimum_subtotal: Optional[Decimal] = None
    code: Optional[str] = None


@dataclass
class UserError:
    """Field-level rejection reported by the store."""
    message: str
    field: Optional[List[str]] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "message": self.message, "code": self.code}


@dataclass
class CreateResult:
    """Raw outcome of a create call, before tier checks."""
    record: Optional[DiscountRecord] = None
    user_errors: List[UserError] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ShopInfo:
    """Shop details used as a connectivity probe."""
    name: str = ""
    currency_code: str = "USD"
    plan_name: Optional[str] = None


@dataclass
class DeleteOutcome:
    """Result of one delete attempt during cleanup."""
    discount_id: str
    representation: Representation
    title: str = ""
    deleted: bool = False
    error: Optional[str] = None


@dataclass
class CleanupReport:
    """Outcome of a cleanup run."""
    outcomes: List[DeleteOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    settled: bool = True
    settle_attempts: int = 0
    remaining_automatic: int = 0
    remaining_code: int = 0
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def automatic_deleted(self) -> int:
        return sum(
            1 for o in self.outcomes
            if o.deleted and o.representation == Representation.AUTOMATIC
        )

    @property
    def code_deleted(self) -> int:
        return sum(
            1 for o in self.outcomes
            if o.deleted and o.representation == Representation.CODE
        )

    @property
    def deleted_ids(self) -> List[str]:
        return [o.discount_id for o in self.outcomes if o.deleted]

    @property
    def failures(self) -> List[DeleteOutcome]:
        return [o for o in self.outcomes if not o.deleted]

    @property
    def summary(self) -> str:
        return (
            f"Deleted {self.automatic_deleted} automatic discounts and "
            f"{self.code_deleted} code discounts."
        )


@dataclass
class ConsistencyIssue:
    """A configuration likely to break checkout math."""
    kind: IssueKind
    message: str
    discount_ids: List[str] = field(default_factory=list)


@dataclass
class ConsistencyReport:
    """Read-only analysis of the store's current discount configuration."""
    automatic_active: List[DiscountRecord] = field(default_factory=list)
    code_active: List[DiscountRecord] = field(default_factory=list)
    issues: List[ConsistencyIssue] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    shop: Optional[ShopInfo] = None
    analyzed_at: datetime = field(default_factory=_utcnow)

    @property
    def checkout_ready(self) -> bool:
        return len(self.issues) == 0

    @property
    def total_active(self) -> int:
        return len(self.automatic_active) + len(self.code_active)

    def has_issue(self, kind: IssueKind) -> bool:
        return any(issue.kind == kind for issue in self.issues)


@dataclass
class StoreInventory:
    """Every discount currently visible in the store."""
    automatic: List[DiscountRecord] = field(default_factory=list)
    code: List[DiscountRecord] = field(default_factory=list)
    shop: Optional[ShopInfo] = None

    @property
    def is_clean(self) -> bool:
        return not self.automatic and not self.code

    @property
    def next_steps(self) -> List[str]:
        if self.is_clean:
            return [
                "Create a new 10% discount",
                "Test checkout calculation",
                "Verify discount shows correct amount",
            ]
        return [
            "Open the store admin discounts page",
            "Delete the remaining discounts listed above",
            "Run the inventory check again",
        ]


@dataclass(frozen=True)
class DiscountAllocation:
    """Store-reported share of one discount in a checkout."""
    title: str
    discounted_amount: Decimal
    target_type: str = "automatic"


@dataclass(frozen=True)
class CheckoutSnapshot:
    """Live checkout cost state pushed by the checkout runtime."""
    subtotal_amount: Decimal
    total_amount: Decimal
    currency_code: str = "USD"
    allocations: tuple = ()
    discount_codes: tuple = ()

    @property
    def total_discount(self) -> Decimal:
        return sum((a.discounted_amount for a in self.allocations), Decimal("0"))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CheckoutSnapshot":
        """Parse the checkout runtime payload shape."""
        cost = payload.get("cost") or {}
        subtotal = (cost.get("subtotalAmount") or {}).get("amount") or 0
        total_money = cost.get("totalAmount") or {}
        allocations = tuple(
            DiscountAllocation(
                title=item.get("title") or "Automatic Discount",
                discounted_amount=to_decimal(
                    (item.get("discountedAmount") or {}).get("amount") or 0,
                    "discountedAmount",
                ),
                target_type=item.get("targetType") or "automatic",
            )
            for item in payload.get("discountAllocations") or ()
        )
        codes = tuple(
            c.get("code", "") if isinstance(c, Mapping) else str(c)
            for c in payload.get("discountCodes") or ()
        )
        return cls(
            subtotal_amount=to_decimal(subtotal, "subtotalAmount"),
            total_amount=to_decimal(total_money.get("amount") or 0, "totalAmount"),
            currency_code=total_money.get("currencyCode") or "USD",
            allocations=allocations,
            discount_codes=codes,
        )


@dataclass(frozen=True)
class VerificationResult:
    """Checkout total compared with subtotal minus allocated discounts."""
    subtotal: Decimal
    total_discount: Decimal
    actual_total: Decimal
    expected_total: Decimal
    delta: Decimal
    verdict: Verdict

    @property
    def flagged(self) -> bool:
        return self.verdict == Verdict.MISMATCH


@dataclass
class PipelineResult:
    """Successful outcome of the normalize, cleanup, create pipeline."""
    record: DiscountRecord
    discount: NormalizedDiscount
    cleanup: CleanupReport
    message: str
    shop: Optional[ShopInfo] = None
