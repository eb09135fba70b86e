"""
Conflict predicate for cleanup.

Decides whether an existing discount must be removed before a new one can be
created safely. The title markers are a heuristic: they can flag a discount
that is harmless ("Cod liver oil promo") and miss one that conflicts under a
neutral title. Override the markers, or pass a custom callable to the
cleanup coordinator, rather than relying on the defaults.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, Optional, Tuple

from discount_reconciler.config import DEFAULT_CONFLICT_MARKERS, ReconcilerSettings
from discount_reconciler.models import DiscountRecord, Representation

Predicate = Callable[[DiscountRecord], bool]

# Title markers of leftover test discounts removed by checkout repair
REPAIR_MARKERS = ("test", "sumit")


@dataclass(frozen=True)
class ConflictPredicate:
    """
    Configurable conflict rule.

    A record conflicts when any of these holds:
    - its percentage is at or above ``max_percentage`` (zero or negative
      checkout totals), for either representation
    - its title contains one of ``markers`` (case-insensitive)
    - it is automatic and ``clear_all_automatic`` is set, because the store
      does not order stacking across several automatic discounts

    Records whose representation is not in ``representations`` never conflict.
    """
    markers: Tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_CONFLICT_MARKERS))
    max_percentage: Decimal = Decimal("100")
    clear_all_automatic: bool = True
    automatic_markers: Optional[Tuple[str, ...]] = None
    representations: Optional[Tuple[Representation, ...]] = None

    @classmethod
    def from_settings(cls, settings: ReconcilerSettings) -> "ConflictPredicate":
        return cls(
            markers=tuple(settings.conflict_marker_list),
            max_percentage=settings.conflict_percentage,
            clear_all_automatic=settings.clear_all_automatic,
        )

    @classmethod
    def high_percentage_only(cls, markers: Iterable[str] = REPAIR_MARKERS) -> "ConflictPredicate":
        """Rule for repairing checkout: only broken or test automatic discounts."""
        return cls(
            markers=(),
            automatic_markers=tuple(markers),
            clear_all_automatic=False,
            representations=(Representation.AUTOMATIC,),
        )

    def __call__(self, record: DiscountRecord) -> bool:
        return bool(self.reasons(record))

    def reasons(self, record: DiscountRecord) -> list[str]:
        """Explain why a record conflicts. Empty when it does not."""
        if self.representations is not None and record.representation not in self.representations:
            return []
        reasons = []
        percentage = record.percentage
        if percentage is not None and percentage >= self.max_percentage:
            reasons.append(f"percentage {percentage:.0f}% >= {self.max_percentage}%")

        markers = self.markers
        if record.representation == Representation.AUTOMATIC:
            if self.clear_all_automatic:
                reasons.append("automatic discount coexistence")
            if self.automatic_markers is not None:
                markers = self.automatic_markers

        title = (record.title or "").lower()
        matched = [m for m in markers if m and m.lower() in title]
        if matched:
            reasons.append(f"title marker {matched[0]!r}")
        return reasons
