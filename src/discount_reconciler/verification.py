"""Checkout total verification."""
from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Union

from discount_reconciler.models import (
    AMOUNT_TOLERANCE,
    CheckoutSnapshot,
    VerificationResult,
    Verdict,
    to_decimal,
)

Amount = Union[Decimal, int, float, str]


def verify_totals(
    subtotal: Amount,
    discounts: Iterable[Amount],
    total: Amount,
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> VerificationResult:
    """
    Compare a checkout total with subtotal minus discounts.

    A total within tolerance is a match. A total below the expected value
    means a discount was applied twice or stacked. A total above it is
    treated as shipping or tax.
    """
    subtotal = to_decimal(subtotal, "subtotal")
    actual_total = to_decimal(total, "total")
    total_discount = sum((to_decimal(d, "discount") for d in discounts), Decimal("0"))

    expected_total = subtotal - total_discount
    delta = actual_total - expected_total

    if abs(delta) <= tolerance:
        verdict = Verdict.MATCH
    elif delta < -tolerance:
        verdict = Verdict.MISMATCH
    else:
        verdict = Verdict.SHIPPING_TAX_ADJUSTED

    return VerificationResult(
        subtotal=subtotal,
        total_discount=total_discount,
        actual_total=actual_total,
        expected_total=expected_total,
        delta=delta,
        verdict=verdict,
    )


def verify_snapshot(snapshot: CheckoutSnapshot, tolerance: Decimal = AMOUNT_TOLERANCE) -> VerificationResult:
    return verify_totals(
        snapshot.subtotal_amount,
        (a.discounted_amount for a in snapshot.allocations),
        snapshot.total_amount,
        tolerance,
    )
