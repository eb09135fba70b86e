"""
Checkout consistency analysis.

Read-only: the validator lists discounts and reports configurations likely
to break checkout arithmetic. It never writes to the store and is safe to
call at any time.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional

from discount_reconciler.config import ReconcilerSettings
from discount_reconciler.errors import DiscountError
from discount_reconciler.models import (
    ConsistencyIssue,
    ConsistencyReport,
    DiscountRecord,
    IssueKind,
)
from discount_reconciler.stores.base import DiscountStore

logger = logging.getLogger(__name__)


class ConsistencyValidator:
    """Analyzes the store's active discounts for checkout risks."""

    def __init__(self, high_percentage_threshold: Decimal = Decimal("50")):
        self.high_percentage_threshold = high_percentage_threshold

    @classmethod
    def from_settings(cls, settings: ReconcilerSettings) -> "ConsistencyValidator":
        return cls(high_percentage_threshold=settings.high_percentage_threshold)

    async def analyze(self, store: DiscountStore) -> ConsistencyReport:
        """Build a ConsistencyReport from fresh store state."""
        automatic = await store.list_automatic_discounts()
        code = await store.list_code_discounts()

        shop = None
        try:
            shop = await store.read_shop_info()
        except DiscountError as e:
            logger.warning(f"Shop info unavailable during analysis: {e}")

        report = ConsistencyReport(
            automatic_active=[r for r in automatic if r.is_active],
            code_active=[r for r in code if r.is_active],
            shop=shop,
        )
        report.issues = self.find_issues(report.automatic_active, report.code_active)
        report.recommendations = self.recommend(report)

        logger.info(
            f"Checkout analysis: {len(report.automatic_active)} automatic, "
            f"{len(report.code_active)} code active, {len(report.issues)} issues",
            extra={
                "stage": "analyze",
                "checkout_ready": report.checkout_ready,
                "issues": [i.kind.value for i in report.issues],
            },
        )
        return report

    def find_issues(
        self,
        automatic: List[DiscountRecord],
        code: List[DiscountRecord],
    ) -> List[ConsistencyIssue]:
        issues: List[ConsistencyIssue] = []

        if len(automatic) > 1:
            issues.append(ConsistencyIssue(
                kind=IssueKind.STACKING_RISK,
                message="Multiple automatic discounts detected - may cause calculation conflicts",
                discount_ids=[r.id for r in automatic],
            ))

        if automatic and code:
            issues.append(ConsistencyIssue(
                kind=IssueKind.MIXED_MODE_RISK,
                message="Both automatic and code discounts active - verify stacking behavior",
                discount_ids=[r.id for r in automatic + code],
            ))

        high = [
            r for r in automatic + code
            if r.percentage is not None and r.percentage >= self.high_percentage_threshold
        ]
        if high:
            issues.append(ConsistencyIssue(
                kind=IssueKind.VERIFY_CALCULATION,
                message="High percentage discount detected - verify checkout calculations are correct",
                discount_ids=[r.id for r in high],
            ))

        return issues

    @staticmethod
    def recommend(report: ConsistencyReport) -> List[str]:
        if report.total_active == 0:
            return ["No active discounts found. Create a simple test discount to verify checkout calculations."]
        if report.issues:
            return [
                "Issues detected. Clean up conflicting discounts.",
                "Test checkout with a simple 10% discount first.",
            ]
        return [
            "Discount configuration looks good for checkout testing.",
            "Verify discount amounts are calculated correctly at checkout.",
        ]


async def analyze(store: DiscountStore, high_percentage_threshold: Optional[Decimal] = None) -> ConsistencyReport:
    """Convenience wrapper around ConsistencyValidator.analyze."""
    if high_percentage_threshold is None:
        return await ConsistencyValidator().analyze(store)
    return await ConsistencyValidator(high_percentage_threshold).analyze(store)
