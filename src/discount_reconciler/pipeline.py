"""
Discount pipeline: normalize -> cleanup -> create.

Steps run strictly in sequence against the store. Delete-before-create
ordering and the settle barrier are what keep a fresh discount from stacking
with a stale one, so nothing here runs concurrently. The whole
cleanup-and-create chain is bounded by a caller-supplied deadline.
"""
from __future__ import annotations

import asyncio
import calendar
import logging
from datetime import date
from typing import Any, Mapping, Optional, Union

from discount_reconciler.cleanup import CleanupCoordinator
from discount_reconciler.config import ReconcilerSettings, get_settings
from discount_reconciler.conflicts import ConflictPredicate, Predicate
from discount_reconciler.errors import (
    CleanupNotSettled,
    PipelineTimeout,
    UnsupportedOperation,
    ValidationError,
)
from discount_reconciler.models import (
    CleanupReport,
    ConsistencyReport,
    DiscountKind,
    DiscountSpec,
    NormalizedDiscount,
    PipelineResult,
    Representation,
    ShopInfo,
    StoreInventory,
)
from discount_reconciler.normalizer import normalize
from discount_reconciler.stores.base import DiscountStore
from discount_reconciler.validator import ConsistencyValidator
from discount_reconciler.writer import DiscountWriter, success_message

logger = logging.getLogger(__name__)

WORKING_DISCOUNT_TITLE = "Working 10% Off - Auto Apply"


class DiscountPipeline:
    """
    Entry point for discount operations against one store.

    Usage:
        async with DiscountPipeline(store) as pipeline:
            result = await pipeline.create_discount(
                DiscountSpec(name="Spring", kind="percentage", raw_value=10, auto_apply=True)
            )
            report = await pipeline.analyze()
    """

    def __init__(
        self,
        store: DiscountStore,
        settings: Optional[ReconcilerSettings] = None,
        predicate: Optional[Predicate] = None,
        coordinator: Optional[CleanupCoordinator] = None,
        writer: Optional[DiscountWriter] = None,
        validator: Optional[ConsistencyValidator] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.predicate = predicate or ConflictPredicate.from_settings(self.settings)
        self.coordinator = coordinator or CleanupCoordinator.from_settings(self.settings)
        self.writer = writer or DiscountWriter()
        self.validator = validator or ConsistencyValidator.from_settings(self.settings)

    async def __aenter__(self) -> "DiscountPipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.store.close()

    async def probe(self) -> ShopInfo:
        """Check connectivity and credentials against the store."""
        shop = await self.store.read_shop_info()
        logger.info(
            f"Connected to shop: {shop.name} ({shop.currency_code})",
            extra={"stage": "probe", "plan": shop.plan_name},
        )
        return shop

    async def create_discount(
        self,
        raw: Union[DiscountSpec, Mapping[str, Any]],
        deadline_seconds: Optional[float] = None,
        require_settled: bool = False,
        predicate: Optional[Predicate] = None,
    ) -> PipelineResult:
        """
        Normalize, clean up conflicts, then create the discount.

        Args:
            raw: DiscountSpec or admin form mapping
            deadline_seconds: bound for the store-facing steps; defaults to
                the configured pipeline deadline
            require_settled: raise CleanupNotSettled instead of creating when
                deleted discounts are still visible
            predicate: conflict rule overriding the configured one

        Raises:
            ValidationError, PrecisionError: before any store call
            StoreError subclasses: from the probe or the writer
            PipelineTimeout: when the deadline elapses
        """
        if not isinstance(raw, DiscountSpec):
            raw = DiscountSpec.from_form(raw)
        discount = normalize(raw)
        logger.info(
            f"Normalized {discount.title!r}: {discount.kind.value} {discount.raw_value} "
            f"-> {discount.encoded_value} ({discount.representation.value})",
            extra={"stage": "normalize"},
        )

        if deadline_seconds is None:
            deadline_seconds = self.settings.pipeline_deadline_seconds
        return await self._bounded(
            self._cleanup_and_create(discount, predicate or self.predicate, require_settled),
            deadline_seconds,
        )

    async def _cleanup_and_create(
        self,
        discount: NormalizedDiscount,
        predicate: Predicate,
        require_settled: bool,
    ) -> PipelineResult:
        shop = await self.probe()

        report = await self.coordinator.cleanup(self.store, predicate)
        if not report.settled:
            if require_settled:
                raise CleanupNotSettled(
                    "Deleted discounts are still visible in the store",
                    details={
                        "remaining_automatic": report.remaining_automatic,
                        "remaining_code": report.remaining_code,
                    },
                )
            logger.warning("Creating discount before cleanup fully propagated")

        record = await self.writer.create(discount, self.store)
        message = success_message(discount, record)
        logger.info(message, extra={"stage": "complete", "discount_id": record.id})
        return PipelineResult(
            record=record,
            discount=discount,
            cleanup=report,
            message=message,
            shop=shop,
        )

    async def _bounded(self, coro, deadline_seconds: Optional[float]):
        if deadline_seconds is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=deadline_seconds)
        except asyncio.TimeoutError:
            raise PipelineTimeout(
                f"Cleanup and create did not finish within {deadline_seconds:g}s",
                details={"deadline_seconds": deadline_seconds},
            ) from None

    async def cleanup(self, predicate: Optional[Predicate] = None) -> CleanupReport:
        """Run cleanup alone."""
        return await self.coordinator.cleanup(self.store, predicate or self.predicate)

    async def analyze(self) -> ConsistencyReport:
        """Read-only checkout consistency report."""
        return await self.validator.analyze(self.store)

    async def inventory(self) -> StoreInventory:
        """List every remaining discount."""
        automatic = await self.store.list_automatic_discounts()
        code = await self.store.list_code_discounts()
        shop = await self.store.read_shop_info()
        inventory = StoreInventory(automatic=automatic, code=code, shop=shop)
        logger.info(
            f"Inventory: {len(automatic)} automatic, {len(code)} code discounts",
            extra={"stage": "inventory", "is_clean": inventory.is_clean},
        )
        return inventory

    async def delete_discount(self, discount_id: str, representation: Union[Representation, str]) -> str:
        """Delete one discount. Failures are raised with full detail."""
        if not discount_id:
            raise ValidationError("Discount ID is required for deletion", field="discountId")
        try:
            representation = Representation(representation)
        except ValueError:
            raise ValidationError("discountType must be automatic or code", field="discountType") from None
        deleted = await self.store.delete_discount(discount_id, representation)
        logger.info(
            f"Deleted {representation.value} discount {deleted}",
            extra={"stage": "delete", "discount_id": deleted},
        )
        return deleted

    async def replace_discount(
        self,
        discount_id: str,
        representation: Union[Representation, str],
        raw: Union[DiscountSpec, Mapping[str, Any]],
        deadline_seconds: Optional[float] = None,
    ) -> PipelineResult:
        """Delete a discount and create its replacement; the store has no update."""
        if not isinstance(raw, DiscountSpec):
            raw = DiscountSpec.from_form(raw)
        # Validate before deleting anything
        normalize(raw)
        await self.delete_discount(discount_id, representation)
        return await self.create_discount(raw, deadline_seconds=deadline_seconds)

    async def update_discount(self, discount_id: str, *args: Any, **kwargs: Any) -> None:
        raise UnsupportedOperation(
            "The store does not allow discount values to be changed after creation",
            details={"discount_id": discount_id},
        )

    async def fix_checkout(
        self,
        today: Optional[date] = None,
        deadline_seconds: Optional[float] = None,
    ) -> PipelineResult:
        """
        Repair checkout totals broken by 100% or test discounts.

        Removes automatic discounts that are at least 100% or test-marked,
        then creates a plain 10% automatic discount valid for one month.
        """
        today = today or date.today()
        spec = DiscountSpec(
            name=WORKING_DISCOUNT_TITLE,
            kind=DiscountKind.PERCENTAGE,
            raw_value=10,
            start_date=today,
            end_date=_add_month(today),
            auto_apply=True,
        )
        return await self.create_discount(
            spec,
            deadline_seconds=deadline_seconds,
            predicate=ConflictPredicate.high_percentage_only(),
        )


def _add_month(day: date) -> date:
    year = day.year + (1 if day.month == 12 else 0)
    month = 1 if day.month == 12 else day.month + 1
    return day.replace(year=year, month=month, day=min(day.day, calendar.monthrange(year, month)[1]))
