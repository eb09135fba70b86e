"""
Conflict scanning and cleanup.

Cleanup is best-effort: every delete is attempted and its outcome recorded,
and no single failure aborts the run. Automatic discounts are cleared before
code discounts because they stack unconditionally, and a new discount must
not race a stale automatic one that is still visible.

The store offers no read-after-delete guarantee. After both passes the
coordinator polls the list operations until the deleted ids are gone, up to
a ceiling, instead of sleeping for a guessed interval.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from discount_reconciler.config import ReconcilerSettings
from discount_reconciler.conflicts import ConflictPredicate, Predicate
from discount_reconciler.errors import DiscountError
from discount_reconciler.models import (
    CleanupReport,
    DeleteOutcome,
    DiscountRecord,
    Representation,
)
from discount_reconciler.stores.base import DiscountStore

logger = logging.getLogger(__name__)

# Order matters: automatic first
CLEANUP_ORDER = (Representation.AUTOMATIC, Representation.CODE)


class CleanupCoordinator:
    """Deletes conflicting discounts and waits for the deletes to propagate."""

    def __init__(
        self,
        settle_interval_seconds: float = 1.0,
        settle_max_attempts: int = 5,
    ):
        self.settle_interval_seconds = settle_interval_seconds
        self.settle_max_attempts = max(1, settle_max_attempts)

    @classmethod
    def from_settings(cls, settings: ReconcilerSettings) -> "CleanupCoordinator":
        return cls(
            settle_interval_seconds=settings.settle_interval_seconds,
            settle_max_attempts=settings.settle_max_attempts,
        )

    async def cleanup(
        self,
        store: DiscountStore,
        predicate: Optional[Predicate] = None,
    ) -> CleanupReport:
        """Delete every discount matching the predicate, automatic first."""
        predicate = predicate or ConflictPredicate()
        report = CleanupReport()

        scope = getattr(predicate, "representations", None)
        for representation in CLEANUP_ORDER:
            if scope is not None and representation not in scope:
                continue
            await self._cleanup_pass(store, representation, predicate, report)

        await self._settle(store, report)
        report.completed_at = datetime.now(timezone.utc)

        logger.info(
            f"Cleanup complete: {report.summary} "
            f"{len(report.failures)} failed, settled={report.settled}",
            extra={
                "stage": "cleanup",
                "automatic_deleted": report.automatic_deleted,
                "code_deleted": report.code_deleted,
                "failures": len(report.failures),
                "remaining_automatic": report.remaining_automatic,
                "remaining_code": report.remaining_code,
            },
        )
        return report

    async def _cleanup_pass(
        self,
        store: DiscountStore,
        representation: Representation,
        predicate: Predicate,
        report: CleanupReport,
    ) -> None:
        try:
            records = await store.list_discounts(representation)
        except DiscountError as e:
            logger.warning(f"Could not list {representation.value} discounts: {e}")
            report.errors.append(f"Error fetching {representation.value} discounts: {e.message}")
            return

        conflicting = [r for r in records if predicate(r)]
        logger.info(
            f"Found {len(conflicting)} conflicting {representation.value} discounts "
            f"out of {len(records)}"
        )

        for record in conflicting:
            report.outcomes.append(await self._delete(store, record))

    async def _delete(self, store: DiscountStore, record: DiscountRecord) -> DeleteOutcome:
        outcome = DeleteOutcome(
            discount_id=record.id,
            representation=record.representation,
            title=record.title,
        )
        try:
            await store.delete_discount(record.id, record.representation)
            outcome.deleted = True
            logger.info(f"Deleted {record.representation.value} discount {record.id} ({record.title!r})")
        except DiscountError as e:
            outcome.error = e.message
            logger.warning(f"Failed to delete {record.representation.value} discount {record.id}: {e}")
        return outcome

    async def _settle(self, store: DiscountStore, report: CleanupReport) -> None:
        """Poll until deleted ids are no longer listed, or give up at the ceiling."""
        pending = set(report.deleted_ids)

        for attempt in range(1, self.settle_max_attempts + 1):
            if pending and self.settle_interval_seconds > 0:
                await asyncio.sleep(self.settle_interval_seconds)
            report.settle_attempts = attempt

            try:
                automatic = await store.list_automatic_discounts()
                code = await store.list_code_discounts()
            except DiscountError as e:
                logger.warning(f"Settle check failed: {e}")
                report.errors.append(f"Settle check failed: {e.message}")
                report.settled = False
                return

            report.remaining_automatic = len(automatic)
            report.remaining_code = len(code)
            still_visible = pending & {r.id for r in _chain(automatic, code)}
            if not still_visible:
                report.settled = True
                return
            logger.debug(f"{len(still_visible)} deleted discounts still visible after attempt {attempt}")

        report.settled = False
        logger.warning(
            f"Deleted discounts still visible after {self.settle_max_attempts} checks; "
            "the store may not have finished propagating",
            extra={"stage": "settle", "still_visible": sorted(still_visible)},
        )


def _chain(*groups: List[DiscountRecord]) -> List[DiscountRecord]:
    return [record for group in groups for record in group]


async def cleanup(
    store: DiscountStore,
    predicate: Optional[Predicate] = None,
    settle_interval_seconds: float = 1.0,
    settle_max_attempts: int = 5,
) -> CleanupReport:
    """Convenience wrapper around CleanupCoordinator.cleanup."""
    coordinator = CleanupCoordinator(settle_interval_seconds, settle_max_attempts)
    return await coordinator.cleanup(store, predicate)
