"""
Tests for the cleanup coordinator.

Tests cover:
- Automatic-before-code ordering
- Best-effort deletion with partial failures
- Idempotency on a clean store
- Settle polling against delayed delete visibility
"""
from __future__ import annotations

from datetime import date

import pytest

from discount_reconciler.cleanup import CleanupCoordinator, cleanup
from discount_reconciler.conflicts import ConflictPredicate
from discount_reconciler.models import Representation
from discount_reconciler.stores.memory import InMemoryDiscountStore

TODAY = date(2026, 10, 17)


def seeded_store(**kwargs) -> InMemoryDiscountStore:
    store = InMemoryDiscountStore(today=TODAY, **kwargs)
    store.add(Representation.AUTOMATIC, "Test Auto 100", percentage=100)
    store.add(Representation.AUTOMATIC, "Spring 15", percentage=15)
    store.add(Representation.CODE, "SAVE20 promo", percentage=20, code="SAVE20")
    store.add(Representation.CODE, "Loyalty Reward 5", percentage=5, code="LOYAL5")
    return store


@pytest.fixture
def coordinator():
    return CleanupCoordinator(settle_interval_seconds=0, settle_max_attempts=3)


class TestCleanupOrder:
    """Automatic discounts are deleted before code discounts."""

    @pytest.mark.asyncio
    async def test_automatic_deleted_first(self, coordinator):
        store = seeded_store()
        await coordinator.cleanup(store)

        deletes = [c for c in store.calls if c.startswith("delete_")]
        assert deletes == ["delete_automatic", "delete_automatic", "delete_code"]
        first_code_list = store.calls.index("list_code")
        assert store.calls.index("delete_automatic") < first_code_list

    @pytest.mark.asyncio
    async def test_counts_and_survivors(self, coordinator):
        store = seeded_store()
        report = await coordinator.cleanup(store)

        assert report.automatic_deleted == 2
        assert report.code_deleted == 1
        assert report.summary == "Deleted 2 automatic discounts and 1 code discounts."
        assert [r.title for r in store.records] == ["Loyalty Reward 5"]
        assert report.settled
        assert report.remaining_automatic == 0
        assert report.remaining_code == 1
        assert report.completed_at is not None
        assert report.started_at.tzinfo is not None
        assert report.completed_at.tzinfo is not None
        assert report.completed_at >= report.started_at


class TestBestEffort:
    """One failed delete never aborts the run."""

    @pytest.mark.asyncio
    async def test_partial_failure_recorded(self, coordinator):
        store = seeded_store()
        broken = store.records[0].id
        store.fail_deletes.add(broken)

        report = await coordinator.cleanup(store)

        assert report.automatic_deleted == 1
        assert report.code_deleted == 1
        assert len(report.failures) == 1
        assert report.failures[0].discount_id == broken
        assert "Simulated delete failure" in report.failures[0].error
        assert report.remaining_automatic == 1

    @pytest.mark.asyncio
    async def test_list_failure_skips_pass(self, coordinator):
        store = seeded_store()
        store.fail_lists.add(Representation.AUTOMATIC)

        report = await coordinator.cleanup(store)

        assert report.automatic_deleted == 0
        assert report.code_deleted == 1
        assert report.errors[0].startswith("Error fetching automatic discounts")
        # Settle check cannot list automatic discounts either
        assert report.settled is False
        assert any(e.startswith("Settle check failed") for e in report.errors)

    @pytest.mark.asyncio
    async def test_custom_predicate(self, coordinator):
        store = seeded_store()
        predicate = ConflictPredicate(markers=(), clear_all_automatic=False)

        report = await coordinator.cleanup(store, predicate)

        assert report.deleted_ids and len(report.deleted_ids) == 1
        assert "Test Auto 100" not in [r.title for r in store.records]


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_second_run_deletes_nothing(self, coordinator):
        store = seeded_store()
        await coordinator.cleanup(store)
        report = await coordinator.cleanup(store)

        assert report.outcomes == []
        assert report.settled
        assert report.settle_attempts == 1

    @pytest.mark.asyncio
    async def test_empty_store(self):
        store = InMemoryDiscountStore(today=TODAY)
        report = await cleanup(store, settle_interval_seconds=0)
        assert report.summary == "Deleted 0 automatic discounts and 0 code discounts."
        assert report.settled


class TestSettle:
    """Deleted discounts may stay visible for a few reads."""

    @pytest.mark.asyncio
    async def test_polls_until_deletes_disappear(self, coordinator):
        store = seeded_store(delete_visibility_reads=2)
        report = await coordinator.cleanup(store)

        assert report.settled
        assert report.settle_attempts == 3
        assert report.remaining_automatic == 0

    @pytest.mark.asyncio
    async def test_ceiling_reports_unsettled(self):
        store = seeded_store(delete_visibility_reads=10)
        coordinator = CleanupCoordinator(settle_interval_seconds=0, settle_max_attempts=2)

        report = await coordinator.cleanup(store)

        assert report.settled is False
        assert report.settle_attempts == 2
        assert report.remaining_automatic == 2
        assert report.automatic_deleted == 2


class TestScopedPredicate:
    """A predicate limited to one representation only scans that pass."""

    @pytest.mark.asyncio
    async def test_automatic_only_scope_skips_code_pass(self, coordinator):
        store = seeded_store()
        store.add(Representation.CODE, "VIP Full Comp", percentage=100, code="VIP100")

        report = await coordinator.cleanup(store, ConflictPredicate.high_percentage_only())

        assert report.automatic_deleted == 1
        assert report.code_deleted == 0
        assert "delete_code" not in store.calls
        assert "VIP Full Comp" in [r.title for r in store.records]
