"""
Tests for the checkout reconciliation monitor.

Tests cover:
- The one-shot wait for automatic discounts
- Applied, warning and error outcomes
- Observe-only behavior on bad input
"""
from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from discount_reconciler.models import CheckoutSnapshot, DiscountAllocation
from discount_reconciler.monitor import MonitorState, ReconciliationMonitor


def snapshot(subtotal="100.00", total="90.00", allocations=(), codes=(), currency="USD"):
    return CheckoutSnapshot(
        subtotal_amount=Decimal(subtotal),
        total_amount=Decimal(total),
        currency_code=currency,
        allocations=tuple(allocations),
        discount_codes=tuple(codes),
    )


def ten_percent(target_type="automatic"):
    return DiscountAllocation("Spring 10", Decimal("10.00"), target_type)


class TestAutomaticWait:
    """The first empty snapshot waits once for automatic discounts."""

    @pytest.mark.asyncio
    async def test_wait_then_no_discount(self):
        monitor = ReconciliationMonitor(auto_wait_seconds=0.01)
        view = monitor.observe(snapshot(total="100.00"))

        assert view.state == MonitorState.WAITING_AUTO
        assert view.banner.title == "Checking for automatic discounts..."

        await asyncio.sleep(0.05)
        assert monitor.state == MonitorState.NO_DISCOUNT
        assert monitor.history == [
            MonitorState.CHECKING,
            MonitorState.WAITING_AUTO,
            MonitorState.NO_DISCOUNT,
        ]

    @pytest.mark.asyncio
    async def test_waiting_entered_at_most_once(self):
        monitor = ReconciliationMonitor(auto_wait_seconds=0.01)
        monitor.observe(snapshot(total="100.00"))
        await asyncio.sleep(0.05)

        view = monitor.observe(snapshot(total="100.00"))
        assert view.state == MonitorState.NO_DISCOUNT
        assert monitor.history.count(MonitorState.WAITING_AUTO) == 1

    @pytest.mark.asyncio
    async def test_allocation_during_wait_cancels_timer(self):
        monitor = ReconciliationMonitor(auto_wait_seconds=0.01)
        monitor.observe(snapshot(total="100.00"))
        view = monitor.observe(snapshot(allocations=[ten_percent()]))
        await asyncio.sleep(0.05)

        assert view.state == MonitorState.APPLIED
        assert monitor.state == MonitorState.APPLIED

    @pytest.mark.asyncio
    async def test_repeat_empty_snapshot_keeps_waiting(self):
        monitor = ReconciliationMonitor(auto_wait_seconds=10)
        monitor.observe(snapshot(total="100.00"))
        view = monitor.observe(snapshot(total="100.00"))

        assert view.state == MonitorState.WAITING_AUTO
        monitor.close()

    def test_no_event_loop_skips_wait(self):
        monitor = ReconciliationMonitor()
        view = monitor.observe(snapshot(total="100.00"))
        assert view.state == MonitorState.NO_DISCOUNT

    def test_empty_cart_stays_checking(self):
        monitor = ReconciliationMonitor()
        assert monitor.observe(snapshot(subtotal="0", total="0")).state == MonitorState.CHECKING


class TestReconcile:
    def test_applied_automatic(self):
        monitor = ReconciliationMonitor()
        view = monitor.observe(snapshot(allocations=[ten_percent()]))

        assert view.state == MonitorState.APPLIED
        assert view.banner.status == "success"
        assert view.banner.title == "Automatic Discount Applied!"
        assert view.banner.total_savings == Decimal("10.00")
        assert view.banner.lines[0].auto_applied
        assert view.verification.delta == Decimal("0")

    def test_applied_code(self):
        monitor = ReconciliationMonitor()
        view = monitor.observe(snapshot(allocations=[ten_percent("code")], codes=["SAVE10"]))
        assert view.banner.title == "Discount Applied!"
        assert not view.banner.lines[0].auto_applied

    def test_shipping_and_tax(self):
        monitor = ReconciliationMonitor()
        view = monitor.observe(snapshot(total="95.00", allocations=[ten_percent()]))
        assert view.state == MonitorState.APPLIED
        assert view.banner.message == "Total includes USD 5.00 shipping and taxes."

    def test_small_shortfall_is_warning(self):
        monitor = ReconciliationMonitor()
        view = monitor.observe(snapshot(total="89.50", allocations=[ten_percent()]))
        assert view.state == MonitorState.CALCULATION_WARNING
        assert view.banner.status == "warning"
        assert view.banner.title == "Discount calculation issue detected"

    def test_large_shortfall_is_error(self):
        monitor = ReconciliationMonitor()
        view = monitor.observe(snapshot(total="85.00", allocations=[ten_percent()]))
        assert view.state == MonitorState.CALCULATION_ERROR
        assert view.banner.status == "critical"
        assert view.verification.delta == Decimal("-5.00")

    def test_payload_mapping(self):
        monitor = ReconciliationMonitor()
        view = monitor.observe({
            "cost": {
                "subtotalAmount": {"amount": "40.0"},
                "totalAmount": {"amount": "36.0", "currencyCode": "CAD"},
            },
            "discountAllocations": [{"title": "Ten", "discountedAmount": {"amount": "4.0"}}],
        })
        assert view.state == MonitorState.APPLIED
        assert view.banner.currency_code == "CAD"


class TestObserveOnly:
    """The monitor never raises into the checkout."""

    def test_bad_payload_keeps_previous_view(self):
        monitor = ReconciliationMonitor()
        monitor.observe(snapshot(allocations=[ten_percent()]))
        view = monitor.observe({"cost": {"subtotalAmount": {"amount": "abc"}}})
        assert view.state == MonitorState.APPLIED

    def test_render_callback_failure_swallowed(self):
        def explode(view):
            raise RuntimeError("render failed")

        monitor = ReconciliationMonitor(on_render=explode)
        view = monitor.observe(snapshot(allocations=[ten_percent()]))
        assert view.state == MonitorState.APPLIED

    def test_render_callback_receives_views(self):
        seen = []
        monitor = ReconciliationMonitor(on_render=seen.append)
        monitor.observe(snapshot(allocations=[ten_percent()]))
        monitor.observe(snapshot(total="80.00", allocations=[ten_percent()]))
        assert [v.state for v in seen] == [MonitorState.APPLIED, MonitorState.CALCULATION_ERROR]
