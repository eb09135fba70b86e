"""Tests for discount creation and its three failure tiers."""
from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

import pytest

from discount_reconciler.errors import OpaqueFailure, StoreValidationError, TransportError
from discount_reconciler.models import (
    DiscountKind,
    DiscountSpec,
    DiscountStatus,
    Representation,
    UserError,
)
from discount_reconciler.normalizer import normalize
from discount_reconciler.writer import DiscountWriter, create, success_message

TODAY = date(2026, 10, 17)


def normalized(**overrides):
    values = dict(
        name="Spring Sale",
        kind=DiscountKind.PERCENTAGE,
        raw_value=10,
        start_date=TODAY,
        end_date=date(2027, 10, 17),
        auto_apply=True,
    )
    values.update(overrides)
    return normalize(DiscountSpec(**values))


class TestBuildRequest:
    def test_automatic_request(self):
        request = DiscountWriter().build_request(normalized())
        assert request.representation == Representation.AUTOMATIC
        assert request.encoded_value == Decimal("0.1000")
        assert request.code is None
        assert request.minimum_subtotal is None
        assert request.starts_at == "2026-10-17T00:00:00Z"
        assert request.ends_at == "2027-10-17T23:59:59Z"

    def test_code_request_generates_code(self):
        writer = DiscountWriter(clock=lambda: 1700000004.5)
        request = writer.build_request(normalized(auto_apply=False, raw_value="12.5"))
        assert request.code == "SAVE124500"

    def test_minimum_subtotal_only_when_positive(self):
        request = DiscountWriter().build_request(normalized(min_order_value="25"))
        assert request.minimum_subtotal == Decimal("25")


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_automatic(self, store):
        record = await DiscountWriter().create(normalized(), store)

        assert store.calls == ["create_automatic"]
        assert record.id.startswith("gid://shopify/DiscountAutomaticNode/")
        assert record.status == DiscountStatus.ACTIVE
        assert store.create_requests[0].encoded_value == Decimal("0.1000")

    @pytest.mark.asyncio
    async def test_creates_code_with_pattern(self, store):
        record = await create(normalized(auto_apply=False, kind="fixed", raw_value=5), store)

        assert store.calls == ["create_code"]
        assert re.fullmatch(r"OFF5\d{4}", record.code)
        assert store.create_requests[0].encoded_value == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_future_start_is_pending(self, store):
        record = await create(normalized(start_date=date(2026, 11, 1)), store)
        assert record.status == DiscountStatus.PENDING


class TestFailureTiers:
    """Transport errors propagate, user errors and missing entities are classified."""

    @pytest.mark.asyncio
    async def test_user_errors(self, store):
        store.next_create_user_errors = [
            UserError(message="Title must be unique", field=["automaticBasicDiscount", "title"], code="TAKEN"),
        ]
        with pytest.raises(StoreValidationError) as exc:
            await DiscountWriter().create(normalized(), store)

        assert "Title must be unique (Field: automaticBasicDiscount.title, Code: TAKEN)" in exc.value.message
        assert exc.value.user_errors[0]["code"] == "TAKEN"
        assert store.records == []

    @pytest.mark.asyncio
    async def test_missing_entity_is_opaque_failure(self, store):
        store.drop_next_created_entity = True
        with pytest.raises(OpaqueFailure) as exc:
            await DiscountWriter().create(normalized(), store)
        assert "no data returned" in exc.value.message

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, store):
        async def broken(request):
            raise TransportError("connection reset")

        store.create_automatic_discount = broken
        with pytest.raises(TransportError):
            await DiscountWriter().create(normalized(), store)


class TestSuccessMessage:
    @pytest.mark.asyncio
    async def test_automatic_message(self, store):
        spec = normalized()
        record = await create(spec, store)
        assert success_message(spec, record) == "10% discount created successfully! Auto-applies at checkout"

    @pytest.mark.asyncio
    async def test_code_message(self, store):
        spec = normalized(auto_apply=False, kind="fixed", raw_value="7.5")
        record = await DiscountWriter(clock=lambda: 1700000000.0).create(spec, store)
        assert success_message(spec, record) == "$7.50 discount created successfully! Code: OFF70000"
