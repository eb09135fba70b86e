"""
In-memory discount store for development and testing.

Note: This store is not a cache of a real store. It simulates the external
store's behavior, including deletes that stay visible to list calls for a
configurable number of reads.
"""
from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Set

from discount_reconciler.errors import OpaqueFailure, StoreValidationError, TransportError
from discount_reconciler.models import (
    CreateRequest,
    CreateResult,
    DiscountKind,
    DiscountRecord,
    DiscountStatus,
    Representation,
    ShopInfo,
    UserError,
)
from discount_reconciler.stores.base import DiscountStore


class InMemoryDiscountStore(DiscountStore):
    """In-memory discount store with simulated propagation delay."""

    def __init__(
        self,
        shop: Optional[ShopInfo] = None,
        delete_visibility_reads: int = 0,
        today: Optional[date] = None,
    ):
        self.shop = shop or ShopInfo(name="Development Store", currency_code="USD", plan_name="Development")
        self.delete_visibility_reads = delete_visibility_reads
        self.today = today
        self._records: Dict[str, DiscountRecord] = {}
        # Deleted records still visible to reads: id -> remaining list calls
        self._ghosts: Dict[str, List] = {}
        self._ids = itertools.count(1)

        # Failure injection
        self.fail_deletes: Set[str] = set()
        self.fail_lists: Set[Representation] = set()
        self.next_create_user_errors: List[UserError] = []
        self.drop_next_created_entity = False

        self.calls: List[str] = []
        self.create_requests: List[CreateRequest] = []

    def add(
        self,
        representation: Representation,
        title: str,
        percentage: Optional[Decimal] = None,
        amount: Optional[Decimal] = None,
        status: DiscountStatus = DiscountStatus.ACTIVE,
        code: Optional[str] = None,
    ) -> DiscountRecord:
        """Seed a discount directly, as if created outside this system."""
        value_kind = None
        value = None
        if percentage is not None:
            value_kind, value = DiscountKind.PERCENTAGE, Decimal(str(percentage)) / 100
        elif amount is not None:
            value_kind, value = DiscountKind.FIXED, Decimal(str(amount))
        record = DiscountRecord(
            id=self._new_id(representation),
            representation=representation,
            title=title,
            status=status,
            code=code if representation == Representation.CODE else None,
            created_at=datetime.now(timezone.utc),
            value_kind=value_kind,
            value=value,
            currency_code=self.shop.currency_code if value_kind == DiscountKind.FIXED else None,
        )
        self._records[record.id] = record
        return record

    def _new_id(self, representation: Representation) -> str:
        kind = "DiscountAutomaticNode" if representation == Representation.AUTOMATIC else "DiscountCodeNode"
        return f"gid://shopify/{kind}/{next(self._ids)}"

    def _status_for(self, request: CreateRequest) -> DiscountStatus:
        today = (self.today or date.today()).isoformat()
        if request.starts_at[:10] > today:
            return DiscountStatus.PENDING
        if request.ends_at[:10] < today:
            return DiscountStatus.EXPIRED
        return DiscountStatus.ACTIVE

    def _visible(self, representation: Representation) -> List[DiscountRecord]:
        visible = [r for r in self._records.values() if r.representation == representation]
        for discount_id, ghost in list(self._ghosts.items()):
            record, remaining = ghost
            if record.representation != representation:
                continue
            visible.append(record)
            if remaining <= 1:
                del self._ghosts[discount_id]
            else:
                ghost[1] = remaining - 1
        return visible

    async def list_automatic_discounts(self) -> List[DiscountRecord]:
        self.calls.append("list_automatic")
        if Representation.AUTOMATIC in self.fail_lists:
            raise TransportError("Simulated list failure")
        return self._visible(Representation.AUTOMATIC)

    async def list_code_discounts(self) -> List[DiscountRecord]:
        self.calls.append("list_code")
        if Representation.CODE in self.fail_lists:
            raise TransportError("Simulated list failure")
        return self._visible(Representation.CODE)

    async def _create(self, request: CreateRequest) -> CreateResult:
        self.create_requests.append(request)
        if self.next_create_user_errors:
            errors, self.next_create_user_errors = self.next_create_user_errors, []
            return CreateResult(user_errors=errors)
        if self.drop_next_created_entity:
            self.drop_next_created_entity = False
            return CreateResult()
        record = DiscountRecord(
            id=self._new_id(request.representation),
            representation=request.representation,
            title=request.title,
            status=self._status_for(request),
            code=request.code,
            created_at=datetime.now(timezone.utc),
            value_kind=request.kind,
            value=request.encoded_value,
            currency_code=self.shop.currency_code if request.kind == DiscountKind.FIXED else None,
            starts_at=request.starts_at,
            ends_at=request.ends_at,
            minimum_subtotal=request.minimum_subtotal,
        )
        self._records[record.id] = record
        return CreateResult(record=replace(record))

    async def create_automatic_discount(self, request: CreateRequest) -> CreateResult:
        self.calls.append("create_automatic")
        return await self._create(request)

    async def create_code_discount(self, request: CreateRequest) -> CreateResult:
        self.calls.append("create_code")
        if not request.code:
            raise ValueError("Code discounts require a code")
        return await self._create(request)

    async def _delete(self, discount_id: str, representation: Representation) -> str:
        if discount_id in self.fail_deletes:
            raise TransportError(f"Simulated delete failure for {discount_id}")
        record = self._records.get(discount_id)
        if record is None or record.representation != representation:
            raise StoreValidationError.from_user_errors(
                "Discount deletion",
                [{"field": ["id"], "message": "Discount does not exist", "code": "INVALID"}],
            )
        del self._records[discount_id]
        if self.delete_visibility_reads > 0:
            self._ghosts[discount_id] = [record, self.delete_visibility_reads]
        return discount_id

    async def delete_automatic_discount(self, discount_id: str) -> str:
        self.calls.append("delete_automatic")
        return await self._delete(discount_id, Representation.AUTOMATIC)

    async def delete_code_discount(self, discount_id: str) -> str:
        self.calls.append("delete_code")
        return await self._delete(discount_id, Representation.CODE)

    async def read_shop_info(self) -> ShopInfo:
        self.calls.append("read_shop_info")
        if self.shop is None:
            raise OpaqueFailure("No shop configured")
        return self.shop

    @property
    def records(self) -> List[DiscountRecord]:
        """Authoritative records, ignoring propagation delay."""
        return list(self._records.values())
