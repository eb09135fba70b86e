"""
Discount creation.

The writer turns a NormalizedDiscount into exactly one creation request,
automatic or code, and checks the store's answer in three tiers:

1. transport and protocol failures, raised by the store itself
2. field-level user errors -> StoreValidationError
3. no entity returned despite no errors -> OpaqueFailure

Only ``encoded_value`` crosses the store boundary. Recomputing the value
from ``raw_value`` here would reintroduce the drift the normalizer guards
against, so the request is checked against the normalized encoding before it
is sent.
"""
from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Callable, Optional

from discount_reconciler.errors import OpaqueFailure, PrecisionError, StoreValidationError
from discount_reconciler.models import (
    CreateRequest,
    CreateResult,
    DiscountRecord,
    NormalizedDiscount,
    Representation,
)
from discount_reconciler.normalizer import generate_code
from discount_reconciler.stores.base import DiscountStore

logger = logging.getLogger(__name__)

# Store-reported percentage may come back as a float
VALUE_ECHO_TOLERANCE = Decimal("0.00005")


class DiscountWriter:
    """Creates discounts in the store."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def build_request(self, spec: NormalizedDiscount) -> CreateRequest:
        """Build the representation-specific creation request."""
        code = None
        if spec.representation == Representation.CODE:
            code = generate_code(spec.kind, spec.raw_value, self.clock)

        request = CreateRequest(
            representation=spec.representation,
            title=spec.title,
            kind=spec.kind,
            encoded_value=spec.encoded_value,
            starts_at=spec.starts_at,
            ends_at=spec.ends_at,
            minimum_subtotal=spec.min_order_value if spec.min_order_value > 0 else None,
            code=code,
        )
        if request.encoded_value != spec.encoded_value or request.kind != spec.kind:
            raise PrecisionError(
                "Creation request value diverged from the normalized encoding",
                details={"sent": str(request.encoded_value), "normalized": str(spec.encoded_value)},
            )
        return request

    async def create(self, spec: NormalizedDiscount, store: DiscountStore) -> DiscountRecord:
        """
        Create the discount described by ``spec``.

        Returns:
            The DiscountRecord the store created

        Raises:
            StoreError subclasses: see the module docstring for the tiers
        """
        request = self.build_request(spec)
        logger.info(
            f"Creating {request.representation.value} discount {request.title!r} "
            f"({request.kind.value} {request.encoded_value})",
            extra={"stage": "create", "representation": request.representation.value},
        )

        if request.representation == Representation.AUTOMATIC:
            result = await store.create_automatic_discount(request)
            operation = "Automatic discount creation"
        else:
            result = await store.create_code_discount(request)
            operation = "Code discount creation"

        record = self._check_result(result, operation)
        if record.code is None and request.code:
            record.code = request.code
        self._check_echo(record, request)

        logger.info(f"Discount created: {record.id}", extra={"stage": "create", "discount_id": record.id})
        return record

    @staticmethod
    def _check_result(result: CreateResult, operation: str) -> DiscountRecord:
        if result.user_errors:
            error = StoreValidationError.from_user_errors(
                operation, [e.to_dict() for e in result.user_errors]
            )
            logger.error(f"{operation} rejected by store: {error.message}")
            raise error
        if result.record is None:
            logger.error(f"{operation} returned no discount. Response: {result.raw}")
            raise OpaqueFailure(
                f"{operation} failed - no data returned",
                details={"response": result.raw},
            )
        return result.record

    @staticmethod
    def _check_echo(record: DiscountRecord, request: CreateRequest) -> None:
        if record.value is None:
            return
        if abs(record.value - request.encoded_value) > VALUE_ECHO_TOLERANCE:
            logger.warning(
                f"Store reports value {record.value} for {record.id}, sent {request.encoded_value}",
                extra={"stage": "create", "discount_id": record.id},
            )


async def create(
    spec: NormalizedDiscount,
    store: DiscountStore,
    clock: Optional[Callable[[], float]] = None,
) -> DiscountRecord:
    """Convenience wrapper around DiscountWriter.create."""
    writer = DiscountWriter(clock) if clock else DiscountWriter()
    return await writer.create(spec, store)


def success_message(spec: NormalizedDiscount, record: DiscountRecord) -> str:
    """Operator-facing confirmation for a created discount."""
    if spec.representation == Representation.AUTOMATIC:
        how = "Auto-applies at checkout"
    else:
        how = f"Code: {record.code}"
    return f"{spec.display_value} discount created successfully! {how}"
