"""
Discount spec normalization.

Turns raw user input into a NormalizedDiscount whose store encoding is
exact. The encoded value is re-derived back to user units and compared with
the input so floating-point drift is caught here instead of producing a
wrong discount in the store.
"""
from __future__ import annotations

import logging
import math
import time
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional

from discount_reconciler.errors import PrecisionError, ValidationError
from discount_reconciler.models import (
    AMOUNT_TOLERANCE,
    DiscountKind,
    DiscountSpec,
    NormalizedDiscount,
    OrderType,
    Representation,
    to_decimal,
)

logger = logging.getLogger(__name__)

PERCENTAGE_QUANTUM = Decimal("0.0001")
AMOUNT_QUANTUM = Decimal("0.01")
HUNDRED = Decimal("100")

TITLE_SUFFIXES = {
    OrderType.COD: " (COD Only)",
    OrderType.PREPAID: " (Prepaid Only)",
}


def encode_value(kind: DiscountKind, raw_value: Decimal) -> Decimal:
    """Encode a user-facing value the way the store expects it."""
    if kind == DiscountKind.PERCENTAGE:
        return (raw_value / HUNDRED).quantize(PERCENTAGE_QUANTUM, rounding=ROUND_HALF_UP)
    return raw_value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def decode_value(kind: DiscountKind, encoded_value: Decimal) -> Decimal:
    """Re-derive the user-facing value from a store encoding."""
    if kind == DiscountKind.PERCENTAGE:
        return (encoded_value * HUNDRED).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    return encoded_value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def generate_code(
    kind: DiscountKind,
    raw_value: Decimal,
    clock: Callable[[], float] = time.time,
) -> str:
    """Generate a discount code like SAVE10 + four digits of the ms clock."""
    prefix = "SAVE" if kind == DiscountKind.PERCENTAGE else "OFF"
    suffix = str(int(clock() * 1000))[-4:].rjust(4, "0")
    return f"{prefix}{math.floor(raw_value)}{suffix}"


def normalize(raw: DiscountSpec, today: Optional[date] = None) -> NormalizedDiscount:
    """
    Validate a DiscountSpec and compute its exact store encoding.

    Raises:
        ValidationError: if any field is invalid
        PrecisionError: if the encoded value does not round-trip
    """
    name = (raw.name or "").strip()
    if not name:
        raise ValidationError("Discount name is required", field="name")

    kind = _coerce_enum(DiscountKind, raw.kind, "type")
    order_type = _coerce_enum(OrderType, raw.order_type, "orderType")

    raw_value = _decimal_field(raw.raw_value, "value")
    if raw_value <= 0:
        raise ValidationError("Discount value must be greater than 0", field="value")
    if kind == DiscountKind.PERCENTAGE and raw_value > HUNDRED:
        raise ValidationError("Percentage discount cannot exceed 100", field="value")

    min_order_value = _decimal_field(
        raw.min_order_value if raw.min_order_value is not None else 0,
        "minOrderValue",
    )
    if min_order_value < 0:
        raise ValidationError("Minimum order value cannot be negative", field="minOrderValue")

    max_discount = None
    if raw.max_discount is not None:
        max_discount = _decimal_field(raw.max_discount, "maxDiscount")
        if max_discount <= 0:
            raise ValidationError("Maximum discount must be greater than 0", field="maxDiscount")

    today = today or date.today()
    start_date = _date_field(raw.start_date, "startDate") or today
    end_date = _date_field(raw.end_date, "endDate") or _one_year_after(start_date)
    if start_date > end_date:
        raise ValidationError("Start date must be on or before end date", field="endDate")

    encoded_value = encode_value(kind, raw_value)
    _check_encoding(kind, raw_value, encoded_value)

    representation = Representation.AUTOMATIC if raw.auto_apply else Representation.CODE
    normalized = NormalizedDiscount(
        name=name,
        title=name + TITLE_SUFFIXES.get(order_type, ""),
        kind=kind,
        raw_value=raw_value,
        encoded_value=encoded_value,
        min_order_value=min_order_value,
        max_discount=max_discount,
        start_date=start_date,
        end_date=end_date,
        order_type=order_type,
        auto_apply=bool(raw.auto_apply),
        representation=representation,
    )
    logger.debug(
        f"Normalized discount {normalized.title!r}: {kind.value} "
        f"{raw_value} -> {encoded_value} ({representation.value})"
    )
    return normalized


def _check_encoding(kind: DiscountKind, raw_value: Decimal, encoded_value: Decimal) -> None:
    if kind == DiscountKind.PERCENTAGE:
        if not (0 < encoded_value <= 1):
            raise PrecisionError(
                f"Percentage {raw_value} encodes to {encoded_value}, outside (0, 1]",
                details={"raw_value": str(raw_value), "encoded_value": str(encoded_value)},
            )
    elif encoded_value <= 0:
        raise PrecisionError(
            f"Amount {raw_value} rounds to {encoded_value}",
            details={"raw_value": str(raw_value), "encoded_value": str(encoded_value)},
        )

    rederived = decode_value(kind, encoded_value)
    if abs(rederived - raw_value) > AMOUNT_TOLERANCE:
        raise PrecisionError(
            f"Encoded value {encoded_value} re-derives to {rederived}, expected {raw_value}",
            details={
                "raw_value": str(raw_value),
                "encoded_value": str(encoded_value),
                "rederived_value": str(rederived),
            },
        )


def _coerce_enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{field_name} must be one of: {allowed}", field=field_name) from None


def _decimal_field(value: Any, field_name: str) -> Decimal:
    try:
        return to_decimal(value, field_name)
    except ValueError as exc:
        raise ValidationError(str(exc), field=field_name) from None


def _date_field(value: Any, field_name: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"{field_name} must be a YYYY-MM-DD date", field=field_name) from None


def _one_year_after(start: date) -> date:
    try:
        return start.replace(year=start.year + 1)
    except ValueError:
        # Feb 29
        return start + timedelta(days=365)
