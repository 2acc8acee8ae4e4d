# Overview: Input coercion for engine operations and API payloads.

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import InvalidAmount, ValidationError
from .money import to_money

# Maximum single amount: 9,999,999,999.99. Keeps cents inside a signed 64-bit column.
MAX_AMOUNT = Decimal("9999999999.99")

PAYMENT_MODES = ("cash", "check", "bank_transfer", "mobile_payment")


def parse_amount(value: Any, field: str = "amount", *, allow_zero: bool = False) -> Decimal:
    """
    Strict money parsing.

    - Accepts int, Decimal and numeric strings ("12.50"); floats go through str()
    - Rejects bools, NaN/Infinity, scientific notation and more than 2 decimals
    - Never rounds: "10.005" is an error, not 10.01
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"{field} is required and must be a number", details={"field": field})

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidAmount(f"{field} must be a number", details={"field": field})
        if "e" in stripped.lower():
            raise InvalidAmount(f"{field} must be a plain decimal (scientific notation not allowed)", details={"field": field})
        raw = stripped
    elif isinstance(value, (int, Decimal)):
        raw = value
    elif isinstance(value, float):
        raw = repr(value)
        if "e" in raw.lower():
            raise InvalidAmount(f"{field} must be a plain decimal", details={"field": field})
    else:
        raise InvalidAmount(f"{field} must be a number", details={"field": field})

    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise InvalidAmount(f"{field} must be a number", details={"field": field})

    if not amount.is_finite():
        raise InvalidAmount(f"{field} must be finite", details={"field": field})

    if amount.as_tuple().exponent < -2 and amount != amount.quantize(Decimal("0.01")):
        raise InvalidAmount(f"{field} cannot have more than 2 decimal places", details={"field": field})

    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount(
            f"{field} must be {'zero or ' if allow_zero else ''}positive",
            details={"field": field, "value": str(amount)},
        )

    if amount > MAX_AMOUNT:
        raise InvalidAmount(f"{field} exceeds the maximum of {MAX_AMOUNT}", details={"field": field})

    return to_money(amount)


def parse_quantity(value: Any, field: str = "quantity") -> int:
    """Positive integer quantity; floats and decimals are rejected."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if isinstance(value, int):
        qty = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            raise ValidationError(f"{field} must be a positive integer", details={"field": field})
        qty = int(stripped)
    else:
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if qty <= 0:
        raise ValidationError(f"{field} must be positive", details={"field": field, "value": qty})
    return qty


def parse_payment_mode(value: Any) -> str:
    if value not in PAYMENT_MODES:
        raise ValidationError(
            f"Invalid payment mode: {value}. Must be one of {list(PAYMENT_MODES)}",
            details={"field": "mode"},
        )
    return value


def parse_order_items(items: Any) -> list[tuple[int, int]]:
    """
    Normalize [{"product_id": 1, "quantity": 2}, ...] into [(product_id, quantity)].

    Repeated products are merged so stock is checked against the combined quantity.
    """
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("items must be a non-empty list", details={"field": "items"})

    merged: dict[int, int] = {}
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object", details={"field": "items"})
        product_id = item.get("product_id")
        if not isinstance(product_id, int) or isinstance(product_id, bool) or product_id <= 0:
            raise ValidationError(f"items[{index}].product_id must be a positive integer", details={"field": "items"})
        quantity = parse_quantity(item.get("quantity"), field=f"items[{index}].quantity")
        merged[product_id] = merged.get(product_id, 0) + quantity

    return list(merged.items())


def require_fields(data: dict | None, *fields: str) -> dict:
    """Route helper: ensure a JSON body carries the given keys."""
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required", details={"missing": missing})
    return data


def parse_signed_amount(value: Any, field: str = "amount") -> Decimal:
    """Non-zero amount that may be negative (corrections, write-offs)."""
    if isinstance(value, str) and value.strip().startswith("-"):
        return -parse_amount(value.strip()[1:], field)
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool) and value < 0:
        return -parse_amount(-value, field)
    return parse_amount(value, field)
