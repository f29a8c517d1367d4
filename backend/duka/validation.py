from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class DukaError(Exception):
    """Base for every error the sale engine surfaces to callers."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(DukaError, ValueError):
    """400-level input problem."""

    status_code = 400


class NotFoundError(DukaError, LookupError):
    """Referenced product, customer, sale or receipt does not exist."""

    status_code = 404


class InsufficientStockError(DukaError):
    """Requested quantity exceeds what is on hand."""

    status_code = 409

    def __init__(self, product, requested: int, available: int):
        description = getattr(product, "description", None) or str(product)
        super().__init__(
            f"Insufficient stock for {description}",
            details={
                "product_id": getattr(product, "id", None),
                "item_code": getattr(product, "item_code", None),
                "requested_quantity": requested,
                "available_quantity": available,
            },
        )
        self.requested = requested
        self.available = available


class ConflictError(DukaError, ValueError):
    """409-level uniqueness or business rule conflict (e.g., duplicate item code)."""

    status_code = 409


class PersistenceError(DukaError):
    """Unexpected store failure during commit; the unit of work was rolled back."""

    status_code = 500


def parse_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for JSON payloads.

    Rejects bools, floats with a fractional part, decimals in strings and
    scientific notation.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal")
        result = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return result


def parse_amount(value: Any, field: str) -> Decimal:
    """Parse a major-unit money amount (e.g. 12.50) into a finite Decimal."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        raise ValidationError(f"{field} must be a finite number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return amount


def amount_to_cents(value: Any, field: str) -> int:
    """Major units -> integer cents, rounding half-up."""
    amount = parse_amount(value, field)
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_price_cents(value: Any, field: str) -> int:
    cents = parse_int(value, field, minimum=0)
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def parse_percentage(value: Any, field: str = "discount_percentage") -> Decimal:
    pct = parse_amount(value, field)
    if pct < 0 or pct > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def cents_to_amount(cents: int) -> str:
    """Integer cents -> major-unit string, e.g. 56000 -> "560.00"."""
    return str((Decimal(cents) / 100).quantize(Decimal("0.01")))
