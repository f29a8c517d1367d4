# Overview: Pure pricing rules for a cart line; no database access.

"""
Tiered line pricing.

A line gets the product's discount price for every unit once its quantity
reaches the discount threshold, otherwise the regular price for every unit.
There is no proration across units.

All amounts are integer cents, so line totals are exact.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_DISCOUNT_THRESHOLD = 7


@dataclass(frozen=True)
class LinePrice:
    unit_price_cents: int
    line_total_cents: int
    profit_cents: int
    discount_applied: bool


def effective_threshold(threshold: int | None, default: int = DEFAULT_DISCOUNT_THRESHOLD) -> int:
    if threshold is None or threshold <= 0:
        return default
    return threshold


def price_line(
    *,
    regular_price_cents: int,
    discount_price_cents: int,
    discount_threshold: int | None,
    buying_price_cents: int,
    quantity: int,
    default_threshold: int = DEFAULT_DISCOUNT_THRESHOLD,
) -> LinePrice:
    """Price one line. Deterministic: same inputs, same LinePrice."""
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    discount_applied = quantity >= effective_threshold(discount_threshold, default_threshold)
    unit_price = discount_price_cents if discount_applied else regular_price_cents

    return LinePrice(
        unit_price_cents=unit_price,
        line_total_cents=unit_price * quantity,
        profit_cents=(unit_price - buying_price_cents) * quantity,
        discount_applied=discount_applied,
    )


def price_product_line(product, quantity: int, *, default_threshold: int = DEFAULT_DISCOUNT_THRESHOLD) -> LinePrice:
    """Price a line straight from a Product row."""
    return price_line(
        regular_price_cents=product.regular_price_cents,
        discount_price_cents=product.discount_price_cents,
        discount_threshold=product.discount_threshold,
        buying_price_cents=product.buying_price_cents,
        quantity=quantity,
        default_threshold=default_threshold,
    )
