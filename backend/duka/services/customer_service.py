# Overview: Loyalty customer resolution, aggregates and discount eligibility.

"""
Customer Resolver

Customers are keyed by a normalized phone number. Normalization strips all
whitespace and replaces a single leading "0" with the country code, so
"0712 345 678" and "254712345678" are the same customer.

Phone is optional for cash sales and mandatory for mpesa sales; that rule is
enforced by the checkout, not here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, Sale
from ..models.sales import PAYMENT_MPESA
from ..validation import NotFoundError, ValidationError, parse_percentage
from .concurrency import run_with_retry, unit_of_work
from duka.time_utils import utcnow

DEFAULT_COUNTRY_CODE = "254"

_WHITESPACE = re.compile(r"\s+")


@dataclass
class ResolvedCustomer:
    customer: Customer
    discount_percentage: Decimal
    created: bool = False

    @property
    def is_discount_eligible(self) -> bool:
        return self.discount_percentage > 0


def _country_code() -> str:
    try:
        return current_app.config.get("PHONE_COUNTRY_CODE") or DEFAULT_COUNTRY_CODE
    except RuntimeError:
        # Outside an app context (pure use)
        return DEFAULT_COUNTRY_CODE


def normalize_phone(phone: str | None, country_code: str | None = None) -> str | None:
    """
    Strip whitespace; a leading "0" becomes the country code.

    Idempotent: normalize_phone(normalize_phone(x)) == normalize_phone(x).
    Returns None for None/blank input.
    """
    if phone is None:
        return None
    clean = _WHITESPACE.sub("", str(phone))
    if not clean:
        return None
    if clean.startswith("0"):
        clean = (country_code or _country_code()) + clean[1:]
    return clean


def find_customer_by_phone(phone: str | None) -> Customer | None:
    normalized = normalize_phone(phone)
    if normalized is None:
        return None
    return db.session.query(Customer).filter_by(phone_number=normalized).first()


def resolve_customer(phone: str | None) -> ResolvedCustomer | None:
    """
    Find or lazily create the customer for a phone.

    A newly created customer has zeroed counters and no discount.
    Caller owns the transaction; the insert is flushed, not committed.
    """
    normalized = normalize_phone(phone)
    if normalized is None:
        return None

    customer = db.session.query(Customer).filter_by(phone_number=normalized).first()
    if customer is not None:
        return ResolvedCustomer(customer=customer, discount_percentage=customer.effective_discount_percentage)

    customer = Customer(
        phone_number=normalized,
        total_purchases_count=0,
        mpesa_purchases_count=0,
        total_spent_cents=0,
        total_mpesa_spent_cents=0,
        is_eligible_for_discount=False,
        discount_percentage=Decimal("0"),
    )
    try:
        with db.session.begin_nested():
            db.session.add(customer)
    except IntegrityError:
        # Another seller created the same phone first
        customer = db.session.query(Customer).filter_by(phone_number=normalized).one()
        return ResolvedCustomer(customer=customer, discount_percentage=customer.effective_discount_percentage)

    return ResolvedCustomer(customer=customer, discount_percentage=Decimal("0"), created=True)


def record_purchase(customer: Customer, *, payment_method: str, total_cents: int) -> None:
    """
    Fold one completed sale into the customer's running aggregates.

    Uses SQL-side increments so concurrent sales for the same customer
    cannot lose an update. Caller owns the transaction.
    """
    is_mpesa = payment_method == PAYMENT_MPESA
    db.session.query(Customer).filter(Customer.id == customer.id).update(
        {
            Customer.total_purchases_count: Customer.total_purchases_count + 1,
            Customer.total_spent_cents: Customer.total_spent_cents + total_cents,
            Customer.mpesa_purchases_count: Customer.mpesa_purchases_count + (1 if is_mpesa else 0),
            Customer.total_mpesa_spent_cents: Customer.total_mpesa_spent_cents + (total_cents if is_mpesa else 0),
            Customer.last_purchase_at: utcnow(),
        },
        synchronize_session=False,
    )
    db.session.expire(customer)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def list_customers(*, min_mpesa_purchases: int | None = None) -> list[Customer]:
    q = db.session.query(Customer)
    if min_mpesa_purchases:
        q = q.filter(Customer.mpesa_purchases_count >= min_mpesa_purchases)
    return q.order_by(Customer.total_spent_cents.desc(), Customer.id.asc()).all()


def set_discount(customer_id: int, *, is_eligible: bool, discount_percentage) -> Customer:
    """
    Update a customer's loyalty eligibility.

    Past CustomerDiscount rows keep the percentage they were applied at.
    """
    if not isinstance(is_eligible, bool):
        raise ValidationError("is_eligible must be a boolean")
    pct = parse_percentage(discount_percentage if discount_percentage is not None else 0)

    def _op():
        with unit_of_work():
            customer = get_customer(customer_id)
            customer.is_eligible_for_discount = is_eligible
            customer.discount_percentage = pct
        return customer

    return run_with_retry(_op)


def list_purchases(customer_id: int) -> list[Sale]:
    get_customer(customer_id)
    return (
        db.session.query(Sale)
        .filter(Sale.customer_id == customer_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )
