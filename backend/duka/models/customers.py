from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from duka.time_utils import to_utc_z


class Customer(db.Model):
    """
    Loyalty customer, identified by a normalized phone number.

    Created lazily the first time a sale references an unseen phone.
    The purchase/spend columns are denormalized aggregates updated inside
    the same unit of work as the sale that changes them.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("phone_number", name="uq_customers_phone_number"),
        db.Index("ix_customers_total_spent", "total_spent_cents"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    phone_number = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=True)

    total_purchases_count = db.Column(db.Integer, nullable=False, default=0)
    mpesa_purchases_count = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    total_mpesa_spent_cents = db.Column(db.Integer, nullable=False, default=0)

    is_eligible_for_discount = db.Column(db.Boolean, nullable=False, default=False)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0"))

    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def effective_discount_percentage(self) -> Decimal:
        if not self.is_eligible_for_discount:
            return Decimal("0")
        return Decimal(self.discount_percentage or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phone_number": self.phone_number,
            "name": self.name,
            "total_purchases_count": self.total_purchases_count,
            "mpesa_purchases_count": self.mpesa_purchases_count,
            "total_spent_cents": self.total_spent_cents,
            "total_mpesa_spent_cents": self.total_mpesa_spent_cents,
            "is_eligible_for_discount": self.is_eligible_for_discount,
            "discount_percentage": str(self.discount_percentage if self.discount_percentage is not None else Decimal("0")),
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CustomerDiscount(db.Model):
    """
    Proof that a loyalty discount was applied to a sale.

    Records the amount and percentage used at the time, so a later change to
    the customer's percentage never rewrites history.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "customer_discounts"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_customer_discounts_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("discounts", lazy=True))
    sale = db.relationship("Sale", backref=db.backref("customer_discount", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "discount_cents": self.discount_cents,
            "discount_percentage": str(self.discount_percentage),
            "applied_at": to_utc_z(self.applied_at),
        }
