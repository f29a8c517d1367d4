from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z

PAYMENT_CASH = "cash"
PAYMENT_MPESA = "mpesa"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_MPESA)


class Sale(db.Model):
    """
    Sale header. Created once, atomically, at checkout and never updated.

    All amounts are in cents. The stored amounts satisfy
    subtotal - customer_discount - manual_discount == total exactly.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_sales_receipt_number"),
        db.CheckConstraint("payment_method IN ('cash', 'mpesa')", name="ck_sales_payment_method"),
        db.CheckConstraint("total_cents >= 0", name="ck_sales_total_non_negative"),
        db.Index("ix_sales_created_at", "created_at"),
        db.Index("ix_sales_payment_created", "payment_method", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_number = db.Column(db.String(64), nullable=False)

    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    payment_method = db.Column(db.String(16), nullable=False, default=PAYMENT_CASH)
    payment_reference = db.Column(db.String(128), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    customer_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    manual_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)
    items_count = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    seller = db.relationship("User")
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "seller_id": self.seller_id,
            "seller_name": self.seller.full_name if self.seller else None,
            "customer_id": self.customer_id,
            "customer_phone": self.customer.phone_number if self.customer else None,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "subtotal_cents": self.subtotal_cents,
            "customer_discount_cents": self.customer_discount_cents,
            "manual_discount_cents": self.manual_discount_cents,
            "total_cents": self.total_cents,
            "profit_cents": self.profit_cents,
            "items_count": self.items_count,
            "created_at": to_utc_z(self.created_at),
        }


class SaleItem(db.Model):
    """
    Line item on a sale.

    item_code, description and buying price are copied at sale time so the
    line stays correct even if the product is edited later.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint("line_total_cents = unit_price_cents * quantity", name="ck_sale_items_line_total"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    item_code = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    buying_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)
    discount_applied = db.Column(db.Boolean, nullable=False, default=False)

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "item_code": self.item_code,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "profit_cents": self.profit_cents,
            "discount_applied": self.discount_applied,
        }


class Receipt(db.Model):
    """
    Immutable snapshot of a completed sale, keyed by receipt number.

    Written after the sale commits; read back verbatim to reprint.
    """
    __tablename__ = "receipts"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_receipts_receipt_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_number = db.Column(db.String(64), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    receipt_data = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "sale_id": self.sale_id,
            "receipt_data": self.receipt_data,
            "created_at": to_utc_z(self.created_at),
        }
