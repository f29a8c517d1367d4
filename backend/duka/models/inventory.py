from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with its authoritative on-hand quantity.

    STOCK DESIGN DECISION:
    Product.quantity is the single hot, contended counter. It is only ever
    decremented through a guarded UPDATE (see stock_service.decrement_stock),
    and the CHECK constraint is the last line that keeps it non-negative.

    Products referenced by a sale line are never deleted; SaleItem keeps a
    code/description snapshot so receipts stay stable after edits.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("item_code", name="uq_products_item_code"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        db.Index("ix_products_description", "description"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    item_code = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents (frontend may only format for display)
    buying_price_cents = db.Column(db.Integer, nullable=False, default=0)
    regular_price_cents = db.Column(db.Integer, nullable=False)
    discount_price_cents = db.Column(db.Integer, nullable=False)

    # Tiered price applies once a line reaches this quantity
    discount_threshold = db.Column(db.Integer, nullable=False, default=7)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def profit_per_item_cents(self) -> int:
        return self.regular_price_cents - self.buying_price_cents

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.low_stock_threshold

    def __repr__(self) -> str:
        return f"<Product id={self.id} item_code={self.item_code!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_code": self.item_code,
            "description": self.description,
            "quantity": self.quantity,
            "buying_price_cents": self.buying_price_cents,
            "regular_price_cents": self.regular_price_cents,
            "discount_price_cents": self.discount_price_cents,
            "discount_threshold": self.discount_threshold,
            "low_stock_threshold": self.low_stock_threshold,
            "profit_per_item_cents": self.profit_per_item_cents,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryAuditEntry(db.Model):
    """
    Append-only ledger of quantity-affecting events.

    CHANGE TYPES:
    - SALE: Stock sold at checkout (negative delta)
    - RESTOCK: Stock received, including initial stock on product creation
    - EDIT: Manual quantity correction
    - EXCEL_SYNC: Quantity overwritten by an external spreadsheet sync
    - DELETE: Product removed (delta is minus the last on-hand quantity)
    - NOTIFICATION: Zero-delta marker recording that a low-stock alert was sent

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "inventory_audit"
    __table_args__ = (
        db.Index("ix_inventory_audit_item_code_created", "item_code", "created_at"),
        db.Index("ix_inventory_audit_type_created", "change_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Nullable: NOTIFICATION markers and DELETE rows outlive the product
    product_id = db.Column(db.Integer, nullable=True, index=True)
    item_code = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=False)

    change_type = db.Column(db.String(16), nullable=False)
    quantity_changed = db.Column(db.Integer, nullable=False)
    before_quantity = db.Column(db.Integer, nullable=False)
    after_quantity = db.Column(db.Integer, nullable=False)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "item_code": self.item_code,
            "description": self.description,
            "change_type": self.change_type,
            "quantity_changed": self.quantity_changed,
            "before_quantity": self.before_quantity,
            "after_quantity": self.after_quantity,
            "user_id": self.user_id,
            "user_name": self.user.full_name if self.user else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
