# Overview: Product maintenance that feeds the inventory ledger, plus the low-stock scan.

# backend/duka/services/inventory_service.py
"""
Every quantity change made here appends a ledger row in the same unit of
work: RESTOCK for initial stock and deliveries, EDIT for manual corrections,
DELETE for removals. Checkout decrements live in stock_service.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import case

from ..extensions import db
from ..models import Product, SaleItem
from ..validation import ConflictError, ValidationError, parse_int, parse_price_cents
from . import ledger_service
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from .stock_service import get_product

PRODUCT_MUTABLE_FIELDS = {
    "description",
    "quantity",
    "buying_price_cents",
    "regular_price_cents",
    "discount_price_cents",
    "discount_threshold",
    "low_stock_threshold",
}

DEFAULT_LOW_STOCK_THRESHOLD = 5


def clean_product_payload(payload: dict, *, partial: bool) -> dict:
    """
    Validate + normalize incoming JSON for product create/update.

    partial=False: create semantics (item_code, description and prices required)
    partial=True: update semantics (only provided fields)
    """
    clean: dict = {}

    if not partial:
        item_code = (payload.get("item_code") or "").strip()
        if not item_code:
            raise ValidationError("Item code is required")
        clean["item_code"] = item_code

    if "description" in payload or not partial:
        description = (payload.get("description") or "").strip()
        if not description:
            raise ValidationError("Description is required")
        clean["description"] = description

    for key in ("buying_price_cents", "regular_price_cents", "discount_price_cents"):
        if key in payload:
            clean[key] = parse_price_cents(payload[key], key)
        elif not partial:
            raise ValidationError(f"{key} is required")

    if "quantity" in payload:
        clean["quantity"] = parse_int(payload["quantity"], "quantity", minimum=0)
    elif not partial:
        clean["quantity"] = 0

    for key in ("discount_threshold", "low_stock_threshold"):
        if key in payload and payload[key] is not None:
            clean[key] = parse_int(payload[key], key, minimum=0)

    return clean


def list_products(*, search: str | None = None, low_stock: bool = False, page: int = 1, per_page: int = 100) -> list[Product]:
    q = db.session.query(Product)
    if search:
        pattern = f"%{search}%"
        q = q.filter(db.or_(Product.item_code.ilike(pattern), Product.description.ilike(pattern)))
    if low_stock:
        q = q.filter(Product.quantity <= Product.low_stock_threshold)
    per_page = min(max(per_page, 1), 500)
    page = max(page, 1)
    return q.order_by(Product.description.asc(), Product.id.asc()).offset((page - 1) * per_page).limit(per_page).all()


def create_product(patch: dict, *, user_id: int | None = None) -> Product:
    def _op():
        with unit_of_work():
            exists = db.session.query(Product.id).filter_by(item_code=patch["item_code"]).first()
            if exists:
                raise ConflictError("Item code already exists", details={"item_code": patch["item_code"]})

            product = Product(
                item_code=patch["item_code"],
                description=patch["description"],
                quantity=patch.get("quantity", 0),
                buying_price_cents=patch["buying_price_cents"],
                regular_price_cents=patch["regular_price_cents"],
                discount_price_cents=patch["discount_price_cents"],
                discount_threshold=patch.get("discount_threshold") or current_app.config.get("DISCOUNT_THRESHOLD_DEFAULT", 7),
                low_stock_threshold=patch.get("low_stock_threshold", DEFAULT_LOW_STOCK_THRESHOLD),
            )
            db.session.add(product)
            db.session.flush()

            ledger_service.append_inventory_event(
                change_type=ledger_service.CHANGE_RESTOCK,
                product_id=product.id,
                item_code=product.item_code,
                description=product.description,
                quantity_changed=product.quantity,
                before_quantity=0,
                after_quantity=product.quantity,
                user_id=user_id,
                notes="Initial stock",
            )
        return product

    return run_with_retry(_op)


def update_product(product_id: int, patch: dict, *, user_id: int | None = None,
                   change_type: str = ledger_service.CHANGE_EDIT, note: str = "Manual edit") -> Product:
    """
    Apply a validated patch. A quantity change is logged with change_type
    (EDIT by default, EXCEL_SYNC for spreadsheet-driven overwrites).
    """
    def _op():
        with unit_of_work():
            product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
            if product is None:
                get_product(product_id)  # raises NotFoundError

            before = product.quantity
            for key, value in patch.items():
                if key in PRODUCT_MUTABLE_FIELDS:
                    setattr(product, key, value)
            db.session.flush()

            if product.quantity != before:
                ledger_service.append_inventory_event(
                    change_type=change_type,
                    product_id=product.id,
                    item_code=product.item_code,
                    description=product.description,
                    quantity_changed=product.quantity - before,
                    before_quantity=before,
                    after_quantity=product.quantity,
                    user_id=user_id,
                    notes=note,
                )
        return product

    return run_with_retry(_op)


def restock_product(product_id: int, quantity: int, *, user_id: int | None = None, note: str | None = None) -> Product:
    """Add stock with a SQL-side increment so concurrent sales are not lost."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Restock quantity must be a positive integer")

    def _op():
        with unit_of_work():
            product = get_product(product_id)
            db.session.query(Product).filter(Product.id == product_id).update(
                {
                    Product.quantity: Product.quantity + quantity,
                    Product.version_id: Product.version_id + 1,
                },
                synchronize_session=False,
            )
            after = db.session.query(Product.quantity).filter(Product.id == product_id).scalar()
            db.session.expire(product)

            ledger_service.append_inventory_event(
                change_type=ledger_service.CHANGE_RESTOCK,
                product_id=product_id,
                item_code=product.item_code,
                description=product.description,
                quantity_changed=quantity,
                before_quantity=after - quantity,
                after_quantity=after,
                user_id=user_id,
                notes=note or "Restock",
            )
        return product

    return run_with_retry(_op)


def count_sales_lines(product_id: int) -> int:
    return db.session.query(SaleItem).filter(SaleItem.product_id == product_id).count()


def delete_product(product_id: int, *, user_id: int | None = None) -> None:
    """Products with sales history are never deleted."""
    def _op():
        with unit_of_work():
            product = get_product(product_id)
            sales_count = count_sales_lines(product_id)
            if sales_count:
                raise ConflictError(
                    "Cannot delete product with sales history",
                    details={"product_id": product_id, "sales_count": sales_count},
                )

            ledger_service.append_inventory_event(
                change_type=ledger_service.CHANGE_DELETE,
                product_id=product.id,
                item_code=product.item_code,
                description=product.description,
                quantity_changed=-product.quantity,
                before_quantity=product.quantity,
                after_quantity=0,
                user_id=user_id,
                notes="Product deleted",
            )
            db.session.delete(product)

    run_with_retry(_op)


def find_low_stock_products() -> list[Product]:
    """
    Products at or below their low-stock threshold.

    Ordered out-of-stock first, then nearly out (<= 2), then by quantity.
    Read-only.
    """
    severity = case(
        (Product.quantity == 0, 1),
        (Product.quantity <= 2, 2),
        else_=3,
    )
    return (
        db.session.query(Product)
        .filter(Product.quantity <= Product.low_stock_threshold)
        .order_by(severity, Product.quantity.asc(), Product.id.asc())
        .all()
    )


def record_low_stock_notification(recipient: str, item_count: int) -> None:
    """Zero-delta NOTIFICATION marker: the alert went out, nothing moved."""
    def _op():
        with unit_of_work():
            ledger_service.append_inventory_event(
                change_type=ledger_service.CHANGE_NOTIFICATION,
                item_code="SYSTEM",
                description="Low Stock Alert",
                quantity_changed=0,
                before_quantity=0,
                after_quantity=0,
                notes=f"Alert for {item_count} item(s) sent to {recipient}",
            )

    run_with_retry(_op)
