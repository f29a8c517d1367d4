# Overview: Immutable receipt snapshots, written once after a sale commits.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Receipt
from ..validation import NotFoundError


def build_receipt_snapshot(
    *,
    sale,
    items,
    seller_name: str | None,
    customer_phone: str | None,
    discount_percentage,
    created_at: str | None,
) -> dict:
    """
    Everything needed to reprint the receipt without touching mutable rows.
    """
    return {
        "receipt_number": sale.receipt_number,
        "sale_id": sale.id,
        "seller_name": seller_name,
        "items": [
            {
                "product_id": item.product_id,
                "item_code": item.item_code,
                "description": item.description,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
                "line_total_cents": item.line_total_cents,
                "discount_applied": item.discount_applied,
            }
            for item in items
        ],
        "subtotal_cents": sale.subtotal_cents,
        "customer_discount_cents": sale.customer_discount_cents,
        "discount_percentage": str(discount_percentage),
        "manual_discount_cents": sale.manual_discount_cents,
        "total_cents": sale.total_cents,
        "items_count": sale.items_count,
        "payment_method": sale.payment_method,
        "payment_reference": sale.payment_reference,
        "customer_phone": customer_phone,
        "created_at": created_at,
    }


def store_receipt(*, sale_id: int, snapshot: dict) -> Receipt | None:
    """
    Persist the snapshot in its own transaction.

    Runs after the sale has committed; a failure is logged and swallowed so it
    can never undo the sale. Returns None on failure.
    """
    receipt = Receipt(
        receipt_number=snapshot["receipt_number"],
        sale_id=sale_id,
        receipt_data=snapshot,
    )
    try:
        db.session.add(receipt)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to store receipt %s", snapshot.get("receipt_number"))
        return None
    return receipt


def get_receipt(receipt_number: str) -> dict:
    """Stored snapshot, verbatim."""
    receipt = db.session.query(Receipt).filter_by(receipt_number=receipt_number).first()
    if receipt is None:
        raise NotFoundError("Receipt not found", details={"receipt_number": receipt_number})
    return receipt.receipt_data


def list_receipts(limit: int = 200) -> list[Receipt]:
    return (
        db.session.query(Receipt)
        .order_by(Receipt.created_at.desc(), Receipt.id.desc())
        .limit(limit)
        .all()
    )
