# Overview: Service-layer operations for the inventory ledger (append-only audit trail).

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import InventoryAuditEntry
"""
Inventory Ledger Invariants (authoritative)

- Append-only: one row per quantity-affecting event. No updates, no deletes.
- quantity_changed is signed; after_quantity - before_quantity == quantity_changed.
- Best-effort by default: each append runs in a SAVEPOINT, so a failed append
  is logged and the primary operation continues. Rows appended inside a unit
  of work that later aborts are rolled back with it.
- INVENTORY_LEDGER_STRICT=True promotes ledger failures into the caller's
  unit of work (the primary operation aborts too).
"""

CHANGE_SALE = "SALE"
CHANGE_RESTOCK = "RESTOCK"
CHANGE_EDIT = "EDIT"
CHANGE_EXCEL_SYNC = "EXCEL_SYNC"
CHANGE_DELETE = "DELETE"
CHANGE_NOTIFICATION = "NOTIFICATION"
CHANGE_TYPES = {
    CHANGE_SALE,
    CHANGE_RESTOCK,
    CHANGE_EDIT,
    CHANGE_EXCEL_SYNC,
    CHANGE_DELETE,
    CHANGE_NOTIFICATION,
}

DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 1000


def append_inventory_event(
    *,
    change_type: str,
    item_code: str,
    description: str,
    quantity_changed: int,
    before_quantity: int,
    after_quantity: int,
    product_id: int | None = None,
    user_id: int | None = None,
    notes: str | None = None,
) -> InventoryAuditEntry | None:
    """
    Append one ledger row inside the current transaction.

    Returns the entry, or None when a best-effort append failed.
    """
    if change_type not in CHANGE_TYPES:
        raise ValueError(f"Unknown inventory change type: {change_type}")

    entry = InventoryAuditEntry(
        product_id=product_id,
        item_code=item_code,
        description=description,
        change_type=change_type,
        quantity_changed=quantity_changed,
        before_quantity=before_quantity,
        after_quantity=after_quantity,
        user_id=user_id,
        notes=notes,
    )

    if current_app.config.get("INVENTORY_LEDGER_STRICT"):
        db.session.add(entry)
        db.session.flush()
        return entry

    try:
        with db.session.begin_nested():
            db.session.add(entry)
    except SQLAlchemyError:
        current_app.logger.exception(
            "Failed to log inventory audit (%s %s %+d)", change_type, item_code, quantity_changed
        )
        return None
    return entry


def list_inventory_events(
    *,
    item_code: str | None = None,
    change_type: str | None = None,
    product_id: int | None = None,
    limit: int | None = None,
) -> list[InventoryAuditEntry]:
    """Newest first, optionally filtered by item code, change type or product."""
    limit = min(limit or DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT)

    q = db.session.query(InventoryAuditEntry)
    if item_code:
        q = q.filter(InventoryAuditEntry.item_code == item_code)
    if change_type and change_type.lower() != "all":
        q = q.filter(InventoryAuditEntry.change_type == change_type.upper())
    if product_id is not None:
        q = q.filter(InventoryAuditEntry.product_id == product_id)

    return (
        q.order_by(InventoryAuditEntry.created_at.desc(), InventoryAuditEntry.id.desc())
        .limit(limit)
        .all()
    )
