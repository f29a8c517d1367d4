# Overview: Stock verification and the guarded decrement on Product.quantity.

"""
Stock invariants (authoritative)

- Product.quantity is never negative, under any interleaving of sellers.
- verify_stock() is a plain read. It catches the common case early with a
  clear error but is NOT sufficient on its own: another seller can commit
  between the read and our write.
- decrement_stock() is the compare-and-decrement. It only applies when
  quantity >= n at write time and reports whether a row was affected.
  It must run inside the same unit of work as the rest of the sale.
- Stock levels are never cached between requests; every call reads the row.
- Checkout reads products with FOR UPDATE. SQLite ignores it and relies on
  BEGIN IMMEDIATE instead.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..validation import InsufficientStockError, NotFoundError
from .concurrency import lock_for_update


@dataclass
class StockDecrement:
    product_id: int
    quantity: int
    before_quantity: int
    after_quantity: int


def get_product(product_id: int, *, for_update: bool = False) -> Product:
    # populate_existing: never trust a row cached earlier in this session
    query = db.session.query(Product).filter(Product.id == product_id).populate_existing()
    if for_update:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(
            f"Product not found: {product_id}",
            details={"product_id": product_id},
        )
    return product


def verify_stock(lines: list[tuple[int, int]]) -> dict[int, Product]:
    """
    Check every (product_id, quantity) line against current on-hand stock.

    Quantities for a repeated product are summed before comparing.
    Returns the resolved products keyed by id.
    """
    requested: dict[int, int] = {}
    for product_id, quantity in lines:
        requested[product_id] = requested.get(product_id, 0) + quantity

    products: dict[int, Product] = {}
    for product_id, qty in requested.items():
        product = get_product(product_id, for_update=True)
        if product.quantity < qty:
            raise InsufficientStockError(product, requested=qty, available=product.quantity)
        products[product_id] = product

    return products


def decrement_stock(product: Product, quantity: int) -> StockDecrement:
    """
    Guarded decrement: UPDATE ... SET quantity = quantity - n WHERE quantity >= n.

    Raises InsufficientStockError when no row matched, even if an earlier
    verify_stock() passed. Caller owns the transaction.
    """
    result = db.session.execute(
        update(Product)
        .where(Product.id == product.id, Product.quantity >= quantity)
        .values(
            quantity=Product.quantity - quantity,
            version_id=Product.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        current = db.session.query(Product.quantity).filter(Product.id == product.id).scalar()
        raise InsufficientStockError(
            product,
            requested=quantity,
            available=current if current is not None else 0,
        )

    after = db.session.query(Product.quantity).filter(Product.id == product.id).scalar()
    # Keep the in-session object in step with the row we just wrote
    db.session.expire(product)

    return StockDecrement(
        product_id=product.id,
        quantity=quantity,
        before_quantity=after + quantity,
        after_quantity=after,
    )
