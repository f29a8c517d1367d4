"""
Sales Service - atomic checkout of a cart into a Sale

WHY: A sale touches the sale header, its line items, every product's stock,
the customer's aggregates, the loyalty discount record and the inventory
ledger. Either all of that lands, or none of it does.

Checkout states:
    PRICED -> VERIFIED -> CUSTOMER_RESOLVED -> COMMITTING -> COMMITTED
    any state before COMMITTED -> ABORTED

All writes share one unit of work (resolving may create a new customer row
in it). The receipt snapshot and the "sale completed"
handlers run after COMMITTED; their failures are logged, never raised.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, CustomerDiscount, Sale, SaleItem, User
from ..models.sales import PAYMENT_METHODS, PAYMENT_MPESA
from ..validation import ConflictError, DukaError, NotFoundError, ValidationError, cents_to_amount
from . import customer_service, ledger_service, receipt_service, stock_service
from .concurrency import run_with_retry, unit_of_work
from .pricing_service import LinePrice, price_product_line
from duka.time_utils import sales_window, to_utc_z, utcnow

STATE_NEW = "NEW"
STATE_PRICED = "PRICED"
STATE_VERIFIED = "VERIFIED"
STATE_CUSTOMER_RESOLVED = "CUSTOMER_RESOLVED"
STATE_COMMITTING = "COMMITTING"
STATE_COMMITTED = "COMMITTED"
STATE_ABORTED = "ABORTED"

_TRANSITIONS = {
    STATE_NEW: {STATE_PRICED, STATE_ABORTED},
    STATE_PRICED: {STATE_VERIFIED, STATE_ABORTED},
    STATE_VERIFIED: {STATE_CUSTOMER_RESOLVED, STATE_ABORTED},
    STATE_CUSTOMER_RESOLVED: {STATE_COMMITTING, STATE_ABORTED},
    STATE_COMMITTING: {STATE_COMMITTED, STATE_ABORTED},
    STATE_COMMITTED: set(),
    STATE_ABORTED: set(),
}

_sale_completed_handlers: list = []


@dataclass
class CartLine:
    product_id: int
    quantity: int


@dataclass
class CheckoutRequest:
    lines: list[CartLine]
    payment_method: str
    seller_id: int
    payment_reference: str | None = None
    customer_phone: str | None = None
    manual_discount_cents: int = 0


@dataclass
class PricedLine:
    product: object
    quantity: int
    price: LinePrice


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    discount_percentage: Decimal
    customer_discount_cents: int
    manual_discount_cents: int
    total_cents: int
    profit_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_percentage": str(self.discount_percentage),
            "customer_discount_cents": self.customer_discount_cents,
            "manual_discount_cents": self.manual_discount_cents,
            "total_cents": self.total_cents,
            "profit_cents": self.profit_cents,
        }


@dataclass
class CheckoutState:
    """Tracks where a checkout is; illegal jumps are programming errors."""
    receipt_number: str
    state: str = STATE_NEW
    history: list[str] = field(default_factory=lambda: [STATE_NEW])

    def advance(self, new_state: str) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal checkout transition {self.state} -> {new_state}")
        self.state = new_state
        self.history.append(new_state)
        current_app.logger.debug("Checkout %s -> %s", self.receipt_number, new_state)


@dataclass
class CheckoutResult:
    sale: Sale
    totals: SaleTotals
    receipt: dict
    state: CheckoutState

    def to_dict(self) -> dict:
        return {
            "id": self.sale.id,
            "receipt_number": self.sale.receipt_number,
            "total": cents_to_amount(self.totals.total_cents),
            "profit": cents_to_amount(self.totals.profit_cents),
            "total_cents": self.totals.total_cents,
            "profit_cents": self.totals.profit_cents,
            "discount": self.totals.to_dict(),
            "receipt": self.receipt,
            "message": "Sale completed successfully",
        }


def generate_receipt_number() -> str:
    """RCP-<UTC timestamp to the microsecond>-<4 hex>."""
    return f"RCP-{utcnow():%Y%m%d%H%M%S%f}-{secrets.token_hex(2).upper()}"


def register_sale_completed_handler(handler):
    """
    Subscribe to committed sales. handler(receipt_snapshot) runs after commit.

    Usable as a decorator. Handler failures are logged and swallowed.
    """
    if handler not in _sale_completed_handlers:
        _sale_completed_handlers.append(handler)
    return handler


def unregister_sale_completed_handler(handler) -> None:
    if handler in _sale_completed_handlers:
        _sale_completed_handlers.remove(handler)


def _emit_sale_completed(snapshot: dict) -> None:
    for handler in list(_sale_completed_handlers):
        try:
            handler(snapshot)
        except Exception:
            current_app.logger.exception(
                "Sale-completed handler %r failed for %s",
                getattr(handler, "__name__", handler),
                snapshot.get("receipt_number"),
            )


def validate_checkout_request(req: CheckoutRequest) -> None:
    if not req.lines:
        raise ValidationError("Sale must contain at least one item")

    for line in req.lines:
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise ValidationError(
                "Quantity must be a positive integer",
                details={"product_id": line.product_id, "quantity": line.quantity},
            )

    if req.payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            "Invalid payment method",
            details={"payment_method": req.payment_method, "allowed": list(PAYMENT_METHODS)},
        )

    if req.payment_method == PAYMENT_MPESA and not customer_service.normalize_phone(req.customer_phone):
        raise ValidationError("Phone number required for M-Pesa")


def compose_totals(
    priced_lines: list[PricedLine],
    *,
    discount_percentage: Decimal,
    manual_discount_cents: int,
) -> SaleTotals:
    """
    subtotal - customer discount - manual discount == total, exactly, in cents.

    The loyalty discount is rounded half-up to the cent. The manual discount
    is clamped to [0, subtotal - customer discount], so the total never goes
    below zero. Both discounts come straight out of profit.
    """
    subtotal = sum(line.price.line_total_cents for line in priced_lines)
    line_profit = sum(line.price.profit_cents for line in priced_lines)

    pct = Decimal(discount_percentage or 0)
    customer_discount = 0
    if pct > 0:
        customer_discount = int(
            (Decimal(subtotal) * pct / Decimal(100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
        customer_discount = min(customer_discount, subtotal)

    manual = max(0, min(manual_discount_cents or 0, subtotal - customer_discount))
    total = max(0, subtotal - customer_discount - manual)

    return SaleTotals(
        subtotal_cents=subtotal,
        discount_percentage=pct,
        customer_discount_cents=customer_discount,
        manual_discount_cents=manual,
        total_cents=total,
        profit_cents=line_profit - customer_discount - manual,
    )


def _price_cart(lines: list[CartLine]) -> list[PricedLine]:
    default_threshold = current_app.config.get("DISCOUNT_THRESHOLD_DEFAULT", 7)
    priced = []
    for line in lines:
        product = stock_service.get_product(line.product_id, for_update=True)
        priced.append(PricedLine(
            product=product,
            quantity=line.quantity,
            price=price_product_line(product, line.quantity, default_threshold=default_threshold),
        ))
    return priced


def _commit_sale(
    *,
    req: CheckoutRequest,
    state: CheckoutState,
    priced: list[PricedLine],
    resolved,
    totals: SaleTotals,
) -> Sale:
    sale = Sale(
        receipt_number=state.receipt_number,
        seller_id=req.seller_id,
        customer_id=resolved.customer.id if resolved else None,
        payment_method=req.payment_method,
        payment_reference=req.payment_reference,
        subtotal_cents=totals.subtotal_cents,
        customer_discount_cents=totals.customer_discount_cents,
        manual_discount_cents=totals.manual_discount_cents,
        total_cents=totals.total_cents,
        profit_cents=totals.profit_cents,
        items_count=len(priced),
    )
    try:
        with db.session.begin_nested():
            db.session.add(sale)
    except IntegrityError as exc:
        raise ConflictError(
            "Receipt number already exists",
            details={"receipt_number": state.receipt_number},
        ) from exc

    for line in priced:
        product = line.product
        item_code = product.item_code
        description = product.description

        db.session.add(SaleItem(
            sale_id=sale.id,
            product_id=product.id,
            item_code=item_code,
            description=description,
            quantity=line.quantity,
            unit_price_cents=line.price.unit_price_cents,
            buying_price_cents=product.buying_price_cents,
            line_total_cents=line.price.line_total_cents,
            profit_cents=line.price.profit_cents,
            discount_applied=line.price.discount_applied,
        ))

        dec = stock_service.decrement_stock(product, line.quantity)

        ledger_service.append_inventory_event(
            change_type=ledger_service.CHANGE_SALE,
            product_id=dec.product_id,
            item_code=item_code,
            description=description,
            quantity_changed=-line.quantity,
            before_quantity=dec.before_quantity,
            after_quantity=dec.after_quantity,
            user_id=req.seller_id,
            notes=f"Sale {state.receipt_number}",
        )

    if resolved is not None:
        if totals.customer_discount_cents > 0:
            db.session.add(CustomerDiscount(
                customer_id=resolved.customer.id,
                sale_id=sale.id,
                discount_cents=totals.customer_discount_cents,
                discount_percentage=totals.discount_percentage,
            ))
        customer_service.record_purchase(
            resolved.customer,
            payment_method=req.payment_method,
            total_cents=totals.total_cents,
        )

    db.session.flush()
    return sale


def checkout(req: CheckoutRequest, *, receipt_number_factory=None) -> CheckoutResult:
    """
    Turn a cart into one committed Sale.

    Client-supplied prices are never trusted; every line is re-priced from the
    product row. Raises ValidationError, NotFoundError, InsufficientStockError,
    ConflictError or PersistenceError with nothing written.
    """
    validate_checkout_request(req)
    make_receipt_number = receipt_number_factory or generate_receipt_number

    seller = db.session.get(User, req.seller_id)
    if seller is None:
        raise NotFoundError("Seller not found", details={"seller_id": req.seller_id})
    seller_name = seller.full_name

    def _op():
        state = CheckoutState(receipt_number=make_receipt_number())
        try:
            with unit_of_work():
                priced = _price_cart(req.lines)
                state.advance(STATE_PRICED)

                stock_service.verify_stock([(line.product_id, line.quantity) for line in req.lines])
                state.advance(STATE_VERIFIED)

                resolved = customer_service.resolve_customer(req.customer_phone)
                state.advance(STATE_CUSTOMER_RESOLVED)

                totals = compose_totals(
                    priced,
                    discount_percentage=resolved.discount_percentage if resolved else Decimal("0"),
                    manual_discount_cents=req.manual_discount_cents,
                )

                state.advance(STATE_COMMITTING)
                sale = _commit_sale(req=req, state=state, priced=priced, resolved=resolved, totals=totals)
            state.advance(STATE_COMMITTED)
        except DukaError as exc:
            state.advance(STATE_ABORTED)
            current_app.logger.info("Checkout %s aborted: %s", state.receipt_number, exc.message)
            raise
        except BaseException:
            if state.state not in (STATE_COMMITTED, STATE_ABORTED):
                state.advance(STATE_ABORTED)
            raise
        return sale, totals, resolved, state

    sale, totals, resolved, state = run_with_retry(
        _op, attempts=current_app.config.get("CHECKOUT_RETRY_ATTEMPTS", 3)
    )

    current_app.logger.info(
        "Sale %s committed: total=%d items=%d payment=%s",
        sale.receipt_number, totals.total_cents, sale.items_count, sale.payment_method,
    )

    snapshot = receipt_service.build_receipt_snapshot(
        sale=sale,
        items=sale.items,
        seller_name=seller_name,
        customer_phone=resolved.customer.phone_number if resolved else None,
        discount_percentage=totals.discount_percentage,
        created_at=to_utc_z(sale.created_at),
    )
    receipt_service.store_receipt(sale_id=sale.id, snapshot=snapshot)
    _emit_sale_completed(snapshot)

    return CheckoutResult(sale=sale, totals=totals, receipt=snapshot, state=state)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    start_date: str | None = None,
    end_date: str | None = None,
    payment_method: str | None = None,
    search: str | None = None,
    limit: int = 500,
) -> list[Sale]:
    """Sales history, newest first. Dates are inclusive ISO dates."""
    q = db.session.query(Sale).outerjoin(Customer, Sale.customer_id == Customer.id)

    try:
        start, end = sales_window(start_date, end_date)
    except ValueError:
        raise ValidationError("start_date/end_date must be ISO-8601 dates")

    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at < end)

    if payment_method and payment_method != "all":
        q = q.filter(Sale.payment_method == payment_method)

    if search:
        pattern = f"%{search}%"
        q = q.filter(db.or_(Sale.receipt_number.ilike(pattern), Customer.phone_number.ilike(pattern)))

    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
