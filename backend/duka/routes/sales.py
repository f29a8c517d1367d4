# Overview: Flask API routes for checkout and sales history; parses input and returns JSON responses.

# backend/duka/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import sales_service
from ..services.sales_service import CartLine, CheckoutRequest
from ..validation import DukaError, ValidationError, amount_to_cents, parse_int

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _optional_str(data: dict, *fields: str) -> str | None:
    """First non-empty value among fields; it must be a string."""
    for name in fields:
        value = data.get(name)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise ValidationError(f"{name} must be a string", details={"field": name})
        return value
    return None


def _parse_checkout_payload(data, seller_id: int) -> CheckoutRequest:
    """
    Client prices are ignored; only product_id and quantity are read from
    each item. total_amount, if sent, must be a non-negative number.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON body")

    items = data.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("Sale must contain at least one item")

    lines = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Invalid item", details={"index": index})
        lines.append(CartLine(
            product_id=parse_int(item.get("product_id"), "product_id", minimum=1),
            quantity=parse_int(item.get("quantity"), "quantity", minimum=1),
        ))

    if data.get("total_amount") is not None:
        if amount_to_cents(data["total_amount"], "total_amount") < 0:
            raise ValidationError("total_amount cannot be negative")

    manual_discount_cents = 0
    if data.get("manual_discount_cents") is not None:
        manual_discount_cents = parse_int(data["manual_discount_cents"], "manual_discount_cents", minimum=0)
    elif data.get("manual_discount") is not None:
        manual_discount_cents = amount_to_cents(data["manual_discount"], "manual_discount")
        if manual_discount_cents < 0:
            raise ValidationError("manual_discount cannot be negative")

    return CheckoutRequest(
        lines=lines,
        payment_method=(_optional_str(data, "payment_method") or "").strip().lower(),
        seller_id=seller_id,
        payment_reference=_optional_str(data, "payment_reference", "mpesa_reference"),
        customer_phone=_optional_str(data, "customer_phone"),
        manual_discount_cents=manual_discount_cents,
    )


@sales_bp.post("")
@require_auth
def checkout_route():
    """
    Check out a cart in one atomic unit.

    Returns 201 with the sale id, receipt number, totals and receipt snapshot.
    """
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    try:
        req = _parse_checkout_payload(data, g.current_user.id)
        result = sales_service.checkout(req)
    except DukaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Checkout failed")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result.to_dict()), 201


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Query params: start_date, end_date (inclusive ISO dates),
    payment_method (cash|mpesa|all), search (receipt number or phone), limit.
    """
    try:
        sales = sales_service.list_sales(
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            payment_method=request.args.get("payment_method"),
            search=request.args.get("search"),
            limit=min(request.args.get("limit", 500, type=int), 1000),
        )
    except DukaError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({"sales": [s.to_dict() for s in sales]}), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except DukaError as e:
        return jsonify(e.to_dict()), e.status_code

    payload = sale.to_dict()
    payload["items"] = [item.to_dict() for item in sale.items]
    return jsonify({"sale": payload}), 200
