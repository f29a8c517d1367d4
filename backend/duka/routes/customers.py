# Overview: Flask API routes for loyalty customers; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import require_admin, require_auth
from ..services import customer_service
from ..validation import DukaError, NotFoundError, ValidationError

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("/lookup")
@require_auth
def lookup_customer_route():
    """Sellers check a phone at the till; an unknown phone is a 404."""
    phone = request.args.get("phone")
    if not customer_service.normalize_phone(phone):
        return jsonify({"error": "Phone number required"}), 400

    try:
        customer = customer_service.find_customer_by_phone(phone)
        if customer is None:
            raise NotFoundError(
                "Customer not found",
                details={"phone_number": customer_service.normalize_phone(phone)},
            )
    except DukaError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({"found": True, "customer": customer.to_dict()}), 200


@customers_bp.get("")
@require_auth
@require_admin
def list_customers_route():
    min_purchases = request.args.get("min_purchases", type=int)
    customers = customer_service.list_customers(min_mpesa_purchases=min_purchases)
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@customers_bp.put("/<int:customer_id>/discount")
@require_auth
@require_admin
def set_discount_route(customer_id: int):
    data = request.get_json(silent=True) or {}
    try:
        if "is_eligible" not in data:
            raise ValidationError("is_eligible is required")
        customer = customer_service.set_discount(
            customer_id,
            is_eligible=data["is_eligible"],
            discount_percentage=data.get("discount_percentage"),
        )
    except DukaError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.get("/<int:customer_id>/purchases")
@require_auth
@require_admin
def list_purchases_route(customer_id: int):
    try:
        sales = customer_service.list_purchases(customer_id)
    except DukaError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({"purchases": [s.to_dict() for s in sales]}), 200
