# Overview: Flask API routes for products; parses input and returns JSON responses.

# backend/duka/routes/products.py
"""
Product management routes.

All routes require authentication; writes are admin-only and every quantity
change appends an inventory ledger row.
"""
from flask import Blueprint, current_app, g, request

from ..decorators import require_admin, require_auth
from ..services import inventory_service
from ..services.stock_service import get_product
from ..validation import DukaError, parse_int

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    Query params:
    - search: matches item code or description
    - low_stock: "true" to only list products at or below their threshold
    - page / per_page: pagination (per_page max 500)
    """
    products = inventory_service.list_products(
        search=request.args.get("search"),
        low_stock=request.args.get("low_stock", "").lower() in {"1", "true", "yes"},
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 100, type=int),
    )
    return {"products": [p.to_dict() for p in products]}, 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return {"product": get_product(product_id).to_dict()}, 200
    except DukaError as e:
        return e.to_dict(), e.status_code


@products_bp.post("")
@require_auth
@require_admin
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = inventory_service.clean_product_payload(payload, partial=False)
        product = inventory_service.create_product(patch, user_id=g.current_user.id)
    except DukaError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return {"product": product.to_dict()}, 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_admin
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = inventory_service.clean_product_payload(payload, partial=True)
        product = inventory_service.update_product(product_id, patch, user_id=g.current_user.id)
    except DukaError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product %s", product_id)
        return {"error": "Internal server error"}, 500

    return {"product": product.to_dict()}, 200


@products_bp.post("/<int:product_id>/restock")
@require_auth
@require_admin
def restock_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        quantity = parse_int(payload.get("quantity"), "quantity", minimum=1)
        product = inventory_service.restock_product(
            product_id, quantity, user_id=g.current_user.id, note=payload.get("notes"),
        )
    except DukaError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restock product %s", product_id)
        return {"error": "Internal server error"}, 500

    return {"product": product.to_dict()}, 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def delete_product_route(product_id: int):
    try:
        inventory_service.delete_product(product_id, user_id=g.current_user.id)
    except DukaError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete product %s", product_id)
        return {"error": "Internal server error"}, 500

    return {"ok": True}, 200
