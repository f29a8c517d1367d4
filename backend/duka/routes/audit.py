# Overview: Read-only inventory ledger listing.

from flask import Blueprint, jsonify, request

from ..decorators import require_admin, require_auth
from ..services import ledger_service

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("")
@require_auth
@require_admin
def list_audit_route():
    """
    Query params:
    - item_code: exact item code
    - type: change type (SALE, RESTOCK, ...) or "all"
    - product_id: int
    - limit: default 100, max 1000
    """
    entries = ledger_service.list_inventory_events(
        item_code=request.args.get("item_code") or request.args.get("itemCode"),
        change_type=request.args.get("type"),
        product_id=request.args.get("product_id", type=int),
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"entries": [e.to_dict() for e in entries]}), 200
