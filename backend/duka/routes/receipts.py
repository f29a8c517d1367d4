from flask import Blueprint, jsonify, request

from ..decorators import require_admin, require_auth
from ..services import receipt_service
from ..validation import DukaError

receipts_bp = Blueprint("receipts", __name__, url_prefix="/api/receipts")


@receipts_bp.get("/<string:receipt_number>")
@require_auth
def get_receipt_route(receipt_number: str):
    """The stored snapshot, exactly as written at checkout."""
    try:
        return jsonify({"receipt": receipt_service.get_receipt(receipt_number)}), 200
    except DukaError as e:
        return jsonify(e.to_dict()), e.status_code


@receipts_bp.get("")
@require_auth
@require_admin
def list_receipts_route():
    limit = min(request.args.get("limit", 200, type=int), 1000)
    receipts = receipt_service.list_receipts(limit=limit)
    return jsonify({"receipts": [r.to_dict() for r in receipts]}), 200
