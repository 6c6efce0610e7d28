# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""
Checkout and sales history.

Sellers ring up sales under their own account and only see their own
history; administrators see everything and may filter by seller.
"""

from flask import Blueprint, request, jsonify, g

from ..services import sales_service
from ..validation import ValidationError
from invictos.time_utils import RANGE_PRESETS, parse_iso_datetime
from ..decorators import require_auth


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
def checkout_route():
    """
    Complete a sale.

    Body:
    {
      "items": [{"product_id": "...", "quantity": 2}],
      "discount_type": "percent" | "amount",   (optional)
      "discount_value": 10,                     (optional; cents for "amount")
      "payment_method": "cash" | "card" | "transfer"
    }
    """
    data = request.get_json(silent=True) or {}
    sale = sales_service.checkout(
        g.current_account,
        data.get("items"),
        discount_type=data.get("discount_type"),
        discount_value=data.get("discount_value"),
        payment_method=data.get("payment_method", "cash"),
    )
    return jsonify(sale.to_dict()), 201


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Sales history, newest first.

    Query params:
    - range: today | week | month | year | all (takes precedence over start/end)
    - start, end: ISO-8601 datetimes
    - seller_id: admin only; ignored for sellers
    - lines: "false" to omit line items
    """
    preset = request.args.get("range")
    if preset is not None and preset not in RANGE_PRESETS:
        raise ValidationError(f"range must be one of: {', '.join(RANGE_PRESETS)}")

    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        raise ValidationError("start and end must be ISO-8601 datetimes")

    sales = sales_service.list_sales(
        g.current_account,
        preset=preset,
        start=start,
        end=end,
        seller_id=request.args.get("seller_id"),
    )
    include_lines = request.args.get("lines", "true").lower() != "false"
    return jsonify({
        "items": [s.to_dict(include_lines=include_lines) for s in sales],
        "count": len(sales),
        "total_cents": sum(s.total_cents for s in sales),
    })


@sales_bp.get("/<sale_id>")
@require_auth
def get_sale_route(sale_id: str):
    return jsonify(sales_service.get_sale(g.current_account, sale_id).to_dict())
