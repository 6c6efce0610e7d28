# Overview: Flask API routes for commission tracking; parses input and returns JSON responses.

"""
Commission routes.

Aggregations are role-filtered inside commission_service: a seller calling
any of these only ever sees their own sales. Rate changes and payouts are
admin only.
"""

from flask import Blueprint, request, jsonify, g

from ..services import commission_service
from ..validation import ValidationError
from invictos.time_utils import RANGE_PRESETS, range_for_preset, to_utc_z
from ..decorators import require_auth, require_admin


commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/commissions")


def _preset_arg(default: str) -> str:
    preset = request.args.get("range", default)
    if preset not in RANGE_PRESETS:
        raise ValidationError(f"range must be one of: {', '.join(RANGE_PRESETS)}")
    return preset


@commissions_bp.get("/config")
@require_auth
def get_config_route():
    return jsonify(commission_service.get_config().to_dict())


@commissions_bp.put("/config")
@require_auth
@require_admin
def update_config_route():
    """Body: {"commission_percentage": 0..100}. Future sales only."""
    data = request.get_json(silent=True) or {}
    config = commission_service.set_global_rate(data.get("commission_percentage"), acting=g.current_account)
    return jsonify(config.to_dict())


@commissions_bp.put("/rates/<account_id>")
@require_auth
@require_admin
def update_account_rate_route(account_id: str):
    """Body: {"commission_percentage": 0..100 | null}. null falls back to the global rate."""
    data = request.get_json(silent=True) or {}
    if "commission_percentage" not in data:
        raise ValidationError("commission_percentage is required (null clears the override)")
    account = commission_service.set_account_rate(
        account_id, data["commission_percentage"], acting=g.current_account
    )
    return jsonify(account.to_dict())


@commissions_bp.get("/summary")
@require_auth
def summary_route():
    """Team overview: per-seller pending, generated in range, sales count, rate."""
    return jsonify(commission_service.team_summary(g.current_account, _preset_arg("month")))


@commissions_bp.get("/sellers/<seller_id>")
@require_auth
def seller_detail_route(seller_id: str):
    """
    Commission detail for one seller.

    The range upper bound is the end of the current local day.
    """
    preset = _preset_arg("month")
    start, end = range_for_preset(preset, end_of_day=True)
    viewer = g.current_account
    scoped = commission_service.visible_seller_id(viewer, seller_id)
    unpaid = commission_service.unpaid_sales(viewer, scoped)
    return jsonify({
        "seller_id": scoped,
        "range": preset,
        "start": to_utc_z(start) if start else None,
        "end": to_utc_z(end),
        "pending_cents": commission_service.pending_balance(viewer, scoped),
        "generated_cents": commission_service.generated_in_range(viewer, scoped, start, end),
        "unpaid_sales": [s.to_dict(include_lines=False) for s in unpaid],
    })


@commissions_bp.get("/pending")
@require_auth
def pending_route():
    viewer = g.current_account
    seller_id = commission_service.visible_seller_id(viewer, request.args.get("seller_id"))
    return jsonify({
        "seller_id": seller_id,
        "pending_cents": commission_service.pending_balance(viewer, seller_id),
    })


@commissions_bp.get("/unpaid")
@require_auth
def unpaid_route():
    viewer = g.current_account
    sales = commission_service.unpaid_sales(viewer, request.args.get("seller_id"))
    return jsonify({"items": [s.to_dict(include_lines=False) for s in sales], "count": len(sales)})


@commissions_bp.post("/mark-paid")
@require_auth
@require_admin
def mark_paid_route():
    """
    Pay out a selection of sales.

    Body: {"sale_ids": [...]}. Already-paid and unknown ids are reported,
    not rejected.
    """
    data = request.get_json(silent=True) or {}
    return jsonify(commission_service.mark_paid(data.get("sale_ids")))
