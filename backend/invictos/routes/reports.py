from flask import Blueprint, Response, jsonify, request, g

from invictos.decorators import require_auth, require_admin
from invictos.services import reporting_service
from invictos.time_utils import RANGE_PRESETS


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _preset(default: str):
    preset = request.args.get("range", default)
    if preset not in RANGE_PRESETS:
        return None
    return preset


def _csv_response(body: str, filename: str) -> Response:
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@reports_bp.get("/dashboard")
@require_auth
def dashboard_report():
    preset = _preset("today")
    if preset is None:
        return jsonify({"error": f"range must be one of: {', '.join(RANGE_PRESETS)}"}), 400

    report = reporting_service.dashboard(g.current_account, preset)
    return jsonify(report), 200


@reports_bp.get("/sales.csv")
@require_auth
def sales_csv_report():
    preset = _preset("all")
    if preset is None:
        return jsonify({"error": f"range must be one of: {', '.join(RANGE_PRESETS)}"}), 400

    body = reporting_service.export_sales_csv(g.current_account, preset)
    return _csv_response(body, f"sales-{preset}.csv")


@reports_bp.get("/inventory.csv")
@require_auth
@require_admin
def inventory_csv_report():
    return _csv_response(reporting_service.export_inventory_csv(), "inventory.csv")
