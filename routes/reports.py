"""Dashboard and sales report routes."""

from flask import Blueprint, current_app, jsonify, request

from models import Invoice, Permission
from services.auth import login_required, permission_required
from services.errors import ValidationError
from services.invoice import invoice_to_dict
from services.ownership import owner_query, require_owner
from services.reporting import PERIODS, inventory_value, sales_summary
from services.subscription import feature_required

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.route("/dashboard", methods=["GET"])
@login_required
def dashboard():
    """Today's figures and recent bills; available on every plan."""
    owner_id = require_owner()
    threshold = current_app.config["APP_CONFIG"].low_stock_threshold
    summary = sales_summary(owner_id, "today", threshold)
    recent = owner_query(Invoice).order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(5)
    summary["recent_invoices"] = [invoice_to_dict(inv) for inv in recent]
    return jsonify(summary)


@reports_bp.route("/summary", methods=["GET"])
@permission_required(Permission.REPORTS)
@feature_required("reports")
def summary():
    period = request.args.get("period", "today")
    if period not in PERIODS:
        raise ValidationError(detail=f"period must be one of {', '.join(PERIODS)}")
    threshold = current_app.config["APP_CONFIG"].low_stock_threshold
    return jsonify(sales_summary(require_owner(), period, threshold))


@reports_bp.route("/inventory-value", methods=["GET"])
@permission_required(Permission.REPORTS)
@feature_required("reports")
def stock_value():
    return jsonify(inventory_value(require_owner()))
