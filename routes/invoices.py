"""Invoice routes."""

import io

from flask import Blueprint, abort, jsonify, request, send_file

from extensions import db
from models import VALID_INVOICE_STATUSES, Invoice, Permission
from services.auth import current_language, login_required, permission_required
from services.i18n import Msg, translate
from services.invoice import create_invoice, invoice_to_dict
from services.ownership import owner_get_or_404, owner_query, require_owner
from services.pdf import LAYOUTS, generate_invoice_pdf
from services.shop import get_shop_settings
from services.subscription import has_feature

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.route("", methods=["GET"])
@login_required
def list_invoices():
    query = owner_query(Invoice)
    status = request.args.get("status")
    if status in VALID_INVOICE_STATUSES:
        query = query.filter(Invoice.status == status)
    search = (request.args.get("q") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            Invoice.invoice_number.ilike(pattern) | Invoice.customer_name.ilike(pattern)
        )
    limit = min(request.args.get("limit", 50, type=int), 200)
    invoices = query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).all()
    return jsonify([invoice_to_dict(inv) for inv in invoices])


@invoices_bp.route("", methods=["POST"])
@permission_required(Permission.BILLING)
def add_invoice():
    data = request.get_json(silent=True) or {}
    invoice = create_invoice(
        require_owner(),
        data.get("items") or [],
        customer_id=data.get("customer_id"),
        customer_name=data.get("customer_name") or "",
        customer_phone=data.get("customer_phone") or "",
        discount_type=data.get("discount_type") or "percent",
        discount_value=data.get("discount_value") or 0,
        payment_mode=data.get("payment_mode") or "cash",
        amount_paid=data.get("amount_paid"),
        source="ui",
    )
    result = invoice_to_dict(invoice)
    result["message"] = translate(
        Msg.INVOICE_CREATED, current_language(), number=invoice.invoice_number
    )
    return jsonify(result), 201


@invoices_bp.route("/<int:invoice_id>", methods=["GET"])
@login_required
def show_invoice(invoice_id: int):
    return jsonify(invoice_to_dict(owner_get_or_404(Invoice, invoice_id)))


@invoices_bp.route("/<int:invoice_id>/pdf", methods=["GET"])
@login_required
def invoice_pdf(invoice_id: int):
    invoice = owner_get_or_404(Invoice, invoice_id)
    layout = request.args.get("layout", "a4")
    if layout not in LAYOUTS:
        abort(404)
    owner_id = require_owner()
    settings = get_shop_settings()
    show_gst = has_feature(owner_id, "gst_invoice") and bool(settings.gstin)
    db.session.commit()
    pdf_bytes = generate_invoice_pdf(invoice, settings, layout, show_gst)
    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        as_attachment=request.args.get("download") == "1",
        download_name=f"{invoice.invoice_number}-{layout}.pdf",
    )
