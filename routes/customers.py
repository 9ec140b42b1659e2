"""Customer routes."""

from flask import Blueprint, jsonify, request

from extensions import db
from models import Customer, Invoice, Permission
from services.audit import log_action
from services.auth import login_required, normalize_phone, permission_required
from services.errors import ValidationError
from services.i18n import Msg
from services.invoice import invoice_to_dict
from services.ownership import owner_get_or_404, owner_query, require_owner, stamp_owner
from services.subscription import consume_usage, require_limit
from utils import money_str

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")

EDITABLE_FIELDS = ("name", "phone", "email", "address")


def customer_to_dict(customer: Customer) -> dict:
    return {
        "id": customer.id,
        "name": customer.name,
        "phone": customer.phone,
        "email": customer.email,
        "address": customer.address,
        "total_purchases": money_str(customer.total_purchases),
        "total_dues": money_str(customer.total_dues),
        "created_at": customer.created_at.isoformat() if customer.created_at else None,
    }


@customers_bp.route("", methods=["GET"])
@login_required
def list_customers():
    query = owner_query(Customer)
    search = (request.args.get("q") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(Customer.name.ilike(pattern) | Customer.phone.ilike(pattern))
    if request.args.get("with_dues"):
        query = query.filter(Customer.total_dues > 0)
    customers = query.order_by(Customer.name).all()
    return jsonify([customer_to_dict(c) for c in customers])


@customers_bp.route("", methods=["POST"])
@permission_required(Permission.CUSTOMERS)
def add_customer():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    phone = normalize_phone(data.get("phone"))
    if not name or not phone:
        raise ValidationError(Msg.NAME_PHONE_REQUIRED)

    owner_id = require_owner()
    require_limit(owner_id, "customers")
    customer = Customer(
        name=name,
        phone=phone,
        email=(data.get("email") or "").strip() or None,
        address=(data.get("address") or "").strip() or None,
    )
    stamp_owner(customer)
    db.session.add(customer)
    consume_usage(owner_id, "customers")
    db.session.flush()
    log_action("create", "customer", customer.id, name)
    db.session.commit()
    return jsonify(customer_to_dict(customer)), 201


@customers_bp.route("/<int:customer_id>", methods=["GET"])
@login_required
def show_customer(customer_id: int):
    customer = owner_get_or_404(Customer, customer_id)
    invoices = customer.invoices.order_by(Invoice.created_at.desc()).limit(50).all()
    result = customer_to_dict(customer)
    result["invoices"] = [invoice_to_dict(inv) for inv in invoices]
    return jsonify(result)


@customers_bp.route("/<int:customer_id>", methods=["PATCH"])
@permission_required(Permission.CUSTOMERS)
def edit_customer(customer_id: int):
    customer = owner_get_or_404(Customer, customer_id)
    data = request.get_json(silent=True) or {}
    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        value = (data.get(field) or "").strip()
        if field == "phone":
            value = normalize_phone(value)
        if field in ("name", "phone") and not value:
            raise ValidationError(Msg.NAME_PHONE_REQUIRED)
        setattr(customer, field, value or None)
    log_action("edit", "customer", customer.id, ", ".join(f for f in EDITABLE_FIELDS if f in data))
    db.session.commit()
    return jsonify(customer_to_dict(customer))
