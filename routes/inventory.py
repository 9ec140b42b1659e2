"""Inventory routes, including the bill-of-materials import."""

from flask import Blueprint, current_app, jsonify, request

from extensions import db
from models import InventoryItem, Permission
from services.audit import log_action
from services.auth import current_language, login_required, permission_required
from services.errors import ValidationError
from services.i18n import Msg, translate
from services.importer import confirm_import, parse_upload
from services.inventory import (
    add_stock,
    apply_item_fields,
    create_item,
    item_to_dict,
    low_stock_query,
)
from services.ownership import owner_get_or_404, owner_query, require_owner

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.route("", methods=["GET"])
@login_required
def list_items():
    query = owner_query(InventoryItem)
    search = (request.args.get("q") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            InventoryItem.name.ilike(pattern) | InventoryItem.sku.ilike(pattern)
        )
    if request.args.get("category"):
        query = query.filter(InventoryItem.category == request.args["category"])
    items = query.order_by(InventoryItem.name).all()
    return jsonify([item_to_dict(item) for item in items])


@inventory_bp.route("/low-stock", methods=["GET"])
@login_required
def low_stock():
    threshold = request.args.get(
        "threshold", current_app.config["APP_CONFIG"].low_stock_threshold, type=int
    )
    items = low_stock_query(require_owner(), threshold).all()
    return jsonify([item_to_dict(item) for item in items])


@inventory_bp.route("", methods=["POST"])
@permission_required(Permission.INVENTORY)
def add_item():
    data = request.get_json(silent=True) or {}
    item = create_item(require_owner(), data)
    return jsonify(item_to_dict(item)), 201


@inventory_bp.route("/<int:item_id>", methods=["GET"])
@login_required
def show_item(item_id: int):
    return jsonify(item_to_dict(owner_get_or_404(InventoryItem, item_id)))


@inventory_bp.route("/<int:item_id>", methods=["PATCH"])
@permission_required(Permission.INVENTORY)
def edit_item(item_id: int):
    item = owner_get_or_404(InventoryItem, item_id)
    data = request.get_json(silent=True) or {}
    apply_item_fields(item, data)
    log_action("edit", "inventory_item", item.id, ", ".join(sorted(data)))
    db.session.commit()
    return jsonify(item_to_dict(item))


@inventory_bp.route("/add-stock", methods=["POST"])
@permission_required(Permission.INVENTORY)
def add_item_stock():
    data = request.get_json(silent=True) or {}
    item = add_stock(require_owner(), data.get("product_name", ""), data.get("quantity"))
    db.session.refresh(item)
    return jsonify(
        {
            "item": item_to_dict(item),
            "message": translate(
                Msg.STOCK_ADDED, current_language(),
                quantity=data.get("quantity"), name=item.name,
            ),
        }
    )


@inventory_bp.route("/import/parse", methods=["POST"])
@permission_required(Permission.INVENTORY)
def parse_import():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError(detail="file is required")
    result = parse_upload(upload.filename, upload.read(), upload.mimetype)
    return jsonify(result)


@inventory_bp.route("/import/confirm", methods=["POST"])
@permission_required(Permission.INVENTORY)
def confirm_import_items():
    data = request.get_json(silent=True) or {}
    rows = data.get("items")
    if not isinstance(rows, list):
        raise ValidationError(detail="items must be a list")
    items = confirm_import(require_owner(), rows)
    return (
        jsonify(
            {
                "items": [item_to_dict(item) for item in items],
                "message": translate(Msg.ITEMS_IMPORTED, current_language(), count=len(items)),
            }
        ),
        201,
    )
