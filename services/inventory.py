"""Inventory item helpers shared by routes, the importer and the assistant."""

from __future__ import annotations

import logging
import re
import secrets
from typing import Optional

from sqlalchemy import func

from extensions import db
from models import InventoryItem
from services.audit import log_action
from services.errors import ValidationError
from services.i18n import Msg
from services.subscription import consume_usage, require_limit
from utils import money, money_str, safe_decimal, safe_int

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("name", "sku", "category", "size", "color", "hsn_code")
MONEY_FIELDS = ("cost_price", "price", "gst_rate")


def generate_sku(name: str) -> str:
    """``ABC-1F2E3D``: three letters of the name plus a random suffix."""
    letters = re.sub(r"[^A-Za-z]", "", name or "").upper()[:3] or "ITM"
    return f"{letters}-{secrets.token_hex(3).upper()}"


def apply_item_fields(item: InventoryItem, data: dict) -> InventoryItem:
    """Copy the keys present in *data* onto *item*.  Validates values."""
    for field in TEXT_FIELDS:
        if field in data:
            value = (str(data[field]).strip() if data[field] is not None else "") or None
            if field == "name" and not value:
                raise ValidationError(detail="name is required")
            setattr(item, field, value)
    for field in MONEY_FIELDS:
        if field in data:
            value = safe_decimal(data[field], default="-1")
            if value < 0:
                raise ValidationError(detail=f"{field} must be a non-negative number")
            setattr(item, field, money(value))
    if "quantity" in data:
        quantity = safe_int(data["quantity"], default=-1)
        if quantity < 0:
            raise ValidationError(detail="quantity must be a non-negative whole number")
        item.quantity = quantity
    return item


def create_item(user_id: int, data: dict) -> InventoryItem:
    """Add one item, consuming the demo inventory allowance.  Commits."""
    if not (data.get("name") or "").strip():
        raise ValidationError(detail="name is required")
    item = apply_item_fields(InventoryItem(user_id=user_id, quantity=0), data)
    require_limit(user_id, "inventory")
    if not item.sku:
        item.sku = generate_sku(item.name)
    db.session.add(item)
    try:
        consume_usage(user_id, "inventory")
        db.session.flush()
        log_action("create", "inventory_item", item.id, item.name, user_id=user_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return item


def find_item_by_name(user_id: int, name: str) -> Optional[InventoryItem]:
    """Exact name match first (case-insensitive), then a substring match."""
    needle = (name or "").strip().lower()
    if not needle:
        return None
    base = InventoryItem.query.filter_by(user_id=user_id)
    item = base.filter(func.lower(InventoryItem.name) == needle).order_by(InventoryItem.id).first()
    if item is None:
        item = (
            base.filter(func.lower(InventoryItem.name).contains(needle))
            .order_by(InventoryItem.id)
            .first()
        )
    return item


def add_stock(user_id: int, product_name: str, quantity: int) -> InventoryItem:
    """Increase stock of the named product.  Commits."""
    quantity = safe_int(quantity, default=0)
    if quantity < 1:
        raise ValidationError(detail="quantity must be at least 1")
    item = find_item_by_name(user_id, product_name)
    if item is None:
        raise ValidationError(Msg.PRODUCT_NOT_FOUND, name=product_name)
    item.quantity = InventoryItem.quantity + quantity
    log_action("add_stock", "inventory_item", item.id, f"+{quantity}", user_id=user_id)
    db.session.commit()
    logger.info("Added %s units to item %s for user %s", quantity, item.id, user_id)
    return item


def low_stock_query(user_id: int, threshold: int):
    return (
        InventoryItem.query.filter_by(user_id=user_id)
        .filter(InventoryItem.quantity <= threshold)
        .order_by(InventoryItem.quantity, InventoryItem.name)
    )


def item_to_dict(item: InventoryItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "sku": item.sku,
        "category": item.category,
        "size": item.size,
        "color": item.color,
        "hsn_code": item.hsn_code,
        "cost_price": money_str(item.cost_price),
        "price": money_str(item.price),
        "gst_rate": money_str(item.gst_rate),
        "quantity": item.quantity,
        "sales_count": item.sales_count or 0,
        "last_sold_at": item.last_sold_at.isoformat() if item.last_sold_at else None,
    }
