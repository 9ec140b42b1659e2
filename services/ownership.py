"""Row ownership and data isolation between shop owners."""

from __future__ import annotations

from typing import Optional

from flask import abort, g, has_request_context
from sqlalchemy import event

from extensions import db


def get_current_owner_id() -> Optional[int]:
    """Return the user id whose data the request acts on, or None.

    For a staff session this is the employing shop owner.
    """
    if not has_request_context():
        return None
    return getattr(g, "owner_id", None)


def require_owner() -> int:
    """Return the current owner id or abort with 401."""
    owner_id = get_current_owner_id()
    if owner_id is None:
        abort(401)
    return owner_id


def owner_query(model):
    """Return a query on *model* filtered to the current owner.

    Usage::

        items = owner_query(InventoryItem).order_by(InventoryItem.name).all()
    """
    return model.query.filter_by(user_id=require_owner())


def stamp_owner(obj):
    """Set ``user_id`` on *obj* to the current owner.  Returns *obj*."""
    if hasattr(obj, "user_id"):
        obj.user_id = require_owner()
    return obj


def owner_get_or_404(model, obj_id):
    """Fetch a row by primary key, 404 unless it belongs to the current owner."""
    owner_id = require_owner()
    obj = db.session.get(model, obj_id)
    if obj is None or getattr(obj, "user_id", owner_id) != owner_id:
        abort(404)
    return obj


class OwnershipSecurityError(Exception):
    """Raised when a write would touch another owner's rows."""


def _enforce_owner_on_flush(session, flush_context):
    owner_id = get_current_owner_id()
    if owner_id is None:
        return

    for obj in list(session.new) + list(session.dirty):
        # The account row itself carries no user_id column.
        obj_owner = getattr(obj, "user_id", None)
        if obj_owner is not None and obj_owner != owner_id:
            raise OwnershipSecurityError(
                f"Cross-owner write blocked: {type(obj).__name__} "
                f"has user_id={obj_owner}, active owner is {owner_id}"
            )


def register_ownership_guards(app):
    """Register the after_flush listener.  Call once during app init."""
    event.listen(db.session, "after_flush", _enforce_owner_on_flush)
