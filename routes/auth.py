"""Authentication routes: owner registration, owner and staff login."""

from flask import Blueprint, jsonify, request, session
from flask_wtf.csrf import generate_csrf

from extensions import db, limiter
from models import permission_names
from services.audit import log_action
from services.auth import (
    authenticate,
    authenticate_staff,
    current_permissions,
    get_current_staff,
    get_current_user,
    login_required,
    register_account,
)
from services.errors import ShopError
from services.i18n import Msg
from services.shop import get_shop_settings
from services.subscription import subscription_status

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


class InvalidCredentials(ShopError):
    status_code = 401
    default_msg = Msg.INVALID_CREDENTIALS


def _start_session(**values):
    session.clear()
    session.update(values)
    session.permanent = True


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


@auth_bp.route("/register", methods=["POST"])
@limiter.limit("5 per minute")
def register():
    data = request.get_json(silent=True) or {}
    user = register_account(
        data.get("phone", ""),
        data.get("password", ""),
        data.get("shop_name", ""),
        data.get("owner_name", ""),
        gstin=data.get("gstin", ""),
        business_type=data.get("business_type") or "retail",
        language=data.get("language") or "en",
    )
    _start_session(user_id=user.id)
    return jsonify({"id": user.id, "phone": user.phone, "email": user.email}), 201


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    data = request.get_json(silent=True) or {}
    user = authenticate(data.get("phone", ""), data.get("password", ""))
    if user is None:
        raise InvalidCredentials()
    _start_session(user_id=user.id)
    log_action("login", "user", user.id, "owner logged in", user_id=user.id)
    db.session.commit()
    return jsonify({"id": user.id, "phone": user.phone})


@auth_bp.route("/staff-login", methods=["POST"])
@limiter.limit("5 per minute")
def staff_login():
    data = request.get_json(silent=True) or {}
    staff = authenticate_staff(data.get("username", ""), data.get("password", ""))
    if staff is None:
        raise InvalidCredentials()
    _start_session(staff_id=staff.id)
    log_action("login", "staff", staff.id, "staff logged in", user_id=staff.user_id)
    db.session.commit()
    return jsonify({"id": staff.id, "name": staff.name, "owner_id": staff.user_id})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"ok": True})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    user = get_current_user()
    staff = get_current_staff()
    status = subscription_status(user.id)
    db.session.commit()
    return jsonify(
        {
            "user": {"id": user.id, "phone": user.phone, "email": user.email},
            "staff": {"id": staff.id, "name": staff.name} if staff else None,
            "permissions": permission_names(current_permissions()),
            "settings": get_shop_settings().to_dict(),
            "subscription": status,
        }
    )
