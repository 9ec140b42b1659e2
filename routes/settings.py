"""Shop settings routes."""

from flask import Blueprint, jsonify, request

from models import Permission
from services.auth import current_language, login_required, permission_required
from services.i18n import Msg, translate
from services.ownership import require_owner
from services.shop import get_shop_settings, update_shop_settings

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.route("", methods=["GET"])
@login_required
def show_settings():
    return jsonify(get_shop_settings().to_dict())


@settings_bp.route("", methods=["PATCH"])
@permission_required(Permission.SETTINGS)
def edit_settings():
    data = request.get_json(silent=True) or {}
    settings = update_shop_settings(require_owner(), data)
    return jsonify(
        {
            "settings": settings.to_dict(),
            "message": translate(Msg.SETTINGS_SAVED, current_language()),
        }
    )
