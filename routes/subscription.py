"""Plan, checkout and demo-usage routes."""

from flask import Blueprint, abort, jsonify, request

from extensions import db
from models import DEMO_LIMITS
from services.auth import current_language, login_required, owner_only
from services.i18n import Msg, translate
from services.ownership import require_owner
from services.subscription import (
    AI_ADDON_PRICE,
    FEATURES,
    PLANS,
    activate_plan,
    check_limit,
    plan_price,
    subscription_status,
)

subscription_bp = Blueprint("subscription", __name__, url_prefix="/api/subscription")


@subscription_bp.route("/plans", methods=["GET"])
def list_plans():
    return jsonify(
        {
            "plans": {
                name: {cycle: str(price) for cycle, price in prices.items()}
                for name, prices in PLANS.items()
            },
            "ai_addon": str(AI_ADDON_PRICE),
            "demo_limits": DEMO_LIMITS,
            "features": {name: sorted(plans) for name, plans in FEATURES.items()},
        }
    )


@subscription_bp.route("", methods=["GET"])
@login_required
def show_subscription():
    status = subscription_status(require_owner())
    db.session.commit()
    return jsonify(status)


@subscription_bp.route("/limits/<kind>", methods=["GET"])
@login_required
def show_limit(kind: str):
    if kind not in DEMO_LIMITS:
        abort(404)
    status = check_limit(require_owner(), kind)
    db.session.commit()
    return jsonify(status.to_dict())


@subscription_bp.route("/checkout", methods=["POST"])
@owner_only
def checkout():
    """Complete a checkout.  Payment capture happens outside this service."""
    data = request.get_json(silent=True) or {}
    plan = data.get("plan", "")
    cycle = data.get("billing_cycle") or "monthly"
    ai_addon = bool(data.get("ai_addon"))
    amount = plan_price(plan, cycle, ai_addon)
    sub = activate_plan(require_owner(), plan, cycle, ai_addon)
    return jsonify(
        {
            "plan_type": sub.plan_type,
            "billing_cycle": sub.billing_cycle,
            "ai_addon": sub.ai_addon,
            "amount": str(amount),
            "expires_at": sub.expires_at.isoformat(),
            "message": translate(Msg.PLAN_ACTIVATED, current_language(), plan=plan),
        }
    )
