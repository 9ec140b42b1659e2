"""Plans, feature tiers and the demo-usage gate."""

from __future__ import annotations

import calendar
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import wraps
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    DEMO_LIMITS,
    USAGE_COLUMNS,
    VALID_BILLING_CYCLES,
    DemoUsage,
    UserSubscription,
)
from services.audit import log_action
from services.errors import DemoLimitReached, FeatureLocked, ValidationError
from services.i18n import Msg
from services.ownership import require_owner
from utils import as_utc

logger = logging.getLogger(__name__)

# Prices in INR per billing cycle.
PLANS: dict[str, dict[str, Decimal]] = {
    "basic": {"monthly": Decimal("219"), "yearly": Decimal("2199")},
    "pro": {"monthly": Decimal("349"), "yearly": Decimal("3499")},
}
AI_ADDON_PRICE = Decimal("99")

# Feature -> plans that unlock it.  "ai" is unlocked by the add-on instead.
FEATURES: dict[str, frozenset[str]] = {
    "staff": frozenset({"pro"}),
    "gst_invoice": frozenset({"pro"}),
    "reports": frozenset({"basic", "pro"}),
    "ai": frozenset({"basic", "pro"}),
}


@dataclass
class LimitStatus:
    kind: str
    allowed: bool
    current: int
    max: Optional[int]

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Read-or-create
# ---------------------------------------------------------------------------

def get_or_create_subscription(user_id: int) -> UserSubscription:
    sub = UserSubscription.query.filter_by(user_id=user_id).first()
    if sub is None:
        sub = UserSubscription(user_id=user_id, plan_type="demo", is_active=True)
        db.session.add(sub)
        db.session.flush()
        logger.info("Created demo subscription for user %s", user_id)
    return sub


def get_or_create_usage(user_id: int) -> DemoUsage:
    usage = DemoUsage.query.filter_by(user_id=user_id).first()
    if usage is None:
        usage = DemoUsage(user_id=user_id)
        db.session.add(usage)
        db.session.flush()
    return usage


def is_demo(sub: Optional[UserSubscription]) -> bool:
    """No subscription at all counts as demo."""
    return sub is None or sub.plan_type == "demo"


def is_current(sub: Optional[UserSubscription]) -> bool:
    """True for a paid plan that is active and not past its expiry."""
    if is_demo(sub) or not sub.is_active:
        return False
    expires = as_utc(sub.expires_at)
    return expires is None or expires > datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Demo gate
# ---------------------------------------------------------------------------

def _check_kind(kind: str) -> str:
    if kind not in DEMO_LIMITS:
        raise ValueError(f"Unknown usage kind: {kind}")
    return USAGE_COLUMNS[kind]


def check_limit(user_id: int, kind: str) -> LimitStatus:
    """Decide whether the user may perform one more *kind* action.

    Paid plans are never limited, even after expiry.  A database error
    while reading is logged and treated as allowed.
    """
    column = _check_kind(kind)
    try:
        sub = get_or_create_subscription(user_id)
        usage = get_or_create_usage(user_id)
    except SQLAlchemyError:
        logger.exception("Usage lookup failed for user %s; allowing %s", user_id, kind)
        db.session.rollback()
        return LimitStatus(kind=kind, allowed=True, current=0, max=None)

    current = getattr(usage, column) or 0
    if not is_demo(sub):
        return LimitStatus(kind=kind, allowed=True, current=current, max=None)
    ceiling = DEMO_LIMITS[kind]
    return LimitStatus(kind=kind, allowed=current < ceiling, current=current, max=ceiling)


def require_limit(user_id: int, kind: str, amount: int = 1) -> LimitStatus:
    """Raise ``DemoLimitReached`` unless *amount* more actions fit."""
    status = check_limit(user_id, kind)
    if status.max is not None and status.current + amount > status.max:
        raise DemoLimitReached(kind, status.current, status.max)
    return status


def increment_usage(user_id: int, kind: str, amount: int = 1) -> None:
    """Record *amount* completed actions.  No-op outside the demo plan.

    Does not commit.  A database error rolls back the session and propagates.
    """
    column = _check_kind(kind)
    try:
        sub = get_or_create_subscription(user_id)
        if not is_demo(sub):
            return
        usage = get_or_create_usage(user_id)
        setattr(usage, column, getattr(DemoUsage, column) + amount)
        db.session.flush()
        db.session.refresh(usage)
    except SQLAlchemyError:
        logger.exception("Could not increment %s usage for user %s", kind, user_id)
        db.session.rollback()
        raise


def consume_usage(user_id: int, kind: str, amount: int = 1) -> Optional[int]:
    """Atomically add *amount* to the demo counter if it stays under the ceiling.

    One conditional UPDATE; raises ``DemoLimitReached`` when no row
    qualifies.  Returns the new counter value, or None for paid plans.
    Runs inside the caller's transaction and does not commit.
    """
    column_name = _check_kind(kind)
    sub = get_or_create_subscription(user_id)
    if not is_demo(sub):
        return None

    usage = get_or_create_usage(user_id)
    column = getattr(DemoUsage, column_name)
    ceiling = DEMO_LIMITS[kind]
    result = db.session.execute(
        update(DemoUsage)
        .where(DemoUsage.user_id == user_id, column + amount <= ceiling)
        .values({column_name: column + amount})
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(usage)
    current = getattr(usage, column_name)
    if result.rowcount == 0:
        raise DemoLimitReached(kind, current, ceiling)
    return current


# ---------------------------------------------------------------------------
# Features & plans
# ---------------------------------------------------------------------------

def has_feature(user_id: int, feature: str) -> bool:
    if feature not in FEATURES:
        raise ValueError(f"Unknown feature: {feature}")
    sub = get_or_create_subscription(user_id)
    if not is_current(sub):
        return False
    if feature == "ai" and not sub.ai_addon:
        return False
    return sub.plan_type in FEATURES[feature]


def require_feature(user_id: int, feature: str) -> None:
    if not has_feature(user_id, feature):
        raise FeatureLocked(feature)


def feature_required(feature: str):
    """Route decorator: 401 without a session, 403 unless the plan has *feature*."""

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            require_feature(require_owner(), feature)
            return f(*args, **kwargs)

        return decorated

    return decorator


def ensure_account_records(user_id: int) -> bool:
    """Read-or-create the subscription and usage rows.  True if any was created."""
    had_sub = UserSubscription.query.filter_by(user_id=user_id).count() > 0
    had_usage = DemoUsage.query.filter_by(user_id=user_id).count() > 0
    if had_sub and had_usage:
        return False
    get_or_create_subscription(user_id)
    get_or_create_usage(user_id)
    return True


def plan_price(plan: str, cycle: str, ai_addon: bool = False) -> Decimal:
    if plan not in PLANS or cycle not in VALID_BILLING_CYCLES:
        raise ValidationError(Msg.INVALID_PLAN)
    price = PLANS[plan][cycle]
    if ai_addon:
        price += AI_ADDON_PRICE
    return price


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def activate_plan(
    user_id: int,
    plan: str,
    cycle: str = "monthly",
    ai_addon: bool = False,
) -> UserSubscription:
    """Apply a completed checkout: switch plan and start a new period."""
    amount = plan_price(plan, cycle, ai_addon)
    now = datetime.now(timezone.utc)
    expires = _add_months(now, 12 if cycle == "yearly" else 1)

    sub = get_or_create_subscription(user_id)
    sub.plan_type = plan
    sub.billing_cycle = cycle
    sub.ai_addon = bool(ai_addon)
    sub.is_active = True
    sub.started_at = now
    sub.expires_at = expires
    log_action(
        "activate_plan",
        "subscription",
        sub.id,
        f"{plan}/{cycle} ai_addon={bool(ai_addon)} amount={amount}",
        user_id=user_id,
    )
    db.session.commit()
    logger.info("Activated %s (%s) for user %s until %s", plan, cycle, user_id, expires.date())
    return sub


def check_subscription_expiry() -> int:
    """Mark paid plans past ``expires_at`` inactive.  Returns how many changed."""
    now = datetime.now(timezone.utc)
    expired = 0
    for sub in UserSubscription.query.filter(
        UserSubscription.plan_type != "demo",
        UserSubscription.is_active.is_(True),
        UserSubscription.expires_at.isnot(None),
    ).all():
        if as_utc(sub.expires_at) < now:
            sub.is_active = False
            expired += 1
            logger.info("Subscription expired for user %s (%s)", sub.user_id, sub.plan_type)
    db.session.commit()
    return expired


def subscription_status(user_id: int) -> dict:
    sub = get_or_create_subscription(user_id)
    return {
        "plan_type": sub.plan_type,
        "billing_cycle": sub.billing_cycle,
        "ai_addon": bool(sub.ai_addon),
        "is_active": bool(sub.is_active),
        "started_at": sub.started_at.isoformat() if sub.started_at else None,
        "expires_at": sub.expires_at.isoformat() if sub.expires_at else None,
        "is_demo": is_demo(sub),
        "is_pro": sub.plan_type == "pro" and is_current(sub),
        "usage": {kind: check_limit(user_id, kind).to_dict() for kind in DEMO_LIMITS},
        "features": {name: has_feature(user_id, name) for name in FEATURES},
    }
