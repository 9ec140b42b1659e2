"""Authentication and authorization services."""

from __future__ import annotations

import logging
import re
from functools import wraps
from typing import Optional

from flask import abort, current_app, g, has_request_context, request
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db
from models import (
    ALL_PERMISSIONS,
    VALID_LANGUAGES,
    Permission,
    ShopProfile,
    Staff,
    User,
)
from services.errors import PermissionDenied, ValidationError
from services.i18n import Msg

logger = logging.getLogger(__name__)

EMAIL_DOMAIN = "revonn.app"
MIN_PASSWORD_LENGTH = 6

_NON_DIGITS = re.compile(r"\D+")


def get_current_user() -> Optional[User]:
    """Return the shop owner the request acts for, from ``flask.g``."""
    return getattr(g, "current_user", None)


def get_current_staff() -> Optional[Staff]:
    """Return the logged-in staff member, or None for owner sessions."""
    return getattr(g, "current_staff", None)


def current_permissions() -> Permission:
    if get_current_user() is None:
        return Permission(0)
    staff = get_current_staff()
    if staff is None:
        return ALL_PERMISSIONS
    return staff.permission_flags


def current_language() -> str:
    """``?lang=`` if valid, else the owner's language, else the app default."""
    lang = request.args.get("lang") if has_request_context() else None
    if lang in VALID_LANGUAGES:
        return lang
    user = get_current_user()
    if user is not None and user.language in VALID_LANGUAGES:
        return user.language
    app_cfg = current_app.config.get("APP_CONFIG")
    return app_cfg.default_language if app_cfg else "en"


def login_required(f):
    """Decorator that answers 401 if nobody is authenticated."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not get_current_user():
            abort(401)
        return f(*args, **kwargs)

    return decorated


def permission_required(permission: Permission):
    """Decorator that checks the session holds *permission*.

    Owners hold every permission; staff hold their stored flags.
    """

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            if not get_current_user():
                abort(401)
            if permission not in current_permissions():
                raise PermissionDenied()
            return f(*args, **kwargs)

        return decorated

    return decorator


def owner_only(f):
    """Decorator for actions staff may never perform (plans, staff records)."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not get_current_user():
            abort(401)
        if get_current_staff() is not None:
            raise PermissionDenied()
        return f(*args, **kwargs)

    return decorated


def normalize_phone(raw) -> str:
    return _NON_DIGITS.sub("", str(raw or ""))


def phone_to_email(phone: str) -> str:
    """Accounts are keyed by phone; the e-mail is derived from it."""
    return f"{normalize_phone(phone)}@{EMAIL_DOMAIN}"


def register_account(
    phone: str,
    password: str,
    shop_name: str,
    owner_name: str = "",
    *,
    gstin: str = "",
    business_type: str = "retail",
    language: str = "en",
) -> User:
    """Create a user with shop profile, demo subscription and usage counters."""
    from services.subscription import get_or_create_subscription, get_or_create_usage

    phone = normalize_phone(phone)
    if len(phone) < 10:
        raise ValidationError(detail="phone must have at least 10 digits")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            detail=f"password must have at least {MIN_PASSWORD_LENGTH} characters"
        )
    if not (shop_name or "").strip():
        raise ValidationError(detail="shop_name is required")
    if User.query.filter_by(phone=phone).first():
        raise ValidationError(Msg.PHONE_TAKEN)

    user = User(
        phone=phone,
        email=phone_to_email(phone),
        password_hash=generate_password_hash(password),
        owner_name=(owner_name or "").strip() or None,
        language=language if language in VALID_LANGUAGES else "en",
    )
    db.session.add(user)
    db.session.flush()
    db.session.add(
        ShopProfile(
            user_id=user.id,
            shop_name=shop_name.strip(),
            gstin=(gstin or "").strip().upper() or None,
            phone=phone,
            business_type=business_type or "retail",
        )
    )
    get_or_create_subscription(user.id)
    get_or_create_usage(user.id)
    db.session.commit()
    logger.info("Registered shop account %s", user.id)
    return user


def authenticate(phone: str, password: str) -> Optional[User]:
    """Return the owner for *phone*/*password*, or None."""
    user = User.query.filter_by(phone=normalize_phone(phone)).first()
    if user and user.is_active and check_password_hash(user.password_hash, password or ""):
        return user
    return None


def authenticate_staff(username: str, password: str) -> Optional[Staff]:
    """Return the active staff member for *username*/*password*, or None."""
    staff = Staff.query.filter_by(username=(username or "").strip()).first()
    if (
        staff
        and staff.is_active
        and staff.password_hash
        and check_password_hash(staff.password_hash, password or "")
    ):
        return staff
    return None
