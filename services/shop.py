"""Shop settings: the per-request view of the owner's shop profile."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Optional

from flask import current_app, g, has_app_context

from extensions import db
from models import VALID_LANGUAGES, ShopProfile, User
from services.audit import log_action
from services.errors import ValidationError

logger = logging.getLogger(__name__)

_GSTIN_RE = re.compile(r"^[0-9A-Z]{15}$")

PROFILE_FIELDS = (
    "shop_name",
    "gstin",
    "address",
    "state",
    "phone",
    "email",
    "business_type",
    "invoice_prefix",
    "auto_share",
)
USER_FIELDS = ("owner_name", "language")


@dataclass(frozen=True)
class ShopSettings:
    shop_name: str = ""
    gstin: str = ""
    address: str = ""
    state: str = ""
    phone: str = ""
    email: str = ""
    business_type: str = "retail"
    invoice_prefix: str = "INV"
    auto_share: bool = False
    owner_name: str = ""
    language: str = "en"

    def to_dict(self) -> dict:
        return asdict(self)


def _default_prefix() -> str:
    if has_app_context():
        app_cfg = current_app.config.get("APP_CONFIG")
        if app_cfg is not None:
            return app_cfg.invoice_prefix
    return "INV"


def load_shop_settings(user_id: int) -> ShopSettings:
    """Build settings from the profile row (and the owner's account)."""
    user = db.session.get(User, user_id)
    profile = ShopProfile.query.filter_by(user_id=user_id).first()
    return ShopSettings(
        shop_name=(profile.shop_name if profile else None) or "",
        gstin=(profile.gstin if profile else None) or "",
        address=(profile.address if profile else None) or "",
        state=(profile.state if profile else None) or "",
        phone=(profile.phone if profile else None) or (user.phone if user else ""),
        email=(profile.email if profile else None) or "",
        business_type=(profile.business_type if profile else None) or "retail",
        invoice_prefix=(profile.invoice_prefix if profile else None) or _default_prefix(),
        auto_share=bool(profile.auto_share) if profile else False,
        owner_name=(user.owner_name if user else None) or "",
        language=(user.language if user else None) or "en",
    )


def get_shop_settings(user_id: Optional[int] = None) -> ShopSettings:
    """Return the request's cached settings, loading them on first use."""
    cached = getattr(g, "shop_settings", None)
    if cached is not None and user_id in (None, getattr(g, "owner_id", None)):
        return cached
    owner_id = user_id if user_id is not None else getattr(g, "owner_id", None)
    if owner_id is None:
        return ShopSettings(invoice_prefix=_default_prefix())
    settings = load_shop_settings(owner_id)
    if owner_id == getattr(g, "owner_id", None):
        g.shop_settings = settings
    return settings


def update_shop_settings(user_id: int, changes: dict) -> ShopSettings:
    """Apply a partial update and refresh the cached settings.

    Unknown keys are ignored.  Commits.
    """
    profile = ShopProfile.query.filter_by(user_id=user_id).first()
    if profile is None:
        profile = ShopProfile(user_id=user_id)
        db.session.add(profile)
    user = db.session.get(User, user_id)

    applied = []
    for field in PROFILE_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == "auto_share":
            value = bool(value)
        else:
            value = (str(value).strip() if value is not None else "") or None
        if field == "gstin" and value:
            value = value.upper()
            if not _GSTIN_RE.match(value):
                raise ValidationError(detail="gstin must be 15 letters or digits")
        if field == "invoice_prefix" and value and not re.match(r"^[A-Za-z0-9/]{1,20}$", value):
            raise ValidationError(detail="invoice_prefix may only hold letters, digits and /")
        setattr(profile, field, value)
        applied.append(field)

    if "language" in changes:
        if changes["language"] not in VALID_LANGUAGES:
            raise ValidationError(detail="language must be 'en' or 'hi'")
        user.language = changes["language"]
        applied.append("language")
    if "owner_name" in changes:
        user.owner_name = (changes["owner_name"] or "").strip() or None
        applied.append("owner_name")

    db.session.flush()
    log_action("update", "shop_profile", profile.id, ", ".join(applied))
    db.session.commit()

    settings = load_shop_settings(user_id)
    if getattr(g, "owner_id", None) == user_id:
        g.shop_settings = settings
    logger.info("Updated shop settings for user %s: %s", user_id, applied)
    return settings
