"""Utility / helper functions used across the application."""

from __future__ import annotations

import datetime
import logging
from datetime import timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

logger = logging.getLogger(__name__)

_Q2 = Decimal("0.01")


# ---------------------------------------------------------------------------
# Datetime helpers
# ---------------------------------------------------------------------------

def utc_now() -> datetime.datetime:
    """Return current UTC datetime.  Used as SQLAlchemy column default."""
    return datetime.datetime.now(timezone.utc)


def as_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_date(raw: Optional[str]) -> Optional[datetime.date]:
    if not raw:
        return None
    try:
        return datetime.datetime.strptime(raw, "%Y-%m-%d").date()
    except (ValueError, TypeError):
        logger.warning("Could not parse date: %r", raw)
        return None


# ---------------------------------------------------------------------------
# Safe type conversions
# ---------------------------------------------------------------------------

def safe_int(value, default: int = 0) -> int:
    """Safely convert *value* to ``int``, returning *default* on failure."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        logger.warning("Could not convert %r to int, using default %s", value, default)
        return default


def safe_decimal(value, default: str = "0") -> Decimal:
    """Convert *value* to ``Decimal``; currency symbols and commas are stripped."""
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    text = str(value).replace("₹", "").replace("Rs.", "").replace("Rs", "")
    text = text.replace(",", "").strip()
    try:
        return Decimal(text)
    except (InvalidOperation, ValueError):
        logger.warning("Could not convert %r to Decimal, using default %s", value, default)
        return Decimal(default)


def money(value) -> Decimal:
    """Round to two decimal places, half up."""
    return Decimal(value).quantize(_Q2, rounding=ROUND_HALF_UP)


def money_str(value) -> str:
    return str(money(value if value is not None else 0))
