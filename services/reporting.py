"""Sales reports and dashboard figures."""

from __future__ import annotations

import datetime
import logging
from decimal import Decimal

from sqlalchemy import func

from extensions import db
from models import InventoryItem, Invoice, InvoiceItem
from services.inventory import item_to_dict, low_stock_query
from utils import money_str

logger = logging.getLogger(__name__)

PERIODS = ("today", "week", "month")
TOP_SELLING_LIMIT = 5


def period_start(period: str, today: datetime.date | None = None) -> datetime.datetime:
    """Start of the period: today, the last seven days, or this month."""
    today = today or datetime.datetime.now(datetime.timezone.utc).date()
    if period == "today":
        start = today
    elif period == "week":
        start = today - datetime.timedelta(days=6)
    elif period == "month":
        start = today.replace(day=1)
    else:
        raise ValueError(f"Unknown period: {period}")
    return datetime.datetime.combine(start, datetime.time.min)


def _dec(value) -> Decimal:
    return Decimal(str(value or 0))


def sales_summary(user_id: int, period: str = "today", low_stock_threshold: int = 5) -> dict:
    start = period_start(period)
    totals = (
        db.session.query(
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total), 0),
            func.coalesce(func.sum(Invoice.tax_amount), 0),
            func.coalesce(func.sum(Invoice.amount_paid), 0),
            func.coalesce(func.sum(Invoice.due_amount), 0),
            func.coalesce(func.sum(Invoice.discount), 0),
        )
        .filter(Invoice.user_id == user_id, Invoice.created_at >= start)
        .one()
    )
    invoice_count, total_sales, tax, paid, dues, discounts = totals

    line_rows = (
        db.session.query(
            InvoiceItem.name,
            func.sum(InvoiceItem.quantity),
            func.sum(InvoiceItem.line_total),
            func.sum(InvoiceItem.cost_price * InvoiceItem.quantity),
        )
        .join(Invoice, InvoiceItem.invoice_id == Invoice.id)
        .filter(Invoice.user_id == user_id, Invoice.created_at >= start)
        .group_by(InvoiceItem.name)
        .all()
    )
    items_sold = sum(int(qty or 0) for _, qty, _, _ in line_rows)
    line_revenue = sum((_dec(revenue) for _, _, revenue, _ in line_rows), Decimal("0"))
    cost = sum((_dec(c) for _, _, _, c in line_rows), Decimal("0"))
    # Discounts reduce realised revenue; costs are the stored cost prices.
    gross_profit = line_revenue - _dec(discounts) - cost

    top = sorted(line_rows, key=lambda row: (-(row[1] or 0), row[0]))[:TOP_SELLING_LIMIT]
    low_stock = low_stock_query(user_id, low_stock_threshold).limit(20).all()

    return {
        "period": period,
        "since": start.date().isoformat(),
        "invoice_count": int(invoice_count or 0),
        "total_sales": money_str(_dec(total_sales)),
        "items_sold": items_sold,
        "tax_collected": money_str(_dec(tax)),
        "cash_in": money_str(_dec(paid)),
        "dues": money_str(_dec(dues)),
        "gross_profit": money_str(gross_profit),
        "top_selling": [
            {"name": name, "quantity": int(qty or 0), "revenue": money_str(_dec(revenue))}
            for name, qty, revenue, _ in top
        ],
        "low_stock": [item_to_dict(item) for item in low_stock],
    }


def inventory_value(user_id: int) -> dict:
    row = (
        db.session.query(
            func.count(InventoryItem.id),
            func.coalesce(func.sum(InventoryItem.quantity), 0),
            func.coalesce(func.sum(InventoryItem.price * InventoryItem.quantity), 0),
            func.coalesce(func.sum(InventoryItem.cost_price * InventoryItem.quantity), 0),
        )
        .filter(InventoryItem.user_id == user_id)
        .one()
    )
    return {
        "items": int(row[0] or 0),
        "units": int(row[1] or 0),
        "stock_value": money_str(_dec(row[2])),
        "stock_cost": money_str(_dec(row[3])),
    }
