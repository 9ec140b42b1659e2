"""SQLAlchemy models, plan constants and staff permission flags."""

from __future__ import annotations

import enum

from extensions import db
from utils import utc_now

# ---------------------------------------------------------------------------
# Plans, limits and enumerations
# ---------------------------------------------------------------------------

VALID_BILLING_CYCLES = {"monthly", "yearly"}
VALID_PAYMENT_MODES = {"cash", "card", "online", "due"}
VALID_DISCOUNT_TYPES = {"flat", "percent"}
VALID_INVOICE_STATUSES = {"completed", "partial"}
VALID_ATTENDANCE_STATUSES = {"present", "absent", "half-day"}
VALID_LANGUAGES = {"en", "hi"}

# Demo plan ceilings, keyed by gate kind.
DEMO_LIMITS: dict[str, int] = {
    "bills": 5,
    "inventory": 10,
    "customers": 10,
}

# Gate kind -> DemoUsage column.
USAGE_COLUMNS: dict[str, str] = {
    "bills": "bills_created",
    "inventory": "inventory_items",
    "customers": "customers_added",
}


class Permission(enum.Flag):
    """Closed set of staff permission flags.  Shop owners hold all of them."""
    BILLING = 1
    INVENTORY = 2
    CUSTOMERS = 4
    REPORTS = 8
    SETTINGS = 16


ALL_PERMISSIONS = (
    Permission.BILLING
    | Permission.INVENTORY
    | Permission.CUSTOMERS
    | Permission.REPORTS
    | Permission.SETTINGS
)


def permissions_from_names(names) -> Permission:
    """Build a flag set from names like ``["billing", "reports"]``.

    Raises ``KeyError`` for names outside the closed set.
    """
    flags = Permission(0)
    for name in names or []:
        flags |= Permission[str(name).strip().upper()]
    return flags


def permission_names(flags: Permission) -> list[str]:
    return [p.name.lower() for p in Permission if p in flags]


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

class User(db.Model):
    """A shop owner account.  Owns every other row through ``user_id``."""
    id = db.Column(db.Integer, primary_key=True)
    phone = db.Column(db.String(20), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    owner_name = db.Column(db.String(120))
    language = db.Column(db.String(5), default="en")
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    profile = db.relationship(
        "ShopProfile", backref="user", uselist=False, cascade="all, delete-orphan"
    )


class ShopProfile(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)
    shop_name = db.Column(db.String(120))
    gstin = db.Column(db.String(20))
    address = db.Column(db.String(255))
    state = db.Column(db.String(60))
    phone = db.Column(db.String(20))
    email = db.Column(db.String(120))
    business_type = db.Column(db.String(20), default="retail")
    invoice_prefix = db.Column(db.String(20))
    auto_share = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)


# ---------------------------------------------------------------------------
# Subscription & demo usage
# ---------------------------------------------------------------------------

class UserSubscription(db.Model):
    """Plan record, created lazily as ``demo`` on first access."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)
    plan_type = db.Column(db.String(20), nullable=False, default="demo")
    ai_addon = db.Column(db.Boolean, nullable=False, default=False)
    billing_cycle = db.Column(db.String(20))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    started_at = db.Column(db.DateTime)
    expires_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)


class DemoUsage(db.Model):
    """Per-user demo counters.  Only ever incremented."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)
    bills_created = db.Column(db.Integer, nullable=False, default=0)
    inventory_items = db.Column(db.Integer, nullable=False, default=0)
    customers_added = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)


# ---------------------------------------------------------------------------
# Inventory & customers
# ---------------------------------------------------------------------------

class InventoryItem(db.Model):
    __tablename__ = "inventory_item"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    sku = db.Column(db.String(60))
    category = db.Column(db.String(60))
    size = db.Column(db.String(30))
    color = db.Column(db.String(30))
    hsn_code = db.Column(db.String(20))
    cost_price = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)
    price = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    gst_rate = db.Column(db.Numeric(5, 2, asdecimal=True), default=18)
    sales_count = db.Column(db.Integer, nullable=False, default=0)
    last_sold_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.Index("ix_inventory_item_name", "user_id", "name"),
        db.Index("ix_inventory_item_sku", "user_id", "sku"),
    )


class Customer(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(20))
    email = db.Column(db.String(120))
    address = db.Column(db.String(255))
    # Running sums updated at invoice time, never recomputed.
    total_purchases = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    total_dues = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    invoices = db.relationship("Invoice", backref="customer", lazy="dynamic")

    __table_args__ = (
        db.Index("ix_customer_phone", "user_id", "phone"),
    )


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

class Invoice(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True, nullable=False)
    invoice_number = db.Column(db.String(40), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer.id"))
    customer_name = db.Column(db.String(120))
    customer_phone = db.Column(db.String(20))
    # Embedded copy of the lines as billed.
    items = db.Column(db.JSON, nullable=False, default=list)
    subtotal = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)
    discount = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)
    discount_type = db.Column(db.String(10), default="percent")
    discount_value = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)
    tax_amount = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)
    total = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)
    payment_mode = db.Column(db.String(20), default="cash")
    amount_paid = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)
    due_amount = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)
    status = db.Column(db.String(20), default="completed")
    source = db.Column(db.String(20), default="ui")
    created_at = db.Column(db.DateTime, default=utc_now)

    lines = db.relationship("InvoiceItem", backref="invoice", cascade="all, delete-orphan")

    __table_args__ = (
        db.UniqueConstraint("user_id", "invoice_number", name="uq_invoice_number_user"),
        db.Index("ix_invoice_created_at", "user_id", "created_at"),
    )


class InvoiceItem(db.Model):
    """Normalized invoice line, written in the same transaction as the invoice."""
    __tablename__ = "invoice_item"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True, nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoice.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("inventory_item.id"))
    name = db.Column(db.String(200), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)
    tax_rate = db.Column(db.Numeric(5, 2, asdecimal=True), default=18)
    line_total = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)
    cost_price = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)

    product = db.relationship("InventoryItem")


# ---------------------------------------------------------------------------
# Staff
# ---------------------------------------------------------------------------

class Staff(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(20))
    role = db.Column(db.String(30), default="staff")
    salary = db.Column(db.Numeric(12, 2, asdecimal=True), default=0)
    username = db.Column(db.String(80), unique=True)
    password_hash = db.Column(db.String(255))
    permissions = db.Column(db.Integer, nullable=False, default=Permission.BILLING.value)
    is_active = db.Column(db.Boolean, default=True)
    join_date = db.Column(db.Date)
    created_at = db.Column(db.DateTime, default=utc_now)

    attendance = db.relationship(
        "StaffAttendance", backref="staff", cascade="all, delete-orphan", lazy="dynamic"
    )

    @property
    def permission_flags(self) -> Permission:
        return Permission(self.permissions or 0)


class StaffAttendance(db.Model):
    __tablename__ = "staff_attendance"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True, nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False)
    date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="present")
    check_in = db.Column(db.DateTime)
    check_out = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)

    __table_args__ = (
        db.UniqueConstraint("staff_id", "date", name="uq_staff_attendance_day"),
    )


# ---------------------------------------------------------------------------
# Numbering & audit
# ---------------------------------------------------------------------------

class NumberSequence(db.Model):
    """Sequence counters per owner, entity type and scope."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True, nullable=False)
    entity_type = db.Column(db.String(40), nullable=False)
    scope_key = db.Column(db.String(120), default="")
    last_value = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        db.UniqueConstraint("user_id", "entity_type", "scope_key", name="uq_number_sequence"),
    )


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"))
    action = db.Column(db.String(80), nullable=False)
    entity_type = db.Column(db.String(80), nullable=False)
    entity_id = db.Column(db.Integer)
    details = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utc_now)

    __table_args__ = (
        db.Index("ix_audit_log_created_at", "created_at"),
        db.Index("ix_audit_log_entity", "entity_type", "entity_id"),
    )
