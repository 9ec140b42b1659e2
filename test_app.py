"""Test suite for the Revonn shop backend.

Tests cover: app creation, authentication, the demo usage gate, invoice
totals and the invoice transaction, numbering, inventory and the BOM
import, customers, staff and attendance, plans and features, reports,
PDF layouts, the AI assistant and translations.
"""

import dataclasses
import datetime
import io
import json
import os
from decimal import Decimal

import openpyxl
import pytest
from sqlalchemy.exc import SQLAlchemyError

os.environ["DATABASE_URI"] = "sqlite://"  # In-memory database for tests
os.environ["APP_SECRET_KEY"] = "test-secret-key"
os.environ["CONFIG_PATH"] = "config.test-missing.yaml"
os.environ["AI_ENABLED"] = "true"
os.environ["AI_API_KEY"] = "test-ai-key"

from app import create_app
from extensions import db, limiter
from models import (
    ALL_PERMISSIONS,
    Customer,
    DemoUsage,
    InventoryItem,
    Invoice,
    InvoiceItem,
    NumberSequence,
    Permission,
    Staff,
    StaffAttendance,
    UserSubscription,
    permission_names,
    permissions_from_names,
)
from services import invoice as invoice_service
from services.ai_gateway import AIGatewayClient, extract_json, parse_action
from services.assistant import execute_tool
from services.auth import normalize_phone, phone_to_email, register_account
from services.errors import DemoLimitReached, ValidationError
from services.i18n import TRANSLATIONS, Msg, translate
from services.importer import confirm_import, detect_kind, normalize_row, parse_upload
from services.invoice import (
    InvoiceError,
    InvoiceLine,
    compute_totals,
    create_invoice,
    parse_lines,
    split_tax,
)
from services.numbering import format_number, generate_number
from services.ownership import OwnershipSecurityError
from services.pdf import LAYOUTS, generate_invoice_pdf, render_invoice_html
from services.shop import ShopSettings
from services.staff import check_out, create_staff, mark_attendance, monthly_summary
from services.subscription import (
    _add_months,
    activate_plan,
    check_limit,
    check_subscription_expiry,
    consume_usage,
    get_or_create_usage,
    has_feature,
    increment_usage,
    plan_price,
    require_limit,
)
from utils import money, parse_date, safe_decimal, safe_int

TEST_PASSWORD = "testpassword"
OWNER_PHONE = "9876543210"
OTHER_PHONE = "9123456780"


@pytest.fixture
def app():
    """Create application for testing."""
    application = create_app()
    application.config["TESTING"] = True
    application.config["WTF_CSRF_ENABLED"] = False
    application.config["RATELIMIT_ENABLED"] = False
    application.config["SESSION_COOKIE_SECURE"] = False
    # The limiter keeps its memory storage across app instances
    limiter.enabled = False
    yield application


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def owner_id(app):
    """A registered shop owner on the demo plan."""
    with app.app_context():
        user = register_account(OWNER_PHONE, TEST_PASSWORD, "Sharma Garments", "Ravi Sharma")
        return user.id


@pytest.fixture
def other_owner_id(app):
    with app.app_context():
        user = register_account(OTHER_PHONE, TEST_PASSWORD, "Other Shop", "Someone Else")
        return user.id


@pytest.fixture
def logged_in_client(client, owner_id):
    """Create test client with a logged-in owner session."""
    with client.session_transaction() as sess:
        sess["user_id"] = owner_id
    return client


@pytest.fixture
def sample_data(app, owner_id):
    """Two stocked items and one customer for the owner."""
    with app.app_context():
        item_x = InventoryItem(
            user_id=owner_id, name="Item X", sku="ITE-X1", price=Decimal("100"),
            cost_price=Decimal("60"), quantity=10, gst_rate=Decimal("18"),
        )
        item_y = InventoryItem(
            user_id=owner_id, name="Item Y", sku="ITE-Y1", price=Decimal("50"),
            cost_price=Decimal("30"), quantity=5, gst_rate=Decimal("18"),
        )
        customer = Customer(user_id=owner_id, name="Asha Traders", phone="9000000001")
        db.session.add_all([item_x, item_y, customer])
        db.session.commit()
        return {"item_x": item_x.id, "item_y": item_y.id, "customer": customer.id}


def scenario_a_items(data):
    return [
        {"product_id": data["item_x"], "quantity": 2, "unit_price": "100", "tax_rate": "18"},
        {"product_id": data["item_y"], "quantity": 1, "unit_price": "50", "tax_rate": "18"},
    ]


def set_usage(app, user_id, **counts):
    with app.app_context():
        usage = get_or_create_usage(user_id)
        for column, value in counts.items():
            setattr(usage, column, value)
        db.session.commit()


def read_usage(app, user_id):
    with app.app_context():
        usage = DemoUsage.query.filter_by(user_id=user_id).one()
        return usage.bills_created, usage.inventory_items, usage.customers_added


def upgrade(app, user_id, plan="pro", ai_addon=False):
    with app.app_context():
        activate_plan(user_id, plan, "monthly", ai_addon)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


def script_completions(monkeypatch, replies):
    """Replace the gateway's chat completion with canned replies."""
    calls = []

    def fake_completion(self, messages, *, model=None, tools=None):
        calls.append({"messages": messages, "model": model, "tools": tools})
        return replies.pop(0)

    monkeypatch.setattr(AIGatewayClient, "chat_completion", fake_completion)
    return calls


# ============================================================================
# Utility function tests
# ============================================================================


class TestUtilityFunctions:
    def test_safe_int(self):
        assert safe_int("42") == 42
        assert safe_int("abc") == 0
        assert safe_int(None, 5) == 5
        assert safe_int("", 3) == 3

    def test_safe_decimal_strips_currency(self):
        assert safe_decimal("₹1,499.50") == Decimal("1499.50")
        assert safe_decimal("Rs. 250") == Decimal("250")
        assert safe_decimal("n/a", "0") == Decimal("0")
        assert safe_decimal(None) == Decimal("0")

    def test_money_rounds_half_up(self):
        assert money(Decimal("0.125")) == Decimal("0.13")
        assert money(Decimal("2.344")) == Decimal("2.34")

    def test_parse_date(self):
        assert parse_date("2026-03-05") == datetime.date(2026, 3, 5)
        assert parse_date("05/03/2026") is None
        assert parse_date("") is None

    def test_phone_helpers(self):
        assert normalize_phone("+91 98765-43210") == "919876543210"
        assert phone_to_email("98765 43210") == "9876543210@revonn.app"

    def test_permission_names_roundtrip(self):
        flags = permissions_from_names(["billing", "Reports"])
        assert flags == Permission.BILLING | Permission.REPORTS
        assert permission_names(flags) == ["billing", "reports"]
        assert len(permission_names(ALL_PERMISSIONS)) == 5

    def test_unknown_permission_name(self):
        with pytest.raises(KeyError):
            permissions_from_names(["billing", "payroll"])


# ============================================================================
# App creation
# ============================================================================


class TestAppCreation:
    def test_app_config(self, app):
        assert app.config["TESTING"] is True
        assert app.config["APP_CONFIG"].invoice_prefix == "INV"
        assert app.config["AI_CONFIG"].api_key == "test-ai-key"

    def test_blueprints_registered(self, app):
        for name in ("auth", "settings", "subscription", "inventory", "customers",
                     "invoices", "staff", "reports", "ai"):
            assert name in app.blueprints

    def test_security_headers(self, client):
        resp = client.get("/api/subscription/plans")
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"

    def test_unknown_route_returns_json_404(self, client):
        resp = client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == translate(Msg.NOT_FOUND, "en")

    def test_cli_check_subscriptions(self, app):
        result = app.test_cli_runner().invoke(args=["check-subscriptions"])
        assert "Expired subscriptions: 0" in result.output

    def test_cli_seed_demo(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-demo", "--phone", "9000011111"])
        assert "Created demo account" in result.output
        again = runner.invoke(args=["seed-demo", "--phone", "9000011111"])
        assert "already exists" in again.output
        with app.app_context():
            assert InventoryItem.query.count() == 3


# ============================================================================
# Authentication
# ============================================================================


class TestAuthRoutes:
    def test_csrf_token(self, client):
        resp = client.get("/api/auth/csrf-token")
        assert resp.status_code == 200
        assert resp.get_json()["csrf_token"]

    def test_register_creates_account_records(self, app, client):
        resp = client.post("/api/auth/register", json={
            "phone": "98123 45678", "password": TEST_PASSWORD,
            "shop_name": "New Shop", "owner_name": "Priya",
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["phone"] == "9812345678"
        assert data["email"] == "9812345678@revonn.app"

        me = client.get("/api/auth/me").get_json()
        assert me["settings"]["shop_name"] == "New Shop"
        assert me["subscription"]["plan_type"] == "demo"
        assert me["subscription"]["usage"]["bills"]["max"] == 5
        assert me["staff"] is None
        with app.app_context():
            assert UserSubscription.query.filter_by(user_id=data["id"]).count() == 1
            assert DemoUsage.query.filter_by(user_id=data["id"]).count() == 1

    def test_register_duplicate_phone(self, client, owner_id):
        resp = client.post("/api/auth/register", json={
            "phone": OWNER_PHONE, "password": TEST_PASSWORD, "shop_name": "Copy",
        })
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "phone_taken"

    def test_register_short_password(self, client):
        resp = client.post("/api/auth/register", json={
            "phone": "9811111111", "password": "123", "shop_name": "Shop",
        })
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_request"

    def test_login_success(self, client, owner_id):
        resp = client.post("/api/auth/login", json={
            "phone": OWNER_PHONE, "password": TEST_PASSWORD,
        })
        assert resp.status_code == 200
        assert resp.get_json()["id"] == owner_id
        assert client.get("/api/auth/me").status_code == 200

    def test_login_wrong_password(self, client, owner_id):
        resp = client.post("/api/auth/login", json={"phone": OWNER_PHONE, "password": "nope"})
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "invalid_credentials"

    def test_logout(self, logged_in_client):
        assert logged_in_client.get("/api/auth/me").status_code == 200
        logged_in_client.post("/api/auth/logout")
        resp = logged_in_client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["login_required"] is True

    def test_protected_route_requires_login(self, client):
        resp = client.post("/api/invoices", json={"items": []})
        assert resp.status_code == 401
        assert resp.get_json()["login_required"] is True


# ============================================================================
# Demo usage gate
# ============================================================================


class TestDemoGate:
    def test_new_account_allowed(self, app, owner_id):
        with app.app_context():
            status = check_limit(owner_id, "bills")
            assert status.allowed is True
            assert (status.current, status.max) == (0, 5)

    def test_allowed_below_ceiling(self, app, owner_id):
        set_usage(app, owner_id, bills_created=4)
        with app.app_context():
            assert check_limit(owner_id, "bills").allowed is True

    def test_denied_at_ceiling(self, app, owner_id):
        set_usage(app, owner_id, bills_created=5)
        with app.app_context():
            status = check_limit(owner_id, "bills")
            assert status.allowed is False
            with pytest.raises(DemoLimitReached) as excinfo:
                require_limit(owner_id, "bills")
            assert excinfo.value.current == 5
            assert excinfo.value.maximum == 5

    def test_batch_must_fit(self, app, owner_id):
        set_usage(app, owner_id, inventory_items=8)
        with app.app_context():
            require_limit(owner_id, "inventory", amount=2)
            with pytest.raises(DemoLimitReached):
                require_limit(owner_id, "inventory", amount=3)

    def test_paid_plan_never_limited(self, app, owner_id):
        upgrade(app, owner_id, "basic")
        set_usage(app, owner_id, bills_created=50)
        with app.app_context():
            status = check_limit(owner_id, "bills")
            assert status.allowed is True
            assert status.max is None

    def test_increment_usage_only_on_demo(self, app, owner_id):
        with app.app_context():
            increment_usage(owner_id, "customers", 2)
            db.session.commit()
        assert read_usage(app, owner_id)[2] == 2
        upgrade(app, owner_id, "pro")
        with app.app_context():
            increment_usage(owner_id, "customers")
            db.session.commit()
        assert read_usage(app, owner_id)[2] == 2

    def test_increment_usage_propagates_database_errors(self, app, owner_id, monkeypatch):
        def failing_flush(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        with app.app_context():
            get_or_create_usage(owner_id)
            db.session.commit()
            monkeypatch.setattr(db.session, "flush", failing_flush)
            with pytest.raises(SQLAlchemyError):
                increment_usage(owner_id, "customers")
            monkeypatch.undo()
        assert read_usage(app, owner_id)[2] == 0

    def test_consume_usage_stops_at_ceiling(self, app, owner_id):
        set_usage(app, owner_id, bills_created=4)
        with app.app_context():
            assert consume_usage(owner_id, "bills") == 5
            db.session.commit()
            with pytest.raises(DemoLimitReached):
                consume_usage(owner_id, "bills")
            db.session.rollback()
        assert read_usage(app, owner_id)[0] == 5

    def test_consume_usage_paid_plan(self, app, owner_id):
        upgrade(app, owner_id, "basic")
        with app.app_context():
            assert consume_usage(owner_id, "bills") is None

    def test_unknown_kind(self, app, owner_id):
        with app.app_context():
            with pytest.raises(ValueError):
                check_limit(owner_id, "vehicles")

    def test_limit_route(self, logged_in_client):
        data = logged_in_client.get("/api/subscription/limits/customers").get_json()
        assert data == {"kind": "customers", "allowed": True, "current": 0, "max": 10}
        assert logged_in_client.get("/api/subscription/limits/nope").status_code == 404


# ============================================================================
# Invoice totals
# ============================================================================


class TestInvoiceTotals:
    def lines(self):
        return [
            InvoiceLine(name="Item X", quantity=2, unit_price=Decimal("100")),
            InvoiceLine(name="Item Y", quantity=1, unit_price=Decimal("50")),
        ]

    def test_inclusive_tax(self):
        totals = compute_totals(self.lines())
        assert totals.subtotal == Decimal("250.00")
        assert totals.tax_amount == Decimal("38.14")
        assert totals.total == Decimal("250.00")
        assert totals.due_amount == Decimal("0")
        assert totals.status == "completed"

    def test_cgst_sgst_split(self):
        totals = compute_totals(self.lines())
        assert totals.cgst == Decimal("19.07")
        assert totals.sgst == Decimal("19.07")
        cgst, sgst = split_tax(Decimal("0.05"))
        assert cgst == Decimal("0.03")
        assert cgst + sgst == Decimal("0.05")

    def test_percent_discount(self):
        totals = compute_totals(self.lines(), "percent", "10")
        assert totals.discount == Decimal("25.00")
        assert totals.total == Decimal("225.00")

    def test_flat_discount(self):
        totals = compute_totals(self.lines(), "flat", "30")
        assert totals.discount == Decimal("30.00")
        assert totals.total == Decimal("220.00")

    def test_discount_capped_at_subtotal(self):
        totals = compute_totals(self.lines(), "flat", "500")
        assert totals.discount == Decimal("250.00")
        assert totals.total == Decimal("0.00")
        assert totals.due_amount == Decimal("0.00")

    def test_due_mode_ignores_amount_paid(self):
        lines = [InvoiceLine(name="Saree", quantity=1, unit_price=Decimal("500"))]
        totals = compute_totals(lines, payment_mode="due", amount_paid="200")
        assert totals.amount_paid == Decimal("0")
        assert totals.due_amount == Decimal("500.00")
        assert totals.status == "partial"

    def test_partial_payment(self):
        totals = compute_totals(self.lines(), payment_mode="cash", amount_paid="100")
        assert totals.due_amount == Decimal("150.00")
        assert totals.status == "partial"

    def test_overpayment_has_no_due(self):
        totals = compute_totals(self.lines(), payment_mode="card", amount_paid="300")
        assert totals.due_amount == Decimal("0")
        assert totals.status == "completed"

    def test_zero_tax_rate(self):
        lines = [InvoiceLine(name="Book", quantity=1, unit_price=Decimal("80"),
                             tax_rate=Decimal("0"))]
        assert compute_totals(lines).tax_amount == Decimal("0.00")

    def test_invalid_inputs(self):
        with pytest.raises(ValidationError):
            compute_totals(self.lines(), payment_mode="cheque")
        with pytest.raises(ValidationError):
            compute_totals(self.lines(), "percent", "-5")
        with pytest.raises(ValidationError):
            compute_totals(self.lines(), "bogus", "5")

    def test_parse_lines(self):
        lines = parse_lines([{"name": "Cap", "quantity": "3", "unit_price": "₹99"}])
        assert lines[0].quantity == 3
        assert lines[0].unit_price == Decimal("99")
        assert lines[0].tax_rate == Decimal("18")

    def test_parse_lines_rejects_bad_input(self):
        with pytest.raises(ValidationError) as excinfo:
            parse_lines([])
        assert excinfo.value.msg is Msg.ITEMS_REQUIRED
        with pytest.raises(ValidationError):
            parse_lines([{"name": "Cap", "quantity": 0, "unit_price": "10"}])
        with pytest.raises(ValidationError):
            parse_lines([{"name": "Cap", "quantity": 1}])
        with pytest.raises(ValidationError):
            parse_lines([{"product_id": "abc", "quantity": 1}])


# ============================================================================
# Invoice transaction
# ============================================================================


class TestInvoiceTransaction:
    def test_creates_invoice_with_side_effects(self, app, owner_id, sample_data):
        with app.app_context():
            invoice = create_invoice(owner_id, scenario_a_items(sample_data))
            invoice_id = invoice.id
            assert invoice.subtotal == Decimal("250")
            assert invoice.tax_amount == Decimal("38.14")
            assert invoice.total == Decimal("250")
            assert invoice.due_amount == Decimal("0")
            assert invoice.status == "completed"
            assert len(invoice.items) == 2

        with app.app_context():
            assert InvoiceItem.query.filter_by(invoice_id=invoice_id).count() == 2
            item_x = db.session.get(InventoryItem, sample_data["item_x"])
            item_y = db.session.get(InventoryItem, sample_data["item_y"])
            assert item_x.quantity == 8
            assert item_y.quantity == 4
            assert item_x.sales_count == 2
            assert item_x.last_sold_at is not None
        assert read_usage(app, owner_id)[0] == 1

    def test_demo_limit_blocks_without_writes(self, app, owner_id, sample_data):
        set_usage(app, owner_id, bills_created=5)
        with app.app_context():
            with pytest.raises(DemoLimitReached):
                create_invoice(owner_id, scenario_a_items(sample_data), customer_name="Ravi")
        with app.app_context():
            assert Invoice.query.count() == 0
            assert Customer.query.filter_by(name="Ravi").count() == 0
            assert db.session.get(InventoryItem, sample_data["item_x"]).quantity == 10
        assert read_usage(app, owner_id)[0] == 5

    def test_due_payment(self, app, owner_id):
        with app.app_context():
            invoice = create_invoice(
                owner_id, [{"name": "Saree", "quantity": 1, "unit_price": "500"}],
                customer_name="Meera", payment_mode="due",
            )
            assert invoice.amount_paid == Decimal("0")
            assert invoice.due_amount == Decimal("500")
            assert invoice.status == "partial"
            customer = Customer.query.filter_by(name="Meera").one()
            assert customer.total_dues == Decimal("500")
            assert customer.total_purchases == Decimal("500")

    def test_existing_customer_totals_accumulate(self, app, owner_id, sample_data):
        with app.app_context():
            create_invoice(
                owner_id, [{"name": "Cap", "quantity": 1, "unit_price": "200"}],
                customer_id=sample_data["customer"], payment_mode="cash", amount_paid="150",
            )
            create_invoice(
                owner_id, [{"name": "Belt", "quantity": 1, "unit_price": "100"}],
                customer_id=str(sample_data["customer"]),
            )
        with app.app_context():
            customer = db.session.get(Customer, sample_data["customer"])
            assert customer.total_purchases == Decimal("300")
            assert customer.total_dues == Decimal("50")
            assert customer.invoices.count() == 2

    def test_match_customer_by_name(self, app, owner_id, sample_data):
        with app.app_context():
            invoice = create_invoice(
                owner_id, [{"name": "Cap", "quantity": 1, "unit_price": "200"}],
                customer_name="asha traders", match_customer_by_name=True,
            )
            assert invoice.customer_id == sample_data["customer"]
            assert Customer.query.count() == 1

    def test_stock_never_negative(self, app, owner_id, sample_data):
        with app.app_context():
            create_invoice(owner_id, [{"product_id": sample_data["item_y"], "quantity": 12}])
        with app.app_context():
            item_y = db.session.get(InventoryItem, sample_data["item_y"])
            assert item_y.quantity == 0
            assert item_y.sales_count == 12

    def test_same_product_on_two_lines(self, app, owner_id, sample_data):
        with app.app_context():
            create_invoice(owner_id, [
                {"product_id": sample_data["item_x"], "quantity": 2},
                {"product_id": sample_data["item_x"], "quantity": 3},
            ])
        with app.app_context():
            item_x = db.session.get(InventoryItem, sample_data["item_x"])
            assert item_x.quantity == 5
            assert item_x.sales_count == 5

    def test_repeated_product_floors_at_zero(self, app, owner_id, sample_data):
        with app.app_context():
            create_invoice(owner_id, [
                {"product_id": sample_data["item_y"], "quantity": 4},
                {"product_id": sample_data["item_y"], "quantity": 4},
            ])
        with app.app_context():
            item_y = db.session.get(InventoryItem, sample_data["item_y"])
            assert item_y.quantity == 0
            assert item_y.sales_count == 8

    def test_price_taken_from_product(self, app, owner_id, sample_data):
        with app.app_context():
            invoice = create_invoice(owner_id, [{"product_id": sample_data["item_x"], "quantity": 1}])
            assert invoice.total == Decimal("100")
            assert invoice.items[0]["name"] == "Item X"

    def test_other_owners_product_rejected(self, app, other_owner_id, sample_data):
        with app.app_context():
            with pytest.raises(ValidationError) as excinfo:
                create_invoice(other_owner_id, [{"product_id": sample_data["item_x"], "quantity": 1}])
            assert excinfo.value.msg is Msg.PRODUCT_NOT_FOUND

    def test_database_failure_rolls_back(self, app, owner_id, sample_data, monkeypatch):
        def failing_consume(user_id, kind, amount=1):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(invoice_service, "consume_usage", failing_consume)
        with app.app_context():
            with pytest.raises(InvoiceError):
                create_invoice(owner_id, scenario_a_items(sample_data), customer_name="Ravi")
        with app.app_context():
            assert Invoice.query.count() == 0
            assert InvoiceItem.query.count() == 0
            assert Customer.query.filter_by(name="Ravi").count() == 0
            assert NumberSequence.query.count() == 0
            assert db.session.get(InventoryItem, sample_data["item_x"]).quantity == 10


# ============================================================================
# Numbering
# ============================================================================


class TestNumbering:
    def test_format_number_tags(self):
        now = datetime.datetime(2026, 3, 5)
        assert format_number("[YYYY]/[MM]/[DD]-[CCC]", 7, now) == "2026/03/05-007"
        assert format_number("[YY][MM]-[CCCC]", 12, now) == "2603-0012"
        assert format_number("[XX]-[C]", 3, now) == "[XX]-3"

    def test_sequential_numbers(self, app, owner_id):
        now = datetime.datetime(2026, 3, 5)
        with app.app_context():
            first = generate_number(owner_id, "invoice", "INV", now=now)
            second = generate_number(owner_id, "invoice", "INV", now=now)
            db.session.commit()
        assert first == "INV-2603-0001"
        assert second == "INV-2603-0002"

    def test_counters_are_per_owner(self, app, owner_id, other_owner_id):
        now = datetime.datetime(2026, 3, 5)
        with app.app_context():
            generate_number(owner_id, "invoice", "INV", now=now)
            assert generate_number(other_owner_id, "invoice", "INV", now=now) == "INV-2603-0001"

    def test_counter_seeded_from_existing_invoices(self, app, owner_id):
        with app.app_context():
            db.session.add(Invoice(user_id=owner_id, invoice_number="INV-2601-0001", items=[]))
            db.session.commit()
            invoice = create_invoice(owner_id, [{"name": "Cap", "quantity": 1, "unit_price": "10"}])
            assert invoice.invoice_number.endswith("-0002")

    def test_invoice_numbers_unique(self, app, owner_id):
        with app.app_context():
            numbers = {
                create_invoice(owner_id, [{"name": "Cap", "quantity": 1, "unit_price": "10"}])
                .invoice_number
                for _ in range(3)
            }
        assert len(numbers) == 3
        assert all(n.startswith("INV-") for n in numbers)


# ============================================================================
# Invoice routes
# ============================================================================


class TestInvoiceRoutes:
    def test_create_invoice(self, app, logged_in_client, owner_id, sample_data):
        resp = logged_in_client.post("/api/invoices", json={
            "items": scenario_a_items(sample_data), "customer_name": "Ravi",
            "customer_phone": "9000000002", "payment_mode": "cash",
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["total"] == "250.00"
        assert data["tax_amount"] == "38.14"
        assert data["cgst"] == "19.07"
        assert data["sgst"] == "19.07"
        assert data["invoice_number"] in data["message"]
        assert data["source"] == "ui"
        assert read_usage(app, owner_id)[0] == 1

    def test_demo_limit_response(self, app, logged_in_client, owner_id, sample_data):
        set_usage(app, owner_id, bills_created=5)
        resp = logged_in_client.post("/api/invoices", json={"items": scenario_a_items(sample_data)})
        assert resp.status_code == 403
        data = resp.get_json()
        assert data["code"] == "demo_limit_bills"
        assert (data["kind"], data["current"], data["max"]) == ("bills", 5, 5)
        with app.app_context():
            assert Invoice.query.count() == 0

    def test_validation_error(self, logged_in_client):
        resp = logged_in_client.post("/api/invoices", json={"items": []})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "items_required"

    def test_error_in_hindi(self, logged_in_client):
        resp = logged_in_client.post("/api/invoices?lang=hi", json={"items": []})
        assert resp.get_json()["error"] == translate(Msg.ITEMS_REQUIRED, "hi")

    def test_foreign_customer_rejected(self, app, logged_in_client, other_owner_id):
        with app.app_context():
            foreign = Customer(user_id=other_owner_id, name="Not Mine", phone="9000000009")
            db.session.add(foreign)
            db.session.commit()
            foreign_id = foreign.id
        resp = logged_in_client.post("/api/invoices", json={
            "items": [{"name": "Cap", "quantity": 1, "unit_price": "10"}],
            "customer_id": foreign_id,
        })
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "customer_required"

    def test_list_and_show(self, logged_in_client, sample_data):
        created = logged_in_client.post("/api/invoices", json={
            "items": scenario_a_items(sample_data), "payment_mode": "due",
        }).get_json()
        listed = logged_in_client.get("/api/invoices?status=partial").get_json()
        assert [inv["id"] for inv in listed] == [created["id"]]
        assert logged_in_client.get("/api/invoices?status=completed").get_json() == []
        shown = logged_in_client.get(f"/api/invoices/{created['id']}").get_json()
        assert shown["due_amount"] == "250.00"

    @pytest.mark.parametrize("layout", LAYOUTS)
    def test_pdf_layouts(self, logged_in_client, sample_data, layout):
        created = logged_in_client.post("/api/invoices", json={
            "items": scenario_a_items(sample_data), "customer_name": "Ravi",
        }).get_json()
        resp = logged_in_client.get(f"/api/invoices/{created['id']}/pdf?layout={layout}")
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data.startswith(b"%PDF")

    def test_pdf_unknown_layout(self, logged_in_client, sample_data):
        created = logged_in_client.post("/api/invoices", json={
            "items": scenario_a_items(sample_data),
        }).get_json()
        resp = logged_in_client.get(f"/api/invoices/{created['id']}/pdf?layout=poster")
        assert resp.status_code == 404


# ============================================================================
# PDF rendering
# ============================================================================


class TestPdfRendering:
    def make_invoice(self, app, owner_id, customer_name="Ravi"):
        with app.app_context():
            return create_invoice(
                owner_id, [{"name": "Kurta", "quantity": 2, "unit_price": "399"}],
                customer_name=customer_name,
            ).id

    def test_tax_invoice_shows_gstin(self, app, owner_id):
        invoice_id = self.make_invoice(app, owner_id)
        shop = ShopSettings(shop_name="Sharma Garments", gstin="27ABCDE1234F1Z5")
        with app.app_context():
            invoice = db.session.get(Invoice, invoice_id)
            html = render_invoice_html(invoice, shop, "a4", show_gst=True)
            plain = render_invoice_html(invoice, shop, "a4", show_gst=False)
        assert "Tax Invoice" in html
        assert "GSTIN: 27ABCDE1234F1Z5" in html
        assert "Tax Invoice" not in plain
        assert "GSTIN" not in plain

    def test_receipt_layout_is_compact(self, app, owner_id):
        invoice_id = self.make_invoice(app, owner_id)
        with app.app_context():
            invoice = db.session.get(Invoice, invoice_id)
            html = render_invoice_html(invoice, ShopSettings(shop_name="S"), "receipt")
        assert "80mm" in html
        assert "GST</th>" not in html

    def test_customer_name_is_escaped(self, app, owner_id):
        invoice_id = self.make_invoice(app, owner_id, customer_name="<b>Ravi</b>")
        with app.app_context():
            invoice = db.session.get(Invoice, invoice_id)
            html = render_invoice_html(invoice, ShopSettings(shop_name="S"))
        assert "&lt;b&gt;Ravi&lt;/b&gt;" in html

    def test_generate_pdf_bytes(self, app, owner_id):
        invoice_id = self.make_invoice(app, owner_id)
        with app.app_context():
            invoice = db.session.get(Invoice, invoice_id)
            pdf = generate_invoice_pdf(invoice, ShopSettings(shop_name="S"), "half")
        assert pdf.startswith(b"%PDF")

    def test_unknown_layout(self, app, owner_id):
        invoice_id = self.make_invoice(app, owner_id)
        with app.app_context():
            invoice = db.session.get(Invoice, invoice_id)
            with pytest.raises(ValueError):
                render_invoice_html(invoice, ShopSettings(), "poster")


# ============================================================================
# Inventory
# ============================================================================


class TestInventoryRoutes:
    def test_create_item(self, app, logged_in_client, owner_id):
        resp = logged_in_client.post("/api/inventory", json={
            "name": "Kurta", "price": "799", "cost_price": "520", "quantity": 3,
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["sku"].startswith("KUR-")
        assert data["price"] == "799.00"
        assert read_usage(app, owner_id)[1] == 1

    def test_create_item_demo_limit(self, app, logged_in_client, owner_id):
        set_usage(app, owner_id, inventory_items=10)
        resp = logged_in_client.post("/api/inventory", json={"name": "Kurta", "price": "799"})
        assert resp.status_code == 403
        assert resp.get_json()["kind"] == "inventory"
        with app.app_context():
            assert InventoryItem.query.filter_by(name="Kurta").count() == 0

    def test_create_item_invalid(self, logged_in_client):
        resp = logged_in_client.post("/api/inventory", json={"name": "Kurta", "quantity": -1})
        assert resp.status_code == 400

    def test_search_and_low_stock(self, logged_in_client, sample_data):
        found = logged_in_client.get("/api/inventory?q=item y").get_json()
        assert [item["name"] for item in found] == ["Item Y"]
        low = logged_in_client.get("/api/inventory/low-stock").get_json()
        assert [item["name"] for item in low] == ["Item Y"]

    def test_edit_item(self, logged_in_client, sample_data):
        resp = logged_in_client.patch(
            f"/api/inventory/{sample_data['item_x']}", json={"price": "120"}
        )
        assert resp.status_code == 200
        assert resp.get_json()["price"] == "120.00"

    def test_add_stock_by_name(self, logged_in_client, sample_data):
        resp = logged_in_client.post("/api/inventory/add-stock", json={
            "product_name": "item x", "quantity": 5,
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["item"]["quantity"] == 15
        assert "Item X" in data["message"]

    def test_add_stock_unknown_product(self, logged_in_client, sample_data):
        resp = logged_in_client.post("/api/inventory/add-stock", json={
            "product_name": "Umbrella", "quantity": 5,
        })
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "product_not_found"


# ============================================================================
# Bill-of-materials import
# ============================================================================

STOCK_CSV = (
    "Item Name,Qty,Price,Colour\n"
    "Shirt,4,499,Blue\n"
    "Trouser,2,\"1,299\",Black\n"
    "Belt,6,199,Brown\n"
    ",3,50,Red\n"
).encode("utf-8")


class TestBomImport:
    def test_detect_kind(self):
        assert detect_kind("stock.CSV") == "csv"
        assert detect_kind("bill.jpeg") == "image"
        assert detect_kind("upload", "application/pdf") == "pdf"
        with pytest.raises(ValidationError):
            detect_kind("notes.docx", "application/msword")

    def test_normalize_row(self):
        row = normalize_row({"Product": "Cap", "MRP": "₹250", "Size": "M"})
        assert row["name"] == "Cap"
        assert row["quantity"] == 1
        assert row["price"] == "250.00"
        assert row["size"] == "M"
        assert row["selected"] is True
        assert normalize_row({"Qty": "3"}) is None

    def test_parse_csv(self):
        result = parse_upload("stock.csv", STOCK_CSV, "text/csv")
        assert result["kind"] == "csv"
        assert [row["name"] for row in result["items"]] == ["Shirt", "Trouser", "Belt"]
        assert result["items"][1]["price"] == "1299.00"
        assert result["items"][0]["color"] == "Blue"

    def test_parse_xlsx(self):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.append(["Product", "Quantity", "Rate", "SKU", "Size"])
        ws.append(["Jeans", 5, 1299, "JNS-01", 32])
        ws.append([None, None, None, None, None])
        ws.append(["Socks", 20, 99, None, "Free"])
        buffer = io.BytesIO()
        wb.save(buffer)

        result = parse_upload("stock.xlsx", buffer.getvalue())
        assert result["kind"] == "xlsx"
        assert len(result["items"]) == 2
        jeans = result["items"][0]
        assert (jeans["quantity"], jeans["price"], jeans["sku"], jeans["size"]) == (
            5, "1299.00", "JNS-01", "32",
        )

    @pytest.mark.parametrize("content", [b"not a zip file at all", b"PK\x03\x04truncated"])
    def test_corrupt_spreadsheet_rejected(self, content):
        with pytest.raises(ValidationError) as excinfo:
            parse_upload("stock.xlsx", content)
        assert excinfo.value.msg is Msg.UNSUPPORTED_FILE

    def test_corrupt_spreadsheet_route(self, logged_in_client):
        resp = logged_in_client.post(
            "/api/inventory/import/parse",
            data={"file": (io.BytesIO(b"garbage"), "stock.xlsx")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400

    def test_parse_image_uses_gateway(self, app, monkeypatch):
        calls = script_completions(monkeypatch, [{
            "content": 'Found these: {"items": [{"name": "Saree", "quantity": 2, '
                       '"price": "1,500"}], "summary": "1 item"}',
        }])
        with app.app_context():
            result = parse_upload("bill.jpg", b"\xff\xd8fake", "image/jpeg")
        assert result["summary"] == "1 item"
        assert result["items"][0]["price"] == "1500.00"
        parts = calls[0]["messages"][0]["content"]
        assert parts[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")

    def test_confirm_all(self, app, owner_id):
        rows = parse_upload("stock.csv", STOCK_CSV)["items"]
        with app.app_context():
            items = confirm_import(owner_id, rows)
            assert len(items) == 3
        with app.app_context():
            shirt = InventoryItem.query.filter_by(name="Shirt").one()
            assert shirt.quantity == 4
            assert shirt.cost_price == Decimal("349.30")
            assert shirt.sku.startswith("SHI-")
        assert read_usage(app, owner_id)[1] == 3

    def test_confirm_respects_selection(self, app, owner_id):
        rows = parse_upload("stock.csv", STOCK_CSV)["items"]
        rows[1]["selected"] = False
        with app.app_context():
            confirm_import(owner_id, rows)
            names = sorted(item.name for item in InventoryItem.query.all())
        assert names == ["Belt", "Shirt"]

    def test_confirm_nothing_selected(self, app, owner_id):
        rows = [dict(row, selected=False) for row in parse_upload("stock.csv", STOCK_CSV)["items"]]
        with app.app_context():
            with pytest.raises(ValidationError) as excinfo:
                confirm_import(owner_id, rows)
        assert excinfo.value.msg is Msg.NOTHING_SELECTED

    def test_batch_beyond_demo_allowance(self, app, owner_id):
        set_usage(app, owner_id, inventory_items=9)
        rows = parse_upload("stock.csv", STOCK_CSV)["items"]
        with app.app_context():
            with pytest.raises(DemoLimitReached):
                confirm_import(owner_id, rows)
            assert InventoryItem.query.count() == 0
        assert read_usage(app, owner_id)[1] == 9

    def test_import_routes(self, logged_in_client):
        resp = logged_in_client.post(
            "/api/inventory/import/parse",
            data={"file": (io.BytesIO(STOCK_CSV), "stock.csv")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        items = resp.get_json()["items"]
        assert len(items) == 3

        resp = logged_in_client.post("/api/inventory/import/confirm", json={"items": items})
        assert resp.status_code == 201
        assert len(resp.get_json()["items"]) == 3
        assert len(logged_in_client.get("/api/inventory").get_json()) == 3

    def test_parse_route_requires_file(self, logged_in_client):
        resp = logged_in_client.post("/api/inventory/import/parse", data={},
                                     content_type="multipart/form-data")
        assert resp.status_code == 400


# ============================================================================
# Customers
# ============================================================================


class TestCustomerRoutes:
    def test_name_and_phone_required(self, logged_in_client):
        resp = logged_in_client.post("/api/customers", json={"name": "Ravi"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "name_phone_required"

    def test_create_customer(self, app, logged_in_client, owner_id):
        resp = logged_in_client.post("/api/customers", json={
            "name": "Ravi", "phone": "+91 90000 00002",
        })
        assert resp.status_code == 201
        assert resp.get_json()["phone"] == "919000000002"
        assert read_usage(app, owner_id)[2] == 1

    def test_customer_demo_limit(self, app, logged_in_client, owner_id):
        set_usage(app, owner_id, customers_added=10)
        resp = logged_in_client.post("/api/customers", json={"name": "Ravi", "phone": "9000000002"})
        assert resp.status_code == 403
        assert resp.get_json()["kind"] == "customers"

    def test_detail_includes_invoices(self, logged_in_client, sample_data):
        logged_in_client.post("/api/invoices", json={
            "items": [{"name": "Cap", "quantity": 1, "unit_price": "200"}],
            "customer_id": sample_data["customer"], "payment_mode": "due",
        })
        data = logged_in_client.get(f"/api/customers/{sample_data['customer']}").get_json()
        assert data["total_dues"] == "200.00"
        assert len(data["invoices"]) == 1
        with_dues = logged_in_client.get("/api/customers?with_dues=1").get_json()
        assert [c["id"] for c in with_dues] == [sample_data["customer"]]

    def test_edit_customer(self, logged_in_client, sample_data):
        resp = logged_in_client.patch(
            f"/api/customers/{sample_data['customer']}", json={"address": "MG Road"}
        )
        assert resp.get_json()["address"] == "MG Road"
        resp = logged_in_client.patch(
            f"/api/customers/{sample_data['customer']}", json={"name": ""}
        )
        assert resp.status_code == 400


# ============================================================================
# Ownership isolation
# ============================================================================


class TestOwnership:
    def test_other_owner_cannot_read(self, app, client, other_owner_id, sample_data, owner_id):
        with app.app_context():
            invoice_id = create_invoice(owner_id, scenario_a_items(sample_data)).id
        with client.session_transaction() as sess:
            sess["user_id"] = other_owner_id
        assert client.get(f"/api/inventory/{sample_data['item_x']}").status_code == 404
        assert client.get(f"/api/customers/{sample_data['customer']}").status_code == 404
        assert client.get(f"/api/invoices/{invoice_id}").status_code == 404
        assert client.get(f"/api/invoices/{invoice_id}/pdf").status_code == 404
        assert client.get("/api/inventory").get_json() == []

    def test_other_owner_cannot_edit(self, app, client, other_owner_id, sample_data):
        with client.session_transaction() as sess:
            sess["user_id"] = other_owner_id
        resp = client.patch(f"/api/inventory/{sample_data['item_x']}", json={"price": "1"})
        assert resp.status_code == 404
        with app.app_context():
            assert db.session.get(InventoryItem, sample_data["item_x"]).price == Decimal("100")

    def test_flush_guard_blocks_cross_owner_write(self, app, owner_id, other_owner_id):
        from flask import g

        with app.test_request_context():
            g.owner_id = owner_id
            db.session.add(Customer(user_id=other_owner_id, name="Intruder", phone="1"))
            with pytest.raises(OwnershipSecurityError):
                db.session.flush()
            db.session.rollback()


# ============================================================================
# Settings
# ============================================================================


class TestSettingsRoutes:
    def test_update_settings(self, logged_in_client):
        resp = logged_in_client.patch("/api/settings", json={
            "invoice_prefix": "RVN", "gstin": "27abcde1234f1z5", "address": "MG Road",
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["settings"]["gstin"] == "27ABCDE1234F1Z5"
        assert data["message"] == translate(Msg.SETTINGS_SAVED, "en")
        assert logged_in_client.get("/api/settings").get_json()["address"] == "MG Road"

    def test_prefix_used_for_new_invoices(self, logged_in_client):
        logged_in_client.patch("/api/settings", json={"invoice_prefix": "RVN"})
        created = logged_in_client.post("/api/invoices", json={
            "items": [{"name": "Cap", "quantity": 1, "unit_price": "10"}],
        }).get_json()
        assert created["invoice_number"].startswith("RVN-")

    def test_invalid_gstin(self, logged_in_client):
        resp = logged_in_client.patch("/api/settings", json={"gstin": "123"})
        assert resp.status_code == 400

    def test_language_switch(self, logged_in_client):
        resp = logged_in_client.patch("/api/settings", json={"language": "hi"})
        assert resp.get_json()["message"] == translate(Msg.SETTINGS_SAVED, "hi")
        resp = logged_in_client.post("/api/invoices", json={"items": []})
        assert resp.get_json()["error"] == translate(Msg.ITEMS_REQUIRED, "hi")

    def test_invalid_language(self, logged_in_client):
        resp = logged_in_client.patch("/api/settings", json={"language": "fr"})
        assert resp.status_code == 400


# ============================================================================
# Plans and features
# ============================================================================


class TestSubscription:
    def test_plans_are_public(self, client):
        data = client.get("/api/subscription/plans").get_json()
        assert data["plans"]["pro"]["monthly"] == "349"
        assert data["ai_addon"] == "99"
        assert data["demo_limits"]["bills"] == 5

    def test_status_for_demo(self, logged_in_client):
        data = logged_in_client.get("/api/subscription").get_json()
        assert data["plan_type"] == "demo"
        assert data["is_demo"] is True
        assert data["features"]["staff"] is False
        assert data["usage"]["inventory"]["max"] == 10

    def test_checkout(self, logged_in_client):
        resp = logged_in_client.post("/api/subscription/checkout", json={
            "plan": "pro", "billing_cycle": "monthly", "ai_addon": True,
        })
        assert resp.status_code == 200
        assert resp.get_json()["amount"] == "448"
        status = logged_in_client.get("/api/subscription").get_json()
        assert status["is_pro"] is True
        assert status["features"] == {
            "staff": True, "gst_invoice": True, "reports": True, "ai": True,
        }
        assert status["usage"]["bills"]["max"] is None

    def test_checkout_invalid_plan(self, logged_in_client):
        resp = logged_in_client.post("/api/subscription/checkout", json={"plan": "gold"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_plan"

    def test_plan_price(self):
        assert plan_price("basic", "yearly") == Decimal("2199")
        assert plan_price("basic", "monthly", ai_addon=True) == Decimal("318")
        with pytest.raises(ValidationError):
            plan_price("basic", "weekly")

    def test_feature_tiers(self, app, owner_id):
        with app.app_context():
            assert has_feature(owner_id, "reports") is False
        upgrade(app, owner_id, "basic")
        with app.app_context():
            assert has_feature(owner_id, "reports") is True
            assert has_feature(owner_id, "staff") is False
            assert has_feature(owner_id, "ai") is False
        upgrade(app, owner_id, "basic", ai_addon=True)
        with app.app_context():
            assert has_feature(owner_id, "ai") is True

    def test_expiry(self, app, owner_id):
        upgrade(app, owner_id, "pro")
        with app.app_context():
            sub = UserSubscription.query.filter_by(user_id=owner_id).one()
            sub.expires_at = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=1)
            db.session.commit()
            assert has_feature(owner_id, "staff") is False
            assert check_subscription_expiry() == 1
            assert check_subscription_expiry() == 0
            sub = UserSubscription.query.filter_by(user_id=owner_id).one()
            assert sub.is_active is False
            assert check_limit(owner_id, "bills").max is None

    def test_add_months_clamps_day(self):
        start = datetime.datetime(2026, 1, 31, 10, 0)
        assert _add_months(start, 1) == datetime.datetime(2026, 2, 28, 10, 0)
        assert _add_months(start, 12) == datetime.datetime(2027, 1, 31, 10, 0)

    def test_locked_features(self, logged_in_client):
        resp = logged_in_client.get("/api/staff")
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "feature_locked"
        assert resp.get_json()["feature"] == "staff"
        assert logged_in_client.get("/api/reports/summary").status_code == 403
        resp = logged_in_client.post("/api/ai/chat", json={"message": "hi"})
        assert resp.get_json()["feature"] == "ai"


# ============================================================================
# Staff and attendance
# ============================================================================


class TestStaff:
    def create(self, logged_in_client, **overrides):
        payload = {
            "name": "Meena", "username": "meena", "password": "secret12",
            "permissions": ["billing"], "salary": "15000",
        }
        payload.update(overrides)
        return logged_in_client.post("/api/staff", json=payload)

    def test_create_staff(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "pro")
        resp = self.create(logged_in_client)
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["permissions"] == ["billing"]
        assert data["salary"] == "15000.00"
        assert [s["name"] for s in logged_in_client.get("/api/staff").get_json()] == ["Meena"]

    def test_unknown_permission(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "pro")
        resp = self.create(logged_in_client, permissions=["payroll"])
        assert resp.status_code == 400

    @pytest.mark.parametrize("permissions", [64, -1, True])
    def test_permission_value_out_of_range(self, app, logged_in_client, owner_id, permissions):
        upgrade(app, owner_id, "pro")
        resp = self.create(logged_in_client, permissions=permissions)
        assert resp.status_code == 400
        with app.app_context():
            assert Staff.query.count() == 0

    def test_permission_flag_value(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "pro")
        value = (Permission.BILLING | Permission.INVENTORY).value
        resp = self.create(logged_in_client, permissions=value)
        assert resp.status_code == 201
        assert resp.get_json()["permissions"] == ["billing", "inventory"]

    def test_duplicate_username(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "pro")
        self.create(logged_in_client)
        resp = self.create(logged_in_client, name="Other")
        assert resp.get_json()["code"] == "username_taken"

    def test_staff_session_permissions(self, app, logged_in_client, owner_id, sample_data):
        upgrade(app, owner_id, "pro")
        self.create(logged_in_client)
        resp = logged_in_client.post("/api/auth/staff-login", json={
            "username": "meena", "password": "secret12",
        })
        assert resp.status_code == 200
        assert resp.get_json()["owner_id"] == owner_id

        me = logged_in_client.get("/api/auth/me").get_json()
        assert me["staff"]["name"] == "Meena"
        assert me["permissions"] == ["billing"]

        resp = logged_in_client.post("/api/invoices", json={"items": scenario_a_items(sample_data)})
        assert resp.status_code == 201
        resp = logged_in_client.patch("/api/settings", json={"address": "x"})
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "permission_denied"
        assert logged_in_client.get("/api/staff").status_code == 403
        assert logged_in_client.post("/api/subscription/checkout", json={"plan": "basic"}).status_code == 403
        with app.app_context():
            assert Invoice.query.one().user_id == owner_id

    def test_staff_login_wrong_password(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "pro")
        self.create(logged_in_client)
        resp = logged_in_client.post("/api/auth/staff-login", json={
            "username": "meena", "password": "wrong",
        })
        assert resp.status_code == 401

    def test_attendance_upsert(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "pro")
        staff_id = self.create(logged_in_client).get_json()["id"]
        url = f"/api/staff/{staff_id}/attendance"
        first = logged_in_client.post(url, json={"status": "present", "date": "2026-03-02"}).get_json()
        assert first["check_in"] is not None
        second = logged_in_client.post(url, json={"status": "absent", "date": "2026-03-02"}).get_json()
        assert second["status"] == "absent"
        assert second["check_in"] is None
        with app.app_context():
            assert StaffAttendance.query.filter_by(staff_id=staff_id).count() == 1

        day = logged_in_client.get("/api/staff/attendance?date=2026-03-02").get_json()
        assert day["staff"][0]["status"] == "absent"

    def test_invalid_attendance(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "pro")
        staff_id = self.create(logged_in_client).get_json()["id"]
        resp = logged_in_client.post(f"/api/staff/{staff_id}/attendance", json={"status": "late"})
        assert resp.status_code == 400
        resp = logged_in_client.post(f"/api/staff/{staff_id}/check-out", json={"date": "2026-03-02"})
        assert resp.status_code == 400

    def test_check_in_kept_on_remark(self, app, owner_id):
        with app.app_context():
            staff = create_staff(owner_id, {"name": "Raju"})
            day = datetime.date(2026, 3, 2)
            first = mark_attendance(staff, "present", day).check_in
            again = mark_attendance(staff, "half-day", day)
            assert again.check_in == first
            assert check_out(staff, day).check_out is not None

    def test_monthly_summary(self, app, owner_id):
        with app.app_context():
            staff = create_staff(owner_id, {"name": "Raju", "salary": "31000"})
            for day, status in ((2, "present"), (3, "present"), (4, "half-day"), (5, "absent")):
                mark_attendance(staff, status, datetime.date(2026, 3, day))
            mark_attendance(staff, "present", datetime.date(2026, 4, 1))
            summary = monthly_summary(staff, 2026, 3)
        assert (summary["present"], summary["half_day"], summary["absent"]) == (2, 1, 1)
        assert summary["payable_days"] == "2.5"
        assert summary["salary_due"] == "2500.00"

    def test_summary_route(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "pro")
        staff_id = self.create(logged_in_client).get_json()["id"]
        logged_in_client.post(f"/api/staff/{staff_id}/attendance",
                              json={"status": "present", "date": "2026-03-02"})
        data = logged_in_client.get(
            f"/api/staff/{staff_id}/attendance/summary?month=2026-03"
        ).get_json()
        assert data["present"] == 1
        bad = logged_in_client.get(f"/api/staff/{staff_id}/attendance/summary?month=March")
        assert bad.status_code == 400

    def test_deactivated_staff_cannot_login(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "pro")
        staff_id = self.create(logged_in_client).get_json()["id"]
        logged_in_client.patch(f"/api/staff/{staff_id}", json={"is_active": False})
        with app.app_context():
            assert db.session.get(Staff, staff_id).is_active is False
        resp = logged_in_client.post("/api/auth/staff-login", json={
            "username": "meena", "password": "secret12",
        })
        assert resp.status_code == 401


# ============================================================================
# Reports
# ============================================================================


class TestReports:
    def test_dashboard_on_demo(self, app, logged_in_client, owner_id, sample_data):
        with app.app_context():
            create_invoice(owner_id, scenario_a_items(sample_data))
        data = logged_in_client.get("/api/reports/dashboard").get_json()
        assert data["invoice_count"] == 1
        assert len(data["recent_invoices"]) == 1

    def test_sales_summary(self, app, logged_in_client, owner_id, sample_data):
        upgrade(app, owner_id, "basic")
        with app.app_context():
            create_invoice(owner_id, scenario_a_items(sample_data))
        data = logged_in_client.get("/api/reports/summary?period=today").get_json()
        assert data["invoice_count"] == 1
        assert data["total_sales"] == "250.00"
        assert data["items_sold"] == 3
        assert data["tax_collected"] == "38.14"
        assert data["gross_profit"] == "100.00"
        assert data["top_selling"][0]["name"] == "Item X"
        assert [item["name"] for item in data["low_stock"]] == ["Item Y"]

    def test_unknown_period(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "basic")
        assert logged_in_client.get("/api/reports/summary?period=decade").status_code == 400

    def test_inventory_value(self, app, logged_in_client, owner_id, sample_data):
        upgrade(app, owner_id, "basic")
        data = logged_in_client.get("/api/reports/inventory-value").get_json()
        assert data["units"] == 15
        assert data["stock_value"] == "1250.00"
        assert data["stock_cost"] == "750.00"


# ============================================================================
# AI assistant
# ============================================================================


class TestAssistant:
    def test_extract_json(self):
        assert extract_json('Sure! {"a": 1} done') == {"a": 1}
        assert extract_json("no json here") is None
        assert extract_json("{broken") is None

    def test_parse_action(self):
        text, action = parse_action('Opening stock. {"action": "navigate", "path": "/inventory"}')
        assert text == "Opening stock."
        assert action == {"action": "navigate", "path": "/inventory"}

        text, action = parse_action(
            'Bill ready {"action": "create_bill", "items": [{"name": "Cap"}], "customer": "Ravi"}'
        )
        assert action["action"] == "create_bill"
        assert action["customer"] == "Ravi"

        reply = '{"action": "navigate", "path": "https://evil.example"}'
        assert parse_action(reply) == (reply, None)
        assert parse_action('{"action": "delete_all"}')[1] is None

    def test_chat_route(self, app, logged_in_client, owner_id, monkeypatch):
        upgrade(app, owner_id, "basic", ai_addon=True)
        calls = script_completions(monkeypatch, [
            {"content": 'Opening inventory {"action": "navigate", "path": "/inventory"}'},
        ])
        resp = logged_in_client.post("/api/ai/chat", json={"message": "show my stock"})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["message"] == "Opening inventory"
        assert data["action"]["path"] == "/inventory"
        system = calls[0]["messages"][0]
        assert system["role"] == "system"
        assert "Sharma Garments" in system["content"]

    def test_chat_requires_trailing_user_message(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "basic", ai_addon=True)
        resp = logged_in_client.post("/api/ai/chat", json={
            "messages": [{"role": "assistant", "content": "Hello"}],
        })
        assert resp.status_code == 400

    def test_chat_stream(self, app, logged_in_client, owner_id, monkeypatch):
        upgrade(app, owner_id, "basic", ai_addon=True)
        chunks = [b'data: {"delta": "Hi"}\n\n', b"data: [DONE]\n\n"]
        monkeypatch.setattr(
            AIGatewayClient, "stream_chat", lambda self, messages, model=None: iter(chunks)
        )
        resp = logged_in_client.post("/api/ai/chat/stream", json={"message": "hello"})
        assert resp.status_code == 200
        assert resp.mimetype == "text/event-stream"
        assert resp.data == b"".join(chunks)

    def test_agent_creates_invoice(self, app, logged_in_client, owner_id, sample_data, monkeypatch):
        upgrade(app, owner_id, "pro", ai_addon=True)
        tool_call = {
            "id": "call_1",
            "type": "function",
            "function": {
                "name": "generateInvoice",
                "arguments": json.dumps({
                    "customer_name": "asha traders",
                    "items": [{"product_name": "item x", "quantity": 1}],
                    "payment_mode": "cash",
                }),
            },
        }
        calls = script_completions(monkeypatch, [
            {"content": None, "tool_calls": [tool_call]},
            {"content": "Bill created for Asha Traders."},
        ])
        resp = logged_in_client.post("/api/ai/agent", json={"message": "bill one item x to asha"})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["action"] == "generateInvoice"
        assert data["result"]["success"] is True
        assert data["result"]["total"] == "100.00"
        assert data["message"] == "Bill created for Asha Traders."
        assert calls[0]["tools"] is not None
        assert calls[1]["messages"][-1]["role"] == "tool"

        with app.app_context():
            invoice = Invoice.query.one()
            assert invoice.source == "assistant"
            assert invoice.customer_id == sample_data["customer"]
            assert db.session.get(InventoryItem, sample_data["item_x"]).quantity == 9

    def test_agent_plain_reply(self, app, logged_in_client, owner_id, monkeypatch):
        upgrade(app, owner_id, "pro", ai_addon=True)
        script_completions(monkeypatch, [{"content": "Namaste!"}])
        data = logged_in_client.post("/api/ai/agent", json={"message": "hi"}).get_json()
        assert data == {"message": "Namaste!", "action": None, "result": None}

    def test_tool_respects_demo_limit(self, app, owner_id, sample_data):
        set_usage(app, owner_id, bills_created=5)
        args = json.dumps({"customer_name": "Ravi",
                           "items": [{"product_name": "Item X", "quantity": 1}]})
        with app.app_context():
            result = execute_tool(owner_id, "generateInvoice", args)
            assert result["success"] is False
            assert result["error"] == translate(Msg.DEMO_LIMIT_BILLS, "en", current=5, max=5)
            assert Invoice.query.count() == 0

    def test_tool_rejects_malformed_items(self, app, owner_id, sample_data):
        args = {"items": ["Item X", {"product_name": "Item Y", "quantity": 1}]}
        with app.app_context():
            result = execute_tool(owner_id, "generateInvoice", args)
            assert result["success"] is False
            assert Invoice.query.count() == 0

    def test_add_to_inventory_tool(self, app, owner_id, sample_data):
        with app.app_context():
            result = execute_tool(owner_id, "addToInventory",
                                  {"product_name": "item y", "quantity": 3})
        assert result == {"success": True, "product": "Item Y", "new_quantity": 8}

    def test_unknown_tool(self, app, owner_id):
        with app.app_context():
            assert execute_tool(owner_id, "deleteShop", {})["success"] is False
            assert execute_tool(owner_id, "addToInventory", "{not json")["success"] is False

    @pytest.mark.parametrize("status,code", [(429, "ai_rate_limited"), (402, "ai_credits_exhausted")])
    def test_gateway_errors_pass_through(self, app, logged_in_client, owner_id, monkeypatch,
                                         status, code):
        upgrade(app, owner_id, "basic", ai_addon=True)
        monkeypatch.setattr(
            "services.ai_gateway.requests.post", lambda *a, **kw: FakeResponse(status)
        )
        resp = logged_in_client.post("/api/ai/chat", json={"message": "hello"})
        assert resp.status_code == status
        assert resp.get_json()["code"] == code

    def test_gateway_server_error(self, app, logged_in_client, owner_id, monkeypatch):
        upgrade(app, owner_id, "basic", ai_addon=True)
        monkeypatch.setattr(
            "services.ai_gateway.requests.post",
            lambda *a, **kw: FakeResponse(500, text="upstream down"),
        )
        resp = logged_in_client.post("/api/ai/chat", json={"message": "hello"})
        assert resp.status_code == 502
        assert resp.get_json()["code"] == "ai_unavailable"

    def test_gateway_not_configured(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "basic", ai_addon=True)
        app.config["AI_CONFIG"] = dataclasses.replace(app.config["AI_CONFIG"], api_key="")
        resp = logged_in_client.post("/api/ai/chat", json={"message": "hello"})
        assert resp.status_code == 503

    def test_marketing(self, app, logged_in_client, owner_id, monkeypatch):
        upgrade(app, owner_id, "basic", ai_addon=True)
        calls = script_completions(monkeypatch, [{"content": " Diwali dhamaka! #diwali "}])
        monkeypatch.setattr(
            AIGatewayClient, "generate_image",
            lambda self, prompt, size="1024x1024": "data:image/png;base64,AAAA",
        )
        resp = logged_in_client.post("/api/ai/marketing", json={
            "template": "festival", "language": "hi", "details": {"festival": "Diwali"},
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["caption"] == "Diwali dhamaka! #diwali"
        assert data["image"] == "data:image/png;base64,AAAA"
        assert "Hindi" in calls[0]["messages"][0]["content"]
        assert "Diwali" in calls[0]["messages"][1]["content"]

    def test_marketing_custom_needs_text(self, app, logged_in_client, owner_id):
        upgrade(app, owner_id, "basic", ai_addon=True)
        resp = logged_in_client.post("/api/ai/marketing", json={"template": "custom"})
        assert resp.status_code == 400


# ============================================================================
# Translations
# ============================================================================


class TestTranslations:
    def test_every_message_has_both_languages(self):
        for key in Msg:
            assert TRANSLATIONS[key]["en"]
            assert TRANSLATIONS[key]["hi"]

    def test_fallback_to_english(self):
        assert translate(Msg.NOT_FOUND, "fr") == translate(Msg.NOT_FOUND, "en")
        assert translate(Msg.NOT_FOUND) == "Not found."

    def test_parameters(self):
        text = translate(Msg.INVOICE_CREATED, "en", number="INV-2603-0001")
        assert "INV-2603-0001" in text
        text = translate(Msg.DEMO_LIMIT_BILLS, "hi", current=5, max=5)
        assert "5/5" in text
