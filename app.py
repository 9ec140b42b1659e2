"""Application factory: clean entry point for the Flask application."""

from __future__ import annotations

import logging
import os
from datetime import timedelta

import click
from dotenv import load_dotenv
from flask import Flask, g, jsonify, session
from sqlalchemy import event
from werkzeug.exceptions import HTTPException

from config import enable_sqlite_fks, load_config
from extensions import csrf, db, limiter
from models import InventoryItem, Staff, User
from routes import register_blueprints
from services.auth import current_language
from services.errors import DemoLimitReached, FeatureLocked, ShopError
from services.i18n import Msg, translate
from services.ownership import OwnershipSecurityError, register_ownership_guards
from services.shop import load_shop_settings
from services.subscription import check_subscription_expiry, ensure_account_records

load_dotenv()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


_HTTP_MESSAGES = {
    400: Msg.INVALID_REQUEST,
    401: Msg.LOGIN_REQUIRED,
    403: Msg.PERMISSION_DENIED,
    404: Msg.NOT_FOUND,
    405: Msg.NOT_FOUND,
    429: Msg.TOO_MANY_REQUESTS,
}

_DEMO_ITEMS = [
    {"name": "Cotton Kurta", "category": "Apparel", "size": "M", "color": "Blue",
     "price": "799", "cost_price": "520", "quantity": 12},
    {"name": "Denim Jeans", "category": "Apparel", "size": "32", "color": "Black",
     "price": "1299", "cost_price": "850", "quantity": 8},
    {"name": "Silk Dupatta", "category": "Accessories", "color": "Red",
     "price": "449", "cost_price": "280", "quantity": 3},
]


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app():
    """Create and configure the Flask application."""
    app_cfg, ai_cfg, db_uri = load_config()

    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = db_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.secret_key = app_cfg.secret_key
    app.config["APP_CONFIG"] = app_cfg
    app.config["AI_CONFIG"] = ai_cfg
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024

    # Session security
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_SECURE"] = (
        os.environ.get("FLASK_ENV", "") != "development"
    )
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)

    # Initialize extensions
    csrf.init_app(app)
    limiter.init_app(app)
    db.init_app(app)

    # SQLite foreign key enforcement
    if "sqlite" in db_uri:
        with app.app_context():
            event.listen(db.engine, "connect", enable_sqlite_fks)

    with app.app_context():
        db.create_all()

    register_ownership_guards(app)
    register_blueprints(app)

    # ------------------------------------------------------------------
    # Request hooks
    # ------------------------------------------------------------------

    @app.before_request
    def load_current_account():
        """Set ``g.current_user``, ``g.current_staff`` and ``g.owner_id``.

        Staff sessions act for the shop owner who employs them.  Shop
        settings are loaded once into ``g.shop_settings``.
        """
        g.current_user = None
        g.current_staff = None
        g.owner_id = None
        g.shop_settings = None

        user = None
        staff_id = session.get("staff_id")
        user_id = session.get("user_id")
        if staff_id:
            staff = db.session.get(Staff, staff_id)
            if staff and staff.is_active:
                g.current_staff = staff
                user = db.session.get(User, staff.user_id)
        elif user_id:
            user = db.session.get(User, user_id)

        if user is None or not user.is_active:
            if staff_id or user_id:
                session.clear()
            g.current_staff = None
            return

        g.current_user = user
        g.owner_id = user.id
        if ensure_account_records(user.id):
            db.session.commit()
        g.shop_settings = load_shop_settings(user.id)

    # ------------------------------------------------------------------
    # Security headers
    # ------------------------------------------------------------------

    @app.after_request
    def set_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = response.headers.get("Cache-Control", "no-store")
        if os.environ.get("FLASK_ENV") == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # ------------------------------------------------------------------
    # Error handlers
    # ------------------------------------------------------------------

    @app.errorhandler(ShopError)
    def shop_error(error: ShopError):
        db.session.rollback()
        body = {
            "error": translate(error.msg, current_language(), **error.params),
            "code": error.msg.value,
        }
        if isinstance(error, DemoLimitReached):
            body.update(kind=error.kind, current=error.current, max=error.maximum)
        elif isinstance(error, FeatureLocked):
            body["feature"] = error.feature
        return jsonify(body), error.status_code

    @app.errorhandler(OwnershipSecurityError)
    def ownership_error(error):
        db.session.rollback()
        logger.error("%s", error)
        return jsonify({"error": translate(Msg.PERMISSION_DENIED, current_language())}), 403

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        msg = _HTTP_MESSAGES.get(error.code)
        if msg is None:
            return jsonify({"error": error.description}), error.code
        body = {"error": translate(msg, current_language(), detail=error.description or "")}
        if error.code == 401:
            body["login_required"] = True
        return jsonify(body), error.code

    @app.errorhandler(500)
    def server_error(_error):
        db.session.rollback()
        return jsonify({"error": translate(Msg.SERVER_ERROR, current_language())}), 500

    # ------------------------------------------------------------------
    # CLI commands
    # ------------------------------------------------------------------

    @app.cli.command("check-subscriptions")
    def check_subscriptions_command():
        """Deactivate paid plans that are past their expiry date."""
        expired = check_subscription_expiry()
        click.echo(f"Expired subscriptions: {expired}")

    @app.cli.command("seed-demo")
    @click.option("--phone", default="9999999999", show_default=True)
    @click.option("--password", default="demo1234", show_default=True)
    def seed_demo_command(phone, password):
        """Create a demo shop account with a few inventory items."""
        from services.auth import register_account
        from services.inventory import apply_item_fields, generate_sku

        if User.query.filter_by(phone=phone).first():
            click.echo(f"Account {phone} already exists.")
            return
        user = register_account(phone, password, "Revonn Demo Store", "Demo Owner")
        for data in _DEMO_ITEMS:
            item = apply_item_fields(InventoryItem(user_id=user.id), data)
            item.sku = generate_sku(item.name)
            db.session.add(item)
        db.session.commit()
        click.echo(f"Created demo account {phone} with {len(_DEMO_ITEMS)} items.")

    return app


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "false").lower() in (
        "true",
        "1",
        "yes",
    )
    host = os.environ.get("FLASK_HOST", "127.0.0.1")
    port = int(os.environ.get("FLASK_PORT", 5000))
    logger.info("Starting application on %s:%s (debug=%s)", host, port, debug_mode)
    app.run(host=host, port=port, debug=debug_mode)
