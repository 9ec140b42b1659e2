"""Blueprint registration."""

from routes.ai import ai_bp
from routes.auth import auth_bp
from routes.customers import customers_bp
from routes.inventory import inventory_bp
from routes.invoices import invoices_bp
from routes.reports import reports_bp
from routes.settings import settings_bp
from routes.staff import staff_bp
from routes.subscription import subscription_bp

ALL_BLUEPRINTS = [
    auth_bp,
    settings_bp,
    subscription_bp,
    inventory_bp,
    customers_bp,
    invoices_bp,
    staff_bp,
    reports_bp,
    ai_bp,
]


def register_blueprints(app):
    """Register all application blueprints on *app*."""
    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)
