"""Configuration loading: YAML file plus environment-variable overrides."""

from __future__ import annotations

import logging
import os
import secrets

import yaml

from config_models import AIConfig, AppConfig

logger = logging.getLogger(__name__)


def _env_flag(name: str, fallback) -> bool:
    return os.environ.get(name, str(fallback)).lower() in ("true", "1", "yes")


def load_config():
    """Load configuration from *config.yaml* with env-var overrides.

    Environment variables take precedence over config.yaml values.
    Returns (AppConfig, AIConfig, database_uri).
    """
    config_path = os.environ.get("CONFIG_PATH", "config.yaml")
    raw: dict = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}

    app_cfg = raw.get("app", {})
    ai_cfg = raw.get("ai", {})
    db_cfg = raw.get("database", {})

    secret_key = os.environ.get("APP_SECRET_KEY", app_cfg.get("secret_key", ""))
    if not secret_key or secret_key == "change-me":
        secret_key = secrets.token_hex(32)
        logger.warning(
            "Using auto-generated secret key. Set APP_SECRET_KEY env var "
            "or app.secret_key in config.yaml for stable sessions across restarts."
        )

    api_key = os.environ.get("AI_API_KEY", ai_cfg.get("api_key", ""))

    return (
        AppConfig(
            name=app_cfg.get("name", "Revonn"),
            secret_key=secret_key,
            base_currency=app_cfg.get("base_currency", "INR"),
            default_language=os.environ.get(
                "DEFAULT_LANGUAGE", app_cfg.get("default_language", "en")
            ),
            invoice_prefix=os.environ.get(
                "INVOICE_PREFIX", app_cfg.get("invoice_prefix", "INV")
            ),
            low_stock_threshold=int(
                os.environ.get(
                    "LOW_STOCK_THRESHOLD", app_cfg.get("low_stock_threshold", 5)
                )
            ),
        ),
        AIConfig(
            enabled=_env_flag("AI_ENABLED", ai_cfg.get("enabled", bool(api_key))),
            api_key=api_key,
            base_url=os.environ.get(
                "AI_BASE_URL", ai_cfg.get("base_url", "https://api.openai.com/v1")
            ).rstrip("/"),
            chat_model=os.environ.get(
                "AI_CHAT_MODEL", ai_cfg.get("chat_model", "gpt-4o-mini")
            ),
            agent_model=os.environ.get(
                "AI_AGENT_MODEL", ai_cfg.get("agent_model", "gpt-4o-mini")
            ),
            image_model=os.environ.get(
                "AI_IMAGE_MODEL", ai_cfg.get("image_model", "gpt-image-1")
            ),
            timeout=int(os.environ.get("AI_TIMEOUT", ai_cfg.get("timeout", 60))),
        ),
        os.environ.get("DATABASE_URI", db_cfg.get("uri", "sqlite:///revonn.db")),
    )


def enable_sqlite_fks(dbapi_conn, _connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
