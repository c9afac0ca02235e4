# backend/storefront/config.py
from __future__ import annotations
import os
from dataclasses import dataclass

from flask import current_app


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key (also signs ticket QR payloads)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")

    # PayMongo gateway
    PAYMONGO_SECRET_KEY = os.environ.get("PAYMONGO_SECRET_KEY", "")
    PAYMONGO_WEBHOOK_SECRET = os.environ.get("PAYMONGO_WEBHOOK_SECRET", "")
    # 0 disables the timestamp freshness check on signed webhooks
    PAYMONGO_WEBHOOK_TOLERANCE_SECONDS = _env_int("PAYMONGO_WEBHOOK_TOLERANCE_SECONDS", 0)
    PAYMONGO_BASE_URL = os.environ.get("PAYMONGO_BASE_URL", "https://api.paymongo.com/v1")
    PAYMONGO_TIMEOUT_SECONDS = _env_float("PAYMONGO_TIMEOUT_SECONDS", 30.0)
    PAYMONGO_MAX_RETRIES = _env_int("PAYMONGO_MAX_RETRIES", 2)

    # Shipping origin and defaults
    STORE_ORIGIN_CITY = os.environ.get("STORE_ORIGIN_CITY", "")
    STORE_ORIGIN_PROVINCE = os.environ.get("STORE_ORIGIN_PROVINCE", "")
    DEFAULT_SHIPPING_REGION = os.environ.get("DEFAULT_SHIPPING_REGION", "luzon")
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "PHP")

    # Flask-Mail
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "localhost")
    MAIL_PORT = _env_int("MAIL_PORT", 25)
    MAIL_USE_TLS = os.environ.get("MAIL_USE_TLS", "false").lower() == "true"
    MAIL_USE_SSL = os.environ.get("MAIL_USE_SSL", "false").lower() == "true"
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", "no-reply@storefront.local")
    MAIL_SUPPRESS_SEND = os.environ.get("MAIL_SUPPRESS_SEND", "false").lower() == "true"

    # Realtime relay for in-app notifications (empty disables pushes)
    NOTIFICATION_RELAY_URL = os.environ.get("NOTIFICATION_RELAY_URL", "")
    NOTIFICATION_RELAY_TIMEOUT_SECONDS = _env_float("NOTIFICATION_RELAY_TIMEOUT_SECONDS", 2.0)

    # Business rules
    SUSPENSION_CANCELLATION_THRESHOLD = _env_int("SUSPENSION_CANCELLATION_THRESHOLD", 3)
    MAX_TICKETS_PER_USER = _env_int("MAX_TICKETS_PER_USER", 5)


@dataclass(frozen=True)
class CommerceConfig:
    """
    Immutable view of the business settings services depend on.

    WHY: Services receive this explicitly instead of reading globals, so a
    test can build one with different origin/threshold values without
    touching the environment.
    """
    webhook_secret: str = ""
    webhook_tolerance_seconds: int = 0
    paymongo_secret_key: str = ""
    paymongo_base_url: str = "https://api.paymongo.com/v1"
    paymongo_timeout_seconds: float = 30.0
    paymongo_max_retries: int = 2
    origin_city: str = ""
    origin_province: str = ""
    default_region: str = "luzon"
    currency: str = "PHP"
    relay_url: str = ""
    relay_timeout_seconds: float = 2.0
    suspension_threshold: int = 3
    max_tickets_per_user: int = 5
    frontend_url: str = "http://localhost:5173"
    signing_key: str = "dev-secret-key-change-me"

    @classmethod
    def from_mapping(cls, cfg) -> "CommerceConfig":
        return cls(
            webhook_secret=cfg.get("PAYMONGO_WEBHOOK_SECRET") or "",
            webhook_tolerance_seconds=int(cfg.get("PAYMONGO_WEBHOOK_TOLERANCE_SECONDS") or 0),
            paymongo_secret_key=cfg.get("PAYMONGO_SECRET_KEY") or "",
            paymongo_base_url=cfg.get("PAYMONGO_BASE_URL") or "https://api.paymongo.com/v1",
            paymongo_timeout_seconds=float(cfg.get("PAYMONGO_TIMEOUT_SECONDS") or 30.0),
            paymongo_max_retries=int(cfg.get("PAYMONGO_MAX_RETRIES") or 0),
            origin_city=cfg.get("STORE_ORIGIN_CITY") or "",
            origin_province=cfg.get("STORE_ORIGIN_PROVINCE") or "",
            default_region=cfg.get("DEFAULT_SHIPPING_REGION") or "luzon",
            currency=cfg.get("DEFAULT_CURRENCY") or "PHP",
            relay_url=cfg.get("NOTIFICATION_RELAY_URL") or "",
            relay_timeout_seconds=float(cfg.get("NOTIFICATION_RELAY_TIMEOUT_SECONDS") or 2.0),
            suspension_threshold=int(cfg.get("SUSPENSION_CANCELLATION_THRESHOLD") or 3),
            max_tickets_per_user=int(cfg.get("MAX_TICKETS_PER_USER") or 5),
            frontend_url=cfg.get("FRONTEND_URL") or "http://localhost:5173",
            signing_key=cfg.get("SECRET_KEY") or "dev-secret-key-change-me",
        )


def get_commerce_config() -> CommerceConfig:
    """Return the CommerceConfig built for the current app."""
    return current_app.extensions["commerce_config"]
