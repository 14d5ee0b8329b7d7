from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

PACKAGE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_tax_ids() -> Dict[int, str]:
    raw = os.getenv("ZOHO_TAX_IDS", "").strip()
    if not raw:
        return {
            21: "303134000000044019",  # IVA 21%
            10: "303134000003174029",  # IVA 10%
            0: "303134000000205025",   # exento / reverse charge / non-EU
        }
    return {int(k): str(v) for k, v in json.loads(raw).items()}


class Settings(BaseModel):
    DEBUG: bool = _env_bool("DEBUG")
    APP_VERSION: str = os.getenv("APP_VERSION", "1.0.0")
    BASE_URL: str = os.getenv("BASE_URL", "https://allgood.click")
    # Empty disables the log file
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")

    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite+aiosqlite:///./data/analytics.db",
    )

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Stripe
    STRIPE_LIVE_MODE: bool = _env_bool("STRIPE_LIVE_MODE")
    STRIPE_LIVE_SECRET_KEY: str = os.getenv("STRIPE_LIVE_SECRET_KEY", "")
    STRIPE_LIVE_PUBLISHABLE_KEY: str = os.getenv("STRIPE_LIVE_PUBLISHABLE_KEY", "")
    STRIPE_LIVE_WEBHOOK_SECRET: str = os.getenv("STRIPE_LIVE_WEBHOOK_SECRET", "")
    STRIPE_TEST_SECRET_KEY: str = os.getenv("STRIPE_TEST_SECRET_KEY", "")
    STRIPE_TEST_PUBLISHABLE_KEY: str = os.getenv("STRIPE_TEST_PUBLISHABLE_KEY", "")
    STRIPE_TEST_WEBHOOK_SECRET: str = os.getenv("STRIPE_TEST_WEBHOOK_SECRET", "")

    # Prices in the smallest currency unit
    PRICE_ONETIME_EUR: int = int(os.getenv("PRICE_ONETIME_EUR", "499"))
    PRICE_ONETIME_USD: int = int(os.getenv("PRICE_ONETIME_USD", "499"))
    PRICE_SUBSCRIPTION_EUR: int = int(os.getenv("PRICE_SUBSCRIPTION_EUR", "999"))
    PRICE_SUBSCRIPTION_USD: int = int(os.getenv("PRICE_SUBSCRIPTION_USD", "999"))

    # Zoho Invoice
    ZOHO_INVOICING_ENABLED: bool = _env_bool("ZOHO_INVOICING_ENABLED")
    ZOHO_CLIENT_ID: str = os.getenv("ZOHO_CLIENT_ID", "")
    ZOHO_CLIENT_SECRET: str = os.getenv("ZOHO_CLIENT_SECRET", "")
    ZOHO_REFRESH_TOKEN: str = os.getenv("ZOHO_REFRESH_TOKEN", "")
    ZOHO_ORGANIZATION_ID: str = os.getenv("ZOHO_ORGANIZATION_ID", "579151184")
    ZOHO_API_BASE_URL: str = os.getenv("ZOHO_API_BASE_URL", "https://www.zohoapis.com/invoice/v3")
    ZOHO_ACCOUNTS_URL: str = os.getenv("ZOHO_ACCOUNTS_URL", "https://accounts.zoho.com/oauth/v2/token")
    ZOHO_TOKEN_TTL_SECONDS: int = int(os.getenv("ZOHO_TOKEN_TTL_SECONDS", str(55 * 60)))
    ZOHO_TAX_IDS: Dict[int, str] = _env_tax_ids()
    ZOHO_VAT_CUSTOM_FIELD_ID: str = os.getenv("ZOHO_VAT_CUSTOM_FIELD_ID", "303134000000048063")
    ZOHO_HOME_COUNTRY: str = os.getenv("ZOHO_HOME_COUNTRY", "ES")

    # SMTP notifications
    SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "465"))
    SMTP_USE_SSL: bool = _env_bool("SMTP_USE_SSL", "true")
    SMTP_USER: str = os.getenv("SMTP_USER", "your-email@example.com")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", os.getenv("GMAIL_APP_PASSWORD", ""))
    NOTIFY_FROM: str = os.getenv("NOTIFY_FROM", "allgood.click <your-email@example.com>")
    NOTIFY_TO: str = os.getenv("NOTIFY_TO", "your-email@example.com")

    # Admin
    STATS_PASSWORD: str = os.getenv("STATS_PASSWORD", "")
    ADMIN_SESSION_MAX_AGE_SECONDS: int = int(os.getenv("ADMIN_SESSION_MAX_AGE_SECONDS", str(24 * 60 * 60)))
    COOKIE_SECURE: bool = _env_bool("COOKIE_SECURE")

    # Analytics
    ANALYTICS_RETENTION_DAYS: int = int(os.getenv("ANALYTICS_RETENTION_DAYS", "90"))
    ANALYTICS_OWN_DOMAIN: str = os.getenv("ANALYTICS_OWN_DOMAIN", "allgood.click")

    LOCALES_DIR: str = os.getenv("LOCALES_DIR", str(PACKAGE_DIR / "locales"))
    PUBLIC_DIR: str = os.getenv("PUBLIC_DIR", str(PACKAGE_DIR / "public"))
    ADMIN_PAGES_DIR: str = os.getenv("ADMIN_PAGES_DIR", str(PACKAGE_DIR / "admin_pages"))

    @property
    def stripe_secret_key(self) -> str:
        return self.STRIPE_LIVE_SECRET_KEY if self.STRIPE_LIVE_MODE else self.STRIPE_TEST_SECRET_KEY

    @property
    def stripe_publishable_key(self) -> str:
        return self.STRIPE_LIVE_PUBLISHABLE_KEY if self.STRIPE_LIVE_MODE else self.STRIPE_TEST_PUBLISHABLE_KEY

    @property
    def stripe_webhook_secret(self) -> str:
        return self.STRIPE_LIVE_WEBHOOK_SECRET if self.STRIPE_LIVE_MODE else self.STRIPE_TEST_WEBHOOK_SECRET


settings = Settings()
