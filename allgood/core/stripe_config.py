import logging

import stripe

from allgood.core.config import settings

logger = logging.getLogger(__name__)

stripe.api_key = settings.stripe_secret_key

# Digital services tax code used on every price
STRIPE_TAX_CODE = "txcd_10000000"

# Locales the hosted billing portal understands
PORTAL_LOCALES = ("de", "en", "es", "fr", "it", "ja", "nl", "pl", "pt", "zh")


def log_stripe_mode() -> None:
    mode = "LIVE" if settings.STRIPE_LIVE_MODE else "TEST"
    logger.info("Stripe mode: %s (using %s keys)", mode, mode)
    if not settings.STRIPE_LIVE_MODE:
        logger.info("Set STRIPE_LIVE_MODE=true to go live")
