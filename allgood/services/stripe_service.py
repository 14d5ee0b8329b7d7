from __future__ import annotations

import logging
from typing import Any, Optional

import stripe

from allgood.core.stripe_config import PORTAL_LOCALES, STRIPE_TAX_CODE
from allgood.services.locale_service import Pricing

logger = logging.getLogger(__name__)

SESSION_EXPAND = ["line_items", "line_items.data.taxes", "customer", "total_details.breakdown", "invoice"]
INVOICE_EXPAND = ["lines.data.tax_amounts"]


class NoCustomerError(LookupError):
    pass


class NoActiveSubscriptionError(LookupError):
    pass


def _to_dict(obj) -> dict[str, Any]:
    # StripeObject -> plain nested dicts, so reconciliation never touches SDK types
    return obj.to_dict() if hasattr(obj, "to_dict") else dict(obj)


def _tax_params() -> dict[str, Any]:
    return {
        "payment_method_types": ["card"],
        "automatic_tax": {"enabled": True},
        "billing_address_collection": "required",
        "tax_id_collection": {"enabled": True},
    }


def _redirect_urls(base_url: str, lang: str) -> dict[str, str]:
    return {
        "ui_mode": "hosted",
        "success_url": f"{base_url}/success.html?session_id={{CHECKOUT_SESSION_ID}}&lang={lang}",
        "cancel_url": f"{base_url}/",
    }


def create_checkout_session(
    *,
    lang: str,
    pricing: Pricing,
    translations: dict[str, Any],
    base_url: str,
) -> str:
    """One-time hosted checkout. Returns the redirect url."""
    session = stripe.checkout.Session.create(
        locale=pricing.locale,
        **_tax_params(),
        customer_creation="always",
        # The invoice carries the tax breakdown the webhook reconciles
        invoice_creation={
            "enabled": True,
            "invoice_data": {
                "description": "Payment for allgood.click service",
                "metadata": {"source": "allgood-one-time-payment"},
            },
        },
        line_items=[
            {
                "price_data": {
                    "currency": pricing.currency,
                    "product_data": {
                        "name": translations.get("stripeProductName") or "Make it REALLY okay",
                        "description": translations.get("stripeProductDescription")
                        or "Premium reality adjustment service",
                        "tax_code": STRIPE_TAX_CODE,
                    },
                    "unit_amount": pricing.amount,
                    "tax_behavior": "inclusive",
                },
                "quantity": 1,
            }
        ],
        mode="payment",
        metadata={"language": lang, "currency": pricing.currency},
        **_redirect_urls(base_url, lang),
    )
    logger.info("[CHECKOUT] Session %s created (%s %s)", session.id, pricing.amount, pricing.currency)
    return session.url


def create_subscription_session(
    *,
    lang: str,
    pricing: Pricing,
    translations: dict[str, Any],
    base_url: str,
) -> str:
    session = stripe.checkout.Session.create(
        locale=pricing.locale,
        **_tax_params(),
        line_items=[
            {
                "price_data": {
                    "currency": pricing.currency,
                    "product_data": {
                        "name": f"{translations.get('stripeProductName') or 'Make it REALLY okay'} - Weekly",
                        "description": translations.get("subscriptionStripeDesc") or "Weekly reality adjustment",
                        "tax_code": STRIPE_TAX_CODE,
                    },
                    "unit_amount": pricing.subscription_amount,
                    "tax_behavior": "inclusive",
                    "recurring": {"interval": "month", "interval_count": 1},
                },
                "quantity": 1,
            }
        ],
        mode="subscription",
        metadata={"language": lang, "currency": pricing.currency, "subscription_type": "weekly_ok"},
        **_redirect_urls(base_url, lang),
    )
    logger.info("[SUBSCRIPTION] Session %s created (%s %s)", session.id, pricing.subscription_amount, pricing.currency)
    return session.url


def portal_locale(lang: Optional[str]) -> str:
    return lang if lang in PORTAL_LOCALES else "auto"


def create_portal_session(customer_id: str, return_url: str, locale: Optional[str] = None) -> str:
    params: dict[str, Any] = {"customer": customer_id, "return_url": return_url}
    if locale:
        params["locale"] = locale
    portal = stripe.billing_portal.Session.create(**params)
    logger.info("[PORTAL] Portal session created for %s", customer_id)
    return portal.url


def find_portal_url(email: str, return_url: str, lang: Optional[str] = None) -> str:
    """
    Portal url for the customer behind ``email``. Raises
    ``NoCustomerError`` / ``NoActiveSubscriptionError``.
    """
    customers = stripe.Customer.list(email=email, limit=1)
    if not customers.data:
        raise NoCustomerError(email)
    customer = customers.data[0]

    subscriptions = stripe.Subscription.list(customer=customer.id, status="active", limit=1)
    if not subscriptions.data:
        raise NoActiveSubscriptionError(customer.id)

    return create_portal_session(customer.id, return_url, locale=portal_locale(lang))


def retrieve_full_session(session_id: str) -> dict[str, Any]:
    return _to_dict(stripe.checkout.Session.retrieve(session_id, expand=SESSION_EXPAND))


def retrieve_invoice(invoice_id: str) -> dict[str, Any]:
    return _to_dict(stripe.Invoice.retrieve(invoice_id, expand=INVOICE_EXPAND))


def retrieve_tax_rate_percentage(tax_rate_id: str) -> Optional[float]:
    rate = stripe.TaxRate.retrieve(tax_rate_id)
    return rate.get("percentage")
