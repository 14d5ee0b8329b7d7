from __future__ import annotations

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from allgood.core.config import settings
from allgood.schemas.checkout import CheckoutRequest, PortalLinkRequest, PortalSessionRequest
from allgood.schemas.common import UrlResponse
from allgood.services import stripe_service
from allgood.services.locale_service import (
    currency_and_amount,
    detect_country,
    detect_language,
    load_locale,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _checkout_context(payload: Optional[CheckoutRequest], accept_language: Optional[str]):
    # UI language may come from the page's menu; currency always follows the header
    chosen = payload.language if payload else None
    lang = detect_language(chosen) if chosen else detect_language(accept_language)
    country = detect_country(accept_language)
    pricing = currency_and_amount(lang, country)
    logger.info("[CHECKOUT] lang=%s country=%s currency=%s locale=%s", lang, country, pricing.currency, pricing.locale)
    return lang, pricing, load_locale(lang)


def _return_base(origin: Optional[str]) -> str:
    return (origin or settings.BASE_URL).rstrip("/")


@router.post("/create-checkout-session", response_model=UrlResponse, response_model_exclude_none=True)
async def create_checkout_session(
    payload: Optional[CheckoutRequest] = None,
    accept_language: Optional[str] = Header(default=None),
    origin: Optional[str] = Header(default=None),
):
    lang, pricing, translations = _checkout_context(payload, accept_language)
    try:
        url = await run_in_threadpool(
            stripe_service.create_checkout_session,
            lang=lang,
            pricing=pricing,
            translations=translations,
            base_url=_return_base(origin),
        )
    except stripe.StripeError as e:
        logger.error("Error creating checkout session: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create checkout session")
    return UrlResponse(url=url)


@router.post("/create-subscription-session", response_model=UrlResponse, response_model_exclude_none=True)
async def create_subscription_session(
    payload: Optional[CheckoutRequest] = None,
    accept_language: Optional[str] = Header(default=None),
    origin: Optional[str] = Header(default=None),
):
    lang, pricing, translations = _checkout_context(payload, accept_language)
    try:
        url = await run_in_threadpool(
            stripe_service.create_subscription_session,
            lang=lang,
            pricing=pricing,
            translations=translations,
            base_url=_return_base(origin),
        )
    except stripe.StripeError as e:
        logger.error("Error creating subscription session: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create subscription session")
    return UrlResponse(url=url)


@router.post("/create-portal-session", response_model=UrlResponse, response_model_exclude_none=True)
async def create_portal_session(payload: PortalSessionRequest, request: Request):
    if not payload.customer_id:
        raise HTTPException(status_code=400, detail="Customer ID is required")
    try:
        url = await run_in_threadpool(
            stripe_service.create_portal_session,
            payload.customer_id,
            str(request.base_url),
        )
    except stripe.StripeError as e:
        logger.error("[PORTAL] Error creating portal session: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create portal session")
    return UrlResponse(url=url)


@router.post("/send-portal-link", response_model=UrlResponse)
async def send_portal_link(payload: PortalLinkRequest, request: Request):
    """
    Look up the subscriber by email and hand back a billing portal url
    for an immediate redirect.
    """
    if not payload.email:
        raise HTTPException(status_code=400, detail="Email is required")
    try:
        url = await run_in_threadpool(
            stripe_service.find_portal_url,
            payload.email,
            str(request.base_url),
            payload.locale,
        )
    except stripe_service.NoCustomerError:
        logger.info("[MAGIC-LINK] No customer found for %s", payload.email)
        raise HTTPException(status_code=404, detail="No active subscriptions found for this email")
    except stripe_service.NoActiveSubscriptionError:
        logger.info("[MAGIC-LINK] No active subscription for %s", payload.email)
        raise HTTPException(status_code=400, detail="No active subscriptions found for this email")
    except stripe.StripeError as e:
        logger.error("[MAGIC-LINK] Error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to send magic link. Please try again.")
    return UrlResponse(success=True, url=url)
