"""
Stripe webhook processing.

Signature checks and event-id deduplication happen in the route; this module
runs one verified event to completion, step by step, and reports what it did
in a ``WebhookOutcome``. Failures after a verified signature are recorded,
never raised: Stripe gets its 200 either way.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

import requests
import stripe
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from allgood.core.config import settings
from allgood.core.context import AppContext
from allgood.core.tax import (
    InvoicingError,
    TaxResult,
    first_invoice_tax_amount,
    reconcile_invoice,
    reconcile_session,
    to_major_units,
)
from allgood.db.base import utcnow
from allgood.models.stripe_event import StripeEvent
from allgood.services import notification_service, stripe_service
from allgood.services.notification_service import PaymentNotice
from allgood.services.zoho_service import InvoiceData, ZohoClient

logger = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    event_id: str
    event_type: str
    duplicate: bool = False
    actions: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def did(self, action: str) -> None:
        self.actions.append(action)

    def failed(self, step: str, error: Exception | str) -> None:
        self.errors.append(f"{step}: {error}")


# -----------------------------
# Idempotency
# -----------------------------
async def record_event(db: AsyncSession, event: Mapping[str, Any]) -> bool:
    """
    Insert the event id. Returns False when it was already there.

    The unique constraint on ``stripe_event_id`` is the lock, so two
    concurrent deliveries cannot both pass.
    """
    db.add(
        StripeEvent(
            stripe_event_id=event["id"],
            event_type=event["type"],
            livemode=bool(event.get("livemode")),
            stripe_event_created=int(event.get("created") or 0),
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("[WEBHOOK] Duplicate delivery of %s ignored", event["id"])
        return False
    return True


async def save_outcome(db: AsyncSession, outcome: WebhookOutcome) -> None:
    await db.execute(
        update(StripeEvent)
        .where(StripeEvent.stripe_event_id == outcome.event_id)
        .values(
            processed_at=utcnow(),
            actions=",".join(outcome.actions)[:500],
            errors="\n".join(outcome.errors) or None,
        )
    )
    await db.commit()


# -----------------------------
# Session -> invoice data
# -----------------------------
def _customer_details(session: Mapping[str, Any]) -> Mapping[str, Any]:
    return session.get("customer_details") or {}


def _first_tax_id(session: Mapping[str, Any]) -> Optional[str]:
    tax_ids = _customer_details(session).get("tax_ids") or []
    return tax_ids[0].get("value") if tax_ids else None


def _country(session: Mapping[str, Any]) -> Optional[str]:
    address = _customer_details(session).get("address") or {}
    return address.get("country")


def load_session_invoice(
    full_session: Mapping[str, Any],
    retrieve_invoice: Optional[Callable[[str], dict]] = None,
) -> Optional[Mapping[str, Any]]:
    invoice = full_session.get("invoice")
    if not invoice:
        return None
    if isinstance(invoice, str):
        return (retrieve_invoice or stripe_service.retrieve_invoice)(invoice)
    return invoice


def _invoice_rate(invoice: Mapping[str, Any], retrieve_tax_rate: Callable[[str], Optional[float]]):
    entry = first_invoice_tax_amount(invoice)
    if not entry or not entry.get("tax_rate"):
        return None
    tax_rate = entry["tax_rate"]
    if isinstance(tax_rate, str):
        return retrieve_tax_rate(tax_rate)
    return tax_rate.get("percentage")


def resolve_session_tax(
    full_session: Mapping[str, Any],
    invoice: Optional[Mapping[str, Any]],
    retrieve_tax_rate: Optional[Callable[[str], Optional[float]]] = None,
) -> TaxResult:
    """The invoice is authoritative; a session without one falls back to its own totals."""
    country = _country(full_session)
    if invoice is not None:
        rate = _invoice_rate(invoice, retrieve_tax_rate or stripe_service.retrieve_tax_rate_percentage)
        return reconcile_invoice(invoice, rate, country=country)

    logger.warning("[WEBHOOK] Session %s has no invoice, using session totals", full_session.get("id"))
    return reconcile_session(full_session, country=country)


def build_invoice_data(
    full_session: Mapping[str, Any],
    tax: TaxResult,
    *,
    test_mode: bool,
    invoice: Optional[Mapping[str, Any]] = None,
) -> InvoiceData:
    details = _customer_details(full_session)
    payment_intent = full_session.get("payment_intent") or (invoice or {}).get("payment_intent")
    if isinstance(payment_intent, Mapping):
        payment_intent = payment_intent.get("id")
    customer = full_session.get("customer")
    if isinstance(customer, Mapping):
        customer = customer.get("id")

    return InvoiceData(
        tax=tax,
        currency=full_session.get("currency") or tax.currency,
        customer_email=details.get("email") or full_session.get("customer_email") or "",
        customer_name=details.get("name"),
        customer_address=details.get("address"),
        country=_country(full_session),
        vat_number=_first_tax_id(full_session),
        tax_exempt=details.get("tax_exempt") or "none",
        payment_type=full_session.get("mode") or "payment",
        stripe_session_id=full_session["id"],
        payment_intent_id=payment_intent,
        customer_id=customer,
        is_test_mode=test_mode,
    )


def _success_notice(session: Mapping[str, Any]) -> PaymentNotice:
    details = _customer_details(session)
    currency = session.get("currency") or "usd"
    return PaymentNotice(
        amount=str(to_major_units(int(session.get("amount_total") or 0), currency)),
        currency=currency,
        customer_email=details.get("email") or session.get("customer_email"),
        customer_name=details.get("name"),
        address=details.get("address"),
        vat_number=_first_tax_id(session),
        payment_type=session.get("mode") or "payment",
        session_id=session.get("id"),
    )


# -----------------------------
# Event handlers
# -----------------------------
def _run_invoice_pipeline(data: InvoiceData, ctx: AppContext, cfg, outcome: WebhookOutcome) -> None:
    client = ZohoClient(cfg, ctx.zoho_tokens)
    try:
        _file_invoice(client, data, outcome)
    finally:
        client.close()


def _file_invoice(client: ZohoClient, data: InvoiceData, outcome: WebhookOutcome) -> None:
    try:
        invoice = client.create_invoice(data)
    except (InvoicingError, requests.RequestException) as e:
        logger.error("[ZOHO] Invoice creation failed for %s: %s", data.stripe_session_id, e)
        outcome.failed("invoice", e)
        notified = notification_service.send_invoice_error_email({
            "error": str(e),
            "session_id": data.stripe_session_id,
            "payment_intent": data.payment_intent_id,
            "customer_email": data.customer_email,
            "customer_name": data.customer_name,
            "country": data.country,
            "amount": str(data.tax.gross),
            "currency": data.currency.upper(),
        })
        if notified:
            outcome.did("invoice_error_notified")
        return
    outcome.did("invoice_created")

    try:
        client.email_invoice(invoice.invoice_id, data.customer_email)
        outcome.did("invoice_emailed")
    except (InvoicingError, requests.RequestException) as e:
        logger.warning("[ZOHO] Email sending failed, continuing: %s", e)
        outcome.failed("invoice_email", e)

    try:
        client.record_payment(
            invoice_id=invoice.invoice_id,
            customer_id=invoice.customer_id,
            amount=data.tax.gross,
            payment_intent_id=data.payment_intent_id,
        )
        outcome.did("payment_recorded")
    except (InvoicingError, requests.RequestException) as e:
        logger.error("[ZOHO] Payment recording failed, invoice stays open: %s", e)
        outcome.failed("payment", e)

    if notification_service.send_invoice_ok_email(invoice):
        outcome.did("invoice_ok_notified")


def handle_checkout_completed(event: Mapping[str, Any], ctx: AppContext, cfg, outcome: WebhookOutcome) -> None:
    session = event["data"]["object"]
    test_mode = not event.get("livemode", False)
    logger.info(
        "[WEBHOOK] Payment successful: session=%s amount=%s %s test=%s",
        session.get("id"),
        session.get("amount_total"),
        session.get("currency"),
        test_mode,
    )

    if notification_service.send_payment_notification("success", _success_notice(session), test_mode):
        outcome.did("owner_notified")

    try:
        full_session = stripe_service.retrieve_full_session(session["id"])
        invoice = load_session_invoice(full_session)
        tax = resolve_session_tax(full_session, invoice)
        data = build_invoice_data(full_session, tax, test_mode=test_mode, invoice=invoice)
    except (stripe.StripeError, ValueError) as e:
        logger.error("[WEBHOOK] Error processing invoice data: %s", e)
        outcome.failed("invoice_data", e)
        return

    logger.info(
        "[WEBHOOK] Tax data: country=%s net=%s tax=%s gross=%s rate=%s%% regime=%s vat=%s",
        data.country,
        tax.net,
        tax.tax,
        tax.gross,
        tax.rate_percent,
        tax.regime.value,
        data.vat_number,
    )

    if not cfg.ZOHO_INVOICING_ENABLED:
        logger.info("[ZOHO] Invoicing disabled, skipping invoice creation")
        outcome.did("invoicing_skipped")
        return

    _run_invoice_pipeline(data, ctx, cfg, outcome)


def handle_payment_failed(event: Mapping[str, Any], outcome: WebhookOutcome) -> None:
    intent = event["data"]["object"]
    error = intent.get("last_payment_error") or {}
    currency = intent.get("currency") or ""
    logger.error("[WEBHOOK] Payment failed: %s", intent.get("id"))

    notice = PaymentNotice(
        amount=str(to_major_units(int(intent.get("amount") or 0), currency)),
        currency=currency,
        customer_email=intent.get("receipt_email"),
        payment_intent_id=intent.get("id"),
        error_message=error.get("message") or "Payment failed",
    )
    if notification_service.send_payment_notification("error", notice, not event.get("livemode", False)):
        outcome.did("owner_notified")


def process_event(event: Mapping[str, Any], ctx: AppContext, cfg=settings) -> WebhookOutcome:
    """
    Run one verified, first-seen event. Blocking (Stripe, Zoho and SMTP are
    synchronous clients); the route runs it in a worker thread.
    """
    outcome = WebhookOutcome(event_id=event["id"], event_type=event["type"])
    event_type = event["type"]

    try:
        if event_type == "checkout.session.completed":
            handle_checkout_completed(event, ctx, cfg, outcome)
        elif event_type == "payment_intent.succeeded":
            logger.info("[WEBHOOK] PaymentIntent succeeded: %s", event["data"]["object"].get("id"))
        elif event_type == "payment_intent.payment_failed":
            handle_payment_failed(event, outcome)
        else:
            logger.info("[WEBHOOK] Unhandled event type %s", event_type)
    except Exception as e:
        # The event row is already committed, so Stripe's retry would be deduplicated
        logger.exception("[WEBHOOK] Unexpected error processing %s", event["id"])
        outcome.failed("unexpected", e)
        obj = (event.get("data") or {}).get("object") or {}
        if notification_service.send_invoice_error_email({
            "error": f"{type(e).__name__}: {e}",
            "event_id": event["id"],
            "session_id": obj.get("id"),
        }):
            outcome.did("error_notified")

    if outcome.errors:
        logger.warning("[WEBHOOK] %s finished with errors: %s", event["id"], "; ".join(outcome.errors))
    return outcome
