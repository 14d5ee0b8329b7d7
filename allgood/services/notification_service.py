"""
Owner notifications by SMTP.

Every sender returns True/False and logs failures. Nothing here raises into
the webhook: a lost email must not make Stripe retry a processed payment.
"""
from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from email.utils import formatdate
from typing import Any, Optional

from allgood.core.config import settings

logger = logging.getLogger(__name__)

SMTP_TIMEOUT = 30

VAT_LABELS = {
    "ES": "NIF",
    "DE": "USt-ID",
    "AT": "UID",
    "CH": "CHE-Nr",
}


@dataclass
class PaymentNotice:
    """What the owner is told about one payment event."""

    amount: str = "N/A"
    currency: str = ""
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    address: Optional[dict[str, Any]] = None
    vat_number: Optional[str] = None
    payment_type: str = "payment"
    session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_subscription(self) -> bool:
        return self.payment_type == "subscription"


def vat_label(country: Optional[str]) -> str:
    return VAT_LABELS.get((country or "").upper(), "VAT/USt-ID")


def format_address_block(notice: PaymentNotice) -> str:
    addr = notice.address or {}
    if not addr and not notice.vat_number:
        return ""

    lines = ["", "Rechnungsadresse:"]
    if notice.customer_name:
        lines.append(f"  {notice.customer_name}")
    for key in ("line1", "line2"):
        if addr.get(key):
            lines.append(f"  {addr[key]}")
    city_line = " ".join(p for p in (addr.get("postal_code"), addr.get("city")) if p)
    if city_line:
        lines.append(f"  {city_line}")
    if addr.get("state"):
        lines.append(f"  {addr['state']}")
    if addr.get("country"):
        lines.append(f"  {addr['country']}")
    if notice.vat_number:
        lines.append(f"  {vat_label(addr.get('country'))}: {notice.vat_number}")
    return "\n".join(lines) + "\n"


def _send(subject: str, body: str, to: Optional[str] = None) -> bool:
    if not settings.SMTP_PASSWORD:
        logger.error("[EMAIL] SMTP password not configured, skipping: %s", subject)
        return False

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.NOTIFY_FROM
    msg["To"] = to or settings.NOTIFY_TO
    msg["Date"] = formatdate(localtime=True)
    msg.set_content(body)

    try:
        if settings.SMTP_USE_SSL:
            with smtplib.SMTP_SSL(
                settings.SMTP_HOST,
                settings.SMTP_PORT,
                context=ssl.create_default_context(),
                timeout=SMTP_TIMEOUT,
            ) as smtp:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=SMTP_TIMEOUT) as smtp:
                smtp.starttls(context=ssl.create_default_context())
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("[EMAIL] Failed to send '%s': %s", subject, e)
        return False

    logger.info("[EMAIL] Sent: %s", subject)
    return True


def send_payment_notification(kind: str, notice: PaymentNotice, test_mode: bool = False) -> bool:
    """``kind`` is ``"success"`` or ``"error"``."""
    stamp = notice.created_at.strftime("%d.%m.%Y %H:%M:%S")

    if kind == "success":
        label = "Monats-Abo" if notice.is_subscription else "Einmalzahlung"
        subject = f"✅ allgood.click - {label} erhalten!"
        body = (
            f"Neue Zahlung auf allgood.click!\n\n"
            f"Typ: {label}\n"
            f"Betrag: {notice.amount} {notice.currency.upper()}\n"
            f"Kunde: {notice.customer_name or '-'} <{notice.customer_email or '-'}>\n"
            f"Stripe Session: {notice.session_id or 'N/A'}\n"
            f"Zeit: {stamp}\n"
            f"{format_address_block(notice)}"
        )
    else:
        subject = "❌ allgood.click - Zahlungsfehler!"
        body = (
            f"Eine Zahlung ist fehlgeschlagen.\n\n"
            f"Betrag: {notice.amount} {notice.currency.upper()}\n"
            f"Kunde: {notice.customer_email or '-'}\n"
            f"Payment Intent: {notice.payment_intent_id or 'N/A'}\n"
            f"Fehler: {notice.error_message or 'Unbekannt'}\n"
            f"Zeit: {stamp}\n"
        )

    if test_mode:
        subject = f"🧪 TEST - {subject}"
        body = "Dies ist eine Stripe-Testzahlung.\n\n" + body

    return _send(subject, body)


def send_invoice_ok_email(invoice) -> bool:
    """``invoice`` is a ``zoho_service.InvoiceResult``."""
    data = invoice.data
    tax = data.tax
    subject = f"✅ Rechnung erstellt: {invoice.invoice_number}"
    if data.is_test_mode:
        subject = f"🧪 TEST - {subject}"

    body = (
        f"Zoho Rechnung {invoice.invoice_number} wurde erstellt und versendet.\n\n"
        f"Kunde: {data.customer_name or '-'} <{data.customer_email}>\n"
        f"Land: {data.country or '-'}\n"
        f"Netto: {tax.net} {data.currency.upper()}\n"
        f"Steuer ({tax.rate_percent.normalize():f}%, {tax.regime.value}): {tax.tax} {data.currency.upper()}\n"
        f"Brutto: {tax.gross} {data.currency.upper()}\n"
        f"Stripe Session: {data.stripe_session_id}\n\n"
        f"{invoice.invoice_url}\n"
    )
    return _send(subject, body)


def send_invoice_error_email(info: dict[str, Any]) -> bool:
    subject = "⚠️ Zoho Rechnung Fehler - Manuelle Aktion erforderlich"
    lines = [
        "Die Zoho Rechnung konnte nicht erstellt werden.",
        "Bitte die Rechnung manuell anlegen.",
        "",
        f"Fehler: {info.get('error') or 'Unbekannt'}",
    ]
    for key in ("event_id", "customer_email", "customer_name", "country", "amount", "currency", "session_id", "payment_intent"):
        if info.get(key):
            lines.append(f"{key}: {info[key]}")
    return _send(subject, "\n".join(lines) + "\n")
