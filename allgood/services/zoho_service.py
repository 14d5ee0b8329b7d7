from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

import requests

from allgood.core.context import TokenCache
from allgood.core.tax import InvoicingError, TaxResult, resolve_tax_id

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30

_VAT_IN_NAME_RE = re.compile(r"\s*\[.*?\]\s*")
_VAT_COUNTRY_PREFIX_RE = re.compile(r"^[A-Z]{2}")


class ZohoError(InvoicingError):
    """A Zoho Invoice call failed or answered with a non-zero code."""


@dataclass
class CustomerData:
    email: str
    name: Optional[str] = None
    country: Optional[str] = None
    address: Optional[dict[str, Any]] = None
    vat_number: Optional[str] = None


@dataclass
class InvoiceData:
    """Everything the invoice pipeline needs from one completed checkout."""

    tax: TaxResult
    currency: str
    customer_email: str
    customer_name: Optional[str]
    customer_address: Optional[dict[str, Any]]
    country: Optional[str]
    vat_number: Optional[str]
    tax_exempt: str
    payment_type: str
    stripe_session_id: str
    payment_intent_id: Optional[str]
    customer_id: Optional[str] = None
    is_test_mode: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_subscription(self) -> bool:
        return self.payment_type == "subscription"

    @property
    def product_name(self) -> str:
        return "allgood.click suscripción" if self.is_subscription else "allgood.click servicio online"


@dataclass
class InvoiceResult:
    invoice_id: str
    invoice_number: str
    customer_id: str
    invoice_url: str
    data: InvoiceData


def strip_vat_prefix(vat_number: str) -> str:
    # "ESB84645654" -> "B84645654"
    return _VAT_COUNTRY_PREFIX_RE.sub("", vat_number)


def _money(value: Decimal) -> float:
    # Zoho's JSON API takes plain numbers
    return float(value)


def _required(body: dict[str, Any], key: str, *fields: str, label: str) -> dict[str, Any]:
    """``body[key]`` with every one of ``fields`` present, else ``ZohoError``."""
    obj = body.get(key)
    if not isinstance(obj, dict) or any(not obj.get(name) for name in fields):
        raise ZohoError(f"Zoho {label} response missing {key}: {body.get('message')}")
    return obj


def build_invoice_notes(data: InvoiceData) -> str:
    spanish = data.country == "ES"
    if data.is_subscription:
        payment_type = "Suscripción mensual" if spanish else "Monatliches Abo"
    else:
        payment_type = "Pago único" if spanish else "Einmalzahlung"
    date_label = "Fecha" if spanish else "Datum"
    stamp = data.created_at.strftime("%d/%m/%Y %H:%M:%S" if spanish else "%d.%m.%Y %H:%M:%S")

    notes = (
        f"Stripe Checkout Session: {data.stripe_session_id}\n"
        f"Payment Intent: {data.payment_intent_id or 'N/A'}\n"
        f"Tipo: {payment_type}\n"
        f"{date_label}: {stamp}"
    )
    if data.is_test_mode:
        marker = (
            "FACTURA DE PRUEBA - Esta es una factura de prueba de Stripe, no una transacción real.\n\n"
            if spanish
            else "TEST RECHNUNG - Dies ist eine Stripe-Testrechnung, keine echte Transaktion.\n\n"
        )
        notes = marker + notes
    return notes


class ZohoClient:
    """
    Thin Zoho Invoice v3 client. Access tokens come from the shared
    ``TokenCache`` and are refreshed with the stored refresh token.
    """

    def __init__(self, settings, token_cache: TokenCache, session: Optional[requests.Session] = None):
        self.settings = settings
        self.token_cache = token_cache
        self.http = session or requests.Session()
        self._owns_session = session is None
        self.base_url = settings.ZOHO_API_BASE_URL.rstrip("/")

    def close(self) -> None:
        if self._owns_session:
            self.http.close()

    def __enter__(self) -> "ZohoClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -----------------------------
    # Auth
    # -----------------------------
    def _fetch_access_token(self) -> str:
        s = self.settings
        if not (s.ZOHO_CLIENT_ID and s.ZOHO_CLIENT_SECRET and s.ZOHO_REFRESH_TOKEN):
            raise ZohoError("Zoho credentials not found")

        resp = self.http.post(
            s.ZOHO_ACCOUNTS_URL,
            data={
                "refresh_token": s.ZOHO_REFRESH_TOKEN,
                "client_id": s.ZOHO_CLIENT_ID,
                "client_secret": s.ZOHO_CLIENT_SECRET,
                "grant_type": "refresh_token",
            },
            timeout=REQUEST_TIMEOUT,
        )
        if not resp.ok:
            raise ZohoError(f"Zoho auth failed: {resp.status_code}")

        token = resp.json().get("access_token")
        if not token:
            raise ZohoError("Zoho auth response had no access_token")
        logger.info("[ZOHO] Access token refreshed")
        return token

    def access_token(self) -> str:
        return self.token_cache.get(self._fetch_access_token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Zoho-oauthtoken {self.access_token()}",
            "X-com-zoho-invoice-organizationid": self.settings.ZOHO_ORGANIZATION_ID,
        }

    def _request(self, method: str, path: str, *, label: str, **kwargs) -> dict[str, Any]:
        resp = self.http.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers(),
            timeout=REQUEST_TIMEOUT,
            **kwargs,
        )
        if not resp.ok:
            raise ZohoError(f"Zoho {label} error: {resp.status_code} - {resp.text}")
        body = resp.json()
        if body.get("code") != 0:
            raise ZohoError(f"Zoho {label} error: {body.get('message')}")
        return body

    # -----------------------------
    # Contacts
    # -----------------------------
    @staticmethod
    def _contact_matches(contact: dict[str, Any], customer: CustomerData) -> bool:
        existing_name = _VAT_IN_NAME_RE.sub("", contact.get("contact_name") or "").strip().lower()
        new_name = (customer.name or customer.email).strip().lower()

        billing = contact.get("billing_address") or {}
        existing_country = billing.get("country_code") or billing.get("country") or ""
        new_country = customer.country or ""

        return existing_name == new_name and existing_country.upper() == new_country.upper()

    def _update_contact_if_needed(self, contact: dict[str, Any], customer: CustomerData) -> None:
        has_vat = bool(customer.vat_number)
        expected_sub_type = "business" if has_vat else "individual"
        needs_name = has_vat and customer.vat_number not in (contact.get("contact_name") or "")
        needs_sub_type = contact.get("customer_sub_type") != expected_sub_type

        if not (needs_name or needs_sub_type):
            return

        payload: dict[str, Any] = {"customer_sub_type": expected_sub_type}
        if needs_name:
            payload["contact_name"] = f"{customer.name or customer.email} [{customer.vat_number}]"
            payload["company_id"] = strip_vat_prefix(customer.vat_number)

        try:
            self._request("PUT", f"/contacts/{contact['contact_id']}", label="contact update", json=payload)
            logger.info("[ZOHO-CUSTOMER] Customer %s updated (%s)", contact["contact_id"], expected_sub_type)
        except (ZohoError, requests.RequestException) as e:
            # The invoice can still be filed against the old contact data
            logger.warning("[ZOHO-CUSTOMER] Could not update customer, continuing: %s", e)

    def _contact_payload(self, customer: CustomerData) -> dict[str, Any]:
        name = customer.name or customer.email
        if customer.vat_number:
            # Square brackets keep VAT ids apart from Zoho's own "(...)" suffixes
            name = f"{name} [{customer.vat_number}]"

        payload: dict[str, Any] = {
            "contact_name": name,
            "contact_type": "customer",
            "customer_sub_type": "business" if customer.vat_number else "individual",
            "contact_persons": [{"email": customer.email, "is_primary_contact": True}],
        }

        if customer.address:
            addr = customer.address
            payload["billing_address"] = {
                "address": addr.get("line1") or "",
                "street2": addr.get("line2") or "",
                "city": addr.get("city") or "",
                "state": addr.get("state") or "",
                "zip": addr.get("postal_code") or "",
                "country": addr.get("country") or "",
            }

        if customer.vat_number:
            clean = strip_vat_prefix(customer.vat_number)
            payload["company_id"] = clean
            payload["custom_fields"] = [
                {"field_id": self.settings.ZOHO_VAT_CUSTOM_FIELD_ID, "value": clean},
            ]
        return payload

    def find_or_create_customer(self, customer: CustomerData) -> tuple[str, bool]:
        """
        Return ``(contact_id, existing)``. An existing contact only counts
        when email, name and country all match.
        """
        logger.info("[ZOHO-CUSTOMER] Finding or creating customer %s", customer.email)

        search = self.http.get(
            f"{self.base_url}/contacts",
            params={"email": customer.email},
            headers=self._headers(),
            timeout=REQUEST_TIMEOUT,
        )
        if search.ok:
            for contact in search.json().get("contacts") or []:
                if contact.get("contact_id") and self._contact_matches(contact, customer):
                    logger.info("[ZOHO-CUSTOMER] Using existing customer %s", contact["contact_id"])
                    self._update_contact_if_needed(contact, customer)
                    return contact["contact_id"], True

        payload = self._contact_payload(customer)
        resp = self.http.post(
            f"{self.base_url}/contacts",
            json=payload,
            headers=self._headers(),
            timeout=REQUEST_TIMEOUT,
        )

        if not resp.ok:
            text = resp.text
            if "ya existe" not in text and "already exists" not in text:
                raise ZohoError(f"Zoho customer creation error: {resp.status_code} - {text}")

            logger.warning("[ZOHO-CUSTOMER] Contact name already exists, retrying with a suffix")
            payload["contact_name"] = f"{customer.name or customer.email} ({str(int(time.time() * 1000))[-6:]})"
            body = self._request("POST", "/contacts", label="customer creation (retry)", json=payload)
        else:
            body = resp.json()
            if body.get("code") != 0:
                raise ZohoError(f"Zoho customer error: {body.get('message')}")

        contact_id = _required(body, "contact", "contact_id", label="customer")["contact_id"]
        logger.info("[ZOHO-CUSTOMER] Customer created: %s", contact_id)
        return contact_id, False

    # -----------------------------
    # Invoices & payments
    # -----------------------------
    def create_invoice(self, data: InvoiceData) -> InvoiceResult:
        # Resolve the tax id first: an unmapped rate must not leave a stray contact behind
        tax_id = resolve_tax_id(
            data.tax,
            country=data.country,
            has_tax_id=bool(data.vat_number),
            tax_ids=self.settings.ZOHO_TAX_IDS,
            home_country=self.settings.ZOHO_HOME_COUNTRY,
        )

        customer_id, existing = self.find_or_create_customer(
            CustomerData(
                email=data.customer_email,
                name=data.customer_name,
                country=data.country,
                address=data.customer_address,
                vat_number=data.vat_number,
            )
        )
        logger.info("[ZOHO] Using customer %s (%s)", customer_id, "existing" if existing else "new")

        payload = {
            "customer_id": customer_id,
            "line_items": [
                {
                    "name": data.product_name,
                    "description": "",
                    "rate": _money(data.tax.net),
                    "quantity": 1,
                    "tax_id": tax_id,
                }
            ],
            "currency_code": data.currency.upper(),
            # Net goes in, Zoho adds the tax on top
            "is_inclusive_tax": False,
            "reference_number": f"allgood-{'abo' if data.is_subscription else 'unico'}",
            "notes": build_invoice_notes(data),
        }

        body = self._request("POST", "/invoices", label="invoice", json=payload)
        invoice = _required(body, "invoice", "invoice_id", "invoice_number", label="invoice")
        logger.info("[ZOHO] Invoice created: %s", invoice["invoice_number"])

        return InvoiceResult(
            invoice_id=invoice["invoice_id"],
            invoice_number=invoice["invoice_number"],
            customer_id=customer_id,
            invoice_url=f"https://invoice.zoho.com/app#/invoices/{invoice['invoice_id']}",
            data=data,
        )

    def email_invoice(self, invoice_id: str, email: str) -> None:
        self._request(
            "POST",
            f"/invoices/{invoice_id}/email",
            label="email",
            json={"to_mail_ids": [email]},
        )
        logger.info("[ZOHO-EMAIL] Invoice %s sent to customer", invoice_id)

    def record_payment(
        self,
        *,
        invoice_id: str,
        customer_id: str,
        amount: Decimal,
        payment_intent_id: Optional[str],
        paid_on: Optional[date] = None,
    ) -> str:
        payload = {
            "customer_id": customer_id,
            "payment_mode": "creditcard",
            "amount": _money(amount),
            "date": (paid_on or date.today()).isoformat(),
            "reference_number": payment_intent_id,
            "description": f"Stripe Payment: {payment_intent_id}",
            "invoices": [{"invoice_id": invoice_id, "amount_applied": _money(amount)}],
        }
        body = self._request("POST", "/customerpayments", label="payment", json=payload)
        payment_id = _required(body, "payment", "payment_id", label="payment")["payment_id"]
        logger.info("[ZOHO-PAYMENT] Payment %s recorded", payment_id)
        return payment_id
