from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from allgood.core.config import settings
from allgood.core.context import TokenCache
from allgood.core.tax import UnmappedTaxRateError, compute_tax
from allgood.services.zoho_service import (
    CustomerData,
    InvoiceData,
    ZohoClient,
    ZohoError,
    build_invoice_notes,
    strip_vat_prefix,
)
from helpers import FakeResponse

BASE = "https://zoho.test/invoice/v3"
ACCOUNTS = "https://accounts.zoho.test/oauth/v2/token"


@pytest.fixture
def zoho_settings():
    return settings.model_copy(update={
        "ZOHO_CLIENT_ID": "client",
        "ZOHO_CLIENT_SECRET": "secret",
        "ZOHO_REFRESH_TOKEN": "refresh",
        "ZOHO_API_BASE_URL": BASE,
        "ZOHO_ACCOUNTS_URL": ACCOUNTS,
        "ZOHO_TAX_IDS": {21: "tax-21", 10: "tax-10", 0: "tax-0"},
    })


@pytest.fixture
def http():
    session = MagicMock()
    session.post.side_effect = lambda url, **kw: _post(url, **kw)
    session.get.return_value = FakeResponse({"code": 0, "contacts": []})
    session.request.side_effect = lambda method, url, **kw: _request(method, url, **kw)
    return session


def _post(url, **kwargs):
    if url == ACCOUNTS:
        return FakeResponse({"access_token": "tok-123"})
    if url == f"{BASE}/contacts":
        return FakeResponse({"code": 0, "contact": {"contact_id": "c-new"}})
    raise AssertionError(f"unexpected POST {url}")


def _request(method, url, **kwargs):
    if url == f"{BASE}/invoices":
        return FakeResponse({"code": 0, "invoice": {"invoice_id": "inv-1", "invoice_number": "F-0001"}})
    if url == f"{BASE}/invoices/inv-1/email":
        return FakeResponse({"code": 0, "message": "sent"})
    if url == f"{BASE}/customerpayments":
        return FakeResponse({"code": 0, "payment": {"payment_id": "pay-1"}})
    if url.startswith(f"{BASE}/contacts/"):
        return FakeResponse({"code": 0, "contact": {}})
    raise AssertionError(f"unexpected {method} {url}")


@pytest.fixture
def client(zoho_settings, http):
    return ZohoClient(zoho_settings, TokenCache(3300), session=http)


def _invoice_data(**overrides) -> InvoiceData:
    fields = dict(
        tax=compute_tax(499, "eur", inclusive=True, rate_percent=21, country="ES"),
        currency="eur",
        customer_email="ana@example.com",
        customer_name="Ana García",
        customer_address={"line1": "Calle 1", "city": "Madrid", "postal_code": "28001", "country": "ES"},
        country="ES",
        vat_number=None,
        tax_exempt="none",
        payment_type="payment",
        stripe_session_id="cs_test_1",
        payment_intent_id="pi_1",
        is_test_mode=False,
        created_at=datetime(2025, 3, 1, 12, 30, 0),
    )
    fields.update(overrides)
    return InvoiceData(**fields)


def _invoice_payload(http):
    calls = [c for c in http.request.call_args_list if c.args[1] == f"{BASE}/invoices"]
    assert len(calls) == 1
    return calls[0].kwargs["json"]


def test_strip_vat_prefix():
    assert strip_vat_prefix("ESB84645654") == "B84645654"
    assert strip_vat_prefix("12345678Z") == "12345678Z"


def test_access_token_is_cached(client, http):
    assert client.access_token() == "tok-123"
    assert client.access_token() == "tok-123"
    token_calls = [c for c in http.post.call_args_list if c.args[0] == ACCOUNTS]
    assert len(token_calls) == 1
    assert token_calls[0].kwargs["data"]["grant_type"] == "refresh_token"


def test_missing_credentials(zoho_settings, http):
    bare = zoho_settings.model_copy(update={"ZOHO_REFRESH_TOKEN": ""})
    with pytest.raises(ZohoError):
        ZohoClient(bare, TokenCache(3300), session=http).access_token()


def test_create_invoice_sends_net_and_tax_id(client, http):
    result = client.create_invoice(_invoice_data())

    assert result.invoice_number == "F-0001"
    assert result.customer_id == "c-new"
    assert result.invoice_url == "https://invoice.zoho.com/app#/invoices/inv-1"

    payload = _invoice_payload(http)
    line = payload["line_items"][0]
    assert line["name"] == "allgood.click servicio online"
    assert line["rate"] == 4.12
    assert line["tax_id"] == "tax-21"
    assert payload["currency_code"] == "EUR"
    assert payload["is_inclusive_tax"] is False
    assert payload["reference_number"] == "allgood-unico"

    headers = http.request.call_args_list[-1].kwargs["headers"]
    assert headers["Authorization"] == "Zoho-oauthtoken tok-123"
    assert headers["X-com-zoho-invoice-organizationid"] == client.settings.ZOHO_ORGANIZATION_ID


def test_subscription_invoice_reference(client, http):
    client.create_invoice(_invoice_data(payment_type="subscription"))
    payload = _invoice_payload(http)
    assert payload["reference_number"] == "allgood-abo"
    assert payload["line_items"][0]["name"] == "allgood.click suscripción"


def test_reverse_charge_files_under_zero(client, http):
    tax = compute_tax(999, "eur", inclusive=True, rate_percent=19, tax_collected_cents=0, country="DE")
    client.create_invoice(_invoice_data(tax=tax, country="DE", vat_number="DE123456789"))
    line = _invoice_payload(http)["line_items"][0]
    assert line["tax_id"] == "tax-0"
    assert line["rate"] == 9.99


def test_unmapped_rate_fails_before_any_contact_is_touched(client, http):
    tax = compute_tax(999, "eur", inclusive=True, rate_percent=19, country="DE")
    with pytest.raises(UnmappedTaxRateError):
        client.create_invoice(_invoice_data(tax=tax, country="DE"))
    http.get.assert_not_called()
    http.request.assert_not_called()


def test_new_business_contact_payload(client, http):
    contact_id, existing = client.find_or_create_customer(
        CustomerData(
            email="b2b@example.com",
            name="Acme SL",
            country="ES",
            address={"line1": "Gran Via 1", "city": "Madrid", "postal_code": "28013", "country": "ES"},
            vat_number="ESB84645654",
        )
    )
    assert (contact_id, existing) == ("c-new", False)

    create = [c for c in http.post.call_args_list if c.args[0] == f"{BASE}/contacts"][0]
    payload = create.kwargs["json"]
    assert payload["contact_name"] == "Acme SL [ESB84645654]"
    assert payload["customer_sub_type"] == "business"
    assert payload["company_id"] == "B84645654"
    assert payload["custom_fields"] == [{"field_id": client.settings.ZOHO_VAT_CUSTOM_FIELD_ID, "value": "B84645654"}]
    assert payload["contact_persons"] == [{"email": "b2b@example.com", "is_primary_contact": True}]
    assert payload["billing_address"]["zip"] == "28013"


def test_existing_contact_matches_ignoring_vat_suffix(client, http):
    http.get.return_value = FakeResponse({
        "code": 0,
        "contacts": [{
            "contact_id": "c-old",
            "contact_name": "acme sl [ESB84645654]",
            "customer_sub_type": "business",
            "billing_address": {"country_code": "ES"},
        }],
    })
    contact_id, existing = client.find_or_create_customer(
        CustomerData(email="b2b@example.com", name="Acme SL", country="ES", vat_number="ESB84645654")
    )
    assert (contact_id, existing) == ("c-old", True)
    http.request.assert_not_called()


def test_existing_contact_gets_vat_added(client, http):
    http.get.return_value = FakeResponse({
        "code": 0,
        "contacts": [{
            "contact_id": "c-old",
            "contact_name": "Acme SL",
            "customer_sub_type": "individual",
            "billing_address": {"country": "ES"},
        }],
    })
    client.find_or_create_customer(
        CustomerData(email="b2b@example.com", name="Acme SL", country="ES", vat_number="ESB84645654")
    )
    update = http.request.call_args
    assert update.args == ("PUT", f"{BASE}/contacts/c-old")
    assert update.kwargs["json"] == {
        "customer_sub_type": "business",
        "contact_name": "Acme SL [ESB84645654]",
        "company_id": "B84645654",
    }


def test_same_email_other_country_creates_new_contact(client, http):
    http.get.return_value = FakeResponse({
        "code": 0,
        "contacts": [{"contact_id": "c-old", "contact_name": "Ana", "billing_address": {"country_code": "PT"}}],
    })
    contact_id, existing = client.find_or_create_customer(CustomerData(email="ana@example.com", name="Ana", country="ES"))
    assert (contact_id, existing) == ("c-new", False)


def test_duplicate_contact_name_retries_with_suffix(client, http):
    def post(url, **kwargs):
        if url == ACCOUNTS:
            return FakeResponse({"access_token": "tok"})
        return FakeResponse(status_code=400, text='{"code":3062,"message":"The customer already exists"}')

    http.post.side_effect = post
    http.request.side_effect = lambda method, url, **kw: FakeResponse({"code": 0, "contact": {"contact_id": "c-retry"}})

    contact_id, _ = client.find_or_create_customer(CustomerData(email="ana@example.com", name="Ana", country="ES"))

    assert contact_id == "c-retry"
    retry_payload = http.request.call_args.kwargs["json"]
    assert retry_payload["contact_name"].startswith("Ana (")


def test_nonzero_code_is_an_error(client, http):
    http.request.side_effect = lambda method, url, **kw: FakeResponse({"code": 1002, "message": "Invoice does not exist"})
    with pytest.raises(ZohoError, match="Invoice does not exist"):
        client.email_invoice("inv-x", "ana@example.com")


def test_record_payment(client, http):
    payment_id = client.record_payment(
        invoice_id="inv-1",
        customer_id="c-new",
        amount=Decimal("4.99"),
        payment_intent_id="pi_1",
    )
    assert payment_id == "pay-1"
    payload = http.request.call_args.kwargs["json"]
    assert payload["payment_mode"] == "creditcard"
    assert payload["amount"] == 4.99
    assert payload["reference_number"] == "pi_1"
    assert payload["invoices"] == [{"invoice_id": "inv-1", "amount_applied": 4.99}]


def test_notes_language_and_test_marker():
    spanish = build_invoice_notes(_invoice_data())
    assert "Tipo: Pago único" in spanish
    assert "Fecha: 01/03/2025 12:30:00" in spanish
    assert "FACTURA DE PRUEBA" not in spanish

    german_test = build_invoice_notes(_invoice_data(country="DE", payment_type="subscription", is_test_mode=True))
    assert german_test.startswith("TEST RECHNUNG")
    assert "Tipo: Monatliches Abo" in german_test
    assert "Datum: 01.03.2025 12:30:00" in german_test


def test_invoice_reply_without_invoice_is_an_error(client, http):
    http.request.side_effect = lambda method, url, **kw: FakeResponse({"code": 0, "message": "success"})
    with pytest.raises(ZohoError, match="missing invoice"):
        client.create_invoice(_invoice_data())


def test_contact_reply_without_id_is_an_error(client, http):
    http.post.side_effect = lambda url, **kw: (
        FakeResponse({"access_token": "tok"}) if url == ACCOUNTS else FakeResponse({"code": 0, "contact": {}})
    )
    with pytest.raises(ZohoError, match="missing contact"):
        client.find_or_create_customer(CustomerData(email="ana@example.com", name="Ana", country="ES"))


def test_payment_reply_without_payment_is_an_error(client, http):
    http.request.side_effect = lambda method, url, **kw: FakeResponse({"code": 0, "payment": None})
    with pytest.raises(ZohoError, match="missing payment"):
        client.record_payment(invoice_id="inv-1", customer_id="c-1", amount=Decimal("4.99"), payment_intent_id="pi_1")


def test_close_only_closes_own_session(zoho_settings, http):
    ZohoClient(zoho_settings, TokenCache(3300), session=http).close()
    http.close.assert_not_called()

    with ZohoClient(zoho_settings, TokenCache(3300)) as owned:
        owned.http = MagicMock()
    owned.http.close.assert_called_once()
