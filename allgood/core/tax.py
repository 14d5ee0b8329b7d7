"""
Tax reconciliation for Stripe checkout payments.

Every amount is an integer in the currency's smallest unit. Net amounts for
tax-inclusive prices are backed out with Decimal arithmetic and rounded
ROUND_HALF_UP to the smallest unit, exactly once, so net + tax always
reconstructs the charged total.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping, Optional, Union

logger = logging.getLogger(__name__)

Number = Union[int, float, str, Decimal]

HUNDRED = Decimal(100)

# Stripe charges these in whole units (no cents)
ZERO_DECIMAL_CURRENCIES = frozenset({
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
})

EU_COUNTRIES = frozenset({
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR",
    "DE", "GR", "HU", "IE", "IT", "LV", "LT", "LU", "MT", "NL",
    "PL", "PT", "RO", "SK", "SI", "ES", "SE",
})

# A positive rate below the country's standard rate is classified as reduced.
EU_STANDARD_VAT_RATES: dict[str, Decimal] = {
    "AT": Decimal("20"), "BE": Decimal("21"), "BG": Decimal("20"), "HR": Decimal("25"),
    "CY": Decimal("19"), "CZ": Decimal("21"), "DK": Decimal("25"), "EE": Decimal("24"),
    "FI": Decimal("25.5"), "FR": Decimal("20"), "DE": Decimal("19"), "GR": Decimal("24"),
    "HU": Decimal("27"), "IE": Decimal("23"), "IT": Decimal("22"), "LV": Decimal("21"),
    "LT": Decimal("21"), "LU": Decimal("17"), "MT": Decimal("18"), "NL": Decimal("21"),
    "PL": Decimal("23"), "PT": Decimal("23"), "RO": Decimal("21"), "SK": Decimal("23"),
    "SI": Decimal("22"), "ES": Decimal("21"), "SE": Decimal("25"),
}


class InvoicingError(Exception):
    """Base class for failures that keep an invoice from being filed."""


class UnmappedTaxRateError(InvoicingError):
    """
    Raised when no bookkeeping tax id is configured for a rate.

    Never fall back to a default here: an unmapped rate means a missing
    configuration entry, and filing under another rate corrupts the tax return.
    """

    def __init__(self, rate_percent: Number):
        self.rate_percent = _to_decimal(rate_percent)
        self.rounded_percent = round_percent(self.rate_percent)
        super().__init__(
            f"No tax mapping for {self.rate_percent.normalize():f}% "
            f"(rounded: {self.rounded_percent}%)"
        )


class TaxRegime(str, enum.Enum):
    standard = "standard"
    reduced = "reduced"
    reverse_charge = "reverse_charge"
    exempt = "exempt"


@dataclass(frozen=True)
class TaxResult:
    net_cents: int
    tax_cents: int
    gross_cents: int
    rate_percent: Decimal
    regime: TaxRegime
    currency: str

    @property
    def net(self) -> Decimal:
        return to_major_units(self.net_cents, self.currency)

    @property
    def tax(self) -> Decimal:
        return to_major_units(self.tax_cents, self.currency)

    @property
    def gross(self) -> Decimal:
        return to_major_units(self.gross_cents, self.currency)


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps 21.0 as "21.0" instead of its binary expansion
        return Decimal(str(value))
    return Decimal(value)


def round_minor(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def round_percent(rate_percent: Number) -> int:
    return int(_to_decimal(rate_percent).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_major_units(amount_cents: int, currency: str) -> Decimal:
    if (currency or "").lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(int(amount_cents))
    return (Decimal(int(amount_cents)) / HUNDRED).quantize(Decimal("0.01"))


def is_eu_country(country: Optional[str]) -> bool:
    return bool(country) and country.upper() in EU_COUNTRIES


def _regime_for_rate(rate: Decimal, country: Optional[str]) -> TaxRegime:
    standard = EU_STANDARD_VAT_RATES.get((country or "").upper())
    if standard is not None and rate < standard:
        return TaxRegime.reduced
    return TaxRegime.standard


def compute_tax(
    amount_cents: int,
    currency: str,
    *,
    inclusive: bool,
    rate_percent: Optional[Number],
    tax_collected_cents: Optional[int] = None,
    country: Optional[str] = None,
) -> TaxResult:
    """
    Split an amount into net and tax.

    ``amount_cents`` is the gross total for inclusive pricing and the net
    price for exclusive pricing. ``tax_collected_cents`` is what the provider
    actually charged; zero with a positive nominal rate means reverse charge.
    """
    amount = int(amount_cents)
    currency = (currency or "").lower()

    if rate_percent is None:
        return TaxResult(amount, 0, amount, Decimal(0), TaxRegime.exempt, currency)

    rate = _to_decimal(rate_percent)
    if rate < 0:
        raise ValueError(f"Negative tax rate: {rate}%")

    if rate == 0:
        return TaxResult(amount, 0, amount, Decimal(0), TaxRegime.exempt, currency)

    # Nominal rate but nothing collected: the buyer self-assesses.
    if tax_collected_cents is not None and int(tax_collected_cents) == 0:
        return TaxResult(amount, 0, amount, Decimal(0), TaxRegime.reverse_charge, currency)

    if inclusive:
        net = round_minor(Decimal(amount) * HUNDRED / (HUNDRED + rate))
        return TaxResult(net, amount - net, amount, rate, _regime_for_rate(rate, country), currency)

    if tax_collected_cents is not None:
        tax = int(tax_collected_cents)
    else:
        tax = round_minor(Decimal(amount) * rate / HUNDRED)
    return TaxResult(amount, tax, amount + tax, rate, _regime_for_rate(rate, country), currency)


def _implied_rate(net_cents: int, tax_cents: int) -> Optional[Decimal]:
    if net_cents <= 0 or tax_cents <= 0:
        return None
    return (Decimal(tax_cents) * HUNDRED / Decimal(net_cents)).quantize(Decimal("0.01"))


def first_invoice_tax_amount(invoice: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    lines = ((invoice.get("lines") or {}).get("data")) or []
    if not lines:
        return None
    tax_amounts = lines[0].get("tax_amounts") or []
    return tax_amounts[0] if tax_amounts else None


def reconcile_invoice(
    invoice: Mapping[str, Any],
    rate_percent: Optional[Number],
    *,
    country: Optional[str] = None,
) -> TaxResult:
    """
    Derive net/tax from a Stripe invoice.

    ``rate_percent`` is the percentage of the first line's first tax amount,
    already resolved by the caller (Stripe may only give a tax rate id).
    """
    currency = invoice.get("currency") or ""
    total = int(invoice.get("total") or 0)
    subtotal = int(invoice.get("subtotal") or 0)
    tax_collected = int(invoice.get("tax") or 0)

    entry = first_invoice_tax_amount(invoice)
    if entry is None:
        if tax_collected == 0:
            return compute_tax(total, currency, inclusive=True, rate_percent=None, country=country)
        logger.warning("Invoice %s has tax but no tax breakdown, using subtotal", invoice.get("id"))
        return compute_tax(
            subtotal,
            currency,
            inclusive=False,
            rate_percent=_implied_rate(subtotal, tax_collected),
            tax_collected_cents=tax_collected,
            country=country,
        )

    if rate_percent is None and tax_collected > 0:
        rate_percent = _implied_rate(total - tax_collected, tax_collected)
        logger.warning("Invoice %s tax rate missing, implied %s%%", invoice.get("id"), rate_percent)

    if entry.get("inclusive"):
        return compute_tax(
            total,
            currency,
            inclusive=True,
            rate_percent=rate_percent,
            tax_collected_cents=tax_collected,
            country=country,
        )

    return compute_tax(
        subtotal,
        currency,
        inclusive=False,
        rate_percent=rate_percent,
        tax_collected_cents=tax_collected,
        country=country,
    )


def reconcile_session(session: Mapping[str, Any], *, country: Optional[str] = None) -> TaxResult:
    """
    Derive net/tax from a checkout session that carries no invoice.

    Expects ``line_items.data.taxes`` to be expanded.
    """
    currency = session.get("currency") or ""
    total = int(session.get("amount_total") or 0)
    tax_collected = int(((session.get("total_details") or {}).get("amount_tax")) or 0)

    line_items = ((session.get("line_items") or {}).get("data")) or []
    taxes = (line_items[0].get("taxes") or []) if line_items else []

    if not taxes:
        if tax_collected > 0:
            logger.warning("Session %s has tax but no tax breakdown", session.get("id"))
            net = total - tax_collected
            return compute_tax(
                net,
                currency,
                inclusive=False,
                rate_percent=_implied_rate(net, tax_collected),
                tax_collected_cents=tax_collected,
                country=country,
            )
        return compute_tax(total, currency, inclusive=True, rate_percent=None, country=country)

    rate = taxes[0].get("rate") or {}
    rate_percent = rate.get("percentage")
    inclusive = bool(rate.get("inclusive"))

    if rate_percent is None and tax_collected > 0:
        rate_percent = _implied_rate(total - tax_collected, tax_collected)
        logger.warning("Session %s tax rate missing, implied %s%%", session.get("id"), rate_percent)

    if inclusive:
        return compute_tax(
            total,
            currency,
            inclusive=True,
            rate_percent=rate_percent,
            tax_collected_cents=tax_collected,
            country=country,
        )

    subtotal = session.get("amount_subtotal")
    net = int(subtotal) if subtotal is not None else total - tax_collected
    return compute_tax(
        net,
        currency,
        inclusive=False,
        rate_percent=rate_percent,
        tax_collected_cents=tax_collected,
        country=country,
    )


def resolve_tax_id(
    result: TaxResult,
    *,
    country: Optional[str],
    has_tax_id: bool,
    tax_ids: Mapping[int, str],
    home_country: Optional[str] = None,
) -> str:
    """
    Map a reconciled result to the bookkeeping system's tax id.

    Reverse charge and exempt sales file under the 0% entry; everything else
    under the rounded applied rate.
    """
    if result.regime in (TaxRegime.reverse_charge, TaxRegime.exempt):
        key = 0
    else:
        key = round_percent(result.rate_percent)

    if (
        has_tax_id
        and is_eu_country(country)
        and country.upper() != (home_country or "").upper()
        and result.regime in (TaxRegime.standard, TaxRegime.reduced)
    ):
        logger.warning(
            "[TAX] Business customer in %s was charged %s%% VAT instead of reverse charge",
            country,
            result.rate_percent,
        )

    tax_id = tax_ids.get(key)
    if tax_id is None:
        raise UnmappedTaxRateError(result.rate_percent if key else 0)

    logger.info(
        "[TAX] country=%s rate=%s%% has_tax_id=%s regime=%s -> tax id %s (%s%%)",
        country,
        result.rate_percent,
        has_tax_id,
        result.regime.value,
        tax_id,
        key,
    )
    return tax_id
