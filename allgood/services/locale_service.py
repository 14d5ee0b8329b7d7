from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from allgood.core.config import settings

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("de", "en", "es", "fr", "pt")
DEFAULT_LANGUAGE = "en"

OG_LOCALES = {
    "en": "en_US",
    "de": "de_DE",
    "es": "es_ES",
    "fr": "fr_FR",
    "pt": "pt_BR",
}

# Countries charged in EUR: the EU-27 plus the rest of Europe
EUR_COUNTRIES = frozenset({
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR",
    "DE", "GR", "HU", "IE", "IT", "LV", "LT", "LU", "MT", "NL",
    "PL", "PT", "RO", "SK", "SI", "ES", "SE",
    "GB", "CH", "NO", "IS", "LI", "MC", "VA", "AD", "SM",
})

EUROPEAN_LANGUAGES = frozenset({
    "de", "es", "fr", "it", "nl", "pt", "pl", "el", "fi", "sv", "da", "cs",
    "sk", "sl", "et", "lv", "lt", "mt", "ga", "ro", "bg", "hu", "hr",
})


@dataclass(frozen=True)
class Pricing:
    currency: str
    locale: str
    amount: int
    subscription_amount: int


def _tags(accept_language: str) -> list[str]:
    # "de-DE,de;q=0.9,en;q=0.8" -> ["de-DE", "de", "en"]
    return [part.split(";")[0].strip() for part in accept_language.split(",") if part.strip()]


def detect_language(accept_language: Optional[str]) -> str:
    if not accept_language:
        return DEFAULT_LANGUAGE
    for tag in _tags(accept_language):
        lang = tag.split("-")[0].lower()
        if lang in SUPPORTED_LANGUAGES:
            return lang
    return DEFAULT_LANGUAGE


def detect_country(accept_language: Optional[str]) -> Optional[str]:
    if not accept_language:
        return None
    for tag in _tags(accept_language):
        parts = tag.split("-")
        if len(parts) == 2 and parts[1]:
            return parts[1].upper()
    return None


@lru_cache(maxsize=16)
def _read_locale(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_locale(lang: str, locales_dir: Optional[str] = None) -> dict[str, Any]:
    """Translations for ``lang``; English when the file is missing or broken."""
    base = Path(locales_dir or settings.LOCALES_DIR)
    if lang not in SUPPORTED_LANGUAGES:
        lang = DEFAULT_LANGUAGE
    try:
        return _read_locale(str(base / f"{lang}.json"))
    except (OSError, ValueError) as e:
        logger.error("Error loading locale %s: %s", lang, e)
        return _read_locale(str(base / f"{DEFAULT_LANGUAGE}.json"))


def currency_and_amount(lang: str, country: Optional[str], cfg=settings) -> Pricing:
    """
    Currency follows the customer's country (from Accept-Language); the
    language only decides when no country is known.
    """
    eur = Pricing("eur", lang, cfg.PRICE_ONETIME_EUR, cfg.PRICE_SUBSCRIPTION_EUR)

    if country and country in EUR_COUNTRIES:
        return eur

    if country:
        return Pricing("usd", "en", cfg.PRICE_ONETIME_USD, cfg.PRICE_SUBSCRIPTION_USD)

    if lang in EUROPEAN_LANGUAGES:
        return eur

    return Pricing("eur", "en", cfg.PRICE_ONETIME_EUR, cfg.PRICE_SUBSCRIPTION_EUR)
