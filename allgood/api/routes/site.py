from __future__ import annotations

import html
import logging
import re
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from allgood.core.config import settings
from allgood.db.session import get_async_db
from allgood.services.analytics_service import RequestInfo, track_pageview
from allgood.services.locale_service import (
    OG_LOCALES,
    SUPPORTED_LANGUAGES,
    currency_and_amount,
    detect_country,
    detect_language,
    load_locale,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_TITLE_RE = re.compile(r"<title>.*?</title>", re.DOTALL)
_DESCRIPTION_RE = re.compile(r'<meta name="description".*?>')

LEGAL_PAGES = {
    "/aviso-legal": "aviso-legal.html",
    "/politica-privacidad": "politica-privacidad.html",
    "/politica-cookies": "politica-cookies.html",
    "/terminos": "terminos.html",
}


def public_file(name: str) -> Path:
    return Path(settings.PUBLIC_DIR) / name


def canonical_url(lang: str, base_url: str) -> str:
    return f"{base_url}/" if lang == "en" else f"{base_url}/{lang}/"


def _hreflang_links(base_url: str) -> str:
    links = [f'<link rel="alternate" hreflang="en" href="{base_url}/" />']
    links += [
        f'<link rel="alternate" hreflang="{lang}" href="{base_url}/{lang}/" />'
        for lang in SUPPORTED_LANGUAGES
        if lang != "en"
    ]
    links.append(f'<link rel="alternate" hreflang="x-default" href="{base_url}/" />')
    return "\n    ".join(links)


def render_index(template: str, lang: str, base_url: Optional[str] = None) -> str:
    """Substitute the language-specific SEO tags into index.html."""
    locale = load_locale(lang)
    base_url = (base_url or settings.BASE_URL).rstrip("/")
    canonical = canonical_url(lang, base_url)

    def attr(key: str) -> str:
        return html.escape(str(locale.get(key, "")), quote=True)

    head = (
        f'<meta name="description" content="{attr("metaDescription")}">\n'
        f'    <meta name="keywords" content="{attr("metaKeywords")}">\n'
        f'    <link rel="canonical" href="{canonical}">\n'
        f"    {_hreflang_links(base_url)}\n"
        f'    <meta property="og:title" content="{attr("ogTitle")}">\n'
        f'    <meta property="og:description" content="{attr("ogDescription")}">\n'
        f'    <meta property="og:url" content="{canonical}">\n'
        f'    <meta property="og:type" content="website">\n'
        f'    <meta property="og:locale" content="{OG_LOCALES.get(lang, "en_US")}">\n'
        f'    <meta property="og:site_name" content="allgood.click">\n'
        f'    <meta name="twitter:card" content="summary_large_image">\n'
        f'    <meta name="twitter:title" content="{attr("ogTitle")}">\n'
        f'    <meta name="twitter:description" content="{attr("ogDescription")}">'
    )

    page = template.replace('<html lang="en">', f'<html lang="{lang}">', 1)
    page = _TITLE_RE.sub(lambda _: f"<title>{html.escape(str(locale.get('pageTitle', '')))}</title>", page, count=1)
    page = _DESCRIPTION_RE.sub(lambda _: head, page, count=1)
    return page


async def _landing(request: Request, db: AsyncSession, lang: str, page: str) -> HTMLResponse:
    await track_pageview(db, RequestInfo.from_request(request), page)
    template = public_file("index.html").read_text(encoding="utf-8")
    return HTMLResponse(
        render_index(template, lang),
        headers={"Cache-Control": "public, max-age=0, must-revalidate"},
    )


@router.get("/", response_class=HTMLResponse)
async def index_en(request: Request, db: AsyncSession = Depends(get_async_db)):
    return await _landing(request, db, "en", "/")


@router.get("/de/", response_class=HTMLResponse)
async def index_de(request: Request, db: AsyncSession = Depends(get_async_db)):
    return await _landing(request, db, "de", "/de/")


@router.get("/es/", response_class=HTMLResponse)
async def index_es(request: Request, db: AsyncSession = Depends(get_async_db)):
    return await _landing(request, db, "es", "/es/")


@router.get("/fr/", response_class=HTMLResponse)
async def index_fr(request: Request, db: AsyncSession = Depends(get_async_db)):
    return await _landing(request, db, "fr", "/fr/")


@router.get("/pt/", response_class=HTMLResponse)
async def index_pt(request: Request, db: AsyncSession = Depends(get_async_db)):
    return await _landing(request, db, "pt", "/pt/")


@router.get("/success-preview")
async def success_preview():
    logger.info("[PREVIEW] Success page preview requested")
    return FileResponse(public_file("success.html"))


# -----------------------------
# Language & config API
# -----------------------------
@router.get("/api/locale")
async def get_locale(
    lang: Optional[str] = Query(default=None),
    accept_language: Optional[str] = Header(default=None),
):
    lang = lang or detect_language(accept_language)
    return {"lang": lang, "translations": load_locale(lang)}


@router.get("/test-language")
async def test_language(
    lang: Optional[str] = Query(default=None),
    accept_language: Optional[str] = Header(default=None),
):
    lang = lang or detect_language(accept_language)
    return {"detectedLanguage": lang, "translations": load_locale(lang)}


@router.get("/debug/language")
async def debug_language(accept_language: Optional[str] = Header(default=None)):
    lang = detect_language(accept_language)
    country = detect_country(accept_language)
    pricing = currency_and_amount(lang, country)
    translations = load_locale(lang)
    return {
        "Accept-Language Header": accept_language,
        "Detected Language": lang,
        "Detected Country": country,
        "Currency": pricing.currency,
        "Locale": pricing.locale,
        "Amount": pricing.amount,
        "Product Name": translations.get("stripeProductName"),
        "Product Description": translations.get("stripeProductDescription"),
    }


@router.get("/api/version")
async def api_version():
    return {"version": settings.APP_VERSION}


@router.get("/api/stripe-config")
async def stripe_config():
    return {
        "publishableKey": settings.stripe_publishable_key,
        "isLiveMode": settings.STRIPE_LIVE_MODE,
    }


# -----------------------------
# Legal pages & redirects
# -----------------------------
def _legal_route(filename: str):
    async def serve():
        return FileResponse(public_file(filename))

    return serve


for _path, _filename in LEGAL_PAGES.items():
    router.add_api_route(_path, _legal_route(_filename), methods=["GET"], include_in_schema=False)


@router.get("/manage-subscription.html", include_in_schema=False)
async def manage_subscription_redirect():
    return RedirectResponse("/faq.html", status_code=301)
