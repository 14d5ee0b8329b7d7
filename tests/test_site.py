import pytest
from sqlalchemy import select

from allgood.api.routes.site import render_index
from allgood.core.config import settings
from allgood.models.pageview import Pageview

TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <title>placeholder</title>
    <meta name="description" content="placeholder">
</head>
<body></body>
</html>"""


def test_render_index_substitutes_meta():
    page = render_index(TEMPLATE, "de", base_url="https://allgood.click")
    assert '<html lang="de">' in page
    assert "<title>allgood.click - Bezahlen, damit alles gut wird</title>" in page
    assert '<link rel="canonical" href="https://allgood.click/de/">' in page
    assert '<meta property="og:locale" content="de_DE">' in page
    assert 'hreflang="x-default" href="https://allgood.click/"' in page
    assert "placeholder" not in page


def test_render_index_english_canonical_is_root():
    page = render_index(TEMPLATE, "en", base_url="https://allgood.click/")
    assert '<link rel="canonical" href="https://allgood.click/">' in page
    assert '<meta property="og:locale" content="en_US">' in page


@pytest.mark.asyncio
async def test_landing_pages_track_pageviews(client, db):
    for path, lang in (("/", "en"), ("/es/", "es"), ("/pt/", "pt")):
        res = await client.get(path, headers={"User-Agent": "Mozilla/5.0 (Windows NT 10.0) Chrome/120.0"})
        assert res.status_code == 200
        assert f'<html lang="{lang}">' in res.text

    pages = (await db.execute(select(Pageview.page))).scalars().all()
    assert sorted(pages) == ["/", "/es/", "/pt/"]


@pytest.mark.asyncio
async def test_locale_api(client):
    res = await client.get("/api/locale", params={"lang": "es"})
    body = res.json()
    assert body["lang"] == "es"
    assert body["translations"]["stripeProductName"] == "Haz que esté REALMENTE bien"

    res = await client.get("/api/locale", headers={"Accept-Language": "fr-FR,fr;q=0.9"})
    assert res.json()["lang"] == "fr"


@pytest.mark.asyncio
async def test_test_language(client):
    res = await client.get("/test-language", headers={"Accept-Language": "de-AT"})
    assert res.json()["detectedLanguage"] == "de"


@pytest.mark.asyncio
async def test_debug_language_reports_pricing(client):
    res = await client.get("/debug/language", headers={"Accept-Language": "en-US,en;q=0.9"})
    body = res.json()
    assert body["Detected Language"] == "en"
    assert body["Detected Country"] == "US"
    assert body["Currency"] == "usd"
    assert body["Amount"] == settings.PRICE_ONETIME_USD


@pytest.mark.asyncio
async def test_health_version_and_stripe_config(client):
    health = (await client.get("/health")).json()
    assert health["status"] == "OK"
    assert health["uptime"] >= 0

    assert (await client.get("/api/version")).json() == {"version": settings.APP_VERSION}

    config = (await client.get("/api/stripe-config")).json()
    assert config["isLiveMode"] is False
    assert config["publishableKey"] == settings.stripe_publishable_key


@pytest.mark.asyncio
async def test_legal_aliases_and_redirect(client):
    for path in ("/aviso-legal", "/politica-privacidad", "/politica-cookies", "/terminos"):
        assert (await client.get(path)).status_code == 200

    res = await client.get("/manage-subscription.html")
    assert res.status_code == 301
    assert res.headers["location"] == "/faq.html"


@pytest.mark.asyncio
async def test_static_files_and_cache_headers(client):
    faq = await client.get("/faq.html")
    assert faq.status_code == 200
    assert faq.headers["cache-control"] == "public, max-age=0, must-revalidate"

    success = await client.get("/success.html")
    assert success.headers["x-robots-tag"] == "noindex, nofollow"

    css = await client.get("/styles.css")
    assert css.headers["cache-control"] == "public, max-age=3600"

    locale = await client.get("/locales/en.json")
    assert locale.status_code == 200
    assert locale.json()["pageTitle"]


@pytest.mark.asyncio
async def test_admin_pages_are_not_public(client):
    assert (await client.get("/admin_pages/stats.html")).status_code == 404
    assert (await client.get("/admin/stats.html")).status_code == 404


@pytest.mark.asyncio
async def test_success_preview(client):
    res = await client.get("/success-preview")
    assert res.status_code == 200
    assert "Everything is okay now." in res.text
