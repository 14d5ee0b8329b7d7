from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from allgood.db.base import utcnow
from allgood.models.pageview import Pageview
from allgood.services.analytics_service import (
    RequestInfo,
    build_pageview,
    cleanup_old_data,
    client_ip,
    get_stats,
    track_pageview,
)

CHROME = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _info(**headers) -> RequestInfo:
    return RequestInfo(headers={k.replace("_", "-"): v for k, v in headers.items()}, client_host="10.0.0.9")


def test_client_ip_precedence():
    assert client_ip(_info(cf_connecting_ip="1.1.1.1", x_real_ip="2.2.2.2")) == "1.1.1.1"
    assert client_ip(_info(x_real_ip="2.2.2.2", x_forwarded_for="3.3.3.3")) == "2.2.2.2"
    assert client_ip(_info(x_forwarded_for="3.3.3.3, 4.4.4.4")) == "3.3.3.3"
    assert client_ip(_info()) == "10.0.0.9"
    assert client_ip(RequestInfo(headers={})) == "unknown"


def test_build_pageview_classifies_request():
    view = build_pageview(
        _info(
            user_agent=CHROME,
            accept_language="de-DE,de;q=0.9",
            cf_ipcountry="es",
            referer="https://www.google.com/search?q=okay",
            x_forwarded_for="81.20.30.40",
        ),
        "/de/",
    )
    assert view.page == "/de/"
    assert view.ip_anonymized == "81.20.30.xxx"
    assert view.country == "ES"
    assert view.language == "de"
    assert view.referrer == "google.com"
    assert view.browser == "Chrome"
    assert view.os == "Windows 10/11"
    assert view.device_type == "desktop"
    assert view.is_bot is False


def test_build_pageview_country_from_language_then_unknown():
    assert build_pageview(_info(user_agent=CHROME, accept_language="pt-BR"), "/").country == "BR"
    assert build_pageview(_info(user_agent=CHROME), "/").country == "UNKNOWN"


def test_build_pageview_timestamp_is_naive_utc():
    view = build_pageview(_info(user_agent=CHROME), "/")
    assert view.timestamp.tzinfo is None
    drift = datetime.now(timezone.utc) - view.timestamp.replace(tzinfo=timezone.utc)
    assert abs(drift) < timedelta(seconds=5)


def test_build_pageview_truncates_user_agent():
    view = build_pageview(_info(user_agent="x" * 2000), "/")
    assert len(view.user_agent) == 500


@pytest.mark.asyncio
async def test_track_pageview_and_stats(db):
    human = _info(user_agent=CHROME, accept_language="es-ES", referer="https://duckduckgo.com/")
    bot = _info(user_agent="Googlebot/2.1")

    assert await track_pageview(db, human, "/")
    assert await track_pageview(db, human, "/es/")
    assert await track_pageview(db, _info(user_agent=CHROME), "/")
    assert await track_pageview(db, bot, "/")

    stats = await get_stats(db, days=30)

    assert stats["period"] == "30 days"
    assert stats["total"] == 4
    assert stats["humans"] == 3
    assert stats["bots"] == 1
    assert stats["byPage"][0] == {"page": "/", "count": 2}
    assert {"country": "ES", "count": 2} in stats["byCountry"]
    # direct visits are not listed as referrers
    assert stats["byReferrer"] == [{"referrer": "duckduckgo.com", "count": 2}]
    assert sum(day["count"] for day in stats["perDay"]) == 3
    assert stats["topBots"][0]["count"] == 1


@pytest.mark.asyncio
async def test_stats_ignore_rows_outside_window(db):
    old = build_pageview(_info(user_agent=CHROME), "/")
    old.timestamp = utcnow() - timedelta(days=40)
    db.add(old)
    await db.commit()

    assert (await get_stats(db, days=30))["total"] == 0
    assert (await get_stats(db, days=60))["total"] == 1


@pytest.mark.asyncio
async def test_cleanup_old_data(db):
    for days_ago in (1, 89, 91, 200):
        view = build_pageview(_info(user_agent=CHROME), "/")
        view.timestamp = utcnow() - timedelta(days=days_ago)
        db.add(view)
    await db.commit()

    deleted = await cleanup_old_data(db, keep_days=90)

    assert deleted == 2
    remaining = (await db.execute(select(func.count()).select_from(Pageview))).scalar_one()
    assert remaining == 2
