from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from sqlalchemy import delete, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from allgood.core.config import settings
from allgood.db.base import utcnow
from allgood.models.pageview import Pageview
from allgood.services.analytics_classifiers import (
    anonymize_ip,
    clean_referrer,
    detect_browser,
    detect_device,
    detect_os,
    extract_country_from_lang,
    is_bot,
    language_for_page,
)

logger = logging.getLogger(__name__)

MAX_USER_AGENT_LENGTH = 500
MAX_PAGE_LENGTH = 255


@dataclass(frozen=True)
class RequestInfo:
    """The parts of an HTTP request the tracker looks at."""

    headers: Mapping[str, str]
    client_host: Optional[str] = None

    @classmethod
    def from_request(cls, request) -> "RequestInfo":
        return cls(
            headers={k.lower(): v for k, v in request.headers.items()},
            client_host=request.client.host if request.client else None,
        )


def client_ip(info: RequestInfo) -> str:
    # Cloudflare, then nginx, then the first proxy hop, then the socket peer
    headers = info.headers
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    return (
        headers.get("cf-connecting-ip")
        or headers.get("x-real-ip")
        or forwarded
        or info.client_host
        or "unknown"
    )


def build_pageview(info: RequestInfo, page: str, own_domain: str = "") -> Pageview:
    headers = info.headers
    ua = headers.get("user-agent") or ""
    accept_language = headers.get("accept-language")

    country = (
        headers.get("cf-ipcountry")
        or extract_country_from_lang(accept_language)
        or "unknown"
    )

    return Pageview(
        timestamp=utcnow(),
        page=page[:MAX_PAGE_LENGTH],
        ip_anonymized=anonymize_ip(client_ip(info)),
        country=country.upper(),
        language=language_for_page(page, accept_language).lower(),
        referrer=clean_referrer(
            headers.get("referer") or headers.get("referrer"),
            own_domain or settings.ANALYTICS_OWN_DOMAIN,
        ),
        user_agent=ua[:MAX_USER_AGENT_LENGTH],
        browser=detect_browser(ua),
        os=detect_os(ua),
        device_type=detect_device(ua),
        is_bot=is_bot(ua),
    )


async def track_pageview(db: AsyncSession, info: RequestInfo, page: str) -> bool:
    """
    Store one pageview. Storage errors are logged and swallowed so that
    tracking can never break the page being served.
    """
    try:
        db.add(build_pageview(info, page))
        await db.commit()
        return True
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Analytics tracking error: %s", e)
        return False


async def _grouped(
    db: AsyncSession,
    column,
    since: datetime,
    *,
    bots: bool = False,
    limit: Optional[int] = None,
    extra=None,
) -> list[dict[str, Any]]:
    count = func.count().label("count")
    stmt = (
        select(column, count)
        .where(Pageview.timestamp > since, Pageview.is_bot.is_(bots))
        .group_by(column)
        .order_by(desc(count))
    )
    if extra is not None:
        stmt = stmt.where(extra)
    if limit:
        stmt = stmt.limit(limit)
    rows = (await db.execute(stmt)).all()
    return [{column.key: value, "count": n} for value, n in rows]


async def _count(db: AsyncSession, since: datetime, bots: Optional[bool] = None) -> int:
    stmt = select(func.count()).select_from(Pageview).where(Pageview.timestamp > since)
    if bots is not None:
        stmt = stmt.where(Pageview.is_bot.is_(bots))
    return int((await db.execute(stmt)).scalar_one())


async def get_stats(db: AsyncSession, days: int = 30) -> dict[str, Any]:
    now = utcnow()
    since = now - timedelta(days=days)

    day = func.date(Pageview.timestamp).label("date")
    per_day_rows = (
        await db.execute(
            select(day, func.count().label("count"))
            .where(Pageview.timestamp > since, Pageview.is_bot.is_(False))
            .group_by(day)
            .order_by(desc(day))
        )
    ).all()

    return {
        "period": f"{days} days",
        "generated": now.isoformat() + "Z",
        "total": await _count(db, since),
        "humans": await _count(db, since, bots=False),
        "bots": await _count(db, since, bots=True),
        "byPage": await _grouped(db, Pageview.page, since),
        "byCountry": await _grouped(db, Pageview.country, since, limit=15),
        "byLanguage": await _grouped(db, Pageview.language, since),
        "byBrowser": await _grouped(db, Pageview.browser, since),
        "byOS": await _grouped(db, Pageview.os, since),
        "byDevice": await _grouped(db, Pageview.device_type, since),
        "byReferrer": await _grouped(
            db,
            Pageview.referrer,
            since,
            limit=15,
            extra=Pageview.referrer.not_in(("direct", "internal")),
        ),
        "perDay": [{"date": str(d), "count": n} for d, n in per_day_rows],
        "topBots": await _grouped(db, Pageview.browser, since, bots=True, limit=10),
    }


async def cleanup_old_data(db: AsyncSession, keep_days: int = 90) -> int:
    cutoff = utcnow() - timedelta(days=keep_days)
    result = await db.execute(delete(Pageview).where(Pageview.timestamp < cutoff))
    await db.commit()
    deleted = result.rowcount or 0
    logger.info("Analytics cleanup: %d old records deleted", deleted)
    return deleted
