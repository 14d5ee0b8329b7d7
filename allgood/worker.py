from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from allgood.core.config import settings
from allgood.core.logging import setup_logging
from allgood.db.session import async_session, create_tables
from allgood.services.analytics_service import cleanup_old_data

logger = logging.getLogger(__name__)


async def purge_old_pageviews(ctx, keep_days: int | None = None) -> int:
    """
    ARQ task entrypoint: drop pageviews older than the retention window.
    """
    days = keep_days if keep_days is not None else settings.ANALYTICS_RETENTION_DAYS
    async with async_session() as db:
        deleted = await cleanup_old_data(db, keep_days=days)
    logger.info("Retention purge (%d days): %d rows", days, deleted)
    return deleted


async def startup(ctx) -> None:
    setup_logging()
    await create_tables()


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    functions = [purge_old_pageviews]
    cron_jobs = [cron(purge_old_pageviews, hour={3}, minute={15}, run_at_startup=False)]
    on_startup = startup

    max_jobs = 1
    job_timeout = 60 * 5
    max_tries = 3
