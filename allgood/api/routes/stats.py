from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from allgood.api.deps import require_admin
from allgood.db.session import get_async_db
from allgood.services.analytics_service import cleanup_old_data, get_stats

router = APIRouter(prefix="/api/stats", dependencies=[Depends(require_admin)])


def _positive_or(value: str | None, default: int) -> int:
    # ?days=abc or ?days=0 fall back to the default, like an empty query
    try:
        days = int(value) if value else 0
    except ValueError:
        return default
    return days if days > 0 else default


@router.get("")
async def stats(
    days: str | None = Query(default=None),
    db: AsyncSession = Depends(get_async_db),
):
    return await get_stats(db, days=_positive_or(days, 30))


@router.post("/cleanup")
async def cleanup(
    days: str | None = Query(default=None),
    db: AsyncSession = Depends(get_async_db),
):
    deleted = await cleanup_old_data(db, keep_days=_positive_or(days, 90))
    return {"success": True, "deletedRecords": deleted}
