"""
Health check endpoint for uptime monitoring
"""
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from allgood.api.deps import get_app_context
from allgood.core.config import settings
from allgood.core.context import AppContext
from allgood.schemas.common import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(ctx: AppContext = Depends(get_app_context)):
    """
    Liveness plus process uptime in seconds
    """
    return HealthResponse(
        status="OK",
        timestamp=datetime.now(timezone.utc),
        uptime=round(time.time() - ctx.started_at, 3),
        version=settings.APP_VERSION,
    )
