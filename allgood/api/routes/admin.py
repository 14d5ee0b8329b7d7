import logging
import secrets
from pathlib import Path

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import FileResponse, RedirectResponse

from allgood.api.deps import (
    ADMIN_COOKIE,
    LOGIN_PATH,
    admin_session_id,
    get_app_context,
    is_admin,
    require_admin,
)
from allgood.core.config import settings
from allgood.core.context import AppContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", include_in_schema=False)

STATS_PATH = "/admin/stats"


def admin_page(name: str) -> Path:
    return Path(settings.ADMIN_PAGES_DIR) / name


@router.get("/login")
async def login_page(request: Request, ctx: AppContext = Depends(get_app_context)):
    if is_admin(request, ctx):
        return RedirectResponse(STATS_PATH, status_code=302)
    return FileResponse(admin_page("login.html"))


@router.post("/login")
async def login(
    password: str = Form(default=""),
    ctx: AppContext = Depends(get_app_context),
):
    if not settings.STATS_PASSWORD:
        logger.error("STATS_PASSWORD not set, admin login disabled")
        return RedirectResponse(f"{LOGIN_PATH}?error=1", status_code=302)

    if not secrets.compare_digest(password.encode(), settings.STATS_PASSWORD.encode()):
        logger.warning("Admin login failed - wrong password")
        return RedirectResponse(f"{LOGIN_PATH}?error=1", status_code=302)

    response = RedirectResponse(STATS_PATH, status_code=302)
    response.set_cookie(
        ADMIN_COOKIE,
        ctx.sessions.create(),
        max_age=settings.ADMIN_SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )
    logger.info("Admin login successful")
    return response


@router.get("/logout")
async def logout(request: Request, ctx: AppContext = Depends(get_app_context)):
    ctx.sessions.revoke(admin_session_id(request))
    response = RedirectResponse(LOGIN_PATH, status_code=302)
    response.delete_cookie(ADMIN_COOKIE)
    return response


@router.get("/stats")
async def stats_page(_: str = Depends(require_admin)):
    return FileResponse(admin_page("stats.html"))
