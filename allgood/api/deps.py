from typing import Optional

from fastapi import Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from allgood.core.context import AppContext

ADMIN_COOKIE = "admin_session"
LOGIN_PATH = "/admin/login"


class AdminAuthRequired(Exception):
    """Raised by ``require_admin``; turned into 401 JSON or a login redirect."""

    def __init__(self, path: str):
        self.path = path


# -----------------------------
# Dependency: App context
# -----------------------------
def get_app_context(request: Request) -> AppContext:
    return request.app.state.ctx


def admin_session_id(request: Request) -> Optional[str]:
    return request.cookies.get(ADMIN_COOKIE)


def is_admin(request: Request, ctx: AppContext) -> bool:
    return ctx.sessions.is_valid(admin_session_id(request))


# -----------------------------
# Dependency: Admin session
# -----------------------------
async def require_admin(
    request: Request,
    ctx: AppContext = Depends(get_app_context),
) -> str:
    """
    Returns the session id. API paths answer 401 JSON, pages redirect to
    the login form.
    """
    if not is_admin(request, ctx):
        raise AdminAuthRequired(request.url.path)
    return admin_session_id(request)


async def admin_auth_handler(request: Request, exc: AdminAuthRequired):
    if exc.path.startswith("/api/"):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    return RedirectResponse(LOGIN_PATH, status_code=302)
