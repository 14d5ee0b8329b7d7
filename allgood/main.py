from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles

from allgood.api.deps import AdminAuthRequired, admin_auth_handler
from allgood.api.router import router
from allgood.core.config import settings
from allgood.core.context import build_app_context
from allgood.core.logging import setup_logging
from allgood.core.stripe_config import log_stripe_mode
from allgood.db.session import create_tables

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".gif", ".ico", ".svg")


class PublicFiles(StaticFiles):
    """Static files with the site's cache policy."""

    def file_response(self, full_path, *args, **kwargs):
        response = super().file_response(full_path, *args, **kwargs)
        path = str(full_path)
        if path.endswith(".html"):
            response.headers["Cache-Control"] = "public, max-age=0, must-revalidate"
            if path.endswith("success.html"):
                response.headers["X-Robots-Tag"] = "noindex, nofollow"
        elif path.endswith((".css", ".js")):
            response.headers["Cache-Control"] = "public, max-age=3600"
        elif path.endswith(IMAGE_SUFFIXES):
            response.headers["Cache-Control"] = "public, max-age=2592000"
        else:
            response.headers["Cache-Control"] = "public, max-age=3600"
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    log_stripe_mode()
    await create_tables()
    app.state.ctx = build_app_context(settings)
    logger.info("allgood.click %s started", settings.APP_VERSION)

    yield

    # Shutdown
    purged = app.state.ctx.sessions.purge_expired()
    logger.info("Shutting down (%d expired admin sessions dropped)", purged)


def create_app() -> FastAPI:
    app = FastAPI(title="allgood.click", version=settings.APP_VERSION, lifespan=lifespan)

    @app.middleware("http")
    async def admin_noindex(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith("/admin"):
            response.headers["X-Robots-Tag"] = "noindex, nofollow"
        return response

    app.add_exception_handler(AdminAuthRequired, admin_auth_handler)
    app.include_router(router)

    app.mount("/locales", StaticFiles(directory=settings.LOCALES_DIR), name="locales")
    app.mount("/", PublicFiles(directory=settings.PUBLIC_DIR, html=True), name="public")
    return app


app = create_app()
