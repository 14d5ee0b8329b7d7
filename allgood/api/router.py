from fastapi import APIRouter

from allgood.api.routes import admin, checkout, health, site, stats, stripe_webhook

router = APIRouter()
router.include_router(health.router, tags=["health"])
router.include_router(checkout.router, tags=["payments"])
router.include_router(stripe_webhook.router, tags=["payments"])

# Admin
router.include_router(admin.router, tags=["admin"])
router.include_router(stats.router, tags=["admin"])

# Pages last; static files are mounted after all routes
router.include_router(site.router, tags=["site"])
