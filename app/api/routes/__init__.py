"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.admin_webhooks import router as admin_webhooks_router
from app.api.routes.cron import router as cron_router
from app.api.routes.webhook_monitoring import router as webhook_monitoring_router
from app.api.webhooks.meet import router as meet_router
from app.api.webhooks.teams import router as teams_router
from app.api.webhooks.zoom import router as zoom_router

router = APIRouter()

router.include_router(zoom_router, prefix="/webhooks", tags=["webhooks"])
router.include_router(teams_router, prefix="/webhooks", tags=["webhooks"])
router.include_router(meet_router, prefix="/webhooks", tags=["webhooks"])
router.include_router(webhook_monitoring_router, prefix="/webhooks", tags=["webhooks"])
router.include_router(cron_router, prefix="/cron", tags=["cron"])
router.include_router(admin_webhooks_router, prefix="/admin/webhooks", tags=["admin"])
