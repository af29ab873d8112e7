"""
ניטור קליטת webhooks — מטריקות ה-ledger ומצב קונפיגורציית הפלטפורמות.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.cron_auth import require_metrics_auth
from app.core.clock import utcnow
from app.db.database import get_db
from app.domain.services.health_service import (
    any_platform_configured,
    classify_ledger_health,
    platform_configuration,
)
from app.domain.services.webhook_retry_service import WebhookRetryService

router = APIRouter()


@router.get(
    "/metrics",
    summary="מטריקות retry ledger",
    description="ספירות לפי סטטוס ופלטפורמה + סיווג healthy / degraded / critical.",
    responses={401: {"description": "חסר או שגוי CRON_SECRET"}},
)
async def webhook_metrics(
    _: None = Depends(require_metrics_auth),
    db: AsyncSession = Depends(get_db),
) -> dict:
    metrics = await WebhookRetryService(db).get_webhook_metrics()
    return {
        "status": classify_ledger_health(metrics),
        "metrics": metrics.to_dict(),
        "timestamp": utcnow().isoformat(),
    }


@router.get(
    "/health",
    summary="מצב קליטת webhooks",
    description="אילו פלטפורמות מוגדרות וסיכום ה-ledger. 503 כשאף פלטפורמה לא מוגדרת.",
)
async def webhook_health(db: AsyncSession = Depends(get_db)):
    configuration = platform_configuration()
    metrics = await WebhookRetryService(db).get_webhook_metrics()
    configured = any_platform_configured(configuration)
    body = {
        "status": classify_ledger_health(metrics) if configured else "unconfigured",
        "platforms": configuration,
        "ledger": metrics.to_dict(),
    }
    return JSONResponse(status_code=200 if configured else 503, content=body)
