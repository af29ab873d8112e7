"""
שירות בדיקת בריאות — תלויות (DB, Celery broker), קונפיגורציית פלטפורמות
ומצב ה-retry ledger.

- liveness: האם התהליך חי (ללא בדיקת תלויות)
- readiness: DB + broker
- webhooks: אילו פלטפורמות מוגדרות + סיווג ה-ledger (healthy/degraded/critical)
"""
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text

from app.core.config import settings
from app.core.logging import get_logger
from app.db.database import AsyncSessionLocal
from app.domain.services.webhook_retry_service import WebhookMetrics

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"
_STATUS_CRITICAL = "critical"

_CHECK_OK = "ok"

# הודעות שגיאה מסוננות: ללא חשיפת פרטי תשתית
_ERROR_DB = "error: db_unavailable"
_ERROR_CELERY = "error: celery_unavailable"

# אחוז רשומות פתוחות מתוך ה-ledger שמעליו המצב degraded
DEGRADED_FAILED_RATIO = 0.10


async def _check_db() -> str:
    """בדיקת חיבור למסד הנתונים באמצעות שאילתה קלה."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("בדיקת בריאות DB נכשלה", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_celery() -> str:
    """בדיקת זמינות ה-broker של Celery (Redis) באמצעות PING."""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("בדיקת בריאות Celery נכשלה", extra_data={"error": str(e)})
        return _ERROR_CELERY


async def check_readiness() -> dict[str, Any]:
    """
    בדיקת מוכנות — "healthy" אם הכל תקין, "degraded" אם תלות כלשהי נכשלה.
    """
    checks = {
        "db": await _check_db(),
        "celery": await _check_celery(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("בדיקת מוכנות — המערכת במצב degraded", extra_data=checks)

    return {"status": overall_status, **checks}


def platform_configuration() -> dict[str, dict[str, bool]]:
    """אילו פלטפורמות מוגדרות לקבלת webhooks ולקריאות API"""
    return {
        "zoom": {
            "webhook": bool(settings.ZOOM_WEBHOOK_SECRET_TOKEN),
            "api": bool(settings.ZOOM_ACCOUNT_ID and settings.ZOOM_CLIENT_ID and settings.ZOOM_CLIENT_SECRET),
        },
        "microsoft_teams": {
            "webhook": bool(settings.MICROSOFT_TEAMS_WEBHOOK_SECRET),
            "api": bool(
                settings.MICROSOFT_TEAMS_TENANT_ID
                and settings.MICROSOFT_TEAMS_CLIENT_ID
                and settings.MICROSOFT_TEAMS_CLIENT_SECRET
            ),
        },
        "google_meet": {
            "webhook": bool(settings.pubsub_audience),
            "api": bool(settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET and settings.GOOGLE_REFRESH_TOKEN),
        },
    }


def any_platform_configured(configuration: dict[str, dict[str, bool]]) -> bool:
    # Meet נחשב מוגדר רק עם credentials ל-API: ה-audience תמיד קיים
    return (
        configuration["zoom"]["webhook"]
        or configuration["microsoft_teams"]["webhook"]
        or configuration["google_meet"]["api"]
    )


def classify_ledger_health(metrics: WebhookMetrics) -> str:
    """
    critical — יש רשומות ב-dead letter.
    degraded — רשומות פתוחות מעל 10% מה-ledger.
    healthy — אחרת.
    """
    if metrics.dead_letter > 0:
        return _STATUS_CRITICAL
    if metrics.total > 0 and metrics.failed / metrics.total > DEGRADED_FAILED_RATIO:
        return _STATUS_DEGRADED
    return _STATUS_HEALTHY
