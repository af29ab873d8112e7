"""
אימות קריאות cron ל-/api/cron/* ול-/api/webhooks/metrics.

Authorization: Bearer {CRON_SECRET}, או header x-vercel-cron כשהקריאה
עוברת דרך ה-scheduler של הפלטפורמה (רק אם CRON_ALLOW_PLATFORM_HEADER).
"""
import hmac

from fastapi import Header

from app.core.config import settings
from app.core.exceptions import AppException, ErrorCode
from app.core.logging import get_logger

logger = get_logger(__name__)


def _bearer_matches(authorization: str | None) -> bool:
    if not settings.CRON_SECRET or not authorization:
        return False
    return hmac.compare_digest(authorization.encode(), f"Bearer {settings.CRON_SECRET}".encode())


async def require_cron_auth(
    authorization: str | None = Header(None),
    x_vercel_cron: str | None = Header(None),
) -> None:
    if _bearer_matches(authorization):
        return
    if settings.CRON_ALLOW_PLATFORM_HEADER and x_vercel_cron:
        return

    logger.warning(
        "Unauthorized cron request",
        extra_data={"has_authorization": bool(authorization), "has_platform_header": bool(x_vercel_cron)},
    )
    raise AppException(
        message="Unauthorized",
        error_code=ErrorCode.UNAUTHORIZED,
        status_code=401,
    )


async def require_metrics_auth(authorization: str | None = Header(None)) -> None:
    """metrics endpoint — Bearer CRON_SECRET בלבד"""
    if not _bearer_matches(authorization):
        raise AppException(
            message="Unauthorized",
            error_code=ErrorCode.UNAUTHORIZED,
            status_code=401,
        )
