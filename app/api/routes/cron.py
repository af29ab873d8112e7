"""
Cron Endpoints — מופעלים ע"י scheduler חיצוני (או Celery beat דרך tasks).
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.cron_auth import require_cron_auth
from app.api.dependencies.processors import get_processor_dependencies
from app.db.database import get_db
from app.domain.processors.dependencies import ProcessorDependencies
from app.domain.services.retry_driver import RetryCronDriver

router = APIRouter()


@router.get(
    "/process-webhook-retries",
    summary="ריצת retry על ה-webhook ledger",
    description="מעבד עד WEBHOOK_RETRY_BATCH_SIZE רשומות שהגיע זמנן ומחזיר סיכום ומטריקות.",
    responses={
        200: {"description": "סיכום הריצה"},
        401: {"description": "חסר או שגוי CRON_SECRET"},
    },
)
async def process_webhook_retries(
    _: None = Depends(require_cron_auth),
    db: AsyncSession = Depends(get_db),
    deps: ProcessorDependencies = Depends(get_processor_dependencies),
) -> dict:
    result = await RetryCronDriver(db, deps).run_once()
    return result.to_dict()
