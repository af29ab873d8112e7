"""
Celery Tasks

- process_webhook_retries: ריצת cron על ה-retry ledger
- process_transcript_job: הורדת תמלול Zoom + טיוטה (נשלח מ-recording.completed)
- cleanup_idempotency_locks: ניקוי מפתחות dedup ישנים
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.workers.celery_app import celery_app
from app.core.clock import Clock, utcnow
from app.core.config import settings
from app.core.logging import clear_event_context, get_logger, set_correlation_id, set_event_context
from app.db.database import get_task_session
from app.db.models.meeting import MeetingPlatform
from app.domain.events import ZoomEventType
from app.domain.processors.dependencies import (
    ProcessorDependencies,
    ZoomTranscriptJob,
    build_processor_dependencies,
)
from app.domain.processors.zoom import ZoomEventProcessor
from app.domain.services.idempotency_service import IdempotencyService
from app.domain.services.retry_driver import RetryCronDriver
from app.domain.services.webhook_retry_service import WebhookRetryService

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def run_retry_pass(db: AsyncSession, deps: ProcessorDependencies) -> dict[str, Any]:
    result = await RetryCronDriver(db, deps).run_once()
    return result.to_dict()


async def run_transcript_job(
    db: AsyncSession,
    deps: ProcessorDependencies,
    job: ZoomTranscriptJob,
    clock: Clock = utcnow,
) -> dict[str, Any]:
    """
    הרצת עבודת תמלול. כשלון נרשם ב-ledger כ-zoom.transcript_job עם שדות
    העבודה, כך שה-cron מריץ את ההורדה עצמה ולא שולח עבודה חדשה, והניסיונות
    נצברים על אותה רשומה עד dead letter.
    """
    set_event_context(
        platform=MeetingPlatform.ZOOM.value,
        raw_event_id=job.raw_event_id,
        meeting_id=job.meeting_id,
    )
    try:
        try:
            result = await ZoomEventProcessor(db, deps, clock=clock).run_transcript_job(job)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(
                "Transcript job failed",
                extra_data={"error": error, "error_type": e.__class__.__name__},
                exc_info=True,
            )
            await db.rollback()
            retries = WebhookRetryService(db, alert_notifier=deps.alert_notifier, clock=clock)
            failure = await retries.record_webhook_failure(
                MeetingPlatform.ZOOM,
                ZoomEventType.TRANSCRIPT_JOB,
                job.to_payload(),
                error,
                raw_event_id=job.raw_event_id,
            )
            return {"success": False, "error": error, "failureId": failure.id}
        return {"success": True, **result.to_dict()}
    finally:
        clear_event_context()


async def run_lock_cleanup(db: AsyncSession, older_than_days: int) -> dict[str, int]:
    deleted = await IdempotencyService(db).cleanup_expired_locks(older_than_days)
    return {"deleted": deleted}


@celery_app.task(name="app.workers.tasks.process_webhook_retries")
def process_webhook_retries():
    """ריצה אחת על רשומות ledger שהגיע זמנן"""

    async def _process():
        async with get_task_session() as db:
            return await run_retry_pass(db, build_processor_dependencies())

    return run_async(_process())


@celery_app.task(name="app.workers.tasks.process_transcript_job")
def process_transcript_job(
    meeting_id: int,
    download_url: str,
    download_token: str | None = None,
    raw_event_id: int | None = None,
):
    job = ZoomTranscriptJob(
        meeting_id=meeting_id,
        download_url=download_url,
        download_token=download_token,
        raw_event_id=raw_event_id,
    )

    async def _process():
        async with get_task_session() as db:
            return await run_transcript_job(db, build_processor_dependencies(), job)

    return run_async(_process())


@celery_app.task(name="app.workers.tasks.cleanup_idempotency_locks")
def cleanup_idempotency_locks(days: int | None = None):
    """ניקוי מפתחות idempotency ישנים מ-IDEMPOTENCY_LOCK_RETENTION_DAYS"""
    older_than_days = days or settings.IDEMPOTENCY_LOCK_RETENTION_DAYS

    async def _cleanup():
        async with get_task_session() as db:
            return await run_lock_cleanup(db, older_than_days)

    return run_async(_cleanup())
