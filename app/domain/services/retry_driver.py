"""
Retry cron driver — ריצה אחת על רשומות ledger שהגיע זמנן.

סדרתי, רשומה אחרי רשומה: in_progress → שחזור InboundEvent מה-payload
השמור → processor לפי פלטפורמה → succeeded או handle_retry_failure.
כשלון של רשומה אחת לא עוצר את האחרות.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utcnow
from app.core.config import settings
from app.core.exceptions import InvalidRetryTransitionError
from app.core.logging import clear_event_context, get_logger, log_async_operation, set_event_context
from app.domain.processors.base import InboundEvent
from app.domain.processors.dependencies import ProcessorDependencies
from app.domain.processors.registry import get_processor
from app.domain.services.raw_event_service import RawEventService
from app.domain.services.webhook_retry_service import WebhookMetrics, WebhookRetryService

logger = get_logger(__name__)


@dataclass
class RetryPassResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    moved_to_dead_letter: int = 0
    metrics: WebhookMetrics = field(default_factory=WebhookMetrics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "movedToDeadLetter": self.moved_to_dead_letter,
            "metrics": self.metrics.to_dict(),
        }


class RetryCronDriver:
    def __init__(
        self,
        db: AsyncSession,
        deps: ProcessorDependencies,
        clock: Clock = utcnow,
        batch_size: int | None = None,
        retry_service: WebhookRetryService | None = None,
    ):
        self.db = db
        self.deps = deps
        self._clock = clock
        self._batch_size = batch_size or settings.WEBHOOK_RETRY_BATCH_SIZE
        self.retries = retry_service or WebhookRetryService(db, alert_notifier=deps.alert_notifier, clock=clock)
        self.raw_events = RawEventService(db, clock=clock)

    @log_async_operation("webhook retry pass")
    async def run_once(self) -> RetryPassResult:
        due = await self.retries.get_webhooks_for_retry(self._batch_size)
        # עותק של הנתונים לפני העיבוד: rollback אחרי כשלון מפקיע את האובייקטים
        work = [(failure.id, InboundEvent.from_failure(failure)) for failure in due]

        result = RetryPassResult()
        for failure_id, event in work:
            set_event_context(
                platform=event.platform.value,
                event_type=event.event_type,
                raw_event_id=event.raw_event_id,
                failure_id=failure_id,
            )
            try:
                await self._retry_one(failure_id, event, result)
            finally:
                clear_event_context()

        result.metrics = await self.retries.get_webhook_metrics()
        logger.info(
            "Webhook retry pass finished",
            extra_data={
                "processed": result.processed,
                "successful": result.successful,
                "failed": result.failed,
                "moved_to_dead_letter": result.moved_to_dead_letter,
            },
        )
        return result

    async def _retry_one(self, failure_id: int, event: InboundEvent, result: RetryPassResult) -> None:
        try:
            await self.retries.mark_retry_in_progress(failure_id)
        except InvalidRetryTransitionError:
            logger.info("Ledger entry already claimed, skipping", extra_data={"failure_id": failure_id})
            return

        result.processed += 1
        try:
            processed = await get_processor(event.platform, self.db, self.deps, clock=self._clock).process(event)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.warning(
                "Webhook retry attempt failed",
                extra_data={"failure_id": failure_id, "error": error, "error_type": e.__class__.__name__},
            )
            await self.db.rollback()
            outcome = await self.retries.handle_retry_failure(failure_id, error)
            result.failed += 1
            if outcome.moved_to_dead_letter:
                result.moved_to_dead_letter += 1
            return

        try:
            await self.retries.mark_retry_successful(failure_id)
        except Exception as e:
            logger.error(
                "Failed to mark ledger entry succeeded",
                extra_data={"failure_id": failure_id, "error": str(e), "error_type": e.__class__.__name__},
                exc_info=True,
            )
            await self.db.rollback()
            result.failed += 1
            return
        result.successful += 1

        if event.raw_event_id is None:
            return
        try:
            await self.raw_events.mark_processed(event.raw_event_id, processed.meeting_id)
        except Exception as e:
            logger.error(
                "Failed to mark raw event processed after retry",
                extra_data={"failure_id": failure_id, "raw_event_id": event.raw_event_id, "error": str(e)},
                exc_info=True,
            )
            await self.db.rollback()
