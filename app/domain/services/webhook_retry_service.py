"""
Webhook Retry Service — retry ledger עם exponential backoff ו-dead letter.

כל webhook שהעיבוד שלו זרק נרשם כאן עם עותק של ה-payload. ה-cron שולף
רשומות שהגיע זמנן, מסמן in_progress (compare-and-set אטומי), ומעדכן
הצלחה או כשלון. אחרי WEBHOOK_RETRY_MAX_ATTEMPTS כשלונות הרשומה עוברת
ל-dead_letter_queue ונשלחת התראה ל-Slack.

backoff: next_retry_at = now + min(max, base * 2**attempts)
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utcnow
from app.core.config import settings
from app.core.exceptions import (
    DeadLetterAlreadyResolvedError,
    DeadLetterNotFoundError,
    InvalidRetryTransitionError,
    RetryEntryNotFoundError,
)
from app.core.logging import get_logger
from app.db.models.dead_letter import DeadLetter
from app.db.models.meeting import MeetingPlatform
from app.db.models.webhook_failure import WebhookFailure, WebhookFailureStatus

logger = get_logger(__name__)

_MAX_ERROR_CHARS = 2000


def _calculate_backoff_seconds(
    attempts: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Exponential backoff עם תקרה קשיחה: base * 2**attempts, חסום ב-max.

    לא מחשב חזקות ענק כש-attempts גדול במיוחד.
    """
    if attempts < 0:
        attempts = 0

    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    if base_seconds >= max_backoff_seconds:
        return max_backoff_seconds

    # האם 2**attempts >= ceil(max/base): בלי לחשב את 2**attempts
    required_multiplier = (max_backoff_seconds + base_seconds - 1) // base_seconds
    is_power_of_two = (required_multiplier & (required_multiplier - 1)) == 0
    threshold = required_multiplier.bit_length() - 1
    if not is_power_of_two:
        threshold += 1

    if attempts >= threshold:
        return max_backoff_seconds

    backoff = base_seconds * (1 << attempts)
    return min(backoff, max_backoff_seconds)


def compute_next_retry_at(
    now: datetime,
    attempts: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> datetime:
    return now + timedelta(
        seconds=_calculate_backoff_seconds(
            attempts,
            base_seconds=base_seconds,
            max_backoff_seconds=max_backoff_seconds,
        )
    )


def build_fingerprint(platform: MeetingPlatform, event_type: str, payload: dict[str, Any]) -> str:
    """sha256 על platform + event_type + payload בצורה קנונית (מפתחות ממוינים)"""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256()
    digest.update(platform.value.encode())
    digest.update(b"\x00")
    digest.update(event_type.encode())
    digest.update(b"\x00")
    digest.update(canonical.encode())
    return digest.hexdigest()


class DeadLetterNotifier(Protocol):
    async def send_dead_letter_alert(self, dead_letter: DeadLetter) -> bool:
        ...


@dataclass
class RetryFailureOutcome:
    """תוצאת handle_retry_failure"""
    moved_to_dead_letter: bool
    attempts: int
    next_retry_at: datetime | None
    dead_letter_id: int | None = None


@dataclass
class PlatformMetrics:
    total: int = 0
    successful: int = 0
    failed: int = 0
    dead_letter: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "deadLetter": self.dead_letter,
        }


@dataclass
class WebhookMetrics:
    """
    ספירות ledger.

    failed = רשומות פתוחות (pending + in_progress),
    retried = רשומות עם attempts > 0.
    """
    total: int = 0
    successful: int = 0
    failed: int = 0
    retried: int = 0
    dead_letter: int = 0
    by_platform: dict[str, PlatformMetrics] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "retried": self.retried,
            "deadLetter": self.dead_letter,
            "byPlatform": {name: m.to_dict() for name, m in self.by_platform.items()},
        }


class WebhookRetryService:
    """ניהול ה-retry ledger ותור ה-dead letter"""

    def __init__(
        self,
        db: AsyncSession,
        alert_notifier: DeadLetterNotifier | None = None,
        clock: Clock = utcnow,
        base_seconds: int | None = None,
        max_backoff_seconds: int | None = None,
        max_attempts: int | None = None,
    ):
        self.db = db
        self._alert_notifier = alert_notifier
        self._clock = clock
        self._base_seconds = base_seconds or settings.WEBHOOK_RETRY_BASE_SECONDS
        self._max_backoff_seconds = max_backoff_seconds or settings.WEBHOOK_RETRY_MAX_BACKOFF_SECONDS
        self._max_attempts = max_attempts or settings.WEBHOOK_RETRY_MAX_ATTEMPTS

    def _next_retry_at(self, attempts: int) -> datetime:
        return compute_next_retry_at(
            self._clock(),
            attempts,
            base_seconds=self._base_seconds,
            max_backoff_seconds=self._max_backoff_seconds,
        )

    async def _get_failure(self, failure_id: int) -> WebhookFailure:
        result = await self.db.execute(
            select(WebhookFailure).where(WebhookFailure.id == failure_id)
        )
        failure = result.scalar_one_or_none()
        if failure is None:
            raise RetryEntryNotFoundError(failure_id)
        return failure

    async def record_webhook_failure(
        self,
        platform: MeetingPlatform,
        event_type: str,
        payload: dict[str, Any],
        error: str,
        raw_event_id: int | None = None,
    ) -> WebhookFailure:
        """
        רישום כשלון עיבוד של webhook.

        רשומה חדשה: attempts=0, next_retry_at=now+base. אם קיימת רשומה
        pending עם אותו fingerprint — הכשלון נספר עליה (attempts+1, backoff
        חדש), ובתקרה היא עוברת ל-dead letter.
        """
        now = self._clock()
        fingerprint = build_fingerprint(platform, event_type, payload)
        error = error[:_MAX_ERROR_CHARS]

        result = await self.db.execute(
            select(WebhookFailure)
            .where(
                WebhookFailure.fingerprint == fingerprint,
                WebhookFailure.status == WebhookFailureStatus.PENDING,
            )
            .order_by(WebhookFailure.id)
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return await self._count_repeated_failure(existing, error, now)

        failure = WebhookFailure(
            platform=platform,
            event_type=event_type,
            payload=payload,
            fingerprint=fingerprint,
            raw_event_id=raw_event_id,
            attempts=0,
            next_retry_at=self._next_retry_at(0),
            status=WebhookFailureStatus.PENDING,
            last_error=error,
            failure_history=[{"attempt": 0, "error": error, "timestamp": now.isoformat()}],
            created_at=now,
            updated_at=now,
        )
        self.db.add(failure)
        await self.db.commit()
        await self.db.refresh(failure)

        logger.warning(
            "Webhook failure recorded for retry",
            extra_data={
                "failure_id": failure.id,
                "platform": platform.value,
                "event_type": event_type,
                "next_retry_at": failure.next_retry_at.isoformat(),
                "error": error,
            },
        )
        return failure

    async def _count_repeated_failure(
        self, existing: WebhookFailure, error: str, now: datetime
    ) -> WebhookFailure:
        attempts = existing.attempts + 1
        history = [
            *(existing.failure_history or []),
            {"attempt": attempts, "error": error, "timestamp": now.isoformat()},
        ]

        if attempts >= self._max_attempts:
            await self._transition(
                existing.id,
                WebhookFailureStatus.PENDING,
                WebhookFailureStatus.DEAD_LETTER,
                attempts=attempts,
                last_error=error,
                failure_history=history,
                next_retry_at=None,
                resolved_at=now,
            )
            await self._move_to_dead_letter(existing.id)
            await self.db.refresh(existing)
            return existing

        await self._transition(
            existing.id,
            WebhookFailureStatus.PENDING,
            WebhookFailureStatus.PENDING,
            attempts=attempts,
            last_error=error,
            failure_history=history,
            next_retry_at=self._next_retry_at(attempts),
        )
        logger.info(
            "Repeated webhook failure counted on pending ledger entry",
            extra_data={
                "failure_id": existing.id,
                "platform": existing.platform.value,
                "event_type": existing.event_type,
                "attempts": attempts,
            },
        )
        await self.db.refresh(existing)
        return existing

    async def get_webhooks_for_retry(self, limit: int | None = None) -> list[WebhookFailure]:
        """רשומות pending שהגיע זמנן, לפי next_retry_at ואז id"""
        limit = limit or settings.WEBHOOK_RETRY_BATCH_SIZE
        result = await self.db.execute(
            select(WebhookFailure)
            .where(
                WebhookFailure.status == WebhookFailureStatus.PENDING,
                WebhookFailure.next_retry_at <= self._clock(),
            )
            .order_by(WebhookFailure.next_retry_at, WebhookFailure.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _transition(
        self,
        failure_id: int,
        from_status: WebhookFailureStatus,
        to_status: WebhookFailureStatus,
        **values: Any,
    ) -> None:
        """
        מעבר מצב אטומי: UPDATE ... WHERE status = from_status.

        rowcount 0 אומר שמישהו אחר כבר הזיז את הרשומה (או שהיא לא קיימת).
        """
        result = await self.db.execute(
            update(WebhookFailure)
            .where(WebhookFailure.id == failure_id, WebhookFailure.status == from_status)
            .values(status=to_status, updated_at=self._clock(), **values)
        )
        if result.rowcount == 1:
            await self.db.commit()
            return

        await self.db.rollback()
        failure = await self._get_failure(failure_id)
        raise InvalidRetryTransitionError(failure_id, failure.status.value, to_status.value)

    async def mark_retry_in_progress(self, failure_id: int) -> None:
        await self._transition(
            failure_id, WebhookFailureStatus.PENDING, WebhookFailureStatus.IN_PROGRESS
        )

    async def mark_retry_successful(self, failure_id: int) -> None:
        now = self._clock()
        await self._transition(
            failure_id,
            WebhookFailureStatus.IN_PROGRESS,
            WebhookFailureStatus.SUCCEEDED,
            resolved_at=now,
            next_retry_at=None,
        )
        logger.info("Webhook retry succeeded", extra_data={"failure_id": failure_id})

    async def handle_retry_failure(self, failure_id: int, error: str) -> RetryFailureOutcome:
        """
        כשלון ניסיון חוזר: attempts+1, היסטוריה, ואז אחד משניים:
        - attempts < max → pending עם backoff חדש
        - attempts >= max → dead_letter + רשומה ב-dead_letter_queue
        """
        failure = await self._get_failure(failure_id)
        if failure.status != WebhookFailureStatus.IN_PROGRESS:
            raise InvalidRetryTransitionError(
                failure_id, failure.status.value, WebhookFailureStatus.PENDING.value
            )

        now = self._clock()
        error = error[:_MAX_ERROR_CHARS]
        attempts = failure.attempts + 1
        history = [
            *(failure.failure_history or []),
            {"attempt": attempts, "error": error, "timestamp": now.isoformat()},
        ]

        if attempts >= self._max_attempts:
            await self._transition(
                failure_id,
                WebhookFailureStatus.IN_PROGRESS,
                WebhookFailureStatus.DEAD_LETTER,
                attempts=attempts,
                last_error=error,
                failure_history=history,
                next_retry_at=None,
                resolved_at=now,
            )
            dead_letter = await self._move_to_dead_letter(failure_id)
            return RetryFailureOutcome(
                moved_to_dead_letter=True,
                attempts=attempts,
                next_retry_at=None,
                dead_letter_id=dead_letter.id,
            )

        next_retry_at = self._next_retry_at(attempts)
        await self._transition(
            failure_id,
            WebhookFailureStatus.IN_PROGRESS,
            WebhookFailureStatus.PENDING,
            attempts=attempts,
            last_error=error,
            failure_history=history,
            next_retry_at=next_retry_at,
        )
        logger.warning(
            "Webhook retry failed, rescheduled",
            extra_data={
                "failure_id": failure_id,
                "attempts": attempts,
                "next_retry_at": next_retry_at.isoformat(),
                "error": error,
            },
        )
        return RetryFailureOutcome(
            moved_to_dead_letter=False,
            attempts=attempts,
            next_retry_at=next_retry_at,
        )

    async def _move_to_dead_letter(self, failure_id: int) -> DeadLetter:
        """יצירת רשומת dead letter ושליחת התראה. כשלון בהתראה לא מבטל את ההעברה."""
        failure = await self._get_failure(failure_id)

        dead_letter = DeadLetter(
            original_failure_id=failure.id,
            platform=failure.platform,
            event_type=failure.event_type,
            payload=failure.payload,
            failure_history=failure.failure_history or [],
            final_error=failure.last_error,
            total_attempts=failure.attempts,
            alert_sent=False,
            created_at=self._clock(),
        )
        self.db.add(dead_letter)
        await self.db.commit()
        await self.db.refresh(dead_letter)

        logger.error(
            "Webhook moved to dead letter queue",
            extra_data={
                "failure_id": failure.id,
                "dead_letter_id": dead_letter.id,
                "platform": failure.platform.value,
                "event_type": failure.event_type,
                "total_attempts": failure.attempts,
            },
        )

        if self._alert_notifier is not None:
            try:
                sent = await self._alert_notifier.send_dead_letter_alert(dead_letter)
            except Exception as e:
                logger.warning(
                    "Dead letter alert failed",
                    extra_data={"dead_letter_id": dead_letter.id, "error": str(e)},
                )
                sent = False
            if sent:
                dead_letter.alert_sent = True
                dead_letter.alert_sent_at = self._clock()
                await self.db.commit()

        return dead_letter

    async def get_unresolved_dead_letters(self, limit: int = 50) -> list[DeadLetter]:
        result = await self.db.execute(
            select(DeadLetter)
            .where(DeadLetter.resolved_at.is_(None))
            .order_by(DeadLetter.created_at.desc(), DeadLetter.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def retry_dead_letter(
        self,
        dead_letter_id: int,
        resolution_notes: str | None = None,
    ) -> WebhookFailure:
        """
        החזרת dead letter ל-ledger: רשומה חדשה (attempts=0, ניתנת לשליפה מיד)
        וסימון ה-dead letter כ-resolved.
        """
        result = await self.db.execute(
            select(DeadLetter).where(DeadLetter.id == dead_letter_id)
        )
        dead_letter = result.scalar_one_or_none()
        if dead_letter is None:
            raise DeadLetterNotFoundError(dead_letter_id)
        if dead_letter.resolved_at is not None:
            raise DeadLetterAlreadyResolvedError(dead_letter_id)

        now = self._clock()
        original = await self._get_failure(dead_letter.original_failure_id)
        failure = WebhookFailure(
            platform=dead_letter.platform,
            event_type=dead_letter.event_type,
            payload=dead_letter.payload,
            fingerprint=build_fingerprint(dead_letter.platform, dead_letter.event_type, dead_letter.payload),
            raw_event_id=original.raw_event_id,
            attempts=0,
            next_retry_at=now,
            status=WebhookFailureStatus.PENDING,
            last_error=dead_letter.final_error,
            failure_history=[],
            created_at=now,
            updated_at=now,
        )
        self.db.add(failure)
        dead_letter.resolved_at = now
        dead_letter.resolution_notes = resolution_notes or "Manually re-queued for retry"
        await self.db.commit()
        await self.db.refresh(failure)

        logger.info(
            "Dead letter re-queued",
            extra_data={"dead_letter_id": dead_letter_id, "failure_id": failure.id},
        )
        return failure

    async def list_failures(
        self,
        status: WebhookFailureStatus | None = None,
        limit: int = 50,
    ) -> list[WebhookFailure]:
        query = select(WebhookFailure).order_by(WebhookFailure.id.desc()).limit(limit)
        if status is not None:
            query = query.where(WebhookFailure.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_webhook_metrics(self) -> WebhookMetrics:
        """ספירות ledger לפי סטטוס ופלטפורמה"""
        result = await self.db.execute(
            select(
                WebhookFailure.platform,
                WebhookFailure.status,
                func.count(WebhookFailure.id),
                func.sum(case((WebhookFailure.attempts > 0, 1), else_=0)),
            ).group_by(WebhookFailure.platform, WebhookFailure.status)
        )

        metrics = WebhookMetrics()
        for platform, status, count, retried in result.all():
            platform_metrics = metrics.by_platform.setdefault(platform.value, PlatformMetrics())
            metrics.total += count
            platform_metrics.total += count
            metrics.retried += int(retried or 0)
            if status == WebhookFailureStatus.SUCCEEDED:
                metrics.successful += count
                platform_metrics.successful += count
            elif status == WebhookFailureStatus.DEAD_LETTER:
                metrics.dead_letter += count
                platform_metrics.dead_letter += count
            else:
                metrics.failed += count
                platform_metrics.failed += count
        return metrics
