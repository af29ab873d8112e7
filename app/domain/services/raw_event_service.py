"""
Raw Event Store — תיעוד כל משלוח webhook לפני עיבוד.

store_raw_event נקרא תמיד לפני ה-processor ועושה commit מיידי, כך שלכל
משלוח נשאר audit trail גם אם העיבוד זורק. אחרי זה מותר לעדכן רק
status / processed_at / meeting_id / error_message.
"""
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utcnow
from app.core.logging import get_logger
from app.db.models.meeting import MeetingPlatform
from app.db.models.raw_event import RawEvent, RawEventStatus

logger = get_logger(__name__)

# הגבלת אורך הודעת שגיאה שנשמרת: מניעת שורות ענק מ-stack traces
_MAX_ERROR_CHARS = 2000


class RawEventService:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self._clock = clock

    async def store_raw_event(
        self,
        platform: MeetingPlatform,
        event_type: str,
        external_event_id: str | None,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> RawEvent:
        """שמירת payload כפי שהתקבל. רשומה אחת לכל משלוח HTTP."""
        raw_event = RawEvent(
            platform=platform,
            event_type=event_type,
            external_event_id=external_event_id,
            payload=payload,
            event_metadata=metadata,
            status=RawEventStatus.PENDING,
            received_at=self._clock(),
        )
        self.db.add(raw_event)
        await self.db.commit()
        await self.db.refresh(raw_event)

        logger.info(
            "Raw event stored",
            extra_data={
                "raw_event_id": raw_event.id,
                "platform": platform.value,
                "event_type": event_type,
                "external_event_id": external_event_id,
            },
        )
        return raw_event

    async def get_raw_event(self, raw_event_id: int) -> RawEvent | None:
        result = await self.db.execute(select(RawEvent).where(RawEvent.id == raw_event_id))
        return result.scalar_one_or_none()

    async def mark_processed(self, raw_event_id: int, meeting_id: int | None = None) -> None:
        """סימון עיבוד מוצלח + קישור לשיחה (אם נוצרה)"""
        values: dict[str, Any] = {
            "status": RawEventStatus.PROCESSED,
            "processed_at": self._clock(),
            "error_message": None,
        }
        if meeting_id is not None:
            values["meeting_id"] = meeting_id
        await self.db.execute(
            update(RawEvent).where(RawEvent.id == raw_event_id).values(**values)
        )
        await self.db.commit()

    async def mark_failed(self, raw_event_id: int, error_message: str) -> None:
        await self.db.execute(
            update(RawEvent)
            .where(RawEvent.id == raw_event_id)
            .values(status=RawEventStatus.FAILED, error_message=error_message[:_MAX_ERROR_CHARS])
        )
        await self.db.commit()
