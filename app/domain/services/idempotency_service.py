"""
Idempotency Service — מניעת עיבוד כפול של אותו אירוע webhook.

גישה אופטימיסטית: INSERT של המפתח בתוך savepoint. אם ה-INSERT נכשל על
unique constraint — מישהו אחר כבר רכש את המפתח (גם מ-instance אחר),
והקורא צריך לאשר קבלה ולדלג. אין נעילה בזיכרון ואין TTL אמיתי; המפתחות
מנוקים ע"י משימת תחזוקה יומית.
"""
from datetime import timedelta

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utcnow
from app.core.logging import get_logger
from app.db.models.idempotency_lock import IdempotencyLock
from app.db.models.meeting import MeetingPlatform

logger = get_logger(__name__)


def build_lock_key(platform: MeetingPlatform, event_id: str) -> str:
    """מפתח idempotency: platform:event_id"""
    return f"{platform.value}:{event_id}"


class IdempotencyService:
    """רכישת מפתחות dedup מול טבלת idempotency_locks"""

    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self._clock = clock

    async def acquire_event_lock(self, event_id: str, platform: MeetingPlatform) -> bool:
        """
        ניסיון לרכוש אירוע לעיבוד.

        מחזיר True אם זו הפעם הראשונה שהמפתח נראה, False אם כפול.
        ה-commit מיידי כדי שהמפתח יישמר גם אם העיבוד שאחריו נכשל.
        """
        key = build_lock_key(platform, event_id)
        try:
            # Core insert: עוקף את ה-identity map, כך שגם אותו session מקבל IntegrityError
            async with self.db.begin_nested():
                await self.db.execute(
                    insert(IdempotencyLock).values(
                        key=key,
                        platform=platform.value,
                        created_at=self._clock(),
                    )
                )
            await self.db.commit()
        except IntegrityError:
            logger.info(
                "Duplicate webhook delivery, skipping",
                extra_data={"lock_key": key},
            )
            return False
        return True

    async def is_event_locked(self, event_id: str, platform: MeetingPlatform) -> bool:
        """האם המפתח כבר נרכש (ללא ניסיון רכישה)"""
        result = await self.db.execute(
            select(IdempotencyLock.key).where(
                IdempotencyLock.key == build_lock_key(platform, event_id)
            )
        )
        return result.scalar_one_or_none() is not None

    async def cleanup_expired_locks(self, older_than_days: int) -> int:
        """מחיקת מפתחות ישנים מ-older_than_days ימים. מחזיר כמה נמחקו."""
        cutoff = self._clock() - timedelta(days=older_than_days)
        result = await self.db.execute(
            delete(IdempotencyLock).where(IdempotencyLock.created_at < cutoff)
        )
        await self.db.commit()
        deleted = result.rowcount or 0
        logger.info(
            "Idempotency locks cleaned up",
            extra_data={"deleted": deleted, "older_than_days": older_than_days},
        )
        return deleted
