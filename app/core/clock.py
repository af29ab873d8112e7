"""
זמן UTC נאיבי לכל העמודות במסד.

העמודות מוגדרות כ-DateTime ללא timezone (תואם PostgreSQL ו-SQLite), לכן
כל חותמת זמן נשמרת כ-UTC ללא tzinfo. שירותים מקבלים `Clock` כדי שבדיקות
יוכלו לקבע את הזמן בלי sleep.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """הזמן הנוכחי ב-UTC, ללא tzinfo"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """המרת datetime עם timezone (מ-payload חיצוני) ל-UTC נאיבי"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
