"""
Dead Letter Model — אירועים שמיצו את כל ניסיונות ה-retry.

נשמר עם היסטוריית הכשלונות המלאה. נדרשת התערבות ידנית
(retry_dead_letter יוצר רשומת ledger חדשה ומסמן resolved).
"""
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey, Text, Boolean
from sqlalchemy.types import JSON

from app.core.clock import utcnow
from app.db.database import Base
from app.db.models.meeting import MeetingPlatform


class DeadLetter(Base):
    __tablename__ = "dead_letter_queue"

    id = Column(Integer, primary_key=True, index=True)
    original_failure_id = Column(Integer, ForeignKey("webhook_failures.id"), nullable=False, index=True)
    platform = Column(SQLEnum(MeetingPlatform), nullable=False)
    event_type = Column(String(150), nullable=False)
    payload = Column(JSON, nullable=False)
    failure_history = Column(JSON, nullable=False, default=list)
    final_error = Column(Text, nullable=True)
    total_attempts = Column(Integer, nullable=False, default=0)

    alert_sent = Column(Boolean, nullable=False, default=False)
    alert_sent_at = Column(DateTime, nullable=True)

    resolved_at = Column(DateTime, nullable=True)
    resolution_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
