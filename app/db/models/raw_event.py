"""
Raw Event Model — רשומת ביקורת לכל משלוח webhook נכנס.

נכתבת לפני כל ניסיון עיבוד. מתעדכנים רק status / processed_at /
meeting_id / error_message. replay מה-cron מעדכן את הרשומה המקורית ולא
יוצר חדשה. לא נמחקת.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey, Text, Index
from sqlalchemy.types import JSON

from app.core.clock import utcnow
from app.db.database import Base
from app.db.models.meeting import MeetingPlatform


class RawEventStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class RawEvent(Base):
    __tablename__ = "raw_events"

    id = Column(Integer, primary_key=True, index=True)
    platform = Column(SQLEnum(MeetingPlatform), nullable=False)
    event_type = Column(String(150), nullable=False)
    # מזהה האירוע אצל הפלטפורמה (Zoom event-uuid-ts / Graph subscription / Pub/Sub messageId)
    external_event_id = Column(String(500), nullable=True)
    payload = Column(JSON, nullable=False)
    # "metadata" שמור ב-declarative: שם העמודה נשאר metadata
    event_metadata = Column("metadata", JSON, nullable=True)

    status = Column(SQLEnum(RawEventStatus), nullable=False, default=RawEventStatus.PENDING)
    meeting_id = Column(Integer, ForeignKey("meetings.id"), nullable=True)
    error_message = Column(Text, nullable=True)

    received_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_raw_events_external_event_id", "external_event_id"),
        Index("ix_raw_events_status_received", "status", "received_at"),
    )
