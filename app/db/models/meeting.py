"""
Meeting Model — שיחה אחת שנקלטה מ-Zoom / Teams / Meet.

נוצרת ע"י platform processor ומתעדכנת לאורך שלבי העיבוד
(pending → processing → ready → completed). לא נמחקת ע"י תת-המערכת הזו.
"""
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Enum as SQLEnum, Text, UniqueConstraint,
)
from sqlalchemy.types import JSON

from app.core.clock import utcnow
from app.db.database import Base


class MeetingPlatform(str, enum.Enum):
    ZOOM = "zoom"
    MICROSOFT_TEAMS = "microsoft_teams"
    GOOGLE_MEET = "google_meet"


class MeetingStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    COMPLETED = "completed"
    FAILED = "failed"


class Meeting(Base):
    """שיחה מוקלטת עם מטא-דאטה ומצב עיבוד"""

    __tablename__ = "meetings"

    id = Column(Integer, primary_key=True, index=True)
    platform = Column(SQLEnum(MeetingPlatform), nullable=False)
    # מזהה השיחה בפלטפורמה (Zoom uuid / teams-{tenant}-{id} / meet-{record})
    platform_meeting_id = Column(String(500), nullable=False)

    host_email = Column(String(255), nullable=False, default="unknown@unknown.com")
    topic = Column(String(500), nullable=False, default="Untitled Meeting")
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)  # דקות
    participants = Column(JSON, nullable=True)

    status = Column(SQLEnum(MeetingStatus), nullable=False, default=MeetingStatus.PENDING, index=True)
    processing_step = Column(String(50), nullable=True)
    processing_progress = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    transcript_download_url = Column(Text, nullable=True)
    recording_download_url = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("platform", "platform_meeting_id", name="uq_meetings_platform_meeting_id"),
    )
