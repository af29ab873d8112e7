"""
Transcript Model — תמלול אחד לכל שיחה (upsert לפי meeting_id).
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.types import JSON

from app.core.clock import utcnow
from app.db.database import Base
from app.db.models.meeting import MeetingPlatform


class Transcript(Base):
    """תמלול מנותח: טקסט מלא, VTT מקורי וקטעי דוברים"""

    __tablename__ = "transcripts"

    id = Column(Integer, primary_key=True, index=True)
    meeting_id = Column(Integer, ForeignKey("meetings.id"), nullable=False, unique=True)
    platform = Column(SQLEnum(MeetingPlatform), nullable=False)
    source = Column(String(50), nullable=False)  # zoom / teams / meet_entries

    content = Column(Text, nullable=False)
    vtt_content = Column(Text, nullable=True)
    # [{"speaker", "start_time", "end_time", "text"}]: זמנים במילישניות
    speaker_segments = Column(JSON, nullable=True)
    word_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="ready")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
