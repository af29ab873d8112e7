"""
Draft Model — טיוטת מייל follow-up שנוצרה מתמלול.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text

from app.core.clock import utcnow
from app.db.database import Base


class Draft(Base):
    __tablename__ = "drafts"

    id = Column(Integer, primary_key=True, index=True)
    meeting_id = Column(Integer, ForeignKey("meetings.id"), nullable=False, index=True)
    transcript_id = Column(Integer, ForeignKey("transcripts.id"), nullable=False)

    subject = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    model = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="generated")

    created_at = Column(DateTime, default=utcnow)
