"""
Idempotency Lock Model — סט dedup למשלוחי webhook.

מפתח ייחודי (platform:event_id) כ-primary key. ה-INSERT הראשון מנצח;
ניסיון נוסף נכשל על unique constraint ומסמן "כפול, לדלג".
"""
from sqlalchemy import Column, String, DateTime, Index

from app.core.clock import utcnow
from app.db.database import Base


class IdempotencyLock(Base):
    __tablename__ = "idempotency_locks"

    key = Column(String(600), primary_key=True)
    platform = Column(String(30), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_idempotency_locks_created_at", "created_at"),
    )
