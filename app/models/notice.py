from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from app.core.database import Base, utcnow

NOTICE_TYPES = ("notice", "announcement", "event", "alert", "reminder")
NOTICE_PRIORITIES = ("low", "medium", "high", "urgent")
NOTICE_AUDIENCES = ("all", "admins", "managers", "employees", "customers", "specific")


class NoticeEvent(Base):
    __tablename__ = "notice_events"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default="notice")
    priority = Column(String(10), nullable=False, default="medium")
    target_audience = Column(String(20), nullable=False, default="all")
    is_published = Column(Boolean, nullable=False, default=False, index=True)
    publish_date = Column(DateTime, nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    attachment_url = Column(String(500), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
