from sqlalchemy import Column, Integer, String, DateTime, Enum, JSON, Index
from app.core.database import Base
from app.utils.normalize import utcnow
import enum


class EventType(str, enum.Enum):
    CHOICE_CREATED = "CHOICE_CREATED"
    CHOICE_UPDATED = "CHOICE_UPDATED"
    CHOICE_CLOSED = "CHOICE_CLOSED"
    CHOICE_REOPENED = "CHOICE_REOPENED"
    CHOICE_ARCHIVED = "CHOICE_ARCHIVED"
    CHOICE_RESTORED = "CHOICE_RESTORED"
    CHOICE_DELETED = "CHOICE_DELETED"
    CHOICE_ITEM_CREATED = "CHOICE_ITEM_CREATED"
    CHOICE_ITEM_UPDATED = "CHOICE_ITEM_UPDATED"
    CHOICE_ITEM_DEACTIVATED = "CHOICE_ITEM_DEACTIVATED"
    CHOICE_SELECTION_CREATED = "CHOICE_SELECTION_CREATED"
    CHOICE_SELECTION_UPDATED = "CHOICE_SELECTION_UPDATED"
    CHOICE_SELECTION_DELETED = "CHOICE_SELECTION_DELETED"
    SPEND_CREATED = "SPEND_CREATED"


class EventLog(Base):
    """Append-only audit trail. No foreign keys: rows outlive what they describe."""
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, index=True)
    entity = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    event_type = Column(Enum(EventType), nullable=False)
    actor_id = Column(Integer, nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_event_logs_entity", "entity", "entity_id"),
        Index("ix_event_logs_actor_id", "actor_id"),
    )
