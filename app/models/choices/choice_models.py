from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Boolean, Text, Enum, JSON,
    Numeric, UniqueConstraint, CheckConstraint, Index, text
)
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.utils.normalize import utcnow
import enum


class ChoiceVisibility(str, enum.Enum):
    TRIP = "TRIP"
    PRIVATE = "PRIVATE"


class ChoiceStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ChoiceItemType(str, enum.Enum):
    NORMAL = "NORMAL"
    NO_PARTICIPATION = "NO_PARTICIPATION"


NO_PARTICIPATION_NAME = "Not participating"


class Choice(Base):
    __tablename__ = "choices"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    event_datetime = Column(DateTime, nullable=True)  # when the meal/outing happens
    place = Column(String, nullable=True)
    visibility = Column(Enum(ChoiceVisibility), nullable=False, default=ChoiceVisibility.TRIP)
    status = Column(Enum(ChoiceStatus), nullable=False, default=ChoiceStatus.OPEN)
    deadline = Column(DateTime, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    trip = relationship("Trip", back_populates="choices")
    items = relationship(
        "ChoiceItem", back_populates="choice", cascade="all, delete-orphan",
        passive_deletes=True, order_by="ChoiceItem.id"
    )
    selections = relationship(
        "ChoiceSelection", back_populates="choice", cascade="all, delete-orphan",
        passive_deletes=True
    )
    activities = relationship(
        "ChoiceActivity", back_populates="choice", cascade="all, delete-orphan",
        passive_deletes=True
    )

    __table_args__ = (
        Index("ix_choices_trip_id", "trip_id"),
        Index("ix_choices_status", "status"),
    )

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def is_open(self) -> bool:
        return self.status == ChoiceStatus.OPEN

    def deadline_passed(self, now) -> bool:
        return self.deadline is not None and now > self.deadline


class ChoiceItem(Base):
    __tablename__ = "choice_items"

    id = Column(Integer, primary_key=True, index=True)
    choice_id = Column(Integer, ForeignKey("choices.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
    tags = Column(JSON, nullable=True)
    allergens = Column(JSON, nullable=True)
    course = Column(String, nullable=True)
    sort_index = Column(Integer, nullable=False, default=0)
    max_per_user = Column(Integer, nullable=True)
    max_total = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    type = Column(Enum(ChoiceItemType), nullable=False, default=ChoiceItemType.NORMAL)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    choice = relationship("Choice", back_populates="items")
    lines = relationship("ChoiceSelectionLine", back_populates="item", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("max_per_user IS NULL OR max_per_user > 0", name="ck_choice_items_max_per_user"),
        CheckConstraint("max_total IS NULL OR max_total > 0", name="ck_choice_items_max_total"),
        Index("ix_choice_items_choice_id", "choice_id"),
        Index("ix_choice_items_type", "type"),
        # one opt-out item per choice
        Index(
            "uq_choice_items_no_participation", "choice_id", unique=True,
            postgresql_where=text("type = 'NO_PARTICIPATION'"),
            sqlite_where=text("type = 'NO_PARTICIPATION'"),
        ),
    )

    @property
    def is_no_participation(self) -> bool:
        return self.type == ChoiceItemType.NO_PARTICIPATION


class ChoiceSelection(Base):
    __tablename__ = "choice_selections"

    id = Column(Integer, primary_key=True, index=True)
    choice_id = Column(Integer, ForeignKey("choices.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    choice = relationship("Choice", back_populates="selections")
    user = relationship("User", foreign_keys=[user_id])
    lines = relationship(
        "ChoiceSelectionLine", back_populates="selection", cascade="all, delete-orphan",
        passive_deletes=True, order_by="ChoiceSelectionLine.id"
    )

    __table_args__ = (
        UniqueConstraint("choice_id", "user_id", name="uq_choice_selection_user"),
        Index("ix_choice_selections_choice_id", "choice_id"),
    )


class ChoiceSelectionLine(Base):
    __tablename__ = "choice_selection_lines"

    id = Column(Integer, primary_key=True, index=True)
    selection_id = Column(Integer, ForeignKey("choice_selections.id", ondelete="CASCADE"), nullable=False)
    item_id = Column(Integer, ForeignKey("choice_items.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)
    note = Column(Text, nullable=True)

    selection = relationship("ChoiceSelection", back_populates="lines")
    item = relationship("ChoiceItem", back_populates="lines")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_choice_selection_lines_quantity"),
        Index("ix_choice_selection_lines_selection_id", "selection_id"),
        Index("ix_choice_selection_lines_item_id", "item_id"),
    )


class ChoiceActivity(Base):
    __tablename__ = "choice_activities"

    id = Column(Integer, primary_key=True, index=True)
    choice_id = Column(Integer, ForeignKey("choices.id", ondelete="CASCADE"), nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    choice = relationship("Choice", back_populates="activities")

    __table_args__ = (
        Index("ix_choice_activities_choice_id", "choice_id"),
        Index("ix_choice_activities_action", "action"),
    )
