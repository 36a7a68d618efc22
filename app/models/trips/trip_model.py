from sqlalchemy import Column, Integer, String, Date, ForeignKey, Enum, DateTime, func
from app.core.database import Base
from sqlalchemy.orm import relationship
import enum
import uuid

class TripTypeEnum(str,enum.Enum):
    leisure = "leisure"
    adventure = "adventure"
    workation = "workation"
    pilgrimage = "pilgrimage"
    cultural = "cultural"
    other = "other"

class Trip(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    location = Column(String, nullable=True)
    trip_type = Column(Enum(TripTypeEnum), nullable=False, default=TripTypeEnum.leisure)
    base_currency = Column(String(3), nullable=False, default="USD")  # currency spends are recorded in

    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    creator = relationship("User", back_populates="created_trips")

    trip_code = Column(String, unique=True, index=True, default=lambda: str(uuid.uuid4())[:8])
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    members = relationship("TripMember", back_populates="trip", cascade="all, delete")
    choices = relationship("Choice", back_populates="trip", cascade="all, delete", passive_deletes=True)
