from sqlalchemy import Column,String,Boolean,Integer,DateTime
from sqlalchemy.sql import func
from app.core.database import Base
from sqlalchemy.orm import relationship

class User(Base):
    __tablename__ = "users"

    id = Column(Integer,primary_key=True,index=True)
    email = Column(String,unique=True,index=True,nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    created_trips = relationship("Trip", back_populates="creator")

    trips = relationship("TripMember", back_populates="user", cascade="all, delete")

    @property
    def display_name(self):
        return self.username or self.email
