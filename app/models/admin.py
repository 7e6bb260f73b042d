from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from app.db.session import Base


class Admin(Base):
    """Hotel operator. Owns hotels and handles approvals and refunds."""
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    hotels = relationship("Hotel", back_populates="admin", cascade="all, delete")

    @property
    def hotel_count(self) -> int:
        return len(self.hotels)
