from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from app.db.session import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)

    # "admin" notifications are visible to every admin, "user" ones to recipient_id only
    recipient_role = Column(String, nullable=False, default="admin")
    recipient_id = Column(Integer, nullable=True, index=True)

    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    event = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    priority = Column(String, nullable=False, default="normal")
    is_read = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
