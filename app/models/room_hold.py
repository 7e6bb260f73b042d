from datetime import datetime

from sqlalchemy import Column, Integer, String, Date, DateTime, Float, ForeignKey
from sqlalchemy.orm import relationship

from app.db.session import Base
from app.models.enums import HoldStatus, PaymentStatus


class RoomHold(Base):
    """Provisional room reservation opened together with a payment intent.

    Holds the server-side quote (room, dates, guests, price) so the booking
    commit never depends on what the client sends back.
    """

    __tablename__ = "room_holds"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, ForeignKey("hotels.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    room_number = Column(String, nullable=False, index=True)
    room_type = Column(String, nullable=False)
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    adults = Column(Integer, nullable=False, default=1)
    children = Column(Integer, nullable=False, default=0)

    nightly_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    amount_minor = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)

    payment_intent_id = Column(String, unique=True, nullable=False, index=True)
    # Filled once the provider reports a payment against the intent
    payment_id = Column(String, nullable=True, index=True)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)
    failure_reason = Column(String, nullable=True)

    status = Column(String, nullable=False, default=HoldStatus.ACTIVE.value)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    hotel = relationship("Hotel")
    user = relationship("User")

    def is_live(self, now: datetime) -> bool:
        return self.status == HoldStatus.ACTIVE.value and self.expires_at > now
