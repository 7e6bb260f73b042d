from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Float, ForeignKey, CheckConstraint, JSON,
)
from sqlalchemy.orm import relationship

from app.db.session import Base
from app.models.enums import BookingStatus, PaymentStatus, RefundStatus


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_code = Column(String, unique=True, nullable=False, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    hotel_id = Column(Integer, ForeignKey("hotels.id"), nullable=False)

    # Denormalized from the room at booking time
    room_number = Column(String, nullable=False, index=True)
    room_type = Column(String, nullable=False)

    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    adults = Column(Integer, nullable=False, default=1)
    children = Column(Integer, nullable=False, default=0)

    total_price = Column(Float, nullable=False)
    refunded_amount = Column(Float, nullable=False, default=0.0)

    status = Column(String, nullable=False, default=BookingStatus.PENDING.value)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)
    refund_status = Column(String, nullable=False, default=RefundStatus.NONE.value)

    # PAYMENT FIELDS
    payment_intent_id = Column(String, unique=True, nullable=False)
    payment_id = Column(String, nullable=True, index=True)

    # REFUND REQUEST
    refund_reason = Column(String, nullable=True)
    refund_requested_at = Column(DateTime, nullable=True)
    refund_requested_amount = Column(Float, nullable=True)
    refund_admin_notes = Column(String, nullable=True)
    refund_processed_at = Column(DateTime, nullable=True)
    refund_processed_by = Column(Integer, ForeignKey("admins.id"), nullable=True)

    # REFUND LEDGER
    # Set while a provider refund is in flight; only one refund per booking at a time
    refund_claimed_at = Column(DateTime, nullable=True)
    # Provider refund ids already counted in refunded_amount
    provider_refund_ids = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    version = Column(Integer, nullable=False, default=1)

    user = relationship("User", back_populates="bookings")
    hotel = relationship("Hotel", back_populates="bookings")

    __table_args__ = (
        CheckConstraint("check_out > check_in", name="check_booking_dates"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def remaining_balance(self) -> float:
        return round(self.total_price - (self.refunded_amount or 0.0), 2)

    def __repr__(self) -> str:
        return f"<Booking(code={self.booking_code}, room={self.room_number}, status={self.status})>"
