from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, JSON, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.session import Base
from app.models.enums import RoomStatus, RoomType


class Hotel(Base):
    __tablename__ = "hotels"

    id = Column(Integer, primary_key=True, index=True)

    # Ownership
    admin_id = Column(Integer, ForeignKey("admins.id"), nullable=False)

    name = Column(String, nullable=False, default="My Hotel")
    description = Column(String, nullable=False, default="")
    base_price = Column(Float, nullable=False, default=100.0)

    amenities = Column(JSON, nullable=False, default=list)
    address = Column(String, default="")
    city = Column(String, default="")
    country = Column(String, default="")

    # Bumped on every inventory write so concurrent writers on this
    # aggregate collide on the version check.
    inventory_updated_at = Column(DateTime, default=datetime.utcnow)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow)

    # RELATIONSHIPS -------------------------------------

    admin = relationship("Admin", back_populates="hotels")

    rooms = relationship(
        "Room",
        back_populates="hotel",
        cascade="all, delete-orphan",
        order_by="Room.id",
    )

    # Ordered: when rules overlap, the last matching one wins
    seasonal_pricing = relationship(
        "SeasonalPricingRule",
        back_populates="hotel",
        cascade="all, delete-orphan",
        order_by="SeasonalPricingRule.position",
    )

    bookings = relationship("Booking", back_populates="hotel")

    __mapper_args__ = {"version_id_col": version}


class SeasonalPricingRule(Base):
    __tablename__ = "seasonal_pricing_rules"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    price = Column(Float, nullable=False, default=0.0)

    hotel = relationship("Hotel", back_populates="seasonal_pricing")


class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False)

    number = Column(String, nullable=False)
    type = Column(String, nullable=False, default=RoomType.STANDARD.value)
    status = Column(String, nullable=False, default=RoomStatus.AVAILABLE.value)
    price = Column(Float, nullable=False, default=0.0)
    max_guests = Column(Integer, nullable=False, default=2)
    images = Column(JSON, nullable=False, default=list)

    hotel = relationship("Hotel", back_populates="rooms")

    __table_args__ = (UniqueConstraint("hotel_id", "number", name="uq_hotel_room_number"),)
