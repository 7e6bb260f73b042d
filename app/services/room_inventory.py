"""Room availability and room status transitions.

Availability is decided from booking and hold date ranges, never from the
room's ``status`` flag alone: a room flagged ``occupied`` today may still be
free next month, and a room flagged ``available`` may already be sold for
the requested nights.
"""
import os
from datetime import datetime, timedelta

from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.core.errors import NoRoomAvailable, NotFound
from app.core.logging_config import get_logger
from app.models.booking import Booking
from app.models.enums import BookingStatus, HoldStatus, PaymentStatus, RoomStatus
from app.models.hotel import Hotel, Room
from app.models.room_hold import RoomHold

logger = get_logger("booking")

HOLD_TTL_MINUTES = int(os.getenv("HOLD_TTL_MINUTES", 15))

ACTIVE_BOOKING_STATUSES = (
    BookingStatus.PENDING.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.COMPLETED.value,
)


# ---------------------------------------------------------------------
# HOTEL AGGREGATE
# ---------------------------------------------------------------------
def lock_hotel(db: Session, hotel_id: int) -> Hotel:
    hotel = (
        db.query(Hotel)
        .filter(Hotel.id == hotel_id)
        .with_for_update()
        .first()
    )
    if not hotel:
        raise NotFound("Hotel not found")
    return hotel


def touch_inventory(hotel: Hotel, now: datetime | None = None):
    # Forces an UPDATE on the hotel row so its version check runs
    hotel.inventory_updated_at = now or datetime.utcnow()


def get_room(hotel: Hotel, room_number: str) -> Room:
    room = next((r for r in hotel.rooms if r.number == room_number), None)
    if not room:
        raise NotFound(f"Room {room_number} not found")
    return room


# ---------------------------------------------------------------------
# OVERLAP QUERIES
# ---------------------------------------------------------------------
def overlapping_bookings(db: Session, hotel_id: int, room_number: str, check_in, check_out,
                         statuses=ACTIVE_BOOKING_STATUSES, exclude_booking_id=None):
    query = db.query(Booking).filter(
        Booking.hotel_id == hotel_id,
        Booking.room_number == room_number,
        Booking.status.in_(statuses),
        Booking.payment_status != PaymentStatus.FAILED.value,
        Booking.check_in < check_out,
        Booking.check_out > check_in,
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return query


def overlapping_holds(db: Session, hotel_id: int, room_number: str, check_in, check_out,
                      now: datetime, exclude_hold_id=None):
    query = db.query(RoomHold).filter(
        RoomHold.hotel_id == hotel_id,
        RoomHold.room_number == room_number,
        RoomHold.status == HoldStatus.ACTIVE.value,
        RoomHold.expires_at > now,
        RoomHold.check_in < check_out,
        RoomHold.check_out > check_in,
    )
    if exclude_hold_id is not None:
        query = query.filter(RoomHold.id != exclude_hold_id)
    return query


def is_room_free(db: Session, hotel_id: int, room_number: str, check_in, check_out,
                 now: datetime | None = None, exclude_hold_id=None, exclude_booking_id=None) -> bool:
    now = now or datetime.utcnow()

    if overlapping_bookings(
        db, hotel_id, room_number, check_in, check_out,
        exclude_booking_id=exclude_booking_id,
    ).first():
        return False

    if overlapping_holds(
        db, hotel_id, room_number, check_in, check_out, now,
        exclude_hold_id=exclude_hold_id,
    ).first():
        return False

    return True


def find_available_room(db: Session, hotel: Hotel, room_type: str, check_in, check_out,
                        now: datetime | None = None) -> Room:
    now = now or datetime.utcnow()

    for room in hotel.rooms:
        if room.type != room_type or room.status == RoomStatus.MAINTENANCE.value:
            continue
        if is_room_free(db, hotel.id, room.number, check_in, check_out, now=now):
            return room

    raise NoRoomAvailable(f"No available {room_type} rooms found")


# ---------------------------------------------------------------------
# ROOM STATUS
# ---------------------------------------------------------------------
def _set_room_status(db: Session, hotel_id: int, room_number: str, status: str) -> Room | None:
    hotel = lock_hotel(db, hotel_id)
    room = next((r for r in hotel.rooms if r.number == room_number), None)
    if not room:
        logger.warning(f"Room {room_number} not found in hotel {hotel_id}")
        return None

    if room.status == RoomStatus.MAINTENANCE.value:
        return room

    if room.status != status:
        room.status = status
        touch_inventory(hotel)
        logger.info(f"Room {room_number} (hotel {hotel_id}) -> {status}")
    return room


def mark_occupied(db: Session, hotel_id: int, room_number: str) -> Room | None:
    return _set_room_status(db, hotel_id, room_number, RoomStatus.OCCUPIED.value)


def mark_available(db: Session, hotel_id: int, room_number: str) -> Room | None:
    return _set_room_status(db, hotel_id, room_number, RoomStatus.AVAILABLE.value)


def release_room(db: Session, hotel_id: int, room_number: str, exclude_booking_id=None,
                 today=None) -> Room | None:
    """Mark the room available unless another confirmed stay still holds it."""
    today = today or datetime.utcnow().date()

    query = db.query(Booking.id).filter(
        Booking.hotel_id == hotel_id,
        Booking.room_number == room_number,
        Booking.status == BookingStatus.CONFIRMED.value,
        Booking.check_out >= today,
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)

    if query.first():
        logger.info(f"Room {room_number} (hotel {hotel_id}) kept occupied: other confirmed stay")
        return None

    return mark_available(db, hotel_id, room_number)


# ---------------------------------------------------------------------
# HOLDS
# ---------------------------------------------------------------------
def hold_expiry(now: datetime, ttl_minutes: int | None = None) -> datetime:
    return now + timedelta(minutes=ttl_minutes if ttl_minutes is not None else HOLD_TTL_MINUTES)


def release_hold(hold: RoomHold, status: str = HoldStatus.RELEASED.value):
    if hold.status == HoldStatus.ACTIVE.value:
        hold.status = status


def release_expired_holds(db: Session, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()

    expired = db.query(RoomHold).filter(
        and_(
            RoomHold.status == HoldStatus.ACTIVE.value,
            RoomHold.expires_at <= now,
        )
    ).all()

    for hold in expired:
        hold.status = HoldStatus.EXPIRED.value

    db.commit()
    return len(expired)


def set_maintenance(db: Session, hotel_id: int, room_number: str, enabled: bool,
                    today=None) -> Room:
    """Take a room out of service, or bring it back with a status derived from its bookings."""
    today = today or datetime.utcnow().date()
    hotel = lock_hotel(db, hotel_id)
    room = get_room(hotel, room_number)

    if enabled:
        room.status = RoomStatus.MAINTENANCE.value
    else:
        in_use = db.query(Booking.id).filter(
            Booking.hotel_id == hotel_id,
            Booking.room_number == room_number,
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.check_in <= today,
            Booking.check_out >= today,
        ).first()
        room.status = RoomStatus.OCCUPIED.value if in_use else RoomStatus.AVAILABLE.value

    touch_inventory(hotel)
    logger.bind(log_type="admin").info(f"Room {room_number} (hotel {hotel_id}) -> {room.status}")
    return room


def has_active_bookings(db: Session, hotel_id: int, room_number: str, today=None) -> bool:
    today = today or datetime.utcnow().date()
    return db.query(Booking.id).filter(
        Booking.hotel_id == hotel_id,
        Booking.room_number == room_number,
        Booking.status.in_((BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)),
        Booking.check_out >= today,
    ).first() is not None


def has_live_holds(db: Session, hotel_id: int, room_number: str, now: datetime | None = None) -> bool:
    """True while a guest is paying for the room through an unexpired hold."""
    now = now or datetime.utcnow()
    return db.query(RoomHold.id).filter(
        RoomHold.hotel_id == hotel_id,
        RoomHold.room_number == room_number,
        RoomHold.status == HoldStatus.ACTIVE.value,
        RoomHold.expires_at > now,
    ).first() is not None
