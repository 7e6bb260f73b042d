from datetime import date, datetime

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import ConcurrencyConflict, InvalidAmount, ValidationError
from app.core.logging_config import get_logger
from app.models.enums import HoldStatus
from app.models.hotel import Hotel
from app.models.room_hold import RoomHold
from app.services import room_inventory
from app.utils.pricing import (
    calculate_dynamic_price, calculate_total_price, to_minor_units,
)
from app.utils.razorpay_client import PAYMENT_CURRENCY

logger = get_logger("payment")


def validate_stay(check_in, check_out, adults, children=0, today: date | None = None):
    today = today or date.today()

    if not check_in or not check_out:
        raise ValidationError("Check-in and check-out dates are required")
    if check_in < today:
        raise ValidationError("Check-in date cannot be in the past")
    if check_out <= check_in:
        raise ValidationError("Check-out date must be after check-in date")
    if not adults or adults < 1:
        raise ValidationError("At least one adult is required")
    if children is not None and children < 0:
        raise ValidationError("Children cannot be negative")


def room_base_price(hotel: Hotel, room) -> float:
    # A priced room overrides the hotel-wide base price
    if room is not None and room.price:
        return room.price
    return hotel.base_price or 0


def quote_stay(hotel: Hotel, room, check_in, check_out, adults, children=0,
               demand_factor=None, season_anchor=None, today=None) -> tuple[int, float]:
    nightly = calculate_dynamic_price(
        hotel, check_in, check_out,
        base_price=room_base_price(hotel, room),
        demand_factor=demand_factor,
        season_anchor=season_anchor,
        today=today,
    )
    total = calculate_total_price(nightly, check_in, check_out, adults, children or 0)
    return nightly, total


def create_payment_intent(db: Session, gateway, user, hotel_id: int, check_in, check_out,
                          adults: int, children: int, room_type: str,
                          now: datetime | None = None, demand_factor=None,
                          season_anchor=None, currency: str = PAYMENT_CURRENCY):
    """Pick a free room, price the stay, open a payment intent and hold the room.

    The hold keeps the room out of availability until it converts into a
    booking or expires; the room itself is not marked occupied here.
    """
    now = now or datetime.utcnow()
    children = children or 0

    validate_stay(check_in, check_out, adults, children, today=now.date())

    hotel = room_inventory.lock_hotel(db, hotel_id)
    room = room_inventory.find_available_room(db, hotel, room_type, check_in, check_out, now=now)

    nightly, total = quote_stay(
        hotel, room, check_in, check_out, adults, children,
        demand_factor=demand_factor, season_anchor=season_anchor, today=now.date(),
    )
    amount = to_minor_units(total)
    if amount <= 0:
        raise InvalidAmount("Invalid amount")

    intent = gateway.create_intent(
        amount,
        currency,
        receipt=f"hold_{hotel.id}_{room.number}_{int(now.timestamp())}",
        notes={
            "hotel_id": str(hotel.id),
            "room_number": room.number,
            "room_type": room_type,
            "check_in": check_in.isoformat(),
            "check_out": check_out.isoformat(),
            "adults": str(adults),
            "children": str(children),
        },
    )

    hold = RoomHold(
        hotel_id=hotel.id,
        user_id=user.id,
        room_number=room.number,
        room_type=room.type,
        check_in=check_in,
        check_out=check_out,
        adults=adults,
        children=children,
        nightly_price=nightly,
        total_price=total,
        amount_minor=amount,
        currency=intent.currency or currency,
        payment_intent_id=intent.id,
        status=HoldStatus.ACTIVE.value,
        expires_at=room_inventory.hold_expiry(now),
        created_at=now,
    )
    db.add(hold)
    room_inventory.touch_inventory(hotel, now)

    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.warning(f"Hold lost race | hotel={hotel_id} | room={room.number} | intent={intent.id}")
        raise ConcurrencyConflict("Room is no longer available, please try again")

    db.refresh(hold)

    logger.info(
        f"Payment intent created | intent={intent.id} | user={user.id} | hotel={hotel.id} "
        f"| room={room.number} | {check_in}->{check_out} | total={total}"
    )
    return hold, intent
