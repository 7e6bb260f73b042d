import os
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.dependencies import get_db, require_admin
from app.core.errors import ConcurrencyConflict, NoRoomAvailable
from app.core.logging_config import get_logger
from app.core.redis import cached, delete_cache
from app.models.admin import Admin
from app.models.enums import RoomStatus
from app.models.hotel import Hotel, Room, SeasonalPricingRule
from app.schemas.hotel import (
    AvailabilityOut, HotelBase, HotelCreate, HotelOut, QuoteOut, RoomCreate, RoomOut, RoomUpdate,
    SeasonalRule,
)
from app.services import room_inventory
from app.services.payment_intents import quote_stay, validate_stay
from app.utils.pricing import count_nights

router = APIRouter(prefix="/hotels", tags=["Hotels"])
logger = get_logger("admin")

HOTELS_CACHE_TTL = int(os.getenv("HOTELS_CACHE_TTL", 60))
HOTEL_LIST_KEY = "hotels:list"


def _hotel_key(hotel_id: int) -> str:
    return f"hotels:{hotel_id}"


def _invalidate(hotel_id: int):
    delete_cache(HOTEL_LIST_KEY, _hotel_key(hotel_id))


def _get_hotel(db: Session, hotel_id: int) -> Hotel:
    hotel = db.query(Hotel).filter(Hotel.id == hotel_id).first()
    if not hotel:
        raise HTTPException(status_code=404, detail="Hotel not found")
    return hotel


def _owned_hotel(db: Session, hotel_id: int, admin: Admin) -> Hotel:
    hotel = room_inventory.lock_hotel(db, hotel_id)
    if hotel.admin_id != admin.id:
        raise HTTPException(status_code=403, detail="You do not manage this hotel")
    return hotel


def _check_duplicates(numbers):
    seen, dupes = set(), []
    for n in numbers:
        if n in seen:
            dupes.append(n)
        seen.add(n)
    if dupes:
        raise HTTPException(status_code=400, detail=f"Duplicate room numbers found: {', '.join(dupes)}")


def _commit(db: Session, hotel: Hotel):
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConcurrencyConflict("Hotel was modified concurrently, reload and retry")
    db.refresh(hotel)
    _invalidate(hotel.id)


# =====================================================================
# CREATE HOTEL  (Admin Only)
# =====================================================================
@router.post("/", response_model=HotelOut)
def create_hotel(data: HotelCreate, admin: Admin = Depends(require_admin), db: Session = Depends(get_db)):
    _check_duplicates([r.number for r in data.rooms])

    hotel = Hotel(
        admin_id=admin.id,
        name=data.name,
        description=data.description,
        base_price=data.base_price,
        amenities=data.amenities,
        address=data.address,
        city=data.city,
        country=data.country,
    )
    hotel.seasonal_pricing = [
        SeasonalPricingRule(position=i, **rule.model_dump())
        for i, rule in enumerate(data.seasonal_pricing)
    ]
    hotel.rooms = [
        Room(
            number=r.number,
            type=r.type.value,
            price=r.price,
            max_guests=r.max_guests,
            images=r.images,
            status=RoomStatus.AVAILABLE.value,
        )
        for r in data.rooms
    ]

    db.add(hotel)
    db.commit()
    db.refresh(hotel)
    delete_cache(HOTEL_LIST_KEY)

    logger.info(f"Hotel created | id={hotel.id} | admin={admin.email} | rooms={len(hotel.rooms)}")
    return hotel


# =====================================================================
# EDIT HOTEL  (Admin Only + Ownership Check)
# =====================================================================
@router.put("/{hotel_id}", response_model=HotelOut)
def edit_hotel(hotel_id: int, data: HotelBase, admin: Admin = Depends(require_admin),
               db: Session = Depends(get_db)):
    hotel = _owned_hotel(db, hotel_id, admin)

    hotel.name = data.name
    hotel.description = data.description
    hotel.base_price = data.base_price
    hotel.amenities = data.amenities
    hotel.address = data.address
    hotel.city = data.city
    hotel.country = data.country

    _commit(db, hotel)
    logger.info(f"Hotel updated | id={hotel.id} | admin={admin.email}")
    return hotel


# =====================================================================
# SEASONAL PRICING (replace the ordered rule list)
# =====================================================================
@router.put("/{hotel_id}/seasonal-pricing", response_model=HotelOut)
def replace_seasonal_pricing(hotel_id: int, rules: list[SeasonalRule],
                             admin: Admin = Depends(require_admin), db: Session = Depends(get_db)):
    hotel = _owned_hotel(db, hotel_id, admin)

    hotel.seasonal_pricing = [
        SeasonalPricingRule(position=i, **rule.model_dump())
        for i, rule in enumerate(rules)
    ]
    room_inventory.touch_inventory(hotel)

    _commit(db, hotel)
    logger.info(f"Seasonal pricing replaced | hotel={hotel.id} | rules={len(rules)}")
    return hotel


# =====================================================================
# ROOMS
# =====================================================================
@router.post("/{hotel_id}/rooms", response_model=RoomOut)
def add_room(hotel_id: int, data: RoomCreate, admin: Admin = Depends(require_admin),
             db: Session = Depends(get_db)):
    hotel = _owned_hotel(db, hotel_id, admin)

    if any(r.number == data.number for r in hotel.rooms):
        raise HTTPException(status_code=400, detail=f"Room number {data.number} already exists")

    room = Room(
        number=data.number,
        type=data.type.value,
        price=data.price,
        max_guests=data.max_guests,
        images=data.images,
        status=RoomStatus.AVAILABLE.value,
    )
    hotel.rooms.append(room)
    room_inventory.touch_inventory(hotel)

    _commit(db, hotel)
    logger.info(f"Room added | hotel={hotel.id} | room={room.number}")
    return room


@router.put("/{hotel_id}/rooms/{room_number}", response_model=RoomOut)
def update_room(hotel_id: int, room_number: str, data: RoomUpdate,
                admin: Admin = Depends(require_admin), db: Session = Depends(get_db)):
    hotel = _owned_hotel(db, hotel_id, admin)
    room = room_inventory.get_room(hotel, room_number)

    if data.number and data.number != room.number:
        if any(r.number == data.number for r in hotel.rooms):
            raise HTTPException(status_code=400, detail=f"Room number {data.number} already exists")
        if room_inventory.has_active_bookings(db, hotel.id, room.number):
            raise HTTPException(status_code=400, detail="Cannot renumber a room with active bookings")
        if room_inventory.has_live_holds(db, hotel.id, room.number):
            raise HTTPException(status_code=400, detail="Cannot renumber a room while a guest is paying for it")
        room.number = data.number

    if data.type is not None:
        room.type = data.type.value
    if data.price is not None:
        room.price = data.price
    if data.max_guests is not None:
        room.max_guests = data.max_guests
    if data.images is not None:
        room.images = data.images

    if data.status is not None:
        if data.status == RoomStatus.OCCUPIED:
            raise HTTPException(status_code=400, detail="Rooms become occupied through bookings only")
        room_inventory.set_maintenance(
            db, hotel.id, room.number, enabled=data.status == RoomStatus.MAINTENANCE,
        )

    room_inventory.touch_inventory(hotel)
    _commit(db, hotel)
    return room


@router.delete("/{hotel_id}/rooms/{room_number}")
def remove_room(hotel_id: int, room_number: str, admin: Admin = Depends(require_admin),
                db: Session = Depends(get_db)):
    hotel = _owned_hotel(db, hotel_id, admin)
    room = room_inventory.get_room(hotel, room_number)

    if room_inventory.has_active_bookings(db, hotel.id, room.number):
        raise HTTPException(status_code=400, detail="Cannot remove a room with active bookings")
    if room_inventory.has_live_holds(db, hotel.id, room.number):
        raise HTTPException(status_code=400, detail="Cannot remove a room while a guest is paying for it")

    hotel.rooms.remove(room)
    room_inventory.touch_inventory(hotel)
    _commit(db, hotel)

    logger.info(f"Room removed | hotel={hotel.id} | room={room_number}")
    return {"message": f"Room {room_number} removed"}


# =====================================================================
# LIST HOTELS (Guest)
# =====================================================================
@router.get("/", response_model=list[HotelOut])
def list_hotels(db: Session = Depends(get_db)):
    return cached(
        HOTEL_LIST_KEY,
        lambda: [
            HotelOut.model_validate(h).model_dump(mode="json")
            for h in db.query(Hotel).order_by(Hotel.id).all()
        ],
        ttl=HOTELS_CACHE_TTL,
    )


# =====================================================================
# HOTEL DETAILS
# =====================================================================
@router.get("/{hotel_id}", response_model=HotelOut)
def get_hotel(hotel_id: int, db: Session = Depends(get_db)):
    return cached(
        _hotel_key(hotel_id),
        lambda: HotelOut.model_validate(_get_hotel(db, hotel_id)).model_dump(mode="json"),
        ttl=HOTELS_CACHE_TTL,
    )


# =====================================================================
# AVAILABILITY + PRICE QUOTE
# =====================================================================
@router.get("/{hotel_id}/availability", response_model=AvailabilityOut)
def check_availability(hotel_id: int, room_type: str, check_in: date, check_out: date,
                       db: Session = Depends(get_db)):
    validate_stay(check_in, check_out, adults=1)
    hotel = _get_hotel(db, hotel_id)

    try:
        room = room_inventory.find_available_room(db, hotel, room_type, check_in, check_out)
    except NoRoomAvailable:
        room = None

    return AvailabilityOut(
        hotel_id=hotel.id,
        room_type=room_type,
        check_in=check_in,
        check_out=check_out,
        available=room is not None,
        room_number=room.number if room else None,
    )


@router.get("/{hotel_id}/quote", response_model=QuoteOut)
def quote(hotel_id: int, room_type: str, check_in: date, check_out: date,
          adults: int = 1, children: int = 0, db: Session = Depends(get_db)):
    validate_stay(check_in, check_out, adults, children)
    hotel = _get_hotel(db, hotel_id)

    room = next((r for r in hotel.rooms if r.type == room_type), None)
    if room is None:
        raise HTTPException(status_code=404, detail=f"Hotel has no {room_type} rooms")

    nightly, total = quote_stay(hotel, room, check_in, check_out, adults, children)
    return QuoteOut(
        hotel_id=hotel.id,
        room_type=room_type,
        nights=count_nights(check_in, check_out),
        nightly_price=nightly,
        total_price=total,
    )
