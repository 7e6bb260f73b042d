import math
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.dependencies import (
    get_current_principal, get_db, get_payment_gateway, require_admin, require_user,
)
from app.models.admin import Admin
from app.models.booking import Booking
from app.models.enums import RoomStatus
from app.models.hotel import Hotel
from app.models.user import User
from app.schemas.booking import (
    BookingCreate, BookingOut, BookingPage, PaymentIntentCreate, PaymentIntentOut,
    RefundIssue, RefundOut, RefundReject, RefundRequest,
)
from app.services import booking_lifecycle, payment_intents, refunds, room_inventory

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ---------------------------------------------------------------------
# PAYMENT INTENT (room hold + price)
# ---------------------------------------------------------------------
@router.post("/create-payment-intent", response_model=PaymentIntentOut)
def create_payment_intent(data: PaymentIntentCreate, user: User = Depends(require_user),
                          db: Session = Depends(get_db), gateway=Depends(get_payment_gateway)):
    hold, intent = payment_intents.create_payment_intent(
        db, gateway, user,
        hotel_id=data.hotel_id,
        check_in=data.check_in,
        check_out=data.check_out,
        adults=data.adults,
        children=data.children,
        room_type=data.room_type.value,
    )

    return PaymentIntentOut(
        client_secret=intent.client_secret,
        payment_intent_id=hold.payment_intent_id,
        total_price=hold.total_price,
        room_number=hold.room_number,
        currency=hold.currency,
        expires_at=hold.expires_at,
        razorpay_key_id=intent.public_key,
    )


# ---------------------------------------------------------------------
# CREATE BOOKING (after client-side payment confirmation)
# ---------------------------------------------------------------------
@router.post("/", response_model=BookingOut, status_code=201)
def create_booking(data: BookingCreate, user: User = Depends(require_user),
                   db: Session = Depends(get_db), gateway=Depends(get_payment_gateway)):
    return booking_lifecycle.create_booking(
        db, gateway, user,
        payment_intent_id=data.payment_intent_id,
        payment_id=data.razorpay_payment_id,
        signature=data.razorpay_signature,
    )


# ---------------------------------------------------------------------
# GUEST — MY BOOKINGS
# ---------------------------------------------------------------------
@router.get("/my", response_model=list[BookingOut])
def my_bookings(user: User = Depends(require_user), db: Session = Depends(get_db)):
    return (
        db.query(Booking)
        .filter(Booking.user_id == user.id)
        .order_by(Booking.created_at.desc())
        .all()
    )


# ---------------------------------------------------------------------
# AVAILABILITY CHECK (specific room)
# ---------------------------------------------------------------------
@router.get("/check-availability")
def check_availability(hotel_id: int, room_number: str, check_in: date, check_out: date,
                       db: Session = Depends(get_db)):
    payment_intents.validate_stay(check_in, check_out, adults=1)
    hotel = db.query(Hotel).filter(Hotel.id == hotel_id).first()
    if not hotel:
        raise HTTPException(status_code=404, detail="Hotel not found")
    room = room_inventory.get_room(hotel, room_number)

    available = room.status != RoomStatus.MAINTENANCE.value and room_inventory.is_room_free(
        db, hotel_id, room_number, check_in, check_out,
    )
    return {"available": available}


# ---------------------------------------------------------------------
# ADMIN — ALL BOOKINGS (search + pagination)
# ---------------------------------------------------------------------
@router.get("/", response_model=BookingPage)
def list_bookings(page: int = 1, limit: int = 10, search: str = "",
                  admin: Admin = Depends(require_admin), db: Session = Depends(get_db)):
    query = db.query(Booking)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Booking.booking_code.ilike(pattern),
            Booking.status.ilike(pattern),
            Booking.refund_status.ilike(pattern),
            Booking.room_number.ilike(pattern),
            Booking.room_type.ilike(pattern),
        ))

    total = query.count()
    bookings = (
        query.order_by(Booking.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return BookingPage(
        bookings=bookings,
        total=total,
        page=page,
        total_pages=math.ceil(total / limit) if limit else 0,
    )


# ---------------------------------------------------------------------
# ADMIN — REFUND REQUEST QUEUE
# ---------------------------------------------------------------------
@router.get("/admin/refund-requests", response_model=BookingPage)
def refund_requests(page: int = 1, limit: int = 10, admin: Admin = Depends(require_admin),
                    db: Session = Depends(get_db)):
    items, total = refunds.list_refund_requests(db, page=page, limit=limit)
    return BookingPage(
        bookings=items,
        total=total,
        page=page,
        total_pages=math.ceil(total / limit) if limit else 0,
    )


# ---------------------------------------------------------------------
# ADMIN — MANUAL COMPLETION SWEEP
# ---------------------------------------------------------------------
@router.post("/auto-complete")
def auto_complete(admin: Admin = Depends(require_admin), db: Session = Depends(get_db)):
    result = booking_lifecycle.sweep_completions(db)
    return {
        "message": f"Completed {len(result['completed'])} bookings",
        "completed": len(result["completed"]),
        "failed": len(result["failed"]),
    }


# ---------------------------------------------------------------------
# BOOKING DETAILS (owner or admin)
# ---------------------------------------------------------------------
@router.get("/{booking_id}", response_model=BookingOut)
def booking_details(booking_id: int, principal=Depends(get_current_principal),
                    db: Session = Depends(get_db)):
    who, role = principal
    booking = booking_lifecycle.get_booking(db, booking_id)

    if role != "admin" and booking.user_id != who.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return booking


# ---------------------------------------------------------------------
# ADMIN — APPROVE / REJECT
# ---------------------------------------------------------------------
@router.put("/{booking_id}/approve", response_model=BookingOut)
def approve_booking(booking_id: int, admin: Admin = Depends(require_admin),
                    db: Session = Depends(get_db)):
    return booking_lifecycle.approve_booking(db, booking_id, admin=admin)


@router.put("/{booking_id}/reject", response_model=BookingOut)
def reject_booking(booking_id: int, admin: Admin = Depends(require_admin),
                   db: Session = Depends(get_db)):
    return booking_lifecycle.reject_booking(db, booking_id, admin=admin)


# ---------------------------------------------------------------------
# REFUNDS
# ---------------------------------------------------------------------
@router.post("/{booking_id}/refund", response_model=RefundOut)
def issue_refund(booking_id: int, data: RefundIssue, admin: Admin = Depends(require_admin),
                 db: Session = Depends(get_db), gateway=Depends(get_payment_gateway)):
    refund_amount, booking = refunds.issue_refund(
        db, gateway, booking_id,
        refund_type=data.type.value,
        amount=data.amount,
        admin_notes=data.admin_notes,
        admin=admin,
    )
    label = "Full" if data.type.value == "full" else "Partial"
    return RefundOut(
        message=f"{label} refund processed successfully",
        refund_amount=refund_amount,
        booking=BookingOut.model_validate(booking),
    )


@router.post("/{booking_id}/request-refund", response_model=BookingOut)
def request_refund(booking_id: int, data: RefundRequest, user: User = Depends(require_user),
                   db: Session = Depends(get_db)):
    return refunds.request_refund(db, booking_id, user, data.reason, requested_amount=data.amount)


@router.post("/{booking_id}/reject-refund", response_model=BookingOut)
def reject_refund(booking_id: int, data: RefundReject, admin: Admin = Depends(require_admin),
                  db: Session = Depends(get_db)):
    return refunds.reject_refund_request(db, booking_id, admin_notes=data.admin_notes, admin=admin)
