"""Booking state machine.

    pending ──approve──▶ confirmed ──sweep──▶ completed
       │                     │
       └──reject──▶ cancelled ◀──full refund──┘

Refund status moves independently (see ``app.services.refunds``).
"""
import os
import uuid
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    ConcurrencyConflict, NotFound, PaymentProviderError, PermissionDenied, ValidationError,
)
from app.core.logging_config import get_logger
from app.models.booking import Booking
from app.models.enums import BookingStatus, HoldStatus, PaymentStatus, RoomStatus
from app.models.room_hold import RoomHold
from app.services import room_inventory
from app.services.notifications import hub, notify

logger = get_logger("booking")

BOOKING_REQUIRE_APPROVAL = os.getenv("BOOKING_REQUIRE_APPROVAL", "false").lower() in ("1", "true", "yes")


def generate_booking_code(now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    return f"BK{int(now.timestamp() * 1000)}{uuid.uuid4().hex[:5]}".upper()


def get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        raise NotFound("Booking not found")
    return booking


# ---------------------------------------------------------------------
# COMPENSATION
# ---------------------------------------------------------------------
def refund_captured_payment(db: Session, gateway, hold: RoomHold, payment_id: str, reason: str,
                            amount_minor: int | None = None):
    """Give the money back for a payment that could not become a booking."""
    db.rollback()
    hold = db.query(RoomHold).filter(RoomHold.id == hold.id).first()
    hold.payment_id = payment_id

    try:
        gateway.refund(payment_id, amount_minor if amount_minor is not None else hold.amount_minor)
        hold.status = HoldStatus.REFUNDED.value
        hold.payment_status = PaymentStatus.REFUNDED.value
        logger.bind(log_type="payment").warning(
            f"Payment refunded, booking not created | intent={hold.payment_intent_id} "
            f"| payment={payment_id} | reason={reason}"
        )
    except PaymentProviderError as e:
        hold.status = HoldStatus.RELEASED.value
        hold.payment_status = PaymentStatus.SUCCEEDED.value
        logger.bind(log_type="payment").critical(
            f"CAPTURED PAYMENT WITHOUT BOOKING, REFUND FAILED | intent={hold.payment_intent_id} "
            f"| payment={payment_id} | amount={hold.amount_minor} | reason={reason} | {e}"
        )

    db.commit()

    notify(
        db, "bookingConflict",
        title="Room no longer available",
        message=f"Payment {hold.payment_intent_id} for room {hold.room_number} could not be booked "
                f"({reason}); the payment has been refunded.",
        payload={
            "payment_intent_id": hold.payment_intent_id,
            "hotel_id": hold.hotel_id,
            "room_number": hold.room_number,
            "hold_status": hold.status,
            "reason": reason,
        },
    )


# ---------------------------------------------------------------------
# CREATE
# ---------------------------------------------------------------------
def find_booking_for_intent(db: Session, payment_intent_id: str) -> Booking | None:
    return db.query(Booking).filter(Booking.payment_intent_id == payment_intent_id).first()


def commit_hold(db: Session, gateway, hold: RoomHold, payment_id: str, now: datetime,
                require_approval: bool | None = None) -> Booking:
    """Allocation commit point for a hold whose payment is already captured.

    Availability is checked again under the hotel lock; if the room was lost
    the payment is refunded and ``ConcurrencyConflict`` is raised.
    """
    if require_approval is None:
        require_approval = BOOKING_REQUIRE_APPROVAL
    payment_intent_id = hold.payment_intent_id
    user = hold.user

    hotel = room_inventory.lock_hotel(db, hold.hotel_id)
    room = next((r for r in hotel.rooms if r.number == hold.room_number), None)

    room_ok = room is not None and room.status != RoomStatus.MAINTENANCE.value
    if not room_ok or not room_inventory.is_room_free(
        db, hold.hotel_id, hold.room_number, hold.check_in, hold.check_out,
        now=now, exclude_hold_id=hold.id,
    ):
        refund_captured_payment(db, gateway, hold, payment_id, "room taken before commit")
        raise ConcurrencyConflict("Room no longer available, your payment has been refunded")

    status = BookingStatus.PENDING.value if require_approval else BookingStatus.CONFIRMED.value

    booking = Booking(
        booking_code=generate_booking_code(now),
        user_id=hold.user_id,
        hotel_id=hold.hotel_id,
        room_number=hold.room_number,
        room_type=hold.room_type,
        check_in=hold.check_in,
        check_out=hold.check_out,
        adults=hold.adults,
        children=hold.children,
        total_price=hold.total_price,
        refunded_amount=0.0,
        status=status,
        payment_status=PaymentStatus.SUCCEEDED.value,
        payment_intent_id=payment_intent_id,
        payment_id=payment_id,
        created_at=now,
    )
    db.add(booking)
    hold.status = HoldStatus.CONVERTED.value
    hold.payment_id = payment_id
    hold.payment_status = PaymentStatus.SUCCEEDED.value

    if status == BookingStatus.CONFIRMED.value:
        room_inventory.mark_occupied(db, hold.hotel_id, hold.room_number)
    room_inventory.touch_inventory(hotel, now)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # A parallel call for the same intent already stored the booking
        existing = find_booking_for_intent(db, payment_intent_id)
        if existing:
            return existing
        refund_captured_payment(db, gateway, hold, payment_id, "booking insert failed")
        raise ConcurrencyConflict("Booking could not be saved, your payment has been refunded")
    except StaleDataError:
        db.rollback()
        existing = find_booking_for_intent(db, payment_intent_id)
        if existing:
            return existing
        refund_captured_payment(db, gateway, hold, payment_id, "hotel inventory changed concurrently")
        raise ConcurrencyConflict("Room no longer available, your payment has been refunded")

    db.refresh(booking)

    logger.info(
        f"Booking Created | code={booking.booking_code} | user={user.email} | hotel={booking.hotel_id} "
        f"| room={booking.room_number} | status={booking.status}"
    )

    notify(
        db, "bookingCreated",
        title="New Booking",
        message=f"{user.name} booked room {booking.room_number} "
                f"from {booking.check_in} to {booking.check_out}",
        booking=booking,
    )
    return booking


def create_booking(db: Session, gateway, user, payment_intent_id: str, payment_id: str,
                   signature: str, now: datetime | None = None,
                   require_approval: bool | None = None) -> Booking:
    """Turn a paid hold into a booking once the client returns the payment signature."""
    now = now or datetime.utcnow()

    hold = db.query(RoomHold).filter(RoomHold.payment_intent_id == payment_intent_id).first()
    if not hold:
        raise NotFound("Payment intent not found")
    if hold.user_id != user.id:
        raise PermissionDenied("This payment intent belongs to another user")

    # IDEMPOTENCY CHECK
    existing = find_booking_for_intent(db, payment_intent_id)
    if existing:
        return existing

    if hold.status == HoldStatus.REFUNDED.value:
        raise ConcurrencyConflict("Room no longer available, payment was refunded")
    if hold.status == HoldStatus.RELEASED.value:
        raise ValidationError("Payment intent is no longer valid")

    try:
        gateway.confirm_payment(payment_intent_id, payment_id, signature)
    except PaymentProviderError:
        room_inventory.release_hold(hold)
        db.commit()
        raise

    return commit_hold(db, gateway, hold, payment_id, now, require_approval)


# ---------------------------------------------------------------------
# ADMIN APPROVE / REJECT
# ---------------------------------------------------------------------
def approve_booking(db: Session, booking_id: int, admin=None) -> Booking:
    booking = get_booking(db, booking_id)

    if booking.status != BookingStatus.PENDING.value:
        raise ValidationError(
            f"Cannot approve booking with status: {booking.status}. Only pending bookings can be approved."
        )

    room_inventory.lock_hotel(db, booking.hotel_id)
    clash = room_inventory.overlapping_bookings(
        db, booking.hotel_id, booking.room_number, booking.check_in, booking.check_out,
        statuses=(BookingStatus.CONFIRMED.value,),
        exclude_booking_id=booking.id,
    ).first()
    if clash:
        raise ConcurrencyConflict("This room is already booked for the selected dates by another confirmed booking")

    booking.status = BookingStatus.CONFIRMED.value
    room_inventory.mark_occupied(db, booking.hotel_id, booking.room_number)
    room_inventory.touch_inventory(booking.hotel)

    _commit(db, booking)

    logger.bind(log_type="admin").info(
        f"Booking approved | code={booking.booking_code} | admin={getattr(admin, 'email', None)}"
    )
    notify(
        db, "bookingApproved",
        title="Booking Confirmed",
        message=f"Your booking {booking.booking_code} has been confirmed",
        booking=booking,
        recipient_role="user",
        recipient_id=booking.user_id,
    )
    return booking


def reject_booking(db: Session, booking_id: int, admin=None) -> Booking:
    booking = get_booking(db, booking_id)

    if booking.status != BookingStatus.PENDING.value:
        raise ValidationError(
            f"Cannot reject booking with status: {booking.status}. Only pending bookings can be rejected."
        )

    booking.status = BookingStatus.CANCELLED.value
    room_inventory.release_room(db, booking.hotel_id, booking.room_number, exclude_booking_id=booking.id)
    room_inventory.touch_inventory(booking.hotel)

    _commit(db, booking)

    logger.bind(log_type="admin").info(
        f"Booking rejected | code={booking.booking_code} | admin={getattr(admin, 'email', None)}"
    )
    notify(
        db, "bookingRejected",
        title="Booking Rejected",
        message=f"Your booking {booking.booking_code} was rejected. A refund can now be processed.",
        booking=booking,
        recipient_role="user",
        recipient_id=booking.user_id,
    )
    return booking


# ---------------------------------------------------------------------
# COMPLETION SWEEP
# ---------------------------------------------------------------------
def sweep_completions(db: Session, now: datetime | None = None) -> dict:
    """Complete every confirmed stay whose check-out has passed.

    Each booking is committed on its own; one failure is logged and the rest
    of the batch still runs. Re-running is a no-op for completed bookings.
    """
    now = now or datetime.utcnow()
    today = now.date()
    sweep_logger = logger.bind(log_type="sweeper")

    due_ids = [
        row.id for row in db.query(Booking.id).filter(
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.check_out < today,
        ).all()
    ]

    completed, failed = [], []

    for booking_id in due_ids:
        try:
            booking = db.query(Booking).filter(Booking.id == booking_id).first()
            if booking is None or booking.status != BookingStatus.CONFIRMED.value:
                continue

            booking.status = BookingStatus.COMPLETED.value
            room_inventory.release_room(
                db, booking.hotel_id, booking.room_number,
                exclude_booking_id=booking.id, today=today,
            )
            room_inventory.touch_inventory(booking.hotel, now)
            db.commit()

            completed.append(booking.booking_code)
            sweep_logger.info(f"Booking completed | code={booking.booking_code} | room={booking.room_number}")
        except Exception as e:
            db.rollback()
            failed.append(booking_id)
            sweep_logger.exception(f"Failed to complete booking {booking_id}: {e}")

    sweep_logger.info(f"Auto-completed {len(completed)} bookings ({len(failed)} failed)")

    if completed:
        hub.publish("bookingsCompleted", {"bookings": completed})

    return {"completed": completed, "failed": failed}


def _commit(db: Session, booking: Booking):
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConcurrencyConflict(f"Booking {booking.id} was modified concurrently, reload and retry")
    db.refresh(booking)
