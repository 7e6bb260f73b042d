import os
from datetime import datetime, timedelta

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    AlreadyRefunded, ConcurrencyConflict, InvalidRefundAmount, NotFound, PaymentProviderError,
    PermissionDenied, ValidationError,
)
from app.core.logging_config import get_logger
from app.models.booking import Booking
from app.models.enums import BookingStatus, PaymentStatus, RefundStatus, RefundType
from app.services import room_inventory
from app.services.booking_lifecycle import get_booking
from app.services.notifications import notify
from app.utils.pricing import to_minor_units

logger = get_logger("refund")

# Balances below one minor unit count as settled
EPSILON = 0.005

# A claim older than this is treated as abandoned by a crashed worker
REFUND_CLAIM_TIMEOUT_MINUTES = int(os.getenv("REFUND_CLAIM_TIMEOUT_MINUTES", "10"))


def _resolve_amount(booking: Booking, refund_type: str, amount: float | None) -> float:
    remaining = booking.remaining_balance

    if refund_type == RefundType.FULL.value:
        return remaining

    if amount is None:
        amount = booking.refund_requested_amount
    if amount is None:
        raise ValidationError("Partial refunds need an explicit amount")

    amount = round(float(amount), 2)
    if amount <= 0:
        raise InvalidRefundAmount("Refund amount must be positive")
    if amount > remaining + EPSILON:
        raise InvalidRefundAmount(f"Refund amount {amount} exceeds remaining balance {remaining}")
    return amount


def record_refund(db: Session, booking: Booking, amount: float, admin_notes, processed_by,
                   now: datetime, refund_id: str | None = None) -> bool:
    """Apply a provider-side refund to the booking ledger. Returns True when fully refunded."""
    booking.refunded_amount = round((booking.refunded_amount or 0.0) + amount, 2)
    if refund_id:
        # Reassign so the JSON column is flagged dirty
        booking.provider_refund_ids = [*(booking.provider_refund_ids or []), refund_id]
    booking.refund_admin_notes = admin_notes
    booking.refund_processed_at = now
    booking.refund_processed_by = processed_by

    fully_refunded = booking.remaining_balance <= EPSILON
    today = now.date()

    if fully_refunded:
        booking.refund_status = RefundStatus.COMPLETED.value
        booking.payment_status = PaymentStatus.REFUNDED.value
        if booking.status != BookingStatus.COMPLETED.value:
            booking.status = BookingStatus.CANCELLED.value
            room_inventory.release_room(
                db, booking.hotel_id, booking.room_number,
                exclude_booking_id=booking.id, today=today,
            )
    else:
        booking.refund_status = RefundStatus.PARTIAL.value
        active = booking.status in (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)
        if active and booking.check_out <= today:
            # Stay already over without being completed: close it out
            booking.status = BookingStatus.CANCELLED.value
            room_inventory.release_room(
                db, booking.hotel_id, booking.room_number,
                exclude_booking_id=booking.id, today=today,
            )

    return fully_refunded


def _load_for_refund(db: Session, booking_id: int) -> Booking:
    booking = (
        db.query(Booking)
        .filter(Booking.id == booking_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if not booking:
        raise NotFound("Booking not found")
    return booking


def _check_refundable(booking: Booking):
    if booking.refund_status == RefundStatus.COMPLETED.value \
            or booking.payment_status == PaymentStatus.REFUNDED.value \
            or booking.remaining_balance <= EPSILON:
        raise AlreadyRefunded("This booking has already been fully refunded")

    if booking.payment_status != PaymentStatus.SUCCEEDED.value:
        raise ValidationError("Only paid bookings can be refunded")


def _claim_refund(db: Session, booking_id: int, refund_type: str, amount: float | None,
                  now: datetime):
    """Mark the booking as having a refund in flight before any money moves.

    The claim is committed under the booking version check, so of two
    concurrent callers only one gets past this point.
    """
    booking = _load_for_refund(db, booking_id)
    _check_refundable(booking)

    if booking.refund_claimed_at is not None:
        if now - booking.refund_claimed_at < timedelta(minutes=REFUND_CLAIM_TIMEOUT_MINUTES):
            raise ConcurrencyConflict("A refund for this booking is already being processed")
        logger.warning(
            f"Overriding stale refund claim | booking={booking_id} | claimed_at={booking.refund_claimed_at}"
        )

    refund_amount = _resolve_amount(booking, refund_type, amount)

    booking.refund_claimed_at = now
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConcurrencyConflict("Booking was modified concurrently, please retry")
    return booking, refund_amount


def _release_claim(db: Session, booking_id: int):
    for _ in range(2):
        booking = _load_for_refund(db, booking_id)
        booking.refund_claimed_at = None
        try:
            db.commit()
            return
        except StaleDataError:
            db.rollback()
    logger.error(f"Could not release refund claim | booking={booking_id}")


def issue_refund(db: Session, gateway, booking_id: int, refund_type: str,
                 amount: float | None = None, admin_notes: str | None = None,
                 admin=None, now: datetime | None = None):
    """Refund all or part of the remaining balance of a paid booking.

    ``refunded_amount`` only ever grows, and never beyond ``total_price``.
    Returns ``(refund_amount, booking)``.
    """
    now = now or datetime.utcnow()
    try:
        refund_type = RefundType(refund_type).value
    except ValueError:
        raise ValidationError("Invalid refund type. Use 'full' or 'partial'")

    booking, refund_amount = _claim_refund(db, booking_id, refund_type, amount, now)
    processed_by = getattr(admin, "id", None)

    try:
        provider_refund = gateway.refund(booking.payment_id, to_minor_units(refund_amount))
    except PaymentProviderError:
        _release_claim(db, booking_id)
        raise
    refund_id = provider_refund.get("id")

    fully_refunded = record_refund(db, booking, refund_amount, admin_notes, processed_by, now, refund_id)
    booking.refund_claimed_at = None
    try:
        db.commit()
    except StaleDataError:
        # Money already left; apply the ledger entry on the fresh row if it still fits
        db.rollback()
        logger.error(
            f"Refund ledger conflict, re-checking | booking={booking_id} | amount={refund_amount} "
            f"| refund={refund_id}"
        )
        booking = _load_for_refund(db, booking_id)
        booking.refund_claimed_at = None

        if refund_id and refund_id in (booking.provider_refund_ids or []):
            # Already reconciled from the provider's refund notification
            fully_refunded = booking.remaining_balance <= EPSILON
        elif booking.payment_status == PaymentStatus.REFUNDED.value \
                or refund_amount > booking.remaining_balance + EPSILON:
            logger.critical(
                f"REFUND EXCEEDS LEDGER BALANCE, NOT RECORDED | booking={booking_id} | amount={refund_amount} "
                f"| remaining={booking.remaining_balance} | refund={refund_id}"
            )
            try:
                db.commit()
            except StaleDataError:
                db.rollback()
            raise ConcurrencyConflict("Refund issued but booking changed concurrently; reconcile manually")
        else:
            fully_refunded = record_refund(db, booking, refund_amount, admin_notes, processed_by, now, refund_id)

        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            logger.critical(
                f"REFUND NOT RECORDED | booking={booking_id} | amount={refund_amount} "
                f"| refund={refund_id}"
            )
            raise ConcurrencyConflict("Refund issued but booking changed concurrently; reconcile manually")

    db.refresh(booking)

    logger.info(
        f"Refund processed | code={booking.booking_code} | type={refund_type} | amount={refund_amount} "
        f"| refunded_total={booking.refunded_amount} | refund_status={booking.refund_status}"
    )

    label = "Full" if fully_refunded else "Partial"
    notify(
        db, "bookingRefunded",
        title="Refund Processed",
        message=f"{label} refund of {refund_amount} processed for booking {booking.booking_code}."
                + (f" Notes: {admin_notes}" if admin_notes else ""),
        booking=booking,
        recipient_role="user",
        recipient_id=booking.user_id,
    )
    return refund_amount, booking


def request_refund(db: Session, booking_id: int, user, reason: str,
                   requested_amount: float | None = None, now: datetime | None = None) -> Booking:
    """Guest-side refund request; queues the booking for admin review, moves no money."""
    now = now or datetime.utcnow()
    booking = get_booking(db, booking_id)

    if booking.user_id != user.id:
        raise PermissionDenied("Not authorized")

    if booking.payment_status != PaymentStatus.SUCCEEDED.value:
        raise ValidationError("Refunds can only be requested for successfully paid bookings")

    if booking.refund_status == RefundStatus.COMPLETED.value:
        raise AlreadyRefunded("This booking has already been fully refunded and cannot be refunded again")

    if booking.refund_status == RefundStatus.PARTIAL.value or (booking.refunded_amount or 0) > 0:
        raise ValidationError(
            "A refund has already been processed for this booking. "
            "Further adjustments must be handled by the hotel/admin."
        )

    if booking.refund_status == RefundStatus.REQUESTED.value:
        raise ValidationError("There is already a pending refund request for this booking")

    if requested_amount is not None and not 0 < requested_amount <= booking.remaining_balance:
        raise InvalidRefundAmount("Requested amount must be positive and within the amount paid")

    booking.refund_status = RefundStatus.REQUESTED.value
    booking.refund_reason = reason
    booking.refund_requested_at = now
    booking.refund_requested_amount = requested_amount
    booking.refund_admin_notes = None
    booking.refund_processed_at = None
    booking.refund_processed_by = None

    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConcurrencyConflict("Booking was modified concurrently, please retry")
    db.refresh(booking)

    logger.info(f"Refund requested | code={booking.booking_code} | user={user.email} | reason={reason}")

    notify(
        db, "refundRequested",
        title="New Refund Request",
        message=f"User {user.name} requested refund for booking {booking.booking_code}. Reason: {reason}",
        booking=booking,
        priority="high",
    )
    return booking


def reject_refund_request(db: Session, booking_id: int, admin_notes: str | None = None,
                          admin=None, now: datetime | None = None) -> Booking:
    now = now or datetime.utcnow()
    booking = get_booking(db, booking_id)

    if booking.refund_status != RefundStatus.REQUESTED.value:
        raise ValidationError("No pending refund request found for this booking")

    booking.refund_status = RefundStatus.REJECTED.value
    booking.refund_admin_notes = admin_notes
    booking.refund_processed_at = now
    booking.refund_processed_by = getattr(admin, "id", None)

    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConcurrencyConflict("Booking was modified concurrently, please retry")
    db.refresh(booking)

    logger.bind(log_type="admin").info(
        f"Refund request rejected | code={booking.booking_code} | admin={getattr(admin, 'email', None)}"
    )

    notify(
        db, "refundRequestRejected",
        title="Refund Request Rejected",
        message=f"Your refund request for booking {booking.booking_code} has been rejected."
                + (f" Reason: {admin_notes}" if admin_notes else ""),
        booking=booking,
        recipient_role="user",
        recipient_id=booking.user_id,
    )
    return booking


def list_refund_requests(db: Session, page: int = 1, limit: int = 10):
    query = db.query(Booking).filter(Booking.refund_status == RefundStatus.REQUESTED.value)
    total = query.count()
    items = (
        query.order_by(Booking.refund_requested_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total
