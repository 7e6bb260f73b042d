"""Razorpay webhook events.

Orders are created with automatic capture, so the provider can hold the
guest's money even when the client never comes back to ``POST /bookings/``.
These handlers make the provider's view authoritative:

* ``payment.captured`` / ``order.paid`` convert the hold through the same
  commit path as the client flow, or refund the payment if the room is gone.
* ``payment.failed`` releases the hold and records the failure.
* ``refund.processed`` reconciles refunds made outside this service.

Every handler is safe to run more than once for the same event.
"""
from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import ConcurrencyConflict
from app.core.logging_config import get_logger
from app.models.booking import Booking
from app.models.enums import HoldStatus, PaymentStatus
from app.models.room_hold import RoomHold
from app.services import booking_lifecycle, room_inventory
from app.services.notifications import notify
from app.services.refunds import EPSILON, record_refund

logger = get_logger("payment")


def _entity(event: dict, name: str) -> dict:
    return ((event.get("payload") or {}).get(name) or {}).get("entity") or {}


# ---------------------------------------------------------------------
# CAPTURED
# ---------------------------------------------------------------------
def handle_payment_captured(db: Session, gateway, event: dict, now: datetime) -> dict:
    payment = _entity(event, "payment")
    order_id = payment.get("order_id") or _entity(event, "order").get("id")
    payment_id = payment.get("id")

    if not order_id or not payment_id:
        logger.warning(f"Capture event without order or payment id | event={event.get('event')}")
        return {"action": "ignored", "reason": "missing ids"}

    hold = db.query(RoomHold).filter(RoomHold.payment_intent_id == order_id).first()
    if not hold:
        logger.warning(f"Capture for unknown order | order={order_id} | payment={payment_id}")
        return {"action": "ignored", "reason": "unknown order"}

    existing = booking_lifecycle.find_booking_for_intent(db, order_id)
    if existing:
        return {"action": "noop", "booking_id": existing.id}

    if hold.status == HoldStatus.REFUNDED.value:
        return {"action": "noop", "reason": "already refunded"}

    amount = payment.get("amount")
    if amount is not None and int(amount) != hold.amount_minor:
        logger.critical(
            f"Captured amount does not match hold | order={order_id} | payment={payment_id} "
            f"| captured={amount} | expected={hold.amount_minor}"
        )
        booking_lifecycle.refund_captured_payment(
            db, gateway, hold, payment_id, "captured amount mismatch", amount_minor=int(amount),
        )
        return {"action": "refunded", "reason": "amount mismatch"}

    logger.info(f"Converting hold from webhook | order={order_id} | payment={payment_id} | hold={hold.status}")

    try:
        booking = booking_lifecycle.commit_hold(db, gateway, hold, payment_id, now)
    except ConcurrencyConflict:
        return {"action": "refunded", "reason": "room no longer available"}

    return {"action": "booked", "booking_id": booking.id}


# ---------------------------------------------------------------------
# FAILED
# ---------------------------------------------------------------------
def handle_payment_failed(db: Session, gateway, event: dict, now: datetime) -> dict:
    payment = _entity(event, "payment")
    order_id = payment.get("order_id")

    hold = db.query(RoomHold).filter(RoomHold.payment_intent_id == order_id).first() if order_id else None
    if not hold:
        return {"action": "ignored", "reason": "unknown order"}

    if hold.status == HoldStatus.CONVERTED.value:
        # A later attempt on the same order already succeeded
        return {"action": "noop", "reason": "already booked"}

    reason = payment.get("error_description") or payment.get("error_reason") or "payment failed"
    hold.payment_id = payment.get("id")
    hold.payment_status = PaymentStatus.FAILED.value
    hold.failure_reason = reason
    room_inventory.release_hold(hold)
    db.commit()

    logger.warning(f"Payment failed | order={order_id} | payment={hold.payment_id} | reason={reason}")

    notify(
        db, "paymentFailed",
        title="Payment Failed",
        message=f"Payment for room {hold.room_number} could not be completed: {reason}",
        recipient_role="user",
        recipient_id=hold.user_id,
        payload={"payment_intent_id": order_id, "hotel_id": hold.hotel_id, "reason": reason},
    )
    return {"action": "released"}


# ---------------------------------------------------------------------
# REFUNDED
# ---------------------------------------------------------------------
def handle_refund_processed(db: Session, gateway, event: dict, now: datetime) -> dict:
    refund = _entity(event, "refund")
    refund_id = refund.get("id")
    payment_id = refund.get("payment_id")
    amount = round(int(refund.get("amount") or 0) / 100, 2)

    for _ in range(2):
        booking = (
            db.query(Booking)
            .filter(Booking.payment_id == payment_id)
            .populate_existing()
            .first()
        ) if payment_id else None
        if not booking:
            return {"action": "ignored", "reason": "unknown payment"}

        if refund_id in (booking.provider_refund_ids or []):
            return {"action": "noop", "booking_id": booking.id}

        if amount <= 0 or amount > booking.remaining_balance + EPSILON:
            logger.critical(
                f"Provider refund exceeds ledger balance | booking={booking.id} | refund={refund_id} "
                f"| amount={amount} | remaining={booking.remaining_balance}"
            )
            return {"action": "ignored", "reason": "exceeds balance"}

        record_refund(db, booking, amount, "Reconciled from provider refund", None, now, refund_id)
        try:
            db.commit()
            break
        except StaleDataError:
            db.rollback()
    else:
        raise ConcurrencyConflict("Booking changed while reconciling refund, retry delivery")

    logger.bind(log_type="refund").info(
        f"Refund reconciled | code={booking.booking_code} | refund={refund_id} | amount={amount} "
        f"| refunded_total={booking.refunded_amount}"
    )
    notify(
        db, "bookingRefunded",
        title="Refund Processed",
        message=f"Refund of {amount} processed for booking {booking.booking_code}.",
        booking=booking,
        recipient_role="user",
        recipient_id=booking.user_id,
    )
    return {"action": "reconciled", "booking_id": booking.id}


HANDLERS = {
    "payment.captured": handle_payment_captured,
    "order.paid": handle_payment_captured,
    "payment.failed": handle_payment_failed,
    "refund.processed": handle_refund_processed,
}


def handle_event(db: Session, gateway, event: dict, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    name = event.get("event")
    handler = HANDLERS.get(name)
    if handler is None:
        logger.info(f"Unhandled webhook event {name}")
        return {"action": "ignored", "reason": "unhandled event"}
    return handler(db, gateway, event, now)
