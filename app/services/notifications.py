from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.logging_config import get_logger
from app.models.notification import Notification

logger = get_logger()


class NotificationHub:
    """In-process fan-out of booking events to whatever transport is attached."""

    def __init__(self):
        self._subscribers = []

    def subscribe(self, callback):
        self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, event: str, payload: dict):
        for callback in list(self._subscribers):
            try:
                callback(event, payload)
            except Exception as e:
                logger.error(f"Notification subscriber failed | event={event} | {e}")


hub = NotificationHub()


def booking_payload(booking) -> dict:
    return {
        "id": booking.id,
        "booking_code": booking.booking_code,
        "hotel_id": booking.hotel_id,
        "room_number": booking.room_number,
        "status": booking.status,
        "payment_status": booking.payment_status,
        "refund_status": booking.refund_status,
        "refunded_amount": booking.refunded_amount,
    }


def notify(db: Session, event: str, title: str, message: str, booking=None,
           recipient_role: str = "admin", recipient_id: int | None = None,
           priority: str = "normal", payload: dict | None = None):
    """Persist a notification and publish the event.

    Called after the booking change is committed; a failure here is logged
    and never undoes the booking change.
    """
    try:
        db.add(Notification(
            recipient_role=recipient_role,
            recipient_id=recipient_id,
            booking_id=booking.id if booking is not None else None,
            event=event,
            title=title,
            message=message,
            priority=priority,
        ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not store notification | event={event} | {e}")

    if payload is None:
        payload = booking_payload(booking) if booking is not None else {}
    hub.publish(event, {"message": message, **payload})
